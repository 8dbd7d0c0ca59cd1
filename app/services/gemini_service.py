import asyncio
import base64

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import BlockedPromptException, StopCandidateException

from app.models.conversation import TextPart, Turn
from app.utils.errors import CompletionTimeoutError, UpstreamError
from app.utils.logger import get_logger

logger = get_logger("gemini")

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_p": 0.8,
    "top_k": 40,
    "max_output_tokens": 1024,
}
SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]

FALLBACK_REPLY = (
    "Lo siento, no pude generar una respuesta clara. "
    "¿Podrías reformular tu pregunta nutricional?"
)

UPSTREAM_MESSAGES = {
    429: "⏳ El servicio está temporalmente ocupado. Intenta nuevamente en unos momentos.",
    400: "❌ Error en el formato de la consulta. Por favor, reformula tu pregunta.",
    503: "🔧 El servicio está sobrecargado en este momento. Intenta nuevamente en unos minutos.",
}


def upstream_error(status_code: int | None, detail: str) -> UpstreamError:
    """Map a Gemini API failure status to the error returned to the user."""
    status = int(status_code) if status_code else 502
    reply = UPSTREAM_MESSAGES.get(status, UpstreamError.reply)
    return UpstreamError(reply, status_code=status, detail=detail)


def to_gemini_contents(history: list[Turn]) -> list[dict]:
    """Convert stored turns into the `contents` shape the SDK accepts."""
    contents = []
    for turn in history:
        parts = []
        for part in turn.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            else:
                parts.append({
                    "inline_data": {
                        "mime_type": part.inline_data.mime_type,
                        "data": base64.b64decode(part.inline_data.data),
                    }
                })
        contents.append({"role": turn.role, "parts": parts})
    return contents


def extract_reply_text(response) -> str:
    try:
        text = response.text
    except (ValueError, IndexError, AttributeError) as e:
        logger.warning(f"⚠️ Gemini response had no usable text: {e}")
        return FALLBACK_REPLY
    return text.strip() if text and text.strip() else FALLBACK_REPLY


class GeminiChatClient:
    """Sends a conversation history to Gemini and returns the reply text."""

    def __init__(self, api_key: str, model_name: str = DEFAULT_MODEL,
                 generation_config: dict | None = None, timeout_seconds: float = 30,
                 model=None):
        self.model_name = model_name
        self.timeout_seconds = timeout_seconds
        if model is None:
            genai.configure(api_key=api_key)
            model = genai.GenerativeModel(
                model_name,
                generation_config=generation_config or DEFAULT_GENERATION_CONFIG,
                safety_settings=SAFETY_SETTINGS,
            )
        self.model = model

    @classmethod
    def from_config(cls, api_key: str, cfg: dict) -> "GeminiChatClient":
        generation = {**DEFAULT_GENERATION_CONFIG, **(cfg.get("generation") or {})}
        return cls(
            api_key,
            model_name=cfg.get("model", DEFAULT_MODEL),
            generation_config=generation,
            timeout_seconds=float(cfg.get("timeout_seconds", 30)),
        )

    async def generate_reply(self, history: list[Turn]) -> str:
        contents = to_gemini_contents(history)
        logger.debug(f"📤 Sending {len(contents)} turns to {self.model_name}")
        try:
            response = await asyncio.wait_for(
                self.model.generate_content_async(
                    contents, request_options={"timeout": self.timeout_seconds}
                ),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, google_exceptions.DeadlineExceeded) as e:
            logger.error(f"❌ Gemini call exceeded {self.timeout_seconds}s")
            raise CompletionTimeoutError(detail=f"Gemini timeout: {e}") from e
        except (BlockedPromptException, StopCandidateException) as e:
            logger.warning(f"⚠️ Gemini blocked the conversation: {e}")
            return FALLBACK_REPLY
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"❌ Gemini API error ({e.code}): {e}", exc_info=True)
            raise upstream_error(e.code, str(e)) from e

        reply = extract_reply_text(response)
        logger.info("✅ Gemini reply received successfully")
        return reply
