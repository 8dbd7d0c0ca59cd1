import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response
from starlette.datastructures import UploadFile

from app.api.deps import (
    get_chat_client,
    get_conversation_store,
    get_rate_limiter,
    get_settings_dep,
)
from app.config import Settings
from app.models.chat import (
    DEFAULT_ALLOWED_MIME_TYPES,
    DEFAULT_MAX_IMAGE_BYTES,
    ChatRequest,
    is_valid_session_id,
    parse_chat_request,
)
from app.models.conversation import ChatReply, ConversationSummary, TextPart, Turn
from app.services.gemini_service import FALLBACK_REPLY, GeminiChatClient
from app.services.nutrition import build_system_prompt
from app.services.rate_limiter import RateLimiter, client_identifier
from app.services.session_store import ConversationStore
from app.utils.errors import (
    CompletionTimeoutError,
    InternalError,
    NotFoundError,
    NutriBotError,
    PersistenceError,
    RateLimitError,
    UnsupportedMediaError,
    ValidationError,
)
from app.utils.logger import get_logger
from app.utils.sanitize import sanitize_text

router = APIRouter(prefix="/api/chat")
logger = get_logger("chat")

FORM_FIELDS = ("message", "name", "age", "weight", "height", "sessionId")
IMAGE_ONLY_MESSAGE = "He enviado una imagen, por favor analízala desde una perspectiva nutricional."
CANCELLED_REPLY = "🚫 La consulta fue cancelada antes de completarse."
DISCONNECT_POLL_SECONDS = 0.5


def admit(request: Request, limiter: RateLimiter, response: Response | None = None) -> str:
    """Rate-limit the caller; raises RateLimitError when the window is exhausted."""
    identifier = client_identifier(request.headers, request.client.host if request.client else None)
    decision = limiter.is_allowed(identifier)
    if not decision.allowed:
        raise RateLimitError(decision.reset_time, decision.limit, decision.retry_after)
    if response is not None:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return identifier


async def read_chat_request(request: Request, settings: Settings) -> ChatRequest:
    """Parse a JSON or multipart body and validate it."""
    upload_cfg = settings.upload or {}
    max_bytes = int(upload_cfg.get("max_image_bytes", DEFAULT_MAX_IMAGE_BYTES))
    allowed = tuple(upload_cfg.get("allowed_mime_types") or DEFAULT_ALLOWED_MIME_TYPES)
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError({"body": "El cuerpo de la solicitud no es JSON válido."})
        if not isinstance(body, dict):
            raise ValidationError({"body": "El cuerpo de la solicitud debe ser un objeto JSON."})
        return parse_chat_request(body, max_image_bytes=max_bytes, allowed_mime_types=allowed)

    if "multipart/form-data" in content_type:
        form = await request.form()
        raw = {name: form.get(name) for name in FORM_FIELDS}
        image = None
        upload = form.get("image")
        if isinstance(upload, UploadFile):
            # one byte past the limit is enough to reject oversized files
            data = await upload.read(max_bytes + 1)
            if data:
                image = {"mime_type": upload.content_type or "image/jpeg", "data": data}
        return parse_chat_request(raw, image, max_image_bytes=max_bytes, allowed_mime_types=allowed)

    raise UnsupportedMediaError(detail=f"Unsupported content type: {content_type or 'none'}")


def build_user_turn(chat_request: ChatRequest) -> Turn:
    message = sanitize_text(chat_request.message)
    if not message:
        if chat_request.image is None:
            raise ValidationError({"message": "Por favor, envía un mensaje o una imagen."})
        message = IMAGE_ONLY_MESSAGE
    parts = [TextPart(text=f"Consulta nutricional: {message}")]
    if chat_request.image is not None:
        parts.append(chat_request.image.to_part())
    return Turn(role="user", parts=parts)


async def _wait_for_disconnect(request: Request) -> None:
    try:
        while not await request.is_disconnected():
            await asyncio.sleep(DISCONNECT_POLL_SECONDS)
    except Exception as e:
        # Without a usable receive channel, fall back to the completion timeout.
        logger.warning(f"⚠️ Disconnect watcher stopped: {e}")
        await asyncio.Future()


async def complete_or_cancel(request: Request, chat_client: GeminiChatClient, history: list[Turn]) -> str:
    """Run the completion, cancelling it if the client goes away first."""
    completion = asyncio.ensure_future(chat_client.generate_reply(history))
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({completion, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (completion, watcher):
            if not task.done():
                task.cancel()

    if completion in done:
        return completion.result()
    logger.warning("⚠️ Client disconnected before the completion returned")
    raise CompletionTimeoutError(CANCELLED_REPLY, detail="client disconnected")


@router.post("", response_model=ChatReply)
async def chat(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings_dep),
    limiter: RateLimiter = Depends(get_rate_limiter),
    store: ConversationStore = Depends(get_conversation_store),
    chat_client: GeminiChatClient = Depends(get_chat_client),
):
    identifier = admit(request, limiter, response)
    logger.info(f"📡 Received chat request from {identifier}")

    try:
        chat_request = await read_chat_request(request, settings)
        session_id = chat_request.session_id
        user_turn = build_user_turn(chat_request)
        logger.debug(f"Validated chat request for session {session_id}")

        conversation = await store.get_or_create(session_id, chat_request.user_info, build_system_prompt)
        logger.debug(f"Session {session_id} resolved with {len(conversation.history)} turns")

        history = conversation.history + [user_turn]

        reply = sanitize_text(await complete_or_cancel(request, chat_client, history)) or FALLBACK_REPLY
        model_turn = Turn(role="model", parts=[TextPart(text=reply)])

        try:
            await store.append_turns(session_id, user_turn, model_turn)
        except PersistenceError as e:
            logger.error(f"❌ Reply for session {session_id} delivered but not saved: {e.detail}")

        logger.info(f"✅ Chat reply sent for session {session_id}")
        return ChatReply(reply=reply, session_id=session_id, timestamp=datetime.now(timezone.utc))

    except NutriBotError as e:
        logger.warning(f"⚠️ Chat request rejected ({e.status_code}): {e.detail or e.reply}")
        raise
    except Exception as e:
        logger.exception(f"❌ Unexpected error in chat endpoint: {e}")
        raise InternalError(detail=str(e)) from e


@router.get("", response_model=ConversationSummary)
async def get_conversation(
    request: Request,
    session_id: str | None = Query(default=None, alias="sessionId"),
    limiter: RateLimiter = Depends(get_rate_limiter),
    store: ConversationStore = Depends(get_conversation_store),
):
    admit(request, limiter)
    if not session_id:
        raise ValidationError({"sessionId": "sessionId es requerido."})
    if not is_valid_session_id(session_id):
        raise ValidationError({"sessionId": "Formato de sessionId inválido."})

    logger.info(f"📡 Received history request for session {session_id}")
    try:
        conversation = await store.load_conversation(session_id)
    except NutriBotError:
        raise
    except Exception as e:
        logger.exception(f"❌ Unexpected error loading session {session_id}: {e}")
        raise InternalError(detail=str(e)) from e

    if conversation is None:
        logger.warning(f"❌ Conversation not found: {session_id}")
        raise NotFoundError()
    return conversation.summary()
