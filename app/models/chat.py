import base64
import re
import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from app.models.conversation import ImagePart, InlineData, UserInfo
from app.utils.errors import ValidationError

NAME_PATTERN = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚüÜñÑ\s]+$")
INTEGER_PATTERN = re.compile(r"^\d+$")
DECIMAL_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")

MAX_MESSAGE_LENGTH = 2000
DEFAULT_MAX_IMAGE_BYTES = 5 * 1024 * 1024
DEFAULT_ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")


def _invalid(message: str) -> PydanticCustomError:
    return PydanticCustomError("invalid_field", message)


def _as_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _context(info: ValidationInfo) -> dict:
    return info.context or {}


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}"


def is_valid_session_id(session_id: str | None) -> bool:
    return bool(session_id) and SESSION_ID_PATTERN.match(session_id) is not None


class ImageUpload(BaseModel):
    """An uploaded image, checked against the allowed types and size limit."""
    mime_type: str
    data: bytes

    @field_validator("mime_type", mode="before")
    @classmethod
    def check_mime_type(cls, value, info: ValidationInfo):
        allowed = _context(info).get("allowed_mime_types", DEFAULT_ALLOWED_MIME_TYPES)
        mime_type = _as_text(value).lower()
        if mime_type not in allowed:
            raise _invalid("Formato de imagen no soportado. Usa JPEG, PNG o WEBP.")
        return mime_type

    @field_validator("data")
    @classmethod
    def check_size(cls, value: bytes, info: ValidationInfo):
        max_bytes = _context(info).get("max_image_bytes", DEFAULT_MAX_IMAGE_BYTES)
        if len(value) > max_bytes:
            limit_mb = max_bytes // (1024 * 1024)
            raise _invalid(f"La imagen es demasiado grande. Tamaño máximo: {limit_mb}MB.")
        return value

    @property
    def size(self) -> int:
        return len(self.data)

    def to_part(self) -> ImagePart:
        encoded = base64.b64encode(self.data).decode("ascii")
        return ImagePart(inline_data=InlineData(mime_type=self.mime_type, data=encoded))


class ChatRequest(BaseModel):
    """Validated body of POST /api/chat."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="", validate_default=True)
    age: int = Field(default="", validate_default=True)
    weight: float = Field(default="", validate_default=True)
    height: int = Field(default="", validate_default=True)
    message: str = Field(default="", validate_default=True)
    session_id: str = Field(default="", alias="sessionId", validate_default=True)
    image: Optional[ImageUpload] = None

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        name = _as_text(value)
        if not 2 <= len(name) <= 100:
            raise _invalid("El nombre debe tener entre 2 y 100 caracteres.")
        if not NAME_PATTERN.match(name):
            raise _invalid("El nombre solo puede contener letras y espacios.")
        return name

    @field_validator("age", mode="before")
    @classmethod
    def check_age(cls, value):
        age = _as_text(value)
        if not INTEGER_PATTERN.match(age) or not 1 <= int(age) <= 120:
            raise _invalid("La edad debe ser un número entero entre 1 y 120.")
        return int(age)

    @field_validator("weight", mode="before")
    @classmethod
    def check_weight(cls, value):
        weight = _as_text(value)
        if not DECIMAL_PATTERN.match(weight) or not 20 <= float(weight) <= 300:
            raise _invalid("El peso debe ser un número entre 20 y 300 kg (máximo 2 decimales).")
        return float(weight)

    @field_validator("height", mode="before")
    @classmethod
    def check_height(cls, value):
        height = _as_text(value)
        if not INTEGER_PATTERN.match(height) or not 100 <= int(height) <= 250:
            raise _invalid("La estatura debe ser un número entero entre 100 y 250 cm.")
        return int(height)

    @field_validator("message", mode="before")
    @classmethod
    def check_message(cls, value, info: ValidationInfo):
        message = _as_text(value)
        if len(message) > MAX_MESSAGE_LENGTH:
            raise _invalid(f"El mensaje no puede superar {MAX_MESSAGE_LENGTH} caracteres.")
        if not message and not _context(info).get("has_image"):
            raise _invalid("Por favor, envía un mensaje o una imagen.")
        return message

    @field_validator("session_id", mode="before")
    @classmethod
    def check_session_id(cls, value):
        session_id = _as_text(value)
        if not session_id:
            return generate_session_id()
        if not SESSION_ID_PATTERN.match(session_id):
            raise _invalid(
                "El identificador de sesión debe tener entre 1 y 100 caracteres "
                "(letras, números, guiones y guiones bajos)."
            )
        return session_id

    @property
    def user_info(self) -> UserInfo:
        return UserInfo(name=self.name, age=self.age, weight=self.weight, height=self.height)


def _field_errors(exc: PydanticValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for error in exc.errors():
        loc = error.get("loc") or ("request",)
        field = str(loc[0])
        # keep the first problem reported for each field
        errors.setdefault(field, error.get("msg", "Valor inválido."))
    return errors


def parse_chat_request(raw: dict, image: dict | None = None, *,
                       max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
                       allowed_mime_types=DEFAULT_ALLOWED_MIME_TYPES) -> ChatRequest:
    """
    Validate the raw request fields (and optional image) in one pass.

    Raises ValidationError with every failing field when the input is invalid.
    """
    data = dict(raw or {})
    data.pop("image", None)
    if image is not None:
        data["image"] = image
    context = {
        "has_image": image is not None,
        "max_image_bytes": max_image_bytes,
        "allowed_mime_types": tuple(allowed_mime_types),
    }
    try:
        return ChatRequest.model_validate(data, context=context)
    except PydanticValidationError as e:
        raise ValidationError(_field_errors(e)) from e
