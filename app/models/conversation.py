from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Stored documents and API payloads use camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)


class UserInfo(CamelModel):
    """Biometric data captured once when a session starts."""
    name: str
    age: int  # years
    weight: float  # kg
    height: int  # cm


class TextPart(CamelModel):
    text: str


class InlineData(CamelModel):
    mime_type: str = Field(alias="mimeType")
    data: str  # base64 payload


class ImagePart(CamelModel):
    inline_data: InlineData = Field(alias="inlineData")


Part = Union[TextPart, ImagePart]


class Turn(CamelModel):
    role: Literal["user", "model"]
    parts: list[Part]

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class Conversation(CamelModel):
    session_id: str = Field(alias="sessionId")
    user_info: UserInfo = Field(alias="userInfo")
    history: list[Turn] = Field(default_factory=list)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    def summary(self) -> "ConversationSummary":
        return ConversationSummary(
            session_id=self.session_id,
            user_info=self.user_info,
            message_count=len(self.history),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class ConversationSummary(CamelModel):
    """Read-only view returned by GET /api/chat."""
    session_id: str = Field(alias="sessionId")
    user_info: UserInfo = Field(alias="userInfo")
    message_count: int = Field(alias="messageCount")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class ChatReply(CamelModel):
    reply: str
    session_id: str = Field(alias="sessionId")
    timestamp: datetime
