# app/api/deps.py
from fastapi import Request

from app.config import Settings
from app.services.gemini_service import GeminiChatClient
from app.services.mongo_service import MongoConnectionManager
from app.services.rate_limiter import RateLimiter
from app.services.session_store import ConversationStore

# Service objects are built once in app.main and kept on app.state;
# tests swap them through app.dependency_overrides.


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_connection_manager(request: Request) -> MongoConnectionManager:
    return request.app.state.mongo


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def get_chat_client(request: Request) -> GeminiChatClient:
    return request.app.state.chat_client
