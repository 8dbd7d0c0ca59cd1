from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api import chat, health
from app.config import get_settings
from app.middleware.security import SecurityHeadersMiddleware
from app.services.gemini_service import GeminiChatClient
from app.services.mongo_service import MongoConnectionManager
from app.services.rate_limiter import RateLimiter
from app.services.session_store import ConversationStore
from app.utils.errors import InternalError, NutriBotError
from app.utils.logger import logger, setup_logging

STATIC_DIR = Path(__file__).resolve().parent / "static"

# -----------------------------------------------------------------------------
# Load configuration (YAML + environment) and set up logging
# -----------------------------------------------------------------------------
settings = get_settings()
setup_logging(settings.logging)


# -----------------------------------------------------------------------------
# Startup / shutdown
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"✅ {settings.app_name} is starting up! (environment: {settings.environment})")
    yield
    logger.info(f"👋 {settings.app_name} is shutting down")
    await app.state.mongo.close()


# -----------------------------------------------------------------------------
# Initialize FastAPI
# -----------------------------------------------------------------------------
app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# -----------------------------------------------------------------------------
# Shared services
# -----------------------------------------------------------------------------
app.state.settings = settings
app.state.rate_limiter = RateLimiter.from_config(settings.rate_limit)
app.state.mongo = MongoConnectionManager.from_config(settings.mongodb_uri, settings.mongo)
app.state.conversation_store = ConversationStore(app.state.mongo)
app.state.chat_client = GeminiChatClient.from_config(settings.gemini_api_key, settings.gemini)

# -----------------------------------------------------------------------------
# Security headers & CORS
# -----------------------------------------------------------------------------
app.add_middleware(
    SecurityHeadersMiddleware,
    allowed_origins=settings.allowed_origins,
    production=settings.is_production,
)


# -----------------------------------------------------------------------------
# Error handling
# -----------------------------------------------------------------------------
def error_response(request: Request, exc: NutriBotError) -> JSONResponse:
    content = exc.payload()
    if not request.app.state.settings.is_production and exc.detail:
        content["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(NutriBotError)
async def nutribot_error_handler(request: Request, exc: NutriBotError):
    return error_response(request, exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return error_response(request, InternalError(detail=str(exc)))


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
app.include_router(chat.router, tags=["Chat"])
app.include_router(health.router, tags=["Status"])
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.get("/", include_in_schema=False)
async def root():
    return FileResponse(STATIC_DIR / "index.html")


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=not settings.is_production)
