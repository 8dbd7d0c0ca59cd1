from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.deps import get_connection_manager
from app.services.mongo_service import MongoConnectionManager

router = APIRouter(prefix="/api/health")


@router.get("")
async def health(mongo: MongoConnectionManager = Depends(get_connection_manager)):
    """Liveness plus a database ping; never rate limited."""
    database_ok = await mongo.ping()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
