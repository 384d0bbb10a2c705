from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gitmemo.api.deps import get_cache
from gitmemo.database import get_db
from gitmemo.services import db_service
from gitmemo.services.cache import StorageCache


router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health(
    db: AsyncSession = Depends(get_db),
    cache: StorageCache = Depends(get_cache),
):
    """Database reachability and cache occupancy."""
    await db_service.ping(db)
    stats = cache.get_stats()
    return {
        "status": "ok",
        "database": "ok",
        "cache": {"size": stats["size"], "bytes": cache.storage.used_bytes()},
    }
