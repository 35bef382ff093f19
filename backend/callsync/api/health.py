import redis
from fastapi import APIRouter, HTTPException
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from callsync.core.config import settings
from callsync.core.database import SessionLocal

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/ready")
def ready():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    finally:
        db.close()
    if settings.distributed_locks:
        try:
            redis.Redis.from_url(settings.redis_url).ping()
        except RedisError as exc:
            raise HTTPException(status_code=503, detail="Redis unavailable") from exc
    return {"status": "ready"}
