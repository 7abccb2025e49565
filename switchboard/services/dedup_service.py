"""Inbound event idempotency.

Redis `SET NX EX` is the fast path; the `processed_events` row flushed in the
same transaction as the inbound Message is the durable record. Redis being
down only costs the fast path.
"""

from datetime import datetime
from typing import Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from switchboard.logging_config import get_logger
from switchboard.models import ProcessedEvent
from switchboard.services.clock import utcnow

logger = get_logger("dedup_service")

KEY_PREFIX = "switchboard:dedup:"


def get_redis_client(redis_url: str, socket_timeout_seconds: float):
    return redis_async.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=socket_timeout_seconds,
        socket_timeout=socket_timeout_seconds,
    )


class EventDeduplicator:
    def __init__(self, redis_client=None, ttl_seconds: int = 86400):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def claim(self, db: Session, event_id: str, now: Optional[datetime] = None) -> bool:
        """True if this is the first sighting of `event_id`.

        The durable row is flushed, not committed: it lands together with the
        caller's unit of work or not at all.
        """
        if self.redis is not None:
            try:
                was_set = await self.redis.set(f"{KEY_PREFIX}{event_id}", "1", ex=self.ttl_seconds, nx=True)
                if not was_set:
                    logger.info("Duplicate event (redis)", extra={"context": {"event_id": event_id}})
                    return False
            except RedisError as e:
                logger.warning(f"Dedup redis unavailable, falling back to DB: {e}")

        if db.get(ProcessedEvent, event_id) is not None:
            logger.info("Duplicate event (DB)", extra={"context": {"event_id": event_id}})
            return False

        db.add(ProcessedEvent(event_id=event_id, received_at=now or utcnow()))
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Duplicate event (DB race)", extra={"context": {"event_id": event_id}})
            return False
        return True

    async def release(self, event_id: str) -> None:
        """Forget a redis claim whose unit of work failed, so redelivery is processed."""
        if self.redis is None:
            return
        try:
            await self.redis.delete(f"{KEY_PREFIX}{event_id}")
        except RedisError as e:
            logger.warning(f"Dedup redis release failed: {e}", extra={"context": {"event_id": event_id}})

    async def close(self) -> None:
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except RedisError as e:
                logger.warning(f"Dedup redis close failed: {e}")


def purge_processed_events(db: Session, older_than: datetime) -> int:
    result = db.execute(delete(ProcessedEvent).where(ProcessedEvent.received_at < older_than))
    db.commit()
    purged = result.rowcount or 0
    if purged:
        logger.info(f"Purged {purged} processed events", extra={"context": {"older_than": older_than}})
    return purged
