"""Per-doctor locks around conflict-check-then-insert."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol
from uuid import UUID

import redis.asyncio as redis
import structlog
from redis.exceptions import LockError

from telemed.core.exceptions import ConflictException

logger = structlog.get_logger(__name__)


class BookingLock(Protocol):
    """Serializes bookings of one doctor."""

    def hold(self, doctor_id: UUID) -> AbstractAsyncContextManager[None]:
        """Async context manager held while a booking is checked and stored."""
        ...


class LocalBookingLock:
    """In-process lock; correct for a single worker only."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._holders: dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, doctor_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(doctor_id, asyncio.Lock())
        self._holders[doctor_id] = self._holders.get(doctor_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Forget the lock once nobody holds or awaits it.
            self._holders[doctor_id] -= 1
            if not self._holders[doctor_id]:
                del self._holders[doctor_id]
                del self._locks[doctor_id]


class RedisBookingLock:
    """Redis lock shared by every worker."""

    def __init__(self, client: redis.Redis, timeout: float = 10, blocking_timeout: float = 5):
        """Initialize with a Redis client and lock timeouts in seconds."""
        self.client = client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @staticmethod
    def key_for(doctor_id: UUID) -> str:
        return f"booking:doctor:{doctor_id}"

    @asynccontextmanager
    async def hold(self, doctor_id: UUID) -> AsyncIterator[None]:
        lock = self.client.lock(
            self.key_for(doctor_id),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        if not await lock.acquire():
            logger.warning("booking_lock_busy", doctor_id=str(doctor_id))
            raise ConflictException("Doctor schedule is being updated, please retry")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("booking_lock_expired", doctor_id=str(doctor_id))
