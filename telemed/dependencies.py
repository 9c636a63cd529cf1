"""FastAPI dependencies."""

import secrets
from collections.abc import Callable
from datetime import datetime
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from telemed.config import settings
from telemed.core.clock import utc_now
from telemed.core.redis_client import get_redis_client
from telemed.core.security import decode_access_token
from telemed.database import get_db
from telemed.repositories.appointments import AppointmentRepository
from telemed.repositories.notifications import NotificationRepository
from telemed.repositories.users import UserDirectory
from telemed.schemas.users import UserRecord, UserRole
from telemed.services.appointment_service import AppointmentService
from telemed.services.booking_lock import BookingLock, LocalBookingLock, RedisBookingLock
from telemed.services.channels import ChannelRegistry, build_channel_registry
from telemed.services.notification_service import NotificationService
from telemed.services.slot_resolver import SlotResolver
from telemed.services.video_call_service import VideoCallProvider, VideoCallService

# Security
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _credentials_error()

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise _credentials_error()

    try:
        return UUID(user_id_str)
    except ValueError:
        raise _credentials_error("Invalid user ID format")


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserRecord:
    """
    Load the authenticated user from the directory.

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserDirectory(db).find_by_id(user_id)

    if user is None:
        raise _credentials_error("User not found")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def require_admin(
    current_user: Annotated[UserRecord, Depends(get_current_user)],
) -> UserRecord:
    """Ensure the authenticated user has the admin role."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def require_admin_secret(
    x_admin_secret: Annotated[str, Header(description="Admin secret key")],
) -> None:
    """Authenticate job and maintenance calls by the shared admin secret."""
    if not secrets.compare_digest(
        x_admin_secret.encode(), settings.admin_notification_secret.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin secret key",
        )


def get_clock() -> Callable[[], datetime]:
    """Time source for services."""
    return utc_now


@lru_cache
def get_channel_registry() -> ChannelRegistry:
    """Process-wide channel senders."""
    return build_channel_registry(settings)


@lru_cache
def get_video_call_service() -> VideoCallProvider:
    """Process-wide video call provider."""
    return VideoCallService.from_settings(settings)


@lru_cache
def get_booking_lock() -> BookingLock:
    """Booking lock for the configured backend."""
    if settings.booking_lock_backend == "redis":
        return RedisBookingLock(
            get_redis_client(),
            timeout=settings.booking_lock_timeout_seconds,
        )
    return LocalBookingLock()


async def get_notification_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    channels: Annotated[ChannelRegistry, Depends(get_channel_registry)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> NotificationService:
    """Notification service bound to the request's session."""
    return NotificationService(
        repository=NotificationRepository(db),
        channels=channels,
        users=UserDirectory(db),
        clock=clock,
    )


async def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifications: Annotated[NotificationService, Depends(get_notification_service)],
    video_calls: Annotated[VideoCallProvider, Depends(get_video_call_service)],
    booking_lock: Annotated[BookingLock, Depends(get_booking_lock)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> AppointmentService:
    """Appointment service bound to the request's session."""
    repository = AppointmentRepository(db)
    return AppointmentService(
        appointments=repository,
        users=UserDirectory(db),
        notifications=notifications,
        slots=SlotResolver(repository, clock=clock),
        video_calls=video_calls,
        booking_lock=booking_lock,
        clock=clock,
    )


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]
CurrentUser = Annotated[UserRecord, Depends(get_current_user)]
AdminUser = Annotated[UserRecord, Depends(require_admin)]
AdminSecret = Depends(require_admin_secret)
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
