"""Notification endpoints."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from telemed.core.exceptions import ForbiddenException
from telemed.dependencies import AdminUser, CurrentUser, NotificationServiceDep
from telemed.schemas.notifications import (
    BulkNotificationCreate,
    BulkOperationResponse,
    NotificationCreate,
    NotificationFilters,
    NotificationListResponse,
    NotificationPriority,
    NotificationRecord,
    NotificationStats,
    NotificationType,
    UnreadCountResponse,
)
from telemed.schemas.users import UserRole

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post(
    "",
    response_model=NotificationRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification",
)
async def create_notification(
    data: NotificationCreate,
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> NotificationRecord:
    """
    Create a notification and deliver it on the requested channels.

    Non-admin users may only notify themselves and always appear as the
    sender. The response carries the delivery outcome of every channel.
    """
    if current_user.role != UserRole.ADMIN:
        if data.recipient_id != current_user.id:
            raise ForbiddenException("You can only create notifications for yourself")
        data = data.model_copy(update={"sender_id": current_user.id})
    elif data.sender_id is None:
        data = data.model_copy(update={"sender_id": current_user.id})

    return await service.create_notification(data)


@router.post(
    "/bulk",
    response_model=list[NotificationRecord],
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification to several users (admin only)",
)
async def create_bulk_notifications(
    data: BulkNotificationCreate,
    admin_user: AdminUser,
    service: NotificationServiceDep,
) -> list[NotificationRecord]:
    """Send the same notification to every listed recipient."""
    if data.sender_id is None:
        data = data.model_copy(update={"sender_id": admin_user.id})
    return await service.create_bulk_notifications(data)


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List my notifications",
)
async def list_notifications(
    current_user: CurrentUser,
    service: NotificationServiceDep,
    notification_type: Annotated[list[NotificationType] | None, Query()] = None,
    priority: NotificationPriority | None = None,
    is_read: bool | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
) -> NotificationListResponse:
    """
    Get the authenticated user's notifications, newest first.

    ``total_count`` honours the filters; ``unread_count`` is the user's
    overall unread badge.
    """
    filters = NotificationFilters(
        notification_type=notification_type,
        priority=priority,
        is_read=is_read,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return await service.list_notifications(current_user.id, filters)


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Unread notification count",
)
async def get_unread_count(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> UnreadCountResponse:
    """Count unread notifications of the authenticated user."""
    return UnreadCountResponse(count=await service.get_unread_count(current_user.id))


@router.get(
    "/stats",
    response_model=NotificationStats,
    summary="Notification statistics",
)
async def get_notification_stats(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> NotificationStats:
    """Totals of the authenticated user's notifications by type and priority."""
    return await service.get_notification_stats(current_user.id)


@router.patch(
    "/mark-all-read",
    response_model=BulkOperationResponse,
    summary="Mark all notifications as read",
)
async def mark_all_as_read(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> BulkOperationResponse:
    """Mark every unread notification of the authenticated user as read."""
    updated = await service.mark_all_as_read(current_user.id)
    return BulkOperationResponse(affected=updated, message="All notifications marked as read")


@router.get(
    "/{notification_id}",
    response_model=NotificationRecord,
    summary="Get a notification",
)
async def get_notification(
    notification_id: UUID,
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> NotificationRecord:
    """Get one notification with its delivery status."""
    return await service.get_notification(notification_id, current_user.id)


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationRecord,
    summary="Mark a notification as read",
)
async def mark_as_read(
    notification_id: UUID,
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> NotificationRecord:
    """Mark a notification as read; repeating the call is harmless."""
    return await service.mark_as_read(notification_id, current_user.id)


@router.delete(
    "/{notification_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a notification",
)
async def delete_notification(
    notification_id: UUID,
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> None:
    """Delete one of the authenticated user's notifications."""
    await service.delete_notification(notification_id, current_user.id)


@router.delete(
    "",
    response_model=BulkOperationResponse,
    summary="Delete all my notifications",
)
async def delete_all_notifications(
    current_user: CurrentUser,
    service: NotificationServiceDep,
) -> BulkOperationResponse:
    """Delete every notification of the authenticated user."""
    deleted = await service.delete_all_notifications(current_user.id)
    return BulkOperationResponse(affected=deleted, message="All notifications deleted")
