"""Scheduled job triggers, authenticated by the admin secret."""

from typing import Annotated

from fastapi import APIRouter, Query

from telemed.dependencies import AdminSecret, AppointmentServiceDep, NotificationServiceDep
from telemed.schemas.notifications import BulkOperationResponse, MaintenanceNotificationRequest

router = APIRouter(prefix="/jobs", tags=["Jobs"], dependencies=[AdminSecret])


@router.post(
    "/send-reminders",
    response_model=BulkOperationResponse,
    summary="Send appointment reminders",
)
async def send_reminders(
    service: AppointmentServiceDep,
    window_hours: Annotated[int | None, Query(ge=1, le=168)] = None,
) -> BulkOperationResponse:
    """
    Remind both parties of every booked appointment in the coming window.

    Calling this twice sends the reminders twice.
    """
    sent = await service.send_reminders(window_hours)
    return BulkOperationResponse(affected=sent, message=f"{sent} reminders sent")


@router.post(
    "/cleanup-expired-notifications",
    response_model=BulkOperationResponse,
    summary="Delete expired notifications",
)
async def cleanup_expired_notifications(
    service: NotificationServiceDep,
) -> BulkOperationResponse:
    """Delete every notification past its expiry."""
    deleted = await service.cleanup_expired_notifications()
    return BulkOperationResponse(affected=deleted, message=f"{deleted} notifications deleted")


@router.post(
    "/maintenance-notification",
    response_model=BulkOperationResponse,
    summary="Announce scheduled maintenance",
)
async def send_maintenance_notification(
    data: MaintenanceNotificationRequest,
    service: NotificationServiceDep,
) -> BulkOperationResponse:
    """Notify every active user, minus excluded roles, of upcoming maintenance."""
    notified = await service.send_maintenance_notification(
        data.message, data.scheduled_for, data.exclude_roles
    )
    return BulkOperationResponse(affected=notified, message=f"{notified} users notified")
