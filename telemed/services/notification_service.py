"""Notification service: record creation, channel fan-out and inbox operations."""

import asyncio
import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError

from telemed.config import settings
from telemed.core.clock import utc_now
from telemed.core.exceptions import NotFoundException, ValidationException
from telemed.repositories.notifications import NotificationRepository
from telemed.repositories.users import UserDirectory
from telemed.schemas.notifications import (
    BulkNotificationCreate,
    ChannelDeliveryStatus,
    NotificationChannel,
    NotificationCreate,
    NotificationFilters,
    NotificationListResponse,
    NotificationPriority,
    NotificationRecord,
    NotificationStats,
    NotificationType,
)
from telemed.schemas.users import UserRecord
from telemed.services.channels import ChannelRegistry

logger = structlog.get_logger(__name__)


class NotificationService:
    """Creates notifications, fans them out to their channels and serves the inbox."""

    def __init__(
        self,
        repository: NotificationRepository,
        channels: ChannelRegistry,
        users: UserDirectory | None = None,
        clock: Callable[[], datetime] = utc_now,
        expiry_days: int | None = None,
    ):
        """Initialize service with its store, channel registry and user lookup."""
        self.repository = repository
        self.channels = channels
        self.users = users
        self.clock = clock
        self.expiry_days = (
            expiry_days if expiry_days is not None else settings.notification_expiry_days
        )

    async def _attempt(
        self,
        channel: NotificationChannel,
        notification: NotificationRecord,
        recipient: UserRecord | None,
    ) -> ChannelDeliveryStatus:
        sender = self.channels.get(channel)
        try:
            if sender is None:
                raise LookupError(f"No sender registered for channel {channel.value}")
            await sender.send(notification, recipient)
        except Exception as e:
            logger.warning(
                "notification_channel_failed",
                notification_id=str(notification.id),
                channel=channel.value,
                error=str(e),
            )
            return ChannelDeliveryStatus(delivered=False, delivered_at=self.clock(), error=str(e))

        return ChannelDeliveryStatus(delivered=True, delivered_at=self.clock())

    async def create_notification(self, data: NotificationCreate) -> NotificationRecord:
        """
        Persist a notification and deliver it on every requested channel.

        Each channel is attempted independently; a failing channel is
        recorded on the notification and never raised to the caller.

        Args:
            data: Validated notification content

        Returns:
            The stored notification with its per-channel delivery status

        Raises:
            NotFoundException: If the recipient does not exist
        """
        recipient = None
        if self.users is not None:
            recipient = await self.users.find_by_id(data.recipient_id)
            if recipient is None:
                raise NotFoundException("Recipient not found")

        now = self.clock()
        values = {
            "id": uuid4(),
            "recipient_id": data.recipient_id,
            "sender_id": data.sender_id,
            "notification_type": data.notification_type.value,
            "priority": data.priority.value,
            "title": data.title,
            "message": data.message,
            "data": data.data,
            "channels": [channel.value for channel in data.channels],
            "is_read": False,
            "action_url": data.action_url,
            "action_text": data.action_text,
            "expires_at": data.expires_at or now + timedelta(days=self.expiry_days),
            "created_at": now,
            "updated_at": now,
        }
        notification = await self.repository.create(values)

        results = await asyncio.gather(
            *(self._attempt(channel, notification, recipient) for channel in data.channels)
        )
        outcomes = {
            channel: outcome
            for channel, outcome in zip(data.channels, results, strict=True)
        }
        await self.repository.record_deliveries(notification.id, outcomes)

        logger.info(
            "notification_created",
            notification_id=str(notification.id),
            recipient_id=str(data.recipient_id),
            notification_type=data.notification_type.value,
            delivered=[channel.value for channel, outcome in outcomes.items() if outcome.delivered],
        )

        return notification.model_copy(update={"delivery_status": outcomes})

    async def notify(self, **fields: Any) -> NotificationRecord:
        """Build and create a notification from keyword fields."""
        try:
            data = NotificationCreate(**fields)
        except ValidationError as e:
            raise ValidationException(str(e)) from e
        return await self.create_notification(data)

    async def create_bulk_notifications(
        self, data: BulkNotificationCreate
    ) -> list[NotificationRecord]:
        """Send the same notification to every listed recipient."""
        template = data.model_dump(exclude={"recipient_ids"})
        created = []
        for recipient_id in data.recipient_ids:
            created.append(
                await self.create_notification(
                    NotificationCreate(**template, recipient_id=recipient_id)
                )
            )

        logger.info("bulk_notifications_created", count=len(created))
        return created

    async def send_maintenance_notification(
        self,
        message: str,
        scheduled_for: datetime,
        exclude_roles: list[str] | None = None,
    ) -> int:
        """
        Announce scheduled maintenance to every active user.

        Returns:
            Number of users notified
        """
        if self.users is None:
            raise RuntimeError("User directory required for maintenance notifications")

        recipient_ids = await self.users.list_active_ids(exclude_roles or [])
        if not recipient_ids:
            return 0

        created = await self.create_bulk_notifications(
            BulkNotificationCreate(
                recipient_ids=recipient_ids,
                notification_type=NotificationType.SYSTEM_MAINTENANCE,
                priority=NotificationPriority.HIGH,
                title="Scheduled Maintenance",
                message=message,
                data={"scheduled_for": scheduled_for.isoformat()},
                channels=[NotificationChannel.IN_APP, NotificationChannel.EMAIL],
            )
        )
        logger.info(
            "maintenance_notification_sent",
            recipients=len(created),
            scheduled_for=scheduled_for.isoformat(),
        )
        return len(created)

    async def list_notifications(
        self, user_id: UUID, filters: NotificationFilters
    ) -> NotificationListResponse:
        """
        List notifications with filtering and pagination.

        ``total_count`` follows the filters; ``unread_count`` does not.
        """
        items, total = await self.repository.list_for_recipient(user_id, filters)
        unread = await self.repository.count_unread(user_id)

        return NotificationListResponse(
            notifications=items,
            total_count=total,
            unread_count=unread,
            total_pages=math.ceil(total / filters.page_size) if total else 0,
            current_page=filters.page,
            page_size=filters.page_size,
        )

    async def get_notification(self, notification_id: UUID, user_id: UUID) -> NotificationRecord:
        """Fetch one notification of ``user_id``."""
        notification = await self.repository.get_for_recipient(notification_id, user_id)
        if notification is None:
            raise NotFoundException("Notification not found")
        return notification

    async def mark_as_read(self, notification_id: UUID, user_id: UUID) -> NotificationRecord:
        """Mark a notification read. Repeated calls keep the first ``read_at``."""
        await self.get_notification(notification_id, user_id)
        await self.repository.mark_read(notification_id, user_id, self.clock())
        return await self.get_notification(notification_id, user_id)

    async def mark_all_as_read(self, user_id: UUID) -> int:
        """Mark every unread notification read and return how many changed."""
        updated = await self.repository.mark_all_read(user_id, self.clock())
        logger.info("notifications_marked_read", user_id=str(user_id), count=updated)
        return updated

    async def delete_notification(self, notification_id: UUID, user_id: UUID) -> None:
        """Delete one notification of ``user_id``."""
        if not await self.repository.delete(notification_id, user_id):
            raise NotFoundException("Notification not found")

    async def delete_all_notifications(self, user_id: UUID) -> int:
        """Delete every notification of ``user_id``."""
        return await self.repository.delete_all(user_id)

    async def get_unread_count(self, user_id: UUID) -> int:
        """Unread notifications of ``user_id``, expired ones included."""
        return await self.repository.count_unread(user_id)

    async def get_notification_stats(self, user_id: UUID) -> NotificationStats:
        """Totals and per-type, per-priority breakdowns."""
        return NotificationStats(**await self.repository.stats(user_id))

    async def cleanup_expired_notifications(self) -> int:
        """Delete every expired notification and return how many went."""
        deleted = await self.repository.delete_expired(self.clock())
        logger.info("expired_notifications_cleaned", count=deleted)
        return deleted
