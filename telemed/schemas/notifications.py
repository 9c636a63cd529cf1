"""Notification schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000
ACTION_TEXT_MAX_LENGTH = 50


class NotificationType(str, Enum):
    """Kinds of domain events a notification can describe."""

    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_REMINDER = "appointment_reminder"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_FAILED = "payment_failed"
    PRESCRIPTION_READY = "prescription_ready"
    DOCTOR_VERIFIED = "doctor_verified"
    ACCOUNT_ACTIVATED = "account_activated"
    VIDEO_CALL_STARTING = "video_call_starting"
    SYSTEM_MAINTENANCE = "system_maintenance"
    GENERAL = "general"


class NotificationPriority(str, Enum):
    """Notification priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationChannel(str, Enum):
    """Delivery media a notification can be fanned out to."""

    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


def _validate_action_url(value: str | None) -> str | None:
    """Accept absolute URLs or app-relative paths."""
    if value is None or value == "":
        return None
    if value.startswith("/"):
        return value
    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        return value
    raise ValueError("Invalid action URL")


class NotificationContent(BaseModel):
    """Fields shared by single and bulk notification requests."""

    sender_id: UUID | None = None
    notification_type: NotificationType = NotificationType.GENERAL
    priority: NotificationPriority = NotificationPriority.MEDIUM
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    data: dict[str, Any] | None = Field(default=None, description="Client-side context payload")
    action_url: str | None = None
    action_text: str | None = Field(default=None, max_length=ACTION_TEXT_MAX_LENGTH)
    expires_at: datetime | None = None
    channels: list[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.IN_APP],
        min_length=1,
        description="At least one delivery channel",
    )

    @field_validator("action_url")
    @classmethod
    def validate_action_url(cls, v: str | None) -> str | None:
        """Validate action URL format."""
        return _validate_action_url(v)

    @field_validator("channels")
    @classmethod
    def dedupe_channels(cls, v: list[NotificationChannel]) -> list[NotificationChannel]:
        """Drop repeated channels, keeping first-seen order."""
        return list(dict.fromkeys(v))


class NotificationCreate(NotificationContent):
    """Schema for creating a notification for one recipient."""

    recipient_id: UUID = Field(..., description="User ID to notify")


class BulkNotificationCreate(NotificationContent):
    """Schema for sending the same notification to several recipients."""

    recipient_ids: list[UUID] = Field(..., min_length=1)


class MaintenanceNotificationRequest(BaseModel):
    """Schema for a system-wide maintenance announcement."""

    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
    scheduled_for: datetime
    exclude_roles: list[str] = Field(default_factory=list)


class ChannelDeliveryStatus(BaseModel):
    """Outcome of one delivery attempt on one channel."""

    delivered: bool
    delivered_at: datetime | None = None
    error: str | None = None


class NotificationRecord(BaseModel):
    """Schema for a stored notification with its delivery outcomes."""

    id: UUID
    recipient_id: UUID
    sender_id: UUID | None = None
    notification_type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    data: dict[str, Any] | None = None
    channels: list[NotificationChannel]
    delivery_status: dict[NotificationChannel, ChannelDeliveryStatus] = Field(
        default_factory=dict
    )
    is_read: bool = False
    read_at: datetime | None = None
    action_url: str | None = None
    action_text: str | None = None
    expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def delivered_channels(self) -> list[NotificationChannel]:
        """Channels on which delivery succeeded."""
        return [
            channel
            for channel in self.channels
            if channel in self.delivery_status and self.delivery_status[channel].delivered
        ]

    def is_expired_at(self, now: datetime) -> bool:
        """Whether the record is past its expiry at ``now``."""
        return self.expires_at is not None and self.expires_at < now


class NotificationFilters(BaseModel):
    """Schema for notification filtering and pagination."""

    notification_type: list[NotificationType] | None = None
    priority: NotificationPriority | None = None
    is_read: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class NotificationListResponse(BaseModel):
    """Paginated notifications.

    ``total_count`` honours the filters; ``unread_count`` covers every
    notification of the recipient so it can drive a badge.
    """

    notifications: list[NotificationRecord]
    total_count: int
    unread_count: int
    total_pages: int
    current_page: int
    page_size: int


class UnreadCountResponse(BaseModel):
    """Schema for unread counter."""

    count: int


class NotificationStats(BaseModel):
    """Schema for notification statistics."""

    total: int
    unread: int
    by_type: dict[str, int]
    by_priority: dict[str, int]


class BulkOperationResponse(BaseModel):
    """Schema for bulk mutations."""

    affected: int
    message: str
