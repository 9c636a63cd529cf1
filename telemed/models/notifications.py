"""Notification models for tracking notification history and per-channel delivery status."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)

from telemed.core.clock import utc_now
from telemed.models.base import UTCDateTime, metadata

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "recipient_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    ),
    Column("sender_id", Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    Column("notification_type", String(50), nullable=False),
    Column("priority", String(20), nullable=False, server_default=text("'medium'")),
    Column("title", String(200), nullable=False),
    Column("message", String(1000), nullable=False),
    Column("data", JSON(none_as_null=True), nullable=True),
    Column("channels", JSON, nullable=False),
    Column("is_read", Boolean, nullable=False, server_default=text("false")),
    Column("read_at", UTCDateTime, nullable=True),
    Column("action_url", Text, nullable=True),
    Column("action_text", String(50), nullable=True),
    Column("expires_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utc_now),
    Column("updated_at", UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now),
    CheckConstraint(
        "notification_type IN ('appointment_scheduled', 'appointment_confirmed', "
        "'appointment_cancelled', 'appointment_reminder', 'payment_received', "
        "'payment_failed', 'prescription_ready', 'doctor_verified', 'account_activated', "
        "'video_call_starting', 'system_maintenance', 'general')",
        name="notifications_type_check",
    ),
    CheckConstraint(
        "priority IN ('low', 'medium', 'high', 'urgent')",
        name="notifications_priority_check",
    ),
    Index("idx_notifications_recipient_read", "recipient_id", "is_read", "created_at"),
    Index("idx_notifications_type", "notification_type"),
    Index("idx_notifications_priority", "priority"),
    Index("idx_notifications_expires", "expires_at"),
)

notification_deliveries = Table(
    "notification_deliveries",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "notification_id",
        Uuid,
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("channel", String(10), nullable=False),
    Column("delivered", Boolean, nullable=False),
    Column("delivered_at", UTCDateTime, nullable=True),
    Column("error", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, default=utc_now),
    CheckConstraint(
        "channel IN ('in_app', 'email', 'sms', 'push')",
        name="notification_deliveries_channel_check",
    ),
    UniqueConstraint("notification_id", "channel", name="unique_notification_channel"),
    Index("idx_notification_deliveries_notification", "notification_id"),
)
