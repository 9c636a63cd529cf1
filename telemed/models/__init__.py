"""Database models."""

from telemed.models.appointments import appointments
from telemed.models.base import metadata
from telemed.models.notifications import notification_deliveries, notifications
from telemed.models.users import users

__all__ = [
    "appointments",
    "metadata",
    "notification_deliveries",
    "notifications",
    "users",
]
