"""User directory table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from telemed.core.clock import utc_now
from telemed.models.base import UTCDateTime, metadata

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", Text, nullable=False, index=True),
    Column("full_name", Text, nullable=True),
    Column("phone", String(20), nullable=True),
    Column("role", String(20), nullable=False, server_default=text("'patient'")),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, default=utc_now),
    Column("updated_at", UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now),
    CheckConstraint(
        "role IN ('patient', 'doctor', 'admin')",
        name="users_role_check",
    ),
)
