"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from telemed.core.clock import utc_now
from telemed.models.base import UTCDateTime, metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Participants
    Column(
        "patient_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    ),
    Column(
        "doctor_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    ),
    # Scheduling
    Column("appointment_at", UTCDateTime, nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("consultation_type", String(20), nullable=False),
    Column("status", String(20), nullable=False, server_default=text("'scheduled'")),
    # Clinical context
    Column("symptoms", Text, nullable=False),
    Column("specialization", Text, nullable=False),
    Column("fee", Numeric(10, 2, asdecimal=False), nullable=False),
    Column("notes", Text, nullable=True),
    Column("prescription", JSON(none_as_null=True), nullable=True),
    Column("rating", JSON(none_as_null=True), nullable=True),
    # Payment
    Column("payment_status", String(20), nullable=False, server_default=text("'pending'")),
    Column("payment_id", Text, nullable=True),
    # Video call session, present only while a video appointment is confirmed
    Column("video_call_id", Text, nullable=True),
    Column("video_call_url", Text, nullable=True),
    # Cancellation
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_at", UTCDateTime, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, default=utc_now),
    Column("updated_at", UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'in-progress', 'completed', 'cancelled', 'no-show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "consultation_type IN ('in-person', 'video', 'phone')",
        name="appointments_consultation_type_check",
    ),
    CheckConstraint(
        "payment_status IN ('pending', 'paid', 'refunded')",
        name="appointments_payment_status_check",
    ),
    CheckConstraint(
        "duration_minutes BETWEEN 15 AND 120",
        name="appointments_duration_check",
    ),
    CheckConstraint("fee >= 0", name="appointments_fee_check"),
    Index("idx_appointments_doctor_time", "doctor_id", "appointment_at"),
    Index("idx_appointments_patient_time", "patient_id", "appointment_at"),
    Index("idx_appointments_status", "status"),
)
