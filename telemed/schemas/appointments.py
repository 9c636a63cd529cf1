"""Appointment schemas for request/response validation."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, computed_field

from telemed.core.clock import utc_now

CANCELLATION_NOTICE = timedelta(hours=24)


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class ConsultationType(str, Enum):
    """How the consultation takes place."""

    IN_PERSON = "in-person"
    VIDEO = "video"
    PHONE = "phone"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


ACTIVE_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment."""

    doctor_id: UUID
    appointment_at: datetime
    duration_minutes: int = Field(default=30, ge=15, le=120)
    consultation_type: ConsultationType
    symptoms: str = Field(..., min_length=10, max_length=1000)
    specialization: str = Field(..., min_length=1, max_length=200)
    fee: float = Field(..., ge=0)
    notes: str | None = Field(None, max_length=1000)


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    notes: str | None = Field(None, max_length=1000)


class AppointmentCancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field(..., min_length=1, max_length=500)


class Medication(BaseModel):
    """A single prescribed medication."""

    name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    frequency: str = Field(..., min_length=1)
    duration: str = Field(..., min_length=1)
    instructions: str | None = None


class PrescriptionCreate(BaseModel):
    """Schema for attaching a prescription."""

    medications: list[Medication] = Field(..., min_length=1)
    diagnosis: str = Field(..., min_length=1)
    follow_up_date: date | None = None
    additional_notes: str | None = None


class RatingCreate(BaseModel):
    """Schema for rating a completed appointment."""

    rating: int = Field(..., ge=1, le=5)
    review: str | None = Field(None, max_length=1000)


class PaymentUpdate(BaseModel):
    """Schema for recording a payment outcome."""

    payment_status: PaymentStatus
    payment_id: str | None = Field(None, max_length=200)


class AppointmentRecord(BaseModel):
    """Schema for a stored appointment."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_at: datetime
    duration_minutes: int
    consultation_type: ConsultationType
    status: AppointmentStatus
    symptoms: str
    specialization: str
    fee: float
    notes: str | None = None
    prescription: dict[str, Any] | None = None
    rating: dict[str, Any] | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: str | None = None
    video_call_id: str | None = None
    video_call_url: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def end_at(self) -> datetime:
        """When the appointment is due to finish."""
        return self.appointment_at + timedelta(minutes=self.duration_minutes)

    def can_be_cancelled_at(self, now: datetime) -> bool:
        """Cancellable while not started and more than 24 hours away."""
        if self.status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
            return False
        return self.appointment_at - now > CANCELLATION_NOTICE

    def is_upcoming_at(self, now: datetime) -> bool:
        """Still ahead of ``now`` and not closed."""
        return self.appointment_at > now and self.status in (
            AppointmentStatus.SCHEDULED,
            AppointmentStatus.CONFIRMED,
        )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_be_cancelled(self) -> bool:
        """Whether the appointment can be cancelled right now."""
        return self.can_be_cancelled_at(utc_now())

    def participant_ids(self) -> tuple[UUID, UUID]:
        """Patient and doctor ids."""
        return self.patient_id, self.doctor_id


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    consultation_type: ConsultationType | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    total_pages: int
    items: list[AppointmentRecord]


class AppointmentStats(BaseModel):
    """Appointment counters for one participant."""

    total: int
    by_status: dict[str, int]
    upcoming: int
    completed: int
    cancelled: int
    average_rating: float | None = None


class DoctorAvailability(BaseModel):
    """Free consultation slots of a doctor on one day."""

    doctor_id: UUID
    date: date
    all_slots: list[str]
    available_slots: list[str]
    booked_slots: list[str]
