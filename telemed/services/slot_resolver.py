"""Doctor slot conflict detection and daily availability."""

from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from uuid import UUID

from telemed.core.clock import utc_now
from telemed.core.exceptions import ValidationException
from telemed.repositories.appointments import AppointmentRepository
from telemed.schemas.appointments import AppointmentRecord, DoctorAvailability

# Half-hour consultation starts offered every day, in UTC.
DEFAULT_SLOT_TEMPLATE: tuple[str, ...] = (
    "09:00", "09:30", "10:00", "10:30", "11:00", "11:30",
    "14:00", "14:30", "15:00", "15:30", "16:00", "16:30",
    "17:00", "17:30", "18:00", "18:30",
)  # fmt: skip

SLOT_WIDTH = timedelta(minutes=30)
CONFLICT_WINDOW = timedelta(minutes=30)
# Longest allowed appointment; bounds how far back a booking can spill into a day.
MAX_DURATION = timedelta(minutes=120)


class SlotResolver:
    """Answers whether a doctor is free at a given time."""

    def __init__(
        self,
        appointments: AppointmentRepository,
        clock: Callable[[], datetime] = utc_now,
        slot_template: tuple[str, ...] = DEFAULT_SLOT_TEMPLATE,
    ):
        """Initialize resolver with the appointment store."""
        self.appointments = appointments
        self.clock = clock
        self.slot_template = slot_template

    async def find_conflict(
        self,
        doctor_id: UUID,
        candidate_at: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> AppointmentRecord | None:
        """
        First booked appointment of the doctor within 30 minutes of ``candidate_at``.

        Both window edges are inclusive. Only scheduled and confirmed
        appointments count.
        """
        return await self.appointments.find_first_active_between(
            doctor_id,
            candidate_at - CONFLICT_WINDOW,
            candidate_at + CONFLICT_WINDOW,
            exclude_id=exclude_appointment_id,
        )

    async def available_slots(self, doctor_id: UUID, day: date) -> DoctorAvailability:
        """
        Template slots of ``day`` not overlapping any booked appointment.

        On the current day, slots that have already started are left out.

        Raises:
            ValidationException: If ``day`` is in the past
        """
        now = self.clock()
        today = now.astimezone(UTC).date()
        if day < today:
            raise ValidationException("Cannot check availability for past dates")

        day_start = datetime.combine(day, time.min, tzinfo=UTC)
        day_end = day_start + timedelta(days=1)
        booked = await self.appointments.list_active_for_doctor_between(
            doctor_id, day_start - MAX_DURATION, day_end
        )

        available: list[str] = []
        taken: list[str] = []
        for label in self.slot_template:
            slot_start = datetime.combine(day, time.fromisoformat(label), tzinfo=UTC)
            slot_end = slot_start + SLOT_WIDTH

            if day == today and slot_start <= now:
                continue

            overlaps = any(
                slot_start < appointment.end_at and slot_end > appointment.appointment_at
                for appointment in booked
            )
            if overlaps:
                taken.append(label)
            else:
                available.append(label)

        return DoctorAvailability(
            doctor_id=doctor_id,
            date=day,
            all_slots=list(self.slot_template),
            available_slots=available,
            booked_slots=taken,
        )
