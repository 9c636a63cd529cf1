"""Appointment store."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from telemed.models.appointments import appointments
from telemed.schemas.appointments import (
    AppointmentFilters,
    AppointmentRecord,
    AppointmentStatus,
)

# Statuses that occupy a doctor's time slot.
BOOKED_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)


class AppointmentRepository:
    """Persistence for appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get(self, appointment_id: UUID) -> AppointmentRecord | None:
        """Fetch an appointment by id."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return AppointmentRecord.model_validate(dict(row._mapping))

    async def create(self, values: dict[str, Any]) -> AppointmentRecord:
        """Insert an appointment and return the stored row."""
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.db.execute(stmt)
        await self.db.commit()

        row = result.fetchone()
        return AppointmentRecord.model_validate(dict(row._mapping))

    async def update(self, appointment_id: UUID, values: dict[str, Any]) -> AppointmentRecord:
        """Apply ``values`` to an appointment and return the updated row."""
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(**values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        row = result.fetchone()
        return AppointmentRecord.model_validate(dict(row._mapping))

    async def find_first_active_between(
        self,
        doctor_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: UUID | None = None,
    ) -> AppointmentRecord | None:
        """First booked appointment of a doctor starting within [start, end]."""
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.appointment_at >= start,
            appointments.c.appointment_at <= end,
            appointments.c.status.in_(BOOKED_STATUSES),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.appointment_at)
            .limit(1)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            return None
        return AppointmentRecord.model_validate(dict(row._mapping))

    async def list_active_for_doctor_between(
        self, doctor_id: UUID, start: datetime, end: datetime
    ) -> list[AppointmentRecord]:
        """Booked appointments of a doctor starting within [start, end]."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.doctor_id == doctor_id,
                    appointments.c.appointment_at >= start,
                    appointments.c.appointment_at <= end,
                    appointments.c.status.in_(BOOKED_STATUSES),
                )
            )
            .order_by(appointments.c.appointment_at)
        )
        result = await self.db.execute(stmt)
        return [AppointmentRecord.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def list_active_between(self, start: datetime, end: datetime) -> list[AppointmentRecord]:
        """Booked appointments of every doctor starting within [start, end]."""
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.appointment_at >= start,
                    appointments.c.appointment_at <= end,
                    appointments.c.status.in_(BOOKED_STATUSES),
                )
            )
            .order_by(appointments.c.appointment_at)
        )
        result = await self.db.execute(stmt)
        return [AppointmentRecord.model_validate(dict(row._mapping)) for row in result.fetchall()]

    def _participant_column(self, role: str) -> Any:
        return appointments.c.doctor_id if role == "doctor" else appointments.c.patient_id

    async def list_for_user(
        self, user_id: UUID, role: str, filters: AppointmentFilters
    ) -> tuple[list[AppointmentRecord], int]:
        """One page of a participant's appointments, latest first, with the match count."""
        conditions = [self._participant_column(role) == user_id]

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.consultation_type:
            conditions.append(
                appointments.c.consultation_type == filters.consultation_type.value
            )

        if filters.from_date:
            conditions.append(appointments.c.appointment_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_at <= filters.to_date)

        count_stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.appointment_at.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        items = [AppointmentRecord.model_validate(dict(row._mapping)) for row in result.fetchall()]

        return items, total

    async def count_by_status(self, user_id: UUID, role: str) -> dict[str, int]:
        """Appointment counts of a participant grouped by status."""
        stmt = (
            select(appointments.c.status, func.count())
            .where(self._participant_column(role) == user_id)
            .group_by(appointments.c.status)
        )
        result = await self.db.execute(stmt)
        return {status: count for status, count in result.fetchall()}

    async def ratings_for_doctor(self, doctor_id: UUID) -> list[dict[str, Any]]:
        """Rating sub-documents of a doctor's rated appointments."""
        stmt = select(appointments.c.rating).where(
            and_(
                appointments.c.doctor_id == doctor_id,
                appointments.c.rating.is_not(None),
            )
        )
        result = await self.db.execute(stmt)
        return [rating for rating in result.scalars().all() if rating]
