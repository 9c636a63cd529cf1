"""Appointment endpoints."""

from datetime import date, datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from telemed.core.exceptions import ForbiddenException
from telemed.dependencies import AppointmentServiceDep, CurrentUser
from telemed.schemas.appointments import (
    AppointmentCancelRequest,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRecord,
    AppointmentStats,
    AppointmentStatus,
    AppointmentStatusUpdate,
    ConsultationType,
    DoctorAvailability,
    PaymentUpdate,
    PrescriptionCreate,
    RatingCreate,
)
from telemed.schemas.users import UserRole

router = APIRouter()


@router.post(
    "",
    response_model=AppointmentRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """
    Book an appointment for the authenticated patient.

    Fails with 409 when the doctor already has a booking within 30 minutes.
    """
    if current_user.role != UserRole.PATIENT:
        raise ForbiddenException("Only patients can book appointments")
    return await service.create_appointment(current_user.id, data)


@router.get(
    "",
    response_model=AppointmentListResponse,
    summary="List my appointments",
)
async def list_appointments(
    current_user: CurrentUser,
    service: AppointmentServiceDep,
    status_filter: Annotated[AppointmentStatus | None, Query(alias="status")] = None,
    consultation_type: ConsultationType | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 20,
) -> AppointmentListResponse:
    """List appointments where the authenticated user is the patient or the doctor."""
    filters = AppointmentFilters(
        status=status_filter,
        consultation_type=consultation_type,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(current_user, filters)


@router.get(
    "/stats",
    response_model=AppointmentStats,
    summary="Appointment statistics",
)
async def get_appointment_stats(
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentStats:
    """Dashboard counters for the authenticated user."""
    return await service.get_appointment_stats(current_user)


@router.get(
    "/availability/{doctor_id}/{day}",
    response_model=DoctorAvailability,
    summary="Free slots of a doctor on a day",
)
async def get_availability(
    doctor_id: UUID,
    day: date,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> DoctorAvailability:
    """Half-hour slots of ``day`` (UTC) that do not overlap a booked appointment."""
    return await service.get_availability(doctor_id, day)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentRecord,
    summary="Get an appointment",
)
async def get_appointment(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """Get an appointment the authenticated user takes part in."""
    return await service.get_appointment(appointment_id, current_user.id)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentRecord,
    summary="Change appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """
    Move the appointment through its lifecycle.

    Confirming a video appointment opens a call room; the other party is
    notified of every actual change.
    """
    return await service.transition_status(
        appointment_id, data.status, current_user.id, notes=data.notes
    )


@router.put(
    "/{appointment_id}/payment",
    response_model=AppointmentRecord,
    summary="Record payment",
)
async def update_payment(
    appointment_id: UUID,
    data: PaymentUpdate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """Record the payment status of an appointment."""
    return await service.update_payment(appointment_id, current_user.id, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentRecord,
    summary="Cancel an appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: AppointmentCancelRequest,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """Cancel an appointment; only allowed more than 24 hours ahead."""
    return await service.cancel_appointment(appointment_id, current_user.id, reason=data.reason)


@router.post(
    "/{appointment_id}/prescription",
    response_model=AppointmentRecord,
    summary="Add a prescription",
)
async def add_prescription(
    appointment_id: UUID,
    data: PrescriptionCreate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """Attach a prescription; only the appointment's doctor may."""
    return await service.add_prescription(appointment_id, current_user.id, data)


@router.post(
    "/{appointment_id}/rating",
    response_model=AppointmentRecord,
    summary="Rate an appointment",
)
async def add_rating(
    appointment_id: UUID,
    data: RatingCreate,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """Rate a completed appointment."""
    return await service.add_rating(appointment_id, current_user.id, data)
