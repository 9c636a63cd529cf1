"""Video consultation endpoints."""

from uuid import UUID

from fastapi import APIRouter

from telemed.dependencies import AppointmentServiceDep, CurrentUser
from telemed.schemas.appointments import AppointmentRecord
from telemed.schemas.video_calls import CallTokenResponse

router = APIRouter(prefix="/video-calls", tags=["Video Calls"])


@router.post(
    "/{appointment_id}/token",
    response_model=CallTokenResponse,
    summary="Get a join token",
)
async def generate_call_token(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> CallTokenResponse:
    """Join token for the appointment's call. The doctor joins as host."""
    return await service.generate_call_token(appointment_id, current_user.id)


@router.post(
    "/{appointment_id}/end",
    response_model=AppointmentRecord,
    summary="End the call",
)
async def end_video_call(
    appointment_id: UUID,
    current_user: CurrentUser,
    service: AppointmentServiceDep,
) -> AppointmentRecord:
    """End the consultation and complete the appointment (doctor only)."""
    return await service.end_video_call(appointment_id, current_user.id)
