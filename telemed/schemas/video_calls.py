"""Video call session schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class CallRole(str, Enum):
    """Role a participant joins a call with."""

    HOST = "host"
    GUEST = "guest"


class VideoCallData(BaseModel):
    """A provisioned consultation room."""

    call_id: str
    call_url: str
    room_id: str
    expires_at: datetime


class VideoCallSession(BaseModel):
    """Summary of a finished call."""

    call_id: str
    appointment_id: UUID | None = None
    ended_at: datetime
    duration_minutes: int | None = None


class CallTokenResponse(BaseModel):
    """Join token for one participant."""

    call_id: str
    call_url: str | None = None
    token: str
    role: CallRole
