"""User directory schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class UserRole(str, Enum):
    """Roles a user can hold."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class UserRecord(BaseModel):
    """Contact and role data the core needs about a user."""

    id: UUID
    email: str
    full_name: str | None = None
    phone: str | None = None
    role: UserRole
    is_active: bool = True

    model_config = {"from_attributes": True}

    @property
    def display_name(self) -> str:
        """Name to show in notification text."""
        return self.full_name or self.email
