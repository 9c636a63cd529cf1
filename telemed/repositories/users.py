"""Read-only user directory."""

from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from telemed.models.users import users
from telemed.schemas.users import UserRecord


class UserDirectory:
    """Looks up contact details and roles of platform users."""

    def __init__(self, db: AsyncSession):
        """Initialize directory with database session."""
        self.db = db

    async def find_by_id(self, user_id: UUID) -> UserRecord | None:
        """Return the user, or None if unknown."""
        result = await self.db.execute(select(users).where(users.c.id == user_id))
        row = result.fetchone()
        if not row:
            return None
        return UserRecord.model_validate(dict(row._mapping))

    async def list_active_ids(self, exclude_roles: list[str] | None = None) -> list[UUID]:
        """Ids of every active user, optionally without some roles."""
        conditions = [users.c.is_active.is_(True)]
        if exclude_roles:
            conditions.append(users.c.role.not_in(exclude_roles))

        stmt = select(users.c.id).where(and_(*conditions)).order_by(users.c.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
