"""Notification record store."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from telemed.models.notifications import notification_deliveries, notifications
from telemed.schemas.notifications import (
    ChannelDeliveryStatus,
    NotificationChannel,
    NotificationFilters,
    NotificationRecord,
)


class NotificationRepository:
    """Persistence for notifications and their per-channel delivery rows."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def _delivery_status(
        self, notification_ids: list[UUID]
    ) -> dict[UUID, dict[str, ChannelDeliveryStatus]]:
        if not notification_ids:
            return {}

        stmt = select(notification_deliveries).where(
            notification_deliveries.c.notification_id.in_(notification_ids)
        )
        result = await self.db.execute(stmt)

        status: dict[UUID, dict[str, ChannelDeliveryStatus]] = {}
        for row in result.fetchall():
            status.setdefault(row.notification_id, {})[row.channel] = ChannelDeliveryStatus(
                delivered=row.delivered,
                delivered_at=row.delivered_at,
                error=row.error,
            )
        return status

    async def _to_records(self, rows: Iterable[Any]) -> list[NotificationRecord]:
        rows = list(rows)
        status = await self._delivery_status([row.id for row in rows])
        return [
            NotificationRecord.model_validate(
                {**dict(row._mapping), "delivery_status": status.get(row.id, {})}
            )
            for row in rows
        ]

    async def create(self, values: dict[str, Any]) -> NotificationRecord:
        """Insert a notification row and return it without delivery outcomes."""
        stmt = insert(notifications).values(**values).returning(notifications)
        result = await self.db.execute(stmt)
        await self.db.commit()

        row = result.fetchone()
        return NotificationRecord.model_validate(dict(row._mapping))

    async def record_deliveries(
        self,
        notification_id: UUID,
        outcomes: dict[NotificationChannel, ChannelDeliveryStatus],
    ) -> None:
        """Store the outcome of every attempted channel."""
        if not outcomes:
            return

        rows = [
            {
                "notification_id": notification_id,
                "channel": channel.value,
                "delivered": outcome.delivered,
                "delivered_at": outcome.delivered_at,
                "error": outcome.error,
            }
            for channel, outcome in outcomes.items()
        ]
        await self.db.execute(insert(notification_deliveries), rows)
        await self.db.commit()

    async def get_for_recipient(
        self, notification_id: UUID, recipient_id: UUID
    ) -> NotificationRecord | None:
        """Fetch one notification owned by ``recipient_id``."""
        stmt = select(notifications).where(
            and_(
                notifications.c.id == notification_id,
                notifications.c.recipient_id == recipient_id,
            )
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        if not row:
            return None

        records = await self._to_records([row])
        return records[0]

    async def list_for_recipient(
        self, recipient_id: UUID, filters: NotificationFilters
    ) -> tuple[list[NotificationRecord], int]:
        """Return one page of matching notifications, newest first, with the match count."""
        conditions = [notifications.c.recipient_id == recipient_id]

        if filters.notification_type:
            conditions.append(
                notifications.c.notification_type.in_(
                    [item.value for item in filters.notification_type]
                )
            )

        if filters.priority:
            conditions.append(notifications.c.priority == filters.priority.value)

        if filters.is_read is not None:
            conditions.append(notifications.c.is_read == filters.is_read)

        if filters.date_from:
            conditions.append(notifications.c.created_at >= filters.date_from)

        if filters.date_to:
            conditions.append(notifications.c.created_at <= filters.date_to)

        count_stmt = select(func.count()).select_from(notifications).where(and_(*conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(notifications)
            .where(and_(*conditions))
            .order_by(notifications.c.created_at.desc(), notifications.c.id.desc())
            .limit(filters.page_size)
            .offset(offset)
        )
        result = await self.db.execute(stmt)

        return await self._to_records(result.fetchall()), total

    async def count_unread(self, recipient_id: UUID) -> int:
        """Count every unread notification of a recipient."""
        stmt = (
            select(func.count())
            .select_from(notifications)
            .where(
                and_(
                    notifications.c.recipient_id == recipient_id,
                    notifications.c.is_read.is_(False),
                )
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def mark_read(self, notification_id: UUID, recipient_id: UUID, now: datetime) -> None:
        """Flag a notification as read; an earlier ``read_at`` is kept."""
        stmt = (
            update(notifications)
            .where(
                and_(
                    notifications.c.id == notification_id,
                    notifications.c.recipient_id == recipient_id,
                    notifications.c.is_read.is_(False),
                )
            )
            .values(is_read=True, read_at=now, updated_at=now)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def mark_all_read(self, recipient_id: UUID, now: datetime) -> int:
        """Flag every unread notification of a recipient as read."""
        stmt = (
            update(notifications)
            .where(
                and_(
                    notifications.c.recipient_id == recipient_id,
                    notifications.c.is_read.is_(False),
                )
            )
            .values(is_read=True, read_at=now, updated_at=now)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount or 0

    async def _delete_where(self, *conditions: Any) -> int:
        ids_stmt = select(notifications.c.id).where(and_(*conditions))
        ids = list((await self.db.execute(ids_stmt)).scalars().all())
        if not ids:
            return 0

        # Delivery rows go first; SQLite does not enforce the cascade.
        await self.db.execute(
            delete(notification_deliveries).where(
                notification_deliveries.c.notification_id.in_(ids)
            )
        )
        result = await self.db.execute(delete(notifications).where(notifications.c.id.in_(ids)))
        await self.db.commit()
        return result.rowcount or 0

    async def delete(self, notification_id: UUID, recipient_id: UUID) -> bool:
        """Delete one owned notification. Returns False when nothing matched."""
        deleted = await self._delete_where(
            notifications.c.id == notification_id,
            notifications.c.recipient_id == recipient_id,
        )
        return deleted > 0

    async def delete_all(self, recipient_id: UUID) -> int:
        """Delete every notification of a recipient."""
        return await self._delete_where(notifications.c.recipient_id == recipient_id)

    async def delete_expired(self, now: datetime) -> int:
        """Delete every notification whose expiry lies before ``now``."""
        return await self._delete_where(
            notifications.c.expires_at.is_not(None),
            notifications.c.expires_at < now,
        )

    async def _group_counts(self, recipient_id: UUID, column: Any) -> dict[str, int]:
        stmt = (
            select(column, func.count())
            .where(notifications.c.recipient_id == recipient_id)
            .group_by(column)
        )
        result = await self.db.execute(stmt)
        return {key: count for key, count in result.fetchall()}

    async def stats(self, recipient_id: UUID) -> dict[str, Any]:
        """Totals for a recipient, grouped by type and priority."""
        total_stmt = (
            select(func.count())
            .select_from(notifications)
            .where(notifications.c.recipient_id == recipient_id)
        )
        total = (await self.db.execute(total_stmt)).scalar() or 0

        return {
            "total": total,
            "unread": await self.count_unread(recipient_id),
            "by_type": await self._group_counts(recipient_id, notifications.c.notification_type),
            "by_priority": await self._group_counts(recipient_id, notifications.c.priority),
        }
