"""
Protocol Repositories

Document store adapter for protocols and their sub-entities.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any

from sqlalchemy import select

from meeting_protocols.core.repository import BaseRepository
from meeting_protocols.protocols.models import (
    ActivityLog,
    Protocol,
    ProtocolAttendee,
    ProtocolComment,
    ProtocolStatus,
    ProtocolTemplate,
    ProtocolVersion,
)


class ProtocolRepository(BaseRepository[Protocol]):
    model_class = Protocol

    async def list_for_group(
        self,
        group_id: str,
        status: ProtocolStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Protocol]:
        """Protocols of a group, newest meeting first."""
        criteria: list[Any] = [Protocol.group_id == group_id]
        if status:
            criteria.append(Protocol.status == status)
        if start_date:
            criteria.append(Protocol.meeting_date >= start_date)
        if end_date:
            criteria.append(Protocol.meeting_date <= end_date)
        return await self.find(
            *criteria,
            order_by=(Protocol.meeting_date.desc(), Protocol.created_at.desc()),
        )


class ProtocolVersionRepository(BaseRepository[ProtocolVersion]):
    model_class = ProtocolVersion

    async def list_by_protocol(self, protocol_id: uuid.UUID) -> list[ProtocolVersion]:
        """All snapshots of a protocol, most recent first."""
        return await self.find(
            ProtocolVersion.protocol_id == protocol_id,
            order_by=(ProtocolVersion.version.desc(), ProtocolVersion.created_at.desc()),
        )


class ProtocolAttendeeRepository(BaseRepository[ProtocolAttendee]):
    model_class = ProtocolAttendee

    async def list_for_protocol(self, protocol_id: uuid.UUID) -> list[ProtocolAttendee]:
        return await self.find(
            ProtocolAttendee.protocol_id == protocol_id,
            order_by=(ProtocolAttendee.created_at,),
        )

    async def get_for_user(self, protocol_id: uuid.UUID, user_id: str) -> ProtocolAttendee | None:
        result = await self.db.execute(
            select(ProtocolAttendee)
            .where(ProtocolAttendee.protocol_id == protocol_id)
            .where(ProtocolAttendee.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, protocol_id: uuid.UUID, user_id: str, **fields: Any) -> ProtocolAttendee:
        """Insert or overwrite the row keyed on (protocol, user)."""
        attendee = await self.get_for_user(protocol_id, user_id)
        if attendee is None:
            attendee = ProtocolAttendee(protocol_id=protocol_id, user_id=user_id, **fields)
            return await self.add(attendee)

        for field, value in fields.items():
            setattr(attendee, field, value)
        return await self.save(attendee)


class ProtocolCommentRepository(BaseRepository[ProtocolComment]):
    model_class = ProtocolComment

    async def list_for_protocol(self, protocol_id: uuid.UUID) -> list[ProtocolComment]:
        """Comments of a protocol, newest first."""
        return await self.find(
            ProtocolComment.protocol_id == protocol_id,
            order_by=(ProtocolComment.created_at.desc(),),
        )


class ProtocolTemplateRepository(BaseRepository[ProtocolTemplate]):
    model_class = ProtocolTemplate


class ActivityLogRepository(BaseRepository[ActivityLog]):
    model_class = ActivityLog

    async def log(
        self,
        group_id: str,
        user_id: str,
        entity_type: str,
        entity_id: uuid.UUID | str,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        """Append an audit entry."""
        entry = ActivityLog(
            group_id=group_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            details=details or {},
        )
        return await self.add(entry)

    async def list_for_group(self, group_id: str, limit: int = 50) -> list[ActivityLog]:
        result = await self.db.execute(
            select(ActivityLog)
            .where(ActivityLog.group_id == group_id)
            .order_by(ActivityLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
