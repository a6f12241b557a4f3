"""
Protocol Services

Lifecycle and editing rules for meeting protocols.

Every mutation follows the same path: load the row, check group access and
lifecycle state, snapshot the old state into the version ledger, write,
commit, then notify the protocol room. Nothing is broadcast for a write that
did not commit.
"""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.auth.dependencies import CurrentUser
from meeting_protocols.core.database import utcnow
from meeting_protocols.core.errors import (
    AccessDenied,
    AlreadyFinalized,
    InvalidState,
    NotFoundError,
    SectionLocked,
    ValidationError,
)
from meeting_protocols.protocols.derivation import TaskDerivationService
from meeting_protocols.protocols.ledger import VersionLedger
from meeting_protocols.protocols.models import (
    AttendanceType,
    Protocol,
    ProtocolAttendee,
    ProtocolComment,
    ProtocolStatus,
    ProtocolVersion,
)
from meeting_protocols.protocols.repositories import (
    ActivityLogRepository,
    ProtocolAttendeeRepository,
    ProtocolCommentRepository,
    ProtocolRepository,
    ProtocolTemplateRepository,
)
from meeting_protocols.protocols.schemas import (
    AttendeeInput,
    AttendeesUpdate,
    CommentCreate,
    CommentResponse,
    ProtocolCreate,
    ProtocolUpdate,
    SectionUpdate,
)
from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.events import ServerEvent, protocol_room

logger = logging.getLogger(__name__)

ENTITY_TYPE = "protocol"
DEFAULT_CAPACITY = 100


class ProtocolService:
    """
    State machine of a protocol: draft → active → finalized.

    ``draft`` and ``active`` are both editable; ``finalized`` is terminal and
    only reachable through :meth:`finalize`.
    """

    def __init__(self, db: AsyncSession, broadcaster: Broadcaster | None = None):
        self.db = db
        self.broadcaster = broadcaster
        self.protocols = ProtocolRepository(db)
        self.attendees = ProtocolAttendeeRepository(db)
        self.comments = ProtocolCommentRepository(db)
        self.templates = ProtocolTemplateRepository(db)
        self.activity = ActivityLogRepository(db)
        self.ledger = VersionLedger(db)

    # =========================================================================
    # Reads
    # =========================================================================

    async def list_protocols(
        self,
        actor: CurrentUser,
        status: ProtocolStatus | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Protocol]:
        return await self.protocols.list_for_group(actor.group_id, status, start_date, end_date)

    async def get_protocol(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser
    ) -> tuple[Protocol, list[ProtocolAttendee], list[ProtocolComment]]:
        """Load a protocol together with its attendance and comments."""
        protocol = await self._load_for_actor(protocol_id, actor)
        attendees = await self.attendees.list_for_protocol(protocol.id)
        comments = await self.comments.list_for_protocol(protocol.id)
        return protocol, attendees, comments

    async def list_versions(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser
    ) -> list[ProtocolVersion]:
        protocol = await self._load_for_actor(protocol_id, actor)
        return await self.ledger.list_versions(protocol.id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self, actor: CurrentUser, payload: ProtocolCreate) -> Protocol:
        """Create a draft protocol at version 1."""
        title = (payload.title or "").strip()
        if payload.meeting_date is None or not title:
            raise ValidationError("Meeting date and title are required")

        data = payload.data
        if payload.template_id is not None:
            template = await self.templates.get(payload.template_id)
            if template is None or (template.group_id and template.group_id != actor.group_id):
                raise ValidationError("Template not found")
            if data is None:
                data = copy.deepcopy(template.structure or {})

        protocol = Protocol(
            group_id=actor.group_id,
            template_id=payload.template_id,
            meeting_date=payload.meeting_date,
            title=title,
            data=data or {},
            status=ProtocolStatus.DRAFT,
            locked_sections=[],
            version=1,
            created_by=actor.id,
        )
        await self.protocols.add(protocol)
        await self.activity.log(
            actor.group_id, actor.id, ENTITY_TYPE, protocol.id, "created", {"title": title}
        )
        await self.db.commit()

        logger.info("Protocol %s created by %s", protocol.id, actor.id)
        return protocol

    async def update(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser, payload: ProtocolUpdate
    ) -> Protocol:
        """
        Apply any subset of title, data, status and locked sections.

        The pre-update state is written to the ledger and the version is
        bumped by one. Concurrent updates are last-writer-wins.

        Raises:
            ValidationError: No field given, or a field is malformed
            InvalidState: Protocol is finalized, or status=finalized requested
        """
        fields = payload.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No fields to update")

        protocol = await self._load_for_actor(protocol_id, actor)
        if protocol.is_finalized:
            if fields == {"status": ProtocolStatus.FINALIZED.value}:
                return protocol
            raise InvalidState("Cannot update finalized protocol")

        updates = self._validate_updates(fields)
        changes = self._describe_changes(protocol, updates)

        await self.ledger.append_snapshot(protocol, actor.id, changes)
        for field, value in updates.items():
            setattr(protocol, field, value)
        protocol.version = self.ledger.next_version(protocol)
        protocol.updated_by = actor.id
        await self.protocols.save(protocol)
        await self.activity.log(
            actor.group_id, actor.id, ENTITY_TYPE, protocol.id, "updated", changes
        )
        await self.db.commit()

        logger.info("Protocol %s updated by %s to v%d", protocol.id, actor.id, protocol.version)
        await self._emit(
            protocol,
            ServerEvent.PROTOCOL_UPDATED,
            {
                "protocolId": str(protocol.id),
                "updates": payload.model_dump(mode="json", exclude_unset=True, by_alias=True),
                "version": protocol.version,
                "updatedBy": actor.brief(),
            },
        )
        return protocol

    async def update_section(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser, payload: SectionUpdate
    ) -> Protocol:
        """Replace the content of one section of ``data``."""
        section_id = (payload.section_id or "").strip()
        if not section_id or payload.content is None:
            raise ValidationError("Section ID and content are required")

        protocol = await self._load_for_actor(protocol_id, actor)
        if protocol.is_finalized:
            raise InvalidState("Cannot update finalized protocol")
        if protocol.is_section_locked(section_id):
            raise SectionLocked(f"Section {section_id} is locked")

        changes = {"section": section_id}
        await self.ledger.append_snapshot(protocol, actor.id, changes)

        # Whole-document write; only one key differs
        data = dict(protocol.data or {})
        data[section_id] = payload.content
        protocol.data = data
        protocol.version = self.ledger.next_version(protocol)
        protocol.updated_by = actor.id
        await self.protocols.save(protocol)
        await self.activity.log(
            actor.group_id, actor.id, ENTITY_TYPE, protocol.id, "updated", changes
        )
        await self.db.commit()

        logger.info(
            "Protocol %s section %s updated by %s to v%d",
            protocol.id,
            section_id,
            actor.id,
            protocol.version,
        )
        await self._emit(
            protocol,
            ServerEvent.SECTION_UPDATED,
            {
                "protocolId": str(protocol.id),
                "sectionId": section_id,
                "content": payload.content,
                "version": protocol.version,
                "updatedBy": actor.brief(),
            },
        )
        return protocol

    async def finalize(self, protocol_id: uuid.UUID | str, actor: CurrentUser) -> Protocol:
        """
        Freeze the protocol and derive tasks from its todos.

        Finalization commits before derivation starts; a derivation failure
        is logged and does not undo it.
        """
        protocol = await self._load_for_actor(protocol_id, actor)
        if protocol.is_finalized:
            raise AlreadyFinalized("Protocol is already finalized")

        protocol.status = ProtocolStatus.FINALIZED
        protocol.finalized_by = actor.id
        protocol.finalized_at = utcnow()
        protocol.updated_by = actor.id
        await self.protocols.save(protocol)
        await self.activity.log(
            actor.group_id, actor.id, ENTITY_TYPE, protocol.id, "finalized", {}
        )
        await self.db.commit()
        logger.info("Protocol %s finalized by %s", protocol.id, actor.id)

        derivation = TaskDerivationService(self.db, self.broadcaster)
        await derivation.derive(protocol, actor.id)
        # A failed derivation rolls back and expires the row
        await self.db.refresh(protocol)

        await self._emit(
            protocol,
            ServerEvent.PROTOCOL_UPDATED,
            {
                "protocolId": str(protocol.id),
                "updates": {"status": ProtocolStatus.FINALIZED.value},
                "version": protocol.version,
                "updatedBy": actor.brief(),
            },
        )
        return protocol

    # =========================================================================
    # Attendance
    # =========================================================================

    async def update_attendees(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser, payload: AttendeesUpdate
    ) -> list[ProtocolAttendee]:
        """
        Upsert the submitted attendance rows keyed on (protocol, user).

        Users left out of the submission keep their previous row. Attendance
        is metadata and does not bump the version.
        """
        if payload.attendees is None:
            raise ValidationError("Attendees list is required")
        rows = [self._attendee_fields(entry, index) for index, entry in enumerate(payload.attendees)]

        protocol = await self._load_for_actor(protocol_id, actor)
        for user_id, fields in rows:
            await self.attendees.upsert(protocol.id, user_id, **fields)
        await self.db.commit()

        logger.info("Protocol %s attendance updated by %s (%d rows)", protocol.id, actor.id, len(rows))
        return await self.attendees.list_for_protocol(protocol.id)

    @staticmethod
    def _attendee_fields(entry: AttendeeInput, index: int) -> tuple[str, dict[str, Any]]:
        user_id = (entry.user_id or "").strip()
        if not user_id:
            raise ValidationError("Each attendee needs a user ID", details={"index": index})
        try:
            attendance_type = AttendanceType(entry.attendance_type or "")
        except ValueError:
            raise ValidationError(
                "Invalid attendance type",
                details={"index": index, "allowed": [t.value for t in AttendanceType]},
            ) from None

        capacities = {}
        for field in ("capacity_tasks", "capacity_responsibilities"):
            value = getattr(entry, field)
            if value is None:
                value = DEFAULT_CAPACITY
            if not 0 <= value <= 100:
                raise ValidationError(
                    "Capacity must be between 0 and 100", details={"index": index, "field": field}
                )
            capacities[field] = value

        return user_id, {
            "attendance_type": attendance_type,
            "arrival_time": entry.arrival_time,
            "departure_time": entry.departure_time,
            "notes": entry.notes,
            **capacities,
        }

    # =========================================================================
    # Comments
    # =========================================================================

    async def add_comment(
        self, protocol_id: uuid.UUID | str, actor: CurrentUser, payload: CommentCreate
    ) -> ProtocolComment:
        section_id = (payload.section_id or "").strip()
        text = (payload.comment or "").strip()
        if not section_id or not text:
            raise ValidationError("Section ID and comment are required")

        protocol = await self._load_for_actor(protocol_id, actor)
        comment = ProtocolComment(
            protocol_id=protocol.id,
            section_id=section_id,
            user_id=actor.id,
            comment=text,
            resolved=False,
        )
        await self.comments.add(comment)
        await self.db.commit()

        logger.info("Comment %s added to protocol %s by %s", comment.id, protocol.id, actor.id)
        await self._emit(
            protocol,
            ServerEvent.COMMENT_ADDED,
            {
                "protocolId": str(protocol.id),
                "comment": CommentResponse.model_validate(comment).model_dump(mode="json"),
            },
        )
        return comment

    async def resolve_comment(
        self,
        protocol_id: uuid.UUID | str,
        comment_id: uuid.UUID | str,
        actor: CurrentUser,
    ) -> ProtocolComment:
        """Mark a comment resolved. Resolving it again returns it unchanged."""
        protocol = await self._load_for_actor(protocol_id, actor)
        comment = await self.comments.get(comment_id)
        if comment is None or comment.protocol_id != protocol.id:
            raise NotFoundError("Comment not found")
        if comment.resolved:
            return comment

        comment.resolved = True
        comment.resolved_by = actor.id
        comment.resolved_at = utcnow()
        await self.comments.save(comment)
        await self.db.commit()

        logger.info("Comment %s resolved by %s", comment.id, actor.id)
        await self._emit(
            protocol,
            ServerEvent.COMMENT_RESOLVED,
            {
                "protocolId": str(protocol.id),
                "commentId": str(comment.id),
                "resolvedBy": actor.brief(),
            },
        )
        return comment

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_for_actor(self, protocol_id: uuid.UUID | str, actor: CurrentUser) -> Protocol:
        protocol = await self.protocols.get(protocol_id)
        if protocol is None:
            raise NotFoundError("Protocol not found")
        if protocol.group_id != actor.group_id:
            raise AccessDenied("Access denied")
        return protocol

    @staticmethod
    def _validate_updates(fields: dict[str, Any]) -> dict[str, Any]:
        updates: dict[str, Any] = {}

        if "title" in fields:
            title = (fields["title"] or "").strip()
            if not title:
                raise ValidationError("Title must not be empty")
            updates["title"] = title

        if "data" in fields:
            if fields["data"] is None:
                raise ValidationError("Data must be an object")
            updates["data"] = fields["data"]

        if "status" in fields:
            try:
                status = ProtocolStatus(fields["status"] or "")
            except ValueError:
                raise ValidationError(
                    "Invalid status", details={"allowed": [s.value for s in ProtocolStatus]}
                ) from None
            if status == ProtocolStatus.FINALIZED:
                raise InvalidState("Use the finalize operation to finalize a protocol")
            updates["status"] = status

        if "locked_sections" in fields:
            if fields["locked_sections"] is None:
                raise ValidationError("Locked sections must be a list")
            updates["locked_sections"] = list(dict.fromkeys(fields["locked_sections"]))

        return updates

    @staticmethod
    def _describe_changes(protocol: Protocol, updates: dict[str, Any]) -> dict[str, Any]:
        """Machine-readable summary of what an update changes."""
        changes: dict[str, Any] = {}
        if "title" in updates:
            changes["title"] = {"old": protocol.title, "new": updates["title"]}
        if "status" in updates:
            changes["status"] = {"old": protocol.status.value, "new": updates["status"].value}
        if "locked_sections" in updates:
            changes["locked_sections"] = {
                "old": list(protocol.locked_sections or []),
                "new": updates["locked_sections"],
            }
        if "data" in updates:
            old, new = protocol.data or {}, updates["data"]
            changed = sorted(key for key in set(old) | set(new) if old.get(key) != new.get(key))
            changes["data"] = {"sections": changed}
        return changes

    async def _emit(self, protocol: Protocol, event: ServerEvent, data: dict[str, Any]) -> None:
        if self.broadcaster is None:
            return
        await self.broadcaster.emit(protocol_room(protocol.id), event, data)
