"""
Protocol Database Models

SQLAlchemy models for collaboratively edited meeting protocols, their
version ledger, attendance and section comments.
"""

import hashlib
import json
import uuid
from datetime import date, datetime, time
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from meeting_protocols.core.database import Base, JSONDocument, utcnow


# =============================================================================
# Enums
# =============================================================================


class ProtocolStatus(StrEnum):
    """Lifecycle of a protocol. Only ``finalized`` is terminal."""

    DRAFT = "draft"
    ACTIVE = "active"
    FINALIZED = "finalized"


EDITABLE_STATUSES = (ProtocolStatus.DRAFT, ProtocolStatus.ACTIVE)


class AttendanceType(StrEnum):
    """How a member took part in the meeting."""

    PRESENT = "present"
    ONLINE = "online"
    ABSENT = "absent"


# =============================================================================
# Models
# =============================================================================


class ProtocolTemplate(Base):
    """
    Section structure used to seed new protocols.
    Managed by the template service; read-only here.
    """

    __tablename__ = "protocol_templates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    structure: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Protocol(Base):
    """
    A meeting protocol: structured ``data`` keyed by section id, a version
    counter and a draft → active → finalized lifecycle.
    """

    __tablename__ = "protocols"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[str] = mapped_column(String(64), index=True)
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("protocol_templates.id"), nullable=True
    )

    # Content
    meeting_date: Mapped[date] = mapped_column(Date, index=True)
    title: Mapped[str] = mapped_column(String(300))
    data: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)

    # Lifecycle
    status: Mapped[ProtocolStatus] = mapped_column(
        Enum(ProtocolStatus, name="protocol_status"),
        default=ProtocolStatus.DRAFT,
    )
    locked_sections: Mapped[list[str]] = mapped_column(JSONDocument, default=list)
    version: Mapped[int] = mapped_column(Integer, default=1)

    # Actors
    created_by: Mapped[str] = mapped_column(String(64))
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    @property
    def is_finalized(self) -> bool:
        return self.status == ProtocolStatus.FINALIZED

    def is_section_locked(self, section_id: str) -> bool:
        """Check the advisory lock set for a section."""
        return section_id in (self.locked_sections or [])


class ProtocolVersion(Base):
    """
    Immutable snapshot of a protocol taken right before an update overwrote it.
    ``version`` is the number the protocol carried before that update.
    """

    __tablename__ = "protocol_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    protocol_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("protocols.id"))

    version: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(300))
    data: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)

    # Hash for integrity verification
    content_hash: Mapped[str] = mapped_column(String(64))

    changed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    changes: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Not unique: concurrent writers racing on one row are last-writer-wins
    __table_args__ = (Index("ix_protocol_versions_protocol_version", "protocol_id", "version"),)

    @staticmethod
    def compute_hash(title: str, data: dict[str, Any]) -> str:
        content_str = json.dumps(
            {"title": title, "data": data}, sort_keys=True, ensure_ascii=False, default=str
        )
        return hashlib.sha256(content_str.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        """Verify the integrity of the stored snapshot."""
        return self.compute_hash(self.title, self.data) == self.content_hash


class ProtocolAttendee(Base):
    """Attendance of one user at the meeting a protocol records."""

    __tablename__ = "protocol_attendees"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    protocol_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("protocols.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(64))

    attendance_type: Mapped[AttendanceType] = mapped_column(
        Enum(AttendanceType, name="attendance_type"),
        default=AttendanceType.PRESENT,
    )
    arrival_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    departure_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    # Capacity in percent (0-100)
    capacity_tasks: Mapped[int] = mapped_column(Integer, default=100)
    capacity_responsibilities: Mapped[int] = mapped_column(Integer, default=100)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("protocol_id", "user_id", name="uq_protocol_attendee"),
    )


class ProtocolComment(Base):
    """Discussion comment anchored to one section of a protocol."""

    __tablename__ = "protocol_comments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    protocol_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("protocols.id"), index=True)
    section_id: Mapped[str] = mapped_column(String(200))
    user_id: Mapped[str] = mapped_column(String(64))
    comment: Mapped[str] = mapped_column(Text)

    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ActivityLog(Base):
    """Audit trail entry for a group."""

    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[str] = mapped_column(String(64), index=True)
    user_id: Mapped[str] = mapped_column(String(64))
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[str] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(50))
    details: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
