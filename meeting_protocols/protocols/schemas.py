"""
Protocol Pydantic Schemas

Request bodies accept the camelCase field names clients send; responses
serialise rows in snake_case. Required request fields are optional here on
purpose: the service layer reports them as 400 validation errors.
"""

from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from meeting_protocols.protocols.models import AttendanceType, ProtocolStatus


class RequestModel(BaseModel):
    """Base for request bodies."""

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Requests
# =============================================================================


class ProtocolCreate(RequestModel):
    """Schema for creating a protocol."""

    template_id: UUID | None = Field(default=None, alias="templateId")
    meeting_date: date | None = Field(default=None, alias="meetingDate")
    title: str | None = None
    data: dict[str, Any] | None = None


class ProtocolUpdate(RequestModel):
    """Schema for a full update. Only fields that are sent are applied."""

    title: str | None = None
    data: dict[str, Any] | None = None
    status: str | None = None
    locked_sections: list[str] | None = Field(default=None, alias="lockedSections")


class SectionUpdate(RequestModel):
    """Schema for replacing the content of one section."""

    section_id: str | None = Field(default=None, alias="sectionId")
    content: Any = None


class AttendeeInput(RequestModel):
    """One row of the attendee list."""

    user_id: str | None = Field(default=None, alias="userId")
    attendance_type: str | None = Field(default=None, alias="type")
    arrival_time: time | None = Field(default=None, alias="arrivalTime")
    departure_time: time | None = Field(default=None, alias="departureTime")
    capacity_tasks: int | None = Field(default=None, alias="capacityTasks")
    capacity_responsibilities: int | None = Field(default=None, alias="capacityResponsibilities")
    notes: str | None = None


class AttendeesUpdate(RequestModel):
    attendees: list[AttendeeInput] | None = None


class CommentCreate(RequestModel):
    """Schema for commenting on a section."""

    section_id: str | None = Field(default=None, alias="sectionId")
    comment: str | None = None


# =============================================================================
# Responses
# =============================================================================


class ProtocolResponse(BaseModel):
    """Schema for protocol response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    group_id: str
    template_id: UUID | None = None
    meeting_date: date
    title: str
    data: dict[str, Any] = Field(default_factory=dict)
    status: ProtocolStatus
    locked_sections: list[str] = Field(default_factory=list)
    version: int
    created_by: str
    updated_by: str | None = None
    finalized_by: str | None = None
    finalized_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ProtocolVersionResponse(BaseModel):
    """Schema for a version ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    protocol_id: UUID
    version: int
    title: str
    data: dict[str, Any] = Field(default_factory=dict)
    content_hash: str
    changed_by: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AttendeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    protocol_id: UUID
    user_id: str
    attendance_type: AttendanceType
    arrival_time: time | None = None
    departure_time: time | None = None
    capacity_tasks: int
    capacity_responsibilities: int
    notes: str | None = None
    updated_at: datetime


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    protocol_id: UUID
    section_id: str
    user_id: str
    comment: str
    resolved: bool
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class ProtocolDetail(ProtocolResponse):
    """Protocol with attendance and comments attached."""

    attendees: list[AttendeeResponse] = Field(default_factory=list)
    comments: list[CommentResponse] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Envelopes
# -----------------------------------------------------------------------------


class ProtocolList(BaseModel):
    protocols: list[ProtocolResponse]


class ProtocolEnvelope(BaseModel):
    message: str | None = None
    protocol: ProtocolResponse


class ProtocolDetailEnvelope(BaseModel):
    protocol: ProtocolDetail


class SectionBody(BaseModel):
    id: str
    content: Any = None


class SectionEnvelope(BaseModel):
    message: str
    section: SectionBody
    version: int


class VersionList(BaseModel):
    versions: list[ProtocolVersionResponse]


class AttendeeList(BaseModel):
    message: str
    attendees: list[AttendeeResponse]


class CommentEnvelope(BaseModel):
    message: str
    comment: CommentResponse
