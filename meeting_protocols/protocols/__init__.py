"""Meeting protocols: lifecycle, version ledger, attendance and comments."""

from meeting_protocols.protocols.models import (
    ActivityLog,
    AttendanceType,
    Protocol,
    ProtocolAttendee,
    ProtocolComment,
    ProtocolStatus,
    ProtocolTemplate,
    ProtocolVersion,
)

__all__ = [
    "ActivityLog",
    "AttendanceType",
    "Protocol",
    "ProtocolAttendee",
    "ProtocolComment",
    "ProtocolStatus",
    "ProtocolTemplate",
    "ProtocolVersion",
]
