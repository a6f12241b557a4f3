"""
Protocol Router

HTTP surface of the protocol engine. Every route requires a caller that
belongs to a group; errors raised by the service are rendered by the
application's exception handlers.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.auth.dependencies import CurrentUser, require_group
from meeting_protocols.core.database import get_db
from meeting_protocols.protocols.models import ProtocolStatus
from meeting_protocols.protocols.schemas import (
    AttendeeList,
    AttendeeResponse,
    AttendeesUpdate,
    CommentCreate,
    CommentEnvelope,
    CommentResponse,
    ProtocolCreate,
    ProtocolDetail,
    ProtocolDetailEnvelope,
    ProtocolEnvelope,
    ProtocolList,
    ProtocolResponse,
    ProtocolUpdate,
    ProtocolVersionResponse,
    SectionBody,
    SectionEnvelope,
    SectionUpdate,
    VersionList,
)
from meeting_protocols.protocols.services import ProtocolService
from meeting_protocols.realtime.router import get_broadcaster

router = APIRouter(prefix="/protocols", tags=["protocols"])


def get_protocol_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> ProtocolService:
    return ProtocolService(db, get_broadcaster(request))


# =============================================================================
# Protocols
# =============================================================================


@router.get("", response_model=ProtocolList)
async def list_protocols(
    status_filter: ProtocolStatus | None = Query(default=None, alias="status"),
    start_date: date | None = Query(default=None, alias="startDate"),
    end_date: date | None = Query(default=None, alias="endDate"),
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> ProtocolList:
    """List the protocols of the caller's group, newest meeting first."""
    protocols = await service.list_protocols(current_user, status_filter, start_date, end_date)
    return ProtocolList(protocols=[ProtocolResponse.model_validate(p) for p in protocols])


@router.post("", response_model=ProtocolEnvelope, status_code=status.HTTP_201_CREATED)
async def create_protocol(
    data: ProtocolCreate,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> ProtocolEnvelope:
    """Create a new draft protocol."""
    protocol = await service.create(current_user, data)
    return ProtocolEnvelope(
        message="Protocol created successfully",
        protocol=ProtocolResponse.model_validate(protocol),
    )


@router.get("/{protocol_id}", response_model=ProtocolDetailEnvelope)
async def get_protocol(
    protocol_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> ProtocolDetailEnvelope:
    """Get a protocol with attendees and comments."""
    protocol, attendees, comments = await service.get_protocol(protocol_id, current_user)
    detail = ProtocolDetail(
        **ProtocolResponse.model_validate(protocol).model_dump(),
        attendees=[AttendeeResponse.model_validate(a) for a in attendees],
        comments=[CommentResponse.model_validate(c) for c in comments],
    )
    return ProtocolDetailEnvelope(protocol=detail)


@router.put("/{protocol_id}", response_model=ProtocolEnvelope)
async def update_protocol(
    protocol_id: str,
    data: ProtocolUpdate,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> ProtocolEnvelope:
    protocol = await service.update(protocol_id, current_user, data)
    return ProtocolEnvelope(
        message="Protocol updated successfully",
        protocol=ProtocolResponse.model_validate(protocol),
    )


@router.put("/{protocol_id}/section", response_model=SectionEnvelope)
async def update_section(
    protocol_id: str,
    data: SectionUpdate,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> SectionEnvelope:
    """Replace the content of a single section."""
    protocol = await service.update_section(protocol_id, current_user, data)
    section_id = data.section_id.strip()
    return SectionEnvelope(
        message="Section updated successfully",
        section=SectionBody(id=section_id, content=protocol.data.get(section_id)),
        version=protocol.version,
    )


@router.post("/{protocol_id}/finalize", response_model=ProtocolEnvelope)
async def finalize_protocol(
    protocol_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> ProtocolEnvelope:
    """Finalize a protocol and derive its tasks."""
    protocol = await service.finalize(protocol_id, current_user)
    return ProtocolEnvelope(
        message="Protocol finalized successfully",
        protocol=ProtocolResponse.model_validate(protocol),
    )


@router.get("/{protocol_id}/versions", response_model=VersionList)
async def list_versions(
    protocol_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> VersionList:
    """Version history, most recent first."""
    versions = await service.list_versions(protocol_id, current_user)
    return VersionList(versions=[ProtocolVersionResponse.model_validate(v) for v in versions])


# =============================================================================
# Attendance & Comments
# =============================================================================


@router.put("/{protocol_id}/attendees", response_model=AttendeeList)
async def update_attendees(
    protocol_id: str,
    data: AttendeesUpdate,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> AttendeeList:
    attendees = await service.update_attendees(protocol_id, current_user, data)
    return AttendeeList(
        message="Attendees updated successfully",
        attendees=[AttendeeResponse.model_validate(a) for a in attendees],
    )


@router.post(
    "/{protocol_id}/comments",
    response_model=CommentEnvelope,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    protocol_id: str,
    data: CommentCreate,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> CommentEnvelope:
    comment = await service.add_comment(protocol_id, current_user, data)
    return CommentEnvelope(
        message="Comment added successfully",
        comment=CommentResponse.model_validate(comment),
    )


@router.put("/{protocol_id}/comments/{comment_id}/resolve", response_model=CommentEnvelope)
async def resolve_comment(
    protocol_id: str,
    comment_id: str,
    current_user: CurrentUser = Depends(require_group),
    service: ProtocolService = Depends(get_protocol_service),
) -> CommentEnvelope:
    comment = await service.resolve_comment(protocol_id, comment_id, current_user)
    return CommentEnvelope(
        message="Comment resolved successfully",
        comment=CommentResponse.model_validate(comment),
    )
