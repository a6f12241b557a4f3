"""
Tests for the protocol state machine and version ledger.
"""

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.auth.dependencies import CurrentUser
from meeting_protocols.core.errors import (
    AccessDenied,
    AlreadyFinalized,
    InvalidState,
    NotFoundError,
    SectionLocked,
    ValidationError,
)
from meeting_protocols.protocols.models import AttendanceType, Protocol, ProtocolStatus, ProtocolTemplate
from meeting_protocols.protocols.repositories import ActivityLogRepository
from meeting_protocols.protocols.schemas import (
    AttendeeInput,
    AttendeesUpdate,
    CommentCreate,
    ProtocolCreate,
    ProtocolUpdate,
    SectionUpdate,
)
from meeting_protocols.protocols.services import ProtocolService
from meeting_protocols.realtime.events import protocol_room
from tests.conftest import frames_named


async def create_protocol(
    service: ProtocolService,
    actor: CurrentUser,
    title: str = "Weekly",
    data: dict | None = None,
) -> Protocol:
    return await service.create(
        actor, ProtocolCreate(meeting_date=date(2024, 1, 15), title=title, data=data)
    )


class TestCreate:
    """Tests for protocol creation."""

    async def test_starts_as_draft_at_version_one(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        assert protocol.status == ProtocolStatus.DRAFT
        assert protocol.version == 1
        assert protocol.group_id == "group-a"
        assert protocol.created_by == "user-alice"
        assert protocol.locked_sections == []
        assert await service.ledger.list_versions(protocol.id) == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"title": "Weekly"},
            {"meeting_date": date(2024, 1, 15)},
            {"meeting_date": date(2024, 1, 15), "title": "   "},
        ],
    )
    async def test_requires_meeting_date_and_title(
        self, service: ProtocolService, alice: CurrentUser, payload: dict
    ) -> None:
        with pytest.raises(ValidationError):
            await service.create(alice, ProtocolCreate(**payload))

    async def test_template_structure_seeds_data(
        self, service: ProtocolService, db: AsyncSession, alice: CurrentUser
    ) -> None:
        template = ProtocolTemplate(
            group_id="group-a", name="Default", structure={"agenda": [], "todos": {}}
        )
        db.add(template)
        await db.commit()

        protocol = await service.create(
            alice,
            ProtocolCreate(templateId=template.id, meetingDate=date(2024, 1, 15), title="Weekly"),
        )

        assert protocol.template_id == template.id
        assert protocol.data == {"agenda": [], "todos": {}}
        assert protocol.data is not template.structure

    async def test_explicit_data_wins_over_template(
        self, service: ProtocolService, db: AsyncSession, alice: CurrentUser
    ) -> None:
        template = ProtocolTemplate(group_id="group-a", name="Default", structure={"agenda": []})
        db.add(template)
        await db.commit()

        protocol = await service.create(
            alice,
            ProtocolCreate(
                template_id=template.id,
                meeting_date=date(2024, 1, 15),
                title="Weekly",
                data={"notes": "given"},
            ),
        )

        assert protocol.data == {"notes": "given"}

    async def test_unknown_template_is_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        payload = ProtocolCreate(
            template_id="00000000-0000-0000-0000-000000000001",
            meeting_date=date(2024, 1, 15),
            title="Weekly",
        )
        with pytest.raises(ValidationError, match="Template not found"):
            await service.create(alice, payload)

    async def test_creation_is_logged(
        self, service: ProtocolService, db: AsyncSession, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        entries = await ActivityLogRepository(db).list_for_group("group-a")
        assert [(e.entity_type, e.entity_id, e.action) for e in entries] == [
            ("protocol", str(protocol.id), "created")
        ]


class TestVersionLedger:
    """Tests for version numbering and snapshots."""

    async def test_each_update_bumps_version_by_one(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        for n in range(3):
            protocol = await service.update(protocol.id, alice, ProtocolUpdate(title=f"Weekly {n}"))

        assert protocol.version == 4
        versions = await service.list_versions(protocol.id, alice)
        assert [v.version for v in versions] == [3, 2, 1]

    async def test_snapshot_holds_state_before_update(
        self, service: ProtocolService, alice: CurrentUser, bob: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice, data={"notes": "first"})

        await service.update(
            protocol.id, bob, ProtocolUpdate(title="Weekly v2", data={"notes": "second"})
        )

        [record] = await service.list_versions(protocol.id, alice)
        assert record.version == 1
        assert record.title == "Weekly"
        assert record.data == {"notes": "first"}
        assert record.changed_by == "user-bob"
        assert record.changes["title"] == {"old": "Weekly", "new": "Weekly v2"}
        assert record.changes["data"] == {"sections": ["notes"]}
        assert record.verify_integrity()

    async def test_tampered_snapshot_fails_integrity_check(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update(protocol.id, alice, ProtocolUpdate(title="Weekly v2"))

        [record] = await service.list_versions(protocol.id, alice)
        record.title = "Rewritten"

        assert not record.verify_integrity()

    async def test_status_and_lock_changes_are_described(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        protocol = await service.update(
            protocol.id,
            alice,
            ProtocolUpdate(status="active", locked_sections=["attendance", "attendance"]),
        )

        assert protocol.status == ProtocolStatus.ACTIVE
        assert protocol.locked_sections == ["attendance"]
        [record] = await service.list_versions(protocol.id, alice)
        assert record.changes["status"] == {"old": "draft", "new": "active"}
        assert record.changes["locked_sections"] == {"old": [], "new": ["attendance"]}

    async def test_empty_update_is_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(ValidationError):
            await service.update(protocol.id, alice, ProtocolUpdate())

        assert protocol.version == 1

    async def test_unknown_status_is_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(ValidationError):
            await service.update(protocol.id, alice, ProtocolUpdate(status="archived"))


class TestFinalize:
    """Tests for the terminal finalized state."""

    async def test_finalize_records_actor_and_time(
        self, service: ProtocolService, alice: CurrentUser, bob: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        protocol = await service.finalize(protocol.id, bob)

        assert protocol.status == ProtocolStatus.FINALIZED
        assert protocol.finalized_by == "user-bob"
        assert protocol.finalized_at is not None
        assert protocol.version == 1
        assert await service.list_versions(protocol.id, alice) == []

    async def test_content_updates_after_finalize_are_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.finalize(protocol.id, alice)

        with pytest.raises(InvalidState):
            await service.update(protocol.id, alice, ProtocolUpdate(title="x"))
        with pytest.raises(InvalidState):
            await service.update(protocol.id, alice, ProtocolUpdate(data={"notes": "x"}))
        with pytest.raises(InvalidState):
            await service.update_section(
                protocol.id, alice, SectionUpdate(section_id="notes", content="x")
            )

    async def test_second_finalize_is_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.finalize(protocol.id, alice)

        with pytest.raises(AlreadyFinalized) as exc_info:
            await service.finalize(protocol.id, alice)
        assert exc_info.value.status_code == 400

    async def test_repeating_finalized_status_is_a_no_op(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.finalize(protocol.id, alice)

        protocol = await service.update(protocol.id, alice, ProtocolUpdate(status="finalized"))

        assert protocol.status == ProtocolStatus.FINALIZED
        assert protocol.version == 1

    async def test_status_update_cannot_finalize(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(InvalidState):
            await service.update(protocol.id, alice, ProtocolUpdate(status="finalized"))

        assert protocol.status == ProtocolStatus.DRAFT


class TestSectionUpdate:
    """Tests for section level edits and advisory locks."""

    async def test_locked_section_is_rejected(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=["attendance"]))

        with pytest.raises(SectionLocked, match="locked"):
            await service.update_section(
                protocol.id, alice, SectionUpdate(section_id="attendance", content={"a": 1})
            )

    async def test_unlocked_section_is_written(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice, data={"agenda": ["x"], "notes": "old"})
        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=["attendance"]))

        protocol = await service.update_section(
            protocol.id, alice, SectionUpdate(sectionId="notes", content={"text": "new"})
        )

        assert protocol.version == 3
        assert protocol.data == {"agenda": ["x"], "notes": {"text": "new"}}
        latest = (await service.list_versions(protocol.id, alice))[0]
        assert latest.version == 2
        assert latest.changes == {"section": "notes"}
        assert latest.data["notes"] == "old"

    async def test_unlocking_allows_the_section_again(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=["attendance"]))
        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=[]))

        protocol = await service.update_section(
            protocol.id, alice, SectionUpdate(section_id="attendance", content=[])
        )

        assert protocol.data["attendance"] == []

    @pytest.mark.parametrize(
        "payload",
        [SectionUpdate(content="x"), SectionUpdate(section_id="notes"), SectionUpdate(section_id=" ", content="x")],
    )
    async def test_section_and_content_are_required(
        self, service: ProtocolService, alice: CurrentUser, payload: SectionUpdate
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(ValidationError):
            await service.update_section(protocol.id, alice, payload)


class TestAccess:
    """Tests for group isolation."""

    async def test_other_group_cannot_read(
        self, service: ProtocolService, alice: CurrentUser, mallory: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(AccessDenied):
            await service.get_protocol(protocol.id, mallory)
        with pytest.raises(AccessDenied):
            await service.list_versions(protocol.id, mallory)

    async def test_other_group_cannot_write(
        self, service: ProtocolService, alice: CurrentUser, mallory: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        with pytest.raises(AccessDenied):
            await service.update(protocol.id, mallory, ProtocolUpdate(title="x"))
        with pytest.raises(AccessDenied):
            await service.finalize(protocol.id, mallory)
        with pytest.raises(AccessDenied):
            await service.add_comment(
                protocol.id, mallory, CommentCreate(section_id="notes", comment="hi")
            )

        assert protocol.version == 1

    async def test_other_group_lists_nothing(
        self, service: ProtocolService, alice: CurrentUser, mallory: CurrentUser
    ) -> None:
        await create_protocol(service, alice)

        assert await service.list_protocols(mallory) == []

    @pytest.mark.parametrize("protocol_id", ["00000000-0000-0000-0000-000000000000", "not-a-uuid"])
    async def test_missing_protocol(
        self, service: ProtocolService, alice: CurrentUser, protocol_id: str
    ) -> None:
        with pytest.raises(NotFoundError):
            await service.get_protocol(protocol_id, alice)


class TestListing:
    async def test_filters_and_orders_by_meeting_date(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        for day in (3, 20, 11):
            await service.create(
                alice, ProtocolCreate(meeting_date=date(2024, 1, day), title=f"Jan {day}")
            )

        protocols = await service.list_protocols(alice)
        assert [p.title for p in protocols] == ["Jan 20", "Jan 11", "Jan 3"]

        ranged = await service.list_protocols(
            alice, start_date=date(2024, 1, 5), end_date=date(2024, 1, 15)
        )
        assert [p.title for p in ranged] == ["Jan 11"]

    async def test_status_filter(self, service: ProtocolService, alice: CurrentUser) -> None:
        first = await create_protocol(service, alice, title="First")
        await create_protocol(service, alice, title="Second")
        await service.finalize(first.id, alice)

        finalized = await service.list_protocols(alice, status=ProtocolStatus.FINALIZED)
        assert [p.title for p in finalized] == ["First"]


class TestAttendees:
    """Tests for the attendance upsert."""

    async def test_resubmission_does_not_duplicate(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        payload = AttendeesUpdate(
            attendees=[
                AttendeeInput(userId="user-alice", type="present"),
                AttendeeInput(userId="user-bob", type="online", capacityTasks=50),
            ]
        )

        await service.update_attendees(protocol.id, alice, payload)
        attendees = await service.update_attendees(protocol.id, alice, payload)

        assert sorted(a.user_id for a in attendees) == ["user-alice", "user-bob"]
        bob_row = next(a for a in attendees if a.user_id == "user-bob")
        assert bob_row.attendance_type == AttendanceType.ONLINE
        assert bob_row.capacity_tasks == 50
        assert bob_row.capacity_responsibilities == 100

    async def test_resubmission_overwrites_fields(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update_attendees(
            protocol.id, alice, AttendeesUpdate(attendees=[AttendeeInput(userId="u1", type="present")])
        )

        [row] = await service.update_attendees(
            protocol.id,
            alice,
            AttendeesUpdate(attendees=[AttendeeInput(userId="u1", type="absent", notes="sick")]),
        )

        assert row.attendance_type == AttendanceType.ABSENT
        assert row.notes == "sick"

    async def test_omitted_users_keep_their_row(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update_attendees(
            protocol.id,
            alice,
            AttendeesUpdate(
                attendees=[AttendeeInput(userId="u1", type="present"), AttendeeInput(userId="u2", type="present")]
            ),
        )

        attendees = await service.update_attendees(
            protocol.id, alice, AttendeesUpdate(attendees=[AttendeeInput(userId="u1", type="online")])
        )

        assert sorted(a.user_id for a in attendees) == ["u1", "u2"]

    @pytest.mark.parametrize(
        "entry",
        [
            AttendeeInput(type="present"),
            AttendeeInput(userId="u1"),
            AttendeeInput(userId="u1", type="remote"),
            AttendeeInput(userId="u1", type="present", capacityTasks=101),
        ],
    )
    async def test_invalid_entries_write_nothing(
        self, service: ProtocolService, alice: CurrentUser, entry: AttendeeInput
    ) -> None:
        protocol = await create_protocol(service, alice)
        payload = AttendeesUpdate(attendees=[AttendeeInput(userId="ok", type="present"), entry])

        with pytest.raises(ValidationError):
            await service.update_attendees(protocol.id, alice, payload)

        assert await service.attendees.list_for_protocol(protocol.id) == []

    async def test_attendance_does_not_bump_version(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        await service.update_attendees(
            protocol.id, alice, AttendeesUpdate(attendees=[AttendeeInput(userId="u1", type="present")])
        )

        assert protocol.version == 1
        assert await service.list_versions(protocol.id, alice) == []


class TestComments:
    """Tests for section comments."""

    async def test_add_and_resolve(
        self, service: ProtocolService, alice: CurrentUser, bob: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)

        comment = await service.add_comment(
            protocol.id, alice, CommentCreate(sectionId="notes", comment="Typo here")
        )
        assert comment.resolved is False
        assert comment.user_id == "user-alice"

        comment = await service.resolve_comment(protocol.id, comment.id, bob)
        assert comment.resolved is True
        assert comment.resolved_by == "user-bob"
        assert comment.resolved_at is not None

    async def test_resolving_twice_keeps_first_resolution(
        self, service: ProtocolService, alice: CurrentUser, bob: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        comment = await service.add_comment(
            protocol.id, alice, CommentCreate(section_id="notes", comment="Typo")
        )
        await service.resolve_comment(protocol.id, comment.id, alice)

        comment = await service.resolve_comment(protocol.id, comment.id, bob)

        assert comment.resolved_by == "user-alice"

    async def test_comment_of_another_protocol_is_not_found(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        first = await create_protocol(service, alice, title="First")
        second = await create_protocol(service, alice, title="Second")
        comment = await service.add_comment(
            first.id, alice, CommentCreate(section_id="notes", comment="Typo")
        )

        with pytest.raises(NotFoundError):
            await service.resolve_comment(second.id, comment.id, alice)

    async def test_comments_stay_open_after_finalize(
        self, service: ProtocolService, alice: CurrentUser
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.finalize(protocol.id, alice)

        comment = await service.add_comment(
            protocol.id, alice, CommentCreate(section_id="notes", comment="Late remark")
        )

        assert comment.protocol_id == protocol.id


class TestBroadcasts:
    """Tests for the events emitted after committed mutations."""

    async def test_update_notifies_protocol_room(
        self, service: ProtocolService, alice: CurrentUser, make_connection
    ) -> None:
        protocol = await create_protocol(service, alice)
        viewer = make_connection("viewer", protocol_room(protocol.id))
        elsewhere = make_connection("elsewhere", protocol_room("other"))

        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=["notes"]))

        [payload] = frames_named(viewer, "protocol-updated")
        assert payload["protocolId"] == str(protocol.id)
        assert payload["updates"] == {"lockedSections": ["notes"]}
        assert payload["version"] == 2
        assert payload["updatedBy"]["id"] == "user-alice"
        assert frames_named(elsewhere, "protocol-updated") == []

    async def test_section_update_event(
        self, service: ProtocolService, alice: CurrentUser, make_connection
    ) -> None:
        protocol = await create_protocol(service, alice)
        viewer = make_connection("viewer", protocol_room(protocol.id))

        await service.update_section(
            protocol.id, alice, SectionUpdate(section_id="notes", content="hello")
        )

        [payload] = frames_named(viewer, "section-updated")
        assert payload["sectionId"] == "notes"
        assert payload["content"] == "hello"
        assert payload["version"] == 2

    async def test_rejected_update_emits_nothing(
        self, service: ProtocolService, alice: CurrentUser, make_connection
    ) -> None:
        protocol = await create_protocol(service, alice)
        await service.update(protocol.id, alice, ProtocolUpdate(locked_sections=["notes"]))
        viewer = make_connection("viewer", protocol_room(protocol.id))

        with pytest.raises(SectionLocked):
            await service.update_section(
                protocol.id, alice, SectionUpdate(section_id="notes", content="x")
            )

        assert viewer.transport.send_text.await_count == 0

    async def test_finalize_event(
        self, service: ProtocolService, alice: CurrentUser, make_connection
    ) -> None:
        protocol = await create_protocol(service, alice)
        viewer = make_connection("viewer", protocol_room(protocol.id))

        await service.finalize(protocol.id, alice)

        [payload] = frames_named(viewer, "protocol-updated")
        assert payload["updates"] == {"status": "finalized"}

    async def test_comment_events(
        self, service: ProtocolService, alice: CurrentUser, make_connection
    ) -> None:
        protocol = await create_protocol(service, alice)
        viewer = make_connection("viewer", protocol_room(protocol.id))

        comment = await service.add_comment(
            protocol.id, alice, CommentCreate(section_id="notes", comment="Typo")
        )
        await service.resolve_comment(protocol.id, comment.id, alice)
        await service.resolve_comment(protocol.id, comment.id, alice)

        [added] = frames_named(viewer, "comment-added")
        assert added["comment"]["id"] == str(comment.id)
        assert added["comment"]["section_id"] == "notes"
        resolved = frames_named(viewer, "comment-resolved")
        assert resolved == [
            {
                "protocolId": str(protocol.id),
                "commentId": str(comment.id),
                "resolvedBy": alice.brief(),
            }
        ]
