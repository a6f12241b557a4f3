"""
Version Ledger

Append-only history of protocol states. A snapshot is written right before
the protocol row is overwritten, carrying the version number the protocol
held at that moment. Entries are never updated or deleted.
"""

import copy
import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.protocols.models import Protocol, ProtocolVersion
from meeting_protocols.protocols.repositories import ProtocolVersionRepository

logger = logging.getLogger(__name__)


class VersionLedger:
    """Write-once log of prior protocol states."""

    def __init__(self, db: AsyncSession):
        self.versions = ProtocolVersionRepository(db)

    @staticmethod
    def next_version(protocol: Protocol) -> int:
        """Version number the protocol carries after the next update."""
        return (protocol.version or 1) + 1

    async def append_snapshot(
        self,
        protocol: Protocol,
        changed_by: str | None,
        changes: dict[str, Any],
    ) -> ProtocolVersion:
        """
        Record the current, not yet overwritten state of ``protocol``.

        Must be called before any field of ``protocol`` is modified.
        """
        data = copy.deepcopy(protocol.data or {})
        record = ProtocolVersion(
            protocol_id=protocol.id,
            version=protocol.version or 1,
            title=protocol.title,
            data=data,
            content_hash=ProtocolVersion.compute_hash(protocol.title, data),
            changed_by=changed_by,
            changes=changes,
        )
        await self.versions.add(record)
        logger.debug("snapshot stored: %s v%s", protocol.id, record.version)
        return record

    async def list_versions(self, protocol_id: uuid.UUID) -> list[ProtocolVersion]:
        """All records of a protocol, most recent first."""
        return await self.versions.list_by_protocol(protocol_id)
