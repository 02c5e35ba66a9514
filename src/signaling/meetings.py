"""Meeting token record store.

Keeps one ``{lastAccess}`` record per meeting token. Records live in memory
and, when a file path is configured, are written back to a JSON file after
every mutation:

    {
      "9f3c...": {"lastAccess": "2026-10-17T09:12:44.120000Z"}
    }

There is no eviction; the file grows with every created meeting.
"""

import asyncio
import json
import logging
import os
import secrets
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

MEET_ID_BYTES = 16


def generate_meet_id() -> str:
    """Generate an unguessable meeting token (128 random bits, hex-encoded)."""
    return secrets.token_hex(MEET_ID_BYTES)


class MeetingRecord(BaseModel):
    """Persisted state of one meeting token."""

    model_config = ConfigDict(populate_by_name=True)

    last_access: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        alias="lastAccess",
        description="Creation time, refreshed on every successful check",
    )


_records_adapter: TypeAdapter[dict[str, MeetingRecord]] = TypeAdapter(dict[str, MeetingRecord])


class MeetingStoreError(Exception):
    """Raised when the record file cannot be read or written."""


class MeetingStore:
    """Token → record store backed by an optional JSON file.

    The file is read once, on first use, and rewritten atomically after each
    mutation. All operations are serialized by one ``asyncio.Lock``.
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize meeting store.

        Args:
            path: JSON file for persistence, or None to keep records in memory
        """
        self.path = path
        self._records: dict[str, MeetingRecord] | None = None
        self._lock = asyncio.Lock()

    async def create(self) -> str:
        """Create a new meeting token and record its creation time.

        Returns:
            New 32-character hex token

        Raises:
            MeetingStoreError: If the record file cannot be written
        """
        async with self._lock:
            records = await self._load()
            meet_id = generate_meet_id()
            while meet_id in records:
                meet_id = generate_meet_id()
            records[meet_id] = MeetingRecord()
            await self._save(records)

        logger.info("Meeting created", extra={"meet_id": meet_id})
        return meet_id

    async def touch(self, meet_id: str) -> bool:
        """Check whether a meeting exists, refreshing its last-access time.

        Returns:
            True if the meeting exists, False otherwise

        Raises:
            MeetingStoreError: If the record file cannot be read or written
        """
        async with self._lock:
            records = await self._load()
            record = records.get(meet_id)
            if record is None:
                return False
            record.last_access = datetime.now(UTC)
            await self._save(records)
            return True

    async def get(self, meet_id: str) -> MeetingRecord | None:
        """Return the record of a meeting without refreshing it."""
        async with self._lock:
            records = await self._load()
            return records.get(meet_id)

    async def _load(self) -> dict[str, MeetingRecord]:
        if self._records is not None:
            return self._records

        if self.path is None or not self.path.exists():
            self._records = {}
            return self._records

        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
            self._records = _records_adapter.validate_json(raw) if raw.strip() else {}
        except (OSError, ValidationError) as e:
            raise MeetingStoreError(f"Failed to load meetings from {self.path}: {e}") from e

        logger.info(
            "Loaded meeting records",
            extra={"path": str(self.path), "count": len(self._records)},
        )
        return self._records

    async def _save(self, records: dict[str, MeetingRecord]) -> None:
        if self.path is None:
            return

        payload = json.dumps(
            {
                meet_id: record.model_dump(mode="json", by_alias=True)
                for meet_id, record in records.items()
            },
            indent=2,
        )
        try:
            await asyncio.to_thread(_write_atomic, self.path, payload)
        except OSError as e:
            raise MeetingStoreError(f"Failed to save meetings to {self.path}: {e}") from e


def _write_atomic(path: Path, payload: str) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    os.replace(tmp_path, path)
