"""Persisted execution records.

Records are stored as a JSON list in a single file. Every write goes through
an optimistic compare-and-update keyed by ``workflow_id``: a write only lands
if the stored ``version`` still matches the version the writer read, so the
polling path and the webhook path cannot overwrite each other's changes.

Each read-compare-write runs under a thread lock and a ``filelock`` lock on
``<state file>.lock``, so separate processes sharing the file (the CLI next to
the server) are serialized as well. Writes go to a unique temp file in the
same directory and are renamed into place.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from filelock import FileLock
from pydantic import ValidationError

from output_workflows.errors import (
    ConcurrentUpdateError,
    DuplicateExecutionError,
    ExecutionNotFoundError,
    StateFileError,
)
from output_workflows.execution.state_machine import (
    ExecutableRef,
    ExecutionRecord,
    ExecutionStatus,
    is_terminal,
    utc_iso_now,
)

logger = logging.getLogger(__name__)

Mutation = Callable[[ExecutionRecord], ExecutionRecord]


def _parse_iso(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class ExecutionStore:
    path: Path
    max_attempts: int = 10

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._lock = threading.Lock()
        self._file_lock = FileLock(str(self.path) + ".lock")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        # Threads of this process queue on the thread lock, other processes on the file.
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._file_lock:
                yield

    def _load_unlocked(self) -> list[ExecutionRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateFileError(f"Execution state file {self.path} is not valid JSON") from e
        if not isinstance(raw, list):
            raise StateFileError(f"Execution state file {self.path} must hold a JSON list")
        try:
            return [ExecutionRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StateFileError(
                f"Execution state file {self.path} holds an invalid record"
            ) from e

    def _save_unlocked(self, records: list[ExecutionRecord]) -> None:
        payload = [r.model_dump(mode="json") for r in records]
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def list(
        self,
        *,
        status: ExecutionStatus | None = None,
        workflow_name: str | None = None,
        executable: ExecutableRef | None = None,
    ) -> list[ExecutionRecord]:
        with self._locked():
            records = self._load_unlocked()
        if status is not None:
            records = [r for r in records if r.status == status]
        if workflow_name is not None:
            records = [r for r in records if r.workflow_name == workflow_name]
        if executable is not None:
            records = [r for r in records if r.executable == executable]
        return records

    def active(self) -> list[ExecutionRecord]:
        return [r for r in self.list() if r.active]

    def terminal(self) -> list[ExecutionRecord]:
        return [r for r in self.list() if r.terminal]

    def get(self, workflow_id: str) -> ExecutionRecord | None:
        with self._locked():
            for record in self._load_unlocked():
                if record.workflow_id == workflow_id:
                    return record
            return None

    def get_or_raise(self, workflow_id: str) -> ExecutionRecord:
        record = self.get(workflow_id)
        if record is None:
            raise ExecutionNotFoundError(workflow_id)
        return record

    def create(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._locked():
            records = self._load_unlocked()
            if any(r.workflow_id == record.workflow_id for r in records):
                raise DuplicateExecutionError(
                    f"Execution already exists for workflow {record.workflow_id}"
                )
            stored = record.model_copy(update={"updated_at": utc_iso_now(), "version": 0})
            records.append(stored)
            self._save_unlocked(records)
            return stored

    def compare_and_update(
        self, expected: ExecutionRecord, updated: ExecutionRecord
    ) -> ExecutionRecord:
        """Persist ``updated`` if the stored record is still at ``expected.version``."""

        if updated.workflow_id != expected.workflow_id:
            raise ValueError("workflow_id is immutable")

        with self._locked():
            records = self._load_unlocked()
            for idx, current in enumerate(records):
                if current.workflow_id != expected.workflow_id:
                    continue
                if current.version != expected.version:
                    raise ConcurrentUpdateError(
                        f"Execution {expected.workflow_id} changed concurrently "
                        f"(expected version {expected.version}, found {current.version})"
                    )
                merged = updated.model_copy(
                    update={
                        "workflow_name": current.workflow_name,
                        "created_at": current.created_at,
                        "updated_at": utc_iso_now(),
                        "version": current.version + 1,
                    }
                )
                records[idx] = merged
                self._save_unlocked(records)
                return merged
            raise ExecutionNotFoundError(expected.workflow_id)

    def apply(
        self, workflow_id: str, mutate: Mutation
    ) -> tuple[ExecutionRecord, ExecutionRecord]:
        """Read, mutate and write back a record, retrying on version conflicts.

        ``mutate`` must be a pure function of the record it receives; it may be
        called more than once. Returning the same object skips the write.

        Returns:
            The record as read before the winning write, and the stored result.
        """

        for attempt in range(1, self.max_attempts + 1):
            current = self.get_or_raise(workflow_id)
            updated = mutate(current)
            if updated is current:
                return current, current
            try:
                return current, self.compare_and_update(current, updated)
            except ConcurrentUpdateError:
                logger.debug(
                    "Retrying execution update after conflict",
                    extra={"workflow_id": workflow_id, "attempt": attempt},
                )
        raise ConcurrentUpdateError(
            f"Gave up updating execution {workflow_id} after {self.max_attempts} attempts"
        )

    def delete(self, workflow_id: str) -> bool:
        with self._locked():
            records = self._load_unlocked()
            kept = [r for r in records if r.workflow_id != workflow_id]
            if len(kept) == len(records):
                return False
            self._save_unlocked(kept)
            return True

    def purge_terminal(self, *, older_than_days: int = 30, now: datetime | None = None) -> int:
        """Remove terminal records created more than ``older_than_days`` ago."""

        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")
        cutoff = (now or datetime.now(tz=UTC)) - timedelta(days=older_than_days)

        def _expired(record: ExecutionRecord) -> bool:
            if not is_terminal(record.status):
                return False
            created = _parse_iso(record.created_at)
            return created is not None and created <= cutoff

        with self._locked():
            records = self._load_unlocked()
            kept = [r for r in records if not _expired(r)]
            removed = len(records) - len(kept)
            if removed:
                self._save_unlocked(kept)
        if removed:
            logger.info("Purged terminal executions", extra={"count": removed})
        return removed
