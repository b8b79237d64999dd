"""Append-only run journal — the audit trail of every deployment run.

Each step a run completes is appended as an immutable record. Records
are never modified or deleted. The journal serves as:
1. The operator's view of how far a failed run got (last completed step).
2. An audit trail of every broadcast transaction, including dry runs.

The journal is not the artifact record: artifacts are written only by
successful broadcast runs, the journal records every attempt.
"""

from __future__ import annotations

import enum
import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class JournalKind(str, enum.Enum):
    RUN_STARTED = "run_started"
    STEP_COMPLETED = "step_completed"
    RUN_FAILED = "run_failed"
    RUN_COMPLETED = "run_completed"


_ENTRY_FIELDS = ("entry_id", "run_id", "kind", "timestamp_utc", "payload", "entry_hash")


def _canonical_hash(
    entry_id: str,
    run_id: str,
    kind: str,
    timestamp_utc: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "entry_id": entry_id,
            "run_id": run_id,
            "kind": kind,
            "timestamp_utc": timestamp_utc,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class JournalEntry:
    """A single immutable journal record. entry_hash covers every other field."""
    entry_id: str
    run_id: str
    kind: JournalKind
    timestamp_utc: str
    payload: dict[str, Any]
    entry_hash: str

    @staticmethod
    def create(
        run_id: str,
        kind: JournalKind,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> JournalEntry:
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        entry_id = f"je-{uuid.uuid4().hex}"
        return JournalEntry(
            entry_id=entry_id,
            run_id=run_id,
            kind=kind,
            timestamp_utc=ts,
            payload=payload,
            entry_hash=_canonical_hash(entry_id, run_id, kind.value, ts, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "run_id": self.run_id,
            "kind": self.kind.value,
            "timestamp_utc": self.timestamp_utc,
            "payload": self.payload,
            "entry_hash": self.entry_hash,
        }


class RunJournal:
    """Append-only journal with optional JSONL persistence.

    Loading an existing file is fail-closed: a malformed record, a record
    whose hash does not match its contents, or a repeated entry id raises
    ValueError.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._entries: list[JournalEntry] = []
        self._entry_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def new_run_id(self) -> str:
        return f"run-{uuid.uuid4().hex[:12]}"

    def append(self, entry: JournalEntry) -> None:
        if entry.entry_id in self._entry_ids:
            raise ValueError(f"Duplicate journal entry ID: {entry.entry_id}")

        self._entries.append(entry)
        self._entry_ids.add(entry.entry_id)

        if self._storage_path:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def record(self, run_id: str, kind: JournalKind, **payload: Any) -> JournalEntry:
        entry = JournalEntry.create(run_id, kind, payload)
        self.append(entry)
        return entry

    def entries(
        self,
        run_id: Optional[str] = None,
        kind: Optional[JournalKind] = None,
    ) -> list[JournalEntry]:
        result = list(self._entries)
        if run_id is not None:
            result = [e for e in result if e.run_id == run_id]
        if kind is not None:
            result = [e for e in result if e.kind == kind]
        return result

    def run_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for e in self._entries:
            seen.setdefault(e.run_id, None)
        return list(seen)

    def last_completed_step(self, run_id: str) -> Optional[str]:
        steps = self.entries(run_id, JournalKind.STEP_COMPLETED)
        return steps[-1].payload.get("step") if steps else None

    @property
    def count(self) -> int:
        return len(self._entries)

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                if not isinstance(data, dict):
                    raise ValueError(f"Malformed journal entry (line {line_num}): not an object")
                missing = [k for k in _ENTRY_FIELDS if k not in data]
                if missing:
                    raise ValueError(
                        f"Malformed journal entry (line {line_num}): missing {', '.join(missing)}"
                    )
                entry_id = data["entry_id"]

                if entry_id in self._entry_ids:
                    raise ValueError(
                        f"Duplicate journal entry ID (line {line_num}): {entry_id}"
                    )

                expected = _canonical_hash(
                    entry_id,
                    data["run_id"],
                    data["kind"],
                    data["timestamp_utc"],
                    data["payload"],
                )
                if data["entry_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): entry {entry_id} "
                        f"stored hash {data['entry_hash']} != computed {expected}"
                    )

                self._entries.append(JournalEntry(
                    entry_id=entry_id,
                    run_id=data["run_id"],
                    kind=JournalKind(data["kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    payload=data["payload"],
                    entry_hash=data["entry_hash"],
                ))
                self._entry_ids.add(entry_id)
