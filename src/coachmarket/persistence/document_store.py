"""Document store — the record backend the marketplace core reads and writes.

Stands in for the managed database: records live in named collections,
keyed by ID, and are fetched either by ID (``get``) or by attribute
filter (``find_one`` / ``find``).

Atomicity: every mutating operation runs inside ``transaction()``. The
outermost transaction snapshots all collections; if the block raises,
the snapshot is restored and the exception propagates, so a partially
applied transition is never observable.

The store can be persisted to a JSON file and loaded back for recovery.
Thread-safety: this class is not thread-safe. The caller must
synchronise access if used from multiple threads.
"""

from __future__ import annotations

import copy
import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from coachmarket.models.escrow import EscrowRecord
from coachmarket.models.identity import CoachingSession, CoachProfile, Resume, User
from coachmarket.models.marketplace import Bid, VerificationTask


# Collection name → (record class, id attribute)
COLLECTIONS: dict[str, tuple[type, str]] = {
    "users": (User, "user_id"),
    "coaches": (CoachProfile, "coach_id"),
    "resumes": (Resume, "resume_id"),
    "sessions": (CoachingSession, "session_id"),
    "verification_tasks": (VerificationTask, "task_id"),
    "bids": (Bid, "bid_id"),
    "escrows": (EscrowRecord, "escrow_id"),
}


class DocumentStore:
    """In-memory collections with snapshot transactions and JSON persistence.

    Usage:
        store = DocumentStore()
        with store.transaction():
            store.insert("users", user)
        user = store.get("users", "user_1")
        coach = store.find_one("coaches", user_id="user_1")
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._collections: dict[str, dict[str, Any]] = {
            name: {} for name in COLLECTIONS
        }
        self._storage_path = storage_path
        self._snapshot: Optional[dict[str, dict[str, Any]]] = None
        self._depth = 0

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, collection: str, record_id: str) -> Optional[Any]:
        """Return the record with this ID, or None."""
        return self._records(collection).get(record_id)

    def find_one(self, collection: str, **filters: Any) -> Optional[Any]:
        """Return the first record (insertion order) matching every filter."""
        for record in self._records(collection).values():
            if _matches(record, filters):
                return record
        return None

    def find(self, collection: str, **filters: Any) -> list[Any]:
        """Return all records matching every filter, in insertion order."""
        return [
            r for r in self._records(collection).values() if _matches(r, filters)
        ]

    def count(self, collection: str) -> int:
        return len(self._records(collection))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, collection: str, record: Any) -> None:
        """Insert a new record. Raises ValueError on a duplicate ID."""
        _, id_attr = COLLECTIONS[collection]
        record_id = getattr(record, id_attr)
        records = self._records(collection)
        if record_id in records:
            raise ValueError(f"Duplicate {collection} ID: {record_id}")
        records[record_id] = record

    @contextmanager
    def transaction(self) -> Iterator[DocumentStore]:
        """All-or-nothing block. Nested blocks join the outermost one."""
        if self._depth == 0:
            self._snapshot = copy.deepcopy(self._collections)
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self._collections = self._snapshot
                self._snapshot = None
            raise
        self._depth -= 1
        if self._depth == 0:
            self._snapshot = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write all collections to the JSON file (no-op without a path).

        Can raise OSError. The service treats a failure here as a
        degraded-persistence warning once the audit event is committed.
        """
        if self._storage_path is None:
            return
        payload = {
            name: [record.to_record() for record in records.values()]
            for name, records in self._collections.items()
        }
        tmp_path = self._storage_path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, sort_keys=True, indent=2, ensure_ascii=False)
        tmp_path.replace(self._storage_path)

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
        for name, rows in payload.items():
            if name not in COLLECTIONS:
                raise ValueError(f"Unknown collection in state file: {name}")
            record_cls, id_attr = COLLECTIONS[name]
            for row in rows:
                record = record_cls.from_record(row)
                self._collections[name][getattr(record, id_attr)] = record

    def _records(self, collection: str) -> dict[str, Any]:
        records = self._collections.get(collection)
        if records is None:
            raise ValueError(f"Unknown collection: {collection}")
        return records


def _matches(record: Any, filters: dict[str, Any]) -> bool:
    return all(getattr(record, k, None) == v for k, v in filters.items())
