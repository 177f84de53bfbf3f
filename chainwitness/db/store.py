"""
Witness Store Abstraction

This module defines the WitnessStore interface and provides two implementations:
- InMemoryWitnessStore: For development and testing
- PostgresWitnessStore: For production with full durability and concurrency safety

The WitnessStore is responsible for:
- Persisting verification records, witness events, witness members,
  Merkle nodes and document revisions
- Atomic transaction boundaries around multi-step procedures
- Compare-and-set on a record's witness event (earliest wins)

The services in core/ retain responsibility for:
- Hash computation
- Tree construction and proof walking
- Manifest/anchor/import orchestration

TRANSACTION CONTRACT:
Every read and write goes through a StoreSession obtained from transaction():

    with store.transaction() as session:
        event_id = session.max_witness_event_id() + 1
        session.insert_merkle_nodes(nodes)
        ...

Commit happens on normal exit, rollback on any exception. A nested
transaction() on the same store (in the same thread/task) joins the active
session, so a service calling another service stays inside one boundary.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Generator, Iterable, Optional

import psycopg2
import psycopg2.pool
from psycopg2.extras import Json

from ..schemas import (
    MerkleNode,
    Revision,
    VerificationRecord,
    WitnessEvent,
    WitnessMember,
)

logger = logging.getLogger(__name__)


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(Exception):
    """Base exception for witness store errors."""
    pass


class LockTimeoutError(StoreError):
    """Raised when lock acquisition times out (domain busy)."""
    pass


# ============================================================
# COLUMN SETS
# ============================================================

RECORD_COLUMNS = (
    "row_id",
    "domain_id",
    "genesis_hash",
    "revision_id",
    "document_title",
    "content_hash",
    "metadata_hash",
    "signature_hash",
    "witness_hash",
    "verification_hash",
    "timestamp",
    "witness_event_id",
    "signature",
    "public_key",
    "wallet_address",
    "source",
)

# Columns a patch may touch. row_id is storage identity.
RECORD_MUTABLE_COLUMNS = frozenset(RECORD_COLUMNS) - {"row_id"}

EVENT_COLUMNS = (
    "witness_event_id",
    "domain_id",
    "manifest_title",
    "domain_manifest_genesis_hash",
    "merkle_root",
    "witness_event_verification_hash",
    "witness_network",
    "smart_contract_address",
    "transaction_hash",
    "sender_address",
    "witness_hash",
    "source",
)

EVENT_MUTABLE_COLUMNS = frozenset(EVENT_COLUMNS) - {"witness_event_id"}

NODE_COLUMNS = ("witness_event_id", "depth", "left_leaf", "right_leaf", "successor")

MEMBER_COLUMNS = ("witness_event_id", "document_title", "revision_id", "verification_hash")


def _check_columns(fields: dict, allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise StoreError(f"Unknown or immutable columns: {sorted(unknown)}")


# ============================================================
# SESSION INTERFACE
# ============================================================

class StoreSession(ABC):
    """
    Typed operations available inside one transaction.

    Ordering guarantees:
    - "Insertion order" means ascending row_id for verification records
      and the order rows were written for nodes and members.
    - Lookups return None for absence, never raise.
    """

    # ----- verification records -----

    @abstractmethod
    def insert_record(self, record: VerificationRecord) -> VerificationRecord:
        """Insert a record, returning it with its assigned row_id."""
        pass

    @abstractmethod
    def update_record(self, row_id: int, **fields: Any) -> VerificationRecord:
        """Patch a record's columns in place. Raises StoreError for unknown rows."""
        pass

    @abstractmethod
    def record_by_hash(self, verification_hash: str) -> Optional[VerificationRecord]:
        """First record (insertion order) carrying this verification hash."""
        pass

    @abstractmethod
    def record_by_revision_id(self, revision_id: int) -> Optional[VerificationRecord]:
        """Most recently inserted record for this revision id."""
        pass

    @abstractmethod
    def latest_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        """Record with the highest revision id for a title (ties: latest row)."""
        pass

    @abstractmethod
    def last_inserted_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        """Record with the highest row_id for a title."""
        pass

    @abstractmethod
    def records_for_title(self, title: str) -> list[VerificationRecord]:
        """All records of a title ordered by revision id, then row_id."""
        pass

    @abstractmethod
    def records_for_genesis(
        self,
        genesis_hash: str,
        min_revision_id: int = 0,
    ) -> list[VerificationRecord]:
        """Records sharing a genesis hash with revision_id >= min, ascending."""
        pass

    @abstractmethod
    def latest_records_per_title(
        self,
        exclude_prefixes: Iterable[str] = (),
    ) -> list[VerificationRecord]:
        """
        Latest record per distinct title, ordered by title.

        Titles starting with any of exclude_prefixes are skipped.
        """
        pass

    @abstractmethod
    def set_witness_event_if_null(self, verification_hash: str, witness_event_id: int) -> int:
        """
        Atomically set witness_event_id where it is currently null.

        Returns the number of records updated.
        """
        pass

    @abstractmethod
    def delete_records(self, title: str, revision_id: int) -> int:
        """Delete the records of one title/revision. Returns the count deleted."""
        pass

    @abstractmethod
    def relabel_records(self, old_title: str, new_title: str) -> int:
        pass

    @abstractmethod
    def count_records(self, title: Optional[str] = None) -> int:
        pass

    # ----- witness events -----

    @abstractmethod
    def max_witness_event_id(self) -> int:
        """Highest witness event id, 0 when none exist."""
        pass

    @abstractmethod
    def get_witness_event(self, witness_event_id: int) -> Optional[WitnessEvent]:
        pass

    @abstractmethod
    def witness_event_by_verification_hash(
        self,
        witness_event_verification_hash: str,
    ) -> Optional[WitnessEvent]:
        pass

    @abstractmethod
    def insert_witness_event(self, event: WitnessEvent) -> bool:
        """Insert unless the id exists. Returns False when skipped."""
        pass

    @abstractmethod
    def update_witness_event(self, witness_event_id: int, **fields: Any) -> WitnessEvent:
        pass

    # ----- witness members -----

    @abstractmethod
    def insert_witness_member(self, member: WitnessMember) -> None:
        pass

    @abstractmethod
    def witness_members(self, witness_event_id: int) -> list[WitnessMember]:
        pass

    # ----- merkle nodes -----

    @abstractmethod
    def insert_merkle_nodes(self, nodes: Iterable[MerkleNode]) -> int:
        """Insert nodes, skipping existing keys. Returns the count inserted."""
        pass

    @abstractmethod
    def find_merkle_nodes(
        self,
        witness_event_id: int,
        leaf: str,
        depth: Optional[int] = None,
    ) -> list[MerkleNode]:
        """Nodes of an event holding leaf as left or right, insertion order."""
        pass

    @abstractmethod
    def merkle_leaf_exists(self, leaf: str) -> bool:
        """True if any node of any event holds leaf as left or right."""
        pass

    @abstractmethod
    def merkle_nodes(self, witness_event_id: int) -> list[MerkleNode]:
        """All nodes of an event ordered by depth, then insertion."""
        pass

    # ----- documents -----

    @abstractmethod
    def insert_revision(
        self,
        title: str,
        slots: dict[str, str],
        timestamp: str,
        comment: str = "",
    ) -> Revision:
        """Store a revision under the next monotonic revision id."""
        pass

    @abstractmethod
    def document_revisions(self, title: str) -> list[Revision]:
        """Revisions of a document, ascending by revision id."""
        pass

    @abstractmethod
    def rename_document(self, old_title: str, new_title: str) -> int:
        """Move all revisions to a new title. Returns the count moved."""
        pass

    def document_exists(self, title: str) -> bool:
        return bool(self.document_revisions(title))

    # ----- locking -----

    @abstractmethod
    def lock_domain(self, domain_id: str) -> None:
        """Hold the single-writer lock of a domain until the transaction ends."""
        pass


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class WitnessStore(ABC):
    """
    Abstract base class for witness storage.

    Implementations must ensure:
    1. transaction() is atomic: all writes commit together or none do
    2. set_witness_event_if_null is a compare-and-set
    3. Revision ids and record row ids are monotonic
    """

    def __init__(self):
        self._active_session: ContextVar[Optional[StoreSession]] = ContextVar(
            f"witness_store_session_{id(self)}", default=None
        )

    @contextmanager
    def transaction(self) -> Generator[StoreSession, None, None]:
        """
        Open (or join) a transaction.

        Yields:
            StoreSession bound to the active transaction
        """
        active = self._active_session.get()
        if active is not None:
            yield active
            return

        with self._open_session() as session:
            token = self._active_session.set(session)
            try:
                yield session
            finally:
                self._active_session.reset(token)

    @contextmanager
    @abstractmethod
    def _open_session(self) -> Generator[StoreSession, None, None]:
        """Internal: begin a new transaction. Use transaction() instead."""
        pass

    @abstractmethod
    def ping(self) -> bool:
        """Connectivity check for health endpoints."""
        pass

    def close(self) -> None:
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

@dataclass
class _Tables:
    records: list[VerificationRecord] = field(default_factory=list)
    events: dict[int, WitnessEvent] = field(default_factory=dict)
    members: list[WitnessMember] = field(default_factory=list)
    nodes: list[MerkleNode] = field(default_factory=list)
    node_keys: set = field(default_factory=set)
    revisions: list[Revision] = field(default_factory=list)
    next_row_id: int = 1
    next_revision_id: int = 1

    def snapshot(self) -> "_Tables":
        # Rows are frozen models, so copying the containers is enough
        return _Tables(
            records=list(self.records),
            events=dict(self.events),
            members=list(self.members),
            nodes=list(self.nodes),
            node_keys=set(self.node_keys),
            revisions=list(self.revisions),
            next_row_id=self.next_row_id,
            next_revision_id=self.next_revision_id,
        )


class InMemorySession(StoreSession):
    """
    Session over the in-memory tables. Only valid while the store lock is held.

    Reads go straight to the live tables. The first write takes a snapshot
    so the store can restore it on rollback; read-only sessions copy nothing.
    """

    def __init__(self, store: "InMemoryWitnessStore"):
        self._store = store
        self.snapshot: Optional[_Tables] = None

    @property
    def _t(self) -> _Tables:
        return self._store._tables

    @property
    def _w(self) -> _Tables:
        if self.snapshot is None:
            self.snapshot = self._store._tables.snapshot()
        return self._store._tables

    # ----- verification records -----

    def insert_record(self, record: VerificationRecord) -> VerificationRecord:
        stored = record.model_copy(update={"row_id": self._w.next_row_id})
        self._w.next_row_id += 1
        self._w.records.append(stored)
        return stored

    def update_record(self, row_id: int, **fields: Any) -> VerificationRecord:
        _check_columns(fields, RECORD_MUTABLE_COLUMNS)
        for i, rec in enumerate(self._w.records):
            if rec.row_id == row_id:
                updated = VerificationRecord.model_validate({**rec.model_dump(), **fields})
                self._w.records[i] = updated
                return updated
        raise StoreError(f"No verification record with row_id {row_id}")

    def record_by_hash(self, verification_hash: str) -> Optional[VerificationRecord]:
        for rec in self._t.records:
            if rec.verification_hash == verification_hash:
                return rec
        return None

    def record_by_revision_id(self, revision_id: int) -> Optional[VerificationRecord]:
        for rec in reversed(self._t.records):
            if rec.revision_id == revision_id:
                return rec
        return None

    def latest_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        matches = [r for r in self._t.records if r.document_title == title]
        if not matches:
            return None
        return max(matches, key=lambda r: (r.revision_id, r.row_id))

    def last_inserted_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        for rec in reversed(self._t.records):
            if rec.document_title == title:
                return rec
        return None

    def records_for_title(self, title: str) -> list[VerificationRecord]:
        return sorted(
            (r for r in self._t.records if r.document_title == title),
            key=lambda r: (r.revision_id, r.row_id),
        )

    def records_for_genesis(
        self,
        genesis_hash: str,
        min_revision_id: int = 0,
    ) -> list[VerificationRecord]:
        return sorted(
            (
                r for r in self._t.records
                if r.genesis_hash == genesis_hash and r.revision_id >= min_revision_id
            ),
            key=lambda r: (r.revision_id, r.row_id),
        )

    def latest_records_per_title(
        self,
        exclude_prefixes: Iterable[str] = (),
    ) -> list[VerificationRecord]:
        prefixes = tuple(exclude_prefixes)
        latest: dict[str, VerificationRecord] = {}
        for rec in self._t.records:
            if prefixes and rec.document_title.startswith(prefixes):
                continue
            current = latest.get(rec.document_title)
            if current is None or (rec.revision_id, rec.row_id) > (current.revision_id, current.row_id):
                latest[rec.document_title] = rec
        return [latest[title] for title in sorted(latest)]

    def set_witness_event_if_null(self, verification_hash: str, witness_event_id: int) -> int:
        updated = 0
        for i, rec in enumerate(self._w.records):
            if rec.verification_hash == verification_hash and rec.witness_event_id is None:
                self._w.records[i] = rec.model_copy(update={"witness_event_id": witness_event_id})
                updated += 1
        return updated

    def delete_records(self, title: str, revision_id: int) -> int:
        before = len(self._w.records)
        self._w.records = [
            r for r in self._w.records
            if not (r.document_title == title and r.revision_id == revision_id)
        ]
        return before - len(self._w.records)

    def relabel_records(self, old_title: str, new_title: str) -> int:
        moved = 0
        for i, rec in enumerate(self._w.records):
            if rec.document_title == old_title:
                self._w.records[i] = rec.model_copy(update={"document_title": new_title})
                moved += 1
        return moved

    def count_records(self, title: Optional[str] = None) -> int:
        if title is None:
            return len(self._t.records)
        return sum(1 for r in self._t.records if r.document_title == title)

    # ----- witness events -----

    def max_witness_event_id(self) -> int:
        return max(self._t.events, default=0)

    def get_witness_event(self, witness_event_id: int) -> Optional[WitnessEvent]:
        return self._t.events.get(witness_event_id)

    def witness_event_by_verification_hash(
        self,
        witness_event_verification_hash: str,
    ) -> Optional[WitnessEvent]:
        for event_id in sorted(self._t.events):
            event = self._t.events[event_id]
            if event.witness_event_verification_hash == witness_event_verification_hash:
                return event
        return None

    def insert_witness_event(self, event: WitnessEvent) -> bool:
        if event.witness_event_id in self._w.events:
            return False
        self._w.events[event.witness_event_id] = event
        return True

    def update_witness_event(self, witness_event_id: int, **fields: Any) -> WitnessEvent:
        _check_columns(fields, EVENT_MUTABLE_COLUMNS)
        event = self._w.events.get(witness_event_id)
        if event is None:
            raise StoreError(f"No witness event {witness_event_id}")
        updated = WitnessEvent.model_validate({**event.model_dump(), **fields})
        self._w.events[witness_event_id] = updated
        return updated

    # ----- witness members -----

    def insert_witness_member(self, member: WitnessMember) -> None:
        self._w.members.append(member)

    def witness_members(self, witness_event_id: int) -> list[WitnessMember]:
        return [m for m in self._t.members if m.witness_event_id == witness_event_id]

    # ----- merkle nodes -----

    def insert_merkle_nodes(self, nodes: Iterable[MerkleNode]) -> int:
        inserted = 0
        for node in nodes:
            if node.key in self._w.node_keys:
                continue
            self._w.node_keys.add(node.key)
            self._w.nodes.append(node)
            inserted += 1
        return inserted

    def find_merkle_nodes(
        self,
        witness_event_id: int,
        leaf: str,
        depth: Optional[int] = None,
    ) -> list[MerkleNode]:
        return [
            n for n in self._t.nodes
            if n.witness_event_id == witness_event_id
            and n.contains(leaf)
            and (depth is None or n.depth == depth)
        ]

    def merkle_leaf_exists(self, leaf: str) -> bool:
        return any(n.contains(leaf) for n in self._t.nodes)

    def merkle_nodes(self, witness_event_id: int) -> list[MerkleNode]:
        # sorted() is stable, so insertion order holds within a depth
        return sorted(
            (n for n in self._t.nodes if n.witness_event_id == witness_event_id),
            key=lambda n: n.depth,
        )

    # ----- documents -----

    def insert_revision(
        self,
        title: str,
        slots: dict[str, str],
        timestamp: str,
        comment: str = "",
    ) -> Revision:
        revision = Revision(
            revision_id=self._w.next_revision_id,
            document_title=title,
            slots=dict(slots),
            timestamp=timestamp,
            comment=comment,
        )
        self._w.next_revision_id += 1
        self._w.revisions.append(revision)
        return revision

    def document_revisions(self, title: str) -> list[Revision]:
        return [r for r in self._t.revisions if r.document_title == title]

    def rename_document(self, old_title: str, new_title: str) -> int:
        moved = 0
        for i, rev in enumerate(self._w.revisions):
            if rev.document_title == old_title:
                self._w.revisions[i] = rev.model_copy(update={"document_title": new_title})
                moved += 1
        return moved

    # ----- locking -----

    def lock_domain(self, domain_id: str) -> None:
        # The store lock is already held for the whole transaction
        pass


class InMemoryWitnessStore(WitnessStore):
    """
    In-memory implementation of WitnessStore.

    Suitable for:
    - Development
    - Testing
    - Single-instance deployments without persistence requirements

    Transactions are serialized by a re-entrant lock. Rollback restores
    the tables as they were when the transaction began.
    """

    def __init__(self):
        super().__init__()
        self._tables = _Tables()
        self._lock = RLock()

    @contextmanager
    def _open_session(self) -> Generator[StoreSession, None, None]:
        with self._lock:
            session = InMemorySession(self)
            try:
                yield session
            except BaseException:
                if session.snapshot is not None:
                    self._tables = session.snapshot
                raise

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        """Clear all tables (for testing only)."""
        with self._lock:
            self._tables = _Tables()


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

class PostgresSession(StoreSession):
    """Session bound to one psycopg2 connection/cursor."""

    def __init__(self, store: "PostgresWitnessStore", cursor: Any):
        self._store = store
        self._cursor = cursor

    def _execute(self, sql: str, params: tuple = ()) -> None:
        try:
            self._cursor.execute(sql, params)
        except psycopg2.Error as e:
            kind = self._store._timeout_kind(e)
            if kind == "lock":
                raise LockTimeoutError(
                    "Domain busy - could not acquire lock. Try again."
                ) from e
            if kind in ("statement", "timeout"):
                raise StoreError("Query timed out - statement took too long.") from e
            raise

    def _fetch_records(self, where: str, params: tuple = (), order: str = "row_id") -> list[VerificationRecord]:
        self._execute(
            f"SELECT {', '.join(RECORD_COLUMNS)} FROM verification_records "
            f"WHERE {where} ORDER BY {order}",
            params,
        )
        return [_row_to_record(row) for row in self._cursor.fetchall()]

    def _first(self, records: list) -> Optional[Any]:
        return records[0] if records else None

    # ----- verification records -----

    def insert_record(self, record: VerificationRecord) -> VerificationRecord:
        columns = RECORD_COLUMNS[1:]
        values = record.model_dump(mode="json")
        self._execute(
            f"INSERT INTO verification_records ({', '.join(columns)}) "
            f"VALUES ({', '.join(['%s'] * len(columns))}) RETURNING row_id",
            tuple(values[c] for c in columns),
        )
        row_id = self._cursor.fetchone()[0]
        return record.model_copy(update={"row_id": row_id})

    def update_record(self, row_id: int, **fields: Any) -> VerificationRecord:
        _check_columns(fields, RECORD_MUTABLE_COLUMNS)
        if fields:
            assignments = ", ".join(f"{c} = %s" for c in fields)
            values = tuple(
                v.value if hasattr(v, "value") else v for v in fields.values()
            )
            self._execute(
                f"UPDATE verification_records SET {assignments} WHERE row_id = %s",
                values + (row_id,),
            )
        record = self._first(self._fetch_records("row_id = %s", (row_id,)))
        if record is None:
            raise StoreError(f"No verification record with row_id {row_id}")
        return record

    def record_by_hash(self, verification_hash: str) -> Optional[VerificationRecord]:
        return self._first(self._fetch_records(
            "verification_hash = %s", (verification_hash,), order="row_id LIMIT 1"
        ))

    def record_by_revision_id(self, revision_id: int) -> Optional[VerificationRecord]:
        return self._first(self._fetch_records(
            "revision_id = %s", (revision_id,), order="row_id DESC LIMIT 1"
        ))

    def latest_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        return self._first(self._fetch_records(
            "document_title = %s", (title,), order="revision_id DESC, row_id DESC LIMIT 1"
        ))

    def last_inserted_record_for_title(self, title: str) -> Optional[VerificationRecord]:
        return self._first(self._fetch_records(
            "document_title = %s", (title,), order="row_id DESC LIMIT 1"
        ))

    def records_for_title(self, title: str) -> list[VerificationRecord]:
        return self._fetch_records(
            "document_title = %s", (title,), order="revision_id, row_id"
        )

    def records_for_genesis(
        self,
        genesis_hash: str,
        min_revision_id: int = 0,
    ) -> list[VerificationRecord]:
        return self._fetch_records(
            "genesis_hash = %s AND revision_id >= %s",
            (genesis_hash, min_revision_id),
            order="revision_id, row_id",
        )

    def latest_records_per_title(
        self,
        exclude_prefixes: Iterable[str] = (),
    ) -> list[VerificationRecord]:
        prefixes = tuple(exclude_prefixes)
        where = " AND ".join(["NOT starts_with(document_title, %s)"] * len(prefixes)) or "TRUE"
        self._execute(
            f"SELECT DISTINCT ON (document_title) {', '.join(RECORD_COLUMNS)} "
            f"FROM verification_records WHERE {where} "
            f"ORDER BY document_title, revision_id DESC, row_id DESC",
            prefixes,
        )
        return [_row_to_record(row) for row in self._cursor.fetchall()]

    def set_witness_event_if_null(self, verification_hash: str, witness_event_id: int) -> int:
        self._execute(
            """
            UPDATE verification_records
            SET witness_event_id = %s
            WHERE verification_hash = %s AND witness_event_id IS NULL
            """,
            (witness_event_id, verification_hash),
        )
        return self._cursor.rowcount

    def delete_records(self, title: str, revision_id: int) -> int:
        self._execute(
            "DELETE FROM verification_records WHERE document_title = %s AND revision_id = %s",
            (title, revision_id),
        )
        return self._cursor.rowcount

    def relabel_records(self, old_title: str, new_title: str) -> int:
        self._execute(
            "UPDATE verification_records SET document_title = %s WHERE document_title = %s",
            (new_title, old_title),
        )
        return self._cursor.rowcount

    def count_records(self, title: Optional[str] = None) -> int:
        if title is None:
            self._execute("SELECT COUNT(*) FROM verification_records")
        else:
            self._execute(
                "SELECT COUNT(*) FROM verification_records WHERE document_title = %s",
                (title,),
            )
        return self._cursor.fetchone()[0]

    # ----- witness events -----

    def _fetch_events(self, where: str, params: tuple = ()) -> list[WitnessEvent]:
        self._execute(
            f"SELECT {', '.join(EVENT_COLUMNS)} FROM witness_events "
            f"WHERE {where} ORDER BY witness_event_id",
            params,
        )
        return [
            WitnessEvent.model_validate(dict(zip(EVENT_COLUMNS, row)))
            for row in self._cursor.fetchall()
        ]

    def max_witness_event_id(self) -> int:
        self._execute("SELECT COALESCE(MAX(witness_event_id), 0) FROM witness_events")
        return self._cursor.fetchone()[0]

    def get_witness_event(self, witness_event_id: int) -> Optional[WitnessEvent]:
        return self._first(self._fetch_events("witness_event_id = %s", (witness_event_id,)))

    def witness_event_by_verification_hash(
        self,
        witness_event_verification_hash: str,
    ) -> Optional[WitnessEvent]:
        return self._first(self._fetch_events(
            "witness_event_verification_hash = %s", (witness_event_verification_hash,)
        ))

    def insert_witness_event(self, event: WitnessEvent) -> bool:
        values = event.model_dump(mode="json")
        self._execute(
            f"INSERT INTO witness_events ({', '.join(EVENT_COLUMNS)}) "
            f"VALUES ({', '.join(['%s'] * len(EVENT_COLUMNS))}) "
            f"ON CONFLICT (witness_event_id) DO NOTHING",
            tuple(values[c] for c in EVENT_COLUMNS),
        )
        return self._cursor.rowcount == 1

    def update_witness_event(self, witness_event_id: int, **fields: Any) -> WitnessEvent:
        _check_columns(fields, EVENT_MUTABLE_COLUMNS)
        if fields:
            assignments = ", ".join(f"{c} = %s" for c in fields)
            values = tuple(
                v.value if hasattr(v, "value") else v for v in fields.values()
            )
            self._execute(
                f"UPDATE witness_events SET {assignments} WHERE witness_event_id = %s",
                values + (witness_event_id,),
            )
        event = self.get_witness_event(witness_event_id)
        if event is None:
            raise StoreError(f"No witness event {witness_event_id}")
        return event

    # ----- witness members -----

    def insert_witness_member(self, member: WitnessMember) -> None:
        self._execute(
            f"INSERT INTO witness_members ({', '.join(MEMBER_COLUMNS)}) "
            f"VALUES (%s, %s, %s, %s)",
            tuple(getattr(member, c) for c in MEMBER_COLUMNS),
        )

    def witness_members(self, witness_event_id: int) -> list[WitnessMember]:
        self._execute(
            f"SELECT {', '.join(MEMBER_COLUMNS)} FROM witness_members "
            f"WHERE witness_event_id = %s ORDER BY id",
            (witness_event_id,),
        )
        return [
            WitnessMember.model_validate(dict(zip(MEMBER_COLUMNS, row)))
            for row in self._cursor.fetchall()
        ]

    # ----- merkle nodes -----

    def _fetch_nodes(self, where: str, params: tuple, order: str = "id") -> list[MerkleNode]:
        self._execute(
            f"SELECT {', '.join(NODE_COLUMNS)} FROM merkle_nodes "
            f"WHERE {where} ORDER BY {order}",
            params,
        )
        return [
            MerkleNode.model_validate(dict(zip(NODE_COLUMNS, row)))
            for row in self._cursor.fetchall()
        ]

    def insert_merkle_nodes(self, nodes: Iterable[MerkleNode]) -> int:
        inserted = 0
        for node in nodes:
            self._execute(
                f"INSERT INTO merkle_nodes ({', '.join(NODE_COLUMNS)}) "
                f"VALUES (%s, %s, %s, %s, %s) ON CONFLICT DO NOTHING",
                tuple(getattr(node, c) for c in NODE_COLUMNS),
            )
            inserted += self._cursor.rowcount
        return inserted

    def find_merkle_nodes(
        self,
        witness_event_id: int,
        leaf: str,
        depth: Optional[int] = None,
    ) -> list[MerkleNode]:
        where = "witness_event_id = %s AND (left_leaf = %s OR right_leaf = %s)"
        params: tuple = (witness_event_id, leaf, leaf)
        if depth is not None:
            where += " AND depth = %s"
            params += (depth,)
        return self._fetch_nodes(where, params)

    def merkle_leaf_exists(self, leaf: str) -> bool:
        self._execute(
            "SELECT EXISTS (SELECT 1 FROM merkle_nodes WHERE left_leaf = %s OR right_leaf = %s)",
            (leaf, leaf),
        )
        return bool(self._cursor.fetchone()[0])

    def merkle_nodes(self, witness_event_id: int) -> list[MerkleNode]:
        return self._fetch_nodes("witness_event_id = %s", (witness_event_id,), order="depth, id")

    # ----- documents -----

    def insert_revision(
        self,
        title: str,
        slots: dict[str, str],
        timestamp: str,
        comment: str = "",
    ) -> Revision:
        self._execute(
            """
            INSERT INTO document_revisions (document_title, slots, timestamp, comment)
            VALUES (%s, %s, %s, %s)
            RETURNING revision_id
            """,
            (title, Json(slots), timestamp, comment),
        )
        revision_id = self._cursor.fetchone()[0]
        return Revision(
            revision_id=revision_id,
            document_title=title,
            slots=dict(slots),
            timestamp=timestamp,
            comment=comment,
        )

    def document_revisions(self, title: str) -> list[Revision]:
        self._execute(
            """
            SELECT revision_id, document_title, slots, timestamp, comment
            FROM document_revisions
            WHERE document_title = %s
            ORDER BY revision_id
            """,
            (title,),
        )
        return [
            Revision(
                revision_id=row[0],
                document_title=row[1],
                slots=row[2],
                timestamp=row[3],
                comment=row[4],
            )
            for row in self._cursor.fetchall()
        ]

    def rename_document(self, old_title: str, new_title: str) -> int:
        self._execute(
            "UPDATE document_revisions SET document_title = %s WHERE document_title = %s",
            (new_title, old_title),
        )
        return self._cursor.rowcount

    # ----- locking -----

    def lock_domain(self, domain_id: str) -> None:
        # Released automatically at commit/rollback
        self._execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (domain_id,))


def _row_to_record(row: tuple) -> VerificationRecord:
    """Convert a database row to a VerificationRecord."""
    return VerificationRecord.model_validate(dict(zip(RECORD_COLUMNS, row)))


class PostgresWitnessStore(WitnessStore):
    """
    PostgreSQL implementation of WitnessStore.

    Provides:
    - Full ACID guarantees per transaction()
    - Single writer per domain via transaction-scoped advisory locks
    - Compare-and-set witness assignment via conditional UPDATE
    - Lock/statement timeouts to prevent hanging

    THREAD SAFETY:
    Each transaction() checks out its own connection from a thread-safe
    pool, and the active session is tracked in a ContextVar, so one store
    instance can be shared across threads.

    Usage:
        pool = psycopg2.pool.ThreadedConnectionPool(1, 10, dsn)
        store = PostgresWitnessStore(pool)

    Requirements:
    - PostgreSQL 12+
    - Tables created from schema.sql (see init_schema)
    """

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    # psycopg2 error codes for lock/statement timeout
    PGCODE_LOCK_NOT_AVAILABLE = '55P03'
    PGCODE_QUERY_CANCELED = '57014'

    def __init__(
        self,
        pool: Any,
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Initialize PostgreSQL witness store with a connection pool.

        Args:
            pool: psycopg2 connection pool (getconn/putconn/closeall).
            lock_timeout_ms: How long to wait for a lock (ms). Default 2000.
            statement_timeout_ms: Max statement execution time (ms). Default 10000.
        """
        super().__init__()
        self._pool = pool
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        """Check a connection out of the pool; broken ones are discarded."""
        try:
            conn = self._pool.getconn()
        except psycopg2.pool.PoolError as e:
            raise StoreError(f"Connection pool exhausted: {e}") from e
        try:
            yield conn
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    @contextmanager
    def _open_session(self) -> Generator[StoreSession, None, None]:
        with self._connection() as conn:
            conn.autocommit = False
            cursor = conn.cursor()
            committed = False

            try:
                # SET LOCAL keeps the timeouts transaction-scoped
                cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
                cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
                cursor.execute("SET LOCAL idle_in_transaction_session_timeout = '30s'")

                yield PostgresSession(self, cursor)

                conn.commit()
                committed = True
            finally:
                if not committed:
                    try:
                        conn.rollback()
                    except psycopg2.Error:
                        logger.warning("Rollback failed; connection may be broken")
                cursor.close()

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Determine the type of timeout from a PostgreSQL exception.

        Returns:
            "lock" - Lock-related failure (timeout waiting, or NOWAIT refusal)
            "statement" - Statement timeout (query took too long)
            "timeout" - Some timeout but unclear which
            None - Not a timeout error

        NOTE: PostgreSQL uses 57014 (query_canceled) for BOTH lock_timeout and
        statement_timeout. We distinguish by checking the error message.
        """
        pgcode = getattr(e, 'pgcode', None)
        err_msg = (getattr(e, 'pgerror', None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if 'lock timeout' in err_msg or 'lock_timeout' in err_msg:
                return "lock"
            if 'statement timeout' in err_msg or 'statement_timeout' in err_msg:
                return "statement"
            return "timeout"

        return None

    def ping(self) -> bool:
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("SELECT 1")
                ok = cursor.fetchone()[0] == 1
                conn.rollback()
                return ok
            finally:
                cursor.close()

    def init_schema(self, ddl: str) -> None:
        """Apply the schema DDL (idempotent statements only)."""
        with self._connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(ddl)
                conn.commit()
            finally:
                cursor.close()

    def close(self) -> None:
        """Close every pooled connection."""
        self._pool.closeall()
