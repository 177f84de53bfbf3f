"""
Document Service

Minimal in-process document collaborator. Produces revisions and the
verification record of each one, so the engine is usable end to end.

Record fields of a new revision N:
    content_hash      = H(slots in role order)
    metadata_hash     = H(domain_id ‖ timestamp ‖ verification_hash(N-1))
    signature_hash    = H(signature(N-1) ‖ public_key(N-1)), None if N-1 unsigned
    witness_hash      = witness_hash of the event that witnessed N-1, None if not anchored
    verification_hash = H(content ‖ metadata ‖ signature ‖ witness)
    genesis_hash      = verification_hash of the chain's first revision

A signature or witness over revision N therefore lands in the hashes
of revision N+1; N's own stored components never change.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from ..db.store import StoreSession, WitnessStore
from ..observability import get_logger
from ..schemas import MAIN_SLOT, RecordSource, Revision, VerificationRecord
from .config import DomainConfig
from .exceptions import ConflictError, InvalidArgumentError, NotFoundError
from .hasher import Hasher, ensure_utf8

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

SIGNATURE_SECTION = "== Signatures =="


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """14-digit UTC timestamp, YYYYMMDDHHMMSS."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class DocumentService:
    """Creates, extends and renames documents together with their records."""

    def __init__(
        self,
        store: WitnessStore,
        config: DomainConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._config = config
        self._clock = clock

    @property
    def domain_id(self) -> str:
        return self._config.domain_id

    def timestamp(self) -> str:
        return utc_timestamp(self._clock())

    def save_revision(
        self,
        title: str,
        text: Optional[str] = None,
        slots: Optional[dict[str, str]] = None,
        comment: str = "",
        timestamp: Optional[str] = None,
    ) -> tuple[Revision, VerificationRecord]:
        """
        Store a new revision and its verification record.

        Exactly one of text (main slot only) or slots must be given.

        Raises:
            InvalidArgumentError: empty title, neither/both of text and slots,
                or text that is not valid UTF-8
        """
        if not title:
            raise InvalidArgumentError("Document title must not be empty")
        if (text is None) == (slots is None):
            raise InvalidArgumentError("Provide exactly one of text or slots")
        if slots is None:
            slots = {MAIN_SLOT: text}
        ensure_utf8(title, "title")
        ensure_utf8(slots, "slots")
        ensure_utf8(comment, "comment")

        timestamp = timestamp or self.timestamp()

        with self._store.transaction() as session:
            previous = session.latest_record_for_title(title)
            revision = session.insert_revision(title, slots, timestamp, comment)
            record = session.insert_record(
                self._build_record(session, revision, previous)
            )

        logger.debug(
            "Revision saved",
            title=title,
            revision_id=revision.revision_id,
            verification_hash=record.verification_hash[:16],
        )
        return revision, record

    def _build_record(
        self,
        session: StoreSession,
        revision: Revision,
        previous: Optional[VerificationRecord],
    ) -> VerificationRecord:
        content_hash = Hasher.content_hash(revision.ordered_slots())
        metadata_hash = Hasher.metadata_hash(
            self.domain_id,
            revision.timestamp,
            previous.verification_hash if previous else None,
        )
        signature_hash = None
        witness_hash = None
        if previous is not None:
            if previous.signature:
                signature_hash = Hasher.signature_hash(
                    previous.signature, previous.public_key or ""
                )
            if previous.witness_event_id is not None:
                event = session.get_witness_event(previous.witness_event_id)
                if event is not None and event.witness_hash:
                    witness_hash = event.witness_hash

        verification_hash = Hasher.verification_hash(
            content_hash, metadata_hash, signature_hash, witness_hash
        )
        genesis_hash = previous.genesis_hash if previous else verification_hash

        return VerificationRecord(
            domain_id=self.domain_id,
            genesis_hash=genesis_hash,
            revision_id=revision.revision_id,
            document_title=revision.document_title,
            content_hash=content_hash,
            metadata_hash=metadata_hash,
            signature_hash=signature_hash,
            witness_hash=witness_hash,
            verification_hash=verification_hash,
            timestamp=revision.timestamp,
            source=RecordSource.DEFAULT,
        )

    def revisions(self, title: str) -> list[Revision]:
        with self._store.transaction() as session:
            return session.document_revisions(title)

    def exists(self, title: str) -> bool:
        with self._store.transaction() as session:
            return session.document_exists(title)

    def latest_revision(self, title: str) -> Optional[Revision]:
        revisions = self.revisions(title)
        return revisions[-1] if revisions else None

    def latest_text(self, title: str) -> Optional[str]:
        revision = self.latest_revision(title)
        return revision.text if revision else None

    def append_text(
        self,
        title: str,
        text: str,
        comment: str = "",
    ) -> tuple[Revision, VerificationRecord]:
        """Append to the main slot of the latest revision (other slots carried)."""
        with self._store.transaction():
            latest = self.latest_revision(title)
            slots = dict(latest.slots) if latest else {}
            slots[MAIN_SLOT] = slots.get(MAIN_SLOT, "") + text
            return self.save_revision(title, slots=slots, comment=comment)

    def rename(self, old_title: str, new_title: str) -> None:
        """
        Move a document and re-label its verification records.

        Raises:
            NotFoundError: nothing is stored under old_title
            ConflictError: new_title is already taken
        """
        with self._store.transaction() as session:
            if session.document_exists(new_title) or session.count_records(new_title):
                raise ConflictError(f"Title already taken: {new_title!r}")
            moved = session.rename_document(old_title, new_title)
            relabeled = session.relabel_records(old_title, new_title)
            if not moved and not relabeled:
                raise NotFoundError(f"No document titled {old_title!r}")

        logger.info(
            "Document renamed",
            old_title=old_title,
            new_title=new_title,
            revisions=moved,
            records=relabeled,
        )

    def inject_signature(self, title: str, wallet_address: str) -> Optional[VerificationRecord]:
        """
        Append a signature marker line to a document as a new revision.

        Newest signature first, directly under the Signatures section.
        No-op when signature injection is disabled.
        """
        if not self._config.inject_signature:
            return None

        with self._store.transaction():
            text = self.latest_text(title) or ""
            entry = f"* {wallet_address} {self.timestamp()}\n"
            anchor = SIGNATURE_SECTION + "\n"
            position = text.find(anchor)
            if position == -1:
                text = text + "\n\n" + anchor + entry
            else:
                insert_at = position + len(anchor)
                text = text[:insert_at] + entry + text[insert_at:]
            latest = self.latest_revision(title)
            slots = dict(latest.slots) if latest else {}
            slots[MAIN_SLOT] = text
            _, record = self.save_revision(
                title,
                slots=slots,
                comment=f"Page signed by wallet: {wallet_address}",
            )
        return record
