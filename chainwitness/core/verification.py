"""
Verification Store

Lookups and the few permitted mutations over per-revision verification
records. Absence is reported as None, never raised.

Mutations allowed after a record is created:
- signature fields (store_signature)
- witness_event_id, set once (attach_witness, earliest wins)
- deletion, used only by the merge importer's cleanup path
"""

from dataclasses import dataclass, field
from typing import Optional

from ..db.store import WitnessStore
from ..observability import get_logger
from ..schemas import HashField, VerificationRecord
from .exceptions import InvalidArgumentError, NotFoundError
from .hasher import Hasher

logger = get_logger(__name__)


@dataclass
class AuditReport:
    """Result of re-checking one document's chain."""
    title: str
    record_count: int
    genesis_hashes: list[str] = field(default_factory=list)
    mismatched_revision_ids: list[int] = field(default_factory=list)
    missing_hash_revision_ids: list[int] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return (
            len(self.genesis_hashes) <= 1
            and not self.mismatched_revision_ids
            and not self.missing_hash_revision_ids
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "valid": self.valid,
            "record_count": self.record_count,
            "genesis_hashes": self.genesis_hashes,
            "mismatched_revision_ids": self.mismatched_revision_ids,
            "missing_hash_revision_ids": self.missing_hash_revision_ids,
        }


class VerificationStore:
    """Service over the verification_records table."""

    def __init__(self, store: WitnessStore):
        self._store = store

    def by_hash(self, verification_hash: str) -> Optional[VerificationRecord]:
        with self._store.transaction() as session:
            return session.record_by_hash(verification_hash)

    def by_revision_id(self, revision_id: int) -> Optional[VerificationRecord]:
        with self._store.transaction() as session:
            return session.record_by_revision_id(revision_id)

    def latest_by_title(self, title: str) -> Optional[VerificationRecord]:
        """Latest record of a document. Ties resolve to the highest revision id."""
        with self._store.transaction() as session:
            return session.latest_record_for_title(title)

    def records_for_title(self, title: str) -> list[VerificationRecord]:
        with self._store.transaction() as session:
            return session.records_for_title(title)

    def all_revision_ids(self, title: str) -> list[int]:
        """Revision ids of a document, ascending. Empty when unknown."""
        return [r.revision_id for r in self.records_for_title(title)]

    def chain_height(self, title: str) -> int:
        """Count of tracked revisions of a document."""
        with self._store.transaction() as session:
            return session.count_records(title)

    def newer_hashes_for_entity(
        self,
        record: VerificationRecord,
        field_name: str,
    ) -> list[Optional[str]]:
        """
        Project one hash column over the record and every later revision
        sharing its genesis hash, ascending by revision id.

        Raises:
            InvalidArgumentError: field_name is not a recognized hash column
        """
        try:
            hash_field = HashField(field_name)
        except ValueError:
            raise InvalidArgumentError(
                f"Unsupported hash field: {field_name!r}. "
                f"Valid fields: {', '.join(f.value for f in HashField)}"
            ) from None

        with self._store.transaction() as session:
            records = session.records_for_genesis(record.genesis_hash, record.revision_id)
        return [r.hash_value(hash_field) for r in records]

    def attach_witness(self, verification_hash: str, witness_event_id: int) -> bool:
        """
        Assign a witness event to a record unless one is already set.

        Returns True if a record was claimed by this call.
        """
        with self._store.transaction() as session:
            updated = session.set_witness_event_if_null(verification_hash, witness_event_id)
        if not updated:
            logger.debug(
                "Witness already attached or record unknown",
                verification_hash=verification_hash[:16],
                witness_event_id=witness_event_id,
            )
        return updated > 0

    def store_signature(
        self,
        revision_id: int,
        signature: str,
        public_key: str,
        wallet_address: str,
    ) -> VerificationRecord:
        """
        Record a wallet signature over a revision.

        The revision's own hashes are left as they are: the signature is
        committed to by the next revision's signature_hash.

        Raises:
            NotFoundError: no record for revision_id
        """
        with self._store.transaction() as session:
            record = session.record_by_revision_id(revision_id)
            if record is None:
                raise NotFoundError(f"No verification record for revision {revision_id}")
            return session.update_record(
                record.row_id,
                signature=signature,
                public_key=public_key,
                wallet_address=wallet_address,
            )

    def delete(self, title: str, revision_id: int) -> int:
        with self._store.transaction() as session:
            return session.delete_records(title, revision_id)

    def audit_title(self, title: str) -> AuditReport:
        """
        Recompute every record of a document and check genesis continuity.

        Raises:
            NotFoundError: the document has no records
        """
        records = self.records_for_title(title)
        if not records:
            raise NotFoundError(f"No verification records for {title!r}")

        report = AuditReport(title=title, record_count=len(records))
        for record in records:
            if record.genesis_hash not in report.genesis_hashes:
                report.genesis_hashes.append(record.genesis_hash)
            if record.verification_hash is None:
                report.missing_hash_revision_ids.append(record.revision_id)
            elif not Hasher.verify_record(record):
                report.mismatched_revision_ids.append(record.revision_id)

        if not report.valid:
            logger.warning("Chain audit failed", **report.to_dict())
        return report
