"""
Witness Engine

Explicit orchestration of the verification chain services:

    store → VerificationStore → DocumentService
          → MerkleTreeBuilder / MerkleProofService
          → WitnessEventCoordinator
          → ChainMergeImporter / PageExporter

Exposes the operations external callers use (HTTP routes, CLI).
Manifest generation, anchoring and imports allocate witness event ids
as max+1, so they are serialized by an in-process lock in addition to
the store's per-domain writer lock.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from ..db.factory import create_store
from ..db.store import WitnessStore
from ..observability import get_logger, get_metrics
from ..schemas import PageExport, ProofStep, VerificationRecord, WitnessEvent
from .config import DomainConfig
from .documents import DocumentService
from .exceptions import NotFoundError
from .exporter import PageExporter
from .hasher import Hasher, ensure_utf8
from .importer import ChainMergeImporter
from .merkle import MerkleTreeBuilder
from .proof import MerkleProofService
from .verification import AuditReport, VerificationStore
from .witness import AnchorResult, ManifestResult, WitnessEventCoordinator

logger = get_logger(__name__)


class WitnessEngine:
    """Single entry point over one store and one domain."""

    def __init__(
        self,
        store: WitnessStore,
        config: DomainConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.config = config

        self.verification = VerificationStore(store)
        self.documents = DocumentService(store, config, clock=clock)
        self.builder = MerkleTreeBuilder(store)
        self.proofs = MerkleProofService(store)
        self.coordinator = WitnessEventCoordinator(
            store, config, self.verification, self.documents, self.builder
        )
        self.exporter = PageExporter(store, self.proofs)
        self.importer = ChainMergeImporter(store, config, self.documents, clock=clock)

        self._write_lock = threading.Lock()

    @property
    def domain_id(self) -> str:
        return self.config.domain_id

    # ============================================================
    # QUERIES
    # ============================================================

    def get_all_revision_ids(self, title: str) -> list[int]:
        """
        Raises:
            NotFoundError: the document has no verification records
        """
        revision_ids = self.verification.all_revision_ids(title)
        if not revision_ids:
            raise NotFoundError(f"No verified revisions for {title!r}")
        return revision_ids

    def request_merkle_proof(
        self,
        witness_event_id: int,
        verification_hash: str,
        depth: Optional[int] = None,
    ) -> ProofStep:
        """
        One proof step. Pass depth when walking a path; without it the
        first match is returned.

        Raises:
            NotFoundError: no node holds the hash
        """
        step = self.proofs.lookup_step(witness_event_id, verification_hash, depth)
        if step is None:
            raise NotFoundError(
                f"No Merkle proof step for {verification_hash[:16]}... "
                f"in witness event {witness_event_id}"
            )
        return step

    def proof_path(self, witness_event_id: int, verification_hash: str) -> list[ProofStep]:
        return self.proofs.proof_path(witness_event_id, verification_hash)

    def get_witness_data(self, witness_event_id: int) -> WitnessEvent:
        return self.coordinator.get_witness_data(witness_event_id)

    def latest_witness_event(self) -> Optional[WitnessEvent]:
        with self.store.transaction() as session:
            latest_id = session.max_witness_event_id()
            return session.get_witness_event(latest_id) if latest_id else None

    def verify_revision(self, revision_id: int) -> dict[str, Any]:
        """
        Stored record of a revision and whether it recomputes.

        Raises:
            NotFoundError: unknown revision
        """
        record = self.verification.by_revision_id(revision_id)
        if record is None:
            raise NotFoundError(f"No verification record for revision {revision_id}")
        return {
            "record": record,
            "hash_valid": Hasher.verify_record(record),
        }

    def audit_title(self, title: str) -> AuditReport:
        return self.verification.audit_title(title)

    # ============================================================
    # WRITES
    # ============================================================

    def save_revision(self, title: str, text: str, comment: str = "") -> VerificationRecord:
        _, record = self.documents.save_revision(title, text=text, comment=comment)
        return record

    def store_signature(
        self,
        revision_id: int,
        signature: str,
        public_key: str,
        wallet_address: str,
    ) -> VerificationRecord:
        """
        Record a wallet signature and, if enabled, mark the document.

        Raises:
            NotFoundError: unknown revision
            InvalidArgumentError: a field is not valid UTF-8
        """
        ensure_utf8(
            {"signature": signature, "public_key": public_key, "wallet_address": wallet_address},
            "signature",
        )
        with self.store.transaction():
            record = self.verification.store_signature(
                revision_id, signature, public_key, wallet_address
            )
            self.documents.inject_signature(record.document_title, wallet_address)
        get_metrics().record_signature()
        logger.info(
            "Signature stored",
            revision_id=revision_id,
            title=record.document_title,
            wallet_address=wallet_address,
        )
        return record

    def generate_manifest(self) -> Optional[ManifestResult]:
        with self._write_lock:
            return self.coordinator.generate_manifest()

    def anchor(
        self,
        witness_event_id: int,
        network: Optional[str],
        contract_address: Optional[str],
        transaction_hash: str,
        sender_address: str,
    ) -> AnchorResult:
        ensure_utf8([network, contract_address, transaction_hash, sender_address], "transaction")
        with self._write_lock:
            return self.coordinator.anchor(
                witness_event_id, network, contract_address, transaction_hash, sender_address
            )

    def store_witness_transaction(
        self,
        witness_event_id: int,
        account_address: str,
        transaction_hash: str,
    ) -> AnchorResult:
        """Anchor on the network and contract recorded on the event."""
        return self.anchor(witness_event_id, None, None, transaction_hash, account_address)

    def export_page(self, title: str) -> PageExport:
        return self.exporter.export_page(title)

    def import_page(self, export: Union[PageExport, dict[str, Any]]) -> dict:
        with self._write_lock:
            return self.importer.import_page(export)


def create_engine(store: Optional[WitnessStore] = None, config: Optional[DomainConfig] = None) -> WitnessEngine:
    """Build an engine from the environment."""
    return WitnessEngine(store or create_store(), config or DomainConfig.from_env())
