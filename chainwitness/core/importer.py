"""
Chain Merge Importer

Merges a foreign page export into the local store.

Title collisions are decided by chain height: when the local chain is
not longer than the declared foreign height, the local document moves
to a timestamped backup title and the import takes the contested title.
An empty local chain is never moved.

Per imported revision:
- the revision is re-created locally (fresh local revision id)
- no verification block → the local record of that revision is dropped
- verification block → its fields are patched onto the most recently
  inserted record of the title (revision_id is never trusted)
- witness block → reuse the local event with the same
  witness_event_verification_hash, or create one with the next local id;
  proof nodes are inserted only if no stored node already holds the
  revision's verification hash
"""

from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ..db.store import StoreSession, WitnessStore
from ..observability import get_logger, get_metrics
from ..schemas import (
    ExportedRevision,
    MerkleNode,
    PageExport,
    RecordSource,
    VerificationBlock,
    WitnessBlock,
    WitnessEvent,
    backup_title,
)
from .config import DomainConfig
from .documents import DocumentService
from .exceptions import ConflictError, InvalidArgumentError
from .hasher import Hasher, ensure_utf8
from .proof import MerkleProofService

logger = get_logger(__name__)

BACKUP_STAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"

IMPORTED_MANIFEST_TITLE = "N/A"


class ChainMergeImporter:
    """One-shot merge of foreign verification chains."""

    def __init__(
        self,
        store: WitnessStore,
        config: DomainConfig,
        documents: DocumentService,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._store = store
        self._config = config
        self._documents = documents
        self._clock = clock

    def import_page(self, export: Union[PageExport, dict[str, Any]]) -> dict:
        """
        Merge a whole exported page.

        Raises:
            InvalidArgumentError: the export is malformed
        """
        if not isinstance(export, PageExport):
            try:
                export = PageExport.model_validate(export)
            except ValidationError as e:
                raise InvalidArgumentError(f"Malformed page export: {e}") from e
        ensure_utf8(export.model_dump(), "page export")

        summary = self.merge_page(export.title, export.chain_height, export.revisions)
        get_metrics().record_import()
        logger.info("Page imported", **summary)
        return summary

    def merge_page(
        self,
        title: str,
        declared_chain_height: int,
        revisions: list[ExportedRevision],
    ) -> dict:
        """Resolve the title collision, then re-create and patch every revision."""
        with self._store.transaction() as session:
            session.lock_domain(self._config.domain_id)

            renamed_to = self._resolve_collision(session, title, declared_chain_height)

            patched = 0
            dropped = 0
            for exported in revisions:
                revision, _ = self._documents.save_revision(
                    title,
                    slots=exported.slots,
                    comment=exported.comment,
                    timestamp=exported.timestamp,
                )
                if self._merge_block(session, title, revision.revision_id, exported.verification):
                    patched += 1
                else:
                    dropped += 1

        return {
            "title": title,
            "declared_chain_height": declared_chain_height,
            "renamed_local_to": renamed_to,
            "revisions": len(revisions),
            "patched": patched,
            "dropped": dropped,
        }

    # ============================================================
    # COLLISION
    # ============================================================

    def _resolve_collision(
        self,
        session: StoreSession,
        title: str,
        declared_chain_height: int,
    ) -> Optional[str]:
        own_height = session.count_records(title)
        if own_height == 0 or own_height > declared_chain_height:
            return None

        stamp = self._clock().astimezone(timezone.utc).strftime(BACKUP_STAMP_FORMAT)
        candidate = backup_title(title, own_height, stamp)
        suffix = 1
        while True:
            try:
                self._documents.rename(title, candidate)
                break
            except ConflictError:
                suffix += 1
                candidate = f"{backup_title(title, own_height, stamp)}_{suffix}"

        logger.info(
            "Resolved naming collision, imported page has the longer or equal chain",
            title=title,
            own_chain_height=own_height,
            imported_chain_height=declared_chain_height,
            backup_title=candidate,
        )
        return candidate

    # ============================================================
    # VERIFICATION DATA
    # ============================================================

    def _merge_block(
        self,
        session: StoreSession,
        title: str,
        revision_id: int,
        block: Optional[VerificationBlock],
    ) -> bool:
        """Patch one revision's record. Returns False when the record was dropped."""
        if block is None:
            session.delete_records(title, revision_id)
            return False

        record = session.last_inserted_record_for_title(title)
        if record is None:
            return False

        patch = block.record_patch()
        patch["document_title"] = title
        patch["source"] = RecordSource.IMPORTED
        if block.witness is not None:
            patch["witness_event_id"] = self._merge_witness(session, block.verification_hash, block.witness)
        else:
            patch["witness_event_id"] = None

        session.update_record(record.row_id, **patch)
        return True

    def _merge_witness(
        self,
        session: StoreSession,
        verification_hash: str,
        witness: WitnessBlock,
    ) -> int:
        """Map a foreign witness event to a local id, inserting it when unknown."""
        expected = Hasher.witness_event_verification_hash(
            witness.domain_manifest_genesis_hash, witness.merkle_root
        )
        if expected != witness.witness_event_verification_hash:
            raise InvalidArgumentError(
                "Witness block event verification hash does not match "
                "its manifest genesis hash and Merkle root"
            )
        steps = witness.structured_merkle_proof
        if steps and not MerkleProofService.verify_path(verification_hash, steps, witness.merkle_root):
            raise InvalidArgumentError(
                f"Merkle proof of {verification_hash[:16]}... does not reach root "
                f"{witness.merkle_root[:16]}..."
            )

        local = session.witness_event_by_verification_hash(witness.witness_event_verification_hash)
        if local is not None:
            local_id = local.witness_event_id
        else:
            local_id = session.max_witness_event_id() + 1
            session.insert_witness_event(WitnessEvent(
                witness_event_id=local_id,
                domain_id=witness.domain_id,
                manifest_title=IMPORTED_MANIFEST_TITLE,
                domain_manifest_genesis_hash=witness.domain_manifest_genesis_hash,
                merkle_root=witness.merkle_root,
                witness_event_verification_hash=witness.witness_event_verification_hash,
                witness_network=witness.witness_network,
                smart_contract_address=witness.smart_contract_address,
                transaction_hash=witness.transaction_hash,
                sender_address=witness.sender_address,
                witness_hash=witness.witness_hash,
                source=RecordSource.IMPORTED,
            ))
            logger.info(
                "Imported witness event",
                witness_event_id=local_id,
                witness_event_verification_hash=witness.witness_event_verification_hash[:16],
            )

        if session.merkle_leaf_exists(verification_hash):
            logger.debug(
                "Proof already stored, skipping imported nodes",
                verification_hash=verification_hash[:16],
            )
        else:
            session.insert_merkle_nodes(
                MerkleNode(
                    witness_event_id=local_id,
                    depth=step.depth if step.depth is not None else depth,
                    left_leaf=step.left,
                    right_leaf=step.right,
                    successor=step.successor,
                )
                for depth, step in enumerate(steps)
            )

        return local_id
