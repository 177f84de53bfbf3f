"""
Page export.

Serializes a document with its full verification chain so another
domain can merge it (see importer.ChainMergeImporter). JSON is the
transport.
"""

from typing import Optional

from ..db.store import WitnessStore
from ..observability import get_logger
from ..schemas import (
    ExportedRevision,
    PageExport,
    VerificationBlock,
    VerificationRecord,
    WitnessBlock,
)
from .exceptions import NotFoundError
from .proof import MerkleProofService

logger = get_logger(__name__)


class PageExporter:
    """Builds PageExport documents."""

    def __init__(self, store: WitnessStore, proofs: MerkleProofService):
        self._store = store
        self._proofs = proofs

    def export_page(self, title: str) -> PageExport:
        """
        Export every revision of a document with its verification block.

        Revisions without a usable record are exported without a block.

        Raises:
            NotFoundError: unknown document
        """
        with self._store.transaction() as session:
            revisions = session.document_revisions(title)
            records = session.records_for_title(title)
            if not revisions:
                raise NotFoundError(f"No document titled {title!r}")

            # records_for_title is ascending, so the latest row per revision wins
            by_revision = {r.revision_id: r for r in records}

            exported = []
            for revision in revisions:
                record = by_revision.get(revision.revision_id)
                exported.append(ExportedRevision(
                    revision_id=revision.revision_id,
                    timestamp=revision.timestamp,
                    slots=revision.slots,
                    comment=revision.comment,
                    verification=self._block(session, record),
                ))

        logger.info("Page exported", title=title, revisions=len(exported), chain_height=len(records))
        return PageExport(title=title, chain_height=len(records), revisions=exported)

    def _block(self, session, record: Optional[VerificationRecord]) -> Optional[VerificationBlock]:
        if record is None or not record.verification_hash:
            return None

        witness = None
        if record.witness_event_id is not None:
            event = session.get_witness_event(record.witness_event_id)
            if event is not None:
                try:
                    proof = self._proofs.proof_path(event.witness_event_id, record.verification_hash)
                except NotFoundError:
                    # Imported events may carry no local tree
                    logger.debug(
                        "No stored proof for witnessed revision",
                        revision_id=record.revision_id,
                        witness_event_id=event.witness_event_id,
                    )
                    proof = []
                witness = WitnessBlock.from_event(event, proof)

        return VerificationBlock.from_record(record, witness)
