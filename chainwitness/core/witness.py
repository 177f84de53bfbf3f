"""
Witness Event Coordinator

Runs a witnessing round in two steps.

generate_manifest():
    1. witness_event_id = max(existing) + 1
    2. latest record per document (manifests and files excluded), sorted by
       title; a null verification hash aborts the round (IntegrityError)
    3. WitnessMember rows + Merkle tree over the members' hashes
    4. manifest document under a tentative title; its verification hash
       becomes domain_manifest_genesis_hash
    5. tentative WitnessEvent (no transaction yet), idempotent insert

anchor():
    1. attach the event to every member record (earliest wins)
    2. witness_hash = H(manifest genesis ‖ root ‖ network ‖ tx), event updated
    3. attach the event to the manifest's own record
    4. append the receipt to the manifest as a new revision
    5. rename the manifest from its tentative to its permanent title

Each procedure runs in one store transaction under the domain's writer
lock: a failure at any step leaves nothing behind.

The engine never talks to the ledger. anchor() only records a transaction
that the caller already submitted and observed.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from ..db.store import WitnessStore
from ..observability import get_logger, get_metrics
from ..schemas import (
    FILE_NAMESPACE,
    MANIFEST_NAMESPACE,
    RecordSource,
    VerificationRecord,
    WitnessEvent,
    WitnessMember,
    permanent_manifest_title,
    tentative_manifest_title,
)
from .config import DomainConfig
from .documents import DocumentService
from .exceptions import ConflictError, IntegrityError, NotFoundError
from .hasher import Hasher
from .merkle import MerkleTree, MerkleTreeBuilder, render_tree, shorten_hash
from .verification import VerificationStore

logger = get_logger(__name__)

MANIFEST_INTRO = (
    "This page is a summary of all verified pages within your domain and is "
    "used to generate a Merkle tree to witness and timestamp them "
    "simultaneously. Publish the witness event verification hash to your "
    "preferred witness network to complete the round."
)


@dataclass
class ManifestResult:
    """Outcome of one generate_manifest round."""
    witness_event: WitnessEvent
    members: list[WitnessMember]
    tree: MerkleTree
    manifest_record: VerificationRecord

    @property
    def witness_event_id(self) -> int:
        return self.witness_event.witness_event_id

    def to_dict(self) -> dict:
        return {
            "witness_event_id": self.witness_event_id,
            "manifest_title": self.witness_event.manifest_title,
            "domain_manifest_genesis_hash": self.witness_event.domain_manifest_genesis_hash,
            "merkle_root": self.witness_event.merkle_root,
            "witness_event_verification_hash": self.witness_event.witness_event_verification_hash,
            "member_count": len(self.members),
        }


@dataclass
class AnchorResult:
    """Outcome of anchoring one witness event."""
    witness_event: WitnessEvent
    attached_hashes: list[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "witness_event_id": self.witness_event.witness_event_id,
            "manifest_title": self.witness_event.manifest_title,
            "transaction_hash": self.witness_event.transaction_hash,
            "witness_hash": self.witness_event.witness_hash,
            "attached_count": len(self.attached_hashes),
            "skipped": self.skipped,
        }


def render_receipt(event: WitnessEvent) -> str:
    """Receipt block appended to a manifest once its event is anchored."""
    lines = [
        "",
        "== Witness Event Publishing Data ==",
        "The Witness Event Verification Hash has been written to a Witness "
        "Network and has been timestamped.",
        f"* Witness Event: {event.witness_event_id}",
        f"* Domain ID: {event.domain_id}",
        f"* Page Domain Manifest verification Hash: {event.domain_manifest_genesis_hash}",
        f"* Merkle Root: {event.merkle_root}",
        f"* Witness Event Verification Hash: {event.witness_event_verification_hash}",
        f"* Witness Network: {event.witness_network}",
        f"* Smart Contract Address: {event.smart_contract_address}",
        f"* Transaction Hash: {event.transaction_hash}",
        f"* Sender Account Address: {event.sender_address}",
    ]
    return "\n".join(lines) + "\n"


def render_manifest(members: list[WitnessMember], tree: MerkleTree) -> str:
    """Manifest body: member table followed by the tree rendering."""
    lines = [MANIFEST_INTRO, "", "| Index | Page Title | Verification Hash | Revision |"]
    lines.append("|---|---|---|---|")
    for index, member in enumerate(members, start=1):
        lines.append(
            f"| {index} | {member.document_title} | "
            f"{shorten_hash(member.verification_hash)} | {member.revision_id} |"
        )
    lines.append("")
    return "\n".join(lines) + "\n" + render_tree(tree)


class WitnessEventCoordinator:
    """Manifest generation and anchoring."""

    EXCLUDED_PREFIXES = (MANIFEST_NAMESPACE, FILE_NAMESPACE)

    def __init__(
        self,
        store: WitnessStore,
        config: DomainConfig,
        verification: VerificationStore,
        documents: DocumentService,
        builder: MerkleTreeBuilder,
    ):
        self._store = store
        self._config = config
        self._verification = verification
        self._documents = documents
        self._builder = builder

    # ============================================================
    # MANIFEST GENERATION
    # ============================================================

    def generate_manifest(self) -> Optional[ManifestResult]:
        """
        Start a new witnessing round over the latest revision of every document.

        Returns:
            ManifestResult, or None when there is nothing to witness

        Raises:
            IntegrityError: a candidate record has no verification hash
        """
        start = time.perf_counter()

        with self._store.transaction() as session:
            session.lock_domain(self._config.domain_id)

            witness_event_id = session.max_witness_event_id() + 1
            candidates = session.latest_records_per_title(self.EXCLUDED_PREFIXES)

            corrupt = [r.document_title for r in candidates if r.verification_hash is None]
            if corrupt:
                logger.error(
                    "Manifest aborted: empty verification hash",
                    witness_event_id=witness_event_id,
                    titles=corrupt,
                )
                raise IntegrityError(
                    f"{corrupt[0]!r} has an empty verification hash. This indicates "
                    f"a manipulation, database corruption, or a bug. "
                    f"Recover or delete the page."
                )

            if not candidates:
                logger.info("No verified revisions available, manifest skipped")
                get_metrics().record_manifest((time.perf_counter() - start) * 1000, empty=True)
                return None

            members = []
            for record in candidates:
                member = WitnessMember(
                    witness_event_id=witness_event_id,
                    document_title=record.document_title,
                    revision_id=record.revision_id,
                    verification_hash=record.verification_hash,
                )
                session.insert_witness_member(member)
                members.append(member)

            tree = self._builder.build(
                [m.verification_hash for m in members], witness_event_id
            )

            manifest_title = tentative_manifest_title(witness_event_id)
            _, manifest_record = self._documents.save_revision(
                manifest_title,
                text=render_manifest(members, tree),
                comment="Page created automatically by the witness engine",
            )
            genesis = manifest_record.verification_hash

            event = WitnessEvent(
                witness_event_id=witness_event_id,
                domain_id=self._config.domain_id,
                manifest_title=manifest_title,
                domain_manifest_genesis_hash=genesis,
                merkle_root=tree.root,
                witness_event_verification_hash=Hasher.witness_event_verification_hash(
                    genesis, tree.root
                ),
                witness_network=self._config.witness_network,
                smart_contract_address=self._config.smart_contract_address,
                source=RecordSource.DEFAULT,
            )
            if not session.insert_witness_event(event):
                logger.warning(
                    "Witness event already exists, keeping stored row",
                    witness_event_id=witness_event_id,
                )
                event = session.get_witness_event(witness_event_id)

        result = ManifestResult(
            witness_event=event,
            members=members,
            tree=tree,
            manifest_record=manifest_record,
        )
        get_metrics().record_manifest((time.perf_counter() - start) * 1000)
        logger.info("Domain manifest generated", **result.to_dict())
        return result

    # ============================================================
    # ANCHORING
    # ============================================================

    def anchor(
        self,
        witness_event_id: int,
        network: Optional[str],
        contract_address: Optional[str],
        transaction_hash: str,
        sender_address: str,
    ) -> AnchorResult:
        """
        Record an external ledger transaction for a witness event.

        network/contract_address default to the values stored on the event.
        An event that already has a transaction is left untouched.

        Raises:
            NotFoundError: unknown event, or an event without members
        """
        with self._store.transaction() as session:
            session.lock_domain(self._config.domain_id)

            event = session.get_witness_event(witness_event_id)
            if event is None:
                raise NotFoundError(f"Witness event {witness_event_id} not found")
            members = session.witness_members(witness_event_id)
            if not members:
                raise NotFoundError(f"Witness event {witness_event_id} has no members")

            if event.is_anchored:
                if event.transaction_hash != transaction_hash:
                    logger.warning(
                        "Witness event already anchored to another transaction, ignoring",
                        witness_event_id=witness_event_id,
                        stored_transaction_hash=event.transaction_hash,
                        transaction_hash=transaction_hash,
                    )
                else:
                    logger.info("Witness event already anchored", witness_event_id=witness_event_id)
                get_metrics().record_anchor(skipped=True)
                return AnchorResult(witness_event=event, skipped=True)

            attached = [
                m.verification_hash for m in members
                if self._verification.attach_witness(m.verification_hash, witness_event_id)
            ]

            network = network or event.witness_network
            contract_address = contract_address or event.smart_contract_address
            event = session.update_witness_event(
                witness_event_id,
                witness_network=network,
                smart_contract_address=contract_address,
                transaction_hash=transaction_hash,
                sender_address=sender_address,
                witness_hash=Hasher.witness_hash(
                    event.domain_manifest_genesis_hash,
                    event.merkle_root,
                    network,
                    transaction_hash,
                ),
                source=RecordSource.DEFAULT,
            )

            self._verification.attach_witness(event.domain_manifest_genesis_hash, witness_event_id)

            manifest_record = session.record_by_hash(event.domain_manifest_genesis_hash)
            title = manifest_record.document_title if manifest_record else event.manifest_title
            self._documents.append_text(
                title, render_receipt(event), comment="Domain Manifest witnessed"
            )
            event = self._finalize_title(session, event, title)

        get_metrics().record_anchor()
        result = AnchorResult(witness_event=event, attached_hashes=attached)
        logger.info("Witness event anchored", **result.to_dict())
        return result

    def _finalize_title(self, session, event: WitnessEvent, title: str) -> WitnessEvent:
        """Move the manifest from its tentative title, once."""
        if title != tentative_manifest_title(event.witness_event_id):
            return event

        final_title = permanent_manifest_title(event.domain_manifest_genesis_hash)
        try:
            self._documents.rename(title, final_title)
        except ConflictError:
            logger.warning(
                "Permanent manifest title already taken, keeping tentative title",
                witness_event_id=event.witness_event_id,
                title=final_title,
            )
            return event

        if event.manifest_title == title:
            event = session.update_witness_event(
                event.witness_event_id, manifest_title=final_title
            )
        return event

    # ============================================================
    # QUERIES
    # ============================================================

    def get_witness_data(self, witness_event_id: int) -> WitnessEvent:
        """
        Event fields a wallet needs to publish the round.

        Raises:
            NotFoundError: unknown event
        """
        with self._store.transaction() as session:
            event = session.get_witness_event(witness_event_id)
        if event is None:
            raise NotFoundError(f"Witness event {witness_event_id} not found")
        return event

    def members(self, witness_event_id: int) -> list[WitnessMember]:
        with self._store.transaction() as session:
            return session.witness_members(witness_event_id)
