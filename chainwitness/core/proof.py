"""
Merkle Proof Service

Depth-indexed retrieval of proof steps from the flattened tree rows
written by MerkleTreeBuilder. Read-only.

Walking a proof:
    depth = 0, target = revision verification hash
    repeat:
        step = proof_step(event_id, target, depth)
        target, depth = step.successor, depth + 1
    until step.successor == merkle_root

A hash value can recur at several layers (pass-through nodes promote a
value unchanged), so a lookup without depth may be ambiguous.
"""

from typing import Optional

from ..db.store import WitnessStore
from ..observability import get_logger
from ..schemas import ProofStep
from .exceptions import NotFoundError
from .hasher import Hasher

logger = get_logger(__name__)


class MerkleProofService:
    """Proof lookups over stored Merkle nodes."""

    def __init__(self, store: WitnessStore):
        self._store = store

    def proof_step(
        self,
        witness_event_id: int,
        target_hash: str,
        depth: int,
    ) -> Optional[ProofStep]:
        """The sibling pair holding target_hash at exactly this depth."""
        with self._store.transaction() as session:
            nodes = session.find_merkle_nodes(witness_event_id, target_hash, depth)
        return ProofStep.from_node(nodes[0]) if nodes else None

    def lookup_step(
        self,
        witness_event_id: int,
        target_hash: str,
        depth: Optional[int] = None,
    ) -> Optional[ProofStep]:
        """
        Lookup for callers that may not send a depth.

        Without depth the first match in insertion order is returned, and
        an ambiguous match is logged.
        """
        if depth is not None:
            return self.proof_step(witness_event_id, target_hash, depth)

        with self._store.transaction() as session:
            nodes = session.find_merkle_nodes(witness_event_id, target_hash)
        if not nodes:
            return None
        if len(nodes) > 1:
            logger.warning(
                "Ambiguous proof lookup without depth, returning first match",
                witness_event_id=witness_event_id,
                target_hash=target_hash[:16],
                depths=[n.depth for n in nodes],
            )
        return ProofStep.from_node(nodes[0])

    def proof_path(self, witness_event_id: int, leaf_hash: str) -> list[ProofStep]:
        """
        Every step from a leaf up to the event's Merkle root.

        Raises:
            NotFoundError: unknown event, or the leaf is not in its tree
        """
        with self._store.transaction() as session:
            event = session.get_witness_event(witness_event_id)
            if event is None:
                raise NotFoundError(f"Witness event {witness_event_id} not found")
            node_count = len(session.merkle_nodes(witness_event_id))

        root = event.merkle_root
        if leaf_hash == root:
            return []

        steps: list[ProofStep] = []
        target = leaf_hash
        depth = 0
        # Every step consumes at least one node
        while len(steps) <= node_count:
            step = self.proof_step(witness_event_id, target, depth)
            if step is None:
                raise NotFoundError(
                    f"Hash {target[:16]}... has no proof step at depth {depth} "
                    f"in witness event {witness_event_id}"
                )
            steps.append(step)
            if step.successor == root:
                return steps
            target = step.successor
            depth += 1

        raise NotFoundError(
            f"Proof path for witness event {witness_event_id} does not reach its root"
        )

    @staticmethod
    def verify_path(leaf_hash: str, steps: list[ProofStep], root: str) -> bool:
        """
        Recompute a proof path.

        Each step must contain the running hash and produce its successor
        by the pairing rule; the final successor must equal root.
        """
        current = leaf_hash
        for step in steps:
            if current not in (step.left, step.right):
                return False
            if step.right is None:
                expected = step.left
            else:
                expected = Hasher.merkle_parent(step.left, step.right)
            if step.successor != expected:
                return False
            current = step.successor
        return current == root
