"""
Merkle Tree Builder

Builds the Merkle tree of one witness event and flattens it into
MerkleNode rows, one per sibling pair.

Pairing rule (per layer, left to right):
- (layer[2i], layer[2i+1]) both present → successor = H(left ‖ right)
- odd length → the final element is promoted unchanged and recorded as a
  pass-through node (right_leaf=None, successor=left_leaf)

Repeat until one element remains: the root. depth 0 is the leaf layer.
A single leaf is its own root and produces no nodes.

Unlike the usual duplicate-the-last-leaf construction, an unpaired node is
never hashed with itself, so every successor is either H(l ‖ r) or l.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..db.store import WitnessStore
from ..schemas import MerkleNode
from .hasher import Hasher


@dataclass
class MerkleTree:
    """A built tree: root, flattened nodes, and every layer bottom-up."""
    witness_event_id: int
    root: str
    nodes: list[MerkleNode] = field(default_factory=list)
    layers: list[list[str]] = field(default_factory=list)

    @property
    def leaves(self) -> list[str]:
        return self.layers[0] if self.layers else []

    @property
    def height(self) -> int:
        """Number of pairing rounds from the leaves to the root."""
        return max(len(self.layers) - 1, 0)

    def to_dict(self) -> dict:
        return {
            "witness_event_id": self.witness_event_id,
            "merkle_root": self.root,
            "leaf_count": len(self.leaves),
            "height": self.height,
            "nodes": [n.model_dump() for n in self.nodes],
        }


class MerkleTreeBuilder:
    """
    Builds trees and persists their nodes.

    compute() is pure; build() also writes the nodes through the store,
    inside the caller's transaction when one is active.
    """

    def __init__(self, store: Optional[WitnessStore] = None):
        self._store = store

    @staticmethod
    def compute(leaves: list[str], witness_event_id: int) -> MerkleTree:
        """
        Build a tree over leaves in the given order.

        Raises:
            ValueError: leaves is empty
        """
        if not leaves:
            raise ValueError("Cannot build a Merkle tree with no leaves")

        layers = [list(leaves)]
        nodes: list[MerkleNode] = []
        depth = 0
        layer = layers[0]

        while len(layer) > 1:
            next_layer = []
            for i in range(0, len(layer), 2):
                left = layer[i]
                if i + 1 < len(layer):
                    right = layer[i + 1]
                    successor = Hasher.merkle_parent(left, right)
                else:
                    right = None
                    successor = left
                nodes.append(MerkleNode(
                    witness_event_id=witness_event_id,
                    depth=depth,
                    left_leaf=left,
                    right_leaf=right,
                    successor=successor,
                ))
                next_layer.append(successor)
            layers.append(next_layer)
            layer = next_layer
            depth += 1

        return MerkleTree(
            witness_event_id=witness_event_id,
            root=layer[0],
            nodes=nodes,
            layers=layers,
        )

    def build(self, leaves: list[str], witness_event_id: int) -> MerkleTree:
        """Compute the tree and persist its nodes tagged with the event id."""
        tree = self.compute(leaves, witness_event_id)
        if self._store is None:
            raise RuntimeError("MerkleTreeBuilder has no store to persist into")
        with self._store.transaction() as session:
            session.insert_merkle_nodes(tree.nodes)
        return tree


# ============================================================
# RENDERING
# ============================================================

def shorten_hash(value: str) -> str:
    """First and last six characters, for display only."""
    if len(value) <= 15:
        return value
    return f"{value[:6]}...{value[-6:]}"


def render_tree(tree: MerkleTree) -> str:
    """
    Bullet-tree rendering of a tree, root first.

    Example:
        Merkle root: 5b1f...
          ├─ 9c0e21...4f7a10
          │  ├─ a1b2c3...d4e5f6
          │  └─ 0a9b8c...7d6e5f
          └─ 77aa01...ff0012
    """
    lines = [f"Merkle root: {tree.root}"]
    top = len(tree.layers) - 1

    def children(level: int, index: int) -> list[tuple[int, int]]:
        if level == 0:
            return []
        below = tree.layers[level - 1]
        return [(level - 1, j) for j in (2 * index, 2 * index + 1) if j < len(below)]

    def walk(level: int, index: int, prefix: str) -> None:
        kids = children(level, index)
        for n, (child_level, child_index) in enumerate(kids):
            is_last = n == len(kids) - 1
            glyph = "└─ " if is_last else "├─ "
            value = tree.layers[child_level][child_index]
            lines.append(f"{prefix}{glyph}{shorten_hash(value)}")
            walk(child_level, child_index, prefix + ("   " if is_last else "│  "))

    walk(top, 0, "  ")
    return "\n".join(lines) + "\n"
