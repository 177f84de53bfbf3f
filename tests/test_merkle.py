"""
Tests for Merkle tree construction and proof retrieval.
"""

import math

import pytest

from chainwitness.core import Hasher, MerkleProofService, MerkleTreeBuilder, NotFoundError, render_tree
from chainwitness.core.merkle import shorten_hash
from chainwitness.schemas import ProofStep, WitnessEvent


def leaves(n: int) -> list[str]:
    return [Hasher.digest(f"leaf-{i}") for i in range(n)]


def store_event(store, tree, witness_event_id: int = 1) -> None:
    with store.transaction() as session:
        session.insert_witness_event(WitnessEvent(
            witness_event_id=witness_event_id,
            domain_id="dom",
            manifest_title=f"Data Accounting:DomainManifest {witness_event_id}",
            domain_manifest_genesis_hash=Hasher.digest("manifest"),
            merkle_root=tree.root,
            witness_event_verification_hash=Hasher.witness_event_verification_hash(
                Hasher.digest("manifest"), tree.root
            ),
            witness_network="sepolia",
            smart_contract_address="0xContract",
        ))


class TestMerkleTreeBuilder:

    def test_three_leaves(self):
        """a, b pair up; c passes through unchanged; root = H(H(a‖b) ‖ c)."""
        a, b, c = leaves(3)
        tree = MerkleTreeBuilder.compute([a, b, c], 1)

        ab = Hasher.merkle_parent(a, b)
        assert tree.root == Hasher.merkle_parent(ab, c)
        assert tree.layers == [[a, b, c], [ab, c], [tree.root]]
        assert tree.height == 2

        keys = [(n.depth, n.left_leaf, n.right_leaf, n.successor) for n in tree.nodes]
        assert keys == [
            (0, a, b, ab),
            (0, c, None, c),
            (1, ab, c, tree.root),
        ]

    def test_unpaired_node_is_not_duplicated(self):
        a, b, c = leaves(3)
        tree = MerkleTreeBuilder.compute([a, b, c], 1)
        assert Hasher.merkle_parent(c, c) not in tree.layers[1]

    def test_single_leaf_is_its_own_root(self):
        (only,) = leaves(1)
        tree = MerkleTreeBuilder.compute([only], 7)
        assert tree.root == only
        assert tree.nodes == []
        assert tree.height == 0

    def test_empty_leaves_rejected(self):
        with pytest.raises(ValueError):
            MerkleTreeBuilder.compute([], 1)

    def test_nodes_tagged_with_event(self):
        tree = MerkleTreeBuilder.compute(leaves(4), 42)
        assert {n.witness_event_id for n in tree.nodes} == {42}

    def test_leaf_order_matters(self):
        a, b = leaves(2)
        assert MerkleTreeBuilder.compute([a, b], 1).root != MerkleTreeBuilder.compute([b, a], 1).root

    def test_build_persists_nodes(self, store):
        tree = MerkleTreeBuilder(store).build(leaves(5), 3)
        with store.transaction() as session:
            stored = session.merkle_nodes(3)
        assert len(stored) == len(tree.nodes)

    def test_build_is_idempotent(self, store):
        builder = MerkleTreeBuilder(store)
        builder.build(leaves(4), 1)
        builder.build(leaves(4), 1)
        with store.transaction() as session:
            assert len(session.merkle_nodes(1)) == 3

    def test_build_without_store(self):
        with pytest.raises(RuntimeError):
            MerkleTreeBuilder().build(leaves(2), 1)


class TestRenderTree:

    def test_shorten_hash(self):
        value = Hasher.digest("x")
        assert shorten_hash(value) == f"{value[:6]}...{value[-6:]}"
        assert shorten_hash("short") == "short"

    def test_bullet_rendering(self):
        a, b, c = leaves(3)
        tree = MerkleTreeBuilder.compute([a, b, c], 1)
        lines = render_tree(tree).rstrip("\n").split("\n")

        assert lines[0] == f"Merkle root: {tree.root}"
        assert lines[1] == f"  ├─ {shorten_hash(tree.layers[1][0])}"
        assert lines[2] == f"  │  ├─ {shorten_hash(a)}"
        assert lines[3] == f"  │  └─ {shorten_hash(b)}"
        assert lines[4] == f"  └─ {shorten_hash(c)}"
        assert lines[5] == f"     └─ {shorten_hash(c)}"


class TestMerkleProofService:

    @pytest.fixture
    def proofs(self, store):
        return MerkleProofService(store)

    @pytest.mark.parametrize("count", [2, 3, 5, 8, 13])
    def test_every_leaf_walks_to_root(self, store, proofs, count):
        values = leaves(count)
        tree = MerkleTreeBuilder(store).build(values, 1)
        store_event(store, tree)

        for leaf in values:
            path = proofs.proof_path(1, leaf)
            assert len(path) == math.ceil(math.log2(count))
            assert path[-1].successor == tree.root
            assert MerkleProofService.verify_path(leaf, path, tree.root)

    def test_step_by_depth(self, store, proofs):
        a, b, c = leaves(3)
        tree = MerkleTreeBuilder(store).build([a, b, c], 1)

        step = proofs.proof_step(1, a, 0)
        assert step == ProofStep(left=a, right=b, successor=Hasher.merkle_parent(a, b), depth=0)
        assert proofs.proof_step(1, a, 1) is None
        assert proofs.proof_step(1, tree.layers[1][0], 1).successor == tree.root

    def test_passthrough_value_is_ambiguous_without_depth(self, store, proofs):
        values = leaves(5)
        tree = MerkleTreeBuilder(store).build(values, 1)
        last = values[-1]

        first = proofs.lookup_step(1, last)
        assert first.depth == 0
        assert first.right is None

        top = proofs.lookup_step(1, last, depth=2)
        assert top.successor == tree.root
        assert top.right == last

    def test_unknown_hash(self, store, proofs):
        MerkleTreeBuilder(store).build(leaves(3), 1)
        assert proofs.lookup_step(1, Hasher.digest("nope")) is None

    def test_other_event_not_searched(self, store, proofs):
        values = leaves(3)
        MerkleTreeBuilder(store).build(values, 1)
        assert proofs.proof_step(2, values[0], 0) is None

    def test_proof_path_unknown_event(self, proofs):
        with pytest.raises(NotFoundError):
            proofs.proof_path(99, Hasher.digest("x"))

    def test_proof_path_foreign_leaf(self, store, proofs):
        tree = MerkleTreeBuilder(store).build(leaves(3), 1)
        store_event(store, tree)
        with pytest.raises(NotFoundError):
            proofs.proof_path(1, Hasher.digest("not a member"))

    def test_single_member_has_empty_path(self, store, proofs):
        tree = MerkleTreeBuilder(store).build(leaves(1), 1)
        store_event(store, tree)
        assert proofs.proof_path(1, tree.root) == []
        assert MerkleProofService.verify_path(tree.root, [], tree.root)

    def test_verify_path_rejects_tampering(self, store, proofs):
        values = leaves(4)
        tree = MerkleTreeBuilder(store).build(values, 1)
        store_event(store, tree)
        path = proofs.proof_path(1, values[0])

        assert not MerkleProofService.verify_path(values[1], path[1:], tree.root)
        forged = [path[0].model_copy(update={"successor": Hasher.digest("forged")})] + path[1:]
        assert not MerkleProofService.verify_path(values[0], forged, tree.root)
        assert not MerkleProofService.verify_path(values[0], path, Hasher.digest("other root"))
