"""
Tests for witnessing rounds: manifest generation and anchoring.

Walks the full lifecycle:
1. Save pages
2. Generate the domain manifest (tentative witness event)
3. Anchor it with an external transaction
4. Check proofs, attached records, the receipt and the manifest title
"""

import pytest

from chainwitness.core import (
    Hasher,
    IntegrityError,
    InvalidArgumentError,
    ManifestScheduler,
    MerkleProofService,
    NotFoundError,
    SchedulerConfig,
)
from chainwitness.core.witness import render_receipt
from chainwitness.schemas import (
    MANIFEST_NAMESPACE,
    VerificationRecord,
    permanent_manifest_title,
    tentative_manifest_title,
)

CONTRACT = "0xABC0000000000000000000000000000000000001"
TX = "0xdeadbeef"
SENDER = "0xSender"


@pytest.fixture
def pages(engine):
    """Three pages, created out of title order."""
    return {
        title: engine.save_revision(title, f"Content of {title}")
        for title in ("Gamma", "Alpha", "Beta")
    }


class TestGenerateManifest:

    def test_nothing_to_witness(self, engine):
        assert engine.generate_manifest() is None
        with engine.store.transaction() as session:
            assert session.max_witness_event_id() == 0

    def test_manifest_round(self, engine, pages):
        result = engine.generate_manifest()

        assert result.witness_event_id == 1
        assert [m.document_title for m in result.members] == ["Alpha", "Beta", "Gamma"]
        leaves = [pages[t].verification_hash for t in ("Alpha", "Beta", "Gamma")]
        assert result.tree.leaves == leaves

        ab = Hasher.merkle_parent(leaves[0], leaves[1])
        event = result.witness_event
        assert event.merkle_root == Hasher.merkle_parent(ab, leaves[2])
        assert event.manifest_title == tentative_manifest_title(1)
        assert event.domain_manifest_genesis_hash == result.manifest_record.verification_hash
        assert event.witness_event_verification_hash == Hasher.witness_event_verification_hash(
            event.domain_manifest_genesis_hash, event.merkle_root
        )
        assert event.witness_network == "sepolia"
        assert not event.is_anchored

    def test_manifest_page_content(self, engine, pages):
        result = engine.generate_manifest()
        text = engine.documents.latest_text(tentative_manifest_title(1))

        assert "| Index | Page Title | Verification Hash | Revision |" in text
        assert "| 1 | Alpha |" in text
        assert f"Merkle root: {result.witness_event.merkle_root}" in text

    def test_manifests_are_not_members(self, engine, pages):
        engine.generate_manifest()
        second = engine.generate_manifest()

        titles = [m.document_title for m in second.members]
        assert second.witness_event_id == 2
        assert not any(t.startswith(MANIFEST_NAMESPACE) for t in titles)

    def test_file_pages_are_not_members(self, engine, pages):
        engine.save_revision("File:Logo.png", "binary")
        result = engine.generate_manifest()
        assert "File:Logo.png" not in [m.document_title for m in result.members]

    def test_latest_revision_only(self, engine, pages):
        latest = engine.save_revision("Alpha", "Edited")
        result = engine.generate_manifest()
        alpha = [m for m in result.members if m.document_title == "Alpha"]
        assert [m.verification_hash for m in alpha] == [latest.verification_hash]

    def test_corrupt_record_aborts_round(self, engine, pages):
        with engine.store.transaction() as session:
            session.insert_record(VerificationRecord(
                domain_id=engine.domain_id,
                genesis_hash=pages["Beta"].genesis_hash,
                revision_id=999,
                document_title="Beta",
                content_hash=Hasher.digest("x"),
                metadata_hash=Hasher.digest("y"),
                verification_hash=None,
                timestamp="20240301120000",
            ))

        with pytest.raises(IntegrityError):
            engine.generate_manifest()

        with engine.store.transaction() as session:
            assert session.max_witness_event_id() == 0
            assert session.witness_members(1) == []
            assert session.merkle_nodes(1) == []
            assert not session.document_exists(tentative_manifest_title(1))


class TestAnchor:

    @pytest.fixture
    def round_one(self, engine, pages):
        return engine.generate_manifest()

    def test_full_lifecycle(self, engine, pages, round_one):
        result = engine.anchor(1, "sepolia", CONTRACT, TX, SENDER)
        event = result.witness_event

        assert not result.skipped
        assert event.transaction_hash == TX
        assert event.sender_address == SENDER
        assert event.smart_contract_address == CONTRACT
        assert event.witness_hash == Hasher.witness_hash(
            event.domain_manifest_genesis_hash, event.merkle_root, "sepolia", TX
        )
        assert sorted(result.attached_hashes) == sorted(r.verification_hash for r in pages.values())

        for title, record in pages.items():
            stored = engine.verification.by_hash(record.verification_hash)
            assert stored.witness_event_id == 1

            path = engine.proof_path(1, record.verification_hash)
            assert len(path) == 2
            assert MerkleProofService.verify_path(record.verification_hash, path, event.merkle_root)

    def test_manifest_renamed_with_receipt(self, engine, round_one):
        event = engine.anchor(1, "sepolia", CONTRACT, TX, SENDER).witness_event
        final_title = permanent_manifest_title(event.domain_manifest_genesis_hash)

        assert event.manifest_title == final_title
        assert not engine.documents.exists(tentative_manifest_title(1))
        text = engine.documents.latest_text(final_title)
        assert text.endswith(render_receipt(event))
        assert f"* Transaction Hash: {TX}" in text
        assert engine.documents.latest_revision(final_title).comment == "Domain Manifest witnessed"

        manifest_record = engine.verification.by_hash(event.domain_manifest_genesis_hash)
        assert manifest_record.witness_event_id == 1
        assert manifest_record.document_title == final_title

    def test_defaults_to_event_network(self, engine, round_one):
        event = engine.store_witness_transaction(1, SENDER, TX).witness_event
        assert event.witness_network == "sepolia"
        assert event.smart_contract_address == round_one.witness_event.smart_contract_address

    def test_anchor_is_idempotent(self, engine, round_one):
        first = engine.anchor(1, "sepolia", CONTRACT, TX, SENDER)
        again = engine.anchor(1, "sepolia", CONTRACT, "0xother", SENDER)

        assert again.skipped
        assert again.witness_event.transaction_hash == TX
        assert again.witness_event.witness_hash == first.witness_event.witness_hash
        assert len(engine.documents.revisions(first.witness_event.manifest_title)) == 2

    def test_earliest_event_wins(self, engine, pages, round_one):
        engine.anchor(1, "sepolia", CONTRACT, TX, SENDER)
        # Beta unchanged: it is a member of round two as well
        engine.save_revision("Alpha", "Edited")
        engine.generate_manifest()
        engine.anchor(2, "sepolia", CONTRACT, "0xsecond", SENDER)

        assert engine.verification.by_hash(pages["Beta"].verification_hash).witness_event_id == 1

    def test_witness_committed_by_next_revision(self, engine, pages, round_one):
        event = engine.anchor(1, "sepolia", CONTRACT, TX, SENDER).witness_event
        record = engine.save_revision("Alpha", "After witnessing")
        assert record.witness_hash == event.witness_hash
        assert Hasher.verify_record(record)

    def test_unknown_event(self, engine):
        with pytest.raises(NotFoundError):
            engine.anchor(5, "sepolia", CONTRACT, TX, SENDER)

    def test_witness_data(self, engine, round_one):
        assert engine.get_witness_data(1) == round_one.witness_event
        with pytest.raises(NotFoundError):
            engine.get_witness_data(2)

    def test_request_merkle_proof(self, engine, pages, round_one):
        alpha = pages["Alpha"].verification_hash
        step = engine.request_merkle_proof(1, alpha, depth=0)
        assert step.left == alpha
        assert step.right == pages["Beta"].verification_hash
        with pytest.raises(NotFoundError):
            engine.request_merkle_proof(1, Hasher.digest("nope"))


class TestSignatures:

    def test_store_signature_injects_marker(self, engine):
        record = engine.save_revision("Alpha", "Body")
        signed = engine.store_signature(record.revision_id, "0xsig", "0xpub", "0xWallet")

        assert signed.wallet_address == "0xWallet"
        latest = engine.verification.latest_by_title("Alpha")
        assert latest.revision_id > record.revision_id
        assert latest.signature_hash == Hasher.signature_hash("0xsig", "0xpub")
        assert "* 0xWallet " in engine.documents.latest_text("Alpha")

    def test_store_signature_unknown_revision(self, engine):
        with pytest.raises(NotFoundError):
            engine.store_signature(404, "0xsig", "0xpub", "0xWallet")
        assert engine.documents.revisions("Alpha") == []

    def test_store_signature_rejects_unencodable_wallet(self, engine):
        record = engine.save_revision("Alpha", "Body")
        with pytest.raises(InvalidArgumentError, match="wallet_address"):
            engine.store_signature(record.revision_id, "0xsig", "0xpub", "0x\ud83d")

        assert engine.verification.by_revision_id(record.revision_id).signature is None
        assert len(engine.documents.revisions("Alpha")) == 1

    def test_verify_revision(self, engine):
        record = engine.save_revision("Alpha", "Body")
        result = engine.verify_revision(record.revision_id)
        assert result["hash_valid"] is True
        assert result["record"].verification_hash == record.verification_hash


class TestManifestScheduler:

    def test_run_once_generates_manifest(self, engine, pages):
        scheduler = ManifestScheduler(engine, SchedulerConfig(enabled=False))
        result = scheduler.run_once()
        assert result.witness_event_id == 1
        assert scheduler.get_status()["last_witness_event_id"] == 1

    def test_skips_while_previous_round_unanchored(self, engine, pages):
        scheduler = ManifestScheduler(engine, SchedulerConfig(skip_unanchored=True))
        scheduler.run_once()
        assert scheduler.run_once() is None

        engine.anchor(1, "sepolia", CONTRACT, TX, SENDER)
        assert scheduler.run_once().witness_event_id == 2

    def test_disabled_scheduler_does_not_start(self, engine):
        scheduler = ManifestScheduler(engine, SchedulerConfig(enabled=False))
        scheduler.start()
        assert not scheduler.is_running
