"""
Tests for revisions, their verification records and chain queries.
"""

import pytest

from chainwitness.core import (
    ConflictError,
    DocumentService,
    Hasher,
    InvalidArgumentError,
    NotFoundError,
    VerificationStore,
    utc_timestamp,
)
from chainwitness.core.documents import SIGNATURE_SECTION
from chainwitness.schemas import RecordSource, WitnessEvent


class TestDocumentService:

    @pytest.fixture
    def documents(self, store, domain_config, clock):
        return DocumentService(store, domain_config, clock=clock)

    def test_first_revision_is_genesis(self, documents, domain_config):
        revision, record = documents.save_revision("Alpha", text="first")

        assert record.revision_id == revision.revision_id
        assert record.genesis_hash == record.verification_hash
        assert record.content_hash == Hasher.digest("first")
        assert record.metadata_hash == Hasher.metadata_hash(
            domain_config.domain_id, revision.timestamp, None
        )
        assert record.signature_hash is None
        assert record.witness_hash is None
        assert record.source == RecordSource.DEFAULT
        assert Hasher.verify_record(record)

    def test_revisions_chain(self, documents, domain_config):
        _, first = documents.save_revision("Alpha", text="one")
        revision, second = documents.save_revision("Alpha", text="two")

        assert second.genesis_hash == first.verification_hash
        assert second.metadata_hash == Hasher.metadata_hash(
            domain_config.domain_id, revision.timestamp, first.verification_hash
        )
        assert second.revision_id > first.revision_id

    def test_timestamps_are_utc_14_digits(self, documents):
        revision, _ = documents.save_revision("Alpha", text="x")
        assert revision.timestamp == "20240301120001"

    def test_utc_timestamp_helper(self):
        assert len(utc_timestamp()) == 14

    def test_slots_hashed_in_role_order(self, documents):
        _, record = documents.save_revision(
            "Alpha", slots={"zeta": "Z", "main": "M", "alpha": "A"}
        )
        assert record.content_hash == Hasher.digest("MAZ")

    def test_text_or_slots_required(self, documents):
        with pytest.raises(InvalidArgumentError):
            documents.save_revision("Alpha")
        with pytest.raises(InvalidArgumentError):
            documents.save_revision("Alpha", text="x", slots={"main": "x"})
        with pytest.raises(InvalidArgumentError):
            documents.save_revision("", text="x")

    def test_append_text(self, documents):
        documents.save_revision("Alpha", slots={"main": "body", "media": "blob"})
        revision, _ = documents.append_text("Alpha", "\nmore")
        assert revision.slots == {"main": "body\nmore", "media": "blob"}

    def test_rename_moves_revisions_and_records(self, store, documents):
        documents.save_revision("Alpha", text="x")
        documents.rename("Alpha", "Beta")

        assert not documents.exists("Alpha")
        assert documents.latest_text("Beta") == "x"
        with store.transaction() as session:
            assert session.count_records("Alpha") == 0
            assert session.count_records("Beta") == 1

    def test_rename_conflict(self, documents):
        documents.save_revision("Alpha", text="x")
        documents.save_revision("Beta", text="y")
        with pytest.raises(ConflictError):
            documents.rename("Alpha", "Beta")

    def test_rename_missing(self, documents):
        with pytest.raises(NotFoundError):
            documents.rename("Ghost", "Other")

    def test_inject_signature_newest_first(self, documents):
        documents.save_revision("Alpha", text="Body")
        documents.inject_signature("Alpha", "0xAAA")
        record = documents.inject_signature("Alpha", "0xBBB")

        text = documents.latest_text("Alpha")
        assert text.startswith("Body\n\n" + SIGNATURE_SECTION + "\n")
        assert text.index("* 0xBBB") < text.index("* 0xAAA")
        assert text.count(SIGNATURE_SECTION) == 1
        assert documents.latest_revision("Alpha").comment == "Page signed by wallet: 0xBBB"
        assert record is not None

    def test_inject_signature_disabled(self, store, domain_config, clock):
        domain_config.inject_signature = False
        documents = DocumentService(store, domain_config, clock=clock)
        documents.save_revision("Alpha", text="Body")
        assert documents.inject_signature("Alpha", "0xAAA") is None
        assert len(documents.revisions("Alpha")) == 1

    @pytest.mark.parametrize("title,text", [
        ("Alpha", "broken \ud800 text"),
        ("Al\udc00pha", "fine"),
    ])
    def test_text_without_utf8_encoding_rejected(self, documents, store, title, text):
        with pytest.raises(InvalidArgumentError, match="not valid UTF-8"):
            documents.save_revision(title, text=text)

        with store.transaction() as session:
            assert session.count_records() == 0


class TestVerificationStore:

    @pytest.fixture
    def documents(self, store, domain_config, clock):
        return DocumentService(store, domain_config, clock=clock)

    @pytest.fixture
    def verification(self, store):
        return VerificationStore(store)

    def test_lookups(self, documents, verification):
        _, first = documents.save_revision("Alpha", text="one")
        _, second = documents.save_revision("Alpha", text="two")

        assert verification.by_hash(first.verification_hash).revision_id == first.revision_id
        assert verification.by_revision_id(second.revision_id).verification_hash == second.verification_hash
        assert verification.latest_by_title("Alpha").revision_id == second.revision_id
        assert verification.all_revision_ids("Alpha") == [first.revision_id, second.revision_id]
        assert verification.chain_height("Alpha") == 2
        assert verification.by_hash(Hasher.digest("unknown")) is None
        assert verification.all_revision_ids("Nothing") == []

    def test_newer_hashes_for_entity(self, documents, verification):
        _, first = documents.save_revision("Alpha", text="one")
        _, second = documents.save_revision("Alpha", text="two")
        documents.save_revision("Other", text="unrelated")

        assert verification.newer_hashes_for_entity(first, "verification_hash") == [
            first.verification_hash,
            second.verification_hash,
        ]
        assert verification.newer_hashes_for_entity(second, "content_hash") == [second.content_hash]

    def test_newer_hashes_rejects_unknown_column(self, documents, verification):
        _, first = documents.save_revision("Alpha", text="one")
        with pytest.raises(InvalidArgumentError):
            verification.newer_hashes_for_entity(first, "document_title; DROP TABLE x")

    def test_attach_witness_earliest_wins(self, documents, verification):
        _, record = documents.save_revision("Alpha", text="one")

        assert verification.attach_witness(record.verification_hash, 1) is True
        assert verification.attach_witness(record.verification_hash, 2) is False
        assert verification.by_hash(record.verification_hash).witness_event_id == 1

    def test_attach_witness_unknown_hash(self, verification):
        assert verification.attach_witness(Hasher.digest("nothing"), 1) is False

    def test_signature_committed_by_next_revision(self, documents, verification):
        _, first = documents.save_revision("Alpha", text="one")
        signed = verification.store_signature(first.revision_id, "0xsig", "0xpub", "0xwallet")

        assert signed.signature == "0xsig"
        assert signed.wallet_address == "0xwallet"
        assert signed.verification_hash == first.verification_hash
        assert Hasher.verify_record(signed)

        _, second = documents.save_revision("Alpha", text="two")
        assert second.signature_hash == Hasher.signature_hash("0xsig", "0xpub")
        assert Hasher.verify_record(second)

    def test_store_signature_unknown_revision(self, verification):
        with pytest.raises(NotFoundError):
            verification.store_signature(404, "0xsig", "0xpub", "0xwallet")

    def test_witness_committed_by_next_revision(self, store, documents, verification):
        _, first = documents.save_revision("Alpha", text="one")
        witness_hash = Hasher.witness_hash("g", "r", "sepolia", "0xtx")
        with store.transaction() as session:
            session.insert_witness_event(WitnessEvent(
                witness_event_id=1,
                domain_id="dom",
                manifest_title="Data Accounting:DomainManifest 1",
                domain_manifest_genesis_hash="g",
                merkle_root="r",
                witness_event_verification_hash=Hasher.witness_event_verification_hash("g", "r"),
                witness_network="sepolia",
                smart_contract_address="0xContract",
                transaction_hash="0xtx",
                witness_hash=witness_hash,
            ))
        verification.attach_witness(first.verification_hash, 1)

        _, second = documents.save_revision("Alpha", text="two")
        assert second.witness_hash == witness_hash

    def test_delete(self, documents, verification):
        _, record = documents.save_revision("Alpha", text="one")
        assert verification.delete("Alpha", record.revision_id) == 1
        assert verification.chain_height("Alpha") == 0

    def test_audit_clean_chain(self, documents, verification):
        documents.save_revision("Alpha", text="one")
        documents.save_revision("Alpha", text="two")

        report = verification.audit_title("Alpha")
        assert report.valid
        assert report.record_count == 2
        assert len(report.genesis_hashes) == 1

    def test_audit_detects_tampering(self, store, documents, verification):
        _, record = documents.save_revision("Alpha", text="one")
        with store.transaction() as session:
            session.update_record(record.row_id, content_hash=Hasher.digest("forged"))

        report = verification.audit_title("Alpha")
        assert not report.valid
        assert report.mismatched_revision_ids == [record.revision_id]

    def test_audit_unknown_title(self, verification):
        with pytest.raises(NotFoundError):
            verification.audit_title("Nothing")
