"""
Tests for the hash composition rules.

These values are persisted and published on chain: a change that
breaks one of these tests breaks every stored chain.
"""

import hashlib
import re

import pytest

from chainwitness.core import Hasher, InvalidArgumentError, ensure_utf8
from chainwitness.schemas import HashField, VerificationRecord


def sha3(data: str) -> str:
    return hashlib.sha3_512(data.encode("utf-8")).hexdigest()


class TestDigest:
    """Test the digest primitive - THIS IS SACRED GROUND."""

    def test_known_vector(self):
        assert Hasher.digest("abc") == (
            "b751850b1a57168a5693cd924b6b096e08f621827444f70d884f5d0240d2712e"
            "10e116e9192af3c91a7ec57647e3934057340b4cf408d5a56592f8274eec53f0"
        )

    def test_empty_input_stays_empty(self):
        """The empty string is not hashed."""
        assert Hasher.digest("") == ""

    def test_lowercase_hex_128(self):
        value = Hasher.digest("Main Page")
        assert len(value) == Hasher.HEX_LENGTH
        assert re.fullmatch(r"[0-9a-f]{128}", value)

    def test_deterministic(self):
        assert Hasher.digest("same") == Hasher.digest("same")

    def test_utf8_encoding(self):
        assert Hasher.digest("Zürich ✓") == sha3("Zürich ✓")

    def test_lone_surrogate_is_hashed(self):
        """Digest never raises, even for text with no UTF-8 encoding."""
        value = Hasher.digest("a\ud800b")
        assert re.fullmatch(r"[0-9a-f]{128}", value)
        assert value != Hasher.digest("ab")


class TestEnsureUtf8:

    def test_accepts_plain_and_nested_text(self):
        ensure_utf8({"main": "Zürich", "extra": ["✓", None, 3]}, "slots")

    def test_rejects_lone_surrogate(self):
        with pytest.raises(InvalidArgumentError, match="title is not valid UTF-8"):
            ensure_utf8("x\udfff", "title")

    def test_names_the_nested_field(self):
        with pytest.raises(InvalidArgumentError, match=r"slots\.main"):
            ensure_utf8({"main": "\ud800"}, "slots")


class TestComposition:
    """Each composed hash is the digest of its parts concatenated."""

    def test_content_hash_concatenates_slots(self):
        assert Hasher.content_hash(["abc", "def"]) == sha3("abcdef")

    def test_content_hash_of_empty_page(self):
        assert Hasher.content_hash([""]) == ""

    def test_metadata_hash(self):
        assert Hasher.metadata_hash("dom", "20240301120000", "prev") == sha3("dom20240301120000prev")

    def test_metadata_hash_without_previous(self):
        """A missing previous hash counts as the empty string."""
        assert Hasher.metadata_hash("dom", "20240301120000", None) == sha3("dom20240301120000")

    def test_signature_hash(self):
        assert Hasher.signature_hash("0xsig", "0xpub") == sha3("0xsig0xpub")

    def test_verification_hash_missing_components(self):
        assert Hasher.verification_hash("c", "m") == sha3("cm")
        assert Hasher.verification_hash("c", "m", None, "w") == sha3("cmw")
        assert Hasher.verification_hash("c", "m", "", "") == Hasher.verification_hash("c", "m")

    def test_witness_hash(self):
        assert Hasher.witness_hash("g", "r", "sepolia", "0xdeadbeef") == sha3("grsepolia0xdeadbeef")

    def test_witness_event_verification_hash(self):
        assert Hasher.witness_event_verification_hash("g", "r") == sha3("gr")

    def test_merkle_parent_is_order_sensitive(self):
        assert Hasher.merkle_parent("a", "b") == sha3("ab")
        assert Hasher.merkle_parent("a", "b") != Hasher.merkle_parent("b", "a")


class TestDomainId:

    def test_random_domain_id_is_full_digest(self):
        domain_id = Hasher.random_domain_id()
        assert re.fullmatch(r"[0-9a-f]{128}", domain_id)

    def test_random_domain_ids_differ(self):
        assert Hasher.random_domain_id() != Hasher.random_domain_id()


class TestRecordCheck:

    @pytest.fixture
    def record(self):
        content = Hasher.content_hash(["hello"])
        metadata = Hasher.metadata_hash("dom", "20240301120000", None)
        verification = Hasher.verification_hash(content, metadata)
        return VerificationRecord(
            domain_id="dom",
            genesis_hash=verification,
            revision_id=1,
            document_title="Hello",
            content_hash=content,
            metadata_hash=metadata,
            verification_hash=verification,
            timestamp="20240301120000",
        )

    def test_valid_record(self, record):
        assert Hasher.recompute(record) == record.verification_hash
        assert Hasher.verify_record(record)

    def test_tampered_component_detected(self, record):
        tampered = record.model_copy(update={"content_hash": Hasher.digest("evil")})
        assert not Hasher.verify_record(tampered)

    def test_missing_verification_hash_is_invalid(self, record):
        assert not Hasher.verify_record(record.model_copy(update={"verification_hash": None}))

    def test_hash_value_projection(self, record):
        assert record.hash_value(HashField.CONTENT_HASH) == record.content_hash
        assert record.hash_value(HashField.SIGNATURE_HASH) is None
