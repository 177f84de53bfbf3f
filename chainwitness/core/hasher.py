"""
Cryptographic Hashing Service

Digest primitives and chain-field composition rules.
Same input → same hash. Always. Forever.

This is SACRED GROUND.

If this breaks, every stored verification chain becomes unverifiable.
Every change here must be backward-compatible or versioned.

COMPOSITION RULES:
1. Digest: SHA3-512, lowercase hex (128 characters)
2. Empty input digests to the empty string (not the hash of "")
3. Fields are concatenated without separators
4. A missing (None) component is concatenated as "" - never skipped
5. verification_hash = H(content_hash ‖ metadata_hash ‖ signature_hash ‖ witness_hash)
6. metadata_hash     = H(domain_id ‖ timestamp ‖ previous_verification_hash)
7. signature_hash    = H(signature ‖ public_key)
8. witness_hash      = H(domain_manifest_genesis_hash ‖ merkle_root ‖ network ‖ tx_hash)
9. witness_event_verification_hash = H(domain_manifest_genesis_hash ‖ merkle_root)
10. Merkle parent    = H(left ‖ right)
11. Strings are encoded as UTF-8 with surrogatepass, so digest is total:
    a lone surrogate hashes instead of raising. Such text is still refused
    at the write boundary (see ensure_utf8) because it cannot be stored.
"""

import hashlib
import secrets
import string
from typing import Any, Iterable, Optional

from ..schemas import VerificationRecord
from .exceptions import InvalidArgumentError


def ensure_utf8(value: Any, what: str) -> None:
    """
    Reject text that has no UTF-8 encoding (lone surrogates).

    Walks dicts and lists. The message names the field, never the text.

    Raises:
        InvalidArgumentError: some string cannot be encoded
    """
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidArgumentError(
                f"{what} is not valid UTF-8 (unpaired surrogate at position {e.start})"
            ) from e
    elif isinstance(value, dict):
        for key, item in value.items():
            ensure_utf8(key, what)
            ensure_utf8(item, f"{what}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            ensure_utf8(item, f"{what}[{index}]")


class Hasher:
    """
    Hash computation for the verification chain.

    IMMUTABLE CONTRACT:
    - Same logical input → same hash
    - Forever
    - Across platforms
    - Across Python versions
    """

    HEX_LENGTH = 128

    # Domain ids are the digest of this many random uppercase letters
    DOMAIN_SEED_LENGTH = 64

    @staticmethod
    def digest(data: str) -> str:
        """
        SHA3-512 hex digest of a string.

        Returns "" unchanged for empty input.
        """
        if data == "":
            return ""
        return hashlib.sha3_512(data.encode("utf-8", "surrogatepass")).hexdigest()

    @classmethod
    def _concat(cls, *parts: Optional[str]) -> str:
        return "".join(p if p is not None else "" for p in parts)

    @classmethod
    def content_hash(cls, slots: Iterable[str]) -> str:
        """
        Hash the serialized content of a revision.

        Args:
            slots: Serialized slot contents, already in stable role order
        """
        return cls.digest("".join(slots))

    @classmethod
    def metadata_hash(
        cls,
        domain_id: str,
        timestamp: str,
        previous_verification_hash: Optional[str],
    ) -> str:
        """Hash the revision metadata, linking it to the previous revision."""
        return cls.digest(cls._concat(domain_id, timestamp, previous_verification_hash))

    @classmethod
    def signature_hash(cls, signature: str, public_key: str) -> str:
        return cls.digest(cls._concat(signature, public_key))

    @classmethod
    def verification_hash(
        cls,
        content_hash: Optional[str],
        metadata_hash: Optional[str],
        signature_hash: Optional[str] = None,
        witness_hash: Optional[str] = None,
    ) -> str:
        """
        Combine the four components into the revision fingerprint.

        Missing components count as "" in the concatenation.
        """
        return cls.digest(
            cls._concat(content_hash, metadata_hash, signature_hash, witness_hash)
        )

    @classmethod
    def witness_hash(
        cls,
        domain_manifest_genesis_hash: str,
        merkle_root: str,
        witness_network: str,
        transaction_hash: str,
    ) -> str:
        return cls.digest(
            cls._concat(
                domain_manifest_genesis_hash,
                merkle_root,
                witness_network,
                transaction_hash,
            )
        )

    @classmethod
    def witness_event_verification_hash(
        cls,
        domain_manifest_genesis_hash: str,
        merkle_root: str,
    ) -> str:
        return cls.digest(cls._concat(domain_manifest_genesis_hash, merkle_root))

    @classmethod
    def merkle_parent(cls, left: str, right: str) -> str:
        return cls.digest(cls._concat(left, right))

    @classmethod
    def random_domain_id(cls) -> str:
        """
        Generate a new domain id.

        The full 128-character digest is returned (never truncated).
        """
        seed = "".join(
            secrets.choice(string.ascii_uppercase)
            for _ in range(cls.DOMAIN_SEED_LENGTH)
        )
        return cls.digest(seed)

    @classmethod
    def recompute(cls, record: VerificationRecord) -> str:
        """Recompute a stored record's verification hash from its components."""
        return cls.verification_hash(
            record.content_hash,
            record.metadata_hash,
            record.signature_hash,
            record.witness_hash,
        )

    @classmethod
    def verify_record(cls, record: VerificationRecord) -> bool:
        """Check a stored record against its own components."""
        if record.verification_hash is None:
            return False
        return cls._constant_time_compare(cls.recompute(record), record.verification_hash)

    @staticmethod
    def _constant_time_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.

        Prevents timing attacks where an attacker could learn
        about the hash by measuring comparison time.
        """
        if len(a) != len(b):
            return False

        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)

        return result == 0
