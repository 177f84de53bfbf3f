"""
Persisted Record Schemas

One model per table:
- VerificationRecord: one per document revision
- WitnessEvent: one per anchoring round
- WitnessMember: documents included in a round
- MerkleNode: flattened Merkle tree rows

Records are frozen. The fields that may change after creation are the
signature fields and the witness fields of a VerificationRecord, and the
transaction fields of a WitnessEvent. Changes never happen in place:
the store writes a patched copy (model_copy(update=...)).
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordSource(str, Enum):
    """Where a record came from."""
    DEFAULT = "default"     # Produced by this domain
    IMPORTED = "imported"   # Merged in from a foreign chain


class HashField(str, Enum):
    """
    Hash columns of a VerificationRecord that can be projected.

    Used by chain-continuity audits. Anything outside this set is
    rejected before it reaches the store.
    """
    GENESIS_HASH = "genesis_hash"
    CONTENT_HASH = "content_hash"
    METADATA_HASH = "metadata_hash"
    SIGNATURE_HASH = "signature_hash"
    WITNESS_HASH = "witness_hash"
    VERIFICATION_HASH = "verification_hash"


class VerificationRecord(BaseModel):
    """
    Verification data for one document revision.

    INVARIANTS:
    - verification_hash = H(content_hash ‖ metadata_hash ‖ signature_hash ‖ witness_hash)
      with "" substituted for any missing component
    - genesis_hash never changes once set
    - witness_event_id, once non-null, is never overwritten (earliest wins)
    """
    model_config = ConfigDict(frozen=True)

    # Insertion order (storage identity). Assigned by the store.
    row_id: Optional[int] = None

    domain_id: str
    genesis_hash: str = Field(
        ...,
        description="Verification hash of the first revision of this chain"
    )
    revision_id: int
    document_title: str

    content_hash: str
    metadata_hash: str
    signature_hash: Optional[str] = None
    witness_hash: Optional[str] = None

    # Nullable only so that corrupted rows can be represented and rejected
    verification_hash: Optional[str] = None

    timestamp: str = Field(
        ...,
        description="UTC timestamp, YYYYMMDDHHMMSS"
    )
    witness_event_id: Optional[int] = None

    signature: Optional[str] = None
    public_key: Optional[str] = None
    wallet_address: Optional[str] = None

    source: RecordSource = RecordSource.DEFAULT

    def hash_value(self, field: HashField) -> Optional[str]:
        """Project one of the hash columns."""
        return getattr(self, field.value)


class WitnessEvent(BaseModel):
    """
    One anchoring round.

    Created in tentative state (no transaction) when the domain manifest
    is generated; completed exactly once when the external transaction
    is reported.
    """
    model_config = ConfigDict(frozen=True)

    witness_event_id: int = Field(..., ge=1)
    domain_id: str
    manifest_title: str
    domain_manifest_genesis_hash: str
    merkle_root: str
    witness_event_verification_hash: str = Field(
        ...,
        description="H(domain_manifest_genesis_hash ‖ merkle_root)"
    )
    witness_network: str
    smart_contract_address: str

    # Populated at anchoring time
    transaction_hash: Optional[str] = None
    sender_address: Optional[str] = None
    witness_hash: Optional[str] = None

    source: RecordSource = RecordSource.DEFAULT

    @property
    def is_anchored(self) -> bool:
        """True once an external transaction has been recorded."""
        return self.transaction_hash is not None


class WitnessMember(BaseModel):
    """A document revision included in a witnessing round."""
    model_config = ConfigDict(frozen=True)

    witness_event_id: int
    document_title: str
    revision_id: int
    verification_hash: str


class MerkleNode(BaseModel):
    """
    One internal node of a witness event's Merkle tree.

    depth 0 is the leaf layer. An unpaired element promoted to the next
    layer is stored with right_leaf=None and successor=left_leaf.
    """
    model_config = ConfigDict(frozen=True)

    witness_event_id: int
    depth: int = Field(..., ge=0)
    left_leaf: str
    right_leaf: Optional[str] = None
    successor: str

    @property
    def is_passthrough(self) -> bool:
        return self.right_leaf is None

    @property
    def key(self) -> tuple:
        """Uniqueness key within the store."""
        return (self.witness_event_id, self.depth, self.left_leaf, self.right_leaf)

    def contains(self, leaf: str) -> bool:
        return leaf == self.left_leaf or leaf == self.right_leaf
