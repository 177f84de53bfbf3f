"""
Interchange Schema

The shape in which a page's verification chain travels between
domains (export on one side, merge import on the other).

A page export carries every revision together with its verification
block. A verification block may nest a witness block, which in turn
carries the structured Merkle proof from the revision's verification
hash up to the witness event's Merkle root.

Field names follow the persisted records. Older exports used a few
different names; those are accepted as aliases on input.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .records import MerkleNode, VerificationRecord, WitnessEvent


class ProofStep(BaseModel):
    """
    One sibling-pair step of a Merkle proof.

    right is None for a pass-through step (unpaired node promoted
    unchanged, successor == left).
    """
    model_config = ConfigDict(populate_by_name=True)

    left: str = Field(..., validation_alias=AliasChoices("left", "left_leaf"))
    right: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("right", "right_leaf"),
    )
    successor: str
    depth: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def from_node(cls, node: MerkleNode) -> "ProofStep":
        return cls(
            left=node.left_leaf,
            right=node.right_leaf,
            successor=node.successor,
            depth=node.depth,
        )


class WitnessBlock(BaseModel):
    """Witness event data attached to an exported revision."""
    model_config = ConfigDict(populate_by_name=True)

    domain_id: str
    witness_event_verification_hash: str
    witness_network: str
    smart_contract_address: str
    domain_manifest_genesis_hash: str = Field(
        ...,
        validation_alias=AliasChoices(
            "domain_manifest_genesis_hash",
            "domain_manifest_verification_hash",
        ),
    )
    merkle_root: str
    transaction_hash: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "transaction_hash",
            "witness_event_transaction_hash",
        ),
    )
    sender_address: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "sender_address",
            "sender_account_address",
        ),
    )
    witness_hash: Optional[str] = None
    structured_merkle_proof: list[ProofStep] = Field(default_factory=list)

    @classmethod
    def from_event(cls, event: WitnessEvent, proof: list[ProofStep]) -> "WitnessBlock":
        return cls(
            domain_id=event.domain_id,
            witness_event_verification_hash=event.witness_event_verification_hash,
            witness_network=event.witness_network,
            smart_contract_address=event.smart_contract_address,
            domain_manifest_genesis_hash=event.domain_manifest_genesis_hash,
            merkle_root=event.merkle_root,
            transaction_hash=event.transaction_hash,
            sender_address=event.sender_address,
            witness_hash=event.witness_hash,
            structured_merkle_proof=proof,
        )


class VerificationBlock(BaseModel):
    """
    Verification data of one exported revision.

    revision_id is informational only: the importing side never trusts
    it and keeps its own revision numbering.
    """
    model_config = ConfigDict(populate_by_name=True)

    domain_id: str
    genesis_hash: Optional[str] = None
    revision_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("revision_id", "rev_id"),
    )
    content_hash: Optional[str] = None
    metadata_hash: Optional[str] = None
    signature_hash: Optional[str] = None
    witness_hash: Optional[str] = None
    verification_hash: str = Field(..., min_length=1)
    timestamp: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "time_stamp"),
    )
    witness_event_id: Optional[int] = None
    signature: Optional[str] = None
    public_key: Optional[str] = None
    wallet_address: Optional[str] = None
    witness: Optional[WitnessBlock] = None

    @classmethod
    def from_record(
        cls,
        record: VerificationRecord,
        witness: Optional[WitnessBlock] = None,
    ) -> "VerificationBlock":
        return cls(
            domain_id=record.domain_id,
            genesis_hash=record.genesis_hash,
            revision_id=record.revision_id,
            content_hash=record.content_hash,
            metadata_hash=record.metadata_hash,
            signature_hash=record.signature_hash,
            witness_hash=record.witness_hash,
            verification_hash=record.verification_hash,
            timestamp=record.timestamp,
            witness_event_id=record.witness_event_id,
            signature=record.signature,
            public_key=record.public_key,
            wallet_address=record.wallet_address,
            witness=witness,
        )

    def record_patch(self) -> dict:
        """
        Fields to patch onto the local record on import.

        Excludes revision_id (never trusted), witness data (remapped
        separately) and absent values.
        """
        patch = self.model_dump(
            exclude={"revision_id", "witness", "witness_event_id"},
            exclude_none=True,
        )
        return patch


class ExportedRevision(BaseModel):
    """A revision as it travels in a page export."""
    revision_id: int
    timestamp: str
    slots: dict[str, str]
    comment: str = ""
    verification: Optional[VerificationBlock] = None


class PageExport(BaseModel):
    """
    A page and its full verification chain.

    chain_height is the count of verified revisions at the exporting
    domain; it decides title collisions on import.
    """
    title: str = Field(..., min_length=1)
    chain_height: int = Field(..., ge=0)
    revisions: list[ExportedRevision] = Field(default_factory=list)
