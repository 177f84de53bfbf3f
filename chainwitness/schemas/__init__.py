# Record and interchange schemas for the verification chain.

from .records import (
    HashField,
    MerkleNode,
    RecordSource,
    VerificationRecord,
    WitnessEvent,
    WitnessMember,
)
from .documents import (
    FILE_NAMESPACE,
    MAIN_SLOT,
    MANIFEST_NAMESPACE,
    Revision,
    backup_title,
    permanent_manifest_title,
    tentative_manifest_title,
)
from .interchange import (
    ExportedRevision,
    PageExport,
    ProofStep,
    VerificationBlock,
    WitnessBlock,
)

__all__ = [
    # Records
    "HashField",
    "MerkleNode",
    "RecordSource",
    "VerificationRecord",
    "WitnessEvent",
    "WitnessMember",
    # Documents
    "FILE_NAMESPACE",
    "MAIN_SLOT",
    "MANIFEST_NAMESPACE",
    "Revision",
    "backup_title",
    "permanent_manifest_title",
    "tentative_manifest_title",
    # Interchange
    "ExportedRevision",
    "PageExport",
    "ProofStep",
    "VerificationBlock",
    "WitnessBlock",
]
