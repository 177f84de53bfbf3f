# Core verification chain and witnessing services
from .hasher import Hasher, ensure_utf8
from .exceptions import (
    WitnessError,
    NotFoundError,
    InvalidArgumentError,
    IntegrityError,
    ConflictError,
)
from .config import DomainConfig
from .verification import VerificationStore, AuditReport
from .documents import DocumentService, utc_timestamp
from .merkle import MerkleTree, MerkleTreeBuilder, render_tree
from .proof import MerkleProofService
from .witness import (
    WitnessEventCoordinator,
    ManifestResult,
    AnchorResult,
)
from .exporter import PageExporter
from .importer import ChainMergeImporter
from .engine import WitnessEngine, create_engine
from .scheduler import ManifestScheduler, SchedulerConfig

__all__ = [
    "Hasher",
    "ensure_utf8",
    "WitnessError",
    "NotFoundError",
    "InvalidArgumentError",
    "IntegrityError",
    "ConflictError",
    "DomainConfig",
    "VerificationStore",
    "AuditReport",
    "DocumentService",
    "utc_timestamp",
    "MerkleTree",
    "MerkleTreeBuilder",
    "render_tree",
    "MerkleProofService",
    "WitnessEventCoordinator",
    "ManifestResult",
    "AnchorResult",
    "PageExporter",
    "ChainMergeImporter",
    "WitnessEngine",
    "create_engine",
    "ManifestScheduler",
    "SchedulerConfig",
]
