"""
API Routes for the Chain Witness Engine

Query endpoints:
- GET  /data_accounting/get_page_all_revs/{title}             - Revision ids of a page
- GET  /data_accounting/request_merkle_proof/{event_id}/{hash} - One proof step (?depth=)
- GET  /data_accounting/get_witness_data/{event_id}           - Data a wallet publishes
- GET  /data_accounting/verify_page/{revision_id}             - Stored record + recompute
- GET  /data_accounting/export/{title}                        - Page with full chain

Command endpoints:
- POST /data_accounting/write/save_revision      - Store a new revision
- POST /data_accounting/write/store_signed_tx    - Record a wallet signature
- POST /data_accounting/write/store_witness_tx   - Record the anchoring transaction
- POST /data_accounting/witness/generate_manifest - Start a witnessing round
- POST /data_accounting/import                   - Merge a foreign page export

No authentication: transport security is handled in front of this service.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from ..core import (
    ConflictError,
    IntegrityError,
    InvalidArgumentError,
    NotFoundError,
    WitnessEngine,
    WitnessError,
)
from ..db.store import LockTimeoutError
from ..schemas import PageExport, ProofStep, VerificationRecord, WitnessEvent


router = APIRouter(prefix="/data_accounting", tags=["Data Accounting"])


# ============================================================
# Dependency Injection
# ============================================================

def get_engine(request: Request) -> WitnessEngine:
    return request.app.state.engine


def _http_error(e: Exception) -> HTTPException:
    """Map engine errors to HTTP responses."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, (IntegrityError, ConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, LockTimeoutError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


# ============================================================
# Request/Response Models
# ============================================================

class SaveRevisionRequest(BaseModel):
    """Request to store a new revision of a page."""
    title: str = Field(..., min_length=1)
    text: str
    comment: str = ""


class StoreSignedTxRequest(BaseModel):
    """Wallet signature over a revision's verification hash."""
    rev_id: int = Field(..., ge=1)
    signature: str = Field(..., min_length=1)
    public_key: str = Field(..., min_length=1)
    wallet_address: str = Field(..., min_length=1)


class StoreWitnessTxRequest(BaseModel):
    """Transaction that published a witness event."""
    witness_event_id: int = Field(..., ge=1)
    account_address: str = Field(..., min_length=1)
    transaction_hash: str = Field(..., min_length=1)


class VerifyPageResponse(BaseModel):
    """Stored verification data of a revision."""
    record: VerificationRecord
    hash_valid: bool


class ManifestResponse(BaseModel):
    """Outcome of a manifest request."""
    generated: bool
    witness_event_id: Optional[int] = None
    manifest_title: Optional[str] = None
    domain_manifest_genesis_hash: Optional[str] = None
    merkle_root: Optional[str] = None
    witness_event_verification_hash: Optional[str] = None
    member_count: int = 0


class AnchorResponse(BaseModel):
    """Outcome of recording a witness transaction."""
    witness_event_id: int
    manifest_title: str
    transaction_hash: Optional[str] = None
    witness_hash: Optional[str] = None
    attached_count: int
    skipped: bool


class ImportResponse(BaseModel):
    """Outcome of merging a page export."""
    title: str
    declared_chain_height: int
    renamed_local_to: Optional[str] = None
    revisions: int
    patched: int
    dropped: int


# ============================================================
# Query Endpoints
# ============================================================

@router.get(
    "/get_page_all_revs/{title:path}",
    response_model=list[int],
    summary="List verified revision ids of a page",
)
def get_page_all_revs(title: str, engine: WitnessEngine = Depends(get_engine)):
    """Revision ids in ascending order. 404 when the page has none."""
    try:
        return engine.get_all_revision_ids(title)
    except WitnessError as e:
        raise _http_error(e)


@router.get(
    "/request_merkle_proof/{witness_event_id}/{verification_hash}",
    response_model=ProofStep,
    summary="Get one Merkle proof step",
)
def request_merkle_proof(
    witness_event_id: int,
    verification_hash: str,
    depth: Optional[int] = Query(default=None, ge=0),
    engine: WitnessEngine = Depends(get_engine),
):
    """
    The sibling pair holding a hash in the event's tree.

    Walk a proof by starting at depth=0 with the revision hash and
    repeating with the returned successor at depth+1 until it equals
    the Merkle root. Omitting depth returns the first match.
    """
    try:
        return engine.request_merkle_proof(witness_event_id, verification_hash, depth)
    except WitnessError as e:
        raise _http_error(e)


@router.get(
    "/get_witness_data/{witness_event_id}",
    response_model=WitnessEvent,
    summary="Get the data a wallet publishes for a witness event",
)
def get_witness_data(witness_event_id: int, engine: WitnessEngine = Depends(get_engine)):
    try:
        return engine.get_witness_data(witness_event_id)
    except WitnessError as e:
        raise _http_error(e)


@router.get(
    "/verify_page/{revision_id}",
    response_model=VerifyPageResponse,
    summary="Get the verification record of a revision",
)
def verify_page(revision_id: int, engine: WitnessEngine = Depends(get_engine)):
    try:
        return engine.verify_revision(revision_id)
    except WitnessError as e:
        raise _http_error(e)


@router.get(
    "/export/{title:path}",
    response_model=PageExport,
    summary="Export a page with its verification chain",
)
def export_page(title: str, engine: WitnessEngine = Depends(get_engine)):
    try:
        return engine.export_page(title)
    except WitnessError as e:
        raise _http_error(e)


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "/write/save_revision",
    response_model=VerificationRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Store a new revision of a page",
)
def save_revision(body: SaveRevisionRequest, engine: WitnessEngine = Depends(get_engine)):
    try:
        return engine.save_revision(body.title, body.text, comment=body.comment)
    except WitnessError as e:
        raise _http_error(e)


@router.post(
    "/write/store_signed_tx",
    summary="Record a wallet signature over a revision",
)
def store_signed_tx(body: StoreSignedTxRequest, engine: WitnessEngine = Depends(get_engine)):
    try:
        engine.store_signature(body.rev_id, body.signature, body.public_key, body.wallet_address)
    except WitnessError as e:
        raise _http_error(e)
    return True


@router.post(
    "/write/store_witness_tx",
    response_model=AnchorResponse,
    summary="Record the transaction that published a witness event",
)
def store_witness_tx(body: StoreWitnessTxRequest, engine: WitnessEngine = Depends(get_engine)):
    """
    Runs the full anchoring procedure. Repeating the call for an
    anchored event changes nothing and reports skipped=true.
    """
    try:
        result = engine.store_witness_transaction(
            body.witness_event_id, body.account_address, body.transaction_hash
        )
    except (WitnessError, LockTimeoutError) as e:
        raise _http_error(e)
    return result.to_dict()


@router.post(
    "/witness/generate_manifest",
    response_model=ManifestResponse,
    summary="Start a witnessing round",
)
def generate_manifest(engine: WitnessEngine = Depends(get_engine)):
    """
    Builds the domain manifest over the latest revision of every page.
    409 when a page has an empty verification hash.
    """
    try:
        result = engine.generate_manifest()
    except (WitnessError, LockTimeoutError) as e:
        raise _http_error(e)
    if result is None:
        return ManifestResponse(generated=False)
    return ManifestResponse(generated=True, **result.to_dict())


@router.post(
    "/import",
    response_model=ImportResponse,
    summary="Merge a page export from another domain",
)
def import_page(body: PageExport, engine: WitnessEngine = Depends(get_engine)):
    try:
        return engine.import_page(body)
    except (WitnessError, LockTimeoutError) as e:
        raise _http_error(e)
