"""
Chain Witness - Verified Revision History with Witness Anchoring

Main application entry point.

Every page revision gets a verification hash chained to its
predecessor. Witnessing rounds fold the latest hash of every page into
a Merkle tree whose root is published on an Ethereum network.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chainwitness.api import router
from chainwitness.core import ManifestScheduler, create_engine
from chainwitness.observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    engine = create_engine()
    app.state.engine = engine
    app.state.store = engine.store

    scheduler = ManifestScheduler(engine)
    app.state.scheduler = scheduler
    scheduler.start()  # Starts background thread if enabled

    logger.info(
        "Application startup complete",
        domain_id=engine.domain_id[:16] + "...",
        store_type=type(engine.store).__name__,
        witness_network=engine.config.witness_network,
        scheduler_enabled=scheduler.config.enabled,
    )

    yield

    scheduler.stop()
    engine.store.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Chain Witness",
    description="""
## Verified Revision History

Tamper-evident history for wiki-style pages.

### Verification Chain

- Every revision stores a SHA3-512 **verification hash** over its
  content, metadata, signature and witness data
- The metadata hash includes the previous revision's verification
  hash, so each page forms a hash chain
- Wallets may sign a revision's verification hash

### Witnessing

```
generate_manifest → wallet publishes root → store_witness_tx
```

1. A **domain manifest** lists the latest verification hash of every page
2. The hashes become leaves of a Merkle tree
3. The manifest's genesis hash and the Merkle root are published in a
   transaction
4. The transaction is recorded and every member revision gets a Merkle
   proof against the published root

### Portability

Pages export with their verification chain and Merkle proofs, and
import into another domain with the witness data preserved.

### Storage Backends

- **InMemoryWitnessStore**: Development/testing (default)
- **PostgresWitnessStore**: Production with full durability

Set `DATABASE_URL` to use PostgreSQL.
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add request context middleware for logging
app.add_middleware(RequestContextMiddleware)

app.include_router(router)


@app.get("/health", tags=["System"])
async def health(request: Request):
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    For detailed health, use /health/detailed
    """
    return {"status": "healthy", "service": "chainwitness"}


@app.get("/health/detailed", tags=["System"])
def health_detailed(request: Request):
    """
    Detailed health check.

    Checks:
    - Witness store connectivity
    - Stored record and witness event counts

    Returns 200 if healthy, 503 if unhealthy.
    """
    health_status = check_health(store=request.app.state.store)

    return JSONResponse(
        status_code=200 if health_status.healthy else 503,
        content={
            "status": "healthy" if health_status.healthy else "unhealthy",
            "checks": health_status.checks,
            "duration_ms": health_status.duration_ms,
            "scheduler": request.app.state.scheduler.get_status(),
        },
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """
    Get application metrics.

    Returns counters and latency percentiles.
    """
    return get_metrics().get_summary()
