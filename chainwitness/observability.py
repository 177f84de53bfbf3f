"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request IDs
- Request/response logging middleware
- Metrics collection (manifests, anchors, imports, request latency)
- Health check utilities

Configuration:
- CHAINWITNESS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- CHAINWITNESS_LOG_FORMAT: json, text (default: json in production)
- CHAINWITNESS_PRODUCTION: Enable production mode

Usage:
    from chainwitness.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Manifest generated", witness_event_id=event_id, leaves=len(leaves))
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Standard LogRecord attributes, never copied into structured output
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
))


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("CHAINWITNESS_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("CHAINWITNESS_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("CHAINWITNESS_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "logger": "chainwitness.core.witness",
        "message": "Witness event anchored",
        "request_id": "abc-123",
        "witness_event_id": 4,
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        fields = {
            k: v for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS and not k.startswith("_")
        }
        if fields:
            msg += " " + " ".join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that accepts structured keyword fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Page imported", title=title, revisions=count)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})

        # Move non-standard kwargs to extra
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())

    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that sets up request context for logging.

    Features:
    - Uses X-Request-ID when provided, otherwise generates one
    - Logs request/response with timing
    - Feeds request latency into the metrics collector
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        token = request_id_var.set(request_id)

        logger = get_logger("chainwitness.request")
        start_time = time.perf_counter()

        logger.debug(
            f"{request.method} {request.url.path}",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) if request.query_params else None,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000
            log_level = logging.INFO if response.status_code < 400 else logging.WARNING

            logger.log(
                log_level,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            get_metrics().record_request(duration_ms, success=response.status_code < 500)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            get_metrics().record_request(duration_ms, success=False)
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            raise

        finally:
            request_id_var.reset(token)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    manifests_generated: int = 0
    manifests_empty: int = 0
    anchors_recorded: int = 0
    anchors_skipped: int = 0
    signatures_stored: int = 0
    pages_imported: int = 0
    requests_total: int = 0
    requests_failed: int = 0

    # Histograms (simplified as lists)
    manifest_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    MAX_SAMPLES = 1000

    def _sample(self, samples: list, value: float) -> list:
        samples.append(value)
        if len(samples) > self.MAX_SAMPLES:
            return samples[-self.MAX_SAMPLES:]
        return samples

    def record_manifest(self, latency_ms: float, empty: bool = False) -> None:
        if empty:
            self.manifests_empty += 1
        else:
            self.manifests_generated += 1
        self.manifest_latencies_ms = self._sample(self.manifest_latencies_ms, latency_ms)

    def record_anchor(self, skipped: bool = False) -> None:
        if skipped:
            self.anchors_skipped += 1
        else:
            self.anchors_recorded += 1

    def record_signature(self) -> None:
        self.signatures_stored += 1

    def record_import(self) -> None:
        self.pages_imported += 1

    def record_request(self, latency_ms: float, success: bool) -> None:
        self.requests_total += 1
        if not success:
            self.requests_failed += 1
        self.request_latencies_ms = self._sample(self.request_latencies_ms, latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        return {
            "manifests_generated": self.manifests_generated,
            "manifests_empty": self.manifests_empty,
            "anchors_recorded": self.anchors_recorded,
            "anchors_skipped": self.anchors_skipped,
            "signatures_stored": self.signatures_stored,
            "pages_imported": self.pages_imported,
            "requests_total": self.requests_total,
            "requests_failed": self.requests_failed,
            "manifest_latency_p50_ms": percentile(self.manifest_latencies_ms, 0.5),
            "manifest_latency_p95_ms": percentile(self.manifest_latencies_ms, 0.95),
            "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
            "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
        }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(store=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        store: WitnessStore instance
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if store is not None:
        try:
            reachable = store.ping()
            with store.transaction() as session:
                record_count = session.count_records()
                last_event = session.max_witness_event_id()
            checks["witness_store"] = {
                "status": "healthy" if reachable else "unhealthy",
                "store_type": type(store).__name__,
                "record_count": record_count,
                "last_witness_event_id": last_event or None,
            }
            if not reachable:
                all_healthy = False
        except Exception as e:
            # Health endpoints report failures instead of raising
            checks["witness_store"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
