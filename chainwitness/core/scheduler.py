"""
Manifest Scheduler

Periodically starts a witnessing round (domain manifest generation).

CONFIGURATION:
- CHAINWITNESS_MANIFEST_ENABLED: Enable scheduled manifests (default: false)
- CHAINWITNESS_MANIFEST_INTERVAL_SECONDS: Seconds between rounds (default: 86400)
- CHAINWITNESS_MANIFEST_SKIP_UNANCHORED: Skip a round while the previous
  event still waits for its transaction (default: true)

USAGE:
    scheduler = ManifestScheduler(engine)
    scheduler.start()

    # Or trigger a round manually
    result = scheduler.run_once()

    scheduler.stop()
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .exceptions import WitnessError
from .witness import ManifestResult

if TYPE_CHECKING:
    from .engine import WitnessEngine

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    """Configuration for the manifest scheduler."""
    interval_seconds: int = 86400
    enabled: bool = False
    skip_unanchored: bool = True

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load configuration from environment variables."""
        return cls(
            interval_seconds=int(os.environ.get("CHAINWITNESS_MANIFEST_INTERVAL_SECONDS", "86400")),
            enabled=os.environ.get("CHAINWITNESS_MANIFEST_ENABLED", "").lower() in ("1", "true", "yes"),
            skip_unanchored=os.environ.get(
                "CHAINWITNESS_MANIFEST_SKIP_UNANCHORED", "true"
            ).lower() in ("1", "true", "yes"),
        )


class ManifestScheduler:
    """
    Background thread that generates domain manifests on an interval.

    Anchoring stays manual: a wallet has to publish each round.
    """

    def __init__(
        self,
        engine: "WitnessEngine",
        config: Optional[SchedulerConfig] = None,
    ):
        self._engine = engine
        self._config = config or SchedulerConfig.from_env()

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_result: Optional[ManifestResult] = None

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the background scheduler."""
        if not self._config.enabled:
            logger.info("Manifest scheduler disabled (set CHAINWITNESS_MANIFEST_ENABLED=1 to enable)")
            return

        if self._running:
            logger.warning("Manifest scheduler already running")
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()

        logger.info(f"Manifest scheduler started (interval={self._config.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background scheduler."""
        if not self._running:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)

        self._running = False
        logger.info("Manifest scheduler stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except WitnessError as e:
                logger.error(f"Scheduled manifest failed: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error generating manifest: {e}")

            self._stop_event.wait(timeout=self._config.interval_seconds)

    def run_once(self) -> Optional[ManifestResult]:
        """
        Generate one manifest now.

        Returns None when there is nothing to witness, or when the
        previous round is still waiting for its transaction and
        skip_unanchored is set.
        """
        if self._config.skip_unanchored:
            pending = self._engine.latest_witness_event()
            if pending is not None and not pending.is_anchored:
                logger.info(
                    f"Witness event {pending.witness_event_id} not anchored yet, "
                    f"skipping scheduled manifest"
                )
                return None

        result = self._engine.generate_manifest()
        if result is not None:
            self._last_result = result
        return result

    def get_status(self) -> dict:
        last = self._last_result
        return {
            "enabled": self._config.enabled,
            "running": self._running,
            "interval_seconds": self._config.interval_seconds,
            "skip_unanchored": self._config.skip_unanchored,
            "last_witness_event_id": last.witness_event_id if last else None,
        }
