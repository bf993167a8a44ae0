"""Pull-based sync loop: fetch everything from the indexer on a timer."""

import threading
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from chainsync.config import Config
from chainsync.db.models import ENTITY_ORDER, EntityType, SyncHealth
from chainsync.db.session import get_session
from chainsync.log import get_logger
from chainsync.sync.indexer_client import IndexerClient
from chainsync.sync.schema import BATCH_KEYS
from chainsync.sync.status import set_health
from chainsync.sync.upsert import UpsertEngine

logger = get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000


@dataclass
class PollResult:
    """Outcome of one sweep."""
    skipped: bool = False
    synced: Dict[EntityType, int] = field(default_factory=dict)
    errors: Dict[EntityType, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "synced": {f"{et.value}s": n for et, n in self.synced.items()},
            "errors": {f"{et.value}s": msg for et, msg in self.errors.items()},
            "durationSeconds": round(self.duration_seconds, 3),
        }


class Poller:
    """Periodically mirrors every indexer entity into the cache.

    Only one sweep runs at a time. A sweep requested while another is in
    progress is skipped, not queued. Each entity type is fetched and written
    on its own, so one failing type does not stop the others.
    """

    def __init__(
        self,
        config: Config,
        indexer: IndexerClient,
        engine: Optional[UpsertEngine] = None,
        session_scope: Callable[[], AbstractContextManager[Session]] = get_session,
    ):
        self.interval = config.sync_interval_seconds
        self.indexer = indexer
        self.engine = engine or UpsertEngine(session_scope)
        self.session_scope = session_scope

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        """Whether a sweep is in progress."""
        return self._lock.locked()

    def run_once(self) -> PollResult:
        """Run one sweep unless one is already running."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return PollResult(skipped=True)

        try:
            return self._sweep()
        finally:
            self._lock.release()

    def _sweep(self) -> PollResult:
        result = PollResult()
        started = time.monotonic()
        logger.info("Sync from indexer started")

        for entity_type in ENTITY_ORDER:
            try:
                items = self.indexer.fetch_all(entity_type)
                batch = self.engine.sync_batch({BATCH_KEYS[entity_type]: items})
                result.synced[entity_type] = batch.count(entity_type)
            except Exception as e:
                message = str(e)[:MAX_ERROR_MESSAGE_LENGTH] or type(e).__name__
                logger.error(f"Failed to sync {entity_type.value}s: {message}", exc_info=True)
                result.errors[entity_type] = message
                self._mark(entity_type, SyncHealth.ERROR, message)
            else:
                self._mark(entity_type, SyncHealth.HEALTHY)

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Sync completed in {result.duration_seconds:.2f}s: "
            + ", ".join(f"{et.value}s={n}" for et, n in result.synced.items())
            + (f" (failed: {', '.join(et.value for et in result.errors)})" if result.errors else "")
        )
        return result

    def _mark(self, entity_type: EntityType, health: SyncHealth, message: Optional[str] = None) -> None:
        try:
            with self.session_scope() as session:
                set_health(session, entity_type, health, message)
        except Exception as e:
            logger.error(f"Failed to record {health.value} status for {entity_type.value}: {e}")

    def start(self) -> None:
        """Run one sweep now, then every ``interval`` seconds on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="chainsync-poller", daemon=True)
        self._thread.start()
        logger.info(f"Auto-sync started (every {self.interval}s)")

    def _loop(self) -> None:
        while True:
            try:
                self.run_once()
            except Exception as e:
                # Keep polling
                logger.error(f"Error in sync loop: {e}", exc_info=True)

            if self._stop.wait(self.interval):
                break

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to stop and wait for the current sweep to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto-sync stopped")
