# consultflow: periodic webhook queue drain
#
# Runs process_queue every drain_interval_secs in a daemon thread so queued
# row changes go out even when nobody calls the action endpoint.

import logging
import threading
from typing import Optional, Dict

from .config import Config
from .store import BoardStore
from . import webhooks

logger = logging.getLogger(__name__)


class WebhookProcessor:

    def __init__(self, store: BoardStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or Config()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[Dict[str, int]]:
        """One drain pass. Errors are logged, never raised."""
        try:
            return webhooks.process_queue(self.store, self.config)
        except Exception as e:
            logger.error(f"Webhook drain failed: {e}")
            return None
        finally:
            self.runs += 1

    def _loop(self):
        interval = self.config.drain_interval_secs
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(interval)

    def start(self) -> bool:
        """Start the background loop. No-op when disabled or already running."""
        if self.config.drain_interval_secs <= 0 or self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="webhook-processor", daemon=True)
        self._thread.start()
        logger.info(f"Webhook processor started (every {self.config.drain_interval_secs}s)")
        return True

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Webhook processor stopped")
