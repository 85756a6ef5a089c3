"""
Auto-refresh scheduler.

Runs RefreshOrchestrator.refresh_all() on a background daemon thread while
there is data to refresh. The interval is recomputed every tick from the
current position count.
"""

import threading
from typing import Optional

from callout_store import CalloutStore
from refresh_engine import LARGE_LIST_THRESHOLD, RefreshOrchestrator

SMALL_LIST_INTERVAL = 30   # seconds
LARGE_LIST_INTERVAL = 60


def interval_for(count: int) -> int:
    """Seconds between refresh cycles for a list of count positions."""
    return LARGE_LIST_INTERVAL if count >= LARGE_LIST_THRESHOLD else SMALL_LIST_INTERVAL


class AutoRefreshScheduler:
    """
    Timed refresh lifecycle.

    Usage:
        scheduler = AutoRefreshScheduler(orchestrator, store)
        scheduler.sync()      # starts when the store has positions
        ...
        scheduler.stop()
    """

    def __init__(self, orchestrator: RefreshOrchestrator, store: CalloutStore):
        self.orchestrator = orchestrator
        self.store = store
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.cycles = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the loop. Returns False when it was already running."""
        with self._lock:
            if self.is_running:
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="CalloutAutoRefresh", daemon=True
            )
            self._thread.start()
        print("[scheduler] Auto-refresh started")
        return True

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout=timeout)
            print("[scheduler] Auto-refresh stopped")

    def sync(self) -> bool:
        """Start when the store has positions, stop when it is empty. Returns is_running."""
        has_data = bool(self.store.list())
        if has_data and not self.is_running:
            self.start()
        elif not has_data and self.is_running:
            self.stop()
        return self.is_running

    def tick(self) -> Optional[int]:
        """
        One cycle: refresh if there are positions.

        Returns the number of seconds to wait before the next tick, or
        None when the cycle was skipped for lack of data.
        """
        count = len(self.store.list())
        if count == 0:
            return None
        self.orchestrator.refresh_all()
        self.cycles += 1
        return interval_for(count)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                wait = self.tick()
            except Exception as e:
                print(f"[scheduler] Refresh cycle failed: {e}")
                wait = None
            if wait is None:
                wait = interval_for(0)
            if self._stop_event.wait(wait):
                break
