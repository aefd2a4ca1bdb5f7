"""Repeating poll workers, one per tracked entity.

Each worker is a daemon thread that waits ``poll_interval_seconds`` on its own
stop event and then runs a non-blocking cycle. A tick that finds the previous
cycle (or a manual refresh) still in flight is skipped, so an entity never has
two cycles interleaving. Stopping only prevents future ticks.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List

from core.entity_state import EntityState
from core.poll_cycle import PollCycle

logger = logging.getLogger(__name__)


class _PollWorker:
    def __init__(self, entity: EntityState, cycle: PollCycle, interval: float) -> None:
        self.entity = entity
        self.interval = interval
        self._cycle = cycle
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"poll-{entity.identity}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._cycle.run(self.entity, blocking=False)
            except Exception:
                logger.exception("Unexpected error in poll cycle for %s.", self.entity.identity)


class Scheduler:
    """Owns the mapping from identity to its running poll worker."""

    def __init__(self, cycle: PollCycle) -> None:
        self._cycle = cycle
        self._workers: Dict[str, _PollWorker] = {}
        self._lock = threading.Lock()

    def start(self, entity: EntityState) -> bool:
        """Begin polling ``entity``; returns ``False`` when it already runs."""

        with self._lock:
            if entity.identity in self._workers:
                return False
            with entity.state_lock:
                interval = entity.poll_interval_seconds
            worker = _PollWorker(entity, self._cycle, interval)
            self._workers[entity.identity] = worker
            entity.set_polling(True)
            worker.start()
        logger.info("Started polling %s every %ss.", entity.identity, interval)
        return True

    def stop(self, entity: EntityState) -> bool:
        """Stop polling ``entity``; idempotent, returns whether a worker stopped."""

        with self._lock:
            worker = self._workers.pop(entity.identity, None)
            entity.set_polling(False)
        if worker is None:
            return False
        worker.stop()
        logger.info("Stopped polling %s.", entity.identity)
        return True

    def restart(self, entity: EntityState) -> bool:
        """Pick up a new interval; only restarts a worker that was running."""

        if not self.stop(entity):
            return False
        return self.start(entity)

    def is_running(self, identity: str) -> bool:
        with self._lock:
            return identity in self._workers

    def running_identities(self) -> List[str]:
        with self._lock:
            return sorted(self._workers)

    def shutdown(self, timeout: float | None = 1.0) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.stop()
            worker.entity.set_polling(False)
        for worker in workers:
            worker.join(timeout)


__all__ = ["Scheduler"]
