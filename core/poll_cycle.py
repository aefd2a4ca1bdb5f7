"""One fetch -> detect -> extract -> compute -> commit pass for one entity.

States per run::

    Idle -> Fetching -> (unchanged) -> Idle
                     -> Extracting -> (no date | failure) -> Idle
                                   -> Computing -> Committing -> Idle

The change gate compares the fetched text with ``last_processed_text``, the
text behind the current committed date, and with ``last_no_date_text``, the
last text the oracle answered with no date. ``last_observed_text`` is
refreshed on every successful fetch; the committed fields only move on commit.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from core.calendar_math import ComputeFailure, day_count, weekday
from core.cycle_logger import CycleLogger, CycleRecord
from core.date_extractor import ExtractionFailure
from core.entity_state import EntityState, LocaleMode, utc_now
from core.source_fetcher import FetchFailure

logger = logging.getLogger(__name__)

STATUS_UPDATED = "updated"
STATUS_UNCHANGED = "unchanged"
STATUS_NO_DATE = "no_date"
STATUS_FETCH_FAILED = "fetch_failed"
STATUS_EXTRACTION_FAILED = "extraction_failed"
STATUS_COMPUTE_FAILED = "compute_failed"
STATUS_SKIPPED = "skipped"


class Fetcher(Protocol):
    def fetch(self, locator: str) -> str:
        ...


class Extractor(Protocol):
    def extract(self, text: str, locale: LocaleMode, credential: str | None = None) -> Optional[str]:
        ...


@dataclass(frozen=True)
class CycleOutcome:
    identity: str
    status: str
    changed: bool = False
    resolved_date: str | None = None
    detail: str | None = None

    @property
    def committed(self) -> bool:
        return self.status == STATUS_UPDATED


class PollCycle:
    """Runs cycles against injected fetcher/extractor collaborators."""

    def __init__(
        self,
        fetcher: Fetcher,
        extractor: Extractor,
        *,
        clock: Callable[[], datetime] = utc_now,
        cycle_logger: Optional[CycleLogger] = None,
    ) -> None:
        self._fetcher = fetcher
        self._extractor = extractor
        self._clock = clock
        self._cycle_logger = cycle_logger

    def run(self, entity: EntityState, *, blocking: bool = True) -> CycleOutcome:
        """Run one cycle; with ``blocking=False`` a cycle already in flight wins."""

        if not entity.cycle_lock.acquire(blocking=blocking):
            logger.debug("Cycle for %s still in flight; skipping tick.", entity.identity)
            return CycleOutcome(identity=entity.identity, status=STATUS_SKIPPED)
        started = time.monotonic()
        try:
            outcome, text, day_value, weekday_value = self._run_locked(entity)
            entity.record_cycle(outcome.status, self._clock())
        finally:
            entity.cycle_lock.release()
        self._emit(outcome, text, day_value, weekday_value, started)
        return outcome

    def _run_locked(self, entity: EntityState):
        identity = entity.identity
        with entity.state_lock:
            locator = entity.source_url
            locale = entity.locale_mode
            credential = entity.model_credential
            tz_name = entity.timezone
            processed = entity.last_processed_text
            no_date_text = entity.last_no_date_text

        try:
            text = self._fetcher.fetch(locator)
        except FetchFailure as exc:
            logger.warning("Fetch failed for %s: %s", identity, exc.reason)
            return CycleOutcome(identity, STATUS_FETCH_FAILED, detail=exc.reason), None, None, None

        entity.record_observation(text)
        if text == processed or text == no_date_text:
            logger.debug("No new text for %s.", identity)
            return CycleOutcome(identity, STATUS_UNCHANGED), text, None, None

        logger.info("New text for %s; asking the oracle for a date.", identity)
        try:
            resolved = self._extractor.extract(text, locale, credential)
        except ExtractionFailure as exc:
            logger.warning("Date extraction failed for %s: %s", identity, exc)
            return CycleOutcome(identity, STATUS_EXTRACTION_FAILED, changed=True, detail=str(exc)), text, None, None

        if resolved is None:
            entity.record_no_date(text)
            logger.info("No date found for %s; keeping previous results.", identity)
            return CycleOutcome(identity, STATUS_NO_DATE, changed=True), text, None, None

        now = self._clock()
        try:
            day_value = day_count(resolved, now, tz_name)
            weekday_value = weekday(resolved)
        except ComputeFailure as exc:
            logger.warning("Could not compute day count for %s (%s): %s", identity, resolved, exc)
            return (
                CycleOutcome(identity, STATUS_COMPUTE_FAILED, changed=True, resolved_date=resolved, detail=str(exc)),
                text,
                None,
                None,
            )

        entity.commit(
            processed_text=text,
            resolved_date=resolved,
            day_count=day_value,
            weekday=weekday_value,
            committed_at=now,
        )
        logger.info("Updated %s: %s (%d days, %s).", identity, resolved, day_value, weekday_value)
        return CycleOutcome(identity, STATUS_UPDATED, changed=True, resolved_date=resolved), text, day_value, weekday_value

    def _emit(
        self,
        outcome: CycleOutcome,
        text: str | None,
        day_value: int | None,
        weekday_value: str | None,
        started: float,
    ) -> None:
        if not self._cycle_logger:
            return
        record = CycleRecord.new(
            identity=outcome.identity,
            status=outcome.status,
            changed=outcome.changed,
            text=text,
            resolved_date=outcome.resolved_date,
            day_count=day_value,
            weekday=weekday_value,
            detail=outcome.detail,
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        try:
            self._cycle_logger.log_cycle(record)
        except OSError:
            logger.exception("Failed to write cycle record for %s.", outcome.identity)


__all__ = [
    "CycleOutcome",
    "PollCycle",
    "STATUS_COMPUTE_FAILED",
    "STATUS_EXTRACTION_FAILED",
    "STATUS_FETCH_FAILED",
    "STATUS_NO_DATE",
    "STATUS_SKIPPED",
    "STATUS_UNCHANGED",
    "STATUS_UPDATED",
]
