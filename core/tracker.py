"""Entity registry plus the operations the web layer calls.

The tracker owns the in-memory map from identity to ``EntityState``, the
scheduler that polls each entity, and the poll cycle used for manual
refreshes. Errors for bad caller input are raised as ``EntityConfigError``,
``EntityNotFoundError`` or ``EntityConflictError``; cycle failures never
escape.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from core.calendar_math import ComputeFailure, day_count, resolve_zone
from core.entity_seed import EntitySeed
from core.entity_state import CONFIG_FIELDS, EntityState, LocaleMode, utc_now
from core.poll_cycle import PollCycle
from core.scheduler import Scheduler

logger = logging.getLogger(__name__)

EMPTY_STATS = {"day_count": "0", "weekday": ""}


class EntityConfigError(ValueError):
    """Raised when caller-supplied configuration is missing or invalid."""


class EntityNotFoundError(KeyError):
    """Raised when an identity is not registered."""

    def __init__(self, identity: str) -> None:
        super().__init__(identity)
        self.identity = identity

    def __str__(self) -> str:
        return f"Entity '{self.identity}' is not registered."


class EntityConflictError(ValueError):
    """Raised when registering an identity that already exists."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"Entity '{identity}' is already registered.")
        self.identity = identity


def _coerce_locale(value: Any) -> LocaleMode:
    if isinstance(value, LocaleMode):
        return value
    normalized = str(value or "").strip().lower().replace("-", "_")
    try:
        return LocaleMode(normalized)
    except ValueError:
        allowed = ", ".join(mode.value for mode in LocaleMode)
        raise EntityConfigError(f"locale_mode must be one of: {allowed}.")


def _coerce_interval(value: Any) -> float:
    try:
        interval = float(value)
    except (TypeError, ValueError):
        raise EntityConfigError("poll_interval_seconds must be a number.")
    if not interval > 0:
        raise EntityConfigError("poll_interval_seconds must be positive.")
    return interval


def _coerce_timezone(value: Any) -> str:
    name = str(value or "").strip()
    if not name:
        raise EntityConfigError("timezone must not be empty.")
    try:
        resolve_zone(name)
    except ComputeFailure as exc:
        raise EntityConfigError(str(exc)) from exc
    return name


def _coerce_source_url(value: Any) -> str:
    url = str(value or "").strip()
    if not url:
        raise EntityConfigError("source_url is required.")
    if not url.startswith(("http://", "https://")):
        raise EntityConfigError("source_url must be an http(s) URL.")
    return url


class EntityTracker:
    """In-memory registry of tracked entities."""

    def __init__(
        self,
        cycle: PollCycle,
        *,
        scheduler: Optional[Scheduler] = None,
        default_poll_interval_seconds: float = 5.0,
        default_timezone: str = "UTC",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._cycle = cycle
        self._scheduler = scheduler or Scheduler(cycle)
        self._default_interval = default_poll_interval_seconds
        self._default_timezone = default_timezone
        self._clock = clock
        self._entities: Dict[str, EntityState] = {}
        self._lock = threading.Lock()

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # --- Lookup --------------------------------------------------------------
    def _require(self, identity: str) -> EntityState:
        with self._lock:
            entity = self._entities.get(identity)
        if entity is None:
            raise EntityNotFoundError(identity)
        return entity

    def get_entity(self, identity: str) -> Dict[str, Any]:
        return self._require(identity).to_public_dict()

    def list_entities(self) -> List[Dict[str, Any]]:
        with self._lock:
            entities = sorted(self._entities.values(), key=lambda item: item.identity)
        return [entity.to_public_dict() for entity in entities]

    # --- Lifecycle -----------------------------------------------------------
    def register_entity(
        self,
        identity: str,
        source_url: str,
        model_credential: str | None = None,
        locale_mode: LocaleMode | str | None = None,
        poll_interval_seconds: float | None = None,
        timezone: str | None = None,
        *,
        auto_start: bool = False,
    ) -> Dict[str, Any]:
        """Create an entity with empty derived fields, optionally polling it."""

        clean_identity = (identity or "").strip()
        if not clean_identity:
            raise EntityConfigError("identity is required.")
        entity = EntityState(
            identity=clean_identity,
            source_url=_coerce_source_url(source_url),
            model_credential=(model_credential or "").strip() or None,
            locale_mode=_coerce_locale(locale_mode or LocaleMode.MONTH_FIRST),
            poll_interval_seconds=_coerce_interval(
                poll_interval_seconds if poll_interval_seconds is not None else self._default_interval
            ),
            timezone=_coerce_timezone(timezone or self._default_timezone),
            created_at=self._clock(),
        )
        with self._lock:
            if clean_identity in self._entities:
                raise EntityConflictError(clean_identity)
            self._entities[clean_identity] = entity
            if auto_start:
                self._scheduler.start(entity)
        logger.info("Registered entity %s (%s).", clean_identity, entity.locale_mode.value)
        return entity.to_public_dict()

    def register_seeds(self, seeds: Iterable[EntitySeed]) -> List[str]:
        """Register seed entities, skipping (and logging) ones that clash or are invalid."""

        registered: List[str] = []
        for seed in seeds:
            kwargs = seed.as_kwargs()
            auto_start = kwargs.pop("auto_start")
            try:
                self.register_entity(**kwargs, auto_start=auto_start)
            except (EntityConfigError, EntityConflictError) as exc:
                logger.warning("Skipping seed entity %s: %s", seed.identity, exc)
                continue
            registered.append(seed.identity)
        return registered

    def delete_entity(self, identity: str) -> None:
        with self._lock:
            entity = self._entities.pop(identity, None)
            if entity is None:
                raise EntityNotFoundError(identity)
            self._scheduler.stop(entity)
        logger.info("Deleted entity %s.", identity)

    def update_config(self, identity: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply a partial configuration update; derived fields are untouched."""

        entity = self._require(identity)
        unknown = set(changes) - set(CONFIG_FIELDS)
        if unknown:
            raise EntityConfigError(f"Unknown configuration fields: {', '.join(sorted(unknown))}.")

        validated: Dict[str, Any] = {}
        for key, value in changes.items():
            if key == "source_url":
                validated[key] = _coerce_source_url(value)
            elif key == "model_credential":
                validated[key] = (str(value).strip() if value is not None else "") or None
            elif key == "locale_mode":
                validated[key] = _coerce_locale(value)
            elif key == "poll_interval_seconds":
                validated[key] = _coerce_interval(value)
            elif key == "timezone":
                validated[key] = _coerce_timezone(value)

        with entity.cycle_lock:
            with entity.state_lock:
                interval_changed = (
                    "poll_interval_seconds" in validated
                    and validated["poll_interval_seconds"] != entity.poll_interval_seconds
                )
                for key, value in validated.items():
                    setattr(entity, key, value)
                if {"source_url", "model_credential", "locale_mode"} & set(validated):
                    entity.last_no_date_text = None
        if interval_changed and self._restart_if_registered(entity):
            logger.info("Restarted polling for %s with the new interval.", identity)
        return entity.to_public_dict()

    # --- Polling -------------------------------------------------------------
    def _ensure_registered(self, entity: EntityState) -> None:
        # Callers hold self._lock; a concurrent delete may have won the race.
        if self._entities.get(entity.identity) is not entity:
            raise EntityNotFoundError(entity.identity)

    def _restart_if_registered(self, entity: EntityState) -> bool:
        with self._lock:
            if self._entities.get(entity.identity) is not entity:
                return False
            return self._scheduler.restart(entity)

    def start_polling(self, identity: str) -> Dict[str, Any]:
        entity = self._require(identity)
        with self._lock:
            self._ensure_registered(entity)
            self._scheduler.start(entity)
        return entity.to_public_dict()

    def stop_polling(self, identity: str) -> Dict[str, Any]:
        entity = self._require(identity)
        self._scheduler.stop(entity)
        return entity.to_public_dict()

    def trigger_refresh(self, identity: str) -> Dict[str, Any]:
        """Run one cycle now and return the resulting snapshot."""

        entity = self._require(identity)
        outcome = self._cycle.run(entity, blocking=True)
        logger.info("Manual refresh of %s finished: %s.", identity, outcome.status)
        return entity.to_public_dict()

    # --- Read models ---------------------------------------------------------
    def get_stats(self, identity: str) -> Dict[str, str]:
        """Return day count and weekday as strings; never raises."""

        try:
            with self._lock:
                entity = self._entities.get(identity)
            if entity is None:
                return dict(EMPTY_STATS)
            with entity.state_lock:
                resolved = entity.resolved_date
                committed_days = entity.derived_day_count
                weekday_name = entity.derived_weekday
                tz_name = entity.timezone
            if resolved is None or committed_days is None:
                return dict(EMPTY_STATS)
            try:
                days = day_count(resolved, self._clock(), tz_name)
            except ComputeFailure:
                days = committed_days
            return {"day_count": str(days), "weekday": weekday_name or ""}
        except Exception:
            logger.exception("Stats lookup failed for %s.", identity)
            return dict(EMPTY_STATS)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._entities)
            resolved = sum(1 for entity in self._entities.values() if entity.resolved_date)
        polling = self._scheduler.running_identities()
        return {
            "entities": total,
            "resolved": resolved,
            "polling": polling,
            "polling_count": len(polling),
        }

    def shutdown(self) -> None:
        self._scheduler.shutdown()


__all__ = [
    "EMPTY_STATS",
    "EntityConfigError",
    "EntityConflictError",
    "EntityNotFoundError",
    "EntityTracker",
]
