"""Per-entity record holding configuration and the last committed results."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.extraction_prompts import LocaleMode

# Fields a configuration update may touch; everything else belongs to the poll cycle.
CONFIG_FIELDS = ("source_url", "model_credential", "locale_mode", "poll_interval_seconds", "timezone")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class EntityState:
    """One tracked subject.

    ``cycle_lock`` serialises poll cycles and configuration updates for this
    entity. ``state_lock`` guards the short commit and snapshot sections so
    readers never wait on network calls.
    """

    identity: str
    source_url: str
    locale_mode: LocaleMode
    poll_interval_seconds: float
    timezone: str
    model_credential: str | None = None
    is_polling: bool = False
    last_observed_text: str | None = None
    last_processed_text: str | None = None
    last_no_date_text: str | None = None
    resolved_date: str | None = None
    derived_day_count: int | None = None
    derived_weekday: str | None = None
    last_updated_at: datetime | None = None
    last_cycle_status: str | None = None
    last_cycle_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    cycle_lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    state_lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def commit(
        self,
        *,
        processed_text: str,
        resolved_date: str,
        day_count: int,
        weekday: str,
        committed_at: datetime,
    ) -> None:
        """Apply a successful cycle's results in one critical section."""

        with self.state_lock:
            self.resolved_date = resolved_date
            self.derived_day_count = day_count
            self.derived_weekday = weekday
            self.last_updated_at = committed_at
            self.last_processed_text = processed_text
            self.last_no_date_text = None

    def record_observation(self, text: str) -> None:
        with self.state_lock:
            self.last_observed_text = text

    def record_no_date(self, text: str) -> None:
        """Remember text the oracle found no date in; committed fields stay."""

        with self.state_lock:
            self.last_no_date_text = text

    def record_cycle(self, status: str, at: datetime) -> None:
        with self.state_lock:
            self.last_cycle_status = status
            self.last_cycle_at = at

    def set_polling(self, value: bool) -> None:
        with self.state_lock:
            self.is_polling = value

    def has_credential(self) -> bool:
        return bool(self.model_credential)

    def to_public_dict(self) -> Dict[str, Any]:
        """Return a consistent JSON-friendly snapshot without the credential."""

        with self.state_lock:
            return {
                "identity": self.identity,
                "source_url": self.source_url,
                "has_model_credential": self.has_credential(),
                "locale_mode": self.locale_mode.value,
                "poll_interval_seconds": self.poll_interval_seconds,
                "timezone": self.timezone,
                "is_polling": self.is_polling,
                "last_observed_text": self.last_observed_text,
                "last_processed_text": self.last_processed_text,
                "last_no_date_text": self.last_no_date_text,
                "resolved_date": self.resolved_date,
                "derived_day_count": self.derived_day_count,
                "derived_weekday": self.derived_weekday,
                "last_updated_at": _isoformat(self.last_updated_at),
                "last_cycle_status": self.last_cycle_status,
                "last_cycle_at": _isoformat(self.last_cycle_at),
                "created_at": _isoformat(self.created_at),
            }


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


__all__ = ["CONFIG_FIELDS", "EntityState", "LocaleMode", "utc_now"]
