"""Load entities to register at startup from a YAML file.

Expected shape::

    entities:
      - identity: alice
        source_url: https://example.com/api/158
        locale_mode: month_first
        poll_interval_seconds: 30
        timezone: Europe/Copenhagen
        auto_start: true

``model_credential`` may be given per entity; without it the process-wide
``OPENAI_API_KEY`` is used.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

_ALLOWED_KEYS = {
    "identity",
    "source_url",
    "model_credential",
    "locale_mode",
    "poll_interval_seconds",
    "timezone",
    "auto_start",
}


class EntitySeedError(RuntimeError):
    """Raised when the seed file exists but cannot be used."""


@dataclass(frozen=True)
class EntitySeed:
    identity: str
    source_url: str
    model_credential: Optional[str] = None
    locale_mode: Optional[str] = None
    poll_interval_seconds: Optional[float] = None
    timezone: Optional[str] = None
    auto_start: bool = False

    def as_kwargs(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "source_url": self.source_url,
            "model_credential": self.model_credential,
            "locale_mode": self.locale_mode,
            "poll_interval_seconds": self.poll_interval_seconds,
            "timezone": self.timezone,
            "auto_start": self.auto_start,
        }


def _normalize_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_seed(idx: int, raw: Any) -> EntitySeed:
    if not isinstance(raw, Mapping):
        raise EntitySeedError(f"entities[{idx}] must be a mapping.")
    unknown = set(raw) - _ALLOWED_KEYS
    if unknown:
        raise EntitySeedError(f"entities[{idx}] has unknown keys: {', '.join(sorted(map(str, unknown)))}.")
    identity = _normalize_string(raw.get("identity"))
    if not identity:
        raise EntitySeedError(f"entities[{idx}] is missing an 'identity'.")
    source_url = _normalize_string(raw.get("source_url"))
    if not source_url:
        raise EntitySeedError(f"entities[{idx}] is missing a 'source_url'.")

    interval = raw.get("poll_interval_seconds")
    if interval is not None:
        try:
            interval = float(interval)
        except (TypeError, ValueError):
            raise EntitySeedError(f"entities[{idx}] has an invalid 'poll_interval_seconds'.")

    return EntitySeed(
        identity=identity,
        source_url=source_url,
        model_credential=_normalize_string(raw.get("model_credential")) or None,
        locale_mode=_normalize_string(raw.get("locale_mode")) or None,
        poll_interval_seconds=interval,
        timezone=_normalize_string(raw.get("timezone")) or None,
        auto_start=bool(raw.get("auto_start", False)),
    )


def parse_entity_seeds(data: Any) -> List[EntitySeed]:
    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise EntitySeedError("Entity seed file must be a mapping.")
    entries = data.get("entities") or []
    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
        raise EntitySeedError("'entities' must be a list.")
    seeds = [_parse_seed(idx, raw) for idx, raw in enumerate(entries)]
    seen: set[str] = set()
    for seed in seeds:
        if seed.identity in seen:
            raise EntitySeedError(f"Duplicate identity in seed file: {seed.identity}")
        seen.add(seed.identity)
    return seeds


def load_entity_seeds(path: Path | str) -> List[EntitySeed]:
    """Return the seeds in ``path``; a missing file means no seeds."""

    path = Path(path)
    if not path.exists():
        return []
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise EntitySeedError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_entity_seeds(data)


__all__ = ["EntitySeed", "EntitySeedError", "load_entity_seeds", "parse_entity_seeds"]
