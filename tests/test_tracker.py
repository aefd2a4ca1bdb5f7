from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.entity_seed import EntitySeed
from core.entity_state import LocaleMode
from core.poll_cycle import PollCycle
from core.tracker import (
    EMPTY_STATS,
    EntityConfigError,
    EntityConflictError,
    EntityNotFoundError,
    EntityTracker,
)

NOW = datetime(2008, 3, 7, 12, 0, tzinfo=timezone.utc)


class StubFetcher:
    def __init__(self) -> None:
        self.text = "born 6 March 2008"

    def fetch(self, locator: str) -> str:
        return self.text


class StubOracle:
    def __init__(self) -> None:
        self.calls = 0
        self.answer: str | None = "2008-03-06"

    def extract(self, text, locale, credential=None):
        self.calls += 1
        return self.answer


@pytest.fixture
def oracle() -> StubOracle:
    return StubOracle()


@pytest.fixture
def fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def tracker(fetcher, oracle):
    cycle = PollCycle(fetcher, oracle, clock=lambda: NOW)
    service = EntityTracker(cycle, default_poll_interval_seconds=60, clock=lambda: NOW)
    yield service
    service.shutdown()


def test_register_returns_empty_derived_fields(tracker) -> None:
    created = tracker.register_entity("alice", "https://example.com/api/158", "sk-secret")
    fetched = tracker.get_entity("alice")

    assert created == fetched
    for key in ("resolved_date", "derived_day_count", "derived_weekday", "last_updated_at",
                "last_observed_text", "last_processed_text"):
        assert fetched[key] is None
    assert fetched["is_polling"] is False
    assert fetched["locale_mode"] == "month_first"
    assert fetched["poll_interval_seconds"] == 60
    assert fetched["timezone"] == "UTC"
    assert fetched["has_model_credential"] is True
    assert "model_credential" not in fetched
    assert "sk-secret" not in str(fetched)


def test_register_with_auto_start_polls(tracker) -> None:
    created = tracker.register_entity("alice", "https://example.com/api/158", auto_start=True)
    assert created["is_polling"] is True
    assert tracker.status()["polling"] == ["alice"]


def test_register_duplicate_conflicts(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/a")
    with pytest.raises(EntityConflictError):
        tracker.register_entity("alice", "https://example.com/b")
    assert tracker.get_entity("alice")["source_url"] == "https://example.com/a"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"identity": "", "source_url": "https://example.com"},
        {"identity": "bob", "source_url": ""},
        {"identity": "bob", "source_url": "ftp://example.com"},
        {"identity": "bob", "source_url": "https://example.com", "locale_mode": "year_first"},
        {"identity": "bob", "source_url": "https://example.com", "poll_interval_seconds": 0},
        {"identity": "bob", "source_url": "https://example.com", "timezone": "Nowhere/City"},
    ],
)
def test_register_rejects_invalid_config(tracker, kwargs) -> None:
    with pytest.raises(EntityConfigError):
        tracker.register_entity(**kwargs)
    assert tracker.list_entities() == []


def test_refresh_runs_one_cycle_and_returns_snapshot(tracker, oracle) -> None:
    tracker.register_entity("alice", "https://example.com/api/158", "sk-a")

    result = tracker.trigger_refresh("alice")

    assert result["resolved_date"] == "2008-03-06"
    assert result["derived_day_count"] == 1
    assert result["derived_weekday"] == "Thursday"
    assert result["last_cycle_status"] == "updated"
    assert oracle.calls == 1


def test_refresh_does_not_raise_on_no_date(tracker, oracle) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    oracle.answer = None

    result = tracker.trigger_refresh("alice")

    assert result["resolved_date"] is None
    assert result["last_cycle_status"] == "no_date"


def test_delete_stops_polling_and_refresh_fails(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158", auto_start=True)

    tracker.delete_entity("alice")

    assert tracker.scheduler.is_running("alice") is False
    with pytest.raises(EntityNotFoundError):
        tracker.trigger_refresh("alice")
    with pytest.raises(EntityNotFoundError):
        tracker.delete_entity("alice")


def test_update_config_changes_only_given_fields(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158", "sk-a")
    tracker.trigger_refresh("alice")

    updated = tracker.update_config("alice", {"locale_mode": "day_first", "timezone": "Europe/Copenhagen"})

    assert updated["locale_mode"] == LocaleMode.DAY_FIRST.value
    assert updated["timezone"] == "Europe/Copenhagen"
    assert updated["source_url"] == "https://example.com/api/158"
    assert updated["resolved_date"] == "2008-03-06"


def test_no_date_text_is_asked_once_until_the_locale_changes(tracker, oracle) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    oracle.answer = None

    tracker.trigger_refresh("alice")
    second = tracker.trigger_refresh("alice")
    assert second["last_cycle_status"] == "unchanged"
    assert oracle.calls == 1

    tracker.update_config("alice", {"locale_mode": "day_first"})
    assert tracker.trigger_refresh("alice")["last_cycle_status"] == "no_date"
    assert oracle.calls == 2


def test_interval_change_restarts_running_worker(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158", auto_start=True)
    tracker.trigger_refresh("alice")
    old_worker = tracker.scheduler._workers["alice"]

    updated = tracker.update_config("alice", {"poll_interval_seconds": 30})

    assert updated["poll_interval_seconds"] == 30
    assert updated["is_polling"] is True
    assert updated["resolved_date"] == "2008-03-06"
    new_worker = tracker.scheduler._workers["alice"]
    assert new_worker is not old_worker
    assert new_worker.interval == 30


def test_update_config_rejects_unknown_and_invalid_fields(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    with pytest.raises(EntityConfigError):
        tracker.update_config("alice", {"resolved_date": "2020-01-01"})
    with pytest.raises(EntityConfigError):
        tracker.update_config("alice", {"poll_interval_seconds": -1})
    with pytest.raises(EntityNotFoundError):
        tracker.update_config("bob", {"timezone": "UTC"})
    assert tracker.get_entity("alice")["resolved_date"] is None


def test_stats_for_missing_or_unresolved_entities(tracker) -> None:
    assert tracker.get_stats("nobody") == EMPTY_STATS
    tracker.register_entity("alice", "https://example.com/api/158")
    assert tracker.get_stats("alice") == {"day_count": "0", "weekday": ""}


def test_stats_are_strings_after_refresh(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    tracker.trigger_refresh("alice")
    assert tracker.get_stats("alice") == {"day_count": "1", "weekday": "Thursday"}


def test_stats_mask_unexpected_errors(tracker, monkeypatch) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    tracker.trigger_refresh("alice")

    def boom(*args, **kwargs):
        raise RuntimeError("clock exploded")

    monkeypatch.setattr(tracker, "_clock", boom)
    assert tracker.get_stats("alice") == EMPTY_STATS


def test_start_and_stop_polling(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    assert tracker.start_polling("alice")["is_polling"] is True
    assert tracker.stop_polling("alice")["is_polling"] is False
    assert tracker.stop_polling("alice")["is_polling"] is False
    with pytest.raises(EntityNotFoundError):
        tracker.start_polling("bob")


def test_start_polling_loses_to_a_concurrent_delete(tracker, monkeypatch) -> None:
    tracker.register_entity("alice", "https://example.com/api/158")
    lookup = tracker._require

    def lookup_then_delete(identity):
        entity = lookup(identity)
        tracker.delete_entity(identity)
        return entity

    monkeypatch.setattr(tracker, "_require", lookup_then_delete)
    with pytest.raises(EntityNotFoundError):
        tracker.start_polling("alice")
    monkeypatch.undo()

    assert tracker.scheduler.running_identities() == []
    tracker.register_entity("alice", "https://example.com/api/158")
    assert tracker.start_polling("alice")["is_polling"] is True


def test_interval_update_does_not_revive_a_deleted_entity(tracker, monkeypatch) -> None:
    tracker.register_entity("alice", "https://example.com/api/158", auto_start=True)
    lookup = tracker._require

    def lookup_then_delete(identity):
        entity = lookup(identity)
        tracker.delete_entity(identity)
        return entity

    monkeypatch.setattr(tracker, "_require", lookup_then_delete)
    tracker.update_config("alice", {"poll_interval_seconds": 30})

    assert tracker.scheduler.running_identities() == []


def test_register_seeds_skips_bad_entries(tracker) -> None:
    seeds = [
        EntitySeed(identity="alice", source_url="https://example.com/a", locale_mode="day_first"),
        EntitySeed(identity="alice", source_url="https://example.com/b"),
        EntitySeed(identity="carol", source_url="not-a-url"),
    ]

    registered = tracker.register_seeds(seeds)

    assert registered == ["alice"]
    assert [entity["identity"] for entity in tracker.list_entities()] == ["alice"]
    assert tracker.get_entity("alice")["locale_mode"] == "day_first"


def test_status_counts(tracker) -> None:
    tracker.register_entity("alice", "https://example.com/a")
    tracker.register_entity("bob", "https://example.com/b")
    tracker.trigger_refresh("alice")

    assert tracker.status() == {"entities": 2, "resolved": 1, "polling": [], "polling_count": 0}
