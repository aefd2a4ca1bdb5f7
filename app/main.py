"""Assemble the tracker from configuration and serve the web API."""

from __future__ import annotations

import logging

from app.config import (
    get_cycle_log_path,
    get_default_poll_interval_seconds,
    get_default_timezone,
    get_entities_path,
    get_llm_api_key,
    get_llm_model,
    get_llm_timeout_seconds,
    get_log_backup_count,
    get_log_level,
    get_log_max_bytes,
    get_source_text_field,
    get_source_timeout_seconds,
    get_web_ui_host,
    get_web_ui_port,
    is_cycle_log_enabled,
    is_log_redaction_enabled,
)
from core.cycle_logger import CycleLogger
from core.date_extractor import DateExtractor
from core.entity_seed import load_entity_seeds
from core.poll_cycle import PollCycle
from core.source_fetcher import SourceFetcher
from core.tracker import EntityTracker

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_cycle_logger() -> CycleLogger:
    return CycleLogger(
        path=get_cycle_log_path(),
        enabled=is_cycle_log_enabled(),
        redact=is_log_redaction_enabled(),
        max_bytes=get_log_max_bytes(),
        backup_count=get_log_backup_count(),
    )


# -- Tracker construction ------------------------------------------------------
def build_tracker(*, load_seeds: bool = True) -> EntityTracker:
    """Wire the fetcher, extractor, cycle and scheduler for the web API.

    WHAT: instantiate the source fetcher, the OpenAI-backed date extractor,
    the cycle logger and the tracker, then register any seed entities.
    WHY: the server and any scripts must share identical wiring so polling
    behaves the same everywhere.
    HOW: pull runtime configuration from ``app.config`` helpers and hand the
    resulting instances to ``core.tracker.EntityTracker``.
    """
    fetcher = SourceFetcher(
        text_field=get_source_text_field(),
        timeout=get_source_timeout_seconds(),
    )
    extractor = DateExtractor(
        get_llm_model(),
        timeout=get_llm_timeout_seconds(),
        default_api_key=get_llm_api_key(),
    )
    cycle = PollCycle(fetcher, extractor, cycle_logger=build_cycle_logger())
    tracker = EntityTracker(
        cycle,
        default_poll_interval_seconds=get_default_poll_interval_seconds(),
        default_timezone=get_default_timezone(),
    )
    if load_seeds:
        seeds_path = get_entities_path()
        registered = tracker.register_seeds(load_entity_seeds(seeds_path))
        if registered:
            logger.info("Registered %d seed entities from %s.", len(registered), seeds_path)
    return tracker


def main() -> None:
    """Run the API under uvicorn using the configured host/port."""
    import uvicorn

    configure_logging()
    uvicorn.run(
        "app.web_api:app",
        host=get_web_ui_host(),
        port=get_web_ui_port(),
        reload=False,
    )


if __name__ == "__main__":
    main()
