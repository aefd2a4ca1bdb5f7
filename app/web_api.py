"""FastAPI application exposing tracked entities and the admin page."""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from app.config import get_admin_token, get_cycle_log_path, get_log_backup_count, get_static_dir
from app.main import build_tracker
from core.cycle_logger import read_cycle_records
from core.entity_state import LocaleMode
from core.tracker import (
    EntityConfigError,
    EntityConflictError,
    EntityNotFoundError,
    EntityTracker,
)

logger = logging.getLogger(__name__)

ADMIN_TOKEN_HEADER = "x-admin-token"
_MAX_CYCLE_ROWS = 200


class RegisterEntityPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    identity: str = Field(min_length=1, max_length=128)
    source_url: str
    model_credential: Optional[str] = None
    locale_mode: LocaleMode = LocaleMode.MONTH_FIRST
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)
    timezone: Optional[str] = None
    auto_start: bool = False


class UpdateEntityPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    source_url: Optional[str] = None
    model_credential: Optional[str] = None
    locale_mode: Optional[LocaleMode] = None
    poll_interval_seconds: Optional[float] = Field(default=None, gt=0)
    timezone: Optional[str] = None


def create_app(
    tracker: Optional[EntityTracker] = None,
    *,
    admin_token: Optional[str] = None,
    static_dir: Optional[Path] = None,
    cycle_log_path: Optional[Path] = None,
) -> FastAPI:
    """WHAT: instantiate FastAPI + tracker wiring for the date service.

    WHY: tests inject a tracker with stub collaborators while the server
    builds the real one from environment configuration.
    HOW: accept dependency overrides, cache them on ``app.state``, mount the
    static directory, and stop every poll worker when the app shuts down.
    """
    service = tracker or build_tracker()
    static_root = static_dir or get_static_dir()
    token = admin_token if admin_token is not None else get_admin_token()
    cycles_path = cycle_log_path or get_cycle_log_path()

    if not token:
        logger.warning("ADMIN_TOKEN is not set; admin routes are open.")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        app.state.tracker.shutdown()

    app = FastAPI(title="Datewatch API", version="0.1.0", lifespan=lifespan)
    app.state.tracker = service
    app.state.admin_token = token
    app.state.static_root = static_root
    app.state.cycle_log_path = cycles_path
    app.state.cycle_log_backups = get_log_backup_count()

    app.mount("/static", StaticFiles(directory=static_root, check_dir=False), name="static")

    def _require_admin_token(request: Request) -> None:
        """Enforce the shared admin token when configured."""

        expected = app.state.admin_token
        if not expected:
            return
        provided = request.headers.get(ADMIN_TOKEN_HEADER) or request.query_params.get("admin_token")
        if not provided or not provided.strip():
            raise HTTPException(status_code=401, detail="Admin token missing. Include X-Admin-Token.")
        if not hmac.compare_digest(provided.strip(), expected):
            raise HTTPException(status_code=403, detail="Admin token is invalid.")

    def _tracker() -> EntityTracker:
        return app.state.tracker

    def _not_found(exc: EntityNotFoundError) -> HTTPException:
        return HTTPException(status_code=404, detail=str(exc))

    @app.get("/", response_class=HTMLResponse)
    def root() -> str:
        """WHAT: deliver the admin page.

        WHY: operators register entities and trigger refreshes from a browser
        without crafting requests by hand.
        HOW: read ``index.html`` from the configured static root and raise a
        404 when the asset is missing.
        """
        index_path = app.state.static_root / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Admin page assets are missing.")
        return index_path.read_text(encoding="utf-8")

    @app.get("/api/health")
    def health_check() -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        return _tracker().status()

    @app.get("/api/entities")
    def list_entities() -> List[Dict[str, Any]]:
        return _tracker().list_entities()

    @app.post("/api/entities", status_code=201)
    def register_entity(payload: RegisterEntityPayload, request: Request) -> Dict[str, Any]:
        """WHAT: register a new entity.

        WHY: each tracked subject needs its own source, credential and locale.
        HOW: validate the body, hand it to the tracker and map conflicts to
        409 and bad configuration to 400.
        """
        _require_admin_token(request)
        try:
            return _tracker().register_entity(
                payload.identity,
                payload.source_url,
                model_credential=payload.model_credential,
                locale_mode=payload.locale_mode,
                poll_interval_seconds=payload.poll_interval_seconds,
                timezone=payload.timezone,
                auto_start=payload.auto_start,
            )
        except EntityConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except EntityConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.get("/api/entities/{identity}")
    def get_entity(identity: str) -> Dict[str, Any]:
        try:
            return _tracker().get_entity(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)

    @app.patch("/api/entities/{identity}")
    def update_entity(identity: str, payload: UpdateEntityPayload, request: Request) -> Dict[str, Any]:
        """Partial configuration update; only fields present in the body change."""
        _require_admin_token(request)
        changes = payload.model_dump(exclude_unset=True)
        for key in ("source_url", "locale_mode", "poll_interval_seconds", "timezone"):
            if key in changes and changes[key] is None:
                raise HTTPException(status_code=400, detail=f"{key} cannot be null.")
        try:
            return _tracker().update_config(identity, changes)
        except EntityNotFoundError as exc:
            raise _not_found(exc)
        except EntityConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @app.delete("/api/entities/{identity}")
    def delete_entity(identity: str, request: Request) -> Dict[str, Any]:
        _require_admin_token(request)
        try:
            _tracker().delete_entity(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)
        return {"deleted": True, "identity": identity}

    @app.post("/api/entities/{identity}/refresh")
    def refresh_entity(identity: str, request: Request) -> Dict[str, Any]:
        """WHAT: run one poll cycle right now.

        WHY: operators want to see a source change reflected without waiting
        for the next tick, or to poll an entity that is not scheduled.
        HOW: call ``trigger_refresh`` (which waits for an in-flight cycle) and
        return the resulting snapshot; cycle failures leave it unchanged.
        """
        _require_admin_token(request)
        try:
            return _tracker().trigger_refresh(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)

    @app.post("/api/entities/{identity}/start")
    def start_polling(identity: str, request: Request) -> Dict[str, Any]:
        _require_admin_token(request)
        try:
            return _tracker().start_polling(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)

    @app.post("/api/entities/{identity}/stop")
    def stop_polling(identity: str, request: Request) -> Dict[str, Any]:
        _require_admin_token(request)
        try:
            return _tracker().stop_polling(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)

    @app.get("/api/entities/{identity}/cycles")
    def list_cycles(identity: str, request: Request, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent cycle log rows for one entity, newest last, rotated files included."""
        _require_admin_token(request)
        try:
            _tracker().get_entity(identity)
        except EntityNotFoundError as exc:
            raise _not_found(exc)
        bounded = max(0, min(limit, _MAX_CYCLE_ROWS))
        return read_cycle_records(
            app.state.cycle_log_path,
            identity=identity,
            limit=bounded,
            backups=app.state.cycle_log_backups,
        )

    @app.get("/api/entities/{identity}/stats")
    def entity_stats(identity: str) -> Dict[str, str]:
        """WHAT: day count and weekday as plain strings.

        WHY: automation clients poll this and cannot handle error responses.
        HOW: ``get_stats`` masks every failure, returning ``"0"`` and an empty
        weekday for unknown or unresolved entities, always with status 200.
        """
        return _tracker().get_stats(identity)

    return app


app = create_app()


if __name__ == "__main__":
    from app.main import main

    main()
