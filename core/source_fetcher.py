"""Fetch the current text snippet for an entity from its source service.

The source answers ``GET <locator>`` with a JSON object whose text lives in a
single string field. Anything else counts as a failed fetch; the caller logs
it and waits for the next tick instead of retrying here.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)

_USER_AGENT = "datewatch/0.1"


class FetchFailure(RuntimeError):
    """Raised when the source cannot produce a usable text snippet."""

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"Fetching {locator} failed: {reason}")
        self.locator = locator
        self.reason = reason


def _build_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "User-Agent": _USER_AGENT,
        "Accept": "application/json",
    })
    # One attempt per tick; the scheduler is the retry policy.
    session.mount("https://", HTTPAdapter(max_retries=0))
    session.mount("http://", HTTPAdapter(max_retries=0))
    return session


class SourceFetcher:
    """Reads one string field out of a JSON source endpoint."""

    def __init__(
        self,
        *,
        text_field: str = "query",
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._text_field = text_field
        self._timeout = timeout
        self._session = session or _build_session()

    @property
    def text_field(self) -> str:
        return self._text_field

    def fetch(self, locator: str) -> str:
        if not locator or not locator.strip():
            raise FetchFailure(str(locator), "no source locator configured")

        try:
            response = self._session.get(locator, timeout=self._timeout)
        except requests.Timeout as exc:
            raise FetchFailure(locator, f"timed out after {self._timeout}s") from exc
        except requests.RequestException as exc:
            raise FetchFailure(locator, f"request error: {exc}") from exc

        if not response.ok:
            raise FetchFailure(locator, f"status {response.status_code}")

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise FetchFailure(locator, "response is not JSON") from exc

        if not isinstance(body, dict):
            raise FetchFailure(locator, "response is not a JSON object")
        text = body.get(self._text_field)
        if not isinstance(text, str) or not text:
            raise FetchFailure(locator, f"response has no '{self._text_field}' text")

        logger.debug("Fetched %d characters from %s", len(text), locator)
        return text


__all__ = ["FetchFailure", "SourceFetcher"]
