"""Ask the language model for the date in a text and validate its answer.

The model is treated as an untrusted oracle. Its reply is accepted only if it
is the ``NONE`` sentinel or contains a strict ``YYYY-MM-DD`` substring; any
other wording is rejected rather than parsed more loosely.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional

import openai
from openai import OpenAI

from core.extraction_prompts import (
    NO_DATE_SENTINEL,
    SYSTEM_INSTRUCTION,
    LocaleMode,
    build_extraction_prompt,
)

logger = logging.getLogger(__name__)

_ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
_CODE_FENCE_PATTERN = re.compile(r"^```(?:[A-Za-z0-9_-]*\n)?|```$")

ClientFactory = Callable[..., Any]


class ExtractionFailure(RuntimeError):
    """Raised when the oracle cannot be asked or its answer is unusable."""


def parse_oracle_response(content: Optional[str]) -> Optional[str]:
    """Return the ISO date in ``content``, ``None`` for the no-date sentinel.

    Raises ``ExtractionFailure`` when the reply matches neither shape.
    """

    if content is None:
        raise ExtractionFailure("Oracle returned no content.")
    cleaned = _CODE_FENCE_PATTERN.sub("", content.strip()).strip().strip("`").strip()
    if not cleaned:
        raise ExtractionFailure("Oracle returned an empty answer.")
    if cleaned.upper() == NO_DATE_SENTINEL:
        return None
    match = _ISO_DATE_PATTERN.search(cleaned)
    if not match:
        raise ExtractionFailure(f"Oracle answer has no ISO date: {cleaned[:80]!r}")
    return match.group(0)


class DateExtractor:
    """Delegates date extraction to an OpenAI chat model."""

    def __init__(
        self,
        model: str,
        *,
        timeout: float = 20.0,
        default_api_key: str | None = None,
        client_factory: ClientFactory = OpenAI,
    ) -> None:
        self._model = model
        self._timeout = timeout
        self._default_api_key = default_api_key
        self._client_factory = client_factory

    @property
    def model(self) -> str:
        return self._model

    def extract(self, text: str, locale: LocaleMode, credential: str | None = None) -> Optional[str]:
        """Return the ISO date found in ``text`` or ``None`` if there is none."""

        prompt = build_extraction_prompt(text, locale)
        content = self._chat_completion(
            messages=[
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": prompt},
            ],
            api_key=credential or self._default_api_key,
        )
        result = parse_oracle_response(content)
        if result is None:
            logger.info("Oracle reported no date in the text.")
        return result

    # --- Shared OpenAI helper ------------------------------------------------
    def _chat_completion(self, messages: List[Dict[str, str]], api_key: str | None) -> Optional[str]:
        if not api_key:
            raise ExtractionFailure("Date extraction is not configured: no model credential.")

        client = self._client_factory(api_key=api_key, timeout=self._timeout, max_retries=0)
        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=0.0,
            )
        except openai.APITimeoutError as exc:
            raise ExtractionFailure(f"Date extraction timed out after {self._timeout}s.") from exc
        except openai.APIStatusError as exc:
            raise ExtractionFailure(f"Date extraction failed with status {exc.status_code}.") from exc
        except openai.OpenAIError as exc:
            raise ExtractionFailure(f"Date extraction failed: {exc}") from exc

        if not response.choices:
            raise ExtractionFailure("Oracle returned no choices.")
        choice = response.choices[0]
        return getattr(choice.message, "content", None)


__all__ = ["DateExtractor", "ExtractionFailure", "parse_oracle_response"]
