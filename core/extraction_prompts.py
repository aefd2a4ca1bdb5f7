"""Locale-aware instruction prompts for the date extractor."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

NO_DATE_SENTINEL = "NONE"

SYSTEM_INSTRUCTION = (
    "You extract calendar dates from short texts. "
    f"Reply with a single ISO date (YYYY-MM-DD) or the word {NO_DATE_SENTINEL}, nothing else."
)


class LocaleMode(str, Enum):
    """How to read the first number of an ambiguous ``A/B/C`` date."""

    MONTH_FIRST = "month_first"
    DAY_FIRST = "day_first"


@dataclass(frozen=True)
class LocalePrompt:
    locale: LocaleMode
    order_rule: str
    examples: Tuple[Tuple[str, str], ...]

    def render(self, text: str) -> str:
        worked = "\n".join(f'- "{source}" -> {answer}' for source, answer in self.examples)
        return (
            "Find the calendar date in the text below.\n"
            f"{self.order_rule}\n"
            "If the month is spelled out (for example \"March\" or \"Mar\"), use that month as written, "
            "whatever the numeric order rule says.\n"
            "Two-digit years belong to the closest century to today.\n"
            "Examples:\n"
            f"{worked}\n"
            "Answer with ONLY the date as YYYY-MM-DD. "
            f"If the text contains no date, answer exactly {NO_DATE_SENTINEL}.\n"
            f"Text: {text}"
        )


_LOCALE_PROMPTS: Dict[LocaleMode, LocalePrompt] = {
    LocaleMode.MONTH_FIRST: LocalePrompt(
        locale=LocaleMode.MONTH_FIRST,
        order_rule=(
            "In a numeric date like A/B/C the FIRST number is the MONTH, "
            "the second is the day and the third is the year."
        ),
        examples=(
            ("born 11/3/2008", "2008-11-03"),
            ("3.6.1990", "1990-03-06"),
            ("6 March 2008", "2008-03-06"),
        ),
    ),
    LocaleMode.DAY_FIRST: LocalePrompt(
        locale=LocaleMode.DAY_FIRST,
        order_rule=(
            "In a numeric date like A/B/C the FIRST number is the DAY, "
            "the second is the month and the third is the year."
        ),
        examples=(
            ("born 11/3/2008", "2008-03-11"),
            ("3.6.1990", "1990-06-03"),
            ("March 6, 2008", "2008-03-06"),
        ),
    ),
}


def get_locale_prompt(locale: LocaleMode) -> LocalePrompt:
    return _LOCALE_PROMPTS[LocaleMode(locale)]


def build_extraction_prompt(text: str, locale: LocaleMode) -> str:
    """Return the user prompt asking for the date in ``text`` under ``locale``."""

    return get_locale_prompt(locale).render(text)


__all__ = [
    "LocaleMode",
    "LocalePrompt",
    "NO_DATE_SENTINEL",
    "SYSTEM_INSTRUCTION",
    "build_extraction_prompt",
    "get_locale_prompt",
]
