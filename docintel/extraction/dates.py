"""Multi-locale date extraction and normalization.

Recognizes ISO dates, European numeric dates, named-month dates in
French, English and Macedonian Cyrillic, and bare years as a last resort.
Every date is normalized to ``DD/MM/YYYY`` (bare years stay ``YYYY``).
"""

import re
from dataclasses import dataclass

from docintel.models import DateMention
from docintel.utils.logger import get_logger

logger = get_logger(__name__)

MONTHS: dict[str, int] = {
    # French
    "janvier": 1,
    "février": 2,
    "mars": 3,
    "avril": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7,
    "août": 8,
    "septembre": 9,
    "octobre": 10,
    "novembre": 11,
    "décembre": 12,
    # English
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    # Macedonian
    "јануари": 1,
    "февруари": 2,
    "март": 3,
    "април": 4,
    "мај": 5,
    "јуни": 6,
    "јули": 7,
    "август": 8,
    "септември": 9,
    "октомври": 10,
    "ноември": 11,
    "декември": 12,
}

_FRENCH_MONTHS = "janvier|février|mars|avril|mai|juin|juillet|août|septembre|octobre|novembre|décembre"
_ENGLISH_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|november|december"
)
_MACEDONIAN_MONTHS = (
    "јануари|февруари|март|април|мај|јуни|јули|август|септември|октомври|ноември|декември"
)

_NUMERIC_DATE = re.compile(r"^\s*(\d{1,4})[./-](\d{1,2})[./-](\d{1,4})\s*$")
_NAMED_DATE = re.compile(r"^\s*(\d{1,2})\s+(\S+)\s+(\d{4})\s*$")
_YEAR_ONLY = re.compile(r"^\s*(\d{4})\s*$")


@dataclass(frozen=True)
class DatePattern:
    """A date regex with its locale tag and fixed confidence."""

    regex: re.Pattern[str]
    locale: str
    confidence: float


# Evaluated in order; bare years come last and only fill gaps.
DATE_PATTERNS: tuple[DatePattern, ...] = (
    DatePattern(re.compile(r"(?<!\d)(\d{4})-(\d{1,2})-(\d{1,2})(?!\d)"), "iso", 0.9),
    DatePattern(re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4})(?!\d)"), "european", 0.9),
    DatePattern(re.compile(r"(?<!\d)(\d{1,2})/(\d{1,2})/(\d{4})(?!\d)"), "european", 0.9),
    DatePattern(re.compile(r"(?<!\d)(\d{1,2})-(\d{1,2})-(\d{4})(?!\d)"), "european", 0.9),
    DatePattern(
        re.compile(rf"(?<!\d)(\d{{1,2}})\s+({_FRENCH_MONTHS})\s+(\d{{4}})", re.IGNORECASE),
        "fr",
        0.85,
    ),
    DatePattern(
        re.compile(rf"(?<!\d)(\d{{1,2}})\s+({_ENGLISH_MONTHS})\s+(\d{{4}})", re.IGNORECASE),
        "en",
        0.85,
    ),
    DatePattern(
        re.compile(rf"(?<!\d)(\d{{1,2}})\s+({_MACEDONIAN_MONTHS})\s+(\d{{4}})", re.IGNORECASE),
        "mk",
        0.85,
    ),
)

YEAR_PATTERN = DatePattern(re.compile(r"\b(?:19|20)\d{2}\b"), "year", 0.5)


def normalize_date(raw: str) -> str:
    """Normalize a date string to ``DD/MM/YYYY``.

    A numeric date whose first group is a year above 1900 is read as
    year-month-day; any other numeric date is read as day-month-year.
    Named-month dates are converted through :data:`MONTHS`. Bare years are
    returned as-is, and anything unrecognized is returned stripped.
    Normalizing an already normalized date returns it unchanged.

    Args:
        raw: Date text as found in the document.

    Returns:
        The normalized date string.
    """
    match = _NUMERIC_DATE.match(raw)
    if match:
        first, second, third = match.groups()
        if int(first) > 1900:
            day, month, year = third, second, first
        else:
            day, month, year = first, second, third
        return f"{int(day):02d}/{int(month):02d}/{year}"

    match = _NAMED_DATE.match(raw)
    if match:
        day, month_name, year = match.groups()
        month = MONTHS.get(month_name.lower())
        if month is not None:
            return f"{int(day):02d}/{month:02d}/{year}"

    match = _YEAR_ONLY.match(raw)
    if match:
        return match.group(1)

    return raw.strip()


class DateExtractor:
    """Finds and normalizes date mentions.

    Args:
        max_dates: Upper bound on returned mentions.
    """

    def __init__(self, max_dates: int = 5) -> None:
        self.max_dates = max_dates

    def extract(self, text: str) -> list[DateMention]:
        """Extract up to ``max_dates`` distinct date mentions from ``text``.

        Full dates come first in pattern order. A bare year is only kept
        when it is not part of a full date already found. Mentions with
        the same literal text collapse into one.
        """
        mentions: list[DateMention] = []
        seen: set[str] = set()
        covered: list[tuple[int, int]] = []

        for pattern in DATE_PATTERNS:
            for match in pattern.regex.finditer(text):
                covered.append(match.span())
                self._add(mentions, seen, match.group(0), pattern)

        for match in YEAR_PATTERN.regex.finditer(text):
            start, end = match.span()
            if any(s <= start and end <= e for s, e in covered):
                continue
            self._add(mentions, seen, match.group(0), YEAR_PATTERN)

        if len(mentions) > self.max_dates:
            logger.debug("Keeping %d of %d date mentions", self.max_dates, len(mentions))
        return mentions[: self.max_dates]

    @staticmethod
    def _add(
        mentions: list[DateMention], seen: set[str], raw: str, pattern: DatePattern
    ) -> None:
        if raw in seen:
            return
        seen.add(raw)
        mentions.append(
            DateMention(
                raw=raw,
                normalized=normalize_date(raw),
                confidence=pattern.confidence,
                script_or_locale=pattern.locale,
            )
        )
