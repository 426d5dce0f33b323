"""
Locale-aware parsing of the free-text dates found on Brazilian listing pages.

All results are timezone-aware datetimes in Brasília time (UTC-03:00, no DST
since 2019).  Nothing here raises on bad input: unparseable text gives ``None``.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

BRT = timezone(timedelta(hours=-3), "BRT")

MONTHS: Dict[str, int] = {
    # pt-BR
    "janeiro": 1, "fevereiro": 2, "março": 3, "marco": 3, "abril": 4,
    "maio": 5, "junho": 6, "julho": 7, "agosto": 8, "setembro": 9,
    "outubro": 10, "novembro": 11, "dezembro": 12,
    "jan": 1, "fev": 2, "mar": 3, "abr": 4, "mai": 5, "jun": 6,
    "jul": 7, "ago": 8, "set": 9, "out": 10, "nov": 11, "dez": 12,
    # en
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5,
    "june": 6, "july": 7, "august": 8, "september": 9, "october": 10,
    "november": 11, "december": 12,
    "feb": 2, "apr": 4, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "dec": 12,
}

_WEEKDAY = re.compile(
    r"^(?:dom(?:ingo)?|seg(?:unda)?|ter(?:ça|ca)?|qua(?:rta)?|qui(?:nta)?|sex(?:ta)?|s[áa]b(?:ado)?"
    r"|sun(?:day)?|mon(?:day)?|tue(?:s|sday)?|wed(?:nesday)?|thu(?:rs|rsday)?|fri(?:day)?|sat(?:urday)?)"
    r"(?:-feira)?\.?,?\s+",
    re.IGNORECASE,
)
_CONNECTOR = re.compile(r"\s+(?:às|as|à|a partir das|at|@)\s+", re.IGNORECASE)

_WORD = r"([a-zà-ÿ]+)"

# (name, regex, has_year) - order matters, first successful parse wins
_DATE_PATTERNS: List[Tuple[str, "re.Pattern[str]", str]] = [
    ("dd/mm/yyyy", re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})(?!\d)"), "dmy"),
    ("dd de mmmm de yyyy", re.compile(rf"(\d{{1,2}})\s+de\s+{_WORD}\.?\s+de\s+(\d{{4}})"), "dMy"),
    ("dd mmm yyyy", re.compile(rf"(\d{{1,2}})\s+{_WORD}\.?\s+(\d{{4}})"), "dMy"),
    ("mmmm dd, yyyy", re.compile(rf"{_WORD}\.?\s+(\d{{1,2}}),?\s+(\d{{4}})"), "Mdy"),
    ("yyyy-mm-dd", re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"), "ymd"),
    ("dd-mm-yyyy", re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"), "dmy"),
    # year-less variants, resolved with determine_year
    ("dd de mmmm", re.compile(rf"(\d{{1,2}})\s+de\s+{_WORD}"), "dM"),
    ("dd/mm", re.compile(r"(\d{1,2})/(\d{1,2})(?![/\d])"), "dm"),
    ("dd mmm", re.compile(rf"(\d{{1,2}})\s+{_WORD}"), "dM"),
]

_TIME_PATTERNS = [
    re.compile(r"(?<!\d)(\d{1,2}):(\d{2}):(\d{2})(?!\d)"),
    re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?!\d)"),
    re.compile(r"(?<![\d:])(\d{1,2})\s?h(?:rs?)?(\d{2})?\b", re.IGNORECASE),
]


def month_number(name: str) -> Optional[int]:
    name = name.lower().rstrip(".")
    if name in MONTHS:
        return MONTHS[name]
    if len(name) > 3:
        return MONTHS.get(name[:3])
    return None


def determine_year(
    day: int,
    month: int,
    current_year: int,
    current_month: int,
    current_day: Optional[int] = None,
) -> int:
    """Listings look forward: a month/day already past this year means next year."""
    if month < current_month:
        return current_year + 1
    if month == current_month and current_day is not None and day < current_day:
        return current_year + 1
    return current_year


class DateParser:
    """Parses Portuguese/English date text; keeps running success counters."""

    def __init__(
        self,
        *,
        window_years: int = 10,
        now: Callable[[], datetime] = lambda: datetime.now(BRT),
    ) -> None:
        self.window_years = window_years
        self._now = now
        self.reset_stats()

    def now(self) -> datetime:
        return self._now().astimezone(BRT)

    # ---------------------------------------------- #
    @staticmethod
    def clean(text: str) -> str:
        cleaned = re.sub(r"\s+", " ", text.strip())
        cleaned = _WEEKDAY.sub("", cleaned)
        cleaned = _CONNECTOR.sub(" ", cleaned)
        return cleaned.lower()

    def _build(self, kind: str, groups: Tuple[str, ...]) -> Optional[datetime]:
        values = dict(zip(kind, groups))
        try:
            day = int(values["d"])
            if "M" in values:
                month = month_number(values["M"])
                if month is None:
                    return None
            else:
                month = int(values["m"])

            if "y" in values:
                year = int(values["y"])
                if year < 100:
                    year += 2000 if year < 50 else 1900
            else:
                now = self._now().astimezone(BRT)
                year = determine_year(day, month, now.year, now.month, now.day)

            candidate = datetime(year, month, day, tzinfo=BRT)
        except ValueError:
            return None
        return candidate if self.is_valid_date(candidate) else None

    def parse_date(self, text: Optional[str]) -> Optional[datetime]:
        """Return midnight BRT of the date in ``text``, or None."""
        if not text or not isinstance(text, str):
            self.failed += 1
            return None

        self.total_parsed += 1
        cleaned = self.clean(text)

        for name, pattern, kind in _DATE_PATTERNS:
            match = pattern.search(cleaned)
            if not match:
                continue
            result = self._build(kind, match.groups())
            if result is not None:
                self.successful += 1
                self.format_distribution[name] = self.format_distribution.get(name, 0) + 1
                logger.debug(f"Parsed date {text!r} -> {result.isoformat()} ({name})")
                return result

        fallback = self._parse_fallback(text.strip())
        if fallback is not None:
            self.successful += 1
            self.format_distribution["fallback"] = self.format_distribution.get("fallback", 0) + 1
            return fallback

        self.failed += 1
        logger.debug(f"Failed to parse date {text!r}")
        return None

    def _parse_fallback(self, text: str) -> Optional[datetime]:
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=BRT)
        parsed = parsed.astimezone(BRT).replace(hour=0, minute=0, second=0, microsecond=0)
        return parsed if self.is_valid_date(parsed) else None

    @staticmethod
    def parse_time(text: Optional[str]) -> Optional[Tuple[int, int, int]]:
        """``HH:mm:ss``, ``HH:mm``, ``HHh`` and ``HHhMM``; returns (h, m, s)."""
        if not text:
            return None
        lowered = text.lower()
        for pattern in _TIME_PATTERNS:
            match = pattern.search(lowered)
            if not match:
                continue
            hours = int(match.group(1))
            minutes = int(match.group(2) or 0)
            seconds = int(match.group(3) or 0) if match.re.groups >= 3 else 0
            if 0 <= hours <= 23 and 0 <= minutes <= 59 and 0 <= seconds <= 59:
                return hours, minutes, seconds
        return None

    def parse_date_time(self, text: Optional[str]) -> Optional[datetime]:
        date = self.parse_date(text)
        if date is None:
            return None
        time_part = self.parse_time(text)
        if time_part:
            hours, minutes, seconds = time_part
            date = date.replace(hour=hours, minute=minutes, second=seconds)
        return date

    # ---------------------------------------------- #
    # Helpers
    def is_valid_date(self, date: Optional[datetime]) -> bool:
        if not isinstance(date, datetime):
            return False
        current_year = self._now().year
        return current_year - self.window_years <= date.year <= current_year + self.window_years

    def is_future_event(self, date: Optional[datetime]) -> bool:
        """Same-day events still count: listings without a time parse to midnight."""
        if not self.is_valid_date(date):
            return False
        today = self._now().astimezone(BRT).date()
        return date.astimezone(BRT).date() >= today

    def format_to_standard(self, date: Optional[datetime]) -> Optional[str]:
        return date.isoformat() if self.is_valid_date(date) else None

    def format_to_brazilian(self, date: Optional[datetime], include_time: bool = False) -> Optional[str]:
        if not self.is_valid_date(date):
            return None
        local = date.astimezone(BRT)
        formatted = local.strftime("%d/%m/%Y")
        if include_time:
            formatted += local.strftime(" às %H:%M")
        return formatted

    def days_difference(self, first: datetime, second: datetime) -> Optional[int]:
        if not (self.is_valid_date(first) and self.is_valid_date(second)):
            return None
        return math.ceil(abs((second - first).total_seconds()) / 86400)

    def get_stats(self) -> Dict[str, object]:
        rate = round(self.successful / self.total_parsed * 100) if self.total_parsed else 0
        return {
            "total_parsed": self.total_parsed,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": rate,
            "format_distribution": dict(self.format_distribution),
        }

    def reset_stats(self) -> None:
        self.total_parsed = 0
        self.successful = 0
        self.failed = 0
        self.format_distribution: Dict[str, int] = {}
