"""Date phrase recognizer for Recall searches.

This module finds natural language time references inside a free-form search
string and turns them into datetime ranges. Phrases are detected by substring
containment, so "what was I doing yesterday" resolves the same as
"yesterday". Ranges are computed in local time and converted to the UTC
storage format by the caller.

Supported phrases, checked in this order (first match wins):
- "today", "yesterday"
- "last hour", "last 24 hours"
- "this week", "last week" (weeks start on Monday)
- "after:YYYY-MM-DD", "before:YYYY-MM-DD"

Example:
    >>> parser = DateRangeParser()
    >>> date_range = parser.parse("slack messages yesterday")
    >>> date_range.start, date_range.end
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple
from dateutil import tz
import re

from .storage import format_timestamp

_DATE_TOKEN_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


@dataclass
class DateRange:
    """A time range where either end may be open (None)."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def as_storage_bounds(self) -> Tuple[Optional[str], Optional[str]]:
        """Bounds converted to storage timestamp strings."""
        return (
            format_timestamp(self.start) if self.start is not None else None,
            format_timestamp(self.end) if self.end is not None else None,
        )


def parse_date_token(token: str) -> Optional[date]:
    """Parse a strict YYYY-MM-DD token, returning None if malformed."""
    if not _DATE_TOKEN_RE.match(token):
        return None
    try:
        return datetime.strptime(token, '%Y-%m-%d').date()
    except ValueError:
        return None


class DateRangeParser:
    """Recognize date phrases in search text.

    Attributes:
        tz: Local timezone used for day and week boundaries
        now: Reference datetime for relative calculations (aware, in tz)
        today_start: Start of the current local day
    """

    def __init__(self, reference_time: datetime = None, local_tz: tzinfo = None):
        """Initialize DateRangeParser.

        Args:
            reference_time: Base datetime for relative calculations. Naive
                values are interpreted in local_tz. Defaults to now.
            local_tz: Timezone for day boundaries. Defaults to the system
                local timezone.
        """
        self.tz = local_tz or tz.tzlocal()
        if reference_time is None:
            self.now = datetime.now(self.tz)
        elif reference_time.tzinfo is None:
            self.now = reference_time.replace(tzinfo=self.tz)
        else:
            self.now = reference_time.astimezone(self.tz)
        self.today_start = self._local(self.now.date())

    def parse(self, text: str) -> Optional[DateRange]:
        """Find the first recognized date phrase in text.

        Args:
            text: Raw search string.

        Returns:
            DateRange for the first phrase found, or None if none applies.
        """
        lower = text.lower()

        phrases = [
            ('today', self._today),
            ('yesterday', self._yesterday),
            ('last hour', lambda: DateRange(self._hours_ago(1), None)),
            ('last 24 hours', lambda: DateRange(self._hours_ago(24), None)),
            ('this week', lambda: DateRange(self._week_start(), None)),
            ('last week', self._last_week),
        ]
        for phrase, handler in phrases:
            if phrase in lower:
                return handler()

        after = self._date_after_marker(lower, 'after:')
        if after:
            return DateRange(self._local(after), None)

        before = self._date_after_marker(lower, 'before:')
        if before:
            return DateRange(None, self._local(before, time(23, 59, 59)))

        return None

    def day_range(self, day: str) -> DateRange:
        """Closed range covering one local calendar day.

        Raises:
            ValueError: If day is not a YYYY-MM-DD date
        """
        parsed = parse_date_token(day.strip())
        if parsed is None:
            raise ValueError(f"Invalid date format: {day!r}. Use YYYY-MM-DD.")
        return DateRange(self._local(parsed), self._local(parsed, time(23, 59, 59)))

    def _local(self, day: date, at: time = time(0, 0, 0)) -> datetime:
        return datetime.combine(day, at, tzinfo=self.tz)

    def _hours_ago(self, hours: int) -> datetime:
        """Elapsed-time offset from now, unaffected by DST shifts."""
        return self.now.astimezone(timezone.utc) - timedelta(hours=hours)

    def _today(self) -> DateRange:
        return DateRange(self.today_start, None)

    def _yesterday(self) -> DateRange:
        yesterday = self.now.date() - timedelta(days=1)
        return DateRange(self._local(yesterday), self._local(yesterday, time(23, 59, 59)))

    def _week_start(self) -> datetime:
        """Monday 00:00 of the current week."""
        return self._local(self.now.date() - timedelta(days=self.now.weekday()))

    def _last_week(self) -> DateRange:
        """Monday to Sunday of previous week."""
        last_monday = self.now.date() - timedelta(days=self.now.weekday() + 7)
        last_sunday = last_monday + timedelta(days=6)
        return DateRange(self._local(last_monday), self._local(last_sunday, time(23, 59, 59)))

    @staticmethod
    def _date_after_marker(lower: str, marker: str) -> Optional[date]:
        """Date token following the first occurrence of marker, if valid."""
        idx = lower.find(marker)
        if idx < 0:
            return None
        tokens = lower[idx + len(marker):].split()
        if not tokens:
            return None
        return parse_date_token(tokens[0])
