"""Free-form search over the focus-event timeline.

A search string is interpreted in three tiers, and the first tier that
applies wins:

1. Anchor query: "after <text>" returns what happened since the most
   recent event whose app or title contains <text>.
2. Date phrase: "today", "last week", "after:2024-01-01" and friends
   (see recall.timeparser) select a time range.
3. Full text: every whitespace token is OR-ed into an FTS5 match over
   app and title.

Date phrases are matched anywhere in the string, so a search for an app
literally called "Today" is read as a date range.

Example:
    >>> engine = QueryEngine(EventStore())
    >>> engine.search("after slack")
    >>> engine.search("yesterday")
    >>> engine.search("firefox github")
"""

import logging
import sqlite3
from datetime import datetime, tzinfo
from typing import Callable, List, Optional

from .storage import Event, EventStore
from .timeparser import DateRange, DateRangeParser

logger = logging.getLogger(__name__)

ANCHOR_LIMIT = 50
RESULT_LIMIT = 100


def build_match_expression(query: str) -> Optional[str]:
    """Turn raw search text into an FTS5 expression.

    Each whitespace token becomes a quoted string so that punctuation in
    window titles is matched literally, and tokens are joined with OR.

    Returns:
        The expression, or None if the query has no tokens.
    """
    tokens = query.split()
    if not tokens:
        return None
    quoted = ['"' + token.replace('"', '""') + '"' for token in tokens]
    return " OR ".join(quoted)


class QueryEngine:
    """Parse and execute search strings against an EventStore.

    Attributes:
        storage: Event store to read from
        local_tz: Timezone for date phrases (None for system local time)
        clock: Callable returning the reference "now" for date phrases
    """

    def __init__(
        self,
        storage: EventStore,
        local_tz: tzinfo = None,
        clock: Callable[[], datetime] = None
    ):
        self.storage = storage
        self.local_tz = local_tz
        self.clock = clock

    def _date_parser(self) -> DateRangeParser:
        reference = self.clock() if self.clock else None
        return DateRangeParser(reference_time=reference, local_tz=self.local_tz)

    def search(self, query: str) -> List[Event]:
        """Run a search string.

        Args:
            query: Free-form search text.

        Returns:
            Matching events. Anchor results are oldest first, everything
            else newest first.
        """
        anchored = self._search_after_anchor(query)
        if anchored is not None:
            return anchored

        date_range = self._date_parser().parse(query)
        if date_range is not None:
            return self._search_date_range(date_range)

        return self._search_full_text(query)

    def _search_after_anchor(self, query: str) -> Optional[List[Event]]:
        """Events since the last occurrence of the text after "after".

        Returns:
            Result list, or None when the query is not an anchor query or
            nothing matches the anchor text.
        """
        words = query.lower().split()
        if len(words) < 2 or words[0] != "after":
            return None

        target = " ".join(words[1:])
        anchor_id = self.storage.find_latest_matching(target)
        if anchor_id is None:
            logger.debug(f"No anchor found for '{target}', falling through")
            return None

        return self.storage.get_events_after_id(anchor_id, limit=ANCHOR_LIMIT)

    def _search_date_range(self, date_range: DateRange) -> List[Event]:
        start, end = date_range.as_storage_bounds()
        return self.storage.get_events_in_range(start, end, limit=RESULT_LIMIT)

    def _search_full_text(self, query: str) -> List[Event]:
        expression = build_match_expression(query)
        if expression is None:
            return []
        try:
            return self.storage.search_full_text(expression, limit=RESULT_LIMIT)
        except sqlite3.OperationalError as e:
            logger.warning(f"Full-text query {expression!r} failed: {e}")
            return []

    def timeline(self, day: str) -> List[Event]:
        """All events of one local calendar day, oldest first.

        Raises:
            ValueError: If day is not a YYYY-MM-DD date
        """
        start, end = self._date_parser().day_range(day).as_storage_bounds()
        return self.storage.get_events_in_range(start, end, limit=None, newest_first=False)
