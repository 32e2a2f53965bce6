"""Period resolution for the reports.

A period is either a named token (today, week, month, quarter, year)
anchored to "now", or an explicit start/end pair.  "now" is always passed
in so reports can be computed against a fixed clock.
"""

import math
from datetime import datetime, timedelta

from dateutil import parser

from errors import ValidationError


PERIOD_TOKENS = ('today', 'week', 'month', 'quarter', 'year')


def parse_instant(value):
    """Parse an ISO date/datetime string into a naive local datetime.

    Returns None for empty or unparseable input.  Aware values are
    converted to the host's local time so they compare with ``now``.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class Period:
    """A window from ``start`` to ``end``.

    The end is inclusive unless ``open_end`` is set; ``previous()`` returns
    such a window so an instant on the boundary belongs to only one side.
    """

    def __init__(self, start: datetime, end: datetime, open_end: bool = False):
        self.start = start
        self.end = end
        self.open_end = open_end

    def __repr__(self) -> str:
        bracket = ')' if self.open_end else ']'
        return f"<Period [{self.start.isoformat()} - {self.end.isoformat()}{bracket}>"

    def __eq__(self, other) -> bool:
        return (isinstance(other, Period)
                and (self.start, self.end, self.open_end) == (other.start, other.end, other.open_end))

    def contains(self, instant: datetime) -> bool:
        if self.open_end:
            return self.start <= instant < self.end
        return self.start <= instant <= self.end

    def previous(self) -> 'Period':
        """The window of equal length ending (exclusively) where this one starts."""
        return Period(self.start - (self.end - self.start), self.start, open_end=True)

    @property
    def days(self) -> int:
        return math.ceil((self.end - self.start).total_seconds() / 86400)

    @property
    def label(self) -> str:
        return f"{self.start.date().isoformat()} to {self.end.date().isoformat()}"

    def to_dict(self) -> dict:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}


def period_start(token: str, now: datetime) -> datetime:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if token == 'today':
        return today
    if token == 'week':
        return now - timedelta(days=7)
    if token == 'month':
        return today.replace(day=1)
    if token == 'quarter':
        return today.replace(month=((now.month - 1) // 3) * 3 + 1, day=1)
    if token == 'year':
        return today.replace(month=1, day=1)
    # Unknown tokens fall back to the trailing 30 days.
    return now - timedelta(days=30)


def resolve_period(token: str = None, start=None, end=None, now: datetime = None) -> Period:
    """Resolve a token or an explicit ``start``/``end`` pair to a Period.

    A complete pair wins over the token; with only one side given the pair
    is ignored and the token decides.  A pair value that is not an ISO
    date is a validation error.
    """
    now = now or datetime.now()
    if start and end:
        start_at = parse_instant(start)
        end_at = parse_instant(end)
        if start_at is None or end_at is None:
            raise ValidationError('start and end must be ISO dates')
        return Period(start_at, end_at)
    return Period(period_start(token or 'month', now), now)
