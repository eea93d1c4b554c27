"""Season labelling and season-boundary detection."""

import re
from datetime import date, datetime, time
from typing import Optional, Union

import pytz

from ..errors import ValidationError

_SEASON_LABEL = re.compile(r"^(\d{4})-(\d{2})$")

DateLike = Union[date, datetime]


class SeasonCalendar:
    """
    Maps game timestamps to season labels such as ``"2024-25"``.

    A season starts on the first day of ``start_month`` (November for
    college basketball); games from January through the following
    October belong to the season that started the previous calendar year.

    Args:
        start_month: First month of a new season
        timezone: Zone used to decide which calendar day a game falls on
    """

    def __init__(self, start_month: int = 11, timezone: str = "US/Eastern"):
        if not 1 <= start_month <= 12:
            raise ValidationError(f"start_month must be 1-12, got {start_month}")
        self.start_month = start_month
        self.tz = pytz.timezone(timezone)

    def localize(self, when: DateLike) -> datetime:
        if not isinstance(when, datetime):
            when = datetime.combine(when, time(12, 0))
        if when.tzinfo is None:
            return self.tz.localize(when)
        return when.astimezone(self.tz)

    def season_start_year_for(self, when: DateLike) -> int:
        local = self.localize(when)
        return local.year if local.month >= self.start_month else local.year - 1

    def season_for(self, when: DateLike) -> str:
        year = self.season_start_year_for(when)
        return f"{year}-{(year + 1) % 100:02d}"

    @staticmethod
    def season_start_year(label: str) -> int:
        match = _SEASON_LABEL.match(label or "")
        if not match:
            raise ValidationError(f"Invalid season label: {label!r}")
        start = int(match.group(1))
        if (start + 1) % 100 != int(match.group(2)):
            raise ValidationError(f"Inconsistent season label: {label!r}")
        return start

    def seasons_between(self, earlier: str, later: str) -> int:
        return self.season_start_year(later) - self.season_start_year(earlier)

    def is_transition(self, previous_season: Optional[str], when: DateLike) -> bool:
        """True when ``when`` falls in a later season than ``previous_season``."""
        if previous_season is None:
            return False
        return self.seasons_between(previous_season, self.season_for(when)) > 0

    def days_between(self, earlier: DateLike, later: DateLike) -> float:
        delta = self.localize(later) - self.localize(earlier)
        return delta.total_seconds() / 86400.0


DEFAULT_CALENDAR = SeasonCalendar()
