from .bayesian import BayesianTeamStateStore
from .seasons import DEFAULT_CALENDAR, SeasonCalendar

__all__ = ["BayesianTeamStateStore", "DEFAULT_CALENDAR", "SeasonCalendar"]
