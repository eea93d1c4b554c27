"""Canonical team identifiers.

The team-state store keys distributions by team id, so every game source
passes its team names through ``normalize_team_id`` before a game reaches
the pipeline.
"""

from __future__ import annotations

import html
import re
import unicodedata


def normalize_team_id(name: str) -> str:
    """Map a source's team name to the id used as the team-state key.

    Entities are decoded and accents folded before every run of
    non-alphanumeric characters becomes a single underscore::

        >>> normalize_team_id("St. John's (NY)")
        'st_john_s_ny'
        >>> normalize_team_id("Miami &amp; Ohio")
        'miami_ohio'
    """
    if not name:
        return ""
    folded = unicodedata.normalize("NFKD", html.unescape(str(name)))
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "_", folded.lower()).strip("_")
