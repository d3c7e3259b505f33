"""
Tagged lifecycle state for a game

Game rows store status and scores as independent nullable columns. These value
objects are what the rest of the code reasons about, so a game that is
completed but missing a score cannot be mistaken for a settleable one.
"""

from dataclasses import dataclass
from typing import Optional

SCHEDULED = "scheduled"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

GAME_STATUSES = (SCHEDULED, IN_PROGRESS, COMPLETED)


@dataclass(frozen=True)
class Scheduled:
    status = SCHEDULED


@dataclass(frozen=True)
class InProgress:
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    status = IN_PROGRESS


@dataclass(frozen=True)
class Completed:
    home_score: int
    away_score: int

    status = COMPLETED

    def __post_init__(self):
        for name in ("home_score", "away_score"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"Completed game needs a final {name}, got {value!r}")


def game_state_from_row(status, home_score, away_score):
    """
    Build the tagged state from raw column values.

    A row marked completed before both scores landed is still in progress as
    far as settlement is concerned.
    """
    if status == COMPLETED:
        if home_score is not None and away_score is not None:
            return Completed(home_score, away_score)
        return InProgress(home_score, away_score)
    if status == IN_PROGRESS:
        return InProgress(home_score, away_score)
    if status == SCHEDULED:
        return Scheduled()
    raise ValueError(f"Unknown game status: {status!r}")
