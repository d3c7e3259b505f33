"""
Scoring Engine for Spread Pick'em

This module is the single place where a finished game is graded against the
spread and where a pick's result and points are derived. Everything else
(the settlement service, CLI repair commands, verification) calls into it.

Rules:
    - adjusted margin = (home score - away score) + spread
    - |adjusted margin| < 0.5 is a push
    - cover magnitude 11/20/29+ earns a margin bonus of 1/3/5
    - a win is worth 20 + bonus, a Lock win doubles the bonus
    - a push is worth a flat 10, a loss 0
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from pickem.exceptions import InvalidInput

BASE_POINTS = 20
PUSH_POINTS = 10
PUSH_TOLERANCE = Decimal("0.5")

# (lower bound inclusive, bonus), checked from the top down
MARGIN_BONUS_TIERS = (
    (Decimal("29"), 5),
    (Decimal("20"), 3),
    (Decimal("11"), 1),
)

HOME = "home"
AWAY = "away"
PUSH = "push"

WIN = "win"
LOSS = "loss"


@dataclass(frozen=True)
class Settlement:
    """Against-the-spread outcome of a completed game"""

    covering_side: str
    margin_bonus: int
    home_team: str
    away_team: str
    adjusted_margin: Decimal
    base_points: int = BASE_POINTS

    @property
    def is_push(self):
        return self.covering_side == PUSH

    @property
    def covering_team(self):
        """Team name that covered, None for a push"""
        if self.covering_side == HOME:
            return self.home_team
        if self.covering_side == AWAY:
            return self.away_team
        return None

    @property
    def winner(self):
        """Winner against the spread as stored on the game ('push' for pushes)"""
        return self.covering_team or PUSH

    def to_dict(self):
        return {
            "covering_side": self.covering_side,
            "winner_against_spread": self.winner,
            "margin_bonus": self.margin_bonus,
            "base_points": self.base_points,
            "adjusted_margin": float(self.adjusted_margin),
        }


@dataclass(frozen=True)
class PickOutcome:
    result: str
    points: int


def _validate_score(name, value):
    if value is None:
        raise InvalidInput(f"{name} is required")
    # bool is an int subclass but never a score
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative, got {value}")


def _to_decimal(spread):
    if spread is None or isinstance(spread, bool):
        raise InvalidInput(f"spread must be a number, got {spread!r}")
    if isinstance(spread, Decimal):
        value = spread
    else:
        # str() keeps float spreads like -13.5 exact
        try:
            value = Decimal(str(spread))
        except InvalidOperation:
            raise InvalidInput(f"spread must be a number, got {spread!r}") from None
    if not value.is_finite():
        raise InvalidInput(f"spread must be finite, got {spread!r}")
    return value


def margin_bonus_for(magnitude):
    """Bonus tier for a cover of the given magnitude"""
    for lower_bound, bonus in MARGIN_BONUS_TIERS:
        if magnitude >= lower_bound:
            return bonus
    return 0


def calculate_settlement(home_score, away_score, spread, home_team, away_team):
    """
    Grade a final score against the spread.

    Args:
        home_score: Final home score (int >= 0)
        away_score: Final away score (int >= 0)
        spread: Home-relative spread, negative means home favored
        home_team: Home team name
        away_team: Away team name

    Returns:
        Settlement

    Raises:
        InvalidInput: missing or negative scores, empty team names
    """
    _validate_score("home_score", home_score)
    _validate_score("away_score", away_score)
    if not home_team or not away_team:
        raise InvalidInput("home_team and away_team are required")

    adjusted_margin = Decimal(home_score - away_score) + _to_decimal(spread)

    if abs(adjusted_margin) < PUSH_TOLERANCE:
        covering_side = PUSH
        bonus = 0
    elif adjusted_margin > 0:
        covering_side = HOME
        bonus = margin_bonus_for(adjusted_margin)
    else:
        covering_side = AWAY
        bonus = margin_bonus_for(abs(adjusted_margin))

    return Settlement(
        covering_side=covering_side,
        margin_bonus=bonus,
        home_team=home_team,
        away_team=away_team,
        adjusted_margin=adjusted_margin,
    )


def score_pick(settlement, selected_team, is_lock=False):
    """
    Derive a pick's result and points from a game settlement.

    A Lock only doubles the margin bonus, never the base points, and pushes
    are not bonus-eligible.
    """
    if selected_team not in (settlement.home_team, settlement.away_team):
        raise InvalidInput(
            f"{selected_team!r} is not playing in "
            f"{settlement.away_team} @ {settlement.home_team}"
        )

    if settlement.is_push:
        return PickOutcome(PUSH, PUSH_POINTS)

    if selected_team == settlement.covering_team:
        bonus = settlement.margin_bonus
        points = settlement.base_points + bonus + (bonus if is_lock else 0)
        return PickOutcome(WIN, points)

    return PickOutcome(LOSS, 0)
