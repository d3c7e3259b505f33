from datetime import datetime, timezone

from pickem import db
from pickem.exceptions import PreconditionNotMet
from pickem.utils.game_state import (
    COMPLETED,
    GAME_STATUSES,
    SCHEDULED,
    Completed,
    game_state_from_row,
)
from pickem.utils.scoring import calculate_settlement


class Game(db.Model):
    __tablename__ = "games"

    id = db.Column(db.Integer, primary_key=True)

    # Game identification
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)

    # Game timing
    game_time = db.Column(db.DateTime)

    # Scores
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)

    # Point spread, home relative (negative = home team favored)
    spread = db.Column(db.Numeric(5, 1), nullable=False, default=0)

    # Lifecycle: scheduled -> in_progress -> completed
    status = db.Column(db.String(20), nullable=False, default=SCHEDULED)

    # Settlement outputs (written only by SettlementService)
    winner_against_spread = db.Column(db.String(100))
    covering_side = db.Column(db.String(10))
    margin_bonus = db.Column(db.Integer)
    base_points = db.Column(db.Integer)
    settled_at = db.Column(db.DateTime)

    # Optimistic concurrency for competing settlement writers
    version_id = db.Column(db.Integer, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )
    anonymous_picks = db.relationship(
        "AnonymousPick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Indexes and constraints
    __table_args__ = (
        db.Index("idx_game_season_week", "season", "week"),
        db.Index("idx_game_status", "status"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
        db.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed')", name="valid_status"
        ),
        db.CheckConstraint(
            "(home_score IS NULL OR home_score >= 0) AND "
            "(away_score IS NULL OR away_score >= 0)",
            name="non_negative_scores",
        ),
        db.CheckConstraint(
            "covering_side IS NULL OR covering_side IN ('home', 'away', 'push')",
            name="valid_covering_side",
        ),
        # Settlement outputs exist only on a completed game with both scores
        db.CheckConstraint(
            "(winner_against_spread IS NULL AND covering_side IS NULL "
            "AND margin_bonus IS NULL AND base_points IS NULL) OR "
            "(status = 'completed' AND home_score IS NOT NULL "
            "AND away_score IS NOT NULL AND winner_against_spread IS NOT NULL "
            "AND covering_side IS NOT NULL AND margin_bonus IS NOT NULL "
            "AND base_points IS NOT NULL)",
            name="settlement_requires_final_score",
        ),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} Week {self.week}>"

    @property
    def state(self):
        """Tagged lifecycle state (Scheduled, InProgress or Completed)"""
        return game_state_from_row(self.status, self.home_score, self.away_score)

    @property
    def is_final(self):
        return isinstance(self.state, Completed)

    @property
    def is_settled(self):
        return self.covering_side is not None

    @property
    def covering_team(self):
        """Team that covered the spread (None if unsettled or push)"""
        if self.covering_side == "home":
            return self.home_team
        if self.covering_side == "away":
            return self.away_team
        return None

    def calculate_settlement(self):
        """
        Grade this game against the spread from its current scores.

        Raises:
            PreconditionNotMet: game is not completed with both scores
        """
        state = self.state
        if not isinstance(state, Completed):
            raise PreconditionNotMet(
                self.id,
                f"status={self.status}, home_score={self.home_score}, "
                f"away_score={self.away_score}",
            )

        return calculate_settlement(
            state.home_score,
            state.away_score,
            self.spread,
            self.home_team,
            self.away_team,
        )

    def settlement_matches(self, settlement):
        """Check whether stored settlement fields equal a computed settlement"""
        return (
            self.covering_side == settlement.covering_side
            and self.winner_against_spread == settlement.winner
            and self.margin_bonus == settlement.margin_bonus
            and self.base_points == settlement.base_points
        )

    def apply_settlement(self, settlement):
        """Store settlement outputs. Returns True if anything changed."""
        if self.settlement_matches(settlement):
            return False

        self.covering_side = settlement.covering_side
        self.winner_against_spread = settlement.winner
        self.margin_bonus = settlement.margin_bonus
        self.base_points = settlement.base_points
        self.settled_at = datetime.now(timezone.utc)
        return True

    def clear_settlement(self):
        """Remove settlement outputs. Returns True if anything changed."""
        if not self.is_settled and self.winner_against_spread is None:
            return False

        self.covering_side = None
        self.winner_against_spread = None
        self.margin_bonus = None
        self.base_points = None
        self.settled_at = None
        return True

    def record_score(self, home_score, away_score, status):
        """
        Record a score/status update from the live feed or an admin.

        Settlement fields are left alone; SettlementService owns them.
        Returns True if anything changed.
        """
        if status not in GAME_STATUSES:
            raise ValueError(f"Unknown game status: {status!r}")
        for name, value in (("home_score", home_score), ("away_score", away_score)):
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

        changed = (
            self.home_score != home_score
            or self.away_score != away_score
            or self.status != status
        )
        if changed:
            self.home_score = home_score
            self.away_score = away_score
            self.status = status
        return changed

    def has_started(self):
        """Check if game has started"""
        if self.status != SCHEDULED:
            return True
        if not self.game_time:
            return False

        now_utc = datetime.now(timezone.utc)
        game_time = self.game_time

        # If game_time is timezone-naive, assume it's in UTC
        if game_time.tzinfo is None:
            game_time = game_time.replace(tzinfo=timezone.utc)

        return now_utc >= game_time

    def is_pickable(self):
        """Check if game is available for picks (hasn't started yet)"""
        return not self.has_started() and self.status != COMPLETED

    def get_picks_count(self):
        """Get count of picks for each team across user and anonymous picks"""
        from .pick import AnonymousPick, Pick

        home_picks = (
            self.picks.filter(
                Pick.selected_team == self.home_team, Pick.submitted.is_(True)
            ).count()
            + self.anonymous_picks.filter(
                AnonymousPick.selected_team == self.home_team
            ).count()
        )
        away_picks = (
            self.picks.filter(
                Pick.selected_team == self.away_team, Pick.submitted.is_(True)
            ).count()
            + self.anonymous_picks.filter(
                AnonymousPick.selected_team == self.away_team
            ).count()
        )
        total = home_picks + away_picks

        return {
            "home_team": home_picks,
            "away_team": away_picks,
            "total": total,
            "home_percentage": round(home_picks * 100.0 / total, 1) if total else 0.0,
            "away_percentage": round(away_picks * 100.0 / total, 1) if total else 0.0,
        }

    def to_dict(self, include_picks_count=False):
        """Convert game to dictionary for API responses"""
        data = {
            "id": self.id,
            "season": self.season,
            "week": self.week,
            "game_time": self.game_time.isoformat() if self.game_time else None,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "spread": float(self.spread) if self.spread is not None else None,
            "status": self.status,
            "is_final": self.is_final,
            "is_settled": self.is_settled,
            "winner_against_spread": self.winner_against_spread,
            "covering_side": self.covering_side,
            "margin_bonus": self.margin_bonus,
            "base_points": self.base_points,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "is_pickable": self.is_pickable(),
        }

        if include_picks_count:
            data["picks_count"] = self.get_picks_count()

        return data
