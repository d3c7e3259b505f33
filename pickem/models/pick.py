from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from pickem import db
from pickem.utils.scoring import score_pick


class SettleablePickMixin:
    """Columns and settlement behaviour shared by user and anonymous picks"""

    id = db.Column(db.Integer, primary_key=True)

    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)

    # Pick details
    selected_team = db.Column(db.String(100), nullable=False)
    is_lock = db.Column(db.Boolean, nullable=False, default=False)

    # Results (written by SettlementService after game completion)
    result = db.Column(db.String(10))
    points_earned = db.Column(db.Integer)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @declared_attr
    def game_id(cls):
        return db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)

    @property
    def is_settled(self):
        return self.result is not None

    def apply_settlement(self, settlement):
        """Write result and points for a settled game. Returns True if changed."""
        outcome = score_pick(settlement, self.selected_team, bool(self.is_lock))
        if self.result == outcome.result and self.points_earned == outcome.points:
            return False

        self.result = outcome.result
        self.points_earned = outcome.points
        return True

    def clear_result(self):
        """Reset to unsettled. Returns True if changed."""
        if self.result is None and self.points_earned is None:
            return False

        self.result = None
        self.points_earned = None
        return True

    def _base_dict(self):
        return {
            "id": self.id,
            "game_id": self.game_id,
            "season": self.season,
            "week": self.week,
            "selected_team": self.selected_team,
            "is_lock": self.is_lock,
            "result": self.result,
            "points_earned": self.points_earned,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Pick(SettleablePickMixin, db.Model):
    __tablename__ = "picks"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    submitted = db.Column(db.Boolean, nullable=False, default=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "game_id", name="unique_user_game_pick"),
        db.Index("idx_pick_game", "game_id"),
        db.Index("idx_pick_user_season_week", "user_id", "season", "week"),
        # One Lock per user per week
        db.Index(
            "uq_pick_lock_per_week",
            "user_id",
            "season",
            "week",
            unique=True,
            sqlite_where=db.text("is_lock"),
            postgresql_where=db.text("is_lock"),
        ),
        db.CheckConstraint(
            "result IS NULL OR result IN ('win', 'loss', 'push')", name="valid_pick_result"
        ),
        db.CheckConstraint(
            "(result IS NULL) = (points_earned IS NULL)", name="pick_result_has_points"
        ),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} game_id={self.game_id} team={self.selected_team}>"

    @staticmethod
    def create_pick(user_id, game_id, selected_team, is_lock=False):
        """Create a new pick with validation. Returns (pick, message)."""
        from .game import Game

        game = db.session.get(Game, game_id)
        if not game:
            return None, "Game not found"

        if selected_team not in (game.home_team, game.away_team):
            return None, f"{selected_team} is not playing in this game"

        if not game.is_pickable():
            return None, "Game has already started"

        existing = Pick.query.filter_by(user_id=user_id, game_id=game_id).first()
        if existing:
            return None, "Pick already exists for this game"

        if is_lock:
            existing_lock = Pick.query.filter_by(
                user_id=user_id, season=game.season, week=game.week, is_lock=True
            ).first()
            if existing_lock:
                return None, f"Lock already used in week {game.week}"

        pick = Pick(
            user_id=user_id,
            game_id=game_id,
            season=game.season,
            week=game.week,
            selected_team=selected_team,
            is_lock=is_lock,
        )
        pick.game = game

        db.session.add(pick)
        return pick, "Pick created successfully"

    def to_dict(self):
        data = self._base_dict()
        data["user_id"] = self.user_id
        data["submitted"] = self.submitted
        data["source"] = "authenticated"
        return data


class AnonymousPick(SettleablePickMixin, db.Model):
    """Pick submitted without an account, optionally linked to a user later"""

    __tablename__ = "anonymous_picks"

    email = db.Column(db.String(120), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    is_validated = db.Column(db.Boolean, nullable=False, default=False)
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assigned_at = db.Column(db.DateTime)

    assigned_user = db.relationship("User", backref=db.backref("anonymous_picks", lazy="dynamic"))

    __table_args__ = (
        db.UniqueConstraint("email", "game_id", name="unique_anonymous_email_game_pick"),
        db.Index("idx_anonymous_pick_game", "game_id"),
        db.Index("idx_anonymous_pick_email_week", "email", "season", "week"),
        db.Index(
            "uq_anonymous_pick_lock_per_week",
            "email",
            "season",
            "week",
            unique=True,
            sqlite_where=db.text("is_lock"),
            postgresql_where=db.text("is_lock"),
        ),
        db.CheckConstraint(
            "result IS NULL OR result IN ('win', 'loss', 'push')",
            name="valid_anonymous_pick_result",
        ),
        db.CheckConstraint(
            "(result IS NULL) = (points_earned IS NULL)",
            name="anonymous_pick_result_has_points",
        ),
    )

    def __repr__(self):
        return f"<AnonymousPick email={self.email} game_id={self.game_id} team={self.selected_team}>"

    def assign_to_user(self, user):
        """Link this pick to a registered user"""
        self.assigned_user_id = user.id
        self.assigned_at = datetime.now(timezone.utc)
        self.is_validated = True

    def to_dict(self):
        data = self._base_dict()
        data["email"] = self.email
        data["name"] = self.name
        data["is_validated"] = self.is_validated
        data["assigned_user_id"] = self.assigned_user_id
        data["source"] = "anonymous"
        return data
