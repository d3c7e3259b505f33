from datetime import datetime, timezone

from pickem import db


class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)

    # Null when the action came from the CLI
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # 'record_score', 'force_resettle', ...
    action_type = db.Column(db.String(50), nullable=False)
    action_description = db.Column(db.String(500), nullable=False)

    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=True)

    # Additional context data (JSON)
    action_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    admin_user = db.relationship("User", backref="admin_actions_performed")
    game = db.relationship(
        "Game", backref=db.backref("admin_actions", cascade="all, delete-orphan")
    )

    __table_args__ = (
        db.Index("idx_admin_action_admin", "admin_user_id"),
        db.Index("idx_admin_action_game", "game_id"),
        db.Index("idx_admin_action_type", "action_type"),
        db.Index("idx_admin_action_created", "created_at"),
    )

    def __repr__(self):
        return f'<AdminAction {self.action_type} by {self.admin_user.username if self.admin_user else "cli"} on game {self.game_id}>'

    @staticmethod
    def log_action(
        action_type, description, admin_user_id=None, game_id=None, action_metadata=None
    ):
        """Log an admin action"""
        action = AdminAction(
            admin_user_id=admin_user_id,
            action_type=action_type,
            action_description=description,
            game_id=game_id,
            action_metadata=action_metadata or {},
        )

        db.session.add(action)
        return action

    @staticmethod
    def log_score_entry(admin_user, game, old_values):
        """Convenience method for logging a manual score/status entry"""
        description = (
            f"Set {game.away_team} @ {game.home_team} to "
            f"{game.away_score}-{game.home_score} ({game.status})"
        )

        return AdminAction.log_action(
            action_type="record_score",
            description=description,
            admin_user_id=admin_user.id if admin_user else None,
            game_id=game.id,
            action_metadata={
                "old": old_values,
                "new": {
                    "home_score": game.home_score,
                    "away_score": game.away_score,
                    "status": game.status,
                },
            },
        )

    @staticmethod
    def log_resettle(admin_user, game, reason=None):
        """Convenience method for logging a forced re-settlement"""
        description = f"Forced re-settlement of {game.away_team} @ {game.home_team}"
        if reason:
            description = f"{description}: {reason}"

        return AdminAction.log_action(
            action_type="force_resettle",
            description=description[:500],
            admin_user_id=admin_user.id if admin_user else None,
            game_id=game.id,
            action_metadata={
                "reason": reason,
                "previous_winner": game.winner_against_spread,
                "previous_margin_bonus": game.margin_bonus,
            },
        )

    def to_dict(self):
        """Convert action to dictionary for API responses"""
        return {
            "id": self.id,
            "admin_user": self.admin_user.username if self.admin_user else None,
            "action_type": self.action_type,
            "action_description": self.action_description,
            "game_id": self.game_id,
            "action_metadata": self.action_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
