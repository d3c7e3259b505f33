"""
Spread Pick'em Settlement Service

Applies a completed game's against-the-spread outcome to the game row and to
every pick (user and anonymous) that references it. Every entry point (live
score updates, the sweep job, admin overrides, CLI repair) goes through here.

Guarantees:
    - one transaction per game: either every pick is settled or none is
    - a game that is not completed with both scores is left untouched
    - re-running on an already settled game writes nothing
    - a concurrent writer on the same game is detected through the game row's
      version counter and the whole operation is retried
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from pickem import db
from pickem.exceptions import (
    ConcurrencyConflict,
    GameNotFound,
    InvalidInput,
    PersistenceFailure,
    PreconditionNotMet,
)
from pickem.models import AdminAction, AnonymousPick, Game, Pick
from pickem.utils.cache_utils import invalidate_settlement_caches
from pickem.utils.game_state import COMPLETED, Completed
from pickem.utils.logging_config import ContextualLogger
from pickem.utils.performance import timer
from pickem.utils.scoring import Settlement, score_pick

logger = logging.getLogger(__name__)

SETTLED = "settled"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
CLEARED = "cleared"
RECORDED = "recorded"


@dataclass
class SettlementReport:
    game_id: int
    outcome: str
    settlement: Optional[Settlement] = None
    picks_updated: int = 0
    anonymous_picks_updated: int = 0
    reason: Optional[str] = None

    @property
    def changed(self):
        return self.outcome in (SETTLED, CLEARED, RECORDED)

    @property
    def total_picks_updated(self):
        return self.picks_updated + self.anonymous_picks_updated

    def to_dict(self):
        return {
            "game_id": self.game_id,
            "outcome": self.outcome,
            "settlement": self.settlement.to_dict() if self.settlement else None,
            "picks_updated": self.picks_updated,
            "anonymous_picks_updated": self.anonymous_picks_updated,
            "reason": self.reason,
        }


class SettlementService:
    """Settles games and their picks"""

    def __init__(self, max_retries=None, notify=True):
        self.max_retries = max_retries
        self.notify = notify

    def _retry_limit(self):
        if self.max_retries is not None:
            return self.max_retries
        return current_app.config.get("SETTLEMENT_MAX_RETRIES", 3)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @timer
    def settle_game(self, game_id):
        """
        Settle a game and all of its picks.

        Returns:
            SettlementReport with outcome 'settled', 'unchanged' or 'skipped'

        Raises:
            GameNotFound: no such game
            InvalidInput: game or pick data violates scoring preconditions
            ConcurrencyConflict: still conflicting after the retry limit
            PersistenceFailure: the transaction could not be committed
        """
        report = self._with_retries(game_id, self._settle_once)
        if report.changed:
            self._after_commit(report)
        return report

    @timer
    def record_game_state(self, game_id, home_score, away_score, status, admin_user=None):
        """
        Record a score/status update and reconcile settlement in the same
        transaction.

        A completed game with both scores is settled. Anything else has its
        settlement outputs and pick results cleared, so a correction that moves
        a game back out of 'completed' never leaves stale results behind.

        Raises:
            ValueError: unknown status or invalid score
        """

        def record_once(gid):
            return self._record_once(gid, home_score, away_score, status, admin_user)

        report = self._with_retries(game_id, record_once)
        if report.changed:
            self._after_commit(report)
        return report

    def force_resettle(self, game_id, admin_user=None, reason=None):
        """
        Manual override: audit the request, then run the normal settlement.

        This is the same write path as settle_game; a forced re-settlement of a
        correctly settled game is a no-op.
        """
        game = db.session.get(Game, game_id)
        if game is None:
            raise GameNotFound(game_id)

        AdminAction.log_resettle(admin_user, game, reason)
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise PersistenceFailure(game_id, str(e)) from e

        logger.info(
            f"Forced re-settlement of game {game_id} requested by "
            f"{admin_user.username if admin_user else 'cli'}"
        )
        return self.settle_game(game_id)

    @timer
    def settle_pending(self, season=None, week=None, include_settled=False):
        """
        Settle every completed game that still has unsettled data.

        Each game is its own unit of work. Conflicts, persistence failures and
        picks on a team that is not playing are logged and collected so one
        game never blocks the others.

        Args:
            season: Limit to a season
            week: Limit to a week
            include_settled: Also re-check games that look fully settled

        Returns:
            dict summary
        """
        query = Game.query.filter(
            Game.status == COMPLETED,
            Game.home_score.isnot(None),
            Game.away_score.isnot(None),
        )
        if season is not None:
            query = query.filter(Game.season == season)
        if week is not None:
            query = query.filter(Game.week == week)
        if not include_settled:
            query = query.filter(
                or_(
                    Game.covering_side.is_(None),
                    Game.picks.any(Pick.result.is_(None)),
                    Game.anonymous_picks.any(AnonymousPick.result.is_(None)),
                )
            )

        game_ids = [game_id for (game_id,) in query.with_entities(Game.id).order_by(Game.id)]
        db.session.rollback()

        summary = {
            "games_processed": 0,
            "games_settled": 0,
            "picks_updated": 0,
            "anonymous_picks_updated": 0,
            "errors": [],
        }

        for game_id in game_ids:
            summary["games_processed"] += 1
            try:
                report = self.settle_game(game_id)
            except (ConcurrencyConflict, PersistenceFailure) as e:
                logger.error(f"Sweep could not settle game {game_id}: {e}")
                summary["errors"].append({"game_id": game_id, "error": str(e)})
                continue
            except InvalidInput as e:
                logger.error(f"Sweep found invalid data on game {game_id}: {e}", exc_info=True)
                summary["errors"].append({"game_id": game_id, "error": str(e)})
                continue

            if report.outcome == SETTLED:
                summary["games_settled"] += 1
            summary["picks_updated"] += report.picks_updated
            summary["anonymous_picks_updated"] += report.anonymous_picks_updated

        if summary["games_processed"]:
            logger.info(
                f"Settlement sweep: {summary['games_settled']}/{summary['games_processed']} "
                f"games settled, {summary['picks_updated']} picks and "
                f"{summary['anonymous_picks_updated']} anonymous picks updated, "
                f"{len(summary['errors'])} errors"
            )
        return summary

    def verify(self, season=None):
        """
        Read-only audit of settlement invariants.

        Returns:
            list of {"game_id", "issue", "detail"} dicts
        """
        query = Game.query
        if season is not None:
            query = query.filter(Game.season == season)

        issues = []
        for game in query.order_by(Game.season, Game.week, Game.id).all():
            issues.extend(self._verify_game(game))

        db.session.rollback()
        return issues

    def repair(self, season=None):
        """Re-run settlement for every game that verify() flags"""
        game_ids = sorted({issue["game_id"] for issue in self.verify(season)})

        reports = []
        errors = []
        for game_id in game_ids:
            game = db.session.get(Game, game_id)
            try:
                if game.is_final:
                    reports.append(self.settle_game(game_id))
                else:
                    reports.append(
                        self.record_game_state(
                            game_id, game.home_score, game.away_score, game.status
                        )
                    )
            except (ConcurrencyConflict, PersistenceFailure, InvalidInput) as e:
                logger.error(f"Repair could not fix game {game_id}: {e}")
                errors.append({"game_id": game_id, "error": str(e)})

        return reports, errors

    # ------------------------------------------------------------------
    # Transaction bodies
    # ------------------------------------------------------------------

    def _with_retries(self, game_id, operation):
        limit = max(1, self._retry_limit())
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation(game_id)
            except ConcurrencyConflict:
                if attempt >= limit:
                    logger.error(
                        f"Giving up on game {game_id} after {attempt} conflicting attempts"
                    )
                    raise ConcurrencyConflict(game_id, attempt)
                logger.warning(
                    f"Concurrent settlement on game {game_id}, retrying "
                    f"({attempt}/{limit})"
                )

    def _lock_game(self, game_id):
        """Load the game row with a row lock held until commit/rollback"""
        game = (
            Game.query.filter_by(id=game_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if game is None:
            raise GameNotFound(game_id)
        return game

    def _settle_once(self, game_id):
        log = ContextualLogger(__name__, {"game_id": game_id})

        try:
            game = self._lock_game(game_id)

            try:
                settlement = game.calculate_settlement()
            except PreconditionNotMet as e:
                db.session.rollback()
                log.debug(f"Not settling yet: {e.reason}")
                return SettlementReport(game_id, SKIPPED, reason=e.reason)

            game_changed, picks_updated, anon_updated = self._apply_settlement(
                game, settlement
            )

            if not (game_changed or picks_updated or anon_updated):
                db.session.rollback()
                log.debug("Settlement already current")
                return SettlementReport(game_id, UNCHANGED, settlement)

            self._commit(game, game_changed)

        except StaleDataError as e:
            db.session.rollback()
            raise ConcurrencyConflict(game_id) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            log.error(f"Settlement rolled back: {e}")
            raise PersistenceFailure(game_id, str(e)) from e
        except Exception:
            db.session.rollback()
            raise

        log.info(
            f"Settled: winner={settlement.winner} bonus={settlement.margin_bonus} "
            f"picks={picks_updated} anonymous={anon_updated}"
        )
        return SettlementReport(
            game_id,
            SETTLED,
            settlement,
            picks_updated=picks_updated,
            anonymous_picks_updated=anon_updated,
        )

    def _record_once(self, game_id, home_score, away_score, status, admin_user):
        log = ContextualLogger(__name__, {"game_id": game_id})

        try:
            game = self._lock_game(game_id)
            old_values = {
                "home_score": game.home_score,
                "away_score": game.away_score,
                "status": game.status,
            }

            score_changed = game.record_score(home_score, away_score, status)

            settlement = None
            if isinstance(game.state, Completed):
                settlement = game.calculate_settlement()
                game_changed, picks_updated, anon_updated = self._apply_settlement(
                    game, settlement
                )
                outcome = SETTLED
            else:
                game_changed, picks_updated, anon_updated = self._clear_settlement(game)
                outcome = CLEARED

            settlement_changed = game_changed or picks_updated or anon_updated
            if not (score_changed or settlement_changed):
                db.session.rollback()
                return SettlementReport(
                    game_id,
                    UNCHANGED if settlement else SKIPPED,
                    settlement,
                    reason=None if settlement else f"status={game.status}",
                )

            if not settlement_changed:
                outcome = RECORDED

            if admin_user is not None:
                AdminAction.log_score_entry(admin_user, game, old_values)

            self._commit(game, game_changed or score_changed)

        except StaleDataError as e:
            db.session.rollback()
            raise ConcurrencyConflict(game_id) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            log.error(f"Score update rolled back: {e}")
            raise PersistenceFailure(game_id, str(e)) from e
        except Exception:
            db.session.rollback()
            raise

        log.info(
            f"Recorded {away_score}-{home_score} ({status}): {outcome}, "
            f"picks={picks_updated} anonymous={anon_updated}"
        )
        return SettlementReport(
            game_id,
            outcome,
            settlement,
            picks_updated=picks_updated,
            anonymous_picks_updated=anon_updated,
        )

    def _apply_settlement(self, game, settlement):
        game_changed = game.apply_settlement(settlement)

        picks_updated = 0
        for pick in game.picks.all():
            if pick.apply_settlement(settlement):
                picks_updated += 1

        anon_updated = 0
        for pick in game.anonymous_picks.all():
            if pick.apply_settlement(settlement):
                anon_updated += 1

        return game_changed, picks_updated, anon_updated

    def _clear_settlement(self, game):
        game_changed = game.clear_settlement()

        picks_cleared = 0
        for pick in game.picks.all():
            if pick.clear_result():
                picks_cleared += 1

        anon_cleared = 0
        for pick in game.anonymous_picks.all():
            if pick.clear_result():
                anon_cleared += 1

        return game_changed, picks_cleared, anon_cleared

    def _commit(self, game, game_row_changed):
        if not game_row_changed:
            # Touch the game row so its version counter guards the pick writes
            game.updated_at = datetime.now(timezone.utc)
        db.session.commit()

    def _after_commit(self, report):
        """Cache invalidation and notifications, outside the transaction"""
        invalidate_settlement_caches(report.game_id)

        if self.notify:
            from pickem.socketio_handlers import broadcast_game_settled

            game = db.session.get(Game, report.game_id)
            if game is not None:
                broadcast_game_settled(game, report)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _verify_game(self, game):
        issues = []

        def flag(issue, detail):
            issues.append({"game_id": game.id, "issue": issue, "detail": detail})

        picks = game.picks.all() + game.anonymous_picks.all()

        if not game.is_final:
            if game.is_settled:
                flag("settled_without_final_score", f"status={game.status}")
            settled = [p for p in picks if p.is_settled]
            if settled:
                flag(
                    "picks_settled_before_completion",
                    f"{len(settled)} picks carry results while status={game.status}",
                )
            return issues

        try:
            settlement = game.calculate_settlement()
        except InvalidInput as e:
            flag("invalid_game_data", str(e))
            return issues

        if not game.is_settled:
            flag("unsettled_completed_game", "completed with scores but no settlement")
        elif not game.settlement_matches(settlement):
            flag(
                "stale_settlement",
                f"stored {game.winner_against_spread}/{game.margin_bonus}, "
                f"expected {settlement.winner}/{settlement.margin_bonus}",
            )

        for pick in picks:
            kind = "anonymous_pick" if isinstance(pick, AnonymousPick) else "pick"
            try:
                outcome = score_pick(settlement, pick.selected_team, bool(pick.is_lock))
            except InvalidInput as e:
                flag("invalid_selected_team", f"{kind} {pick.id}: {e}")
                continue

            if pick.result is None:
                flag("unsettled_pick", f"{kind} {pick.id} has no result")
            elif pick.result != outcome.result or pick.points_earned != outcome.points:
                flag(
                    "incorrect_pick_result",
                    f"{kind} {pick.id}: stored {pick.result}/{pick.points_earned}, "
                    f"expected {outcome.result}/{outcome.points}",
                )

        return issues


settlement_service = SettlementService()
