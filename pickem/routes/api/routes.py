from functools import wraps

from flask import jsonify, request
from flask_login import current_user

from pickem import db, limiter
from pickem.exceptions import GameNotFound
from pickem.models import AdminAction, Game
from pickem.routes.api import bp
from pickem.services import leaderboard_service
from pickem.services.settlement_service import settlement_service
from pickem.utils.auth import admin_required
from pickem.utils.cache_utils import cached_route


def add_security_headers(f):
    """Add security headers to API responses"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        response = f(*args, **kwargs)
        if hasattr(response, "headers"):
            response.headers["X-Content-Type-Options"] = "nosniff"
            response.headers["X-Frame-Options"] = "DENY"
            response.headers["Cache-Control"] = (
                "no-store, no-cache, must-revalidate, max-age=0"
            )
        return response

    return decorated_function


def _get_game_or_404(game_id):
    game = db.session.get(Game, game_id)
    if game is None:
        raise GameNotFound(game_id)
    return game


def _optional_int(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer or null")
    return value


# Public game and leaderboard data


@bp.route("/games")
@cached_route(timeout=300, key_prefix="games")
def games():
    """Get games, optionally filtered by season and week"""
    season = request.args.get("season", type=int)
    week = request.args.get("week", type=int)

    query = Game.query
    if season is not None:
        query = query.filter(Game.season == season)
    if week is not None:
        query = query.filter(Game.week == week)

    games = query.order_by(Game.season, Game.week, Game.game_time, Game.id).all()
    return {"games": [game.to_dict() for game in games]}


@bp.route("/games/<int:game_id>")
def game_detail(game_id):
    """Get a single game with pick distribution"""
    game = _get_game_or_404(game_id)
    return jsonify(game.to_dict(include_picks_count=True))


@bp.route("/leaderboard/season/<int:season>")
def season_leaderboard(season):
    """Season standings"""
    return jsonify(
        {
            "season": season,
            "standings": leaderboard_service.get_season_leaderboard(season),
        }
    )


@bp.route("/leaderboard/weekly/<int:season>/<int:week>")
def weekly_leaderboard(season, week):
    """Weekly standings and winners"""
    return jsonify(
        {
            "season": season,
            "week": week,
            "standings": leaderboard_service.get_weekly_leaderboard(season, week),
            "winners": leaderboard_service.get_weekly_winners(season, week),
        }
    )


# Admin: score entry, settlement override and diagnostics


@bp.route("/admin/games/<int:game_id>/picks")
@admin_required
@add_security_headers
def game_picks(game_id):
    """All user and anonymous picks for a game"""
    game = _get_game_or_404(game_id)
    return jsonify(
        {
            "game": game.to_dict(),
            "picks": [pick.to_dict() for pick in game.picks.all()],
            "anonymous_picks": [pick.to_dict() for pick in game.anonymous_picks.all()],
        }
    )


@bp.route("/admin/games/<int:game_id>/score", methods=["POST"])
@limiter.limit("60 per minute")
@admin_required
@add_security_headers
def record_score(game_id):
    """Record a score/status update; settles the game once it is final"""
    data = request.get_json(silent=True) or {}

    status = data.get("status")
    if not status:
        return jsonify({"error": "status is required"}), 400

    report = settlement_service.record_game_state(
        game_id,
        _optional_int(data, "home_score"),
        _optional_int(data, "away_score"),
        status,
        admin_user=current_user._get_current_object(),
    )
    return jsonify(report.to_dict())


@bp.route("/admin/games/<int:game_id>/settle", methods=["POST"])
@limiter.limit("30 per minute")
@admin_required
@add_security_headers
def force_settle(game_id):
    """Force a re-settlement (e.g. after a score correction)"""
    data = request.get_json(silent=True) or {}

    report = settlement_service.force_resettle(
        game_id,
        admin_user=current_user._get_current_object(),
        reason=data.get("reason"),
    )
    return jsonify(report.to_dict())


@bp.route("/admin/settlements/sweep", methods=["POST"])
@limiter.limit("10 per minute")
@admin_required
@add_security_headers
def sweep_settlements():
    """Settle every completed game that still has unsettled data"""
    data = request.get_json(silent=True) or {}

    summary = settlement_service.settle_pending(
        season=_optional_int(data, "season"),
        week=_optional_int(data, "week"),
        include_settled=bool(data.get("include_settled", False)),
    )
    return jsonify(summary)


@bp.route("/admin/settlements/verify")
@admin_required
@add_security_headers
def verify_settlements():
    """List settlement invariant violations"""
    season = request.args.get("season", type=int)
    issues = settlement_service.verify(season=season)
    return jsonify({"ok": not issues, "issues": issues})


@bp.route("/admin/games/<int:game_id>/actions")
@admin_required
@add_security_headers
def game_actions(game_id):
    """Audit trail of admin actions on a game"""
    _get_game_or_404(game_id)
    actions = (
        AdminAction.query.filter_by(game_id=game_id)
        .order_by(AdminAction.created_at.desc(), AdminAction.id.desc())
        .all()
    )
    return jsonify([action.to_dict() for action in actions])


@bp.route("/admin/scheduler/status")
@admin_required
def scheduler_status():
    """Background sweep status"""
    from pickem.services.scheduler_service import scheduler_service

    return jsonify(scheduler_service.get_status())
