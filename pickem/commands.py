"""
Spread Pick'em management commands

Registered on the Flask CLI (``flask --app run <group> <command>``) and
exposed through manage.py. Every command that changes results goes through
SettlementService; there are no one-off fix scripts.
"""

import logging
from decimal import Decimal

import click
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pickem import db
from pickem.exceptions import PickemError
from pickem.models import AnonymousPick, Game, Pick, User
from pickem.services import leaderboard_service
from pickem.services.settlement_service import settlement_service
from pickem.utils.game_state import COMPLETED, GAME_STATUSES

logger = logging.getLogger(__name__)


def _echo_report(report):
    icon = "✅" if report.outcome in ("settled", "cleared", "recorded") else "⚪"
    line = f"{icon} Game {report.game_id}: {report.outcome}"
    if report.settlement:
        s = report.settlement
        line += f" - winner {s.winner}, margin bonus {s.margin_bonus}"
    if report.total_picks_updated:
        line += (
            f" ({report.picks_updated} picks, "
            f"{report.anonymous_picks_updated} anonymous picks updated)"
        )
    if report.reason:
        line += f" [{report.reason}]"
    click.echo(line)


# Game Commands
@click.group()
def game():
    """Game management commands"""
    pass


@game.command("create")
@click.argument("season", type=int)
@click.argument("week", type=int)
@click.argument("away_team")
@click.argument("home_team")
@click.option("--spread", type=float, default=0.0, help="Home spread (negative = home favored)")
@click.option(
    "--game-time",
    type=click.DateTime(formats=["%Y-%m-%d %H:%M", "%Y-%m-%d"]),
    help="Kickoff (UTC)",
)
@with_appcontext
def create_game(season, week, away_team, home_team, spread, game_time):
    """Create a game"""
    try:
        new_game = Game(
            season=season,
            week=week,
            away_team=away_team,
            home_team=home_team,
            spread=Decimal(str(spread)),
            game_time=game_time,
        )
        db.session.add(new_game)
        db.session.commit()
        click.echo(
            f"✅ Created game {new_game.id}: {away_team} @ {home_team} "
            f"({home_team} {spread:+g}), week {week}"
        )
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Invalid game: {e.orig}")
        logger.error(f"Game creation failed - integrity error: {e}")


@game.command("set-score")
@click.argument("game_id", type=int)
@click.argument("home_score", type=int)
@click.argument("away_score", type=int)
@click.option(
    "--status",
    type=click.Choice(GAME_STATUSES),
    default=COMPLETED,
    show_default=True,
    help="Game status to record",
)
@with_appcontext
def set_score(game_id, home_score, away_score, status):
    """Record a score; completed games are settled immediately"""
    try:
        report = settlement_service.record_game_state(
            game_id, home_score, away_score, status
        )
        _echo_report(report)
    except (PickemError, ValueError) as e:
        click.echo(f"❌ {e}")
        logger.error(f"Score update for game {game_id} failed: {e}")


@game.command("show")
@click.argument("game_id", type=int)
@with_appcontext
def show_game(game_id):
    """Show a game and its picks"""
    g = db.session.get(Game, game_id)
    if not g:
        click.echo(f"❌ Game {game_id} not found!")
        return

    score = (
        f"{g.away_score}-{g.home_score}"
        if g.home_score is not None and g.away_score is not None
        else "no score"
    )
    click.echo(
        f"Game {g.id} (season {g.season}, week {g.week}): {g.away_team} @ {g.home_team} "
        f"{score}, spread {g.spread}, {g.status}"
    )
    if g.is_settled:
        click.echo(
            f"  ATS winner: {g.winner_against_spread} "
            f"(bonus {g.margin_bonus}, base {g.base_points})"
        )
    else:
        click.echo("  Not settled")

    for pick in g.picks.all() + g.anonymous_picks.all():
        owner = (
            f"user {pick.user_id}" if isinstance(pick, Pick) else f"anon {pick.email}"
        )
        lock = " 🔒" if pick.is_lock else ""
        click.echo(
            f"  {owner}: {pick.selected_team}{lock} -> {pick.result or 'pending'} "
            f"({pick.points_earned if pick.points_earned is not None else '-'} pts)"
        )


# Settlement Commands
@click.group()
def settle():
    """Settlement commands"""
    pass


@settle.command("game")
@click.argument("game_id", type=int)
@click.option("--reason", help="Why the re-settlement is needed")
@with_appcontext
def settle_game(game_id, reason):
    """Force re-settlement of a game (manual override)"""
    try:
        report = settlement_service.force_resettle(game_id, reason=reason)
        _echo_report(report)
    except PickemError as e:
        click.echo(f"❌ {e}")
        logger.error(f"Forced settlement of game {game_id} failed: {e}")


@settle.command("pending")
@click.option("--season", type=int, help="Limit to a season")
@click.option("--week", type=int, help="Limit to a week")
@click.option(
    "--all", "include_settled", is_flag=True, help="Re-check settled games too"
)
@with_appcontext
def settle_pending(season, week, include_settled):
    """Settle completed games that still have unsettled data"""
    summary = settlement_service.settle_pending(
        season=season, week=week, include_settled=include_settled
    )
    click.echo(
        f"✅ Processed {summary['games_processed']} games: "
        f"{summary['games_settled']} settled, {summary['picks_updated']} picks and "
        f"{summary['anonymous_picks_updated']} anonymous picks updated"
    )
    for error in summary["errors"]:
        click.echo(f"❌ Game {error['game_id']}: {error['error']}")


@settle.command("verify")
@click.option("--season", type=int, help="Limit to a season")
@with_appcontext
def verify(season):
    """Audit settlement invariants (exit code 1 if any are violated)"""
    issues = settlement_service.verify(season=season)
    if not issues:
        click.echo("✅ All settlements are consistent")
        return

    for issue in issues:
        click.echo(f"⚠️  Game {issue['game_id']}: {issue['issue']} - {issue['detail']}")
    click.echo(f"❌ {len(issues)} issue(s) found. Run 'settle repair' to fix.")
    raise SystemExit(1)


@settle.command("repair")
@click.option("--season", type=int, help="Limit to a season")
@with_appcontext
def repair(season):
    """Re-run settlement for every game with issues"""
    reports, errors = settlement_service.repair(season=season)
    if not reports and not errors:
        click.echo("✅ Nothing to repair")
        return

    for report in reports:
        _echo_report(report)
    for error in errors:
        click.echo(f"❌ Game {error['game_id']}: {error['error']}")


# Leaderboard Commands
@click.group()
def leaderboard():
    """Leaderboard commands"""
    pass


def _echo_standings(rows):
    if not rows:
        click.echo("No settled picks yet.")
        return
    for row in rows:
        click.echo(
            f"  {row['rank']:>3}. {row['display_name']:<20} {row['total_points']:>5} pts "
            f"({row['wins']}-{row['losses']}-{row['pushes']}, "
            f"locks {row['lock_wins']}-{row['lock_losses']})"
        )


@leaderboard.command("weekly")
@click.argument("season", type=int)
@click.argument("week", type=int)
@with_appcontext
def weekly(season, week):
    """Show weekly standings"""
    click.echo(f"Week {week}, {season}:")
    _echo_standings(leaderboard_service.get_weekly_leaderboard(season, week))


@leaderboard.command("season")
@click.argument("season", type=int)
@with_appcontext
def season_standings(season):
    """Show season standings"""
    click.echo(f"Season {season}:")
    _echo_standings(leaderboard_service.get_season_leaderboard(season))


# User Management Commands
@click.group()
def user():
    """User management commands"""
    pass


@user.command("create-admin")
@click.argument("username")
@click.argument("email")
@click.option("--display-name", help="Display name")
@with_appcontext
def create_admin(username, email, display_name):
    """Create an admin user and print its API token"""
    existing = User.query.filter(
        (User.username == username) | (User.email == email)
    ).first()
    if existing:
        click.echo(f"❌ User with username '{username}' or email '{email}' already exists!")
        return

    try:
        admin = User(
            username=username, email=email, display_name=display_name, is_admin=True
        )
        token = admin.generate_api_token()
        db.session.add(admin)
        db.session.commit()
        click.echo(f"✅ Created admin user '{username}' ({email})")
        click.echo(f"   API token: {token}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating user: {str(e)}")
        logger.error(f"Admin creation failed - SQL error: {e}")


@user.command("rotate-token")
@click.argument("username")
@with_appcontext
def rotate_token(username):
    """Issue a new API token for a user"""
    u = User.query.filter_by(username=username).first()
    if not u:
        click.echo(f"❌ User '{username}' not found!")
        return

    token = u.generate_api_token()
    db.session.commit()
    click.echo(f"✅ New API token for '{username}': {token}")


@user.command("assign-anonymous")
@click.argument("email")
@click.argument("username")
@with_appcontext
def assign_anonymous(email, username):
    """Link every anonymous pick submitted with EMAIL to USERNAME"""
    u = User.query.filter_by(username=username).first()
    if not u:
        click.echo(f"❌ User '{username}' not found!")
        return

    picks = AnonymousPick.query.filter_by(email=email).all()
    for pick in picks:
        pick.assign_to_user(u)
    db.session.commit()
    click.echo(f"✅ Assigned {len(picks)} anonymous picks from {email} to {username}")


# Database Commands
@click.group("db-cmd")
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command("init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    db.create_all()
    click.echo("✅ Database tables created successfully!")


@db_cmd.command("reset")
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    db.drop_all()
    db.create_all()
    click.echo("✅ Database reset successfully!")


@click.command("status")
@with_appcontext
def status():
    """Show settlement status"""
    total_games = Game.query.count()
    completed = Game.query.filter(Game.status == COMPLETED).count()
    settled = Game.query.filter(Game.covering_side.isnot(None)).count()
    pending_picks = (
        Pick.query.join(Game)
        .filter(Game.status == COMPLETED, Pick.result.is_(None))
        .count()
    )
    pending_anonymous = (
        AnonymousPick.query.join(Game)
        .filter(Game.status == COMPLETED, AnonymousPick.result.is_(None))
        .count()
    )

    click.echo(f"🏈 Games: {total_games} ({completed} completed, {settled} settled)")
    click.echo(f"📋 Unsettled picks on completed games: {pending_picks}")
    click.echo(f"📋 Unsettled anonymous picks on completed games: {pending_anonymous}")


def register_commands(app):
    """Attach CLI groups to the Flask app"""
    for command in (game, settle, leaderboard, user, db_cmd, status):
        app.cli.add_command(command)
