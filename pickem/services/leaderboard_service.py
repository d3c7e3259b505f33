"""
Leaderboard aggregation over settled picks

Authenticated picks count for their owner. Validated anonymous picks count
for the user they were assigned to, unless that user also has an
authenticated pick on the same game (the authenticated pick wins).
"""

from pickem.models import AnonymousPick, Pick, User
from pickem.utils.cache_utils import cached_query


def _empty_row(user):
    return {
        "user_id": user.id,
        "display_name": user.name,
        "picks_made": 0,
        "wins": 0,
        "losses": 0,
        "pushes": 0,
        "lock_wins": 0,
        "lock_losses": 0,
        "total_points": 0,
    }


def _collect_picks(season, week=None):
    """Picks that count toward standings, keyed by (user_id, game_id)"""
    user_query = Pick.query.filter(Pick.season == season, Pick.submitted.is_(True))
    anon_query = AnonymousPick.query.filter(
        AnonymousPick.season == season,
        AnonymousPick.assigned_user_id.isnot(None),
        AnonymousPick.is_validated.is_(True),
    )
    if week is not None:
        user_query = user_query.filter(Pick.week == week)
        anon_query = anon_query.filter(AnonymousPick.week == week)

    counted = {}
    for pick in anon_query.all():
        counted[(pick.assigned_user_id, pick.game_id)] = pick
    for pick in user_query.all():
        counted[(pick.user_id, pick.game_id)] = pick

    return counted


def rank_rows(rows):
    """
    Sort rows by points and assign competition ranks (1, 1, 3, ...).
    Rows are dicts with a total_points key; a 'rank' key is added.
    """
    ordered = sorted(
        rows, key=lambda r: (-r["total_points"], -r["wins"], r["display_name"].lower())
    )

    previous_points = None
    rank = 0
    for position, row in enumerate(ordered, start=1):
        if row["total_points"] != previous_points:
            rank = position
            previous_points = row["total_points"]
        row["rank"] = rank

    return ordered


def build_leaderboard(season, week=None):
    """Aggregate standings without caching"""
    counted = _collect_picks(season, week)
    if not counted:
        return []

    user_ids = {user_id for user_id, _ in counted}
    users = {u.id: u for u in User.query.filter(User.id.in_(user_ids)).all()}

    rows = {}
    for (user_id, _), pick in counted.items():
        user = users.get(user_id)
        if user is None:
            continue
        row = rows.setdefault(user_id, _empty_row(user))
        row["picks_made"] += 1

        if pick.result == "win":
            row["wins"] += 1
            if pick.is_lock:
                row["lock_wins"] += 1
        elif pick.result == "loss":
            row["losses"] += 1
            if pick.is_lock:
                row["lock_losses"] += 1
        elif pick.result == "push":
            row["pushes"] += 1

        row["total_points"] += pick.points_earned or 0

    return rank_rows(list(rows.values()))


@cached_query("Leaderboard", timeout=300)
def get_weekly_leaderboard(season, week):
    return build_leaderboard(season, week)


@cached_query("Leaderboard", timeout=300)
def get_season_leaderboard(season):
    return build_leaderboard(season)


def get_weekly_winners(season, week):
    """Users tied for first in a week (empty until picks are settled)"""
    rows = get_weekly_leaderboard(season, week)
    return [row for row in rows if row["rank"] == 1 and row["total_points"] > 0]

