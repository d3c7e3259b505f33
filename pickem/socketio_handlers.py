"""
SocketIO Event Handlers for Real-time Updates

Clients subscribe to a game room on the /scores namespace and receive
game_settled, game_update and pick_result events once a change has been
committed.
"""

import logging

from flask import request
from flask_login import current_user
from flask_socketio import disconnect, emit, join_room, leave_room

from pickem import db, socketio
from pickem.models import AnonymousPick, Game, Pick

logger = logging.getLogger(__name__)


@socketio.on("connect", namespace="/scores")
def on_connect():
    """Handle client connection to scores namespace"""
    user_id = current_user.id if current_user.is_authenticated else None
    logger.info(f"Client connected to /scores: {request.sid} (user: {user_id})")


@socketio.on("disconnect", namespace="/scores")
def on_disconnect(*args):
    """Handle client disconnection from scores namespace"""
    logger.info(f"Client disconnected from /scores: {request.sid}")


@socketio.on("subscribe_game", namespace="/scores")
def on_subscribe_game(data):
    """Subscribe to updates for a specific game"""
    game_id = (data or {}).get("game_id")
    if not game_id:
        return

    join_room(f"game_{game_id}")

    # Send current game state
    game = db.session.get(Game, game_id)
    if game:
        emit("game_update", game.to_dict())

    logger.debug(f"Client {request.sid} subscribed to game {game_id}")


@socketio.on("unsubscribe_game", namespace="/scores")
def on_unsubscribe_game(data):
    """Unsubscribe from updates for a specific game"""
    game_id = (data or {}).get("game_id")
    if game_id:
        leave_room(f"game_{game_id}")
        logger.debug(f"Client {request.sid} unsubscribed from game {game_id}")


@socketio.on("subscribe_user_picks", namespace="/scores")
def on_subscribe_user_picks(data=None):
    """Subscribe to updates for the current user's picks"""
    if not current_user.is_authenticated:
        disconnect()
        return

    join_room(f"user_picks_{current_user.id}")
    logger.debug(f"Client {request.sid} subscribed to picks of user {current_user.id}")


# Broadcast functions (called after settlement commits)
def _pick_owners(game):
    """(pick, user_id) for every pick whose owner can follow it"""
    owners = [(pick, pick.user_id) for pick in Pick.query.filter_by(game_id=game.id)]
    owners.extend(
        (pick, pick.assigned_user_id)
        for pick in AnonymousPick.query.filter_by(game_id=game.id, is_validated=True)
        if pick.assigned_user_id is not None
    )
    return owners


def broadcast_game_settled(game, report):
    """
    Broadcast a committed change to the game room and to pick owners.

    A settlement is sent as game_settled. Cleared settlements and score-only
    updates are sent as game_update.
    """
    try:
        payload = game.to_dict()
        payload["report"] = report.to_dict()
        event = "game_settled" if report.outcome == "settled" else "game_update"

        socketio.emit(event, payload, to=f"game_{game.id}", namespace="/scores")

        if report.total_picks_updated == 0:
            logger.info(f"Broadcasted {event} for game {game.id}")
            return

        owners = _pick_owners(game)
        for pick, user_id in owners:
            socketio.emit(
                "pick_result",
                {
                    "pick_id": pick.id,
                    "source": "anonymous" if isinstance(pick, AnonymousPick) else "authenticated",
                    "game_id": pick.game_id,
                    "result": pick.result,
                    "points_earned": pick.points_earned,
                },
                to=f"user_picks_{user_id}",
                namespace="/scores",
            )

        logger.info(f"Broadcasted {event} for game {game.id}, notified {len(owners)} picks")

    except Exception as e:
        # Settlement is committed; a failed notification must not undo it
        logger.error(f"Error broadcasting settlement for game {game.id}: {e}")
