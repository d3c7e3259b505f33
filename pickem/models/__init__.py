from pickem import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .game import Game
from .pick import AnonymousPick, Pick
from .user import User

__all__ = [
    "User",
    "Game",
    "Pick",
    "AnonymousPick",
    "AdminAction",
]
