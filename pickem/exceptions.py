"""
Exception types for the settlement engine

InvalidInput is a caller bug and is never retried. PreconditionNotMet is an
expected race with score availability and is reported as a no-op.
PersistenceFailure and ConcurrencyConflict are safe to retry in full.
"""


class PickemError(Exception):
    """Base class for application errors"""


class InvalidInput(PickemError, ValueError):
    """Scoring was called with missing or malformed data"""


class PreconditionNotMet(PickemError):
    """Game is not completed with both final scores"""

    def __init__(self, game_id, reason):
        self.game_id = game_id
        self.reason = reason
        super().__init__(f"Game {game_id} cannot be settled: {reason}")


class PersistenceFailure(PickemError):
    """Storage write failed; the whole settlement was rolled back"""

    def __init__(self, game_id, message):
        self.game_id = game_id
        super().__init__(f"Settlement of game {game_id} failed to persist: {message}")


class ConcurrencyConflict(PickemError):
    """Another writer settled the same game concurrently"""

    def __init__(self, game_id, attempts=1):
        self.game_id = game_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent settlement detected for game {game_id} "
            f"after {attempts} attempt(s)"
        )


class GameNotFound(PickemError, LookupError):
    """No game with the requested id"""

    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")
