"""Engine exceptions."""


class GameError(Exception):
    """Base exception for the game engine."""


class DataIntegrityError(GameError):
    """Raised when a dataset is missing, unreadable or lacks required columns."""


class RuleViolation(GameError, ValueError):
    """Raised when a player action breaks a game rule. Safe to show to the player."""


class InvalidMoveError(RuleViolation):
    """Raised when a move target is not legal from the current space."""


class TurnOrderError(RuleViolation):
    """Raised when a player acts out of turn or after finishing."""


class RequirementError(RuleViolation):
    """Raised when a turn cannot end because space requirements are unmet."""


class PersistenceError(GameError):
    """Raised when a state write keeps failing after retries."""


class NotReadyError(GameError, TimeoutError):
    """Raised when waiting for a service to become ready times out."""
