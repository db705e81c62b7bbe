"""Errors raised while resolving and applying game commands."""


class GameError(Exception):
    """Base class for rejected game commands."""
    pass


class NotFoundError(GameError):
    """Raised when a room code does not match a live room."""

    def __init__(self, room_code: str):
        super().__init__(f"Game room not found: {room_code}")
        self.room_code = room_code


class UnauthorizedAction(GameError):
    """Raised when a connection issues a command its role does not allow."""
    pass


class ValidationError(GameError):
    """Raised when a payload is rejected before any room mutation."""
    pass


class DuplicateSubmission(GameError):
    """Raised when a player answers the current question a second time."""
    pass
