"""Error taxonomy for Spider League operations."""

from typing import Optional


class LeagueError(Exception):
    """Base class for every error the league surfaces to callers."""

    retryable = False
    verbatim = False
    user_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)
        self.message = message or self.user_message

    @property
    def display(self) -> str:
        """Text to show the player: rule violations verbatim, the rest generic."""
        return self.message if self.verbatim else self.user_message


class NotFound(LeagueError):
    """The requested entity does not exist."""

    verbatim = True
    user_message = "Not found."

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(LeagueError):
    """A challenge state machine guard was violated."""

    verbatim = True
    user_message = "That action is no longer possible."


class InvalidData(LeagueError):
    """Input broke a domain rule, e.g. challenging yourself."""

    verbatim = True
    user_message = "Invalid data provided."


class PermissionDenied(LeagueError):
    verbatim = True
    user_message = "You don't have permission to do that."


class Unauthenticated(LeagueError):
    verbatim = True
    user_message = "You need to register first."


class Conflict(LeagueError):
    """Another writer changed the document first."""

    user_message = "Someone else got there first. Please refresh and try again."


class Unavailable(LeagueError):
    """Transient store failure; safe to retry with backoff."""

    retryable = True
    user_message = "The league is temporarily unavailable. Please try again."


class QuotaExceeded(LeagueError):
    user_message = "Storage quota exceeded."
