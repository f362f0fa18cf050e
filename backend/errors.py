"""Error taxonomy for the session and sync subsystem.

Every failure the client can observe maps onto one of these. Boundary
operations (``AuthGateway``, ``FlashcardSyncRepository``) recover from them
and return typed results, so none should reach the UI unhandled.
"""


class FlashcardsError(Exception):
    """Base exception for all flashcard client errors."""


class StorageUnavailable(FlashcardsError):
    """Raised when on-device storage cannot be read or written."""


class AuthCancelled(FlashcardsError):
    """Raised when the user abandons an OAuth handshake."""


class AuthServiceUnreachable(FlashcardsError):
    """Raised when the remote auth service cannot produce a login URL."""


class NetworkUnavailable(FlashcardsError):
    """Raised when the remote flashcard service cannot be reached or errors out."""


class NotFound(FlashcardsError):
    """Raised when a requested flashcard set does not exist."""


class Unauthorized(FlashcardsError):
    """Raised when the remote service rejects the session token."""

    user_message = "Session expired, please sign in again."


class RateLimited(FlashcardsError):
    """Raised when the generation endpoint refuses a request for rate limiting."""

    def __init__(self, message: str, try_again_at: int, number_of_generations: int) -> None:
        super().__init__(message)
        self.try_again_at = try_again_at  # epoch millis
        self.number_of_generations = number_of_generations
