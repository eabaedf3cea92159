"""Error taxonomy for game state handling.

Only ValidationError, ConflictError, NotFoundError and TransactionError ever
reach a caller. CollaboratorError stays inside the compaction task; duplicate
world shards and failed compaction recoveries are logged, not raised.
"""


class GameStateError(Exception):
    """Base class for errors rendered as {"error": {...}} responses."""

    status: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self, message: str, details: list[str] | None = None, code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []
        if code:
            self.code = code

    def to_dict(self) -> dict:
        body: dict = {"message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(GameStateError):
    """Malformed payload. Rejected before anything is written."""

    status = 400
    code = "INVALID_PAYLOAD"


class NotFoundError(GameStateError):
    status = 404
    code = "GAME_STATE_NOT_FOUND"


class ConflictError(GameStateError):
    """Two creators raced on the same (player, theme) key. Safe to retry."""

    status = 409
    code = "GAME_STATE_CONFLICT"


class TransactionError(GameStateError):
    """The atomic commit failed and was rolled back. Safe to retry."""

    status = 500
    code = "GAME_STATE_SAVE_TRANSACTION_ERROR"


class UsageLimitError(GameStateError):
    status = 429
    code = "API_LIMIT_EXCEEDED"


class ModelNotAllowedError(GameStateError):
    status = 403
    code = "MODEL_NOT_ALLOWED"


class CollaboratorError(RuntimeError):
    """Summarizer or lore evolver was unavailable or returned garbage."""
