"""Error taxonomy shared by the engine, the session manager and the API."""


class GameError(Exception):
    status_code = 500
    code = "GAME_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GameError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InsufficientFundsError(ValidationError):
    code = "INSUFFICIENT_FUNDS"


class NotFoundError(GameError):
    status_code = 404
    code = "SESSION_NOT_FOUND"


class ForbiddenError(GameError):
    status_code = 403
    code = "FORBIDDEN"


class StateConflictError(GameError):
    status_code = 409
    code = "STATE_CONFLICT"


class SessionAlreadyCompletedError(StateConflictError):
    code = "SESSION_ALREADY_COMPLETED"


class NotCashoutEligibleError(StateConflictError):
    code = "NOT_CASHOUT_ELIGIBLE"


class CellAlreadyRevealedError(StateConflictError):
    code = "CELL_ALREADY_REVEALED"


class InternalError(GameError):
    status_code = 500
    code = "INTERNAL_ERROR"
