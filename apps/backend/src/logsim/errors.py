"""Error taxonomy shared by the engine components and the REST layer."""


class EngineError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400
    error_type: str = "engine_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(EngineError):
    """Malformed input rejected before anything is stored."""

    status_code = 400
    error_type = "validation_error"


class NotFoundError(EngineError):
    """The referenced scenario, schedule, chain or execution does not exist."""

    status_code = 404
    error_type = "not_found"


class ConflictError(EngineError):
    """The operation collides with something already running."""

    status_code = 409
    error_type = "conflict"
