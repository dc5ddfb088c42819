"""Domain errors for the A/B testing engine."""


class ABTestError(Exception):
    """Base class; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExperimentValidationError(ABTestError):
    """Malformed test or variant definition. Nothing was persisted."""

    status_code = 422


class NotFoundError(ABTestError):
    status_code = 404


class InvalidStateError(ABTestError):
    """A stored test violates a structural invariant (e.g. no control variant)."""

    status_code = 500


class ExternalServiceFailure(ABTestError):
    """The suggestion API timed out or returned unusable output."""

    status_code = 502
