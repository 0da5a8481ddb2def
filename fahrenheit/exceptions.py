"""Exception hierarchy for the gateway, runtime and memory layers.

All domain exceptions inherit from FahrenheitError, which carries an
error_code string that callers and audit logs can branch on. Policy denials
(promotion blocks) are never raised; they are returned as results.
"""


class FahrenheitError(Exception):
    """Base exception for all domain errors."""

    error_code: str = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ObservationValidationError(FahrenheitError):
    """Raised when an observation is missing a required partition key.

    Not retried: the caller must supply a valid partition.
    """

    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvocationError(FahrenheitError):
    """Raised when the agent capability fails for a session."""

    error_code = "invocation_failed"

    def __init__(
        self,
        message: str,
        session_key: str,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.session_key = session_key
        self.correlation_id = correlation_id


class CronJobNotFoundError(FahrenheitError):
    """Raised when a cron job id doesn't exist in the registry."""

    error_code = "cron_job_not_found"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Cron job not found: {job_id}")
        self.job_id = job_id
