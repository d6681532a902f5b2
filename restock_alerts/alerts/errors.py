"""Exception types raised by the alert pipeline and scheduler."""


class AlertError(Exception):
    """Base class for alert pipeline errors."""


class AlertValidationError(AlertError):
    """A signal violated one or more validation rules.

    Nothing is written when this is raised; ``errors`` lists every violated
    rule, not just the first.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Alert validation failed: {', '.join(self.errors)}")


class AlertRateLimitError(AlertError):
    """The user has reached the hourly alert cap."""

    def __init__(self, user_id: str, count: int, limit: int):
        self.user_id = user_id
        self.count = count
        self.limit = limit
        super().__init__(
            f"Rate limit exceeded: user has received {count} alerts "
            f"in the last hour (limit: {limit})"
        )


class NotFoundError(AlertError):
    """A referenced user, product, watch or alert does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DeliveryError(AlertError):
    """Delivery failed on every requested channel."""

    def __init__(self, message: str, failed_channels: list[str] | None = None):
        self.failed_channels = failed_channels or []
        super().__init__(message)


class SchedulerJobError(Exception):
    """Wraps an exception raised by a scheduled job body."""

    def __init__(self, job_name: str, cause: BaseException):
        self.job_name = job_name
        self.cause = cause
        super().__init__(f"Job {job_name} failed: {cause}")


class JobAlreadyRegisteredError(ValueError):
    """A job with the same name is already registered."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"Job already registered: {job_name}")
