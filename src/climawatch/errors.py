class ClimaWatchError(Exception):
    """Base class for all pipeline and management errors."""


class UpstreamError(ClimaWatchError):
    """The weather/air-quality provider was unreachable or answered with garbage."""


class NoDataError(ClimaWatchError):
    """No measurements (or summaries) exist for the requested window."""


class DuplicateRuleError(ClimaWatchError):
    """A threshold with the same (city, limit, email) already exists."""


class NotFoundError(ClimaWatchError):
    """The threshold does not exist or is not owned by the caller."""


class DeliveryError(ClimaWatchError):
    """An alert notification could not be delivered."""
