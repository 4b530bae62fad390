"""
Exception hierarchy for the dashboard core.

Transport and decode failures raised by the data-access clients are converted
into these kinds so the core can treat them uniformly as "data absent".
"""


class AqDashError(Exception):
    """Base class for all dashboard errors."""


class NetworkError(AqDashError, ConnectionError):
    """The remote service could not be reached or answered with an error."""


class ParseError(AqDashError, ValueError):
    """A response or payload could not be decoded into the data model."""


class MalformedCoordinate(ParseError):
    """GPS string is not exactly two comma-separated floats."""


class AggregateUnavailable(AqDashError):
    """No usable hourly aggregate (missing, failed fetch or timed out)."""
