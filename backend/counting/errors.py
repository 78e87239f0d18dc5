"""
Counting error taxonomy.

Services raise these; routers translate them to HTTP responses using
`http_status`. They subclass ValueError so callers that already guard
service calls with `except ValueError` keep working.
"""


class CountingError(ValueError):
    code = "internal"
    http_status = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class Forbidden(CountingError):
    """Capability/role check failed."""

    code = "forbidden"
    http_status = 403


class ValidationFailed(CountingError):
    """Out-of-range or malformed field value."""

    code = "validation"
    http_status = 422


class NotFound(CountingError):
    code = "not_found"
    http_status = 404


class NotDistributed(CountingError):
    """Stock sync attempted before the slot was distributed."""

    code = "not_distributed"
    http_status = 409


class AlreadySubmitted(CountingError):
    code = "already_submitted"
    http_status = 409


class NoData(CountingError):
    """Submission attempted for a slot with no count lines."""

    code = "no_data"
    http_status = 409


class Conflict(CountingError):
    """State-machine violation, e.g. a report already reviewed by someone else."""

    code = "conflict"
    http_status = 409


class UpstreamUnavailable(CountingError):
    code = "upstream_unavailable"
    http_status = 502


class Internal(CountingError):
    code = "internal"
    http_status = 500
