"""Errors raised to callers of the comparison engine.

Read failures against a catalog are never raised; they are recorded as
unavailable capabilities or sections. Only precondition violations end up here.
"""


class EnvDriftError(Exception):
    def __init__(self, message: str, code: str = "ENVDRIFT_ERROR") -> None:
        self.code = code
        super().__init__(message)


class InvalidRequestError(EnvDriftError):
    """A comparison request is missing required input."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_REQUEST")


class ConnectionNotFoundError(EnvDriftError):
    """A connection id does not resolve to a live connection."""

    def __init__(self, role: str, connection_id: str) -> None:
        self.role = role
        self.connection_id = connection_id
        super().__init__(
            f"{role} connection not found: {connection_id}",
            code="CONNECTION_NOT_FOUND",
        )
