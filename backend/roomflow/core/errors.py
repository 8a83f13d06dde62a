from enum import Enum


class ErrorKind(str, Enum):
    NETWORK = "NetworkError"
    REMOTE = "RemoteError"
    TIMEOUT = "TimeoutError"
    VALIDATION = "ValidationError"


class TransportError(RuntimeError):
    """Expected failure talking to the remote processing service."""

    kind: ErrorKind = ErrorKind.REMOTE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(TransportError):
    kind = ErrorKind.NETWORK


class RemoteError(TransportError):
    kind = ErrorKind.REMOTE


class InvalidRequestError(TransportError):
    kind = ErrorKind.VALIDATION
