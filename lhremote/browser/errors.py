"""
CDP error taxonomy.

- CDPConnectionError: endpoint unreachable, socket lost, or not connected
- CDPTimeoutError: no response or event within the client timeout
- CDPEvaluationError: protocol error reply or exception thrown by evaluated script
"""

from typing import Optional


class CDPError(Exception):
    """Base class for all CDP-related errors."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class CDPConnectionError(CDPError):
    """
    Raised when a CDP endpoint cannot be reached, a WebSocket connection
    cannot be established, or the connection is lost.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.status = status


class CDPTimeoutError(CDPError):
    """Raised when a request or event wait exceeds the client timeout."""


class CDPEvaluationError(CDPError):
    """Raised when Runtime.evaluate reports an exception or a call returns a protocol error."""
