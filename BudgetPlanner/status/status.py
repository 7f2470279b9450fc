"""Status definitions and exceptions for BudgetPlanner.

This module provides:
    - Status: enumeration of possible engine states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., ServiceUnavailableException) for error handling in the sync engine
"""
import enum
import logging
from typing import Dict, Optional


class Status(enum.StrEnum):
    """Enumeration of status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SyncConfigNotFound = enum.auto()
    SyncConfigInvalid = enum.auto()

    # Authentication status
    NotAuthenticated = enum.auto()

    # Transport status
    Offline = enum.auto()
    ServiceUnavailable = enum.auto()
    RequestFailed = enum.auto()

    # Per-operation status
    OperationRejected = enum.auto()
    RetriesExhausted = enum.auto()

    # Local store status
    StoreInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status.',
    Status.Okay: 'Everything is okay.',

    Status.SyncConfigNotFound: 'Could not find the sync config.',
    Status.SyncConfigInvalid: 'The sync config seems to be incomplete, or contains invalid values.',

    Status.NotAuthenticated: 'Authentication error. Try signing in again.',

    Status.Offline: 'You are offline. Changes are saved locally and will sync when you reconnect.',
    Status.ServiceUnavailable: 'The sync server is unavailable. Please check your connection.',
    Status.RequestFailed: 'The sync server rejected the request.',

    Status.OperationRejected: 'The server rejected a change.',
    Status.RetriesExhausted: 'A change could not be synced after several attempts.',

    Status.StoreInvalid: 'The local database is invalid.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in BudgetPlanner.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.
        detail (str): The additional context passed by the raiser, if any.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: Optional[str] = None):
        self.status_message = get_message(self.status)
        self.detail = message or ''
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class SyncConfigNotFoundException(BaseStatusException):
    """Exception raised when the sync configuration file cannot be found."""
    status = Status.SyncConfigNotFound


class SyncConfigInvalidException(BaseStatusException):
    """Exception raised when the sync configuration is invalid or malformed."""
    status = Status.SyncConfigInvalid


class NotAuthenticatedException(BaseStatusException):
    """Exception raised when the server refuses the session token (HTTP 401/403)."""
    status = Status.NotAuthenticated


class OfflineException(BaseStatusException):
    """Exception raised when a network action is requested while offline."""
    status = Status.Offline


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the request cannot complete (network down, timeout)."""
    status = Status.ServiceUnavailable


class RequestFailedException(BaseStatusException):
    """Exception raised when the server answers with a non-2xx status.

    Attributes:
        status_code (int): The HTTP status code, if known.
    """
    status = Status.RequestFailed

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class OperationRejectedException(BaseStatusException):
    """Exception describing a single operation rejected by the server."""
    status = Status.OperationRejected


class RetriesExhaustedException(BaseStatusException):
    """Exception describing an operation that ran out of delivery attempts."""
    status = Status.RetriesExhausted


class StoreInvalidException(BaseStatusException):
    """Exception raised when the local sqlite store is unusable or corrupted."""
    status = Status.StoreInvalid
