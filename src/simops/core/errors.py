"""Error taxonomy for the simops core.

Core modules raise these exceptions and never exit the process; the CLI layer
translates them into messages and exit codes.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from simops.core.batches import Batch


class SimopsError(Exception):
    """Base class for all simops errors."""


class UsageError(SimopsError, ValueError):
    """Raised when user supplied parameters are missing or invalid."""


class AuthError(SimopsError):
    """Raised when platform authentication fails."""


class NotFoundError(SimopsError):
    """Raised when a project or batch cannot be found."""


class TransportError(SimopsError):
    """Raised on network failures or unexpected HTTP status codes."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(SimopsError):
    """Raised when a successful response lacks a required field."""


class UnknownStatusError(SimopsError):
    """Raised when the platform reports a batch status the client cannot classify."""

    def __init__(self, status: str):
        super().__init__(f"unknown batch status: {status}")
        self.status = status


class ConflictError(SimopsError):
    """Raised when the platform rejects a mutation with HTTP 409."""


class ConflictExhaustedError(SimopsError):
    """Raised when a rerun keeps conflicting after the allowed attempts."""

    def __init__(self, attempts: int):
        super().__init__(f"failed to rerun batch: max retries reached ({attempts} attempts)")
        self.attempts = attempts


class BatchTimeoutError(SimopsError):
    """
    Raised when a batch does not reach a terminal status in time.

    Carries the last batch record seen so callers can still report its state.
    """

    def __init__(self, batch: Batch, last_status: str, timeout: timedelta):
        super().__init__(f"timeout after {timeout}, last state {last_status}")
        self.batch = batch
        self.last_status = last_status
        self.timeout = timeout


class SuperviseCancelled(SimopsError):
    """Raised when a wait is interrupted through its cancellation event."""

    def __init__(self, batch: Batch | None = None):
        super().__init__("batch wait was cancelled")
        self.batch = batch
