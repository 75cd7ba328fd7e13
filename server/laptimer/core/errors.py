"""Exception hierarchy for the lap timer.

Callers can catch LapTimerError (broad) or a specific subclass (narrow).
"""

from __future__ import annotations


class LapTimerError(RuntimeError):
    """Base class for all lap timer errors."""


class InvalidFixError(LapTimerError, ValueError):
    """A raw position sample is missing fields or carries unusable values."""


class StorageError(LapTimerError):
    """The key-value store could not be read, written, or decoded."""


class SessionImportError(LapTimerError, ValueError):
    """An import payload is not a valid list of session records."""


# ---- Tracking lifecycle -------------------------

class TrackingError(LapTimerError):
    """Errors in the live tracking lifecycle."""

class SessionAlreadyActiveError(TrackingError):
    """start() was called while a session is still being tracked."""

class NoActiveSessionError(TrackingError):
    """An operation needs a live session but none is running."""
