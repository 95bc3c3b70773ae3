# cat_engine/errors.py

from typing import Optional


class CATError(Exception):
    """Base class for all errors raised by the adaptive testing engine."""


class ConfigurationError(CATError, ValueError):
    """
    Raised when a session cannot be created from the given inputs:
    empty item pool, malformed content config, invalid settings.
    No partial session is produced.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidStateError(CATError, RuntimeError):
    """
    Raised when the session state machine is driven incorrectly by the caller,
    e.g. a response submitted to a TERMINATED session or finalize called twice.
    """

    def __init__(self, message: str, session_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id
        self.status = status
