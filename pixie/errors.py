"""Exception hierarchy shared across Pixie components."""

from __future__ import annotations


class PixieError(Exception):
    """Base class for all Pixie errors."""


class ConfigurationError(PixieError):
    """Raised when required settings (credentials, ids) are missing or invalid."""


class RuntimeStartError(PixieError, RuntimeError):
    """Raised when the AI runtime client cannot be started."""


class DelegateCreationError(PixieError):
    """Raised when a delegated session cannot be constructed or rehydrated."""

    def __init__(self, message: str, *, delegate_id: str | None = None) -> None:
        super().__init__(message)
        self.delegate_id = delegate_id


class PrimarySessionError(PixieError):
    """Base class for primary session controller errors."""


class ModelNotSelectedError(PrimarySessionError):
    """Raised when a session is requested before a model was chosen."""


class PrimarySessionConstructionError(PrimarySessionError):
    """Raised when building the primary session failed; a retry is possible."""


class PrimarySessionDestroyedError(PrimarySessionError):
    """Raised when the primary session is requested after teardown."""
