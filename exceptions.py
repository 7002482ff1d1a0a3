"""Exception hierarchy for the ladder workout tracker."""

from __future__ import annotations


class LadderError(Exception):
    """Base exception for all tracker errors."""


class ConfigurationError(LadderError, ValueError):
    """A workout configuration is unusable (e.g. no exercises)."""


class InvalidTransitionError(LadderError):
    """A run operation was called in a state that does not allow it."""


class StorageError(LadderError):
    """The local session store failed."""


class SessionPersistError(StorageError):
    """A finished session could not be written to the local store."""


class RemoteStoreError(LadderError):
    """The remote record store returned an error response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteStoreError):
    """The remote record store could not be reached."""


class NotAuthenticatedError(RemoteStoreError):
    """The remote store rejected the request's identity."""

    def __init__(self, message: str = "You must be signed in to perform this action.") -> None:
        super().__init__(message, status_code=401)
