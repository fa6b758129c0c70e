"""Sync error taxonomy."""

from __future__ import annotations


class SyncError(Exception):
    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class TransientError(SyncError):
    """Retry ceiling exhausted on a rate-limit, server or network failure."""

    def __init__(self, reason: str, *, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(reason, status_code=status_code)
        self.attempts = attempts


class AuthExpiredError(SyncError):
    """The platform rejected the access token; the merchant must reconnect."""


class PermanentError(SyncError):
    """Malformed request or business-rule rejection."""


class PrerequisiteError(SyncError):
    """The platform-side catalog, board or shop could not be resolved."""


class SyncCancelled(Exception):
    pass


class SkipItem(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AuthFailure(Exception):
    pass


class CredentialNotFound(LookupError):
    pass


class UnknownPlatformError(KeyError):
    pass
