"""
Error taxonomy shared by the store, the remote adapter and the orchestrator.

Every error carries the HTTP status it maps to, so the API layer can render
any of them through a single exception handler.
"""


class GitMemoError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(GitMemoError):
    """Missing owner/repo, encryption key or other setup problem. Never retried."""

    status_code = 400
    code = "configuration_error"


class MissingTokenError(ConfigurationError):
    """An operation needs write access to GitHub but no usable token exists."""

    status_code = 401
    code = "missing_token"


class AuthorizationError(GitMemoError):
    """Session token missing, invalid or expired."""

    status_code = 401
    code = "unauthorized"


class NotFoundError(GitMemoError):
    status_code = 404
    code = "not_found"


class StoreError(GitMemoError):
    """The persisted mirror failed; durability of the request is in question."""

    status_code = 500
    code = "store_error"


class SyncError(GitMemoError):
    """A reconciliation failed after the failure was recorded in sync history."""

    status_code = 500
    code = "sync_failed"
