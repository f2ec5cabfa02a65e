"""
Exception taxonomy for the sync engine.

VendorThrottled is the only class callers are expected to retry; everything
else either propagates (VendorRejected, TransportFailure) or is logged and
swallowed at the persistence boundary (PersistenceFailure).
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all erpsync errors."""
    pass


class ConfigError(SyncError):
    """Raised when an environment setting cannot be parsed."""
    pass


class VendorError(SyncError):
    """A non-success response code returned by the vendor API."""

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        description: str = "",
        action: str = "",
        response: Optional[dict] = None,
    ):
        super().__init__(f"[{code}] {message}")
        self.code = str(code)
        self.message = message
        self.description = description
        self.action = action
        self.response = response

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "description": self.description,
            "action": self.action,
        }


class VendorThrottled(VendorError):
    """The endpoint's capacity budget is exhausted; safe to retry after a wait."""

    retryable = True


class VendorRejected(VendorError):
    """Business or validation failure; retrying the same request will not help."""
    pass


class TransportFailure(SyncError):
    """Network, timeout or malformed-response failure below the vendor protocol."""
    pass


class PersistenceFailure(SyncError):
    """Writing fetched data or a watermark to the local store failed."""
    pass


class UnknownTaskError(SyncError):
    """Raised when a task type is not present in the registry."""

    def __init__(self, task_type: str, known: Optional[list] = None):
        known_part = f"; available: {', '.join(known)}" if known else ""
        super().__init__(f"Unsupported task type: {task_type}{known_part}")
        self.task_type = task_type


class AccountNotFoundError(SyncError):
    """Raised when an account id does not exist in the store."""

    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id
