"""
Exceptions for the passkey wallet SDK.
"""
from typing import Optional


class WalletSDKError(Exception):
    """Base exception for all SDK errors."""
    pass


class TransientNetworkError(WalletSDKError):
    """Raised when a transport-level failure or timeout occurs."""
    pass


class CustodyResponseError(WalletSDKError):
    """Raised when the custody service answers with a non-200 status."""

    def __init__(self, message: str, status_code: int, body: bytes = b""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ChainError(WalletSDKError):
    """Raised when the chain collaborator fails during a lookup."""
    pass


class DecodeError(WalletSDKError):
    """Raised when a hex, JSON or binary payload cannot be decoded."""
    pass


class ParseError(DecodeError):
    """Raised when decoded bytes are not a valid transaction encoding."""
    pass


class ValidationError(WalletSDKError):
    """Raised when a result or input violates a stated invariant."""
    pass


class ProvisioningAtomicityViolation(ValidationError):
    """Raised when a provisioning result is incomplete or over-complete."""
    pass


class StampError(WalletSDKError):
    """Raised when the backend API key cannot produce a request stamp."""
    pass


class ActivityError(WalletSDKError):
    """Base exception for activity lifecycle failures."""

    def __init__(
        self,
        message: str,
        activity_id: Optional[str] = None,
        status: Optional[str] = None,
        attempt: Optional[int] = None
    ):
        self.activity_id = activity_id
        self.status = status
        self.attempt = attempt
        super().__init__(message)


class ActivityTerminalFailure(ActivityError):
    """Raised when an activity reaches a terminal, non-successful status."""
    pass


class ActivityConsensusNeededError(ActivityTerminalFailure):
    """The activity needs additional approvals before it can complete."""
    pass


class ActivityRejectedError(ActivityTerminalFailure):
    """The activity was rejected by a policy or a quorum member."""
    pass


class ActivityFailedError(ActivityTerminalFailure):
    """The activity failed while executing on the custody service."""
    pass


class ActivityTimeoutError(ActivityError):
    """Raised when polling exhausts its attempts before a terminal status."""
    pass


class ActivityCancelledError(ActivityError):
    """Raised when the caller cancels polling or its deadline passes."""
    pass
