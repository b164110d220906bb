"""
Passkey wallet SDK.

Backend-side building blocks for a passkey-authorized Ethereum wallet whose
keys live in a remote custody service.
"""
from .version import __version__
from .config import NetworkConfig, WalletSettings
from .exceptions import (
    WalletSDKError,
    TransientNetworkError,
    CustodyResponseError,
    ChainError,
    DecodeError,
    ParseError,
    ValidationError,
    ProvisioningAtomicityViolation,
    StampError,
    ActivityError,
    ActivityTerminalFailure,
    ActivityConsensusNeededError,
    ActivityRejectedError,
    ActivityFailedError,
    ActivityTimeoutError,
    ActivityCancelledError,
)
from .models import (
    Activity,
    ActivityStatus,
    ActivityType,
    Attestation,
    EmailAuthResult,
    SignedRequest,
    Stamp,
    SubOrganization,
    WhoamiResult,
)
from .ethereum import TransactionBuilder, UnsignedTransaction, Web3Chain
from .custody import (
    ActivityPoller,
    ApiKeyStamper,
    CustodyClient,
    ResultExtractor,
    StampedRequestRelay,
    SubOrganizationProvisioner,
)
from .warchest import Warchest, format_balance, DROP_AMOUNT_IN_WEI

__all__ = [
    "__version__",
    "NetworkConfig",
    "WalletSettings",
    "WalletSDKError",
    "TransientNetworkError",
    "CustodyResponseError",
    "ChainError",
    "DecodeError",
    "ParseError",
    "ValidationError",
    "ProvisioningAtomicityViolation",
    "StampError",
    "ActivityError",
    "ActivityTerminalFailure",
    "ActivityConsensusNeededError",
    "ActivityRejectedError",
    "ActivityFailedError",
    "ActivityTimeoutError",
    "ActivityCancelledError",
    "Activity",
    "ActivityStatus",
    "ActivityType",
    "Attestation",
    "EmailAuthResult",
    "SignedRequest",
    "Stamp",
    "SubOrganization",
    "WhoamiResult",
    "TransactionBuilder",
    "UnsignedTransaction",
    "Web3Chain",
    "ActivityPoller",
    "ApiKeyStamper",
    "CustodyClient",
    "ResultExtractor",
    "StampedRequestRelay",
    "SubOrganizationProvisioner",
    "Warchest",
    "format_balance",
    "DROP_AMOUNT_IN_WEI",
]
