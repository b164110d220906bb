"""
Pytest fixtures for the passkey wallet SDK tests.
"""
import time
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest

from passkey_wallet_sdk._rate_limited_log import reset_rate_limits
from passkey_wallet_sdk.config import NetworkConfig
from passkey_wallet_sdk.custody.client import CustodyClient
from passkey_wallet_sdk.custody.poller import ActivityPoller
from passkey_wallet_sdk.custody.stamp import ApiKeyStamper
from passkey_wallet_sdk.ethereum.transaction import TransactionBuilder

# Constants for testing
TEST_API_HOST = "api.custody.example"
TEST_BASE_URL = f"https://{TEST_API_HOST}"
TEST_ORG_ID = "org-parent-0001"
TEST_SUB_ORG_ID = "org-sub-0002"
TEST_CHAIN_ID = 11155111
TEST_API_PRIVATE_KEY = "1f2e3d4c5b6a79880716253443526170819a0b1c2d3e4f5061728394a5b6c7d8"
TEST_ETH_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_FROM_ADDRESS = "0x1234567890123456789012345678901234567890"
TEST_TO_ADDRESS = "0x2345678901234567890123456789012345678901"
TEST_DERIVED_ADDRESS = "0x3456789012345678901234567890123456789012"
GWEI = 10 ** 9


def activity_payload(
    activity_id: str = "act-0001",
    status: str = "ACTIVITY_STATUS_COMPLETED",
    activity_type: str = "ACTIVITY_TYPE_SIGN_TRANSACTION_V2",
    result: Optional[Dict[str, Any]] = None,
    organization_id: str = TEST_ORG_ID
) -> Dict[str, Any]:
    """Build a custody `{"activity": ...}` response body"""
    activity: Dict[str, Any] = {
        "id": activity_id,
        "organizationId": organization_id,
        "status": status,
        "type": activity_type,
        "createdAt": {"seconds": "1700000000", "nanos": 0},
    }
    if result is not None:
        activity["result"] = result
    return {"activity": activity}


def sub_organization_result(addresses=None, wallet_id: str = "wallet-0001") -> Dict[str, Any]:
    """A createSubOrganizationResultV4 result body"""
    return {
        "createSubOrganizationResultV4": {
            "subOrganizationId": TEST_SUB_ORG_ID,
            "wallet": {
                "walletId": wallet_id,
                "addresses": [TEST_DERIVED_ADDRESS] if addresses is None else addresses,
            },
        }
    }


# Make time.sleep instantaneous so retries and polling don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _clean_module_state():
    """Rate-limit cache and network cache are process-wide"""
    reset_rate_limits()
    NetworkConfig._networks_cache = None
    yield
    reset_rate_limits()
    NetworkConfig._networks_cache = None


@pytest.fixture
def stamper():
    return ApiKeyStamper(TEST_API_PRIVATE_KEY)


@pytest.fixture
def mock_chain():
    """Chain collaborator with realistic Sepolia-like suggestions"""
    chain = MagicMock()
    chain.suggest_gas_price = MagicMock(return_value=10 * GWEI)
    chain.suggest_gas_tip_cap = MagicMock(return_value=1 * GWEI)
    chain.pending_nonce = MagicMock(return_value=7)
    chain.send_raw_transaction = MagicMock(return_value=b"\x11" * 32)
    return chain


@pytest.fixture
def builder(mock_chain):
    return TransactionBuilder(mock_chain, TEST_CHAIN_ID)


class RecordingWait:
    """Wait function that records requested delays instead of sleeping"""

    def __init__(self, cancel_after: Optional[int] = None):
        self.delays = []
        self.cancel_after = cancel_after

    def __call__(self, delay, cancel_event):
        self.delays.append(delay)
        return self.cancel_after is not None and len(self.delays) >= self.cancel_after


@pytest.fixture
def recording_wait():
    return RecordingWait()


@pytest.fixture
def custody_client(stamper, recording_wait):
    """CustodyClient against TEST_BASE_URL; pair with requests_mock"""
    client = CustodyClient(TEST_API_HOST, TEST_ORG_ID, stamper)
    client.poller = ActivityPoller(client.get_activity, wait=recording_wait)
    return client
