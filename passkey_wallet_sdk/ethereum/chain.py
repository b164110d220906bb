"""
Chain RPC adapter backed by web3.py.

Read calls (fee suggestions, nonce, balance) retry transient transport
failures with exponential backoff. Broadcast never retries: a rejection is
surfaced to the caller exactly as the node reported it.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

import requests
from web3 import Web3

from .._rate_limited_log import rate_limited_log
from ..exceptions import TransientNetworkError

T = TypeVar('T')

_TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)


class Web3Chain:
    """
    Thin wrapper over a web3.py HTTP provider.

    Args:
        rpc_url: Ethereum RPC endpoint URL
        retry_count: Attempts for read calls before giving up
        backoff_factor: Base backoff in seconds (doubled on each retry)
        timeout: HTTP timeout for RPC calls in seconds
        w3: Pre-built Web3 instance (mainly for tests)
        logger: Optional logger instance
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        retry_count: int = 3,
        backoff_factor: float = 0.5,
        timeout: int = 10,
        w3: Optional[Web3] = None,
        logger: Optional[logging.Logger] = None
    ):
        if w3 is None and not rpc_url:
            raise ValueError("Either rpc_url or w3 must be provided")
        self.rpc_url = rpc_url
        self.retry_count = max(1, retry_count)
        self.backoff_factor = backoff_factor
        self.logger = logger or logging.getLogger(__name__)
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def _with_retries(self, operation: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except _TRANSIENT_ERRORS as e:
                attempt += 1
                if attempt >= self.retry_count:
                    raise TransientNetworkError(
                        f"{operation} failed after {attempt} attempts: {e}"
                    ) from e
                wait_time = self.backoff_factor * (2 ** (attempt - 1))
                rate_limited_log(
                    f"Retrying {operation} after {wait_time}s due to transport error: {e}",
                    key=f"chain-retry:{operation}",
                    logger_instance=self.logger,
                )
                time.sleep(wait_time)

    def suggest_gas_price(self) -> int:
        return self._with_retries("eth_gasPrice", lambda: int(self.w3.eth.gas_price))

    def suggest_gas_tip_cap(self) -> int:
        return self._with_retries(
            "eth_maxPriorityFeePerGas", lambda: int(self.w3.eth.max_priority_fee)
        )

    def pending_nonce(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return self._with_retries(
            "eth_getTransactionCount",
            lambda: int(self.w3.eth.get_transaction_count(checksum, "pending")),
        )

    def get_balance(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return self._with_retries("eth_getBalance", lambda: int(self.w3.eth.get_balance(checksum)))

    def chain_id(self) -> int:
        return self._with_retries("eth_chainId", lambda: int(self.w3.eth.chain_id))

    def send_raw_transaction(self, raw_transaction: bytes):
        return self.w3.eth.send_raw_transaction(raw_transaction)
