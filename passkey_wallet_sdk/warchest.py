"""
Warchest: the operator-funded account that seeds new wallets.

The warchest key lives in the custody service under the backend's own
organization, so drops are signed through the backend's API-key channel
rather than by an end user's passkey.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .custody.client import CustodyClient
from .ethereum.transaction import TransactionBuilder

ONE_ETH_IN_WEI = 10 ** 18
DROP_AMOUNT_IN_WEI = 50_000_000_000_000_000


def format_balance(balance_wei: int) -> str:
    """Format a wei amount as an ETH string with two decimals, rounded half away from zero"""
    eth = Decimal(balance_wei) / Decimal(ONE_ETH_IN_WEI)
    return str(eth.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class Warchest:
    """
    Funds user wallets from the operator account.

    Args:
        custody: Custody client used to sign with the warchest key
        builder: Transaction builder for constructing and broadcasting
        organization_id: Organization holding the warchest key
        private_key_id: Custody id of the warchest key
        drop_amount: Wei sent per drop
        logger: Optional logger instance
    """

    def __init__(
        self,
        custody: CustodyClient,
        builder: TransactionBuilder,
        organization_id: str,
        private_key_id: str,
        drop_amount: int = DROP_AMOUNT_IN_WEI,
        logger: Optional[logging.Logger] = None
    ):
        if not organization_id or not private_key_id:
            raise ValueError(
                "Warchest organization and private key ID are required for drops"
            )
        self.custody = custody
        self.builder = builder
        self.organization_id = organization_id
        self.private_key_id = private_key_id
        self.drop_amount = drop_amount
        self.logger = logger or logging.getLogger(__name__)
        self._address: Optional[str] = None

    @property
    def address(self) -> str:
        """Ethereum address of the warchest key, fetched once"""
        if self._address is None:
            self._address = self.custody.get_private_key_address(
                self.organization_id, self.private_key_id
            )
        return self._address

    def _sign_and_broadcast(self, to_address: str, amount: int, nonce: Optional[int] = None) -> str:
        payload = self.builder.construct_transfer(self.address, to_address, amount, nonce)
        signed = self.custody.sign_transaction(
            self.organization_id, self.private_key_id, payload.hex()
        )
        return self.builder.broadcast_transaction(signed)

    def drop(self, destination: str) -> str:
        """
        Send one drop to a wallet.

        Returns:
            Hash of the broadcast transaction
        """
        tx_hash = self._sign_and_broadcast(destination, self.drop_amount)
        self.logger.info(f"Dropped {format_balance(self.drop_amount)} ETH to {destination}: {tx_hash}")
        return tx_hash

    def override_nonce(self, nonce: int) -> str:
        """
        Replace whatever sits at `nonce` with a zero-value self-transfer.

        Used to unstick the warchest when a transaction at that nonce is
        pending forever.
        """
        tx_hash = self._sign_and_broadcast(self.address, 0, nonce)
        self.logger.info(f"Broadcast nonce override {nonce}: {tx_hash}")
        return tx_hash
