"""
Unsigned transfer construction and signed transaction broadcast.

The signing payload built here is the exact byte sequence the external
signer (the custody service, on behalf of a passkey) signs:

    0x02 || rlp([chainId, nonce, gasTipCap, gasFeeCap, gasLimit,
                 to, value, data, accessList])
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Union

import rlp
from rlp.exceptions import RLPException
from eth_utils import big_endian_to_int, keccak, to_canonical_address, to_checksum_address

from ..exceptions import ChainError, DecodeError, ParseError, ValidationError

logger = logging.getLogger(__name__)

DYNAMIC_FEE_TX_TYPE = 0x02
ACCESS_LIST_TX_TYPE = 0x01
TRANSFER_GAS_LIMIT = 21000
GAS_MULTIPLIER = 2


class ChainBackend(Protocol):
    """Chain operations the transaction builder depends on"""

    def suggest_gas_price(self) -> int:
        ...

    def suggest_gas_tip_cap(self) -> int:
        ...

    def pending_nonce(self, address: str) -> int:
        ...

    def send_raw_transaction(self, raw_transaction: bytes) -> Any:
        ...


def _to_address_bytes(address: Union[str, bytes], label: str) -> bytes:
    try:
        return to_canonical_address(address)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid {label} address {address!r}: {e}") from e


@dataclass(frozen=True)
class UnsignedTransaction:
    """EIP-1559 native transfer, before signing"""
    chain_id: int
    nonce: int
    gas_tip_cap: int
    gas_fee_cap: int
    gas_limit: int
    to: bytes
    value: int
    data: bytes = b""
    access_list: List[Any] = field(default_factory=list)

    def __post_init__(self):
        for name in ("chain_id", "nonce", "gas_tip_cap", "gas_fee_cap", "gas_limit", "value"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")
        if self.gas_fee_cap < self.gas_tip_cap:
            raise ValidationError(
                f"gas_fee_cap ({self.gas_fee_cap}) must be >= gas_tip_cap ({self.gas_tip_cap})"
            )
        if len(self.to) != 20:
            raise ValidationError(f"Destination must be 20 bytes, got {len(self.to)}")

    @property
    def to_address(self) -> str:
        return to_checksum_address(self.to)

    def signing_payload(self) -> bytes:
        """Type tag followed by the RLP of the unsigned fields, in canonical order"""
        fields = [
            self.chain_id,
            self.nonce,
            self.gas_tip_cap,
            self.gas_fee_cap,
            self.gas_limit,
            self.to,
            self.value,
            self.data,
            list(self.access_list),
        ]
        return bytes([DYNAMIC_FEE_TX_TYPE]) + rlp.encode(fields)

    @classmethod
    def from_signing_payload(cls, payload: bytes) -> "UnsignedTransaction":
        """
        Decode a signing payload back into its fields.

        Raises:
            ParseError: If the payload is not a dynamic-fee transfer payload
        """
        if not payload or payload[0] != DYNAMIC_FEE_TX_TYPE:
            raise ParseError("Signing payload must start with the dynamic-fee type byte 0x02")
        try:
            items = rlp.decode(payload[1:])
        except RLPException as e:
            raise ParseError(f"Cannot decode signing payload: {e}") from e

        if not isinstance(items, list) or len(items) != 9:
            raise ParseError("Signing payload must contain exactly 9 fields")

        chain_id, nonce, tip, fee_cap, gas, to, value, data, access_list = items
        if not isinstance(access_list, list):
            raise ParseError("Access list must be an RLP list")
        try:
            return cls(
                chain_id=big_endian_to_int(chain_id),
                nonce=big_endian_to_int(nonce),
                gas_tip_cap=big_endian_to_int(tip),
                gas_fee_cap=big_endian_to_int(fee_cap),
                gas_limit=big_endian_to_int(gas),
                to=bytes(to),
                value=big_endian_to_int(value),
                data=bytes(data),
                access_list=access_list,
            )
        except (TypeError, ValueError, ValidationError) as e:
            raise ParseError(f"Invalid signing payload field: {e}") from e


@dataclass(frozen=True)
class SignedTransaction:
    """A decoded, signed transaction ready for broadcast"""
    tx_type: int
    nonce: int
    to: Optional[str]
    value: int
    raw: bytes
    chain_id: Optional[int] = None

    @property
    def hash(self) -> str:
        # Legacy and typed transactions both hash over their raw envelope
        return "0x" + keccak(self.raw).hex()


def decode_signed_transaction(raw: bytes) -> SignedTransaction:
    """
    Parse raw signed transaction bytes.

    Supports dynamic-fee (type 2), access-list (type 1) and legacy encodings.

    Raises:
        ParseError: If the bytes are not a valid signed transaction
    """
    if not raw:
        raise ParseError("Empty transaction bytes")

    if raw[0] >= 0xc0:
        tx_type, body, expected, to_index, chain_index = 0, raw, 9, 3, None
    elif raw[0] == DYNAMIC_FEE_TX_TYPE:
        tx_type, body, expected, to_index, chain_index = DYNAMIC_FEE_TX_TYPE, raw[1:], 12, 5, 0
    elif raw[0] == ACCESS_LIST_TX_TYPE:
        tx_type, body, expected, to_index, chain_index = ACCESS_LIST_TX_TYPE, raw[1:], 11, 4, 0
    else:
        raise ParseError(f"Unsupported transaction type 0x{raw[0]:02x}")

    try:
        items = rlp.decode(body)
    except RLPException as e:
        raise ParseError(f"Cannot parse signed transaction bytes: {e}") from e

    if not isinstance(items, list) or len(items) != expected:
        raise ParseError(
            f"Signed transaction of type {tx_type} must have {expected} fields"
        )

    nonce_index = 1 if chain_index is not None else 0
    value_index = to_index + 1
    to_field = items[to_index]
    if not isinstance(to_field, bytes) or len(to_field) not in (0, 20):
        raise ParseError("Invalid destination field in signed transaction")

    try:
        return SignedTransaction(
            tx_type=tx_type,
            nonce=big_endian_to_int(items[nonce_index]),
            to=to_checksum_address(to_field) if to_field else None,
            value=big_endian_to_int(items[value_index]),
            raw=bytes(raw),
            chain_id=big_endian_to_int(items[chain_index]) if chain_index is not None else None,
        )
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid signed transaction field: {e}") from e


class TransactionBuilder:
    """
    Builds unsigned transfer payloads and broadcasts signed transactions.

    The builder never holds key material. It asks the chain for fee and
    nonce suggestions and hands back the exact bytes to be signed elsewhere.
    """

    def __init__(
        self,
        chain: ChainBackend,
        chain_id: int,
        logger: Optional[logging.Logger] = None
    ):
        self.chain = chain
        self.chain_id = chain_id
        self.logger = logger or logging.getLogger(__name__)

    def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        nonce: Optional[int] = None
    ) -> UnsignedTransaction:
        """
        Build an unsigned native transfer.

        Args:
            from_address: Sender address, used for the pending nonce lookup
            to_address: Destination address
            amount: Value in wei
            nonce: Explicit nonce; the pending nonce is fetched when omitted

        Returns:
            The unsigned transaction

        Raises:
            ValidationError: If an address or the amount is invalid
            ChainError: If the gas or nonce lookup fails
        """
        _to_address_bytes(from_address, "source")
        destination = _to_address_bytes(to_address, "destination")
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise ValidationError(f"Amount must be a non-negative integer (wei), got {amount!r}")

        # See https://github.com/ethereum/pm/issues/328#issuecomment-853612573
        try:
            gas_price = self.chain.suggest_gas_price()
        except Exception as e:
            raise ChainError(f"cannot fetch suggested gas price: {e}") from e

        try:
            gas_tip = self.chain.suggest_gas_tip_cap()
        except Exception as e:
            raise ChainError(f"cannot fetch suggested gas tip cap: {e}") from e

        gas_fee_cap = gas_price * GAS_MULTIPLIER
        gas_tip_cap = gas_tip * GAS_MULTIPLIER
        if gas_tip_cap > gas_fee_cap:
            gas_fee_cap = gas_tip_cap

        if nonce is None:
            try:
                nonce = self.chain.pending_nonce(from_address)
            except Exception as e:
                raise ChainError(f"cannot fetch nonce for address {from_address}: {e}") from e

        tx = UnsignedTransaction(
            chain_id=self.chain_id,
            nonce=nonce,
            gas_tip_cap=gas_tip_cap,
            gas_fee_cap=gas_fee_cap,
            gas_limit=TRANSFER_GAS_LIMIT,
            to=destination,
            value=amount,
        )
        self.logger.debug(
            f"Built transfer {from_address} -> {tx.to_address}: value={amount} nonce={nonce} "
            f"tip={gas_tip_cap} feeCap={gas_fee_cap}"
        )
        return tx

    def construct_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        nonce: Optional[int] = None
    ) -> bytes:
        """Build a transfer and return its signing payload"""
        return self.build_transfer(from_address, to_address, amount, nonce).signing_payload()

    def broadcast_transaction(self, signed_tx_hex: str) -> str:
        """
        Broadcast a hex-encoded signed transaction.

        Args:
            signed_tx_hex: Signed transaction as hex, with or without 0x prefix

        Returns:
            The 0x-prefixed transaction hash

        Raises:
            DecodeError: If the string is not valid hex
            ParseError: If the bytes are not a valid signed transaction
            Exception: Any rejection from the chain, unchanged
        """
        if not isinstance(signed_tx_hex, str):
            raise DecodeError(f"Signed transaction must be a hex string, got {type(signed_tx_hex).__name__}")
        hex_body = signed_tx_hex[2:] if signed_tx_hex.startswith(("0x", "0X")) else signed_tx_hex
        try:
            raw = bytes.fromhex(hex_body)
        except ValueError as e:
            raise DecodeError(f"cannot decode signed tx {signed_tx_hex!r}: {e}") from e

        tx = decode_signed_transaction(raw)

        try:
            self.chain.send_raw_transaction(tx.raw)
        except Exception as e:
            self.logger.error(f"Failed to broadcast transaction {tx.hash}: {e}")
            raise

        self.logger.info(f"Transaction sent: {tx.hash}")
        return tx.hash
