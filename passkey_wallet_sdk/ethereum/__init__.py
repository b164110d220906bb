"""
Ethereum module for the passkey wallet SDK.

Builds the unsigned payloads that passkeys authorize through the custody
service and broadcasts the signed results.
"""
from .chain import Web3Chain
from .transaction import (
    TransactionBuilder,
    UnsignedTransaction,
    SignedTransaction,
    decode_signed_transaction,
    TRANSFER_GAS_LIMIT,
)

__all__ = [
    'Web3Chain',
    'TransactionBuilder',
    'UnsignedTransaction',
    'SignedTransaction',
    'decode_signed_transaction',
    'TRANSFER_GAS_LIMIT',
]
