#!/usr/bin/env python3
"""
Unstick the warchest by replacing a pending transaction.

Broadcasts a zero-value self-transfer at the given nonce, signed with the
warchest key held by the custody service.

Usage:
    python examples/override_nonce.py 42
"""
import argparse
import logging
import sys

from passkey_wallet_sdk import (
    CustodyClient,
    TransactionBuilder,
    Warchest,
    WalletSettings,
    Web3Chain,
    WalletSDKError,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Broadcast a zero-value warchest self-transfer at a nonce")
    parser.add_argument("nonce", type=int, help="Nonce of the transaction to replace")
    args = parser.parse_args()
    if args.nonce < 0:
        parser.error("nonce must be non-negative")

    try:
        settings = WalletSettings.from_env()
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    if not settings.has_warchest:
        print("ERROR: TURNKEY_WARCHEST_ORGANIZATION_ID and TURNKEY_WARCHEST_PRIVATE_KEY_ID are required")
        return 1

    custody = CustodyClient.from_settings(settings)
    identity = custody.whoami()
    print(f"Initialized custody client successfully. API user: {identity.user_id}")

    builder = TransactionBuilder(Web3Chain(settings.rpc_url), settings.chain_id)
    warchest = Warchest(
        custody,
        builder,
        settings.warchest_organization_id,
        settings.warchest_private_key_id,
    )

    try:
        tx_hash = warchest.override_nonce(args.nonce)
    except WalletSDKError as e:
        logger.error(f"Unable to override nonce {args.nonce}: {e}")
        return 1

    print(f"broadcasted tx: {tx_hash}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
