#!/usr/bin/env python3
"""
Example of onboarding a passkey user and funding their wallet.

The attestation and challenge normally come from the browser's
navigator.credentials.create() call; here they are read from a JSON file.
"""
import json
import logging
import sys

from passkey_wallet_sdk import (
    Attestation,
    CustodyClient,
    SubOrganizationProvisioner,
    TransactionBuilder,
    Warchest,
    WalletSettings,
    Web3Chain,
    format_balance,
)

logging.basicConfig(level=logging.INFO)


class PrintingStore:
    """Stands in for the application's user database"""

    def save_sub_organization(self, email, sub_organization):
        print(f"Saving {email}: {sub_organization.model_dump()}")


def main():
    """
    Demonstrate the onboarding flow.

    This example shows how to:
    1. Configure the SDK from environment variables
    2. Provision a sub-organization with one signing key
    3. Drop funds from the warchest into the new wallet
    """
    if len(sys.argv) != 3:
        print("Usage: onboarding_example.py <email> <attestation.json>")
        return 1

    email, attestation_path = sys.argv[1], sys.argv[2]
    with open(attestation_path, "r", encoding="utf-8") as f:
        registration = json.load(f)

    settings = WalletSettings.from_env()
    custody = CustodyClient.from_settings(settings)
    chain = Web3Chain(settings.rpc_url)

    provisioner = SubOrganizationProvisioner(custody, store=PrintingStore())
    sub_org = provisioner.create_user_sub_organization(
        email,
        Attestation.model_validate(registration["attestation"]),
        registration["challenge"],
    )
    print(f"Wallet address: {sub_org.derived_address}")

    if settings.has_warchest:
        warchest = Warchest(
            custody,
            TransactionBuilder(chain, settings.chain_id),
            settings.warchest_organization_id,
            settings.warchest_private_key_id,
        )
        print(f"Drop transaction: {warchest.drop(sub_org.derived_address)}")

    print(f"Balance: {format_balance(chain.get_balance(sub_org.derived_address))} ETH")
    return 0


if __name__ == "__main__":
    sys.exit(main())
