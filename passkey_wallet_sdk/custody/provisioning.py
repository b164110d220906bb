"""
Sub-organization provisioning.

One CREATE_SUB_ORGANIZATION activity creates the user's sub-organization,
its two root users and one HD wallet with one Ethereum account. The custody
service applies it atomically; this module makes sure nothing short of a
complete, validated result ever leaves it.
"""
import logging
import re
import threading
from typing import Optional, Protocol

from eth_utils import is_address

from ..exceptions import ProvisioningAtomicityViolation, ValidationError
from ..models import ActivityType, Attestation, SubOrganization
from .client import CustodyClient
from .poller import ActivityPoller, raise_for_terminal_failure
from .results import ResultExtractor

MAX_SUB_ORGANIZATION_NAME_LENGTH = 64
ROOT_QUORUM_THRESHOLD = 1
ETHEREUM_DERIVATION_PATH = "m/44'/60'/0'/0/0"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9 ._-]")


class SubOrganizationStore(Protocol):
    """Persists provisioned identifiers once they are known to be complete"""

    def save_sub_organization(self, email: str, sub_organization: SubOrganization) -> None:
        ...


def sub_organization_name(email: str) -> str:
    """Derive a safe sub-organization name from an email address"""
    name = "Wallet for " + email.strip().replace("@", "-at-")
    name = _UNSAFE_NAME_CHARS.sub("", name)
    return name[:MAX_SUB_ORGANIZATION_NAME_LENGTH].rstrip()


class SubOrganizationProvisioner:
    """
    Creates a user's sub-organization with its signing key in one request.

    Args:
        custody: Custody client; submission uses its API-key channel
        poller: Poller to wait with (defaults to the client's)
        extractor: Result extractor (defaults to the client's)
        store: Optional store, called only for fully validated results
        logger: Optional logger instance
    """

    def __init__(
        self,
        custody: CustodyClient,
        poller: Optional[ActivityPoller] = None,
        extractor: Optional[ResultExtractor] = None,
        store: Optional[SubOrganizationStore] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.custody = custody
        self.poller = poller or custody.poller
        self.extractor = extractor or custody.extractor
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def build_parameters(self, email: str, attestation: Attestation, challenge: str) -> dict:
        """Activity parameters for a new user's sub-organization"""
        return {
            "subOrganizationName": sub_organization_name(email),
            "rootQuorumThreshold": ROOT_QUORUM_THRESHOLD,
            "rootUsers": [
                {
                    "userName": "Wallet User",
                    "userEmail": email,
                    "apiKeys": [],
                    "authenticators": [{
                        "authenticatorName": "End-User Passkey",
                        "challenge": challenge,
                        "attestation": attestation.to_params(),
                    }],
                    "oauthProviders": [],
                },
                {
                    "userName": "Onboarding Helper",
                    "apiKeys": [{
                        "apiKeyName": "Wallet Backend",
                        "publicKey": self.custody.stamper.public_key,
                    }],
                    "authenticators": [],
                    "oauthProviders": [],
                },
            ],
            "wallet": {
                "walletName": "Default Wallet",
                "accounts": [{
                    "curve": "CURVE_SECP256K1",
                    "pathFormat": "PATH_FORMAT_BIP32",
                    "path": ETHEREUM_DERIVATION_PATH,
                    "addressFormat": "ADDRESS_FORMAT_ETHEREUM",
                }],
            },
        }

    def create_user_sub_organization(
        self,
        email: str,
        attestation: Attestation,
        challenge: str,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> SubOrganization:
        """
        Provision a sub-organization for a new user.

        Args:
            email: The user's email address
            attestation: Passkey attestation from the browser
            challenge: Challenge the attestation was produced for

        Returns:
            Sub-organization id, signing key (wallet) id and derived address

        Raises:
            ProvisioningAtomicityViolation: If the result is not exactly one
                signing key with exactly one valid address
            ActivityError: If the activity fails, times out or is cancelled
        """
        if not email or not challenge:
            raise ValueError("email and challenge are required")

        self.logger.info(f"Creating sub-organization for user {email}...")
        activity = self.custody.submit_activity(
            ActivityType.CREATE_SUB_ORGANIZATION,
            self.build_parameters(email, attestation, challenge),
        )

        if activity.status.is_terminal:
            raise_for_terminal_failure(activity)
        else:
            activity = self.poller.wait_for_activity(
                activity.organization_id,
                activity.id,
                cancel_event=cancel_event,
                deadline=deadline,
            )

        try:
            fields = self.extractor.extract(activity)
        except ValidationError as e:
            raise ProvisioningAtomicityViolation(
                f"sub-organization result for activity {activity.id} is incomplete: {e}"
            ) from e

        if not is_address(fields["derived_address"]):
            raise ProvisioningAtomicityViolation(
                f"derived address {fields['derived_address']!r} is not a valid Ethereum address"
            )

        sub_organization = SubOrganization(**fields)
        self.logger.info(
            f"Activity {activity.id} completed: sub-organization {sub_organization.sub_organization_id}"
        )

        if self.store is not None:
            self.store.save_sub_organization(email, sub_organization)
        return sub_organization
