"""
CustodyClient - the backend's own channel to the custody service.

Requests made here are stamped with the backend's API key. End-user
requests are never stamped here; they go through the StampedRequestRelay
with the stamp the client produced.
"""
import json
import logging
import time
import threading
import urllib.parse
from typing import Dict, Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from pydantic import ValidationError as ModelValidationError

from ..config import WalletSettings, validate_url
from ..exceptions import (
    CustodyResponseError,
    DecodeError,
    TransientNetworkError,
    ValidationError,
)
from ..models import (
    Activity,
    ActivityType,
    EmailAuthResult,
    SignedRequest,
    STAMP_HEADER,
    WhoamiResult,
)
from ..version import USER_AGENT
from .poller import ActivityPoller, raise_for_terminal_failure
from .relay import StampedRequestRelay
from .results import ResultExtractor
from .stamp import ApiKeyStamper
from .users import ApiUserCreator, CreateUsersApiUserCreator

SUBMIT_PATHS: Dict[ActivityType, str] = {
    ActivityType.CREATE_SUB_ORGANIZATION: "/public/v1/submit/create_sub_organization",
    ActivityType.SIGN_TRANSACTION: "/public/v1/submit/sign_transaction",
    ActivityType.EXPORT_WALLET: "/public/v1/submit/export_wallet",
    ActivityType.INIT_RECOVERY: "/public/v1/submit/init_user_email_recovery",
    ActivityType.RECOVER_USER: "/public/v1/submit/recover_user",
    ActivityType.EMAIL_AUTH: "/public/v1/submit/email_auth",
    ActivityType.CREATE_API_USER: "/public/v1/submit/create_users",
}
GET_ACTIVITY_PATH = "/public/v1/query/get_activity"
WHOAMI_PATH = "/public/v1/query/whoami"
GET_PRIVATE_KEY_PATH = "/public/v1/query/get_private_key"

ETHEREUM_ADDRESS_FORMAT = "ADDRESS_FORMAT_ETHEREUM"
ETHEREUM_TRANSACTION_TYPE = "TRANSACTION_TYPE_ETHEREUM"

# Returned when RECOVER_USER completes: the temporary recovery credential
# that stamped the request is removed by the activity itself.
RECOVERY_AUTH_ERROR = b"no valid user found for authenticator"

_REDACTED_KEYS = {"attestation", "challenge", "exportBundle", "targetPublicKey"}


def _timestamp_ms() -> str:
    return str(int(time.time() * 1000))


def _compact_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class CustodyClient:
    """
    Client for the custody service's activity API.

    Args:
        api_host: Custody API host ("api.example.com") or base URL
        organization_id: The backend's parent organization
        stamper: API-key stamper holding the backend's credentials
        relay: Relay for client-stamped requests
        poller: Activity poller; defaults to one backed by get_activity
        extractor: Result extractor
        api_user_creator: Strategy for create_api_user
        retry_count: Number of retries for HTTP requests
        timeout: Timeout for HTTP requests in seconds
        logger: Optional logger instance
    """

    def __init__(
        self,
        api_host: str,
        organization_id: str,
        stamper: ApiKeyStamper,
        relay: Optional[StampedRequestRelay] = None,
        poller: Optional[ActivityPoller] = None,
        extractor: Optional[ResultExtractor] = None,
        api_user_creator: Optional[ApiUserCreator] = None,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        if not organization_id:
            raise ValueError("organization_id must be provided")

        self.base_url = (api_host if "://" in api_host else f"https://{api_host}").rstrip("/")
        validate_url("api_host", self.base_url)
        self.api_host = urllib.parse.urlparse(self.base_url).netloc

        self.organization_id = organization_id
        self.stamper = stamper
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        self.relay = relay or StampedRequestRelay(api_host=self.api_host, logger=self.logger)
        self.poller = poller or ActivityPoller(self.get_activity, logger=self.logger)
        self.extractor = extractor or ResultExtractor(logger=self.logger)
        self.api_user_creator = api_user_creator or CreateUsersApiUserCreator(self)

        # Setup HTTP session with retries
        self.session = requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    @classmethod
    def from_settings(cls, settings: WalletSettings, **kwargs) -> "CustodyClient":
        """
        Build a client, and its poller, from deployment settings.

        Keyword arguments are passed to the constructor and take precedence
        over the values derived from settings.
        """
        kwargs.setdefault("api_host", settings.custody_api_host)
        kwargs.setdefault("organization_id", settings.organization_id)
        kwargs.setdefault("timeout", settings.http_timeout)
        if "stamper" not in kwargs:
            kwargs["stamper"] = ApiKeyStamper(settings.custody_api_private_key)
        client = cls(**kwargs)
        if "poller" not in kwargs:
            client.poller = ActivityPoller(
                client.get_activity,
                max_attempts=settings.poll_max_attempts,
                base_delay=settings.poll_base_delay,
                logger=client.logger,
            )
        return client

    # ------------------------------------------------------------------
    # Request layer
    # ------------------------------------------------------------------

    def _sanitize_payload(self, payload: Any) -> Any:
        """
        Redact credential material from a payload for logging

        Args:
            payload: Request payload to sanitize

        Returns:
            Copy of the payload with sensitive values replaced
        """
        if isinstance(payload, list):
            return [self._sanitize_payload(item) for item in payload]
        if not isinstance(payload, dict):
            return payload

        result = {}
        for key, value in payload.items():
            if key in _REDACTED_KEYS:
                result[key] = f"[REDACTED - {len(str(value))} chars]"
            else:
                result[key] = self._sanitize_payload(value)
        return result

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        body = _compact_json(payload)
        stamp = self.stamper.stamp(body)
        self.logger.debug(f"Custody request to {path}: {self._sanitize_payload(payload)}")

        try:
            response = self.session.post(
                url,
                data=body,
                headers={
                    STAMP_HEADER: stamp.header_value,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self.logger.error(f"Custody request to {path} failed: {e}")
            raise TransientNetworkError(f"custody request to {path} failed: {e}") from e

        if response.status_code != 200:
            raise CustodyResponseError(
                f"unsuccessful custody request to {path} (status: {response.status_code})",
                status_code=response.status_code,
                body=response.content,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON response from {path}: {e}") from e
        if not isinstance(result, dict):
            raise DecodeError(f"Expected a JSON object from {path}")
        return result

    def _parse_activity(self, payload: Any) -> Activity:
        try:
            if isinstance(payload, (bytes, str)):
                payload = json.loads(payload)
            return Activity.from_response(payload)
        except (ValueError, KeyError, TypeError, ModelValidationError) as e:
            raise DecodeError(f"error while decoding activity response: {e}") from e

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def submit_activity(
        self,
        activity_type: ActivityType,
        parameters: Dict[str, Any],
        organization_id: Optional[str] = None
    ) -> Activity:
        """
        Submit an activity on the backend's own channel.

        Returns:
            The activity as acknowledged (usually not yet terminal)
        """
        organization_id = organization_id or self.organization_id
        payload = {
            "type": activity_type.value,
            "timestampMs": _timestamp_ms(),
            "organizationId": organization_id,
            "parameters": parameters,
        }
        self.logger.debug(f"Submitting {activity_type.value} for organization {organization_id}")
        activity = self._parse_activity(self._post(SUBMIT_PATHS[activity_type], payload))
        self.logger.info(f"Submitted activity {activity.id} ({activity.status.value})")
        return activity

    def get_activity(self, organization_id: str, activity_id: str) -> Activity:
        """Query an activity's current state"""
        return self._parse_activity(self._post(GET_ACTIVITY_PATH, {
            "activityId": activity_id,
            "organizationId": organization_id,
        }))

    def run_activity(
        self,
        activity_type: ActivityType,
        parameters: Dict[str, Any],
        organization_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> Dict[str, Any]:
        """Submit, wait for completion and extract the typed result fields"""
        activity = self.submit_activity(activity_type, parameters, organization_id)
        completed = self._settle(activity, cancel_event, deadline)
        return self.extractor.extract(completed)

    def _settle(
        self,
        activity: Activity,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> Activity:
        if activity.status.is_terminal:
            raise_for_terminal_failure(activity)
            return activity
        return self.poller.wait_for_activity(
            activity.organization_id,
            activity.id,
            cancel_event=cancel_event,
            deadline=deadline,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def whoami(self, organization_id: Optional[str] = None) -> WhoamiResult:
        payload = self._post(WHOAMI_PATH, {"organizationId": organization_id or self.organization_id})
        return self.whoami_from_response(payload)

    @staticmethod
    def whoami_from_response(body: Any) -> WhoamiResult:
        """Decode a whoami response, e.g. one returned through the relay"""
        try:
            if isinstance(body, (bytes, str)):
                body = json.loads(body)
            return WhoamiResult.model_validate(body)
        except (ValueError, TypeError) as e:
            raise DecodeError(f"Invalid whoami response: {e}") from e

    def get_private_key_address(self, organization_id: str, private_key_id: str) -> str:
        """
        The single Ethereum address derived from a private key.

        Raises:
            ValidationError: Unless exactly one Ethereum address is present
        """
        payload = self._post(GET_PRIVATE_KEY_PATH, {
            "organizationId": organization_id,
            "privateKeyId": private_key_id,
        })
        addresses = (payload.get("privateKey") or {}).get("addresses") or []
        ethereum = [
            entry.get("address") for entry in addresses
            if isinstance(entry, dict) and entry.get("format") == ETHEREUM_ADDRESS_FORMAT
        ]
        if len(ethereum) != 1 or not ethereum[0]:
            raise ValidationError(
                f"expected exactly 1 Ethereum address for private key {private_key_id}, got {len(ethereum)}"
            )
        return ethereum[0]

    # ------------------------------------------------------------------
    # Backend-originated activities
    # ------------------------------------------------------------------

    def sign_transaction(self, organization_id: str, sign_with: str, unsigned_tx_hex: str) -> str:
        """Sign an unsigned payload with a key the backend controls"""
        fields = self.run_activity(ActivityType.SIGN_TRANSACTION, {
            "signWith": sign_with,
            "unsignedTransaction": unsigned_tx_hex,
            "type": ETHEREUM_TRANSACTION_TYPE,
        }, organization_id=organization_id)
        return fields["signed_transaction"]

    def init_user_email_recovery(self, organization_id: str, email: str, target_public_key: str) -> str:
        """Start email recovery; returns the recovering user's id"""
        fields = self.run_activity(ActivityType.INIT_RECOVERY, {
            "email": email,
            "targetPublicKey": target_public_key,
        }, organization_id=organization_id)
        return fields["user_id"]

    def email_auth(self, organization_id: str, email: str, target_public_key: str) -> EmailAuthResult:
        """Email-based login; returns user and API key identifiers"""
        fields = self.run_activity(ActivityType.EMAIL_AUTH, {
            "email": email,
            "targetPublicKey": target_public_key,
        }, organization_id=organization_id)
        return EmailAuthResult(organization_id=organization_id, **fields)

    def create_api_user(self, name: str, public_key: str, organization_id: Optional[str] = None) -> str:
        """Create an API-key user; returns its user id"""
        organization_id = organization_id or self.organization_id
        activity = self.api_user_creator.submit_create_api_user(organization_id, name, public_key)
        completed = self._settle(activity)
        return self.extractor.extract(completed)["user_id"]

    # ------------------------------------------------------------------
    # Client-stamped activities
    # ------------------------------------------------------------------

    def forward_signed_activity(
        self,
        signed_request: SignedRequest,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None
    ) -> Activity:
        """
        Relay a client-stamped activity and wait for it to finish.

        The submission carries the client's stamp; follow-up status queries
        use the backend's credentials.

        Raises:
            CustodyResponseError: If the relayed request is not accepted
            ActivityError: If the activity fails, times out or is cancelled
        """
        status, body = self.relay.forward_signed(signed_request)
        if status != 200:
            raise CustodyResponseError(
                f"expected 200 when forwarding signed activity. Got {status}",
                status_code=status,
                body=body,
            )
        activity = self._parse_activity(body)
        return self._settle(activity, cancel_event, deadline)

    def _forward_expecting(self, signed_request: SignedRequest, activity_type: ActivityType) -> Dict[str, Any]:
        activity = self.forward_signed_activity(signed_request)
        if activity.type is not activity_type:
            raise ValidationError(
                f"expected a {activity_type.value} activity, got {activity.type.value}"
            )
        return self.extractor.extract(activity)

    def send_transaction(self, signed_request: SignedRequest) -> str:
        """Relay a client-stamped SIGN_TRANSACTION; returns the signed tx hex"""
        return self._forward_expecting(signed_request, ActivityType.SIGN_TRANSACTION)["signed_transaction"]

    def export_wallet(self, signed_request: SignedRequest) -> str:
        """Relay a client-stamped EXPORT_WALLET; returns the encrypted bundle"""
        return self._forward_expecting(signed_request, ActivityType.EXPORT_WALLET)["export_bundle"]

    def recover_user(self, signed_request: SignedRequest) -> None:
        """
        Relay a client-stamped RECOVER_USER activity.

        Success may show up as a 401 "no valid user found for authenticator":
        the activity deletes the temporary credential that stamped it. That
        exact response is treated as completion and is not retried.
        """
        try:
            self.forward_signed_activity(signed_request)
        except CustodyResponseError as e:
            if e.status_code == 401 and RECOVERY_AUTH_ERROR in e.body:
                self.logger.info("Recovery completed; recovery credential has been invalidated")
                return
            raise
