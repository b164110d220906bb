"""
Tests for CustodyClient.
"""
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from passkey_wallet_sdk.config import WalletSettings
from passkey_wallet_sdk.custody.client import CustodyClient
from passkey_wallet_sdk.custody.stamp import decode_stamp
from passkey_wallet_sdk.custody.users import ScriptApiUserCreator
from passkey_wallet_sdk.exceptions import (
    ActivityFailedError,
    ActivityRejectedError,
    ActivityTimeoutError,
    CustodyResponseError,
    DecodeError,
    TransientNetworkError,
    ValidationError,
    WalletSDKError,
)
from passkey_wallet_sdk.models import ActivityStatus, ActivityType, SignedRequest
from passkey_wallet_sdk.version import USER_AGENT
from conftest import (
    TEST_API_HOST,
    TEST_API_PRIVATE_KEY,
    TEST_BASE_URL,
    TEST_DERIVED_ADDRESS,
    TEST_ORG_ID,
    activity_payload,
)

GET_ACTIVITY_URL = f"{TEST_BASE_URL}/public/v1/query/get_activity"
SIGN_URL = f"{TEST_BASE_URL}/public/v1/submit/sign_transaction"
RECOVER_URL = f"{TEST_BASE_URL}/public/v1/submit/recover_user"
EXPORT_URL = f"{TEST_BASE_URL}/public/v1/submit/export_wallet"
SIGN_RESULT = {"signTransactionResult": {"signedTransaction": "02f86b"}}


def _signed_request(url: str = SIGN_URL, body: str = '{"type":"x"}') -> SignedRequest:
    return SignedRequest.model_validate({
        "url": url,
        "body": body,
        "stamp": {"stampHeaderName": "X-Stamp-WebAuthn", "stampHeaderValue": "client-stamp"},
    })


class TestConstruction:
    def test_host_without_scheme(self, stamper):
        client = CustodyClient(TEST_API_HOST, TEST_ORG_ID, stamper)

        assert client.base_url == TEST_BASE_URL
        assert client.api_host == TEST_API_HOST
        assert client.relay.api_host == TEST_API_HOST

    def test_rejects_plain_http(self, stamper):
        with pytest.raises(ValueError, match="https"):
            CustodyClient("http://api.custody.example", TEST_ORG_ID, stamper)

    def test_allows_localhost(self, stamper):
        client = CustodyClient("http://localhost:8080", TEST_ORG_ID, stamper)
        assert client.api_host == "localhost:8080"

    def test_requires_organization(self, stamper):
        with pytest.raises(ValueError, match="organization_id"):
            CustodyClient(TEST_API_HOST, "", stamper)

    def test_from_settings(self):
        settings = WalletSettings(
            custody_api_host=TEST_API_HOST,
            custody_api_private_key=TEST_API_PRIVATE_KEY,
            organization_id=TEST_ORG_ID,
            poll_max_attempts=9,
            poll_base_delay=0.5,
            http_timeout=12,
        )

        client = CustodyClient.from_settings(settings)

        assert client.timeout == 12
        assert client.poller.max_attempts == 9
        assert client.poller.base_delay == 0.5

    def test_from_settings_keyword_overrides(self, stamper):
        settings = WalletSettings(
            custody_api_host=TEST_API_HOST,
            custody_api_private_key=TEST_API_PRIVATE_KEY,
            organization_id=TEST_ORG_ID,
            http_timeout=12,
        )

        client = CustodyClient.from_settings(settings, timeout=3, stamper=stamper, retry_count=0)

        assert client.timeout == 3
        assert client.stamper is stamper
        assert client.organization_id == TEST_ORG_ID


class TestRequestLayer:
    def test_submit_is_stamped(self, custody_client, stamper, requests_mock):
        route = requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_PENDING"))

        activity = custody_client.submit_activity(
            ActivityType.SIGN_TRANSACTION, {"signWith": "key-1"}
        )

        assert activity.status is ActivityStatus.PENDING
        request = route.last_request
        body = request.body
        fields = decode_stamp(request.headers["X-Stamp"])
        assert fields["publicKey"] == stamper.public_key
        ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256R1(), bytes.fromhex(fields["publicKey"])
        ).verify(bytes.fromhex(fields["signature"]), body, ec.ECDSA(hashes.SHA256()))

        payload = json.loads(body)
        assert payload["type"] == "ACTIVITY_TYPE_SIGN_TRANSACTION_V2"
        assert payload["organizationId"] == TEST_ORG_ID
        assert payload["parameters"] == {"signWith": "key-1"}
        assert payload["timestampMs"].isdigit()
        assert request.headers["User-Agent"] == USER_AGENT

    def test_sanitize_payload(self, custody_client):
        payload = {
            "parameters": {
                "rootUsers": [{
                    "userEmail": "alice@example.com",
                    "authenticators": [{"challenge": "abc", "attestation": {"credentialId": "c"}}],
                }],
            },
        }

        safe = custody_client._sanitize_payload(payload)

        authenticator = safe["parameters"]["rootUsers"][0]["authenticators"][0]
        assert authenticator["challenge"] == "[REDACTED - 3 chars]"
        assert authenticator["attestation"].startswith("[REDACTED")
        assert safe["parameters"]["rootUsers"][0]["userEmail"] == "alice@example.com"
        # The original payload is left untouched
        assert payload["parameters"]["rootUsers"][0]["authenticators"][0]["challenge"] == "abc"

    def test_non_200(self, custody_client, requests_mock):
        requests_mock.post(GET_ACTIVITY_URL, status_code=403, content=b"forbidden")

        with pytest.raises(CustodyResponseError) as exc_info:
            custody_client.get_activity(TEST_ORG_ID, "act-0001")

        assert exc_info.value.status_code == 403
        assert exc_info.value.body == b"forbidden"

    def test_transport_failure(self, custody_client, requests_mock):
        requests_mock.post(GET_ACTIVITY_URL, exc=requests.ConnectionError("refused"))

        with pytest.raises(TransientNetworkError):
            custody_client.get_activity(TEST_ORG_ID, "act-0001")

    def test_invalid_json(self, custody_client, requests_mock):
        requests_mock.post(GET_ACTIVITY_URL, text="<html>")

        with pytest.raises(DecodeError):
            custody_client.get_activity(TEST_ORG_ID, "act-0001")

    def test_malformed_activity(self, custody_client, requests_mock):
        requests_mock.post(GET_ACTIVITY_URL, json={"activity": {"id": "act-0001"}})

        with pytest.raises(DecodeError):
            custody_client.get_activity(TEST_ORG_ID, "act-0001")

    def test_timestamp_from_created_at(self, custody_client, requests_mock):
        requests_mock.post(GET_ACTIVITY_URL, json=activity_payload())

        activity = custody_client.get_activity(TEST_ORG_ID, "act-0001")

        assert activity.timestamp_ms == 1700000000000


class TestBackendActivities:
    def test_sign_transaction_polls_to_completion(self, custody_client, requests_mock, recording_wait):
        requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_CREATED"))
        requests_mock.post(GET_ACTIVITY_URL, [
            {"json": activity_payload(status="ACTIVITY_STATUS_PENDING")},
            {"json": activity_payload(result=SIGN_RESULT)},
        ])

        signed = custody_client.sign_transaction(TEST_ORG_ID, "key-1", "02e8")

        assert signed == "02f86b"
        assert len(recording_wait.delays) == 2
        submitted = requests_mock.request_history[0].json()
        assert submitted["parameters"] == {
            "signWith": "key-1",
            "unsignedTransaction": "02e8",
            "type": "TRANSACTION_TYPE_ETHEREUM",
        }

    def test_already_completed_skips_polling(self, custody_client, requests_mock, recording_wait):
        requests_mock.post(SIGN_URL, json=activity_payload(result=SIGN_RESULT))

        assert custody_client.sign_transaction(TEST_ORG_ID, "key-1", "02e8") == "02f86b"
        assert recording_wait.delays == []

    def test_submit_rejected_immediately(self, custody_client, requests_mock):
        requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_REJECTED"))

        with pytest.raises(ActivityRejectedError):
            custody_client.sign_transaction(TEST_ORG_ID, "key-1", "02e8")

    def test_email_auth(self, custody_client, requests_mock):
        requests_mock.post(f"{TEST_BASE_URL}/public/v1/submit/email_auth", json=activity_payload(
            activity_type="ACTIVITY_TYPE_EMAIL_AUTH",
            result={"emailAuthResult": {"userId": "user-1", "apiKeyId": "key-1"}},
        ))

        result = custody_client.email_auth("org-sub", "user@example.com", "03ab")

        assert result.organization_id == "org-sub"
        assert result.user_id == "user-1"
        assert result.api_key_id == "key-1"

    def test_init_user_email_recovery(self, custody_client, requests_mock):
        route = requests_mock.post(
            f"{TEST_BASE_URL}/public/v1/submit/init_user_email_recovery",
            json=activity_payload(
                activity_type="ACTIVITY_TYPE_INIT_USER_EMAIL_RECOVERY",
                result={"initUserEmailRecoveryResult": {"userId": "user-1"}},
            ),
        )

        assert custody_client.init_user_email_recovery("org-sub", "user@example.com", "03ab") == "user-1"
        assert route.last_request.json()["parameters"] == {
            "email": "user@example.com",
            "targetPublicKey": "03ab",
        }

    def test_create_api_user_typed(self, custody_client, requests_mock):
        route = requests_mock.post(f"{TEST_BASE_URL}/public/v1/submit/create_users", json=activity_payload(
            activity_type="ACTIVITY_TYPE_CREATE_USERS_V2",
            result={"createUsersResult": {"userIds": ["user-9"]}},
        ))

        assert custody_client.create_api_user("ops", "02" + "ab" * 32) == "user-9"
        users = route.last_request.json()["parameters"]["users"]
        assert users[0]["userName"] == "ops"
        assert users[0]["apiKeys"][0]["publicKey"] == "02" + "ab" * 32

    def test_create_api_user_script(self, custody_client):
        output = json.dumps(activity_payload(
            activity_type="ACTIVITY_TYPE_CREATE_USERS_V2",
            result={"createUsersResult": {"userIds": ["user-7"]}},
        )).encode()
        custody_client.api_user_creator = ScriptApiUserCreator("scripts/create.sh")

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(stdout=output)
            assert custody_client.create_api_user("ops", "02ab") == "user-7"

        command = mock_run.call_args.args[0]
        assert command == ["/bin/bash", "scripts/create.sh", TEST_ORG_ID, "ops", "02ab"]

    def test_create_api_user_script_failure(self):
        creator = ScriptApiUserCreator("scripts/create.sh")

        with patch("subprocess.run", side_effect=subprocess.CalledProcessError(1, "bash")):
            with pytest.raises(WalletSDKError, match="script failed"):
                creator.submit_create_api_user(TEST_ORG_ID, "ops", "02ab")

    def test_create_api_user_script_bad_output(self):
        creator = ScriptApiUserCreator("scripts/create.sh")

        with patch("subprocess.run", return_value=MagicMock(stdout=b"oops")):
            with pytest.raises(DecodeError):
                creator.submit_create_api_user(TEST_ORG_ID, "ops", "02ab")


class TestQueries:
    def test_whoami(self, custody_client, requests_mock):
        requests_mock.post(f"{TEST_BASE_URL}/public/v1/query/whoami", json={
            "organizationId": TEST_ORG_ID,
            "organizationName": "Wallet",
            "userId": "user-1",
            "username": "alice",
        })

        result = custody_client.whoami()

        assert result.organization_id == TEST_ORG_ID
        assert result.user_id == "user-1"

    def test_whoami_from_relayed_bytes(self):
        result = CustodyClient.whoami_from_response(b'{"organizationId":"o","userId":"u"}')
        assert (result.organization_id, result.user_id) == ("o", "u")

    def test_whoami_from_bad_bytes(self):
        with pytest.raises(DecodeError):
            CustodyClient.whoami_from_response(b'{"userId":"u"}')

    def test_private_key_address(self, custody_client, requests_mock):
        requests_mock.post(f"{TEST_BASE_URL}/public/v1/query/get_private_key", json={"privateKey": {
            "addresses": [
                {"format": "ADDRESS_FORMAT_COMPRESSED", "address": "02ab"},
                {"format": "ADDRESS_FORMAT_ETHEREUM", "address": TEST_DERIVED_ADDRESS},
            ]
        }})

        assert custody_client.get_private_key_address(TEST_ORG_ID, "pk-1") == TEST_DERIVED_ADDRESS

    @pytest.mark.parametrize("addresses", [
        [],
        [
            {"format": "ADDRESS_FORMAT_ETHEREUM", "address": TEST_DERIVED_ADDRESS},
            {"format": "ADDRESS_FORMAT_ETHEREUM", "address": "0x" + "ab" * 20},
        ],
    ])
    def test_private_key_address_count(self, custody_client, requests_mock, addresses):
        requests_mock.post(
            f"{TEST_BASE_URL}/public/v1/query/get_private_key",
            json={"privateKey": {"addresses": addresses}},
        )

        with pytest.raises(ValidationError, match="exactly 1"):
            custody_client.get_private_key_address(TEST_ORG_ID, "pk-1")


class TestClientStampedActivities:
    def test_send_transaction_forwards_client_stamp(self, custody_client, requests_mock):
        route = requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_PENDING"))
        requests_mock.post(GET_ACTIVITY_URL, json=activity_payload(result=SIGN_RESULT))

        assert custody_client.send_transaction(_signed_request()) == "02f86b"

        forwarded = route.last_request
        assert forwarded.headers["X-Stamp-WebAuthn"] == "client-stamp"
        assert "X-Stamp" not in forwarded.headers
        assert forwarded.text == '{"type":"x"}'
        # Status queries use the backend's own stamp
        assert "X-Stamp" in requests_mock.request_history[1].headers

    def test_forward_non_200(self, custody_client, requests_mock):
        requests_mock.post(SIGN_URL, status_code=400, content=b"bad request")

        with pytest.raises(CustodyResponseError, match="Got 400"):
            custody_client.send_transaction(_signed_request())

    def test_forward_failed_activity(self, custody_client, requests_mock):
        requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_PENDING"))
        requests_mock.post(GET_ACTIVITY_URL, json=activity_payload(status="ACTIVITY_STATUS_FAILED"))

        with pytest.raises(ActivityFailedError):
            custody_client.send_transaction(_signed_request())

    def test_forward_times_out(self, custody_client, requests_mock, recording_wait):
        requests_mock.post(SIGN_URL, json=activity_payload(status="ACTIVITY_STATUS_PENDING"))
        requests_mock.post(GET_ACTIVITY_URL, json=activity_payload(status="ACTIVITY_STATUS_PENDING"))

        with pytest.raises(ActivityTimeoutError):
            custody_client.send_transaction(_signed_request())
        assert len(recording_wait.delays) == 5

    def test_wrong_activity_type(self, custody_client, requests_mock):
        requests_mock.post(EXPORT_URL, json=activity_payload(result=SIGN_RESULT))

        with pytest.raises(ValidationError, match="EXPORT_WALLET"):
            custody_client.export_wallet(_signed_request(url=EXPORT_URL))

    def test_export_wallet(self, custody_client, requests_mock):
        requests_mock.post(EXPORT_URL, json=activity_payload(
            activity_type="ACTIVITY_TYPE_EXPORT_WALLET",
            result={"exportWalletResult": {"walletId": "wallet-1", "exportBundle": "bundle"}},
        ))

        assert custody_client.export_wallet(_signed_request(url=EXPORT_URL)) == "bundle"

    def test_recover_user_401_is_success(self, custody_client, requests_mock):
        requests_mock.post(
            RECOVER_URL,
            status_code=401,
            content=b'{"code":16,"message":"no valid user found for authenticator"}',
        )

        assert custody_client.recover_user(_signed_request(url=RECOVER_URL)) is None

    def test_recover_user_other_401(self, custody_client, requests_mock):
        requests_mock.post(RECOVER_URL, status_code=401, content=b"expired stamp")

        with pytest.raises(CustodyResponseError):
            custody_client.recover_user(_signed_request(url=RECOVER_URL))

    def test_recover_user_same_message_other_status(self, custody_client, requests_mock):
        requests_mock.post(RECOVER_URL, status_code=500, content=b"no valid user found for authenticator")

        with pytest.raises(CustodyResponseError):
            custody_client.recover_user(_signed_request(url=RECOVER_URL))

    def test_recover_user_completed(self, custody_client, requests_mock):
        requests_mock.post(RECOVER_URL, json=activity_payload(
            activity_type="ACTIVITY_TYPE_RECOVER_USER",
            result={"recoverUserResult": {"authenticatorId": ["auth-1"]}},
        ))

        assert custody_client.recover_user(_signed_request(url=RECOVER_URL)) is None
