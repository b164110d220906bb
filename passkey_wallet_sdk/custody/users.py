"""
API user creation strategies.

Creating an API user is either a typed CREATE_USERS activity or, on
deployments still relying on it, a helper shell script that submits the
same activity. Both sit behind one interface so callers never know which.
"""
import json
import logging
import subprocess
from typing import TYPE_CHECKING, Protocol, Sequence

from pydantic import ValidationError as ModelValidationError

from ..exceptions import DecodeError, WalletSDKError
from ..models import Activity, ActivityType

if TYPE_CHECKING:
    from .client import CustodyClient

logger = logging.getLogger(__name__)


class ApiUserCreator(Protocol):
    """Submits a create-API-user activity and returns it as submitted"""

    def submit_create_api_user(self, organization_id: str, name: str, public_key: str) -> Activity:
        ...


def create_users_parameters(name: str, public_key: str) -> dict:
    return {
        "users": [{
            "userName": name,
            "apiKeys": [{
                "apiKeyName": f"{name} API key",
                "publicKey": public_key,
            }],
            "authenticators": [],
            "userTags": [],
        }]
    }


class CreateUsersApiUserCreator:
    """Typed strategy: submits CREATE_USERS through the custody client"""

    def __init__(self, client: "CustodyClient"):
        self.client = client

    def submit_create_api_user(self, organization_id: str, name: str, public_key: str) -> Activity:
        return self.client.submit_activity(
            ActivityType.CREATE_API_USER,
            create_users_parameters(name, public_key),
            organization_id=organization_id,
        )


class ScriptApiUserCreator:
    """
    Script strategy: runs a helper script that prints an activity response.

    The script is invoked as ``<interpreter> <script> <org id> <name> <public key>``.
    """

    def __init__(
        self,
        script_path: str = "scripts/create_turnkey_user.sh",
        interpreter: Sequence[str] = ("/bin/bash",),
        timeout: int = 30
    ):
        self.script_path = script_path
        self.interpreter = tuple(interpreter)
        self.timeout = timeout

    def submit_create_api_user(self, organization_id: str, name: str, public_key: str) -> Activity:
        command = [*self.interpreter, self.script_path, organization_id, name, public_key]
        try:
            completed = subprocess.run(
                command, capture_output=True, check=True, timeout=self.timeout
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"User creation script {self.script_path} failed: {e}")
            raise WalletSDKError(f"user creation script failed: {e}") from e

        try:
            return Activity.from_response(json.loads(completed.stdout))
        except (ValueError, KeyError, TypeError, ModelValidationError) as e:
            raise DecodeError(f"unable to parse activity response from script: {e}") from e
