"""
Data models for the passkey wallet SDK.
"""
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STAMP_HEADER = "X-Stamp"
WEBAUTHN_STAMP_HEADER = "X-Stamp-WebAuthn"


class ActivityStatus(str, Enum):
    """Lifecycle status of a custody activity"""
    CREATED = "ACTIVITY_STATUS_CREATED"
    PENDING = "ACTIVITY_STATUS_PENDING"
    COMPLETED = "ACTIVITY_STATUS_COMPLETED"
    CONSENSUS_NEEDED = "ACTIVITY_STATUS_CONSENSUS_NEEDED"
    REJECTED = "ACTIVITY_STATUS_REJECTED"
    FAILED = "ACTIVITY_STATUS_FAILED"

    @property
    def is_terminal(self) -> bool:
        return self not in (ActivityStatus.CREATED, ActivityStatus.PENDING)

    @property
    def is_success(self) -> bool:
        return self is ActivityStatus.COMPLETED


class ActivityType(str, Enum):
    """Activity types this SDK submits, relays or decodes"""
    CREATE_SUB_ORGANIZATION = "ACTIVITY_TYPE_CREATE_SUB_ORGANIZATION_V4"
    SIGN_TRANSACTION = "ACTIVITY_TYPE_SIGN_TRANSACTION_V2"
    EXPORT_WALLET = "ACTIVITY_TYPE_EXPORT_WALLET"
    INIT_RECOVERY = "ACTIVITY_TYPE_INIT_USER_EMAIL_RECOVERY"
    RECOVER_USER = "ACTIVITY_TYPE_RECOVER_USER"
    EMAIL_AUTH = "ACTIVITY_TYPE_EMAIL_AUTH"
    CREATE_API_USER = "ACTIVITY_TYPE_CREATE_USERS_V2"


class Stamp(BaseModel):
    """Client-produced authentication stamp, carried as a single header"""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    header_name: str = Field(..., alias="stampHeaderName")
    header_value: str = Field(..., alias="stampHeaderValue")

    @field_validator("header_name")
    @classmethod
    def _known_header(cls, value: str) -> str:
        for known in (STAMP_HEADER, WEBAUTHN_STAMP_HEADER):
            if value.lower() == known.lower():
                return known
        raise ValueError(
            f"stamp header must be {STAMP_HEADER} or {WEBAUTHN_STAMP_HEADER}, got {value!r}"
        )

    @classmethod
    def api_key(cls, value: str) -> "Stamp":
        return cls(header_name=STAMP_HEADER, header_value=value)

    @classmethod
    def webauthn(cls, value: str) -> "Stamp":
        return cls(header_name=WEBAUTHN_STAMP_HEADER, header_value=value)

    @property
    def is_webauthn(self) -> bool:
        return self.header_name == WEBAUTHN_STAMP_HEADER


class SignedRequest(BaseModel):
    """A client-signed custody request, ready to be relayed verbatim"""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    body: str
    stamp: Stamp


class Attestation(BaseModel):
    """WebAuthn attestation produced by the browser during passkey creation"""
    model_config = ConfigDict(populate_by_name=True)

    credential_id: str = Field(..., alias="credentialId")
    client_data_json: str = Field(..., alias="clientDataJson")
    attestation_object: str = Field(..., alias="attestationObject")
    transports: List[str] = Field(
        default_factory=lambda: ["AUTHENTICATOR_TRANSPORT_HYBRID"]
    )

    def to_params(self) -> Dict[str, Any]:
        return {
            "credentialId": self.credential_id,
            "clientDataJson": self.client_data_json,
            "attestationObject": self.attestation_object,
            "transports": list(self.transports),
        }


class Activity(BaseModel):
    """An asynchronous custody operation, as reported by the service"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: ActivityType
    organization_id: str = Field(..., alias="organizationId")
    status: ActivityStatus
    timestamp_ms: Optional[int] = Field(None, alias="timestampMs")
    result: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _timestamp_from_created_at(cls, data: Any) -> Any:
        # The service reports creation time as {"seconds": "...", "nanos": ...}
        if isinstance(data, dict) and "timestampMs" not in data and "timestamp_ms" not in data:
            created_at = data.get("createdAt")
            if isinstance(created_at, dict) and "seconds" in created_at:
                data = dict(data)
                data["timestampMs"] = (
                    int(created_at["seconds"]) * 1000 + int(created_at.get("nanos") or 0) // 1_000_000
                )
        return data

    @classmethod
    def from_response(cls, payload: Dict[str, Any]) -> "Activity":
        """Build an activity from a `{"activity": {...}}` response body"""
        return cls.model_validate(payload["activity"])


class SubOrganization(BaseModel):
    """Identifiers of an atomically provisioned sub-organization"""
    sub_organization_id: str
    signing_key_id: str
    derived_address: str


class EmailAuthResult(BaseModel):
    """Identifiers returned by an email-auth activity"""
    organization_id: str
    user_id: str
    api_key_id: str


class WhoamiResult(BaseModel):
    """Identity behind a stamped whoami request"""
    model_config = ConfigDict(populate_by_name=True)

    organization_id: str = Field(..., alias="organizationId")
    organization_name: str = Field("", alias="organizationName")
    user_id: str = Field(..., alias="userId")
    username: str = Field("", alias="username")
