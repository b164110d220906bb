"""
Result extraction for completed activities.

Each activity type has one entry in a versioned decoder table. An entry
names the key its result lives under, a pydantic model for typed decoding,
and the fields to pull out.

Fallback rule: the typed model is tried first. If the model does not
validate (the service schema moved ahead of it), or a single field cannot
be read from the decoded model, that one field is looked up by its named
path in the raw result JSON instead. Extraction fails only when both fail.

Fields with an expected count must hold exactly that many items; a count of
one unwraps the item. Extra or missing items are never tolerated.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as ModelValidationError

from ..exceptions import ValidationError
from ..models import Activity, ActivityStatus, ActivityType

logger = logging.getLogger(__name__)

_MISSING = object()


class _ResultModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class WalletResult(_ResultModel):
    wallet_id: str = Field(..., alias="walletId")
    addresses: List[str]


class CreateSubOrganizationResult(_ResultModel):
    sub_organization_id: str = Field(..., alias="subOrganizationId")
    wallet: WalletResult


class SignTransactionResult(_ResultModel):
    signed_transaction: str = Field(..., alias="signedTransaction")


class ExportWalletResult(_ResultModel):
    wallet_id: str = Field(..., alias="walletId")
    export_bundle: str = Field(..., alias="exportBundle")


class InitUserEmailRecoveryResult(_ResultModel):
    user_id: str = Field(..., alias="userId")


class RecoverUserResult(_ResultModel):
    authenticator_id: List[str] = Field(..., alias="authenticatorId")


class EmailAuthActivityResult(_ResultModel):
    user_id: str = Field(..., alias="userId")
    api_key_id: str = Field(..., alias="apiKeyId")


class CreateUsersResult(_ResultModel):
    user_ids: List[str] = Field(..., alias="userIds")


@dataclass(frozen=True)
class FieldSpec:
    """One extracted field: typed accessor, raw path fallback, optional count"""
    name: str
    accessor: Callable[[Any], Any]
    path: Tuple[str, ...]
    expected_count: Optional[int] = None


@dataclass(frozen=True)
class ResultDecoder:
    """Decoder for one activity type's result"""
    version: str
    result_key: str
    model: Type[BaseModel]
    fields: Tuple[FieldSpec, ...]


def _decoder(version: str, result_key: str, model: Type[BaseModel], *fields: Tuple) -> ResultDecoder:
    field_specs = tuple(
        FieldSpec(name, accessor, (result_key,) + tuple(path.split(".")), count)
        for name, accessor, path, count in fields
    )
    return ResultDecoder(version=version, result_key=result_key, model=model, fields=field_specs)


DEFAULT_DECODERS: Dict[ActivityType, ResultDecoder] = {
    ActivityType.CREATE_SUB_ORGANIZATION: _decoder(
        "v4", "createSubOrganizationResultV4", CreateSubOrganizationResult,
        ("sub_organization_id", lambda r: r.sub_organization_id, "subOrganizationId", None),
        ("signing_key_id", lambda r: r.wallet.wallet_id, "wallet.walletId", None),
        ("derived_address", lambda r: r.wallet.addresses, "wallet.addresses", 1),
    ),
    ActivityType.SIGN_TRANSACTION: _decoder(
        "v2", "signTransactionResult", SignTransactionResult,
        ("signed_transaction", lambda r: r.signed_transaction, "signedTransaction", None),
    ),
    ActivityType.EXPORT_WALLET: _decoder(
        "v1", "exportWalletResult", ExportWalletResult,
        ("wallet_id", lambda r: r.wallet_id, "walletId", None),
        ("export_bundle", lambda r: r.export_bundle, "exportBundle", None),
    ),
    ActivityType.INIT_RECOVERY: _decoder(
        "v1", "initUserEmailRecoveryResult", InitUserEmailRecoveryResult,
        ("user_id", lambda r: r.user_id, "userId", None),
    ),
    ActivityType.RECOVER_USER: _decoder(
        "v1", "recoverUserResult", RecoverUserResult,
        ("authenticator_id", lambda r: r.authenticator_id, "authenticatorId", 1),
    ),
    ActivityType.EMAIL_AUTH: _decoder(
        "v1", "emailAuthResult", EmailAuthActivityResult,
        ("user_id", lambda r: r.user_id, "userId", None),
        ("api_key_id", lambda r: r.api_key_id, "apiKeyId", None),
    ),
    ActivityType.CREATE_API_USER: _decoder(
        "v2", "createUsersResult", CreateUsersResult,
        ("user_id", lambda r: r.user_ids, "userIds", 1),
    ),
}


def lookup_path(tree: Any, path: Tuple[str, ...]) -> Any:
    """Walk a JSON tree by key names; returns a sentinel when absent"""
    node = tree
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


class ResultExtractor:
    """
    Pulls activity-type-specific fields out of completed activities.

    Args:
        decoders: Decoder table keyed by activity type
        logger: Optional logger instance
    """

    def __init__(
        self,
        decoders: Optional[Dict[ActivityType, ResultDecoder]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.decoders = dict(DEFAULT_DECODERS if decoders is None else decoders)
        self.logger = logger or logging.getLogger(__name__)

    def extract(self, activity: Activity) -> Dict[str, Any]:
        """
        Extract the fields for a completed activity.

        Raises:
            ValidationError: If the activity is not completed, has no result,
                or a field is missing or has the wrong item count
        """
        if activity.status is not ActivityStatus.COMPLETED:
            raise ValidationError(
                f"activity {activity.id} is not completed (status: {activity.status.value})"
            )
        if activity.result is None:
            raise ValidationError(f"activity {activity.id} has no result")
        return self.extract_raw(activity.type, activity.result)

    def extract_raw(self, activity_type: ActivityType, result: Dict[str, Any]) -> Dict[str, Any]:
        """Extract fields from a raw result payload"""
        decoder = self.decoders.get(activity_type)
        if decoder is None:
            raise ValidationError(f"No result decoder for activity type {activity_type}")
        if not isinstance(result, dict):
            raise ValidationError(f"Result for {activity_type.value} must be an object")

        typed = None
        try:
            typed = decoder.model.model_validate(result.get(decoder.result_key))
        except ModelValidationError as e:
            self.logger.debug(
                f"Typed decoding of {decoder.result_key} ({decoder.version}) failed, "
                f"falling back to raw paths: {e}"
            )

        extracted: Dict[str, Any] = {}
        for field_spec in decoder.fields:
            value = self._typed_value(typed, field_spec)
            if value is _MISSING:
                value = lookup_path(result, field_spec.path)
                if value is not _MISSING:
                    self.logger.debug(f"Read {field_spec.name} from raw path {'.'.join(field_spec.path)}")
            if value is _MISSING or value is None:
                raise ValidationError(
                    f"{activity_type.value} result is missing {'.'.join(field_spec.path)}"
                )
            extracted[field_spec.name] = self._check(activity_type, field_spec, value)
        return extracted

    @staticmethod
    def _typed_value(typed: Optional[BaseModel], field_spec: FieldSpec) -> Any:
        if typed is None:
            return _MISSING
        try:
            value = field_spec.accessor(typed)
        except (AttributeError, KeyError, IndexError, TypeError):
            return _MISSING
        return _MISSING if value is None else value

    @staticmethod
    def _check(activity_type: ActivityType, field_spec: FieldSpec, value: Any) -> Any:
        path = '.'.join(field_spec.path)
        if field_spec.expected_count is None:
            if not isinstance(value, str) or not value:
                raise ValidationError(f"{activity_type.value} result field {path} must be a non-empty string")
            return value

        if not isinstance(value, list):
            raise ValidationError(f"{activity_type.value} result field {path} must be a list")
        if len(value) != field_spec.expected_count:
            raise ValidationError(
                f"expected exactly {field_spec.expected_count} item(s) in {path}, got {len(value)}"
            )
        if not all(isinstance(item, str) and item for item in value):
            raise ValidationError(f"{activity_type.value} result field {path} must hold non-empty strings")
        return value[0] if field_spec.expected_count == 1 else list(value)
