"""
Custody module for the passkey wallet SDK.

Talks to the remote custody service: relays client-stamped requests,
submits the backend's own activities, polls them to completion and
extracts their results.
"""
from .client import CustodyClient
from .poller import ActivityPoller
from .provisioning import SubOrganizationProvisioner, SubOrganizationStore, sub_organization_name
from .relay import StampedRequestRelay
from .results import ResultExtractor, ResultDecoder, FieldSpec, DEFAULT_DECODERS
from .stamp import ApiKeyStamper
from .users import ApiUserCreator, CreateUsersApiUserCreator, ScriptApiUserCreator

__all__ = [
    'CustodyClient',
    'ActivityPoller',
    'SubOrganizationProvisioner',
    'SubOrganizationStore',
    'sub_organization_name',
    'StampedRequestRelay',
    'ResultExtractor',
    'ResultDecoder',
    'FieldSpec',
    'DEFAULT_DECODERS',
    'ApiKeyStamper',
    'ApiUserCreator',
    'CreateUsersApiUserCreator',
    'ScriptApiUserCreator',
]
