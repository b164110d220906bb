"""
Configuration for the passkey wallet SDK.

Network parameters ship as package data (networks.json). Deployment
settings (custody credentials, warchest identifiers, RPC key) come from
environment variables.
"""
import json
import logging
import os
import urllib.parse
from importlib import resources
from typing import Dict, Any, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "sepolia"


def validate_url(url_name: str, url: str) -> None:
    """
    Require https unless the URL points at localhost.

    Raises:
        ValueError: If the URL uses another scheme against a remote host
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ''
    is_local = host in ('localhost', '127.0.0.1')
    if parsed.scheme != 'https' and not is_local:
        raise ValueError(f"{url_name} must use https:// for security (got: {parsed.scheme}://)")


class NetworkConfig:
    """Loads and caches the packaged network definitions."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        if cls._networks_cache is None:
            path = resources.files("passkey_wallet_sdk").joinpath("networks.json")
            with path.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])

    @classmethod
    def get_rpc_url(cls, network: str, api_key: Optional[str] = None) -> str:
        """
        RPC URL for a network, with the provider API key filled in.

        An explicit WALLET_RPC_URL environment variable takes precedence.
        """
        override = os.environ.get("WALLET_RPC_URL")
        if override:
            return override
        rpc = cls.get_network(network)["rpc"]
        if "{api_key}" in rpc:
            if not api_key:
                raise ValueError(f"Network '{network}' requires an RPC API key (INFURA_API_KEY)")
            rpc = rpc.replace("{api_key}", api_key)
        return rpc


class WalletSettings(BaseModel):
    """Deployment settings for the wallet backend"""
    custody_api_host: str
    custody_api_private_key: str
    organization_id: str
    warchest_organization_id: Optional[str] = None
    warchest_private_key_id: Optional[str] = None
    rpc_api_key: Optional[str] = None
    network: str = DEFAULT_NETWORK
    http_timeout: int = 30
    poll_max_attempts: int = 5
    poll_base_delay: float = 0.2

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "WalletSettings":
        """
        Read settings from environment variables.

        Raises:
            ValueError: If a required variable is missing
        """
        env = os.environ if environ is None else environ
        required = {
            "custody_api_host": "TURNKEY_API_HOST",
            "custody_api_private_key": "TURNKEY_API_PRIVATE_KEY",
            "organization_id": "TURNKEY_ORGANIZATION_ID",
        }
        missing = [var for var in required.values() if not env.get(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        values: Dict[str, Any] = {field: env[var] for field, var in required.items()}
        values["warchest_organization_id"] = env.get("TURNKEY_WARCHEST_ORGANIZATION_ID") or None
        values["warchest_private_key_id"] = env.get("TURNKEY_WARCHEST_PRIVATE_KEY_ID") or None
        values["rpc_api_key"] = env.get("INFURA_API_KEY") or None
        values["network"] = env.get("WALLET_NETWORK", DEFAULT_NETWORK)
        if env.get("WALLET_HTTP_TIMEOUT"):
            values["http_timeout"] = int(env["WALLET_HTTP_TIMEOUT"])
        if env.get("WALLET_POLL_MAX_ATTEMPTS"):
            values["poll_max_attempts"] = int(env["WALLET_POLL_MAX_ATTEMPTS"])
        if env.get("WALLET_POLL_BASE_DELAY"):
            values["poll_base_delay"] = float(env["WALLET_POLL_BASE_DELAY"])
        return cls(**values)

    @property
    def has_warchest(self) -> bool:
        return bool(self.warchest_organization_id and self.warchest_private_key_id)

    @property
    def chain_id(self) -> int:
        return NetworkConfig.get_chain_id(self.network)

    @property
    def rpc_url(self) -> str:
        return NetworkConfig.get_rpc_url(self.network, self.rpc_api_key)
