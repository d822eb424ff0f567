"""
Billing secrets from HashiCorp Vault (KV v2, AppRole login).

Every path is read under the 'billing/' mount prefix. Infrastructure secrets
(database, valkey, notifications) are mandatory and raise when absent. A
payment gateway with no secret path is treated as not configured.

Values are cached per process as "billing/<path>/<field>".
"""

import logging
import os
from typing import Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized

from core.models import GatewayName

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "billing"

# Required fields, then fields that may be absent.
GATEWAY_SECRET_FIELDS: Dict[GatewayName, tuple[tuple[str, ...], tuple[str, ...]]] = {
    GatewayName.STRIPE: (("secret_key", "webhook_secret"), ()),
    GatewayName.PAYPAL: (("client_id", "client_secret"), ()),
    GatewayName.RAZORPAY: (("key_id", "key_secret"), ("webhook_secret",)),
}

_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


class SecretNotFoundError(PermissionError):
    """No secret at the requested path."""


class VaultClient:
    """AppRole-authenticated reader for the billing/ secret tree."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")
        if not role_id or not secret_id:
            raise ValueError("VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required")

        namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.client = hvac.Client(url=self.vault_addr, namespace=namespace) if namespace \
            else hvac.Client(url=self.vault_addr)
        self._login(role_id, secret_id)
        logger.info(f"Vault client initialized: {self.vault_addr}")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            auth = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
            self.client.token = auth["auth"]["client_token"]
        except Exception as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")
        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        All fields of billing/<path>.

        Raises:
            SecretNotFoundError: Path doesn't exist.
            PermissionError: Token may not read the path.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise SecretNotFoundError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """One field of billing/<path>. KeyError names the fields that do exist."""
        data = self.read_secret(path)
        if field not in data:
            raise KeyError(
                f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(data)}"
            )
        return data[field]


def _vault() -> VaultClient:
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def _read_fields(path: str, required: tuple[str, ...], optional: tuple[str, ...] = ()) -> Dict[str, str]:
    """Fields of one secret, read from Vault at most once per process."""
    wanted = required + optional
    missing = [f for f in required if f"{_SECRET_PREFIX}/{path}/{f}" not in _secret_cache]
    if missing:
        data = _vault().read_secret(path)
        for field in required:
            if field not in data:
                raise KeyError(f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'")
        for field in wanted:
            if field in data:
                _secret_cache[f"{_SECRET_PREFIX}/{path}/{field}"] = data[field]

    return {
        f: _secret_cache[f"{_SECRET_PREFIX}/{path}/{f}"]
        for f in wanted
        if f"{_SECRET_PREFIX}/{path}/{f}" in _secret_cache
    }


def get_database_url() -> str:
    return _read_fields("database", ("url",))["url"]


def get_valkey_url() -> str:
    return _read_fields("valkey", ("url",))["url"]


def get_notification_config() -> Dict[str, str]:
    """gateway_url, api_key and hmac_secret for the notification gateway."""
    return _read_fields("notifications", ("gateway_url", "api_key", "hmac_secret"))


def get_gateway_config(gateway: GatewayName) -> Dict[str, str] | None:
    """Credentials stored at billing/<gateway>, or None if the gateway is not set up."""
    required, optional = GATEWAY_SECRET_FIELDS[gateway]
    try:
        return _read_fields(gateway.value, required, optional)
    except SecretNotFoundError:
        logger.info(f"No '{gateway.value}' secret in Vault, gateway not configured")
        return None
