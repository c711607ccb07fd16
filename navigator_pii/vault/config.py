"""
Vault Configuration — Transit engine address, credentials and validated settings.

Reads settings from environment variables:
    VAULT_ADDR            = engine base URL (default http://vault:8200)
    VAULT_TOKEN           = static token (development / administrative)
    VAULT_ROLE_ID         = AppRole role id (production)
    VAULT_SECRET_ID       = AppRole secret id (production)
    VAULT_AUTH_METHOD     = auth mount used for role login (default approle)
    VAULT_TRANSIT_MOUNT   = transit engine mount (default transit)
    VAULT_TRANSIT_KEY     = transit key name (default pii-encryption)
    VAULT_TIMEOUT         = per-request timeout in seconds (default 10)
    VAULT_RENEW_MARGIN    = seconds subtracted from the lease (default 300)

Security Note:
    Never log tokens or secret ids. Only log the auth mode and key names.
"""
import os
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger("navigator.pii")

# Deployment templates ship these literal values for unset role credentials.
_PLACEHOLDER = "placeholder"


class AuthMode(str, Enum):
    STATIC = "static"
    ROLE = "role"
    UNCONFIGURED = "unconfigured"


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


class VaultConfig(BaseModel):
    """Validated transit client configuration."""

    address: str = Field(default="http://vault:8200")
    token: Optional[SecretStr] = None
    role_id: Optional[str] = None
    secret_id: Optional[SecretStr] = None
    auth_method: str = Field(default="approle")
    transit_mount: str = Field(default="transit")
    key_name: str = Field(default="pii-encryption")
    timeout: float = Field(default=10.0, gt=0)
    renew_margin: int = Field(default=300, ge=0)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Require an absolute http(s) URL; strip the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Vault address must be an http(s) URL: {v}")
        return v.rstrip("/")

    @field_validator("auth_method", "transit_mount", "key_name")
    @classmethod
    def validate_path_segment(cls, v: str) -> str:
        v = v.strip("/")
        if not v:
            raise ValueError("Vault path segments cannot be empty")
        return v

    @model_validator(mode="after")
    def drop_placeholder_role(self) -> "VaultConfig":
        """Treat placeholder role credentials as unset."""
        if self.role_id == _PLACEHOLDER:
            self.role_id = None
        if self.secret_id is not None and (
            self.secret_id.get_secret_value() in ("", _PLACEHOLDER)
        ):
            self.secret_id = None
        return self

    @property
    def auth_mode(self) -> AuthMode:
        """Which credential source is active; a static token wins."""
        if self.token is not None and self.token.get_secret_value():
            return AuthMode.STATIC
        if self.role_id and self.secret_id is not None:
            return AuthMode.ROLE
        return AuthMode.UNCONFIGURED

    @property
    def configured(self) -> bool:
        return self.auth_mode is not AuthMode.UNCONFIGURED

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        values = {
            "address": _env("VAULT_ADDR"),
            "token": _env("VAULT_TOKEN"),
            "role_id": _env("VAULT_ROLE_ID"),
            "secret_id": _env("VAULT_SECRET_ID"),
            "auth_method": _env("VAULT_AUTH_METHOD"),
            "transit_mount": _env("VAULT_TRANSIT_MOUNT"),
            "key_name": _env("VAULT_TRANSIT_KEY"),
            "timeout": _env("VAULT_TIMEOUT"),
            "renew_margin": _env("VAULT_RENEW_MARGIN"),
        }
        config = cls(**{k: v for k, v in values.items() if v is not None})
        logger.debug(
            "Loaded vault config: addr=%s mount=%s key=%s auth=%s",
            config.address, config.transit_mount, config.key_name,
            config.auth_mode.value,
        )
        return config
