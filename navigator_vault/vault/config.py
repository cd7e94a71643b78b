"""
Vault Configuration — Master key derivation and validated settings.

Reads settings from environment variables:
    APP_MASTER_KEY = <base64-encoded 32-byte key, or any secret text>
    APP_RECOVERY_KEY = <optional shared recovery secret>
    JWT_SECRET = <bearer token signing secret>

The master key is derived once at startup and kept in memory for the
lifetime of the process. It is never persisted and never re-derived
per request.

Security Note:
    Never log key material. Only log whether a value is configured.
"""
import os
import base64
import binascii
import secrets
import logging
from typing import Optional

from cryptography.hazmat.primitives import hashes
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import ConfigurationError
from ..version import __version__
from .crypto import KEY_LENGTH

logger = logging.getLogger("navigator.vault")

MASTER_KEY_ENV = "APP_MASTER_KEY"
RECOVERY_KEY_ENV = "APP_RECOVERY_KEY"

_DEFAULT_TOKEN_TTL = 30 * 24 * 3600  # 30 days


def derive_master_key(configured_secret: str) -> bytes:
    """Normalize a configured secret into a 32-byte symmetric key.

    The secret is decoded as base64 first; if that fails, its UTF-8 bytes
    are used instead. A 32-byte result is used verbatim, anything else is
    hashed with SHA-256. The derivation is deterministic so previously
    wrapped data keys stay readable across restarts.

    Base64 decoding is strict: a secret containing any character outside
    the base64 alphabet (spaces, ``!``, ``-``), or with invalid padding, is
    taken as UTF-8 text as a whole. Lenient decoders that skip such
    characters derive a different key from the same secret.

    Args:
        configured_secret: Value of the master key setting.

    Returns:
        32-byte master key.

    Raises:
        ConfigurationError: If the secret is empty.
    """
    raw = (configured_secret or "").strip()
    if not raw:
        raise ConfigurationError("Master key secret is empty")
    try:
        key_bytes = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        key_bytes = raw.encode("utf-8")
    if len(key_bytes) == KEY_LENGTH:
        return key_bytes
    digest = hashes.Hash(hashes.SHA256())
    digest.update(key_bytes)
    return digest.finalize()


def load_master_key() -> bytes:
    """Read APP_MASTER_KEY from the environment and derive the master key.

    Raises:
        ConfigurationError: If APP_MASTER_KEY is not set.
    """
    value = os.environ.get(MASTER_KEY_ENV)
    if not value or not value.strip():
        raise ConfigurationError(
            f"Missing required env: {MASTER_KEY_ENV}. "
            f"Set {MASTER_KEY_ENV}=<base64-encoded-32-byte-key>"
        )
    return derive_master_key(value)


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate new keys.

    Returns:
        Base64-encoded 32-byte key string.
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ConfigurationError(f"{name} must be an integer") from err


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as err:
        raise ConfigurationError(f"{name} must be a number") from err


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    master_key: bytes = Field(repr=False)
    jwt_secret: str = Field(min_length=1, repr=False)
    recovery_key: str = Field(default="", repr=False)
    database_url: Optional[str] = Field(default=None, repr=False)
    token_ttl: int = Field(default=_DEFAULT_TOKEN_TTL, ge=60)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    pool_size: int = Field(default=10, ge=1, le=100)
    connect_timeout: float = Field(default=10.0, gt=0)
    query_timeout: float = Field(default=30.0, gt=0)
    port: int = Field(default=3000, ge=1, le=65535)
    app_version: str = Field(default=__version__)

    model_config = {"frozen": True}

    @field_validator("master_key")
    @classmethod
    def validate_master_key(cls, v: bytes) -> bytes:
        """Master key must already be normalized to 32 bytes."""
        if len(v) != KEY_LENGTH:
            raise ValueError(
                f"master_key must be exactly {KEY_LENGTH} bytes, got {len(v)}"
            )
        return v

    @property
    def recovery_enabled(self) -> bool:
        return bool(self.recovery_key)

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigurationError: If a required value is missing or invalid.
        """
        master_key = load_master_key()
        jwt_secret = os.environ.get("JWT_SECRET")
        if not jwt_secret:
            raise ConfigurationError("Missing required env: JWT_SECRET")
        try:
            config = cls(
                master_key=master_key,
                jwt_secret=jwt_secret,
                recovery_key=os.environ.get(RECOVERY_KEY_ENV, ""),
                database_url=os.environ.get("DATABASE_URL"),
                token_ttl=_env_int("JWT_TTL_DAYS", 30) * 24 * 3600,
                bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
                pool_size=_env_int("DB_POOL_SIZE", 10),
                connect_timeout=_env_float("DB_CONNECT_TIMEOUT", 10.0),
                query_timeout=_env_float("DB_QUERY_TIMEOUT", 30.0),
                port=_env_int("PORT", 3000),
                app_version=os.environ.get("APP_VERSION", __version__),
            )
        except ValidationError as err:
            raise ConfigurationError(str(err)) from err
        logger.info(
            "Vault configuration loaded (recovery %s)",
            "enabled" if config.recovery_enabled else "disabled",
        )
        return config
