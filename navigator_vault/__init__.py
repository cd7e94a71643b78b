"""Navigator Vault.

Self-hosted password manager with per-user envelope encryption.
"""
from .version import (
    __title__, __description__, __version__, __author__, __author_email__
)
from .exceptions import (
    VaultError,
    AuthenticationError,
    CorruptEntryError,
    ConfigurationError,
    AuthorizationDenied,
    DenyReason,
    NotFoundError,
    ConflictError,
    InvalidCredentialsError,
    InvalidRequestError,
)
from .models import EncryptedBlob, Role, VaultPayload
from .policy import AccessPolicy, Action, Caller, Decision
from .service import VaultService
from .vault.config import VaultConfig

__all__ = (
    "VaultError",
    "AuthenticationError",
    "CorruptEntryError",
    "ConfigurationError",
    "AuthorizationDenied",
    "DenyReason",
    "NotFoundError",
    "ConflictError",
    "InvalidCredentialsError",
    "InvalidRequestError",
    "EncryptedBlob",
    "Role",
    "VaultPayload",
    "AccessPolicy",
    "Action",
    "Caller",
    "Decision",
    "VaultService",
    "VaultConfig",
)
