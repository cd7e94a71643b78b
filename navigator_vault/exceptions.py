"""Error taxonomy for Navigator Vault."""
from enum import Enum


class VaultError(Exception):
    """Base exception for vault operations."""

    pass


class AuthenticationError(VaultError):
    """AEAD tag verification failed.

    The message is uniform on purpose: callers never learn whether the
    key was wrong, the data was corrupted or the blob was tampered with.
    """

    def __init__(self, message: str = "Cannot access vault."):
        super().__init__(message)


class CorruptEntryError(VaultError):
    """A payload decrypted correctly but could not be deserialized."""

    def __init__(self, message: str = "Vault entry is corrupted."):
        super().__init__(message)


class ConfigurationError(VaultError):
    """Missing or invalid configuration; the process must not start."""

    pass


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ADMIN_REQUIRED = "admin_required"
    REGISTRATION_CLOSED = "registration_closed"
    SELF_DELETE = "self_delete"
    SELF_ROLE_CHANGE = "self_role_change"
    SELF_PASSWORD_RESET = "self_password_reset"
    LAST_ADMIN = "last_admin"
    RECOVERY_DISABLED = "recovery_disabled"
    INVALID_RECOVERY_KEY = "invalid_recovery_key"


_DENY_MESSAGES = {
    DenyReason.UNAUTHENTICATED: "Unauthorized",
    DenyReason.ADMIN_REQUIRED: "Admin privileges required",
    DenyReason.REGISTRATION_CLOSED: "Registration is disabled",
    DenyReason.SELF_DELETE: (
        "You cannot delete the user you are currently signed in as"
    ),
    DenyReason.SELF_ROLE_CHANGE: "You cannot change your own role",
    DenyReason.SELF_PASSWORD_RESET: (
        "Use change password for your own account"
    ),
    DenyReason.LAST_ADMIN: "Cannot demote the last admin",
    DenyReason.RECOVERY_DISABLED: "Password recovery is disabled",
    DenyReason.INVALID_RECOVERY_KEY: "Invalid recovery key",
}


class AuthorizationDenied(VaultError):
    """Raised when a role or ownership rule rejects an operation."""

    def __init__(self, reason: DenyReason, message: str = None):
        self.reason = DenyReason(reason)
        super().__init__(message or _DENY_MESSAGES[self.reason])


class NotFoundError(VaultError):
    """Raised when a user or vault entry does not exist for the caller."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ConflictError(VaultError):
    """Raised when an email is already registered."""

    def __init__(self, message: str = "Email already registered"):
        super().__init__(message)


class InvalidCredentialsError(VaultError):
    """Raised when a password or bearer token does not verify."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class InvalidRequestError(VaultError):
    """Raised when a request is malformed before it reaches the store."""

    pass
