"""
User Key Manager — Per-user data keys wrapped under the master key.

Each account owns exactly one 32-byte data key, generated at account
creation. Only the wrapped form is ever persisted; the plaintext key is
unwrapped on demand for a single request and then dropped.

Security Note:
    An unwrap failure means either the master key changed or the stored
    blob is corrupted. Both need operator intervention, so the failure is
    raised loudly and never replaced with a default.
"""
import os
import logging

from ..exceptions import AuthenticationError
from .crypto import KEY_LENGTH, EncryptedBlob, encrypt_bytes, decrypt_bytes

logger = logging.getLogger("navigator.vault")


def generate_data_key() -> bytes:
    """Return 32 cryptographically random bytes for a new account."""
    return os.urandom(KEY_LENGTH)


class UserKeyManager:
    """Wraps and unwraps per-user data keys with the process master key.

    The master key is passed in once, at construction, and never changes
    for the lifetime of the manager.
    """

    def __init__(self, master_key: bytes):
        if len(master_key) != KEY_LENGTH:
            raise ValueError(f"Master key must be {KEY_LENGTH} bytes")
        self._master_key = bytes(master_key)

    def __repr__(self) -> str:
        return "<UserKeyManager>"

    def wrap(self, data_key: bytes) -> EncryptedBlob:
        """Encrypt a data key under the master key, without associated data."""
        if len(data_key) != KEY_LENGTH:
            raise ValueError(f"Data key must be {KEY_LENGTH} bytes")
        return encrypt_bytes(self._master_key, data_key)

    def unwrap(self, blob: EncryptedBlob) -> bytes:
        """Recover a data key from its wrapped form.

        Raises:
            AuthenticationError: If the master key changed or the blob is
                corrupted.
        """
        try:
            data_key = decrypt_bytes(self._master_key, blob)
        except AuthenticationError:
            logger.error(
                "Unable to unwrap a user data key: master key mismatch "
                "or corrupted key blob"
            )
            raise
        if len(data_key) != KEY_LENGTH:
            logger.error("Unwrapped user data key has an invalid length")
            raise AuthenticationError()
        return data_key

    def wrap_new_key(self) -> EncryptedBlob:
        """Mint a fresh data key and return only its wrapped form."""
        return self.wrap(generate_data_key())
