"""
Vault Crypto Core — Authenticated encryption and serialization.

Every secret at rest is an ``EncryptedBlob``: AES-256-GCM ciphertext plus
the 96-bit nonce, the 128-bit authentication tag and the algorithm tag.
The same primitive wraps per-user data keys under the master key and
encrypts vault payloads under a user's data key.

Security Note:
    Never log plaintext, ciphertext or key values.
    Nonces are random 96-bit per call; collision probability negligible
    under normal usage.
"""
import os
import logging
from typing import Any, Optional

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import AuthenticationError
from ..models import ALGORITHM, EncryptedBlob

logger = logging.getLogger("navigator.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # 128-bit GCM tag
KEY_LENGTH = 32  # AES-256

__all__ = (
    "EncryptedBlob",
    "encrypt_bytes",
    "decrypt_bytes",
    "serialize_value",
    "deserialize_value",
)


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise ValueError(f"Key must be {KEY_LENGTH} bytes")


def encrypt_bytes(
    key: bytes,
    plaintext: bytes,
    associated_data: Optional[bytes] = None,
) -> EncryptedBlob:
    """Encrypt plaintext under a 32-byte key.

    A fresh random nonce is drawn on every call.

    Args:
        key: Raw 32-byte key.
        plaintext: Data to encrypt.
        associated_data: Optional data authenticated but not encrypted.

    Returns:
        EncryptedBlob with ciphertext, nonce and tag split out.
    """
    _check_key(key)
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(bytes(key)).encrypt(nonce, plaintext, associated_data)
    # AESGCM appends the tag to the ciphertext
    return EncryptedBlob(
        ciphertext=sealed[:-TAG_SIZE],
        nonce=nonce,
        tag=sealed[-TAG_SIZE:],
        algorithm=ALGORITHM,
    )


def decrypt_bytes(
    key: bytes,
    blob: EncryptedBlob,
    associated_data: Optional[bytes] = None,
) -> bytes:
    """Decrypt an EncryptedBlob.

    Args:
        key: Raw 32-byte key.
        blob: Envelope produced by ``encrypt_bytes``.
        associated_data: Must match the value used on encryption.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        AuthenticationError: On unknown algorithm, malformed nonce or tag,
            wrong key, wrong associated data or tampered ciphertext.
    """
    _check_key(key)
    if (
        blob.algorithm != ALGORITHM
        or len(blob.nonce) != NONCE_SIZE
        or len(blob.tag) != TAG_SIZE
    ):
        raise AuthenticationError()
    try:
        return AESGCM(bytes(key)).decrypt(
            blob.nonce, blob.ciphertext + blob.tag, associated_data,
        )
    except InvalidTag:
        raise AuthenticationError() from None


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to canonical bytes for encryption.

    Keys are sorted so equal values always serialize identically.

    Args:
        value: JSON-compatible Python value.

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes produced by ``serialize_value``.

    Raises:
        orjson.JSONDecodeError: If data is not valid JSON.
    """
    return orjson.loads(data)
