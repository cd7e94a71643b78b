"""Vault — Envelope encryption for per-user secrets.

Key hierarchy:
    master key (from configuration, process lifetime)
        └── per-user data key (random, stored wrapped under the master key)
                └── vault payloads (encrypted under the user's data key)

Security Note (Threat Model):
    Data keys and decrypted payloads exist in process memory while a
    request is being served. Anyone holding both the database and the
    master key secret can read every vault.
"""

from .crypto import EncryptedBlob, encrypt_bytes, decrypt_bytes
from .config import VaultConfig, derive_master_key, load_master_key, generate_master_key
from .user_keys import UserKeyManager, generate_data_key
from .codec import VaultRecordCodec, encode_entry, decode_entry, normalize_payload

__all__ = [
    "EncryptedBlob",
    "encrypt_bytes",
    "decrypt_bytes",
    "VaultConfig",
    "derive_master_key",
    "load_master_key",
    "generate_master_key",
    "UserKeyManager",
    "generate_data_key",
    "VaultRecordCodec",
    "encode_entry",
    "decode_entry",
    "normalize_payload",
]
