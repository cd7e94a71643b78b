"""
Vault Record Codec — Structured vault payloads to ciphertext and back.

Payloads are serialized to canonical JSON (sorted keys) and sealed under
the owning user's data key. Title, type and category never go through the
codec; they stay in plaintext for listing.
"""
import uuid
import logging

import orjson
from pydantic import ValidationError

from ..exceptions import CorruptEntryError
from ..models import Credential, EncryptedBlob, VaultPayload
from .crypto import encrypt_bytes, decrypt_bytes, serialize_value, deserialize_value

logger = logging.getLogger("navigator.vault")


def normalize_credentials(credentials: list[Credential]) -> list[Credential]:
    """Give every credential a stable id.

    Credentials that already carry an id keep it; only missing or empty
    ids are generated.
    """
    return [
        Credential(
            id=cred.id if cred.id else str(uuid.uuid4()),
            username=cred.username or "",
            password=cred.password or "",
        )
        for cred in credentials
    ]


def normalize_payload(payload: VaultPayload) -> VaultPayload:
    """Return a copy of payload with normalized credentials."""
    return payload.model_copy(
        update={"credentials": normalize_credentials(payload.credentials)}
    )


def encode_entry(data_key: bytes, payload: VaultPayload) -> EncryptedBlob:
    """Serialize and encrypt a vault payload under a user's data key.

    Credentials are normalized first, so ids generated here are the ones
    stored. Callers that need to echo the ids back should call
    ``normalize_payload`` themselves and encode its result.
    """
    normalized = normalize_payload(payload)
    return encrypt_bytes(data_key, serialize_value(normalized.to_document()))


def decode_entry(data_key: bytes, blob: EncryptedBlob) -> VaultPayload:
    """Decrypt and deserialize a vault payload.

    Raises:
        AuthenticationError: If the blob does not verify under data_key.
        CorruptEntryError: If the decrypted bytes are not a valid payload.
    """
    plaintext = decrypt_bytes(data_key, blob)
    try:
        return VaultPayload.model_validate(deserialize_value(plaintext))
    except (orjson.JSONDecodeError, ValidationError) as err:
        logger.error("Decrypted vault payload failed to deserialize")
        raise CorruptEntryError() from err


class VaultRecordCodec:
    """Codec bound to one unwrapped data key.

    Built per request; the key is not cached beyond the instance.
    """

    def __init__(self, data_key: bytes):
        self._data_key = data_key

    def __repr__(self) -> str:
        return "<VaultRecordCodec>"

    def encode(self, payload: VaultPayload) -> EncryptedBlob:
        return encode_entry(self._data_key, payload)

    def decode(self, blob: EncryptedBlob) -> VaultPayload:
        return decode_entry(self._data_key, blob)
