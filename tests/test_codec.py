"""Tests for vault payload encoding."""
import os

import pytest

from navigator_vault.exceptions import AuthenticationError, CorruptEntryError
from navigator_vault.models import Credential, ServerType, VaultPayload
from navigator_vault.vault.codec import (
    VaultRecordCodec,
    decode_entry,
    encode_entry,
    normalize_credentials,
    normalize_payload,
)
from navigator_vault.vault.crypto import decrypt_bytes, encrypt_bytes, serialize_value


@pytest.fixture
def data_key():
    return os.urandom(32)


@pytest.fixture
def payload():
    return VaultPayload(
        urls=["https://github.com"],
        credentials=[Credential(username="octocat", password="ghp_example")],
        notes="2FA enabled",
    )


class TestNormalize:
    """Tests for credential id normalization."""

    def test_missing_ids_generated(self):
        """Test credentials without an id receive one."""
        creds = normalize_credentials([Credential(username="a"), Credential(id="")])
        assert all(c.id for c in creds)
        assert creds[0].id != creds[1].id

    def test_existing_ids_kept(self):
        """Test credentials keep ids they already have."""
        creds = normalize_credentials([Credential(id="keep-me", username="a")])
        assert creds[0].id == "keep-me"

    def test_normalize_payload_copies(self, payload):
        """Test normalize_payload does not mutate its input."""
        normalized = normalize_payload(payload)
        assert payload.credentials[0].id is None
        assert normalized.credentials[0].id


class TestEncodeDecode:
    """Tests for encode_entry / decode_entry."""

    def test_round_trip(self, data_key, payload):
        """Test decoding returns the payload with normalized credentials."""
        blob = encode_entry(data_key, payload)
        decoded = decode_entry(data_key, blob)
        assert decoded.urls == ["https://github.com"]
        assert decoded.notes == "2FA enabled"
        assert decoded.credentials[0].username == "octocat"
        assert decoded.credentials[0].password == "ghp_example"
        assert decoded.credentials[0].id

    def test_ciphertext_hides_secrets(self, data_key, payload):
        """Test the stored blob contains no plaintext."""
        blob = encode_entry(data_key, payload)
        assert b"ghp_example" not in blob.ciphertext
        assert b"octocat" not in blob.ciphertext

    def test_server_payload(self, data_key):
        """Test server type uses its client field name."""
        payload = VaultPayload(ips=["10.0.0.5"], server_type=ServerType.BARE_METAL)
        blob = encode_entry(data_key, payload)
        raw = decrypt_bytes(data_key, blob)
        assert b'"serverType":"Bare Metal"' in raw
        assert decode_entry(data_key, blob).server_type is ServerType.BARE_METAL

    def test_wrong_key(self, data_key, payload):
        """Test decoding under another user's key fails."""
        blob = encode_entry(data_key, payload)
        with pytest.raises(AuthenticationError):
            decode_entry(os.urandom(32), blob)

    def test_not_json(self, data_key):
        """Test authentic but non-JSON plaintext is a corrupt entry."""
        blob = encrypt_bytes(data_key, b"\x00not json")
        with pytest.raises(CorruptEntryError):
            decode_entry(data_key, blob)

    def test_wrong_shape(self, data_key):
        """Test authentic JSON of the wrong shape is a corrupt entry."""
        blob = encrypt_bytes(data_key, serialize_value({"urls": "not-a-list"}))
        with pytest.raises(CorruptEntryError):
            decode_entry(data_key, blob)

    def test_record_codec(self, data_key, payload):
        """Test the bound codec uses its data key."""
        codec = VaultRecordCodec(data_key)
        assert codec.decode(codec.encode(payload)).notes == "2FA enabled"
        assert data_key.hex() not in repr(codec)
