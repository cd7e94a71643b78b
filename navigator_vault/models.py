"""Records and payload types for Navigator Vault."""
import base64
import binascii
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from .exceptions import AuthenticationError

ALGORITHM = "aes-256-gcm"


class EncryptedBlob(BaseModel):
    """Self-describing AEAD envelope: ciphertext, nonce, tag and algorithm."""

    ciphertext: bytes
    nonce: bytes
    tag: bytes
    algorithm: str = ALGORITHM

    model_config = {"frozen": True}

    def to_record(self) -> dict[str, str]:
        """Return the base64 text columns used for storage."""
        return {
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "tag": base64.b64encode(self.tag).decode("ascii"),
            "alg": self.algorithm,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EncryptedBlob":
        """Rebuild a blob from its stored base64 text columns.

        Undecodable columns surface as ``AuthenticationError``, the same
        as any other damaged envelope.
        """
        try:
            return cls(
                ciphertext=base64.b64decode(record["ciphertext"], validate=True),
                nonce=base64.b64decode(record["nonce"], validate=True),
                tag=base64.b64decode(record["tag"], validate=True),
                algorithm=record.get("alg") or ALGORITHM,
            )
        except (KeyError, TypeError, binascii.Error, ValueError) as err:
            raise AuthenticationError() from err


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def normalize(cls, value: Any) -> "Role":
        """Anything other than an explicit admin role is a plain user.

        Tokens issued before role support carry no role at all.
        """
        if isinstance(value, Role):
            return value
        return cls.ADMIN if value == cls.ADMIN.value else cls.USER


class EntryType(str, Enum):
    APPLICATION = "Application"
    SERVER = "Server"


class ServerType(str, Enum):
    VM = "VM"
    BARE_METAL = "Bare Metal"
    DOCKER_CONTAINER = "Docker Container"
    CT = "CT"
    SYSTEMD_NSPAWN = "Systemd-Nspawn"


class Credential(BaseModel):
    id: Optional[str] = None
    username: str = ""
    password: str = Field(default="", repr=False)


class VaultPayload(BaseModel):
    """The encrypted part of a vault entry."""

    urls: list[str] = Field(default_factory=list)
    ips: list[str] = Field(default_factory=list)
    server_type: Optional[ServerType] = Field(default=None, alias="serverType")
    credentials: list[Credential] = Field(default_factory=list)
    notes: str = ""

    model_config = {"populate_by_name": True}

    def to_document(self) -> dict:
        """JSON-ready mapping using the client field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UserAccount(BaseModel):
    id: str
    email: str
    password_hash: str = Field(repr=False)
    role: Role = Role.USER
    wrapped_key: Optional[EncryptedBlob] = Field(default=None, repr=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def public(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role.value,
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }


class VaultEntry(BaseModel):
    """A stored vault item; title, type and category stay in plaintext."""

    id: str
    user_id: str
    title: str
    type: EntryType
    category: str
    payload: EncryptedBlob = Field(repr=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def document(self, payload: VaultPayload) -> dict:
        """Merge plaintext metadata with a decrypted payload."""
        doc = {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "category": self.category,
        }
        doc.update(payload.to_document())
        doc.setdefault("urls", [])
        doc.setdefault("ips", [])
        doc["createdAt"] = _isoformat(self.created_at)
        doc["updatedAt"] = _isoformat(self.updated_at)
        return doc


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
