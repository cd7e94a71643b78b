"""Request bodies accepted by the vault service."""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .models import Credential, EntryType, Role, ServerType, VaultPayload

_PASSWORD_MIN = 8


class _Body(BaseModel):
    model_config = {"populate_by_name": True}


class AuthInput(_Body):
    email: EmailStr
    password: str = Field(min_length=_PASSWORD_MIN, repr=False)


class CreateUserInput(AuthInput):
    role: Optional[Role] = None


class RecoverInput(_Body):
    email: EmailStr
    recovery_key: str = Field(alias="recoveryKey", min_length=1, repr=False)
    new_password: str = Field(alias="newPassword", min_length=_PASSWORD_MIN, repr=False)


class RoleInput(_Body):
    role: Role


class ResetPasswordInput(_Body):
    new_password: str = Field(alias="newPassword", min_length=_PASSWORD_MIN, repr=False)


class ChangePasswordInput(_Body):
    current_password: str = Field(alias="currentPassword", min_length=1, repr=False)
    new_password: str = Field(alias="newPassword", min_length=_PASSWORD_MIN, repr=False)


class EntryInput(_Body):
    """A vault entry as submitted by a client, before encryption."""

    title: str = Field(min_length=1)
    type: EntryType
    urls: list[str] = Field(default_factory=list)
    ips: list[str] = Field(default_factory=list)
    server_type: Optional[ServerType] = Field(default=None, alias="serverType")
    credentials: list[Credential] = Field(default_factory=list)
    notes: str = ""
    category: str = Field(default="General", min_length=1)

    def payload(self) -> VaultPayload:
        return VaultPayload(
            urls=self.urls,
            ips=self.ips,
            server_type=self.server_type,
            credentials=self.credentials,
            notes=self.notes,
        )
