"""
VaultService — Account and vault operations on top of the key hierarchy.

Provides the public API consumed by the request layer:
- registration, login, password recovery and self-service password change
- admin user management: create, delete, change role, reset password
- vault entries: list, create, update, delete (always scoped to the caller)
- the core envelope interface: ``wrap_new_user_key``,
  ``encrypt_vault_payload``, ``decrypt_vault_payload`` and ``authorize``

Every operation that touches persisted state runs in one store
transaction spanning the authorization check and the writes. Policy
checks always happen before any key is unwrapped.

Security Note:
    Never log plaintext, ciphertext or key material. Only log ids,
    emails and operation names. Data keys are unwrapped per request and
    never cached.
"""
import uuid
import logging
from typing import Any, Optional

from .auth import hash_password, verify_password
from .exceptions import ConflictError, InvalidCredentialsError, NotFoundError
from .models import EncryptedBlob, Role, UserAccount, VaultEntry, VaultPayload
from .policy import AccessPolicy, Action, Caller, Decision, Scope
from .schemas import EntryInput
from .vault.codec import VaultRecordCodec, decode_entry, encode_entry, normalize_payload
from .vault.config import VaultConfig
from .vault.user_keys import UserKeyManager

logger = logging.getLogger("navigator.vault")


class VaultService:
    """Password vault operations.

    Args:
        config: Validated configuration; holds the master key.
        store: Identity and vault store exposing ``transaction()``.
    """

    def __init__(self, config: VaultConfig, store: Any):
        self.config = config
        self.store = store
        self.keys = UserKeyManager(config.master_key)
        self.policy = AccessPolicy(config.recovery_key)

    def __repr__(self) -> str:
        return f"<VaultService store={getattr(self.store, 'backend', '?')}>"

    # ------------------------------------------------------------------
    # Core envelope interface
    # ------------------------------------------------------------------

    def wrap_new_user_key(self) -> EncryptedBlob:
        """Mint a data key for a new account and return its wrapped form."""
        return self.keys.wrap_new_key()

    async def _data_key(self, session: Any, owner_id: str) -> bytes:
        wrapped = await session.get_wrapped_key(owner_id)
        if wrapped is None:
            raise NotFoundError("User not found")
        return self.keys.unwrap(wrapped)

    async def encrypt_vault_payload(
        self, owner_id: str, payload: VaultPayload, session: Any = None,
    ) -> EncryptedBlob:
        """Encrypt payload under the owner's freshly unwrapped data key."""
        if session is None:
            async with self.store.transaction() as session:
                return await self.encrypt_vault_payload(owner_id, payload, session)
        data_key = await self._data_key(session, owner_id)
        return encode_entry(data_key, payload)

    async def decrypt_vault_payload(
        self, owner_id: str, blob: EncryptedBlob, session: Any = None,
    ) -> VaultPayload:
        """Decrypt blob with the owner's freshly unwrapped data key."""
        if session is None:
            async with self.store.transaction() as session:
                return await self.decrypt_vault_payload(owner_id, blob, session)
        data_key = await self._data_key(session, owner_id)
        return decode_entry(data_key, blob)

    async def authorize(
        self,
        caller: Optional[Caller],
        action: Action,
        target_id: Optional[str] = None,
        role: Optional[Role] = None,
        session: Any = None,
    ) -> Decision:
        """Return the policy decision for caller performing action."""
        if session is None:
            async with self.store.transaction() as session:
                return await self.authorize(caller, action, target_id, role, session)
        return await self.policy.authorize(session, caller, action, target_id, role)

    # ------------------------------------------------------------------
    # Registration, login and recovery
    # ------------------------------------------------------------------

    async def registration_status(self) -> dict:
        async with self.store.transaction() as session:
            count = await session.count_users()
        return {"allowRegister": count == 0, "userCount": count}

    def recovery_status(self) -> dict:
        return {"enabled": self.policy.recovery_enabled}

    async def _new_account(
        self, session: Any, email: str, password: str, role: Role,
    ) -> UserAccount:
        if await session.get_user_by_email(email) is not None:
            raise ConflictError()
        password_hash = await hash_password(password, self.config.bcrypt_rounds)
        account = UserAccount(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=password_hash,
            role=role,
            wrapped_key=self.wrap_new_user_key(),
        )
        return await session.insert_user(account)

    async def register(self, email: str, password: str) -> UserAccount:
        """Create the first account, which always becomes an admin.

        Raises:
            AuthorizationDenied: If any account already exists.
        """
        async with self.store.transaction() as session:
            await session.lock_accounts()
            (await self.policy.check_registration(session)).enforce()
            account = await self._new_account(session, email, password, Role.ADMIN)
        logger.info("Registered first account user=%s as admin", account.id)
        return account

    async def login(self, email: str, password: str) -> UserAccount:
        async with self.store.transaction() as session:
            account = await session.get_user_by_email(email)
        if account is None or not await verify_password(password, account.password_hash):
            raise InvalidCredentialsError()
        return account

    async def recover(self, email: str, recovery_key: str, new_password: str) -> None:
        """Reset any account's password with the shared recovery secret.

        Raises:
            AuthorizationDenied: If recovery is disabled or the secret does
                not match.
            NotFoundError: If no account uses this email.
        """
        self.policy.check_recovery(recovery_key).enforce()
        password_hash = await hash_password(new_password, self.config.bcrypt_rounds)
        async with self.store.transaction() as session:
            if not await session.update_password_by_email(email, password_hash):
                raise NotFoundError("User not found")
        logger.info("Password recovered for email=%s", email)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def me(self, caller: Caller) -> UserAccount:
        async with self.store.transaction() as session:
            account = await session.get_user(caller.user_id)
        if account is None:
            raise NotFoundError("User not found")
        caller.resolved_role = account.role
        return account

    async def list_users(self, caller: Caller) -> list[UserAccount]:
        """Admins see every account; users see only their own."""
        async with self.store.transaction() as session:
            decision = (
                await self.policy.authorize(session, caller, Action.LIST_USERS)
            ).enforce()
            if decision.scope is Scope.ALL:
                return await session.list_users()
            account = await session.get_user(caller.user_id)
            return [account] if account else []

    async def create_user(
        self,
        caller: Caller,
        email: str,
        password: str,
        role: Optional[Role] = None,
    ) -> UserAccount:
        async with self.store.transaction() as session:
            (
                await self.policy.authorize(session, caller, Action.CREATE_USER)
            ).enforce()
            account = await self._new_account(
                session, email, password, role or Role.USER,
            )
        logger.info(
            "User %s created user=%s role=%s",
            caller.user_id, account.id, account.role.value,
        )
        return account

    async def delete_user(self, caller: Caller, target_id: str) -> str:
        async with self.store.transaction() as session:
            (
                await self.policy.authorize(
                    session, caller, Action.DELETE_USER, target_id,
                )
            ).enforce()
            if not await session.delete_user(target_id):
                raise NotFoundError("User not found")
        logger.info("User %s deleted user=%s", caller.user_id, target_id)
        return target_id

    async def change_role(
        self, caller: Caller, target_id: str, role: Role,
    ) -> UserAccount:
        async with self.store.transaction() as session:
            (
                await self.policy.authorize(
                    session, caller, Action.CHANGE_ROLE, target_id, role,
                )
            ).enforce()
            await session.update_role(target_id, role)
            account = await session.get_user(target_id)
        logger.info(
            "User %s changed role of user=%s to %s",
            caller.user_id, target_id, role.value,
        )
        return account

    async def reset_password(
        self, caller: Caller, target_id: str, new_password: str,
    ) -> None:
        async with self.store.transaction() as session:
            (
                await self.policy.authorize(
                    session, caller, Action.RESET_PASSWORD, target_id,
                )
            ).enforce()
            password_hash = await hash_password(
                new_password, self.config.bcrypt_rounds,
            )
            if not await session.update_password(target_id, password_hash):
                raise NotFoundError("User not found")
        logger.info("User %s reset password of user=%s", caller.user_id, target_id)

    async def change_password(
        self, caller: Caller, current_password: str, new_password: str,
    ) -> None:
        async with self.store.transaction() as session:
            account = await session.get_user(caller.user_id)
            if account is None:
                raise NotFoundError("User not found")
            if not await verify_password(current_password, account.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")
            password_hash = await hash_password(
                new_password, self.config.bcrypt_rounds,
            )
            await session.update_password(caller.user_id, password_hash)

    # ------------------------------------------------------------------
    # Vault entries
    # ------------------------------------------------------------------

    async def list_entries(
        self, caller: Caller,
    ) -> list[tuple[VaultEntry, VaultPayload]]:
        async with self.store.transaction() as session:
            entries = await session.list_entries(caller.user_id)
            if not entries:
                return []
            codec = VaultRecordCodec(await self._data_key(session, caller.user_id))
            return [(entry, codec.decode(entry.payload)) for entry in entries]

    async def create_entry(
        self, caller: Caller, data: EntryInput,
    ) -> tuple[VaultEntry, VaultPayload]:
        async with self.store.transaction() as session:
            codec = VaultRecordCodec(await self._data_key(session, caller.user_id))
            payload = normalize_payload(data.payload())
            entry = VaultEntry(
                id=str(uuid.uuid4()),
                user_id=caller.user_id,
                title=data.title,
                type=data.type,
                category=data.category,
                payload=codec.encode(payload),
            )
            stored = await session.insert_entry(entry)
        logger.debug("Vault create: user=%s entry=%s", caller.user_id, stored.id)
        return stored, payload

    async def update_entry(
        self, caller: Caller, entry_id: str, data: EntryInput,
    ) -> tuple[VaultEntry, VaultPayload]:
        async with self.store.transaction() as session:
            current = await session.get_entry(
                caller.user_id, entry_id, for_update=True,
            )
            if current is None:
                raise NotFoundError()
            codec = VaultRecordCodec(await self._data_key(session, caller.user_id))
            payload = normalize_payload(data.payload())
            entry = current.model_copy(update={
                "title": data.title,
                "type": data.type,
                "category": data.category,
                "payload": codec.encode(payload),
            })
            stored = await session.update_entry(entry)
            if stored is None:
                raise NotFoundError()
        logger.debug("Vault update: user=%s entry=%s", caller.user_id, entry_id)
        return stored, payload

    async def delete_entry(self, caller: Caller, entry_id: str) -> None:
        async with self.store.transaction() as session:
            if not await session.delete_entry(caller.user_id, entry_id):
                raise NotFoundError()
        logger.debug("Vault delete: user=%s entry=%s", caller.user_id, entry_id)
