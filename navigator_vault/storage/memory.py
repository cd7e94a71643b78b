"""
In-memory identity and vault store.

Implements the same session API as the PostgreSQL store. Transactions are
serialized behind a single lock and roll back to a snapshot on any error,
so the all-or-nothing contract holds here as well. Intended for tests and
local development.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from ..exceptions import ConflictError
from ..models import EncryptedBlob, Role, UserAccount, VaultEntry

logger = logging.getLogger("navigator.vault")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemorySession:
    """Operations against the store's state inside one transaction."""

    def __init__(self, store: "MemoryStore"):
        self._store = store

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def lock_accounts(self) -> None:
        # transactions are already serialized
        return None

    async def count_users(self) -> int:
        return len(self._store.users)

    async def count_admins(self) -> int:
        return sum(1 for u in self._store.users.values() if u.role is Role.ADMIN)

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        user = self._store.users.get(user_id)
        return user.model_copy(update={"wrapped_key": None}) if user else None

    async def get_user_by_email(self, email: str) -> Optional[UserAccount]:
        for user in self._store.users.values():
            if user.email == email:
                return user.model_copy(update={"wrapped_key": None})
        return None

    async def get_role(self, user_id: str) -> Optional[Role]:
        user = self._store.users.get(user_id)
        return user.role if user else None

    async def get_wrapped_key(self, user_id: str) -> Optional[EncryptedBlob]:
        user = self._store.users.get(user_id)
        return user.wrapped_key if user else None

    async def list_users(self) -> list[UserAccount]:
        users = sorted(self._store.users.values(), key=lambda u: u.created_at)
        return [u.model_copy(update={"wrapped_key": None}) for u in users]

    async def insert_user(self, account: UserAccount) -> UserAccount:
        if any(u.email == account.email for u in self._store.users.values()):
            raise ConflictError()
        now = _now()
        stored = account.model_copy(update={"created_at": now, "updated_at": now})
        self._store.users[stored.id] = stored
        return stored

    async def update_role(self, user_id: str, role: Role) -> bool:
        return self._update_user(user_id, role=role)

    async def update_password(self, user_id: str, password_hash: str) -> bool:
        return self._update_user(user_id, password_hash=password_hash)

    async def update_password_by_email(self, email: str, password_hash: str) -> bool:
        for user in list(self._store.users.values()):
            if user.email == email:
                return self._update_user(user.id, password_hash=password_hash)
        return False

    async def delete_user(self, user_id: str) -> bool:
        if self._store.users.pop(user_id, None) is None:
            return False
        self._store.entries = {
            k: e for k, e in self._store.entries.items() if e.user_id != user_id
        }
        return True

    def _update_user(self, user_id: str, **changes) -> bool:
        user = self._store.users.get(user_id)
        if user is None:
            return False
        changes["updated_at"] = _now()
        self._store.users[user_id] = user.model_copy(update=changes)
        return True

    # ------------------------------------------------------------------
    # Vault entries
    # ------------------------------------------------------------------

    async def list_entries(self, owner_id: str) -> list[VaultEntry]:
        entries = [e for e in self._store.entries.values() if e.user_id == owner_id]
        return sorted(entries, key=lambda e: e.updated_at, reverse=True)

    async def get_entry(
        self, owner_id: str, entry_id: str, for_update: bool = False,
    ) -> Optional[VaultEntry]:
        entry = self._store.entries.get(entry_id)
        if entry is None or entry.user_id != owner_id:
            return None
        return entry

    async def insert_entry(self, entry: VaultEntry) -> VaultEntry:
        if entry.user_id not in self._store.users:
            raise LookupError(f"Unknown owner {entry.user_id}")
        now = _now()
        stored = entry.model_copy(update={"created_at": now, "updated_at": now})
        self._store.entries[stored.id] = stored
        return stored

    async def update_entry(self, entry: VaultEntry) -> Optional[VaultEntry]:
        current = await self.get_entry(entry.user_id, entry.id)
        if current is None:
            return None
        stored = entry.model_copy(update={
            "created_at": current.created_at,
            "updated_at": _now(),
        })
        self._store.entries[stored.id] = stored
        return stored

    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        if await self.get_entry(owner_id, entry_id) is None:
            return False
        del self._store.entries[entry_id]
        return True


class MemoryStore:
    """Process-local store with serialized, all-or-nothing transactions."""

    backend = "memory"

    def __init__(self):
        self.users: dict[str, UserAccount] = {}
        self.entries: dict[str, VaultEntry] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemorySession]:
        async with self._lock:
            snapshot = (dict(self.users), dict(self.entries))
            try:
                yield MemorySession(self)
            except BaseException:
                self.users, self.entries = snapshot
                raise

    async def migrate(self) -> None:
        return None

    async def close(self) -> None:
        return None
