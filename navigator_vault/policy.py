"""
Access Control Policy — Roles and the rules gating account operations.

Roles are never trusted from a bearer token alone: every authorization
decision re-reads the caller's current role from the identity store.
The resolved role is remembered on the ``Caller`` for the rest of the
request only.
"""
import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from .exceptions import AuthorizationDenied, DenyReason, NotFoundError
from .models import Role

logger = logging.getLogger("navigator.vault")


class Action(str, Enum):
    CREATE_USER = "create_user"
    DELETE_USER = "delete_user"
    CHANGE_ROLE = "change_role"
    RESET_PASSWORD = "reset_other_password"
    LIST_USERS = "list_users"


class Scope(str, Enum):
    ALL = "all"
    SELF = "self"


_SELF_DENIALS = {
    Action.DELETE_USER: DenyReason.SELF_DELETE,
    Action.CHANGE_ROLE: DenyReason.SELF_ROLE_CHANGE,
    Action.RESET_PASSWORD: DenyReason.SELF_PASSWORD_RESET,
}


@dataclass
class Caller:
    """Authenticated identity for one request.

    ``claimed_role`` comes from the bearer token and may be stale.
    """

    user_id: str
    email: Optional[str] = None
    claimed_role: Role = Role.USER
    resolved_role: Optional[Role] = field(default=None, repr=False)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Caller":
        return cls(
            user_id=str(claims["sub"]),
            email=claims.get("email"),
            claimed_role=Role.normalize(claims.get("role")),
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    scope: Optional[Scope] = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, scope: Optional[Scope] = None) -> "Decision":
        return cls(allowed=True, scope=scope)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)

    def enforce(self) -> "Decision":
        """Raise AuthorizationDenied unless the decision allows."""
        if not self.allowed:
            raise AuthorizationDenied(self.reason)
        return self


class AccessPolicy:
    """Authorization rules over the admin/user role model.

    The recovery secret is a single shared credential: anyone holding it
    can reset any account's password by email. Leave it unset unless
    that trade-off is acceptable.

    Args:
        recovery_key: Shared recovery secret; empty disables recovery.
    """

    def __init__(self, recovery_key: str = ""):
        self._recovery_key = recovery_key or ""

    def __repr__(self) -> str:
        return f"<AccessPolicy recovery={'on' if self.recovery_enabled else 'off'}>"

    @property
    def recovery_enabled(self) -> bool:
        return bool(self._recovery_key)

    async def resolve_role(self, session: Any, caller: Caller) -> Optional[Role]:
        """Fetch the caller's authoritative role, once per request.

        Returns None when the account no longer exists.
        """
        if caller.resolved_role is None:
            role = await session.get_role(caller.user_id)
            if role is None:
                return None
            caller.resolved_role = Role.normalize(role)
        return caller.resolved_role

    async def authorize(
        self,
        session: Any,
        caller: Optional[Caller],
        action: Action,
        target_id: Optional[str] = None,
        new_role: Optional[Role] = None,
    ) -> Decision:
        """Decide whether caller may perform action on target_id.

        Must run inside the same transaction as the write it guards.

        Raises:
            NotFoundError: If a role change targets a missing account.
        """
        if caller is None:
            return self._deny(action, DenyReason.UNAUTHENTICATED, None)
        role = await self.resolve_role(session, caller)
        if role is None:
            return self._deny(action, DenyReason.UNAUTHENTICATED, caller)

        if action is Action.LIST_USERS:
            return Decision.allow(Scope.ALL if role is Role.ADMIN else Scope.SELF)

        if role is not Role.ADMIN:
            return self._deny(action, DenyReason.ADMIN_REQUIRED, caller)

        if action is Action.CREATE_USER:
            return Decision.allow()

        if target_id is not None and target_id == caller.user_id:
            return self._deny(action, _SELF_DENIALS[action], caller)

        if action is Action.CHANGE_ROLE:
            current = await session.get_role(target_id)
            if current is None:
                raise NotFoundError("User not found")
            demoting = (
                Role.normalize(current) is Role.ADMIN
                and Role.normalize(new_role) is not Role.ADMIN
            )
            if demoting and await session.count_admins() <= 1:
                return self._deny(action, DenyReason.LAST_ADMIN, caller)

        return Decision.allow()

    async def check_registration(self, session: Any) -> Decision:
        """Open registration is only allowed while no account exists."""
        if await session.count_users() > 0:
            logger.info("Denied registration: accounts already exist")
            return Decision.deny(DenyReason.REGISTRATION_CLOSED)
        return Decision.allow()

    def check_recovery(self, provided: Optional[str]) -> Decision:
        """Compare a supplied recovery secret in constant time."""
        if not self.recovery_enabled:
            return Decision.deny(DenyReason.RECOVERY_DISABLED)
        supplied = (provided or "").encode("utf-8")
        expected = self._recovery_key.encode("utf-8")
        if not hmac.compare_digest(supplied, expected):
            logger.info("Denied password recovery: invalid recovery key")
            return Decision.deny(DenyReason.INVALID_RECOVERY_KEY)
        return Decision.allow()

    def _deny(
        self, action: Action, reason: DenyReason, caller: Optional[Caller],
    ) -> Decision:
        logger.info(
            "Denied %s for user=%s: %s",
            action.value, caller.user_id if caller else None, reason.value,
        )
        return Decision.deny(reason)
