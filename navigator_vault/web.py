"""
aiohttp request layer for Navigator Vault.

A thin mapping from HTTP routes onto ``VaultService``; all policy and
cryptography lives below this module. Errors raised by the service are
translated to JSON responses by ``error_middleware``.
"""
import re
import sys
import logging
from typing import Any, Optional

import orjson
from aiohttp import web
from pydantic import ValidationError

from .auth import TokenIssuer
from .exceptions import (
    AuthenticationError,
    AuthorizationDenied,
    ConfigurationError,
    ConflictError,
    CorruptEntryError,
    DenyReason,
    InvalidCredentialsError,
    InvalidRequestError,
    NotFoundError,
)
from .policy import Caller
from .schemas import (
    AuthInput,
    ChangePasswordInput,
    CreateUserInput,
    EntryInput,
    RecoverInput,
    ResetPasswordInput,
    RoleInput,
)
from .service import VaultService
from .storage import PostgresStore
from .vault.config import VaultConfig

logger = logging.getLogger("navigator.vault")

CONFIG_KEY = web.AppKey("vault_config", VaultConfig)
SERVICE_KEY = web.AppKey("vault_service", VaultService)
TOKENS_KEY = web.AppKey("vault_tokens", TokenIssuer)

_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)

_DENY_STATUS = {
    DenyReason.UNAUTHENTICATED: 401,
    DenyReason.RECOVERY_DISABLED: 503,
}

routes = web.RouteTableDef()


def _dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def _json(data: Any, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=_dumps)


def _error(status: int, message: str) -> web.Response:
    return _json({"error": message}, status=status)


def _first_error(err: ValidationError) -> str:
    issues = err.errors()
    if not issues:
        return "Invalid payload"
    issue = issues[0]
    loc = ".".join(str(part) for part in issue.get("loc", ()))
    return f"{loc}: {issue['msg']}" if loc else issue["msg"]


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return _error(404, "Not found")
    except ValidationError as err:
        return _error(400, _first_error(err))
    except InvalidRequestError as err:
        return _error(400, str(err))
    except InvalidCredentialsError as err:
        return _error(401, str(err))
    except AuthorizationDenied as err:
        return _error(_DENY_STATUS.get(err.reason, 403), str(err))
    except NotFoundError as err:
        return _error(404, str(err))
    except ConflictError as err:
        return _error(409, str(err))
    except AuthenticationError:
        logger.error(
            "Key or payload authentication failed on %s %s",
            request.method, request.path,
        )
        return _error(500, "Cannot access vault")
    except CorruptEntryError:
        logger.error(
            "Corrupted vault entry detected on %s %s",
            request.method, request.path,
        )
        return _error(500, "Vault entry is corrupted")


def authenticate(request: web.Request) -> Caller:
    """Resolve the bearer token of a request into a Caller.

    Raises:
        AuthorizationDenied: If no bearer token was sent.
        InvalidCredentialsError: If the token does not verify.
    """
    caller: Optional[Caller] = request.get("caller")
    if caller is not None:
        return caller
    match = _BEARER.match(request.headers.get("Authorization", ""))
    if not match:
        raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, "Missing bearer token")
    caller = request.app[TOKENS_KEY].verify(match.group(1).strip())
    request["caller"] = caller
    return caller


_PUBLIC_PREFIXES = ("/api/health", "/api/auth/")


@web.middleware
async def auth_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Authenticate every matched route outside the public prefixes."""
    if (
        request.match_info.http_exception is None
        and not request.path.startswith(_PUBLIC_PREFIXES)
    ):
        authenticate(request)
    return await handler(request)


async def _body(request: web.Request, model: type) -> Any:
    try:
        data = await request.json()
    except ValueError:
        data = {}
    return model.model_validate(data if data is not None else {})


def _service(request: web.Request) -> VaultService:
    return request.app[SERVICE_KEY]


def _target_id(request: web.Request) -> str:
    target_id = request.match_info.get("id", "").strip()
    if not target_id:
        raise InvalidRequestError("Missing id")
    return target_id


# ---------------------------------------------------------------------------
# Health and authentication
# ---------------------------------------------------------------------------

@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    return _json({"ok": True, "version": request.app[CONFIG_KEY].app_version})


@routes.get("/api/auth/registration-status")
async def registration_status(request: web.Request) -> web.Response:
    return _json(await _service(request).registration_status())


@routes.get("/api/auth/recovery-status")
async def recovery_status(request: web.Request) -> web.Response:
    return _json(_service(request).recovery_status())


@routes.post("/api/auth/recover")
async def recover(request: web.Request) -> web.Response:
    service = _service(request)
    # report "disabled" before looking at the body
    if not service.policy.recovery_enabled:
        raise AuthorizationDenied(DenyReason.RECOVERY_DISABLED)
    data = await _body(request, RecoverInput)
    await service.recover(data.email, data.recovery_key, data.new_password)
    return _json({"ok": True})


@routes.post("/api/auth/register")
async def register(request: web.Request) -> web.Response:
    data = await _body(request, AuthInput)
    account = await _service(request).register(data.email, data.password)
    return _json({"token": request.app[TOKENS_KEY].issue(account)})


@routes.post("/api/auth/login")
async def login(request: web.Request) -> web.Response:
    data = await _body(request, AuthInput)
    account = await _service(request).login(data.email, data.password)
    return _json({"token": request.app[TOKENS_KEY].issue(account)})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@routes.get("/api/users/me")
async def me(request: web.Request) -> web.Response:
    account = await _service(request).me(authenticate(request))
    return _json({"id": account.id, "email": account.email, "role": account.role.value})


@routes.post("/api/users/me/change-password")
async def change_password(request: web.Request) -> web.Response:
    caller = authenticate(request)
    data = await _body(request, ChangePasswordInput)
    await _service(request).change_password(
        caller, data.current_password, data.new_password,
    )
    return _json({"ok": True})


@routes.get("/api/users")
async def list_users(request: web.Request) -> web.Response:
    users = await _service(request).list_users(authenticate(request))
    return _json({"users": [u.public() for u in users]})


@routes.post("/api/users")
async def create_user(request: web.Request) -> web.Response:
    caller = authenticate(request)
    data = await _body(request, CreateUserInput)
    account = await _service(request).create_user(
        caller, data.email, data.password, data.role,
    )
    return _json({"id": account.id, "email": account.email, "role": account.role.value})


@routes.delete("/api/users/{id}")
async def delete_user(request: web.Request) -> web.Response:
    caller = authenticate(request)
    target_id = _target_id(request)
    deleted = await _service(request).delete_user(caller, target_id)
    return _json({"id": deleted})


@routes.patch("/api/users/{id}/role")
async def change_role(request: web.Request) -> web.Response:
    caller = authenticate(request)
    target_id = _target_id(request)
    data = await _body(request, RoleInput)
    await _service(request).change_role(caller, target_id, data.role)
    return _json({"id": target_id, "role": data.role.value})


@routes.post("/api/users/{id}/reset-password")
async def reset_password(request: web.Request) -> web.Response:
    caller = authenticate(request)
    target_id = _target_id(request)
    data = await _body(request, ResetPasswordInput)
    await _service(request).reset_password(
        caller, target_id, data.new_password,
    )
    return _json({"ok": True})


# ---------------------------------------------------------------------------
# Vault entries
# ---------------------------------------------------------------------------

@routes.get("/api/vault")
async def list_entries(request: web.Request) -> web.Response:
    items = await _service(request).list_entries(authenticate(request))
    return _json([entry.document(payload) for entry, payload in items])


@routes.post("/api/vault")
async def create_entry(request: web.Request) -> web.Response:
    caller = authenticate(request)
    data = await _body(request, EntryInput)
    entry, payload = await _service(request).create_entry(caller, data)
    return _json(entry.document(payload))


@routes.put("/api/vault/{id}")
async def update_entry(request: web.Request) -> web.Response:
    caller = authenticate(request)
    data = await _body(request, EntryInput)
    entry, payload = await _service(request).update_entry(
        caller, request.match_info["id"], data,
    )
    return _json(entry.document(payload))


@routes.delete("/api/vault/{id}")
async def delete_entry(request: web.Request) -> web.Response:
    caller = authenticate(request)
    await _service(request).delete_entry(caller, request.match_info["id"])
    return _json({"ok": True})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

async def _postgres_ctx(app: web.Application):
    config = app[CONFIG_KEY]
    store = await PostgresStore.connect(config)
    await store.migrate()
    app[SERVICE_KEY] = VaultService(config, store)
    logger.info(
        "Vault service started (store=postgres, recovery %s)",
        "enabled" if config.recovery_enabled else "disabled",
    )
    yield
    await store.close()


def create_app(config: VaultConfig, store: Any = None) -> web.Application:
    """Build the aiohttp application.

    Args:
        config: Validated configuration.
        store: Optional pre-built store; when omitted a PostgreSQL pool is
            created on startup from ``config.database_url``.
    """
    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[CONFIG_KEY] = config
    app[TOKENS_KEY] = TokenIssuer(config.jwt_secret, config.token_ttl)
    if store is None:
        app.cleanup_ctx.append(_postgres_ctx)
    else:
        app[SERVICE_KEY] = VaultService(config, store)
    app.add_routes(routes)
    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = VaultConfig.from_env()
    except ConfigurationError as err:
        logger.critical("Startup failed: %s", err)
        sys.exit(1)
    web.run_app(create_app(config), port=config.port)


if __name__ == "__main__":
    main()
