"""Shared fixtures for the Navigator Vault test suite."""
import os

import pytest

from navigator_vault.models import Role
from navigator_vault.policy import Caller
from navigator_vault.service import VaultService
from navigator_vault.storage import MemoryStore
from navigator_vault.vault.config import VaultConfig
from navigator_vault.vault.user_keys import UserKeyManager

RECOVERY_SECRET = "correct-horse-battery-staple"


@pytest.fixture
def master_key():
    """Random 32-byte master key."""
    return os.urandom(32)


@pytest.fixture
def config(master_key):
    """Configuration with cheap bcrypt rounds and recovery enabled."""
    return VaultConfig(
        master_key=master_key,
        jwt_secret="test-jwt-secret",
        recovery_key=RECOVERY_SECRET,
        bcrypt_rounds=4,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def service(config, store):
    return VaultService(config, store)


@pytest.fixture
def keys(master_key):
    return UserKeyManager(master_key)


@pytest.fixture
async def admin(service):
    """First registered account; always an admin."""
    account = await service.register("admin@vault.io", "admin-password")
    return account


@pytest.fixture
def admin_caller(admin):
    return Caller(user_id=admin.id, email=admin.email, claimed_role=Role.ADMIN)


@pytest.fixture
async def member(service, admin_caller):
    """Plain user created by the admin."""
    return await service.create_user(
        admin_caller, "member@vault.io", "member-password",
    )


@pytest.fixture
def member_caller(member):
    return Caller(user_id=member.id, email=member.email, claimed_role=Role.USER)
