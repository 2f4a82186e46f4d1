"""Test fixtures for the CMS API.

The record store and the directory service are replaced by in-memory fakes
passed to create_app(), so no MongoDB or Keycloak is needed. The fakes keep
the same contract as the real clients: rows come back as plain dicts, store
failures raise StoreError and directory failures raise AuthError.
"""

from __future__ import annotations

import copy
import os
import secrets
import uuid
from typing import Any

# Settings() is instantiated at import time and requires these
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DATABASE", "cms_test")
os.environ.setdefault("KEYCLOAK_SERVER_URL", "http://keycloak.test")
os.environ.setdefault("KEYCLOAK_REALM", "cms")
os.environ.setdefault("KEYCLOAK_CLIENT_ID", "cms-api")

import pytest
from fastapi.testclient import TestClient

from cms_api.app.config import Settings
from cms_api.app.main import create_app
from common.auth.keycloak import AuthError, Identity, Session
from common.database.mongodb import TABLES, NotFoundError, StoreError, prepare_row

# ============================================================================
# Fakes
# ============================================================================


class FakeRecordStore:
    """Dict-backed stand-in for MongoRecordStore."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in TABLES}
        self.fail_with: str | None = None

    def _check_failure(self) -> None:
        if self.fail_with:
            raise StoreError(self.fail_with)

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
        return all(row.get(key) == value for key, value in filters.items())

    async def ping(self) -> None:
        self._check_failure()

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        self._check_failure()
        row = prepare_row(table, values)
        spec = TABLES[table]
        for column in (spec.primary_key, *spec.unique):
            if any(existing.get(column) == row.get(column) for existing in self.tables[table]):
                raise StoreError(f"duplicate key value violates unique constraint on {table}")
        self.tables[table].append(row)
        return copy.deepcopy(row)

    async def select(self, table: str, **filters: Any) -> list[dict[str, Any]]:
        self._check_failure()
        return [copy.deepcopy(r) for r in self.tables[table] if self._matches(r, filters)]

    async def select_one(self, table: str, **filters: Any) -> dict[str, Any]:
        rows = await self.select(table, **filters)
        if not rows:
            raise NotFoundError(f"No rows found in {table}")
        return rows[0]

    async def update(self, table: str, values: dict[str, Any], **filters: Any) -> list[dict[str, Any]]:
        self._check_failure()
        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated


class FakeDirectory:
    """In-memory stand-in for KeycloakDirectory."""

    def __init__(self) -> None:
        self.passwords: dict[str, str] = {}
        self.identities: dict[str, Identity] = {}
        # token -> identity as it was when the token was issued
        self.tokens: dict[str, Identity] = {}
        self.metadata_updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_metadata_update = False
        self.validate_calls = 0

    def add_user(self, email: str, password: str, full_name: str = "", avatar_url: str = "") -> Identity:
        identity = Identity(id=str(uuid.uuid4()), email=email, full_name=full_name, avatar_url=avatar_url)
        self.passwords[email] = password
        self.identities[email] = identity
        return identity

    def issue_token(self, identity: Identity) -> str:
        token = secrets.token_hex(16)
        self.tokens[token] = copy.copy(identity)
        return token

    def expire(self, token: str) -> None:
        self.tokens.pop(token, None)

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> Identity:
        if email in self.identities:
            raise AuthError("User already registered")
        if len(password) < 6:
            raise AuthError("Password should be at least 6 characters")
        metadata = metadata or {}
        return self.add_user(email, password, metadata.get("full_name") or "", metadata.get("avatar_url") or "")

    async def verify_credentials(self, email: str, password: str) -> Session:
        if self.passwords.get(email) != password:
            raise AuthError("Invalid login credentials")
        return Session(access_token=self.issue_token(self.identities[email]), expires_in=3600)

    async def validate_token(self, token: str) -> Identity:
        self.validate_calls += 1
        identity = self.tokens.get(token)
        if identity is None:
            raise AuthError("Invalid authentication credentials")
        return copy.copy(identity)

    async def update_user_metadata(self, user_id: str, metadata: dict[str, Any]) -> None:
        if self.fail_metadata_update:
            raise AuthError("Keycloak unavailable")
        self.metadata_updates.append((user_id, dict(metadata)))
        for identity in self.identities.values():
            if identity.id == user_id:
                identity.full_name = metadata.get("full_name", "")
                identity.avatar_url = metadata.get("avatar_url", "")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(pairing_code_ttl_seconds=600)


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def client(settings: Settings, store: FakeRecordStore, directory: FakeDirectory) -> TestClient:
    """Client without lifespan, so the injected fakes are used as-is."""
    return TestClient(create_app(settings=settings, directory=directory, store=store))


@pytest.fixture
def alice(directory: FakeDirectory, store: FakeRecordStore) -> Identity:
    """A registered user with a profile row."""
    identity = directory.add_user("alice@example.com", "secret123", full_name="Alice Smith")
    store.tables["users"].append(
        prepare_row("users", {
            "id": identity.id,
            "email": identity.email,
            "full_name": identity.full_name,
            "avatar_url": "",
        })
    )
    return identity


@pytest.fixture
def alice_client(client: TestClient, alice: Identity) -> TestClient:
    """Client holding Alice's session cookie."""
    response = client.post("/login", json={"email": "alice@example.com", "password": "secret123"})
    assert response.status_code == 200
    return client
