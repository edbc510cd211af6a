"""Shared pytest fixtures for test suite"""
import os

# Configuration de test : doit être posée avant tout import de `app`
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ML_CLIENT_ID", "test-client-id")
os.environ.setdefault("ML_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("BASE_URL", "http://api.test")
os.environ.setdefault("SITE_URL", "http://site.test")

import json
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Generator, List, Optional
from uuid import UUID, uuid4

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.api import deps
from app.core.config import StaticProviderConfig
from app.core.exceptions import PersistenceFailed
from app.core.security import create_access_token
from app.db.session import get_db
from app.main import app
from app.models.integration import UserIntegration, MERCADO_LIVRE
from app.services.audit_log import AuditLog, SQLAuditSink
from app.services.credential_store import CredentialRecord, SQLCredentialStore
from app.services.mercadolivre_service import MercadoLivreService
from app.services.token_manager import RefreshLockRegistry, TokenManager

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
SIX_HOURS = 21600
TOKEN_URL = "https://api.mercadolibre.com/oauth/token"

# SQLite in-memory database for testing, StaticPool pour partager la connexion
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as session:
        yield session
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def clock():
    """Horloge contrôlable : clock.now est modifiable dans le test."""
    class Clock:
        def __init__(self):
            self.now = T0

        def __call__(self) -> datetime:
            return self.now

    return Clock()


class FakeProvider:
    """
    Faux serveur HTTP (Mercado Livre) branché via httpx.MockTransport.
    Les routes sont des fonctions `request -> httpx.Response` indexées par (méthode, chemin).
    """

    def __init__(self):
        self.routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, path: str, handler=None, *, status: int = 200, json_body=None):
        if handler is None:
            def handler(request):
                return httpx.Response(status, json=json_body if json_body is not None else {})
        self.routes[(method, path)] = handler

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not_found"})
        response = handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._dispatch)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


class InMemoryCredentialStore:
    def __init__(self, fail_on_upsert: bool = False):
        self.records: Dict[tuple, CredentialRecord] = {}
        self.fail_on_upsert = fail_on_upsert
        self.upserts = 0

    def get(self, user_id, provider) -> Optional[CredentialRecord]:
        return self.records.get((str(user_id), provider))

    def upsert(self, record: CredentialRecord) -> None:
        if self.fail_on_upsert:
            raise PersistenceFailed("disk full", details={"error": "disk full"})
        self.upserts += 1
        self.records[(str(record.user_id), record.provider)] = record


class ListAuditSink:
    def __init__(self, broken: bool = False):
        self.entries = []
        self.broken = broken

    def write(self, entry) -> None:
        if self.broken:
            raise RuntimeError("audit sink down")
        self.entries.append(entry)


@pytest.fixture
def memory_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def audit_sink() -> ListAuditSink:
    return ListAuditSink()


@pytest.fixture
def broken_sink() -> ListAuditSink:
    return ListAuditSink(broken=True)


@pytest.fixture
def failing_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(fail_on_upsert=True)


def make_record(user_id: UUID, issued_at: datetime = T0, **overrides) -> CredentialRecord:
    values = dict(
        user_id=user_id,
        provider=MERCADO_LIVRE,
        access_token="APP_USR-old-access",
        refresh_token="TG-old-refresh",
        expires_in=SIX_HOURS,
        issued_at=issued_at,
        is_connected=True,
        extra={"user_id": 123456789, "token_type": "bearer"},
    )
    values.update(overrides)
    return CredentialRecord(**values)


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def stored_integration(db_session, user_id) -> UserIntegration:
    """Ligne `user_integrations` émise à T0, valable 6h."""
    SQLCredentialStore(db_session).upsert(make_record(user_id))
    return SQLCredentialStore(db_session).get_row(user_id, MERCADO_LIVRE)


@pytest.fixture
def token_manager_factory(provider, clock):
    def factory(store, sink=None, client_id="test-client-id", client_secret="test-client-secret") -> TokenManager:
        return TokenManager(
            store,
            AuditLog(sink if sink is not None else ListAuditSink()),
            StaticProviderConfig(client_id, client_secret, TOKEN_URL),
            clock=clock,
            locks=RefreshLockRegistry(),
            transport=provider.transport,
        )
    return factory


def token_response(access_token="APP_USR-new-access", refresh_token="TG-new-refresh", expires_in=SIX_HOURS):
    body = {"access_token": access_token, "expires_in": expires_in, "token_type": "bearer"}
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return body


@pytest.fixture
def token_body():
    return token_response


@pytest.fixture
def auth_headers(user_id) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def client(db_session, provider, clock) -> Generator[TestClient, None, None]:
    """TestClient branché sur la base SQLite de test et le faux Mercado Livre."""
    def override_ml_service():
        audit = AuditLog(SQLAuditSink(db_session))
        tokens = TokenManager(
            SQLCredentialStore(db_session),
            audit,
            StaticProviderConfig("test-client-id", "test-client-secret", TOKEN_URL),
            clock=clock,
            locks=RefreshLockRegistry(),
            transport=provider.transport,
        )
        return MercadoLivreService(db_session, tokens, audit, transport=provider.transport)

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[deps.get_mercadolivre_service] = override_ml_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def form_fields(request: httpx.Request) -> Dict[str, str]:
    from urllib.parse import parse_qsl
    return dict(parse_qsl(request.content.decode()))


@pytest.fixture
def parse_form():
    return form_fields


@pytest.fixture
def parse_json():
    return lambda request: json.loads(request.content.decode())
