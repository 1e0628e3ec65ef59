# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("EMAIL_API_KEY", "")

from compyy_api.core import security
from compyy_api.db.session import Base
from compyy_api.db.session import get_db as app_get_session
from compyy_api.main import app as fastapi_app
from compyy_api.models import User
from compyy_api.services.email import EmailMessage, get_email_sender
from compyy_api.services.rate_limiter import get_rate_limit_store

TEST_DB_URL = "sqlite://"
TEST_PASSWORD = "correct-horse-battery"


class RecordingEmailSender:
    """Collects outgoing messages instead of calling the provider."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI, db_session: Session, email_sender: RecordingEmailSender
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_email_sender, None)


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Iterator[None]:
    """Give every test fresh rate limit counters."""
    store = get_rate_limit_store()
    store.clear()
    yield
    store.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def create_user(db_session: Session, **overrides: Any) -> User:
    """Persist a user with a known password."""
    password = overrides.pop("password", TEST_PASSWORD)
    values: dict[str, Any] = {
        "email": "teacher@school.org",
        "password_hash": security.hash_password(password),
        "first_name": "Ada",
        "last_name": "Lovelace",
        "is_verified": True,
    }
    values.update(overrides)
    user = User(**values)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def test_user(db_session: Session) -> User:
    """Create and return a persisted, verified test user."""
    return create_user(db_session)


@pytest.fixture()
def auth_token(test_user: User) -> str:
    return security.create_session_token(test_user.id, test_user.email)


@pytest.fixture()
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}
