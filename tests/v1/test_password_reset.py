# tests/v1/test_password_reset.py
"""Tests for the forgot-password and reset-password flow."""

from __future__ import annotations

import asyncio
import re
import time
from datetime import timedelta
from urllib.parse import unquote

from fastapi import BackgroundTasks
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from compyy_api.api.v1.endpoints.auth import FORGOT_PASSWORD_MESSAGE, forgot_password
from compyy_api.core import security
from compyy_api.db.time import utcnow
from compyy_api.models import PasswordResetToken, User
from compyy_api.services.auth_service import AuthService
from compyy_api.services.email import EmailMessage
from tests.conftest import TEST_PASSWORD, RecordingEmailSender

FORGOT_URL = "/api/v1/auth/forgot-password"
RESET_URL = "/api/v1/auth/reset-password"
LOGIN_URL = "/api/v1/auth/login"

_TOKEN_IN_LINK = re.compile(r"reset-password\?token=([A-Za-z0-9_%\-]+)")


def _request_reset(client: TestClient, email: str, sender: RecordingEmailSender) -> str:
    r = client.post(FORGOT_URL, json={"email": email})
    assert r.status_code == 200
    match = _TOKEN_IN_LINK.search(sender.sent[-1].html)
    assert match is not None
    return unquote(match.group(1))


def test_forgot_password_same_response_for_unknown_email(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    known = client.post(FORGOT_URL, json={"email": test_user.email})
    unknown = client.post(FORGOT_URL, json={"email": "nobody@school.org"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json() == {
        "success": True,
        "message": FORGOT_PASSWORD_MESSAGE,
    }
    assert [m.to for m in email_sender.sent] == [test_user.email]
    assert email_sender.sent[0].subject == "Reset Your Password - Compyy"
    assert "60 minutes" in email_sender.sent[0].html


def test_forgot_password_stores_only_token_hash(
    client: TestClient,
    db_session: Session,
    test_user: User,
    email_sender: RecordingEmailSender,
) -> None:
    raw = _request_reset(client, test_user.email, email_sender)

    record = db_session.execute(select(PasswordResetToken)).scalar_one()
    assert record.user_id == test_user.id
    assert record.token_hash == security.hash_token(raw)
    assert record.token_hash != raw
    assert record.used_at is None


def test_forgot_password_hides_delivery_failure(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    async def _fail(message) -> None:
        raise RuntimeError("provider down")

    email_sender.send = _fail  # type: ignore[method-assign]
    r = client.post(FORGOT_URL, json={"email": test_user.email})
    assert r.status_code == 200
    assert r.json()["message"] == FORGOT_PASSWORD_MESSAGE


def test_forgot_password_rejects_extra_fields(client: TestClient) -> None:
    r = client.post(FORGOT_URL, json={"email": "a@b.com", "redirect": "https://evil"})
    assert r.status_code == 400
    assert r.json()["error"] == "Unexpected fields in request"


class SlowEmailSender(RecordingEmailSender):
    async def send(self, message: EmailMessage) -> None:
        await asyncio.sleep(0.5)
        await super().send(message)


def test_forgot_password_returns_before_email_is_sent(
    db_session: Session, test_user: User
) -> None:
    sender = SlowEmailSender()
    service = AuthService(db_session, email_sender=sender)

    def _timed(email: str) -> tuple[float, BackgroundTasks]:
        tasks = BackgroundTasks()
        started = time.perf_counter()
        result = asyncio.run(forgot_password({"email": email}, service, tasks))
        assert result.message == FORGOT_PASSWORD_MESSAGE
        return time.perf_counter() - started, tasks

    known_elapsed, known_tasks = _timed(test_user.email)
    unknown_elapsed, unknown_tasks = _timed("nobody@school.org")

    assert known_elapsed < 0.4
    assert unknown_elapsed < 0.4
    assert sender.sent == []
    assert len(known_tasks.tasks) == 1
    assert unknown_tasks.tasks == []

    asyncio.run(known_tasks())
    assert [m.to for m in sender.sent] == [test_user.email]


def test_forgot_password_still_screens_content(client: TestClient) -> None:
    r = client.post(FORGOT_URL, json={"email": "a@b.com' OR 1=1 --"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request content"


def test_validate_reset_token(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    raw = _request_reset(client, test_user.email, email_sender)

    r = client.get(RESET_URL, params={"token": raw})
    assert r.status_code == 200
    assert r.json() == {
        "success": True,
        "data": {"email": test_user.email, "firstName": "Ada"},
    }


def test_validate_reset_token_missing(client: TestClient) -> None:
    r = client.get(RESET_URL)
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Reset token is required"}


def test_validate_reset_token_unknown(client: TestClient) -> None:
    r = client.get(RESET_URL, params={"token": "does-not-exist"})
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Invalid or expired reset token"}


def test_reset_password_then_login(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    raw = _request_reset(client, test_user.email, email_sender)

    r = client.post(RESET_URL, json={"token": raw, "password": "fresh-password"})
    assert r.status_code == 200, r.text
    assert r.json()["message"].startswith("Password has been reset successfully.")

    old = client.post(LOGIN_URL, json={"email": test_user.email, "password": TEST_PASSWORD})
    assert old.status_code == 401
    new = client.post(LOGIN_URL, json={"email": test_user.email, "password": "fresh-password"})
    assert new.status_code == 200


def test_reset_token_is_single_use(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    raw = _request_reset(client, test_user.email, email_sender)

    first = client.post(RESET_URL, json={"token": raw, "password": "fresh-password"})
    assert first.status_code == 200
    second = client.post(RESET_URL, json={"token": raw, "password": "another-password"})
    assert second.status_code == 400
    assert second.json()["error"] == "Invalid or expired reset token"
    assert client.get(RESET_URL, params={"token": raw}).status_code == 400


def test_new_reset_request_invalidates_previous_token(
    client: TestClient, test_user: User, email_sender: RecordingEmailSender
) -> None:
    first = _request_reset(client, test_user.email, email_sender)
    second = _request_reset(client, test_user.email, email_sender)
    assert first != second

    assert client.get(RESET_URL, params={"token": first}).status_code == 400
    assert client.get(RESET_URL, params={"token": second}).status_code == 200


def test_expired_reset_token_rejected(
    client: TestClient, db_session: Session, test_user: User
) -> None:
    raw = security.generate_reset_token()
    db_session.add(
        PasswordResetToken(
            user_id=test_user.id,
            token_hash=security.hash_token(raw),
            expires_at=utcnow() - timedelta(minutes=1),
        )
    )
    db_session.commit()

    r = client.post(RESET_URL, json={"token": raw, "password": "fresh-password"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid or expired reset token"


def test_reset_password_requires_fields(client: TestClient) -> None:
    r = client.post(RESET_URL, json={"token": "abc"})
    assert r.status_code == 400
    assert r.json()["error"] == "Password is required"


def test_reset_token_model_usability() -> None:
    now = utcnow()
    token = PasswordResetToken(token_hash="x", expires_at=now + timedelta(minutes=5))
    assert token.is_usable(now)
    assert not token.is_usable(now + timedelta(minutes=10))
    token.used_at = now
    assert not token.is_usable(now)
