# tests/v1/test_change_password.py
"""Tests for changing the password of the signed-in account."""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from compyy_api.core import security
from compyy_api.models import User
from tests.conftest import TEST_PASSWORD

CHANGE_PASSWORD_URL = "/api/v1/auth/change-password"


def test_change_password_success(
    client: TestClient, db_session: Session, test_user: User, auth_headers: dict[str, str]
) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": TEST_PASSWORD, "newPassword": "a-new-password"},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "message": "Password changed successfully"}
    assert r.headers["X-RateLimit-Limit"] == "3"
    assert r.headers["X-RateLimit-Remaining"] == "2"

    db_session.refresh(test_user)
    assert security.verify_password("a-new-password", test_user.password_hash)
    assert not security.verify_password(TEST_PASSWORD, test_user.password_hash)


def test_change_password_same_as_current(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": TEST_PASSWORD, "newPassword": TEST_PASSWORD},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json() == {
        "success": False,
        "error": "New password must be different from current password",
    }


def test_change_password_wrong_current(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": "not-my-password", "newPassword": "a-new-password"},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Current password is incorrect"


def test_change_password_requires_session(client: TestClient) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": TEST_PASSWORD, "newPassword": "a-new-password"},
    )
    assert r.status_code == 401
    assert r.json()["error"] == "No authentication token found"


def test_change_password_missing_field(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": TEST_PASSWORD},
        headers=auth_headers,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "New password is required"


def test_change_password_accepts_symbols(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    r = client.post(
        CHANGE_PASSWORD_URL,
        json={"currentPassword": TEST_PASSWORD, "newPassword": "o'reilly--#1"},
        headers=auth_headers,
    )
    assert r.status_code == 200
