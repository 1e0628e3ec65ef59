# src/compyy_api/api/v1/endpoints/auth.py
"""Authentication endpoints for the Compyy API."""

from __future__ import annotations

import logging
from typing import Annotated, Any
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from fastapi.responses import RedirectResponse

from compyy_api.api.v1.dependencies import (
    AuthServiceDep,
    CurrentUserDep,
    auth_rate_limit,
    json_payload,
    password_change_rate_limit,
)
from compyy_api.core.errors import PayloadValidationError
from compyy_api.core.logging_config import mask_email
from compyy_api.core.settings import settings
from compyy_api.models import User
from compyy_api.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenData,
    ResetTokenEnvelope,
    UserData,
    UserEnvelope,
    UserResponse,
)
from compyy_api.schemas.common import ErrorResponse, MessageResponse
from compyy_api.services.validation import (
    normalize_email,
    optional_string,
    require_fields,
    sanitize_input,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we've sent a password reset link."

_PROFILE_FIELDS: dict[str, tuple[str, int]] = {
    "firstName": ("first_name", 100),
    "lastName": ("last_name", 100),
    "username": ("username", 50),
    "school": ("school", 255),
    "grade": ("grade", 50),
    "subject": ("subject", 100),
}

# Names, schools and passwords are free-form, so these routes skip the content scan.
RegisterPayload = Annotated[
    dict[str, Any],
    Depends(json_payload(2048, ["email", "password", *_PROFILE_FIELDS], scan=False)),
]
LoginPayload = Annotated[
    dict[str, Any],
    Depends(json_payload(1024, ["email", "password"], scan=False)),
]
ChangePasswordPayload = Annotated[
    dict[str, Any],
    Depends(json_payload(1024, ["currentPassword", "newPassword"], scan=False)),
]
ForgotPasswordPayload = Annotated[dict[str, Any], Depends(json_payload(512, ["email"]))]
ResetPasswordPayload = Annotated[
    dict[str, Any],
    Depends(
        json_payload(1024, ["token", "password"], skip_scan_fields=["token", "password"])
    ),
]


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_token_expire_seconds,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    # The token itself stays valid until it expires; only the client copy is dropped.
    response.set_cookie(
        key=settings.session_cookie_name,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _user_envelope(user: User, message: str | None = None) -> UserEnvelope:
    return UserEnvelope(
        data=UserData(user=UserResponse.model_validate(user)),
        message=message,
    )


@router.post(
    "/register",
    summary="Register a new teacher account",
    status_code=status.HTTP_201_CREATED,
    response_model=UserEnvelope,
    dependencies=[Depends(auth_rate_limit)],
)
async def register_user(
    body: RegisterPayload,
    service: AuthServiceDep,
    response: Response,
    background_tasks: BackgroundTasks,
) -> UserEnvelope:
    """Create an unverified account, sign it in and send the confirmation email."""
    require_fields(body, {"email": ("Email", 255), "password": ("Password", 255)})
    profile = {
        attr: optional_string(body, key, max_length)
        for key, (attr, max_length) in _PROFILE_FIELDS.items()
    }
    payload = RegisterRequest(
        email=normalize_email(body["email"]),
        password=body["password"],
        **profile,
    )

    user, token = service.register(payload)
    set_session_cookie(response, token)
    background_tasks.add_task(
        service.send_verification_email, user.id, user.email, user.first_name
    )
    return _user_envelope(user, "Registration successful")


@router.post(
    "/login",
    summary="Authenticate with email and password",
    response_model=UserEnvelope,
    dependencies=[Depends(auth_rate_limit)],
)
async def login_user(
    body: LoginPayload,
    service: AuthServiceDep,
    response: Response,
) -> UserEnvelope:
    require_fields(body, {"email": ("Email", 255), "password": ("Password", 255)})
    payload = LoginRequest(email=normalize_email(body["email"]), password=body["password"])

    user, token = service.login(payload.email, payload.password)
    set_session_cookie(response, token)
    return _user_envelope(user, "Login successful")


@router.post("/logout", summary="Clear the session cookie", response_model=MessageResponse)
async def logout_user(response: Response) -> MessageResponse:
    clear_session_cookie(response)
    return MessageResponse(message="Logout successful")


@router.get("/me", summary="Return the signed-in account", response_model=UserEnvelope)
async def read_current_user(user: CurrentUserDep) -> UserEnvelope:
    return _user_envelope(user)


@router.post(
    "/change-password",
    summary="Change the signed-in account's password",
    response_model=MessageResponse,
    dependencies=[Depends(password_change_rate_limit)],
)
async def change_password(
    body: ChangePasswordPayload,
    user: CurrentUserDep,
    service: AuthServiceDep,
) -> MessageResponse:
    """Require the current password again before accepting a new one."""
    require_fields(
        body,
        {
            "currentPassword": ("Current password", 255),
            "newPassword": ("New password", 255),
        },
    )
    payload = ChangePasswordRequest(
        current_password=body["currentPassword"],
        new_password=body["newPassword"],
    )
    service.change_password(user, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/forgot-password",
    summary="Request a password reset email",
    response_model=MessageResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def forgot_password(
    body: ForgotPasswordPayload,
    service: AuthServiceDep,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    """Always answer with the same message, whether or not the account exists.

    The reset email is sent as a background task after the response.
    """
    require_fields(body, {"email": ("Email", 255)})
    payload = ForgotPasswordRequest(email=normalize_email(body["email"]))

    try:
        issued = service.initiate_password_reset(payload.email)
        if issued is not None:
            user, raw_token = issued
            background_tasks.add_task(
                service.send_password_reset_email, user.email, user.first_name, raw_token
            )
    except Exception:
        logger.error(
            "Password reset for %s failed", mask_email(payload.email), exc_info=True
        )
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post(
    "/reset-password",
    summary="Set a new password with a reset token",
    response_model=MessageResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def reset_password(body: ResetPasswordPayload, service: AuthServiceDep) -> MessageResponse:
    require_fields(body, {"token": ("Reset token", 128), "password": ("Password", 255)})
    payload = ResetPasswordRequest(token=sanitize_input(body["token"]), password=body["password"])

    service.reset_password(payload.token, payload.password)
    return MessageResponse(
        message="Password has been reset successfully. You can now log in with your new password."
    )


@router.get(
    "/reset-password",
    summary="Check that a reset token is still valid",
    response_model=ResetTokenEnvelope,
)
async def validate_reset_token(
    service: AuthServiceDep,
    token: Annotated[str | None, Query(max_length=128)] = None,
) -> ResetTokenEnvelope:
    if not token:
        raise PayloadValidationError("Reset token is required")
    user = service.validate_password_reset_token(sanitize_input(token))
    return ResetTokenEnvelope(data=ResetTokenData(email=user.email, first_name=user.first_name))


@router.get("/confirm", summary="Confirm an email address", response_class=RedirectResponse)
async def confirm_email(
    service: AuthServiceDep,
    token: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    """Mark the account verified and send the browser to the confirmation page."""
    outcome = service.confirm_email(token)
    key = "error" if outcome.is_error else "message"
    target = f"{settings.app_url.rstrip('/')}/auth/confirm?{urlencode({key: outcome.value})}"
    return RedirectResponse(target, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
