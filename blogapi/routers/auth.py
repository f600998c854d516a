from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from ..auth_service import AuthService
from ..deps import COOKIE_ACCESS, COOKIE_REFRESH, get_auth_service, get_current_user
from ..schemas import (ChangePasswordIn, EmailIn, LoginIn, LoginOut, MessageOut, RefreshIn,
                       RegisterIn, RegisterOut, ResetPasswordIn, TokenPair, UserOut)
from ..settings import Settings, get_settings

router = APIRouter(prefix="/auth", tags=["auth"])


def _refresh_cookie_path(settings: Settings) -> str:
    return f"{settings.api_prefix}{router.prefix}"


def _set_auth_cookies(response: Response, pair: TokenPair, settings: Settings) -> None:
    """Set HttpOnly cookies for access & refresh JWTs."""
    response.set_cookie(
        key=COOKIE_ACCESS,
        value=pair.access_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )
    response.set_cookie(
        key=COOKIE_REFRESH,
        value=pair.refresh_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        max_age=settings.refresh_token_expire_days * 24 * 3600,
        path=_refresh_cookie_path(settings),
    )


def _clear_auth_cookies(response: Response, settings: Settings) -> None:
    response.delete_cookie(COOKIE_ACCESS, path="/")
    response.delete_cookie(COOKIE_REFRESH, path=_refresh_cookie_path(settings))


@router.post("/register", response_model=RegisterOut, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterIn,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    user, token = await auth.register(payload.name, payload.email, payload.password)
    dev_echo = {"verify_token_dev_only": token} if settings.debug_tokens else {}
    return RegisterOut(**user.public().model_dump(), **dev_echo)


@router.api_route("/verify-email", methods=["GET", "POST"], response_model=MessageOut)
async def verify_email(token: Optional[str] = None, auth: AuthService = Depends(get_auth_service)):
    await auth.verify_email(token)
    return MessageOut(msg="Email verified successfully")


@router.post("/resend-verification", response_model=MessageOut)
async def resend_verification(
    payload: EmailIn,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    token = await auth.resend_verification(payload.email)
    dev_echo = {"verify_token_dev_only": token} if settings.debug_tokens else {}
    return MessageOut(msg="Verification email sent", **dev_echo)


@router.post("/login", response_model=LoginOut)
async def login(
    payload: LoginIn,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    user, pair = await auth.login(payload.email, payload.password)
    _set_auth_cookies(response, pair, settings)
    return LoginOut(**pair.model_dump(), user=user.public())


@router.post("/logout", response_model=MessageOut)
async def logout(
    response: Response,
    current_user: UserOut = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    await auth.logout(current_user.id)
    _clear_auth_cookies(response, settings)
    return MessageOut(msg="Logged out successfully")


@router.post("/refresh-token", response_model=TokenPair)
async def refresh_token(
    request: Request,
    response: Response,
    payload: Optional[RefreshIn] = None,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    token = request.cookies.get(COOKIE_REFRESH) or (payload.refresh_token if payload else None)
    _, pair = await auth.refresh(token)
    _set_auth_cookies(response, pair, settings)
    return pair


@router.post("/forgot-password", response_model=MessageOut)
async def forgot_password(
    payload: EmailIn,
    auth: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    token = await auth.forgot_password(payload.email)
    dev_echo = {"reset_token_dev_only": token} if settings.debug_tokens else {}
    return MessageOut(msg="Reset password link sent", **dev_echo)


@router.post("/reset-password", response_model=MessageOut)
async def reset_password(
    payload: ResetPasswordIn,
    token: Optional[str] = None,
    auth: AuthService = Depends(get_auth_service),
):
    await auth.reset_password(token, payload.password)
    return MessageOut(msg="Password reset successfully")


@router.post("/change-password", response_model=MessageOut)
async def change_password(
    payload: ChangePasswordIn,
    current_user: UserOut = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.change_password(current_user.id, payload.old_password, payload.new_password)
    return MessageOut(msg="Password changed successfully")
