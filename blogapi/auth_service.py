"""Registration, verification, session and password flows.

The service owns no global state: the settings, credential store and mailer
are handed in, so tests can swap any of them.
"""

from typing import Optional, Tuple
from urllib.parse import quote

from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from .email_utils import Mailer, reset_password_email_html, verification_email_html
from .errors import (AlreadyVerified, DuplicateEmail, InvalidCredentials, InvalidToken,
                     NotFound, TokenExpired, Unauthenticated, Unverified, ValidationError)
from .models import User
from .schemas import TokenPair
from .security import ACCESS, REFRESH, RESET, VERIFY, TokenIssuer
from .settings import Settings
from .users import UserStore


class AuthService:
    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        mailer: Mailer,
        tokens: Optional[TokenIssuer] = None,
    ):
        self.settings = settings
        self.users = users
        self.mailer = mailer
        self.tokens = tokens or TokenIssuer(settings)

    @property
    def hasher(self):
        return self.users.hasher

    async def _password_matches(self, password: str, hashed: str) -> bool:
        return await run_in_threadpool(self.hasher.verify, password, hashed)

    def _verify_link(self, token: str) -> str:
        base = self.settings.public_base_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}/auth/verify-email?token={quote(token, safe='')}"

    def _reset_link(self, token: str) -> str:
        base = self.settings.client_base_url.rstrip("/")
        return f"{base}/reset-password?token={quote(token, safe='')}"

    async def _send_verification(self, name: str, email: str, token: str) -> None:
        html = verification_email_html(name, self._verify_link(token))
        await self.mailer.send(email, "Verify your email", html)

    # --- registration / verification ---

    async def register(self, name: str, email: str, password: str) -> Tuple[User, str]:
        """Create an unverified user and mail its verification token.

        The user is only stored once the mail went out, so a mail failure
        leaves nothing behind.
        """
        if await self.users.email_exists(email):
            raise DuplicateEmail(context={"email": email})

        user_id = str(ObjectId())
        token = self.tokens.issue_verification_token(user_id)
        await self._send_verification(name, email, token)
        user = await self.users.create(
            name, email, password, user_id=user_id, verification_token=token
        )
        logger.info(f"Registered user {user.id}")
        return user, token

    async def verify_email(self, token: Optional[str]) -> User:
        if not token:
            raise ValidationError("Verification token is required")
        claims = self.tokens.decode(token, VERIFY)

        user = await self.users.get_by_verification_token(token)
        if user is None:
            owner = await self.users.get(claims["sub"])
            if owner is not None and owner.verified:
                raise AlreadyVerified()
            raise InvalidToken("Invalid verification token")
        if user.id != claims["sub"]:
            raise InvalidToken("Invalid verification token")
        if user.verified:
            raise AlreadyVerified()
        if not await self.users.mark_verified(user.id, token):
            raise InvalidToken("Invalid verification token")

        logger.info(f"User {user.id} verified their email")
        user.verified = True
        user.verification_token = None
        return user

    async def resend_verification(self, email: str) -> str:
        user = await self.users.get_by_email(email)
        if user is None:
            raise NotFound("User not found")
        if user.verified:
            raise AlreadyVerified()

        token = self.tokens.issue_verification_token(user.id)
        await self._send_verification(user.name, user.email, token)
        await self.users.set_verification_token(user.id, token)
        logger.info(f"Verification mail re-sent to user {user.id}")
        return token

    # --- sessions ---

    async def login(self, email: str, password: str) -> Tuple[User, TokenPair]:
        user = await self.users.get_by_email(email)
        # same error for unknown email and wrong password
        if user is None or not await self._password_matches(password, user.password_hash):
            logger.info(f"Failed login for {email}")
            raise InvalidCredentials()
        if not user.verified:
            raise Unverified()

        pair = await self.tokens.issue_access_and_refresh(user.id, self.users)
        logger.info(f"User {user.id} logged in")
        return user, pair

    async def logout(self, user_id: str) -> None:
        await self.users.set_refresh_token(user_id, None)
        logger.info(f"User {user_id} logged out")

    async def refresh(self, token: Optional[str]) -> Tuple[User, TokenPair]:
        if not token:
            raise Unauthenticated("Refresh token missing", context={"reason": "missing_token"})
        try:
            claims = self.tokens.decode(token, REFRESH)
        except (InvalidToken, TokenExpired) as e:
            raise Unauthenticated.from_token_error(e)

        user = await self.users.get(claims["sub"])
        if user is None:
            raise NotFound("User not found")
        if user.refresh_token != token:
            logger.warning(f"Stale refresh token presented for user {user.id}")
            raise Unauthenticated("Refresh token has been revoked", context={"reason": "token_revoked"})

        pair = await self.tokens.issue_access_and_refresh(user.id, self.users, rotate_from=token)
        logger.info(f"Rotated refresh token for user {user.id}")
        return user, pair

    async def authenticate(self, token: Optional[str]) -> User:
        """Resolve an access token to its user. Never writes."""
        if not token:
            raise Unauthenticated("No token, authorization denied", context={"reason": "missing_token"})
        try:
            claims = self.tokens.decode(token, ACCESS)
        except (InvalidToken, TokenExpired) as e:
            raise Unauthenticated.from_token_error(e)

        user = await self.users.get(claims["sub"])
        if user is None:
            raise Unauthenticated("No user found", context={"reason": "user_not_found"})
        return user

    # --- passwords ---

    async def forgot_password(self, email: str) -> str:
        user = await self.users.get_by_email(email)
        if user is None:
            raise NotFound("User not found")

        token = self.tokens.issue_reset_token(user.id)
        html = reset_password_email_html(
            user.name, self._reset_link(token), self.settings.reset_token_expire_minutes
        )
        await self.mailer.send(user.email, "Reset your password", html)
        await self.users.set_reset_token(user.id, token)
        logger.info(f"Password reset requested for user {user.id}")
        return token

    async def reset_password(self, token: Optional[str], password: str) -> None:
        if not token:
            raise ValidationError("Reset token is required")
        claims = self.tokens.decode(token, RESET)

        user = await self.users.get_by_reset_token(token)
        if user is None or user.id != claims["sub"]:
            raise InvalidToken("Invalid reset token")
        if not await self.users.reset_password(user.id, token, password):
            raise InvalidToken("Invalid reset token")
        logger.info(f"Password reset for user {user.id}")

    async def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        user = await self.users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        if not await self._password_matches(old_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        await self.users.set_password(user.id, new_password)
        logger.info(f"User {user.id} changed their password")
