import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from .errors import InvalidToken, TokenExpired, Unauthenticated
from .schemas import TokenPair
from .settings import Settings

if TYPE_CHECKING:
    from .users import UserStore

ACCESS = "access"
REFRESH = "refresh"
VERIFY = "verify"
RESET = "reset"


class PasswordHasher:
    """Salted one-way hashing (argon2). Every hash embeds its own random salt."""

    def __init__(self, rounds: Optional[int] = None):
        options: Dict[str, Any] = {}
        if rounds:
            options["argon2__rounds"] = rounds
        self._context = CryptContext(schemes=["argon2"], deprecated="auto", **options)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        return self._context.verify(password, hashed)


class TokenIssuer:
    """Mints and checks the four kinds of signed tokens.

    Access and refresh tokens use separate secrets and lifetimes; the one-time
    verify/reset tokens use the email secret. The ``typ`` claim keeps a token
    of one kind from being accepted as another even when secrets are shared.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._secrets = {
            ACCESS: settings.access_token_secret,
            REFRESH: settings.refresh_token_secret,
            VERIFY: settings.email_secret,
            RESET: settings.email_secret,
        }

    def _encode(self, user_id: str, typ: str, expires_delta: timedelta, *, one_time: bool = False) -> str:
        now = datetime.now(tz=timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user_id,
            "typ": typ,
            "iat": int(now.timestamp()),
            "exp": int((now + expires_delta).timestamp()),
        }
        if one_time:
            payload["jti"] = secrets.token_hex(8)
        return jwt.encode(payload, self._secrets[typ], algorithm=self.settings.jwt_algorithm)

    def issue_access_token(self, user_id: str) -> str:
        return self._encode(
            user_id, ACCESS, timedelta(minutes=self.settings.access_token_expire_minutes)
        )

    def issue_refresh_token(self, user_id: str) -> str:
        # jti keeps two refresh tokens minted in the same second distinct
        return self._encode(
            user_id, REFRESH, timedelta(days=self.settings.refresh_token_expire_days), one_time=True
        )

    def issue_verification_token(self, user_id: str) -> str:
        return self._encode(
            user_id, VERIFY, timedelta(hours=self.settings.verification_expire_hours), one_time=True
        )

    def issue_reset_token(self, user_id: str) -> str:
        return self._encode(
            user_id, RESET, timedelta(minutes=self.settings.reset_token_expire_minutes), one_time=True
        )

    async def issue_access_and_refresh(
        self,
        user_id: str,
        users: "UserStore",
        *,
        rotate_from: Optional[str] = None,
    ) -> TokenPair:
        """Mint a new pair and persist the refresh token on the user record.

        With ``rotate_from`` the write only happens while the stored refresh
        token still equals that value; a lost race raises ``Unauthenticated``.
        """
        access = self.issue_access_token(user_id)
        refresh = self.issue_refresh_token(user_id)
        if rotate_from is None:
            await users.set_refresh_token(user_id, refresh)
        elif not await users.swap_refresh_token(user_id, rotate_from, refresh):
            raise Unauthenticated("Refresh token has been revoked", context={"reason": "token_revoked"})
        return TokenPair(access_token=access, refresh_token=refresh)

    def decode(self, token: str, typ: str) -> Dict[str, Any]:
        """Return the claims of a valid, unexpired token of kind ``typ``."""
        try:
            data = jwt.decode(token, self._secrets[typ], algorithms=[self.settings.jwt_algorithm])
        except ExpiredSignatureError:
            raise TokenExpired(f"{typ.capitalize()} token expired")
        except JWTError:
            raise InvalidToken(f"Invalid {typ} token")
        if data.get("typ") != typ or not data.get("sub"):
            raise InvalidToken(f"Invalid {typ} token")
        return data
