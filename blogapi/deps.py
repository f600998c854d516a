from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth_service import AuthService
from .db import USERS, get_db
from .email_utils import Mailer, SmtpMailer
from .schemas import UserOut
from .security import PasswordHasher
from .settings import Settings, get_settings
from .users import UserStore

COOKIE_ACCESS = "access_token"
COOKIE_REFRESH = "refresh_token"

bearer = HTTPBearer(auto_error=False)


def get_user_store(settings: Settings = Depends(get_settings)) -> UserStore:
    return UserStore(get_db()[USERS], PasswordHasher(settings.password_hash_rounds))


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return SmtpMailer(settings)


def get_auth_service(
    settings: Settings = Depends(get_settings),
    users: UserStore = Depends(get_user_store),
    mailer: Mailer = Depends(get_mailer),
) -> AuthService:
    return AuthService(settings, users, mailer)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    auth: AuthService = Depends(get_auth_service),
) -> UserOut:
    """Session guard: cookie first, then ``Authorization: Bearer``."""
    token = request.cookies.get(COOKIE_ACCESS) or (credentials.credentials if credentials else None)
    user = await auth.authenticate(token)
    request.state.user = user.public()
    return request.state.user
