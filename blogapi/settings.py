from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_LOCAL_ENVS = {"dev", "local", "test"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # so unknown env vars won't crash startup
        populate_by_name=True,
    )

    app_name: str = Field(default="Blog API", alias="APP_NAME")
    env: str = Field(default="dev", alias="ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        alias="CORS_ORIGINS",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> Any:
        # CORS_ORIGINS=http://a.example,http://b.example
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    # Auth
    access_token_secret: str = Field(..., alias="ACCESS_TOKEN_SECRET")
    refresh_token_secret: str = Field(..., alias="REFRESH_TOKEN_SECRET")
    email_token_secret: Optional[str] = Field(default=None, alias="EMAIL_TOKEN_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(default=7, alias="REFRESH_TOKEN_EXPIRE_DAYS")
    verification_expire_hours: int = Field(default=24, alias="VERIFICATION_EXPIRE_HOURS")
    reset_token_expire_minutes: int = Field(default=15, alias="RESET_TOKEN_EXPIRE_MINUTES")
    password_hash_rounds: Optional[int] = Field(default=None, alias="PASSWORD_HASH_ROUNDS")

    # Mongo
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="blog", alias="MONGODB_DB_NAME")

    # Links mailed to users
    public_base_url: str = Field(default="http://127.0.0.1:8000", alias="PUBLIC_BASE_URL")
    client_base_url: str = Field(default="http://localhost:3000", alias="CLIENT_BASE_URL")

    # SMTP
    smtp_host: str = Field(default="localhost", alias="SMTP_HOST")
    smtp_port: int = Field(default=1025, alias="SMTP_PORT")
    smtp_user: str = Field(default="", alias="SMTP_USER")
    smtp_password: str = Field(default="", alias="SMTP_PASSWORD")
    smtp_tls: bool = Field(default=False, alias="SMTP_TLS")
    mail_from: str = Field(default="no-reply@blog.local", alias="MAIL_FROM")

    @property
    def is_local(self) -> bool:
        return self.env.lower() in _LOCAL_ENVS

    @property
    def cookie_secure(self) -> bool:
        """Cookies are only sent over plain HTTP in local development."""
        return not self.is_local

    @property
    def debug_tokens(self) -> bool:
        return self.env.lower() == "dev"

    @property
    def email_secret(self) -> str:
        return self.email_token_secret or self.access_token_secret


@lru_cache
def get_settings() -> Settings:
    # raises a ValidationError when the token secrets are missing
    return Settings()
