from typing import Optional

from pydantic import BaseModel, EmailStr, Field, constr


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    verified: bool


class RegisterIn(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)  # type: ignore
    email: EmailStr
    password: constr(min_length=8, max_length=256)  # type: ignore


class RegisterOut(UserOut):
    verify_token_dev_only: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class LoginOut(TokenPair):
    user: UserOut


class RefreshIn(BaseModel):
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")

    model_config = {"populate_by_name": True}


class EmailIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    password: constr(min_length=8, max_length=256)  # type: ignore


class ChangePasswordIn(BaseModel):
    old_password: str = Field(alias="oldPassword")
    new_password: constr(min_length=8, max_length=256) = Field(alias="newPassword")  # type: ignore

    model_config = {"populate_by_name": True}


class MessageOut(BaseModel):
    msg: str
    reset_token_dev_only: Optional[str] = None
    verify_token_dev_only: Optional[str] = None
