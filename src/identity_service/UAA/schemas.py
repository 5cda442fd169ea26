# src/identity_service/UAA/schemas.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    username: str
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: Optional[bool] = None
    is_superuser: Optional[bool] = None


class UserRead(BaseModel):
    user_id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    is_superuser: bool
    date_joined: Optional[datetime] = None
    last_login: Optional[datetime] = None


class RegisterResponse(BaseModel):
    user_id: int
    username: str
    message: str = "User registered successfully"


class LoginRequest(BaseModel):
    # handle: matched against username or email
    username: str
    password: str


class Token(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime
    user_id: int


class TokenClaims(BaseModel):
    sub: int
    iat: int
    exp: int
    username: Optional[str] = None
    is_superuser: bool = False

    @property
    def user_id(self) -> int:
        return self.sub


class IssuedToken(BaseModel):
    token: str
    expires_at: datetime


class OTPRequest(BaseModel):
    user_id: int


class OTPVerify(BaseModel):
    user_id: int
    otp: str = Field(min_length=1)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=1)


class PasswordReset(BaseModel):
    user_id: int
    otp: str = Field(min_length=1)
    new_password: str = Field(min_length=1)
