# src/identity_service/UAA/models.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
from sqlalchemy import Boolean, DateTime, String, false, func, true

from .utils import utcnow


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(sa_column=Column(String(50), unique=True, index=True, nullable=False))
    email: str = Field(sa_column=Column(String(100), unique=True, index=True, nullable=False))
    # stored in the "password" column; never serialized
    hashed_password: str = Field(sa_column=Column("password", String(255), nullable=False))
    first_name: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, server_default=true()))
    is_superuser: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=false()))
    date_joined: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, server_default=func.now())
    )
    last_login: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    password_changed: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, server_default=func.now())
    )


class OTP(SQLModel, table=True):
    __tablename__ = "otp"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    otp: str = Field(sa_column=Column(String(16), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime, nullable=False))
    verified: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, server_default=false()))
