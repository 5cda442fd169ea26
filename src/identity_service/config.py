# src/identity_service/config.py
"""
Settings loaded from environment variables (and ``.env`` when present).
"""
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .UAA.exceptions import ConfigInvalid


class Settings(BaseSettings):
    # ── Token signing ────────────────────────────────────────────────────
    secret_key: str = Field(min_length=1)                 # HMAC secret, required
    access_token_expire_minutes: int = Field(default=1440, gt=0)  # 24h
    token_leeway_seconds: int = Field(default=0, ge=0)

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./identity.db"
    database_echo: bool = False

    # ── OTP / passwords ──────────────────────────────────────────────────
    otp_length: int = Field(default=6, gt=0, le=16)
    otp_validity_minutes: int = Field(default=15, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ── Runtime ──────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("secret_key")
    @classmethod
    def _secret_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("secret_key cannot be blank")
        return value

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


def load_settings(**overrides) -> Settings:
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigInvalid(f"invalid configuration: {e}") from e
