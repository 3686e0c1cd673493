import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Tuple

logger = logging.getLogger(__name__)

# Prefer PostgreSQL if provided, otherwise fall back to SQLite (so server always boots)
SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./app.db"

HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and never mutated."""

    database_url: str = SQLITE_FALLBACK_URL
    secret_key: str = field(default="", repr=False)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours
    password_hash_rounds: int = 100_000
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)

    def __post_init__(self):
        if not self.secret_key:
            raise ValueError("secret_key must not be empty")
        if self.algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"unsupported token algorithm: {self.algorithm}")
        if self.access_token_expire_minutes <= 0:
            raise ValueError("access_token_expire_minutes must be positive")
        if self.password_hash_rounds < 1:
            raise ValueError("password_hash_rounds must be positive")

    @property
    def using_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @classmethod
    def from_env(cls) -> "Settings":
        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            secret_key = secrets.token_urlsafe(32)
            logger.warning(
                "SECRET_KEY is not set; generated an ephemeral signing key. "
                "Issued tokens will not survive a restart."
            )

        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", "").strip() or SQLITE_FALLBACK_URL,
            secret_key=secret_key,
            algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip() or "HS256",
            access_token_expire_minutes=_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24),
            password_hash_rounds=_int_env("PASSWORD_HASH_ROUNDS", 100_000),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )
