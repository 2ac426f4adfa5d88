from __future__ import annotations

import os
import re


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_csv(name: str, default: str = "") -> list[str]:
    raw = _env_str(name, default)
    return [p.strip() for p in raw.split(",") if p.strip()]


_RATE_SPEC = re.compile(r"^\d+/\d+$")


class Config:
    """
    Runtime configuration, read once from the environment at app creation.

    Rate limits use "<max requests>/<window seconds>" specs.
    """

    def __init__(self):
        self.APP_ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.APP_ENV in {"prod", "production"}
        self.APP_VERSION = _env_str("APP_VERSION", "1.0.0")
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///sme_directory.db")
        self.ALLOWED_ORIGINS = _env_csv("ALLOWED_ORIGINS", "*") or ["*"]
        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        self.GOOGLE_CLIENT_ID = _env_str("GOOGLE_CLIENT_ID", "")
        self.AUTH_ALLOW_TEST_TOKENS = _env_bool("AUTH_ALLOW_TEST_TOKENS", False)
        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 720))

        self.RATE_LIMIT_GLOBAL = _env_str("RATE_LIMIT_GLOBAL", "600/60")
        self.RATE_LIMIT_LOGIN = _env_str("RATE_LIMIT_LOGIN", "20/60")
        self.RATE_LIMIT_DEFAULT = _env_str("RATE_LIMIT_DEFAULT", "300/60")

        self.APP_URL = _env_str("APP_URL", "http://localhost:3000").rstrip("/")

        self.SMTP_HOST = _env_str("SMTP_HOST", "")
        self.SMTP_PORT = _env_int("SMTP_PORT", 25)
        self.SMTP_SECURE = _env_bool("SMTP_SECURE", False)
        self.SMTP_USER = _env_str("SMTP_USER", "")
        self.SMTP_PASS = _env_str("SMTP_PASS", "")
        self.NOTIFICATION_FROM_EMAIL = _env_str("NOTIFICATION_FROM_EMAIL", "noreply@yourdomain.com")
        self.NOTIFICATIONS_ASYNC = _env_bool("NOTIFICATIONS_ASYNC", False)

        self.REDIS_URL = _env_str("REDIS_URL", "")
        self.CELERY_RESULT_BACKEND = _env_str("CELERY_RESULT_BACKEND", "")

        self.SEED_SKILL_CATALOG = _env_bool("SEED_SKILL_CATALOG", True)

        self.COMPRESSION_ENABLED = _env_bool("ENABLE_COMPRESSION", True)
        self.COMPRESSION_MIN_SIZE = max(0, _env_int("COMPRESSION_MIN_SIZE", 500))
        self.COMPRESSION_LEVEL = max(1, min(9, _env_int("COMPRESSION_LEVEL", 6)))

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")

        for key in ("RATE_LIMIT_GLOBAL", "RATE_LIMIT_LOGIN", "RATE_LIMIT_DEFAULT"):
            if not _RATE_SPEC.match(str(getattr(self, key) or "")):
                raise RuntimeError(f"{key} must look like '<count>/<seconds>'")

        if self.IS_PRODUCTION:
            if self.AUTH_ALLOW_TEST_TOKENS:
                raise RuntimeError("AUTH_ALLOW_TEST_TOKENS must be off in production")
            if not self.GOOGLE_CLIENT_ID:
                raise RuntimeError("GOOGLE_CLIENT_ID is required in production")
            if "*" in self.ALLOWED_ORIGINS:
                raise RuntimeError("ALLOWED_ORIGINS must be explicit in production")

        if self.NOTIFICATIONS_ASYNC and not self.REDIS_URL:
            raise RuntimeError("NOTIFICATIONS_ASYNC requires REDIS_URL")
