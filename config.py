"""
config.py — Centralised configuration for the POS sync backend.
All environment variables are read here; other modules import `settings`.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(environ, name, default):
    raw = environ.get(name, "")
    if raw is None or str(raw).strip() == "":
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class Settings:
    """Runtime configuration, built from an environment mapping."""

    def __init__(self, environ):
        url = environ.get("DATABASE_URL", "") or ""
        # Heroku/Railway style URLs use the old scheme name
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        self.DATABASE_URL = url

        self.HOST = environ.get("HOST", "0.0.0.0") or "0.0.0.0"
        self.PORT = _int_env(environ, "PORT", 3000)

        self.DB_POOL_MAX = _int_env(environ, "DB_POOL_MAX", 10)
        self.DB_POOL_TIMEOUT = _int_env(environ, "DB_POOL_TIMEOUT", 30)
        self.DB_CONNECT_TIMEOUT = _int_env(environ, "DB_CONNECT_TIMEOUT", 10)
        self.DB_STATEMENT_TIMEOUT_MS = _int_env(environ, "DB_STATEMENT_TIMEOUT_MS", 15000)

        self.CORS_ORIGIN = environ.get("CORS_ORIGIN", "*") or "*"
        self.LOG_LEVEL = (environ.get("LOG_LEVEL", "INFO") or "INFO").upper()
        self.ORDERS_MAX_LIMIT = _int_env(environ, "ORDERS_MAX_LIMIT", 500)

        if self.DB_POOL_MAX < 1:
            raise ValueError("DB_POOL_MAX must be at least 1")


def load_settings(environ=None):
    if environ is None:
        environ = os.environ
    return Settings(environ)


settings = load_settings()
