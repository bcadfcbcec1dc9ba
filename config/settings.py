# config/settings.py
"""
Environment-backed settings.

get_settings() re-reads the environment on every call so each request
builds its Stripe / Supabase access from current configuration instead of
a process-wide client.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SIGNATURE_SCHEME = "v0"
DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 30 * 60


class ConfigError(RuntimeError):
    """A required setting is missing or malformed."""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer") from e


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_signature_scheme: str = DEFAULT_SIGNATURE_SCHEME
    stripe_webhook_tolerance: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS

    supabase_project_url: str = ""
    supabase_jwt_secret: Optional[str] = None
    supabase_jwt_aud: str = "authenticated"

    frontend_url: str = "http://localhost:5173"
    cors_origins: list[str] = field(default_factory=list)

    def require(self, name: str) -> str:
        value = getattr(self, name)
        if not value:
            raise ConfigError(f"Missing configuration: {name.upper()}")
        return value


def get_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "")
    return Settings(
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
        stripe_signature_scheme=os.getenv("STRIPE_SIGNATURE_SCHEME", DEFAULT_SIGNATURE_SCHEME).strip() or DEFAULT_SIGNATURE_SCHEME,
        stripe_webhook_tolerance=_int_env("STRIPE_WEBHOOK_TOLERANCE_SECONDS", DEFAULT_WEBHOOK_TOLERANCE_SECONDS),
        supabase_project_url=os.getenv("SUPABASE_PROJECT_URL", "").rstrip("/"),
        supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET"),
        supabase_jwt_aud=os.getenv("SUPABASE_JWT_AUD", "authenticated"),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
