from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    zapi_base_url: str
    zapi_instance_id: str
    zapi_token: str
    zapi_client_token: str
    membership_probe_timeout_seconds: float
    click_field_max_length: int
    default_member_limit: int

    @property
    def zapi_configured(self) -> bool:
        return bool(self.zapi_instance_id and self.zapi_token and self.zapi_client_token)


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/smartlinks.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        zapi_base_url=os.getenv("ZAPI_BASE_URL", "https://api.z-api.io").strip().rstrip("/"),
        zapi_instance_id=os.getenv("ZAPI_INSTANCE_ID", "").strip(),
        zapi_token=os.getenv("ZAPI_TOKEN", "").strip(),
        zapi_client_token=os.getenv("ZAPI_CLIENT_TOKEN", "").strip(),
        membership_probe_timeout_seconds=max(
            0.5, min(30.0, _float_env("MEMBERSHIP_PROBE_TIMEOUT_SECONDS", 5.0))
        ),
        click_field_max_length=max(50, _int_env("CLICK_FIELD_MAX_LENGTH", 500)),
        default_member_limit=max(1, _int_env("DEFAULT_MEMBER_LIMIT", 256)),
    )
