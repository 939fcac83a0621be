from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("WOP_DB_PATH", "wop.db")
    workers: int = _env_int("WOP_WORKERS", 2)
    retry_base_s: float = _env_float("WOP_RETRY_BASE_S", 0.5)
    retry_max_s: float = _env_float("WOP_RETRY_MAX_S", 60.0)

    # Cluster access
    in_cluster: bool = _env_bool("WOP_IN_CLUSTER", False)
    # Empty means all namespaces.
    watch_namespace: str = os.getenv("WOP_WATCH_NAMESPACE", "")
    watch_timeout_s: int = _env_int("WOP_WATCH_TIMEOUT_S", 30)
    resync_s: int = _env_int("WOP_RESYNC_S", 600)
    crd_group: str = os.getenv("WOP_CRD_GROUP", "dev.mvasilenko.me")
    crd_version: str = os.getenv("WOP_CRD_VERSION", "v1")
    crd_plural: str = os.getenv("WOP_CRD_PLURAL", "websites")

    # Admin API
    api_host: str = os.getenv("WOP_API_HOST", "0.0.0.0")
    api_port: int = _env_int("WOP_API_PORT", 8080)

    # Email alerting on fatal outcomes (optional)
    enable_email: bool = _env_bool("WOP_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("WOP_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("WOP_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("WOP_SMTP_USER")
    smtp_password: str | None = os.getenv("WOP_SMTP_PASSWORD")
    email_from: str | None = os.getenv("WOP_EMAIL_FROM")
    email_to: str | None = os.getenv("WOP_EMAIL_TO")


settings = Settings()
