"""Entitlement configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
import os

from .app.entitlements.catalog import DEFAULT_PRODUCT_IDS

SHARED_BACKENDS = frozenset({"file", "postgres"})


@dataclass(frozen=True)
class EntitlementConfig:
    """Configuration for the subscription and entitlement runtime."""

    product_ids: Tuple[str, ...]
    data_dir: Path
    shared_dir: Path
    shared_backend: str
    dismiss_debounce_seconds: float
    offerings_max_retries: int
    offerings_retry_backoff: float
    free_analysis_limit: int
    free_meal_save_limit: int
    free_exercise_save_limit: int
    sandbox_secret: str
    listener_enabled: bool

    @property
    def local_store_path(self) -> Path:
        return self.data_dir / "preferences.json"

    @property
    def shared_store_path(self) -> Path:
        return self.shared_dir / "shared_preferences.json"

    def free_limits(self) -> Dict[str, int]:
        return {
            "analysis": self.free_analysis_limit,
            "meal_save": self.free_meal_save_limit,
            "exercise_save": self.free_exercise_save_limit,
        }


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    dbname: str
    user: str
    password: str
    connect_timeout: int

    def connect_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.dbname,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Expected boolean value, got {value!r}")


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _to_list(value: Optional[str], *, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    items = tuple(item.strip() for item in value.split(",") if item.strip())
    return items or default


def load_entitlement_config(env: Optional[Mapping[str, str]] = None) -> EntitlementConfig:
    """Load :class:`EntitlementConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    product_ids = _to_list(env_mapping.get("ENTITLEMENT_PRODUCT_IDS"), default=DEFAULT_PRODUCT_IDS)

    data_dir = Path(env_mapping.get("ENTITLEMENT_DATA_DIR") or ".calorie_tracker").expanduser()
    shared_dir_value = env_mapping.get("ENTITLEMENT_SHARED_DIR")
    shared_dir = Path(shared_dir_value).expanduser() if shared_dir_value else data_dir / "shared"

    shared_backend = (env_mapping.get("ENTITLEMENT_SHARED_BACKEND") or "file").strip().lower() or "file"
    if shared_backend not in SHARED_BACKENDS:
        raise ValueError(f"Unsupported shared backend {shared_backend!r}")

    dismiss_debounce_seconds = max(
        0.0, _to_float(env_mapping.get("PAYWALL_DISMISS_DEBOUNCE_SECONDS"), default=0.5)
    )
    offerings_max_retries = max(0, _to_int(env_mapping.get("OFFERINGS_MAX_RETRIES"), default=3))
    offerings_retry_backoff = max(0.0, _to_float(env_mapping.get("OFFERINGS_RETRY_BACKOFF"), default=2.0))

    free_analysis_limit = max(0, _to_int(env_mapping.get("FREE_ANALYSIS_LIMIT"), default=1))
    free_meal_save_limit = max(0, _to_int(env_mapping.get("FREE_MEAL_SAVE_LIMIT"), default=1))
    free_exercise_save_limit = max(0, _to_int(env_mapping.get("FREE_EXERCISE_SAVE_LIMIT"), default=1))

    sandbox_secret = env_mapping.get("BILLING_SANDBOX_SECRET") or "local-sandbox-secret"
    listener_enabled = _to_bool(env_mapping.get("ENTITLEMENT_LISTENER_ENABLED"), default=True)

    return EntitlementConfig(
        product_ids=product_ids,
        data_dir=data_dir,
        shared_dir=shared_dir,
        shared_backend=shared_backend,
        dismiss_debounce_seconds=dismiss_debounce_seconds,
        offerings_max_retries=offerings_max_retries,
        offerings_retry_backoff=offerings_retry_backoff,
        free_analysis_limit=free_analysis_limit,
        free_meal_save_limit=free_meal_save_limit,
        free_exercise_save_limit=free_exercise_save_limit,
        sandbox_secret=sandbox_secret,
        listener_enabled=listener_enabled,
    )


def load_database_config(env: Optional[Mapping[str, str]] = None) -> DatabaseConfig:
    env_mapping = os.environ if env is None else env
    return DatabaseConfig(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "calorie_tracker"),
        user=env_mapping.get("DB_USER", "calorie_user"),
        password=env_mapping.get("DB_PASSWORD", "calorie_pass"),
        connect_timeout=max(1, _to_int(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5)),
    )


__all__ = [
    "DEFAULT_PRODUCT_IDS",
    "DatabaseConfig",
    "EntitlementConfig",
    "load_database_config",
    "load_entitlement_config",
]
