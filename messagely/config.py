"""Configuration management for the messagely service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path
from .users import DEFAULT_WORK_FACTOR

# bcrypt accepts cost factors between 4 and 31 inclusive.
MIN_WORK_FACTOR = 4
MAX_WORK_FACTOR = 31


@dataclass(frozen=True)
class Settings:
    """Runtime settings shared by the API and the CLI."""

    database_path: Path
    secret_key: str
    bcrypt_work_factor: int = DEFAULT_WORK_FACTOR
    token_ttl: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if not self.secret_key:
            raise ValueError("A secret key must be configured (set MESSAGELY_SECRET_KEY)")
        if not MIN_WORK_FACTOR <= self.bcrypt_work_factor <= MAX_WORK_FACTOR:
            raise ValueError(
                f"bcrypt work factor must be between {MIN_WORK_FACTOR} and {MAX_WORK_FACTOR}"
            )
        if self.token_ttl <= timedelta(0):
            raise ValueError("Token lifetime must be positive")


def _load_yaml(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration file {config_path} must contain a mapping")
    return raw


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""
    if not env_value:
        return None
    return Path(env_value).expanduser().resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build :class:`Settings` from an optional YAML file plus environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("MESSAGELY_CONFIG"))

    data: Dict[str, object] = {}
    if config_path is not None:
        data = _load_yaml(config_path)

    raw_db_path = env.get("MESSAGELY_DB_PATH")
    if not raw_db_path and data.get("database_path"):
        candidate = Path(str(data["database_path"])).expanduser()
        if not candidate.is_absolute() and config_path is not None:
            candidate = config_path.parent / candidate
        raw_db_path = str(candidate)

    secret_key = env.get("MESSAGELY_SECRET_KEY") or str(data.get("secret_key") or "")

    raw_work_factor = env.get("MESSAGELY_BCRYPT_WORK_FACTOR") or data.get("bcrypt_work_factor")
    raw_ttl_hours = env.get("MESSAGELY_TOKEN_TTL_HOURS") or data.get("token_ttl_hours")

    try:
        work_factor = int(raw_work_factor) if raw_work_factor is not None else DEFAULT_WORK_FACTOR
        ttl_hours = float(raw_ttl_hours) if raw_ttl_hours is not None else 24.0
    except (TypeError, ValueError) as exc:
        raise ValueError("bcrypt_work_factor and token_ttl_hours must be numeric") from exc

    return Settings(
        database_path=resolve_database_path(raw_db_path),
        secret_key=secret_key,
        bcrypt_work_factor=work_factor,
        token_ttl=timedelta(hours=ttl_hours),
    )


__all__ = ["Settings", "load_settings", "resolve_config_path"]
