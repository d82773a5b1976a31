"""Run configuration read from the environment and the clients file."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from inboxshot.constants import (
    DEFAULT_CLIENTS_FILE,
    DEFAULT_COMPARE_WORKERS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DIFF_RATIO,
    DEFAULT_WAIT_SECONDS,
)
from inboxshot.errors import ConfigurationError

TRUE_VALUES = {"1", "true", "yes", "on"}


class TaskSettings(BaseModel):
    """What the comparison stage needs: no provider credentials."""

    task_name: str
    root: Path = Path(".")
    debug: bool = False
    max_diff_ratio: float = Field(default=DEFAULT_MAX_DIFF_RATIO, ge=0, le=1)
    compare_workers: int = Field(default=DEFAULT_COMPARE_WORKERS, ge=1)

    @field_validator("task_name")
    @classmethod
    def validate_task_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped


class Settings(TaskSettings):
    service: str
    api_key: str
    password: Optional[str] = None
    clients: List[str] = []
    existing_job_id: Optional[str] = None
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    wait_seconds: float = Field(default=DEFAULT_WAIT_SECONDS, ge=0)

    @field_validator("service", "api_key")
    @classmethod
    def validate_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped

    @field_validator("service")
    @classmethod
    def normalize_service(cls, value: str) -> str:
        return value.lower()

    @field_validator("existing_job_id", "password")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


def _bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in TRUE_VALUES


def load_clients(path: Path) -> List[str]:
    """Read the desired client ids from a ``{"key": {"id": ...}}`` JSON file."""
    if not path.exists():
        raise ConfigurationError(f"Missing default clients config: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not read clients config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Clients config {path} must be a JSON object")
    clients: List[str] = []
    for key, entry in data.items():
        client_id = entry.get("id") if isinstance(entry, dict) else None
        if not isinstance(client_id, str) or not client_id.strip():
            raise ConfigurationError(f"Clients config entry {key!r} has no id")
        client_id = client_id.strip()
        if client_id not in clients:
            clients.append(client_id)
    return clients


def _task_values(env: Mapping[str, str], base: Path) -> Dict[str, Any]:
    task_name = env.get("TASK_NAME")
    if not task_name or not task_name.strip():
        raise ConfigurationError("TASK_NAME is not set.")
    return {
        "task_name": task_name,
        "root": base,
        "debug": _bool(env.get("EOA_DEBUG")),
        "max_diff_ratio": env.get("INBOXSHOT_MAX_DIFF_RATIO") or DEFAULT_MAX_DIFF_RATIO,
        "compare_workers": env.get("INBOXSHOT_COMPARE_WORKERS") or DEFAULT_COMPARE_WORKERS,
    }


def _build(model: type, values: Dict[str, Any], overrides: Dict[str, Any]) -> Any:
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return model(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def load_task_settings(
    environ: Optional[Mapping[str, str]] = None,
    root: Optional[Path] = None,
    **overrides: Any,
) -> TaskSettings:
    env = os.environ if environ is None else environ
    base = Path(root) if root is not None else Path.cwd()
    return _build(TaskSettings, _task_values(env, base), overrides)


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    root: Optional[Path] = None,
    **overrides: Any,
) -> Settings:
    env = os.environ if environ is None else environ
    base = Path(root) if root is not None else Path.cwd()
    values = _task_values(env, base)

    service = (env.get("EMAIL_PREVIEW_SERVICE") or "").strip().lower()
    prefix = service.upper()
    api_key = env.get(f"{prefix}_API_KEY") if service else None
    if not service or not api_key:
        raise ConfigurationError("Missing EMAIL_PREVIEW_SERVICE or its API key.")

    clients_path = Path(env.get("INBOXSHOT_CLIENTS_FILE") or DEFAULT_CLIENTS_FILE)
    if not clients_path.is_absolute():
        clients_path = base / clients_path

    values.update(
        {
            "service": service,
            "api_key": api_key,
            "password": env.get(f"{prefix}_ACCOUNT_PASSWORD"),
            "clients": load_clients(clients_path),
            "existing_job_id": env.get("EXISTING_EOA_TEST_ID") or env.get("EOA_TEST_ID"),
            "max_attempts": env.get("EOA_MAX_ATTEMPTS") or DEFAULT_MAX_ATTEMPTS,
            "wait_seconds": env.get("EOA_WAIT_SECONDS") or DEFAULT_WAIT_SECONDS,
        }
    )
    return _build(Settings, values, overrides)
