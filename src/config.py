"""Runtime configuration for the Spec-kit dashboard.

Settings are read from environment variables so the MCP server, the
watcher and the tests can be pointed at different projects and stores
without code changes.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

PROJECT_ROOT_ENV = "SPECKIT_PROJECT_ROOT"
STORE_PATH_ENV = "SPECKIT_DASHBOARD_STORE"
DEBOUNCE_ENV = "SPECKIT_DEBOUNCE_MS"
LOG_LEVEL_ENV = "SPECKIT_LOG_LEVEL"
LOG_FILE_ENV = "SPECKIT_LOG_FILE"
ANALYSIS_TTL_ENV = "SPECKIT_ANALYSIS_CACHE_TTL"

DEFAULT_DEBOUNCE_MS = 500
DEFAULT_ANALYSIS_CACHE_TTL = 300.0

# Bit-exact Spec-kit directory convention
SPECS_DIR_NAME = "specs"
SPECIFY_DIR_NAME = ".specify"
FEATURE_DIR_PATTERN = r"^(\d+)-(.+)$"
SPEC_FILE = "spec.md"
PLAN_FILE = "plan.md"
TASKS_FILE = "tasks.md"
DATA_MODEL_FILE = "data-model.md"
RESEARCH_FILE = "research.md"
CHECKLIST_FILE = "checklists/requirements.md"


def _default_store_path() -> Path:
    return Path.home() / ".speckit-dashboard" / "store.json"


@dataclass
class DashboardConfig:
    project_root: Optional[Path] = None
    store_path: Path = field(default_factory=_default_store_path)
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    analysis_cache_ttl: float = DEFAULT_ANALYSIS_CACHE_TTL


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'.")
    if value < 0:
        raise ValueError(f"Environment variable {name} must not be negative, got '{raw}'.")
    return value


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got '{raw}'.")


def _read_path(env: Mapping[str, str], name: str) -> Optional[Path]:
    raw = env.get(name)
    if not raw:
        return None
    return Path(raw).expanduser()


def load_config(env: Optional[Mapping[str, str]] = None) -> DashboardConfig:
    """Build a DashboardConfig from environment variables."""
    env = os.environ if env is None else env
    return DashboardConfig(
        project_root=_read_path(env, PROJECT_ROOT_ENV),
        store_path=_read_path(env, STORE_PATH_ENV) or _default_store_path(),
        debounce_ms=_read_int(env, DEBOUNCE_ENV, DEFAULT_DEBOUNCE_MS),
        log_level=(env.get(LOG_LEVEL_ENV) or "INFO").upper(),
        log_file=_read_path(env, LOG_FILE_ENV),
        analysis_cache_ttl=_read_float(env, ANALYSIS_TTL_ENV, DEFAULT_ANALYSIS_CACHE_TTL),
    )
