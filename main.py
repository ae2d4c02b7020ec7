"""MCP server exposing the Spec-kit dashboard: sync, browse and watch feature specs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from src.config import (
    DATA_MODEL_FILE,
    PLAN_FILE,
    PROJECT_ROOT_ENV,
    RESEARCH_FILE,
    SPEC_FILE,
    SPECIFY_DIR_NAME,
    TASKS_FILE,
    load_config,
)
from src.feature_sync import FeatureSyncService, make_resync_callback, validate_project_path
from src.file_watcher import FileWatcherService
from src.models import FEATURE_STATUSES, TASK_STATUSES, FileChangeEvent, ProjectRecord
from src.parsers import (
    parse_data_model_file,
    parse_plan_file,
    parse_research_file,
    parse_spec_file,
    parse_tasks_file,
)
from src.speckit_logging import performance_monitor, setup_logging
from src.store import FeatureStore, JsonFeatureStore

mcp = FastMCP("speckit-dashboard")

logger = logging.getLogger("speckit.server")

DOCUMENT_PARSERS: Dict[str, Callable[[Path], Any]] = {
    "spec": parse_spec_file,
    "plan": parse_plan_file,
    "tasks": parse_tasks_file,
    "data-model": parse_data_model_file,
    "research": parse_research_file,
}

_KIND_BY_FILENAME = {
    SPEC_FILE: "spec",
    PLAN_FILE: "plan",
    TASKS_FILE: "tasks",
    DATA_MODEL_FILE: "data-model",
    RESEARCH_FILE: "research",
}

_store: Optional[FeatureStore] = None
_watcher: Optional[FileWatcherService] = None
_last_change: Optional[FileChangeEvent] = None


def _feature_store() -> FeatureStore:
    global _store
    if _store is None:
        _store = JsonFeatureStore(load_config().store_path)
    return _store


def _locate_project_root() -> Optional[Path]:
    cwd = Path.cwd().resolve()
    for base in (cwd, *cwd.parents):
        if (base / SPECIFY_DIR_NAME).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_project_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _project(root: Optional[str]) -> ProjectRecord:
    resolved = _resolve_root(root)
    valid, error = validate_project_path(resolved)
    if not valid:
        raise ValueError(error)
    return _feature_store().upsert_project(resolved.name, str(resolved))


def _feature_or_error(project: ProjectRecord, feature_number: str):
    store = _feature_store()
    feature = store.get_feature_by_number(project.id, feature_number)
    if feature is None and feature_number.isdigit():
        feature = store.get_feature_by_number(project.id, feature_number.zfill(3))
    if feature is None:
        raise ValueError(
            f"Feature '{feature_number}' not found in project '{project.name}'. Run sync_project first."
        )
    return feature


@mcp.tool()
def configure_project(root: str) -> Dict[str, Any]:
    """STEP 1: Register a Spec-kit project (a folder with .specify/ and specs/) and sync its features."""

    project = _project(root)
    result = FeatureSyncService(_feature_store()).sync_project_features(project.id, project.root_path)
    return {"project": project.to_dict(), "sync": result.to_dict()}


@mcp.tool()
def sync_project(root: Optional[str] = None) -> Dict[str, Any]:
    """Re-parse every feature folder under specs/ and report synced count plus per-feature errors."""

    project = _project(root)
    result = FeatureSyncService(_feature_store()).sync_project_features(project.id, project.root_path)
    return {"project_id": project.id, **result.to_dict()}


@mcp.tool()
def list_features(root: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
    """List synced features with status, priority and task completion."""

    if status is not None and status not in FEATURE_STATUSES:
        raise ValueError(f"Invalid status '{status}'. Expected one of: {', '.join(FEATURE_STATUSES)}.")
    project = _project(root)
    features = _feature_store().list_features(project.id, status=status)
    return {"project_id": project.id, "features": [feature.to_dict() for feature in features]}


@mcp.tool()
def get_feature(feature_number: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Everything stored for one feature: requirements, tasks, entities, plan and research decisions."""

    project = _project(root)
    feature = _feature_or_error(project, feature_number)
    store = _feature_store()
    plan = store.get_plan(feature.id)
    return {
        "feature": feature.to_dict(),
        "requirements": [req.to_dict() for req in store.get_requirements(feature.id)],
        "tasks": [task.to_dict() for task in store.get_tasks(feature.id)],
        "entities": [entity.to_dict() for entity in store.get_entities(feature.id)],
        "plan": plan.to_dict() if plan else None,
        "research_decisions": [decision.to_dict() for decision in store.get_research_decisions(feature.id)],
    }


@mcp.tool()
def list_tasks(feature_number: str, root: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
    """List a feature's tasks in phase order, optionally filtered by status."""

    if status is not None and status not in TASK_STATUSES:
        raise ValueError(f"Invalid status '{status}'. Expected one of: {', '.join(TASK_STATUSES)}.")
    project = _project(root)
    feature = _feature_or_error(project, feature_number)
    tasks = _feature_store().get_tasks(feature.id, status=status)
    return {
        "feature_number": feature.feature_number,
        "task_completion_pct": feature.task_completion_pct,
        "tasks": [task.to_dict() for task in tasks],
    }


@mcp.tool()
def parse_document(path: str, kind: Optional[str] = None) -> Dict[str, Any]:
    """Parse a single markdown document without storing it; kind is inferred from the file name if omitted."""

    document = Path(path).expanduser()
    if not document.is_file():
        raise ValueError(f"Document '{path}' does not exist.")

    kind = kind or _KIND_BY_FILENAME.get(document.name)
    if kind not in DOCUMENT_PARSERS:
        raise ValueError(
            f"Cannot parse '{document.name}'. Pass kind as one of: {', '.join(DOCUMENT_PARSERS)}."
        )
    return {"kind": kind, "path": str(document), "result": DOCUMENT_PARSERS[kind](document).to_dict()}


def _remember_change(event: FileChangeEvent) -> None:
    global _last_change
    _last_change = event


@mcp.tool()
def start_watching(root: Optional[str] = None) -> Dict[str, Any]:
    """Watch specs/ and .specify/ and re-sync the affected feature whenever a markdown file changes."""

    global _watcher
    project = _project(root)
    service = FeatureSyncService(_feature_store())
    resync = make_resync_callback(service, project.id)

    def on_change(event: FileChangeEvent) -> None:
        _remember_change(event)
        resync(event)

    if _watcher is not None:
        _watcher.stop()
    _watcher = FileWatcherService(on_change, debounce_ms=load_config().debounce_ms)
    started = _watcher.start(project.root_path)
    logger.info(f"Watcher for project {project.id} started={started}")
    return {"watching": started, "watch_path": _watcher.get_watch_path()}


@mcp.tool()
def stop_watching() -> Dict[str, Any]:
    """Stop the file watcher if one is running."""

    was_watching = _watcher is not None and _watcher.is_watching()
    if _watcher is not None:
        _watcher.stop()
    return {"stopped": was_watching}


@mcp.tool()
def watch_status() -> Dict[str, Any]:
    """Report whether the watcher is running, what it watches, the last change it saw and how long its re-sync took."""

    last_resync = performance_monitor.last("sync_feature_by_path_duration")
    return {
        "watching": _watcher is not None and _watcher.is_watching(),
        "watch_path": _watcher.get_watch_path() if _watcher else None,
        "pending": _watcher.pending_count() if _watcher else 0,
        "last_change": _last_change.to_dict() if _last_change else None,
        "last_resync_seconds": round(last_resync["value"], 3) if last_resync else None,
    }


@mcp.resource("speckit-dashboard://features")
def resource_features() -> str:
    """Resource view listing synced features for discovery."""

    try:
        project = _project(None)
    except ValueError as e:
        return str(e)

    features = _feature_store().list_features(project.id)
    if not features:
        return "No features have been synced yet. Call sync_project first."

    lines: List[str] = [f"Spec-kit Features ({project.name})"]
    for feature in features:
        lines.append("")
        lines.append(f"- {feature.feature_number}: {feature.title or feature.feature_name} [{feature.status}]")
        lines.append(f"  Tasks complete: {feature.task_completion_pct:.0f}%")
        lines.append(f"  Spec: {feature.spec_path}")

    return "\n".join(lines)


if __name__ == "__main__":
    config = load_config()
    setup_logging(config.log_level, config.log_file)
    mcp.run(transport="stdio")
