"""Mirror the feature folders of a Spec-kit project into a FeatureStore."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar, Union

from .config import (
    DATA_MODEL_FILE,
    FEATURE_DIR_PATTERN,
    PLAN_FILE,
    RESEARCH_FILE,
    SPEC_FILE,
    SPECIFY_DIR_NAME,
    SPECS_DIR_NAME,
    TASKS_FILE,
)
from .models import (
    EntityRecord,
    FeatureRecord,
    FileChangeEvent,
    ParsedDataModel,
    ParsedPlan,
    ParsedResearch,
    ParsedSpec,
    ParsedTasksFile,
    PlanRecord,
    RequirementRecord,
    ResearchDecisionRecord,
    SyncResult,
    TaskRecord,
)
from .parsers import (
    parse_data_model_file,
    parse_plan_file,
    parse_research_file,
    parse_spec_file,
    parse_tasks_file,
)
from .speckit_logging import (
    log_error_with_context,
    log_feature_sync,
    log_feature_sync_failure,
    log_operation,
    log_performance,
    log_project_sync,
)
from .store import FeatureStore

logger = logging.getLogger("speckit.sync")

T = TypeVar("T")

_FEATURE_DIR_RE = re.compile(FEATURE_DIR_PATTERN)

_STATUS_ALIASES = {
    "draft": "draft",
    "approved": "approved",
    "in_progress": "in_progress",
    "in-progress": "in_progress",
    "in progress": "in_progress",
    "wip": "in_progress",
    "complete": "complete",
    "completed": "complete",
    "done": "complete",
    "implemented": "complete",
}


def normalize_feature_status(status: Optional[str]) -> str:
    """Map a free-form spec status onto draft/approved/in_progress/complete."""
    if not status:
        return "draft"
    return _STATUS_ALIASES.get(status.strip().lower(), "draft")


def validate_project_path(root_path: Union[str, Path]) -> Tuple[bool, Optional[str]]:
    """Check that ``root_path`` looks like a Spec-kit project."""
    root = Path(root_path).expanduser()
    if not root.exists():
        return False, f"Path does not exist: {root}\nPlease check the path and try again."
    if not root.is_dir():
        return False, "Path must be a directory, not a file"
    if not (root / SPECIFY_DIR_NAME).exists():
        return False, f"Missing {SPECIFY_DIR_NAME} folder. Is this a Spec-kit project?"
    if not (root / SPECS_DIR_NAME).exists():
        return False, f"Missing {SPECS_DIR_NAME} folder. No feature specifications found."
    return True, None


def list_feature_folders(specs_dir: Path) -> List[Path]:
    """Immediate subdirectories named ``NNN-slug``, in name order."""
    return sorted(
        (entry for entry in specs_dir.iterdir() if entry.is_dir() and _FEATURE_DIR_RE.match(entry.name)),
        key=lambda entry: entry.name,
    )


def find_feature_folder(file_path: Union[str, Path]) -> Optional[Path]:
    """Return the ``specs/NNN-slug`` folder containing ``file_path``, if any."""
    path = Path(file_path)
    for candidate in (path, *path.parents):
        if candidate.parent.name == SPECS_DIR_NAME and _FEATURE_DIR_RE.match(candidate.name):
            return candidate
    return None


def _read_optional(path: Path, parse: Callable[[Path], T]) -> Optional[T]:
    if not path.is_file():
        return None
    return parse(path)


def _highest_priority(spec: ParsedSpec) -> Optional[str]:
    priorities = sorted(story.priority for story in spec.user_stories)
    return priorities[0] if priorities else None


def _completion_pct(tasks: List[TaskRecord]) -> float:
    if not tasks:
        return 0.0
    done = sum(1 for task in tasks if task.status == "done")
    return (done / len(tasks)) * 100


@dataclass(slots=True)
class _FeatureDocuments:
    spec: ParsedSpec
    plan: Optional[ParsedPlan]
    tasks: Optional[ParsedTasksFile]
    data_model: Optional[ParsedDataModel]
    research: Optional[ParsedResearch]


class FeatureSyncService:
    """Parse feature folders and write the results into a FeatureStore.

    Features are processed one at a time. All documents of a feature are
    parsed before anything is written, and the writes for one feature run
    in a single store transaction, so a failure leaves that feature exactly
    as it was before the sync started.
    """

    def __init__(self, store: FeatureStore):
        self.store = store

    @log_performance("sync_project_features")
    def sync_project_features(self, project_id: int, root_path: Union[str, Path]) -> SyncResult:
        """Sync every feature folder under ``root_path/specs``.

        Never raises for per-feature problems: each failing folder adds one
        ``"Failed to sync <folder>: <reason>"`` entry to the result.
        """
        specs_dir = Path(root_path) / SPECS_DIR_NAME
        if not specs_dir.is_dir():
            logger.warning(f"No specs directory under {root_path}")
            return SyncResult(errors=["specs directory not found"])

        result = SyncResult()
        for folder in list_feature_folders(specs_dir):
            try:
                with log_operation("sync_feature", project_id=project_id, folder=folder.name):
                    self.sync_feature_folder(project_id, folder)
                result.synced += 1
            except Exception as e:
                message = f"Failed to sync {folder.name}: {e}"
                result.errors.append(message)
                log_feature_sync_failure(folder.name, str(e), project_id=project_id)

        log_project_sync(project_id, synced=result.synced, error_count=len(result.errors))
        logger.info(f"Synced {result.synced} features for project {project_id} ({len(result.errors)} errors)")
        return result

    def sync_feature_folder(self, project_id: int, folder: Path) -> FeatureRecord:
        """Parse one ``specs/NNN-slug`` folder and replace its stored state."""
        match = _FEATURE_DIR_RE.match(folder.name)
        if not match:
            raise ValueError(f"'{folder.name}' is not a feature folder (expected NNN-name)")
        feature_number, feature_name = match.group(1), match.group(2)

        spec_path = folder / SPEC_FILE
        if not spec_path.is_file():
            raise FileNotFoundError(f"{SPEC_FILE} not found")

        documents = _FeatureDocuments(
            spec=parse_spec_file(spec_path),
            plan=_read_optional(folder / PLAN_FILE, parse_plan_file),
            tasks=_read_optional(folder / TASKS_FILE, parse_tasks_file),
            data_model=_read_optional(folder / DATA_MODEL_FILE, parse_data_model_file),
            research=_read_optional(folder / RESEARCH_FILE, parse_research_file),
        )

        with self.store.transaction():
            feature = self.store.upsert_feature(
                FeatureRecord(
                    project_id=project_id,
                    feature_number=feature_number,
                    feature_name=feature_name,
                    spec_path=str(spec_path),
                    title=documents.spec.title or feature_name,
                    status=normalize_feature_status(documents.spec.status),
                    priority=_highest_priority(documents.spec),
                    created_date=documents.spec.created_date,
                )
            )
            task_count, entity_count = self._write_children(feature.id, documents)

        log_feature_sync(feature_number, task_count=task_count, entity_count=entity_count, folder=folder.name)
        return self.store.get_feature(feature.id)

    def _write_children(self, feature_id: int, documents: _FeatureDocuments) -> Tuple[int, int]:
        spec = documents.spec
        self.store.replace_requirements(
            feature_id, [RequirementRecord.from_parsed(feature_id, req) for req in spec.requirements]
        )

        parsed_tasks = documents.tasks.tasks if documents.tasks else ()
        tasks = self.store.replace_tasks(
            feature_id, [TaskRecord.from_parsed(feature_id, task) for task in parsed_tasks]
        )
        self.store.update_feature_task_completion(feature_id, _completion_pct(tasks))

        parsed_entities = documents.data_model.entities if documents.data_model else ()
        entities = self.store.replace_entities(
            feature_id, [EntityRecord.from_parsed(feature_id, entity) for entity in parsed_entities]
        )

        if documents.plan is not None:
            self.store.upsert_plan(PlanRecord.from_parsed(feature_id, documents.plan))
        else:
            self.store.delete_plan(feature_id)

        decisions = documents.research.decisions if documents.research else ()
        self.store.replace_research_decisions(
            feature_id, [ResearchDecisionRecord.from_parsed(feature_id, decision) for decision in decisions]
        )
        return len(tasks), len(entities)

    @log_performance("sync_feature_by_path")
    def sync_feature_by_path(self, project_id: int, file_path: Union[str, Path]) -> bool:
        """Re-sync the feature folder containing ``file_path``.

        Falls back to a full project sync when the feature is not stored
        yet. Returns False when the path is not inside a feature folder or
        the feature could not be synced.
        """
        folder = find_feature_folder(file_path)
        if folder is None:
            logger.debug(f"Ignoring change outside feature folders: {file_path}")
            return False

        feature_number = _FEATURE_DIR_RE.match(folder.name).group(1)
        if self.store.get_feature_by_number(project_id, feature_number) is None:
            result = self.sync_project_features(project_id, folder.parent.parent)
            return result.synced > 0

        try:
            self.sync_feature_folder(project_id, folder)
        except Exception as e:
            log_error_with_context(e, {
                "operation": "sync_feature_by_path",
                "project_id": project_id,
                "file_path": str(file_path),
            })
            log_feature_sync_failure(folder.name, str(e), project_id=project_id)
            return False
        return True


def sync_project_features(store: FeatureStore, project_id: int, root_path: Union[str, Path]) -> SyncResult:
    """Module-level shortcut for ``FeatureSyncService(store).sync_project_features``."""
    return FeatureSyncService(store).sync_project_features(project_id, root_path)


def make_resync_callback(service: FeatureSyncService, project_id: int) -> Callable[[FileChangeEvent], None]:
    """Adapt watcher events into per-feature re-syncs."""

    def on_change(event: FileChangeEvent) -> None:
        if event.affected_feature_id is None:
            return
        service.sync_feature_by_path(project_id, event.file_path)

    return on_change
