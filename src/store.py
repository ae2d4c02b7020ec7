"""Persistence for synced features and their child records.

``FeatureStore`` is the contract the sync orchestrator and the analysis
service rely on. Two implementations are provided: an in-memory store and
a JSON-snapshot store that writes the whole state to one file after every
committed transaction.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, TypeVar, Union

from .models import (
    AnalysisResultRecord,
    EntityRecord,
    FeatureRecord,
    PlanRecord,
    ProjectRecord,
    RequirementRecord,
    ResearchDecisionRecord,
    TaskRecord,
    utc_timestamp,
)

logger = logging.getLogger("speckit.store")

R = TypeVar("R")

_RECORD_TYPES: Dict[str, Any] = {
    "projects": ProjectRecord,
    "features": FeatureRecord,
    "tasks": TaskRecord,
    "entities": EntityRecord,
    "requirements": RequirementRecord,
    "plans": PlanRecord,
    "research_decisions": ResearchDecisionRecord,
    "analysis_results": AnalysisResultRecord,
}

# Store-managed fields; everything else is content
_BOOKKEEPING = ("id", "created_at", "updated_at")
# Fields upsert_feature never takes from the caller; completion is owned by update_feature_task_completion
_FEATURE_IDENTITY = ("id", "project_id", "feature_number", "task_completion_pct", "created_at", "updated_at")


def _content(record: Any) -> Dict[str, Any]:
    return {key: value for key, value in record.to_dict().items() if key not in _BOOKKEEPING}


class FeatureStore(Protocol):
    """Natural-key persistence for projects, features and feature children."""

    def transaction(self) -> Any: ...

    def upsert_project(self, name: str, root_path: str) -> ProjectRecord: ...

    def get_project(self, project_id: int) -> Optional[ProjectRecord]: ...

    def get_project_by_path(self, root_path: str) -> Optional[ProjectRecord]: ...

    def list_projects(self) -> List[ProjectRecord]: ...

    def upsert_feature(self, record: FeatureRecord) -> FeatureRecord: ...

    def get_feature(self, feature_id: int) -> Optional[FeatureRecord]: ...

    def get_feature_by_number(self, project_id: int, feature_number: str) -> Optional[FeatureRecord]: ...

    def list_features(self, project_id: int, status: Optional[str] = None) -> List[FeatureRecord]: ...

    def update_feature_task_completion(self, feature_id: int, pct: float) -> None: ...

    def replace_tasks(self, feature_id: int, records: Sequence[TaskRecord]) -> List[TaskRecord]: ...

    def get_tasks(self, feature_id: int, status: Optional[str] = None) -> List[TaskRecord]: ...

    def replace_entities(self, feature_id: int, records: Sequence[EntityRecord]) -> List[EntityRecord]: ...

    def get_entities(self, feature_id: int) -> List[EntityRecord]: ...

    def replace_requirements(self, feature_id: int, records: Sequence[RequirementRecord]) -> List[RequirementRecord]: ...

    def get_requirements(self, feature_id: int) -> List[RequirementRecord]: ...

    def replace_research_decisions(
        self, feature_id: int, records: Sequence[ResearchDecisionRecord]
    ) -> List[ResearchDecisionRecord]: ...

    def get_research_decisions(self, feature_id: int) -> List[ResearchDecisionRecord]: ...

    def upsert_plan(self, record: PlanRecord) -> PlanRecord: ...

    def get_plan(self, feature_id: int) -> Optional[PlanRecord]: ...

    def delete_plan(self, feature_id: int) -> None: ...

    def add_analysis_result(self, record: AnalysisResultRecord) -> AnalysisResultRecord: ...

    def get_analysis_results(
        self, feature_id: int, analysis_type: Optional[str] = None, limit: int = 10
    ) -> List[AnalysisResultRecord]: ...


class MemoryFeatureStore:
    """Thread-safe in-memory FeatureStore.

    Ids are assigned monotonically per record kind. All writes go through
    ``transaction()``; an exception inside the outermost transaction
    restores the state captured when it began.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[str, Dict[int, Any]] = {kind: {} for kind in _RECORD_TYPES}
        self._next_ids: Dict[str, int] = {kind: 1 for kind in _RECORD_TYPES}
        self._depth = 0

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["MemoryFeatureStore"]:
        with self._lock:
            snapshot = None
            if self._depth == 0:
                snapshot = (copy.deepcopy(self._tables), dict(self._next_ids))
            self._depth += 1
            try:
                yield self
            except Exception:
                self._depth -= 1
                if snapshot is not None:
                    self._tables, self._next_ids = snapshot
                    logger.debug("Rolled back store transaction")
                raise
            self._depth -= 1
            if self._depth == 0:
                self._commit()

    def _commit(self) -> None:
        """Hook for persistent subclasses; called after the outermost transaction."""

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _insert(self, kind: str, record: R) -> R:
        stored = replace(record, id=self._next_ids[kind])
        self._next_ids[kind] += 1
        self._tables[kind][stored.id] = stored
        return stored

    def _select(self, kind: str, predicate: Callable[[Any], bool]) -> List[Any]:
        with self._lock:
            return [record for record in self._tables[kind].values() if predicate(record)]

    def _replace_children(
        self, kind: str, feature_id: int, records: Iterable[Any], key: Callable[[Any], Any]
    ) -> List[Any]:
        """Make the stored children of one feature equal to ``records``.

        Matching is by natural key: an unchanged record keeps its id and
        timestamps, a changed one keeps id and created_at, new keys are
        inserted and keys no longer present are deleted. When the same key
        appears more than once, the last record wins.
        """
        with self.transaction():
            table = self._tables[kind]
            existing = {key(record): record for record in table.values() if record.feature_id == feature_id}
            incoming: Dict[Any, Any] = {}
            for record in records:
                incoming[key(record)] = record

            stored: List[Any] = []
            for natural_key, record in incoming.items():
                record = replace(record, feature_id=feature_id)
                current = existing.get(natural_key)
                if current is None:
                    stored.append(self._insert(kind, record))
                elif _content(current) != _content(record):
                    updated = replace(record, id=current.id, created_at=current.created_at, updated_at=utc_timestamp())
                    table[current.id] = updated
                    stored.append(updated)
                else:
                    stored.append(current)

            for natural_key, current in existing.items():
                if natural_key not in incoming:
                    del table[current.id]
            return stored

    def counts(self) -> Dict[str, int]:
        """Number of stored records per kind."""
        with self._lock:
            return {kind: len(table) for kind, table in self._tables.items()}

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def upsert_project(self, name: str, root_path: str) -> ProjectRecord:
        with self.transaction():
            current = self.get_project_by_path(root_path)
            if current is None:
                return self._insert("projects", ProjectRecord(name=name, root_path=root_path))
            updated = replace(current, name=name, last_opened_at=utc_timestamp())
            self._tables["projects"][current.id] = updated
            return updated

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        with self._lock:
            return self._tables["projects"].get(project_id)

    def get_project_by_path(self, root_path: str) -> Optional[ProjectRecord]:
        matches = self._select("projects", lambda record: record.root_path == root_path)
        return matches[0] if matches else None

    def list_projects(self) -> List[ProjectRecord]:
        return sorted(self._select("projects", lambda record: True), key=lambda record: record.last_opened_at, reverse=True)

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def upsert_feature(self, record: FeatureRecord) -> FeatureRecord:
        """Insert by (project_id, feature_number) or update the mutable fields."""
        with self.transaction():
            current = self.get_feature_by_number(record.project_id, record.feature_number)
            if current is None:
                return self._insert("features", record)

            changes = {
                key: value
                for key, value in record.to_dict().items()
                if key not in _FEATURE_IDENTITY
            }
            if all(getattr(current, key) == value for key, value in changes.items()):
                return current
            updated = replace(current, updated_at=utc_timestamp(), **changes)
            self._tables["features"][current.id] = updated
            return updated

    def get_feature(self, feature_id: int) -> Optional[FeatureRecord]:
        with self._lock:
            return self._tables["features"].get(feature_id)

    def get_feature_by_number(self, project_id: int, feature_number: str) -> Optional[FeatureRecord]:
        matches = self._select(
            "features",
            lambda record: record.project_id == project_id and record.feature_number == feature_number,
        )
        return matches[0] if matches else None

    def list_features(self, project_id: int, status: Optional[str] = None) -> List[FeatureRecord]:
        features = self._select(
            "features",
            lambda record: record.project_id == project_id and (status is None or record.status == status),
        )
        return sorted(features, key=lambda record: record.feature_number)

    def update_feature_task_completion(self, feature_id: int, pct: float) -> None:
        with self.transaction():
            current = self._tables["features"].get(feature_id)
            if current is None:
                raise ValueError(f"Feature {feature_id} not found")
            if current.task_completion_pct != pct:
                self._tables["features"][feature_id] = replace(
                    current, task_completion_pct=pct, updated_at=utc_timestamp()
                )

    # ------------------------------------------------------------------
    # Feature children
    # ------------------------------------------------------------------

    def replace_tasks(self, feature_id: int, records: Sequence[TaskRecord]) -> List[TaskRecord]:
        return self._replace_children("tasks", feature_id, records, lambda record: record.task_id)

    def get_tasks(self, feature_id: int, status: Optional[str] = None) -> List[TaskRecord]:
        tasks = self._select(
            "tasks",
            lambda record: record.feature_id == feature_id and (status is None or record.status == status),
        )
        return sorted(tasks, key=lambda record: (record.phase_order, record.task_id))

    def replace_entities(self, feature_id: int, records: Sequence[EntityRecord]) -> List[EntityRecord]:
        return self._replace_children("entities", feature_id, records, lambda record: record.entity_name)

    def get_entities(self, feature_id: int) -> List[EntityRecord]:
        return self._select("entities", lambda record: record.feature_id == feature_id)

    def replace_requirements(self, feature_id: int, records: Sequence[RequirementRecord]) -> List[RequirementRecord]:
        return self._replace_children("requirements", feature_id, records, lambda record: record.requirement_id)

    def get_requirements(self, feature_id: int) -> List[RequirementRecord]:
        return sorted(
            self._select("requirements", lambda record: record.feature_id == feature_id),
            key=lambda record: record.requirement_id,
        )

    def replace_research_decisions(
        self, feature_id: int, records: Sequence[ResearchDecisionRecord]
    ) -> List[ResearchDecisionRecord]:
        return self._replace_children("research_decisions", feature_id, records, lambda record: record.title)

    def get_research_decisions(self, feature_id: int) -> List[ResearchDecisionRecord]:
        return self._select("research_decisions", lambda record: record.feature_id == feature_id)

    def upsert_plan(self, record: PlanRecord) -> PlanRecord:
        stored = self._replace_children("plans", record.feature_id, [record], lambda plan: plan.feature_id)
        return stored[0]

    def get_plan(self, feature_id: int) -> Optional[PlanRecord]:
        matches = self._select("plans", lambda record: record.feature_id == feature_id)
        return matches[0] if matches else None

    def delete_plan(self, feature_id: int) -> None:
        self._replace_children("plans", feature_id, [], lambda plan: plan.feature_id)

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    def add_analysis_result(self, record: AnalysisResultRecord) -> AnalysisResultRecord:
        with self.transaction():
            return self._insert("analysis_results", record)

    def get_analysis_results(
        self, feature_id: int, analysis_type: Optional[str] = None, limit: int = 10
    ) -> List[AnalysisResultRecord]:
        """Most recent results first."""
        results = self._select(
            "analysis_results",
            lambda record: record.feature_id == feature_id
            and (analysis_type is None or record.analysis_type == analysis_type),
        )
        results.sort(key=lambda record: record.id, reverse=True)
        return results[:limit]

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "next_ids": dict(self._next_ids),
                "tables": {
                    kind: [record.to_dict() for record in table.values()]
                    for kind, table in self._tables.items()
                },
            }

    def restore(self, data: Dict[str, Any]) -> None:
        with self._lock:
            tables: Dict[str, Dict[int, Any]] = {kind: {} for kind in _RECORD_TYPES}
            for kind, rows in data.get("tables", {}).items():
                record_type = _RECORD_TYPES.get(kind)
                if record_type is None:
                    logger.warning(f"Ignoring unknown record kind in snapshot: {kind}")
                    continue
                for row in rows:
                    record = record_type.from_dict(row)
                    tables[kind][record.id] = record

            next_ids = {kind: 1 for kind in _RECORD_TYPES}
            for kind, table in tables.items():
                highest = max(table, default=0)
                next_ids[kind] = max(int(data.get("next_ids", {}).get(kind, 1)), highest + 1)

            self._tables = tables
            self._next_ids = next_ids


class JsonFeatureStore(MemoryFeatureStore):
    """MemoryFeatureStore persisted to a single JSON file."""

    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._load()

    def _load(self) -> None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self.restore(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise RuntimeError(f"Store file '{self.path}' is corrupt: {e}") from e
        logger.info(f"Loaded store from {self.path}", extra={"extra_fields": self.counts()})

    def _commit(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(self.snapshot(), indent=2), encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug(f"Persisted store to {self.path}")
