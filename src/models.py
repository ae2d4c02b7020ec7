"""Data models for the Spec-kit dashboard.

Two families live here:

* Parsed document values (``Parsed*``) produced by the parsers. They are
  frozen and hold tuples, so a parse result is a plain value with no tie
  to the markdown tree it came from.
* Persisted records (``*Record``) exchanged with the feature store. Their
  ``id`` and timestamps are assigned by the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

FEATURE_STATUSES = ("draft", "approved", "in_progress", "complete")
TASK_STATUSES = ("not_started", "in_progress", "done")
RELATIONSHIP_TYPES = ("1:1", "1:N", "N:1", "N:N")
REQUIREMENT_TYPES = ("functional", "non_functional", "constraint")
STORY_PRIORITIES = ("P1", "P2", "P3")
FILE_EVENT_TYPES = ("add", "change", "unlink")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ----------------------------------------------------------------------
# spec.md
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ParsedRequirement:
    """A functional or non-functional requirement line (``FR-001``/``NFR-001``)."""

    id: str
    description: str
    priority: Optional[str] = None

    @property
    def type(self) -> str:
        return "non_functional" if self.id.startswith("NFR") else "functional"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority,
            "type": self.type,
        }


@dataclass(slots=True, frozen=True)
class ParsedUserStory:
    title: str
    priority: str = "P2"
    description: str = ""
    acceptance_scenarios: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "priority": self.priority,
            "description": self.description,
            "acceptance_scenarios": list(self.acceptance_scenarios),
        }


@dataclass(slots=True, frozen=True)
class ParsedSpec:
    title: Optional[str] = None
    status: str = "draft"
    created_date: Optional[str] = None
    feature_branch: Optional[str] = None
    user_stories: Tuple[ParsedUserStory, ...] = ()
    requirements: Tuple[ParsedRequirement, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status,
            "created_date": self.created_date,
            "feature_branch": self.feature_branch,
            "user_stories": [story.to_dict() for story in self.user_stories],
            "requirements": [req.to_dict() for req in self.requirements],
        }


# ----------------------------------------------------------------------
# plan.md
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ParsedPhase:
    name: str
    order: int
    goal: str = ""
    tasks: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "goal": self.goal, "order": self.order, "tasks": list(self.tasks)}


@dataclass(slots=True, frozen=True)
class ParsedRisk:
    risk: str
    mitigation: str

    def to_dict(self) -> Dict[str, str]:
        return {"risk": self.risk, "mitigation": self.mitigation}


@dataclass(slots=True, frozen=True)
class ParsedPlan:
    summary: Optional[str] = None
    tech_stack: Dict[str, str] = field(default_factory=dict)
    phases: Tuple[ParsedPhase, ...] = ()
    dependencies: Tuple[str, ...] = ()
    risks: Tuple[ParsedRisk, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "tech_stack": dict(self.tech_stack),
            "phases": [phase.to_dict() for phase in self.phases],
            "dependencies": list(self.dependencies),
            "risks": [risk.to_dict() for risk in self.risks],
        }


# ----------------------------------------------------------------------
# tasks.md
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ParsedTask:
    """One checkbox line of tasks.md."""

    task_id: str
    description: str
    status: str
    phase: Optional[str]
    phase_order: int
    is_parallel: bool
    story_label: Optional[str]
    file_path: Optional[str]
    line_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "description": self.description,
            "status": self.status,
            "phase": self.phase,
            "phase_order": self.phase_order,
            "is_parallel": self.is_parallel,
            "story_label": self.story_label,
            "file_path": self.file_path,
            "line_number": self.line_number,
        }


@dataclass(slots=True, frozen=True)
class ParsedTasksFile:
    title: Optional[str] = None
    tasks: Tuple[ParsedTask, ...] = ()
    phase_names: Tuple[str, ...] = ()

    def completion_pct(self) -> float:
        """Share of tasks marked done, 0-100."""
        if not self.tasks:
            return 0.0
        done = sum(1 for task in self.tasks if task.status == "done")
        return (done / len(self.tasks)) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "tasks": [task.to_dict() for task in self.tasks],
            "phase_names": list(self.phase_names),
        }


# ----------------------------------------------------------------------
# data-model.md
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class EntityAttribute:
    name: str
    type: str
    constraints: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "constraints": self.constraints}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityAttribute":
        return cls(name=data["name"], type=data["type"], constraints=data.get("constraints"))


@dataclass(slots=True, frozen=True)
class EntityRelationship:
    target: str
    type: str = "1:1"
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target, "type": self.type, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRelationship":
        return cls(target=data["target"], type=data.get("type", "1:1"), description=data.get("description"))


@dataclass(slots=True, frozen=True)
class ParsedEntity:
    name: str
    description: Optional[str] = None
    attributes: Tuple[EntityAttribute, ...] = ()
    relationships: Tuple[EntityRelationship, ...] = ()
    sections: Tuple[str, ...] = ()  # subsection tags seen but not extracted (lifecycle, validation rules, ...)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "attributes": [attr.to_dict() for attr in self.attributes],
            "relationships": [rel.to_dict() for rel in self.relationships],
            "sections": list(self.sections),
        }


@dataclass(slots=True, frozen=True)
class ParsedDataModel:
    entities: Tuple[ParsedEntity, ...] = ()
    overview: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"entities": [entity.to_dict() for entity in self.entities], "overview": self.overview}


# ----------------------------------------------------------------------
# research.md
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class ParsedDecision:
    title: str
    decision: str = ""
    rationale: Optional[str] = None
    alternatives: Tuple[str, ...] = ()
    context: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "decision": self.decision,
            "rationale": self.rationale,
            "alternatives": list(self.alternatives),
            "context": self.context,
        }


@dataclass(slots=True, frozen=True)
class ParsedResearch:
    decisions: Tuple[ParsedDecision, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"decisions": [decision.to_dict() for decision in self.decisions]}


# ----------------------------------------------------------------------
# Persisted records
# ----------------------------------------------------------------------

@dataclass(slots=True)
class ProjectRecord:
    name: str
    root_path: str
    id: Optional[int] = None
    last_opened_at: str = field(default_factory=utc_timestamp)
    created_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "root_path": self.root_path,
            "last_opened_at": self.last_opened_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectRecord":
        return cls(
            name=data["name"],
            root_path=data["root_path"],
            id=data.get("id"),
            last_opened_at=data.get("last_opened_at", utc_timestamp()),
            created_at=data.get("created_at", utc_timestamp()),
        )


@dataclass(slots=True)
class FeatureRecord:
    """A feature folder (``specs/NNN-slug``) of a project."""

    project_id: int
    feature_number: str
    feature_name: str
    spec_path: str
    title: Optional[str] = None
    status: str = "draft"
    priority: Optional[str] = None
    created_date: Optional[str] = None
    task_completion_pct: float = 0.0
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "feature_number": self.feature_number,
            "feature_name": self.feature_name,
            "spec_path": self.spec_path,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "created_date": self.created_date,
            "task_completion_pct": self.task_completion_pct,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureRecord":
        return cls(
            project_id=data["project_id"],
            feature_number=data["feature_number"],
            feature_name=data["feature_name"],
            spec_path=data["spec_path"],
            title=data.get("title"),
            status=data.get("status", "draft"),
            priority=data.get("priority"),
            created_date=data.get("created_date"),
            task_completion_pct=data.get("task_completion_pct", 0.0),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )

    def validate(self) -> List[str]:
        """Validate the record and return any issues."""
        issues = []
        if not self.feature_number:
            issues.append("Feature number is required")
        if self.status not in FEATURE_STATUSES:
            issues.append(f"Invalid status: {self.status}")
        if not 0.0 <= self.task_completion_pct <= 100.0:
            issues.append(f"Task completion must be 0-100, got: {self.task_completion_pct}")
        return issues


@dataclass(slots=True)
class TaskRecord:
    feature_id: int
    task_id: str
    description: str
    status: str = "not_started"
    phase: Optional[str] = None
    phase_order: int = 0
    is_parallel: bool = False
    story_label: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_parsed(cls, feature_id: int, task: ParsedTask) -> "TaskRecord":
        return cls(
            feature_id=feature_id,
            task_id=task.task_id,
            description=task.description,
            status=task.status,
            phase=task.phase,
            phase_order=task.phase_order,
            is_parallel=task.is_parallel,
            story_label=task.story_label,
            file_path=task.file_path,
            line_number=task.line_number,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feature_id": self.feature_id,
            "task_id": self.task_id,
            "description": self.description,
            "status": self.status,
            "phase": self.phase,
            "phase_order": self.phase_order,
            "is_parallel": self.is_parallel,
            "story_label": self.story_label,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRecord":
        return cls(
            feature_id=data["feature_id"],
            task_id=data["task_id"],
            description=data["description"],
            status=data.get("status", "not_started"),
            phase=data.get("phase"),
            phase_order=data.get("phase_order", 0),
            is_parallel=data.get("is_parallel", False),
            story_label=data.get("story_label"),
            file_path=data.get("file_path"),
            line_number=data.get("line_number"),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )


@dataclass(slots=True)
class EntityRecord:
    feature_id: int
    entity_name: str
    description: Optional[str] = None
    attributes: List[Dict[str, Any]] = field(default_factory=list)
    relationships: List[Dict[str, Any]] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_parsed(cls, feature_id: int, entity: ParsedEntity) -> "EntityRecord":
        return cls(
            feature_id=feature_id,
            entity_name=entity.name,
            description=entity.description,
            attributes=[attr.to_dict() for attr in entity.attributes],
            relationships=[rel.to_dict() for rel in entity.relationships],
            sections=list(entity.sections),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feature_id": self.feature_id,
            "entity_name": self.entity_name,
            "description": self.description,
            "attributes": [dict(attr) for attr in self.attributes],
            "relationships": [dict(rel) for rel in self.relationships],
            "sections": list(self.sections),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRecord":
        return cls(
            feature_id=data["feature_id"],
            entity_name=data["entity_name"],
            description=data.get("description"),
            attributes=data.get("attributes", []),
            relationships=data.get("relationships", []),
            sections=data.get("sections", []),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )


@dataclass(slots=True)
class RequirementRecord:
    feature_id: int
    requirement_id: str
    description: str
    type: str = "functional"
    priority: Optional[str] = None
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_parsed(cls, feature_id: int, requirement: ParsedRequirement) -> "RequirementRecord":
        return cls(
            feature_id=feature_id,
            requirement_id=requirement.id,
            description=requirement.description,
            type=requirement.type,
            priority=requirement.priority,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feature_id": self.feature_id,
            "requirement_id": self.requirement_id,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequirementRecord":
        return cls(
            feature_id=data["feature_id"],
            requirement_id=data["requirement_id"],
            description=data["description"],
            type=data.get("type", "functional"),
            priority=data.get("priority"),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )


@dataclass(slots=True)
class PlanRecord:
    feature_id: int
    summary: Optional[str] = None
    tech_stack: Dict[str, str] = field(default_factory=dict)
    phases: List[Dict[str, Any]] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    risks: List[Dict[str, str]] = field(default_factory=list)
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_parsed(cls, feature_id: int, plan: ParsedPlan) -> "PlanRecord":
        data = plan.to_dict()
        return cls(
            feature_id=feature_id,
            summary=data["summary"],
            tech_stack=data["tech_stack"],
            phases=data["phases"],
            dependencies=data["dependencies"],
            risks=data["risks"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feature_id": self.feature_id,
            "summary": self.summary,
            "tech_stack": dict(self.tech_stack),
            "phases": [dict(phase) for phase in self.phases],
            "dependencies": list(self.dependencies),
            "risks": [dict(risk) for risk in self.risks],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanRecord":
        return cls(
            feature_id=data["feature_id"],
            summary=data.get("summary"),
            tech_stack=data.get("tech_stack", {}),
            phases=data.get("phases", []),
            dependencies=data.get("dependencies", []),
            risks=data.get("risks", []),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )


@dataclass(slots=True)
class ResearchDecisionRecord:
    feature_id: int
    title: str
    decision: str
    rationale: Optional[str] = None
    alternatives: List[str] = field(default_factory=list)
    context: Optional[str] = None
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_parsed(cls, feature_id: int, decision: ParsedDecision) -> "ResearchDecisionRecord":
        return cls(
            feature_id=feature_id,
            title=decision.title,
            decision=decision.decision,
            rationale=decision.rationale,
            alternatives=list(decision.alternatives),
            context=decision.context,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "feature_id": self.feature_id,
            "title": self.title,
            "decision": self.decision,
            "rationale": self.rationale,
            "alternatives": list(self.alternatives),
            "context": self.context,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResearchDecisionRecord":
        return cls(
            feature_id=data["feature_id"],
            title=data["title"],
            decision=data.get("decision", ""),
            rationale=data.get("rationale"),
            alternatives=data.get("alternatives", []),
            context=data.get("context"),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
            updated_at=data.get("updated_at", utc_timestamp()),
        )


@dataclass(slots=True)
class AnalysisResultRecord:
    request_id: str
    feature_id: int
    analysis_type: str  # 'summary', 'consistency', 'gaps'
    content: Dict[str, Any]
    duration: int
    file_path: Optional[str] = None
    token_count: Optional[int] = None
    id: Optional[int] = None
    created_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "feature_id": self.feature_id,
            "analysis_type": self.analysis_type,
            "content": self.content,
            "duration": self.duration,
            "file_path": self.file_path,
            "token_count": self.token_count,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResultRecord":
        return cls(
            request_id=data["request_id"],
            feature_id=data["feature_id"],
            analysis_type=data["analysis_type"],
            content=data.get("content", {}),
            duration=data.get("duration", 0),
            file_path=data.get("file_path"),
            token_count=data.get("token_count"),
            id=data.get("id"),
            created_at=data.get("created_at", utc_timestamp()),
        )


# ----------------------------------------------------------------------
# Transient values
# ----------------------------------------------------------------------

@dataclass(slots=True, frozen=True)
class FileChangeEvent:
    """A debounced markdown change under specs/ or .specify/."""

    event_type: str  # 'add', 'change', 'unlink'
    file_path: str
    affected_feature_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "file_path": self.file_path,
            "affected_feature_id": self.affected_feature_id,
        }


@dataclass(slots=True)
class SyncResult:
    """Outcome of a project sync: successes plus human-readable errors."""

    synced: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"synced": self.synced, "errors": list(self.errors)}
