"""AI-assisted analysis of feature documents.

The service never talks to a model provider itself: callers pass a
``TextCompleter`` (anything with ``complete(prompt) -> str``). Responses
are expected to be JSON; when they are not, each analysis falls back to
a neutral result instead of failing.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from .config import DEFAULT_ANALYSIS_CACHE_TTL
from .models import AnalysisResultRecord
from .speckit_logging import log_operation, observability_hooks
from .store import FeatureStore

logger = logging.getLogger("speckit.analysis")

ANALYSIS_TYPES = ("summary", "consistency", "gaps")
PREVIEW_LENGTH = 200

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SUMMARY_PROMPT = """You are analyzing a software specification document. Generate a concise summary that captures the key requirements and objectives.

Document content:
---
{content}
---

Respond with a JSON object in this exact format:
{{
  "summary": "A 2-3 paragraph summary of the document's main purpose and requirements",
  "keyPoints": ["Key point 1", "Key point 2", "Key point 3"],
  "wordCount": <number of words in the original document>
}}

Focus on:
- The main goal or feature being specified
- Key user requirements and acceptance criteria
- Important constraints or dependencies
- Success metrics if defined"""

CONSISTENCY_PROMPT = """You are analyzing multiple specification documents for a software feature. Check for consistency and identify any discrepancies between them.

Documents to analyze:
{documents}

Respond with a JSON object in this exact format:
{{
  "discrepancies": [
    {{
      "type": "missing" | "mismatch" | "extra",
      "file1": "filename1",
      "file2": "filename2",
      "section": "Section name where issue was found",
      "description": "Clear description of the discrepancy",
      "severity": "high" | "medium" | "low"
    }}
  ],
  "overallConsistency": <0-100 percentage score>
}}

Look for:
- Requirements in spec.md that don't have corresponding tasks
- Tasks that reference features not in the spec
- Mismatched terminology or naming
- Conflicting priorities or status information"""

GAP_PROMPT = """You are analyzing a software specification document to identify gaps and areas needing improvement.

Document content:
---
{content}
---

Respond with a JSON object in this exact format:
{{
  "gaps": [
    {{
      "section": "Section name",
      "issue": "Description of what's missing or unclear",
      "suggestion": "Recommendation for improvement",
      "severity": "critical" | "important" | "minor"
    }}
  ],
  "completeness": <0-100 percentage score>,
  "sectionsAnalyzed": ["Section 1", "Section 2"]
}}

Look for:
- Missing acceptance criteria for requirements
- Unclear or ambiguous requirements
- Missing edge case handling
- Undefined success metrics"""


class TextCompleter(Protocol):
    """Text-completion capability: one prompt in, one text response out."""

    def complete(self, prompt: str) -> str: ...


def extract_json(text: str) -> str:
    """Pull the JSON payload out of a model response.

    Prefers a fenced code block, then the outermost ``{...}`` span, and
    otherwise returns the text unchanged.
    """
    fenced = _FENCED_JSON.search(text)
    if fenced:
        return fenced.group(1).strip()
    obj = _JSON_OBJECT.search(text)
    if obj:
        return obj.group(0)
    return text


def _decode(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(extract_json(text))
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Model response is not valid JSON: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Model response is JSON but not an object: {type(data).__name__}")
        return None
    return data


def _as_number(value: Any, default: float, kind: Callable[[Any], Any] = float) -> Any:
    """Coerce a decoded field to a number, falling back to ``default``."""
    if value is None or isinstance(value, bool):
        return kind(default)
    try:
        return kind(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Ignoring non-numeric value in model response: {value!r}")
        return kind(default)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value is not None:
        logger.warning(f"Ignoring non-list value in model response: {value!r}")
    return []


@dataclass(slots=True)
class Discrepancy:
    type: str
    file1: str
    file2: str
    section: str
    description: str
    severity: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "file1": self.file1,
            "file2": self.file2,
            "section": self.section,
            "description": self.description,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discrepancy":
        return cls(
            type=data.get("type", "mismatch"),
            file1=data.get("file1", ""),
            file2=data.get("file2", ""),
            section=data.get("section", ""),
            description=data.get("description", ""),
            severity=data.get("severity", "medium"),
        )


@dataclass(slots=True)
class Gap:
    section: str
    issue: str
    suggestion: str = ""
    severity: str = "minor"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "issue": self.issue,
            "suggestion": self.suggestion,
            "severity": self.severity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Gap":
        return cls(
            section=data.get("section", ""),
            issue=data.get("issue", ""),
            suggestion=data.get("suggestion", ""),
            severity=data.get("severity", "minor"),
        )


@dataclass(slots=True)
class SummaryResult:
    request_id: str
    summary: str
    key_points: List[str]
    word_count: int
    duration: int
    token_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "summary": self.summary,
            "key_points": list(self.key_points),
            "word_count": self.word_count,
            "duration": self.duration,
            "token_count": self.token_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SummaryResult":
        return cls(
            request_id=data["request_id"],
            summary=data.get("summary", ""),
            key_points=data.get("key_points", []),
            word_count=data.get("word_count", 0),
            duration=data.get("duration", 0),
            token_count=data.get("token_count"),
        )


@dataclass(slots=True)
class ConsistencyResult:
    request_id: str
    discrepancies: List[Discrepancy]
    overall_consistency: float
    files_analyzed: List[str]
    duration: int
    token_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "discrepancies": [item.to_dict() for item in self.discrepancies],
            "overall_consistency": self.overall_consistency,
            "files_analyzed": list(self.files_analyzed),
            "duration": self.duration,
            "token_count": self.token_count,
        }


@dataclass(slots=True)
class GapResult:
    request_id: str
    gaps: List[Gap]
    completeness: float
    sections_analyzed: List[str]
    duration: int
    token_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "gaps": [gap.to_dict() for gap in self.gaps],
            "completeness": self.completeness,
            "sections_analyzed": list(self.sections_analyzed),
            "duration": self.duration,
            "token_count": self.token_count,
        }


@dataclass
class _CacheEntry:
    data: Any
    expires_at: float


@dataclass
class AnalysisCache:
    """TTL cache keyed ``feature:<id>:<kind>:<files>``."""

    ttl: float = DEFAULT_ANALYSIS_CACHE_TTL
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, _CacheEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self.clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.data

    def set(self, key: str, data: Any) -> None:
        with self._lock:
            self._entries[key] = _CacheEntry(data=data, expires_at=self.clock() + self.ttl)

    def invalidate(self, feature_id: int) -> None:
        prefix = f"feature:{feature_id}:"
        with self._lock:
            for key in [key for key in self._entries if key.startswith(prefix)]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _read_document(file_path: Union[str, Path]) -> str:
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {file_path}")
    return path.read_text(encoding="utf-8-sig")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class AnalysisService:
    """Summaries, cross-document consistency checks and gap analysis."""

    def __init__(
        self,
        completer: TextCompleter,
        store: Optional[FeatureStore] = None,
        cache_ttl: float = DEFAULT_ANALYSIS_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.completer = completer
        self.store = store
        self.cache = AnalysisCache(ttl=cache_ttl, clock=clock)

    def generate_summary(self, feature_id: int, file_path: Union[str, Path], force: bool = False) -> SummaryResult:
        """Summarize one document, reusing a cached or stored summary unless ``force``."""
        cache_key = f"feature:{feature_id}:summary:{file_path}"
        if not force:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached
            stored = self._latest_stored_summary(feature_id, str(file_path))
            if stored is not None:
                self.cache.set(cache_key, stored)
                return stored

        content = _read_document(file_path)
        start = time.monotonic()
        request_id = str(uuid.uuid4())
        with log_operation("generate_summary", feature_id=feature_id, request_id=request_id):
            text = self.completer.complete(SUMMARY_PROMPT.format(content=content))

        parsed = _decode(text)
        if parsed is None:
            parsed = {"summary": text, "keyPoints": [], "wordCount": len(content.split())}

        result = SummaryResult(
            request_id=request_id,
            summary=str(parsed.get("summary", text)),
            key_points=[str(point) for point in _as_list(parsed.get("keyPoints"))],
            word_count=_as_number(parsed.get("wordCount"), len(content.split()), int),
            duration=_elapsed_ms(start),
        )
        self._record(feature_id, "summary", result.to_dict(), result.duration, str(file_path))
        self.cache.set(cache_key, result)
        return result

    def check_consistency(self, feature_id: int, files: Sequence[Union[str, Path]]) -> ConsistencyResult:
        """Compare several documents of one feature against each other.

        Missing files are included as ``(File not found)`` rather than
        aborting the check.
        """
        names = sorted(str(path) for path in files)
        cache_key = f"feature:{feature_id}:consistency:{','.join(names)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        sections = []
        for file_path in files:
            try:
                content = _read_document(file_path)
            except FileNotFoundError:
                content = "(File not found)"
            sections.append(f"=== {Path(file_path).name} ===\n{content}")

        start = time.monotonic()
        request_id = str(uuid.uuid4())
        with log_operation("check_consistency", feature_id=feature_id, request_id=request_id, files=len(names)):
            text = self.completer.complete(CONSISTENCY_PROMPT.format(documents="\n\n".join(sections)))

        parsed = _decode(text) or {"discrepancies": [], "overallConsistency": 100}
        result = ConsistencyResult(
            request_id=request_id,
            discrepancies=[
                Discrepancy.from_dict(item) for item in _as_list(parsed.get("discrepancies")) if isinstance(item, dict)
            ],
            overall_consistency=_as_number(parsed.get("overallConsistency"), 100),
            files_analyzed=[Path(file_path).name for file_path in files],
            duration=_elapsed_ms(start),
        )
        self._record(feature_id, "consistency", result.to_dict(), result.duration)
        self.cache.set(cache_key, result)
        return result

    def find_gaps(self, feature_id: int, file_path: Union[str, Path]) -> GapResult:
        cache_key = f"feature:{feature_id}:gaps:{file_path}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        content = _read_document(file_path)
        start = time.monotonic()
        request_id = str(uuid.uuid4())
        with log_operation("find_gaps", feature_id=feature_id, request_id=request_id):
            text = self.completer.complete(GAP_PROMPT.format(content=content))

        parsed = _decode(text) or {"gaps": [], "completeness": 100, "sectionsAnalyzed": []}
        result = GapResult(
            request_id=request_id,
            gaps=[Gap.from_dict(item) for item in _as_list(parsed.get("gaps")) if isinstance(item, dict)],
            completeness=_as_number(parsed.get("completeness"), 100),
            sections_analyzed=[str(name) for name in _as_list(parsed.get("sectionsAnalyzed"))],
            duration=_elapsed_ms(start),
        )
        self._record(feature_id, "gaps", result.to_dict(), result.duration, str(file_path))
        self.cache.set(cache_key, result)
        return result

    def get_analysis_history(
        self, feature_id: int, analysis_type: Optional[str] = None, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Stored results for a feature, newest first, with a short preview."""
        if self.store is None:
            return []
        if analysis_type is not None and analysis_type not in ANALYSIS_TYPES:
            raise ValueError(f"Unknown analysis type '{analysis_type}'. Expected one of {', '.join(ANALYSIS_TYPES)}.")

        history = []
        for record in self.store.get_analysis_results(feature_id, analysis_type, limit):
            history.append({
                "id": record.id,
                "request_id": record.request_id,
                "analysis_type": record.analysis_type,
                "created_at": record.created_at,
                "duration": record.duration,
                "token_count": record.token_count,
                "preview": _preview(record.content),
            })
        return history

    def invalidate_cache(self, feature_id: int) -> None:
        self.cache.invalidate(feature_id)

    def clear_cache(self) -> None:
        self.cache.clear()

    def _latest_stored_summary(self, feature_id: int, file_path: str) -> Optional[SummaryResult]:
        if self.store is None:
            return None
        for record in self.store.get_analysis_results(feature_id, "summary"):
            if record.file_path != file_path:
                continue
            try:
                return SummaryResult.from_dict(record.content)
            except (KeyError, TypeError) as e:
                logger.warning(f"Ignoring unreadable stored summary {record.request_id}: {e}")
                return None
        return None

    def _record(
        self,
        feature_id: int,
        analysis_type: str,
        content: Dict[str, Any],
        duration: int,
        file_path: Optional[str] = None,
    ) -> None:
        observability_hooks.publish_event(
            "analysis_completed",
            feature_id=str(feature_id),
            analysis_type=analysis_type,
            request_id=content["request_id"],
            duration=duration,
        )
        if self.store is None:
            return
        self.store.add_analysis_result(
            AnalysisResultRecord(
                request_id=content["request_id"],
                feature_id=feature_id,
                analysis_type=analysis_type,
                content=content,
                duration=duration,
                file_path=file_path,
                token_count=content.get("token_count"),
            )
        )


def _preview(content: Dict[str, Any]) -> str:
    if content.get("summary"):
        preview = str(content["summary"])[:PREVIEW_LENGTH]
    elif "discrepancies" in content:
        preview = f"{len(content['discrepancies'])} discrepancies found"
    elif "gaps" in content:
        preview = f"{len(content['gaps'])} gaps identified"
    else:
        preview = json.dumps(content)[:PREVIEW_LENGTH]
    return preview + ("..." if len(preview) >= PREVIEW_LENGTH else "")
