"""Parse tasks.md checkbox lines into tasks.

tasks.md is read line by line rather than through the block tree:
checkbox lines with inline markers nest unpredictably in generic
markdown lists, and each task must keep its 1-based line number.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Union

from ..markdown import BOM
from ..models import ParsedTask, ParsedTasksFile

logger = logging.getLogger("speckit.parsers.tasks")

_TITLE_PATTERN = re.compile(r"^#\s+(?P<title>.*)$")
_PHASE_PATTERN = re.compile(r"^##\s+Phase\s+\d+", re.IGNORECASE)
_TASK_LINE_PATTERN = re.compile(r"^\s*-\s*\[(?P<mark>[x/\s])\]", re.IGNORECASE)
_TASK_ID_PATTERN = re.compile(r"\b(T\d{3})\b", re.IGNORECASE)
_PARALLEL_MARKER = "[P]"
_STORY_PATTERN = re.compile(r"\[(US\d+)\]", re.IGNORECASE)
_CODE_SPAN_PATTERN = re.compile(r"`([^`]+)`")
_WHITESPACE = re.compile(r"\s+")


def parse_checkbox_status(mark: str) -> str:
    """Map the character between the checkbox brackets to a task status."""
    if mark.lower() == "x":
        return "done"
    if mark == "/":
        return "in_progress"
    return "not_started"


def parse_tasks(text: str) -> ParsedTasksFile:
    """Parse tasks.md content.

    Lines that look like checkboxes but carry no ``T###`` id are not tasks
    and are skipped. Tasks listed before the first ``## Phase N`` heading
    have no phase and phase order 0.
    """
    title: Optional[str] = None
    phase: Optional[str] = None
    phase_order = 0
    phase_names: List[str] = []
    tasks: List[ParsedTask] = []

    if text.startswith(BOM):
        text = text[len(BOM):]
    for line_number, line in enumerate(text.splitlines(), start=1):
        if title is None:
            title_match = _TITLE_PATTERN.match(line)
            if title_match:
                title = title_match.group("title").strip()
                continue

        if _PHASE_PATTERN.match(line):
            phase = line.strip().lstrip("#").strip()
            phase_order += 1
            phase_names.append(phase)
            continue

        task = parse_task_line(line, line_number, phase=phase, phase_order=phase_order)
        if task is not None:
            tasks.append(task)

    logger.debug(f"Parsed {len(tasks)} tasks across {len(phase_names)} phases")
    return ParsedTasksFile(title=title, tasks=tuple(tasks), phase_names=tuple(phase_names))


def parse_tasks_file(path: Union[str, Path]) -> ParsedTasksFile:
    return parse_tasks(Path(path).read_text(encoding="utf-8-sig"))


def parse_task_line(
    line: str,
    line_number: int,
    *,
    phase: Optional[str] = None,
    phase_order: int = 0,
) -> Optional[ParsedTask]:
    """Parse a single tasks.md line, or return None if it is not a task."""
    checkbox = _TASK_LINE_PATTERN.match(line)
    if not checkbox:
        return None
    task_id = _TASK_ID_PATTERN.search(line)
    if not task_id:
        return None

    rest = line[checkbox.end():]
    story = _STORY_PATTERN.search(rest)
    file_path = _find_file_path(rest)

    return ParsedTask(
        task_id=task_id.group(1).upper(),
        description=_clean_description(rest, file_path),
        status=parse_checkbox_status(checkbox.group("mark")),
        phase=phase,
        phase_order=phase_order,
        is_parallel=_PARALLEL_MARKER in rest,
        story_label=story.group(1).upper() if story else None,
        file_path=file_path,
        line_number=line_number,
    )


def _find_file_path(text: str) -> Optional[str]:
    for span in _CODE_SPAN_PATTERN.finditer(text):
        if "." in span.group(1):
            return span.group(1)
    return None


def _clean_description(text: str, file_path: Optional[str]) -> str:
    if file_path is not None:
        text = text.replace(f"`{file_path}`", " ", 1)
    text = _TASK_ID_PATTERN.sub(" ", text)
    text = text.replace(_PARALLEL_MARKER, " ")
    text = _STORY_PATTERN.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()
