"""Parse spec.md into title, metadata, user stories and requirements."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from functools import reduce
from pathlib import Path
from typing import Optional, Union

from ..markdown import Node, parse_markdown
from ..models import ParsedRequirement, ParsedSpec, ParsedUserStory

logger = logging.getLogger("speckit.parsers.spec")

_TITLE_PREFIX = re.compile(r"^Feature Specification:\s*", re.IGNORECASE)
_STORY_PRIORITY = re.compile(r"\(Priority:\s*(P[123])\)", re.IGNORECASE)
_STORY_PRIORITY_SUFFIX = re.compile(r"\s*\(Priority:.*\)", re.IGNORECASE)
_STATUS = re.compile(r"\*\*Status\*\*:\s*(in[ _-]progress|[\w-]+)", re.IGNORECASE)
_CREATED = re.compile(r"\*\*Created\*\*:\s*([\d-]+)", re.IGNORECASE)
_FEATURE_BRANCH = re.compile(r"\*\*Feature Branch\*\*:\s*`?([^`\n]+)`?", re.IGNORECASE)
# "FR-001: ...", "**FR-001**: ..." and "NFR-002 - ..." all count
_REQUIREMENT_ID = re.compile(r"^[*_]*(FR-\d+|NFR-\d+)[*_]*", re.IGNORECASE)
_REQUIREMENT_LEAD = re.compile(r"^[:\s-]+")

USER_STORIES = "user_stories"
REQUIREMENTS = "requirements"


@dataclass(frozen=True)
class _SpecState:
    result: ParsedSpec = field(default_factory=ParsedSpec)
    section: str = ""
    story_open: bool = False
    status_seen: bool = False


def parse_spec(text: str) -> ParsedSpec:
    """Parse spec.md content.

    A single forward pass over the top-level blocks. Sections are
    positional: a ``##`` heading mentioning user scenarios opens the story
    section, one mentioning requirements opens the requirement section,
    and any other ``##`` heading closes whichever was open.
    """
    state = reduce(_step, parse_markdown(text), _SpecState())
    logger.debug(
        f"Parsed spec '{state.result.title}': "
        f"{len(state.result.user_stories)} stories, {len(state.result.requirements)} requirements"
    )
    return state.result


def parse_spec_file(path: Union[str, Path]) -> ParsedSpec:
    return parse_spec(Path(path).read_text(encoding="utf-8-sig"))


def _step(state: _SpecState, node: Node) -> _SpecState:
    if node.is_heading(1):
        if state.result.title is not None:
            return state
        title = _TITLE_PREFIX.sub("", node.text()).strip()
        return replace(state, result=replace(state.result, title=title))

    if node.is_heading(2):
        return replace(state, section=_section_for(node.text()), story_open=False)

    if node.is_heading(3) and state.section == USER_STORIES:
        return _open_story(state, node.text())

    if node.type == "paragraph":
        return _read_paragraph(state, node.text())

    if node.type == "list":
        if state.story_open:
            return _add_scenarios(state, node)
        if state.section == REQUIREMENTS:
            return _add_requirements(state, node)

    return state


def _section_for(heading: str) -> str:
    lowered = heading.lower()
    if "user" in lowered and "scenario" in lowered:
        return USER_STORIES
    if "requirement" in lowered:
        return REQUIREMENTS
    return ""


def _open_story(state: _SpecState, heading: str) -> _SpecState:
    priority = _STORY_PRIORITY.search(heading)
    story = ParsedUserStory(
        title=_STORY_PRIORITY_SUFFIX.sub("", heading).strip(),
        priority=priority.group(1).upper() if priority else "P2",
    )
    result = replace(state.result, user_stories=state.result.user_stories + (story,))
    return replace(state, result=result, story_open=True)


def _replace_story(state: _SpecState, story: ParsedUserStory) -> _SpecState:
    stories = state.result.user_stories[:-1] + (story,)
    return replace(state, result=replace(state.result, user_stories=stories))


def _read_paragraph(state: _SpecState, text: str) -> _SpecState:
    result = state.result
    status_seen = state.status_seen

    if not status_seen:
        match = _STATUS.search(text)
        if match:
            result = replace(result, status=match.group(1).lower())
            status_seen = True
    if result.created_date is None:
        match = _CREATED.search(text)
        if match:
            result = replace(result, created_date=match.group(1))
    if result.feature_branch is None:
        match = _FEATURE_BRANCH.search(text)
        if match:
            result = replace(result, feature_branch=match.group(1).strip())

    state = replace(state, result=result, status_seen=status_seen)

    if state.story_open:
        story = state.result.user_stories[-1]
        if not story.description and not text.startswith("**"):
            state = _replace_story(state, replace(story, description=text))
    return state


def _add_scenarios(state: _SpecState, node: Node) -> _SpecState:
    story = state.result.user_stories[-1]
    scenarios = tuple(item.text().strip() for item in node.items)
    return _replace_story(state, replace(story, acceptance_scenarios=story.acceptance_scenarios + scenarios))


def _add_requirements(state: _SpecState, node: Node) -> _SpecState:
    found = []
    for item in node.items:
        requirement = parse_requirement_line(item.text().strip())
        if requirement is not None:
            found.append(requirement)
    if not found:
        return state
    result = replace(state.result, requirements=state.result.requirements + tuple(found))
    return replace(state, result=result)


def parse_requirement_line(text: str) -> Optional[ParsedRequirement]:
    """Read one requirement list item, or None when it has no FR/NFR id."""
    match = _REQUIREMENT_ID.match(text)
    if not match:
        return None
    description = _REQUIREMENT_LEAD.sub("", text[match.end():]).strip()
    priority = _STORY_PRIORITY.search(description)
    return ParsedRequirement(
        id=match.group(1).upper(),
        description=description,
        priority=priority.group(1).upper() if priority else None,
    )
