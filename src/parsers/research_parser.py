"""Parse research.md into technical decisions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from functools import reduce
from pathlib import Path
from typing import Optional, Tuple, Union

from ..markdown import Node, parse_markdown
from ..models import ParsedDecision, ParsedResearch

logger = logging.getLogger("speckit.parsers.research")

_NUMBERING = re.compile(r"^\d+\.\s*")
_DECISION_LABEL = re.compile(r"^\*\*Decision\*\*:\s*", re.IGNORECASE)
_ALTERNATIVE_LABEL = re.compile(r"^\*\*([^*]+)\*\*:\s*(.*)", re.DOTALL)
_LABELLED_LINE = re.compile(r"^\*\*[^*]+\*\*:", re.MULTILINE)

DECISIONS = "decisions"


@dataclass(frozen=True)
class _ResearchState:
    decisions: Tuple[ParsedDecision, ...] = ()
    section: str = ""
    current: Optional[ParsedDecision] = None
    subsection: str = ""
    buffer: Tuple[str, ...] = field(default=())


def parse_research(text: str) -> ParsedResearch:
    """Parse research.md content.

    Decisions live under a ``##`` heading mentioning a phase or research;
    each ``###`` heading below it is one decision, and ``####`` headings
    route the following text into decision, rationale, alternatives or
    context.
    """
    state = reduce(_step, parse_markdown(text), _ResearchState())
    state = _close_decision(state)
    logger.debug(f"Parsed research: {len(state.decisions)} decisions")
    return ParsedResearch(decisions=state.decisions)


def parse_research_file(path: Union[str, Path]) -> ParsedResearch:
    return parse_research(Path(path).read_text(encoding="utf-8-sig"))


def _subsection_for(heading: str) -> str:
    lowered = heading.lower()
    if "decision" in lowered:
        return "decision"
    if "rationale" in lowered or "why" in lowered:
        return "rationale"
    if "alternative" in lowered:
        return "alternatives"
    if any(word in lowered for word in ("implementation", "approach", "context", "background")):
        return "context"
    return ""


def _flush(state: _ResearchState) -> _ResearchState:
    """Move buffered text into the field named by the active subsection."""
    if state.current is None or not state.buffer:
        return replace(state, buffer=())

    content = "\n\n".join(state.buffer)
    decision = state.current
    if state.subsection in ("decision", "") and not decision.decision:
        decision = replace(decision, decision=content)
    elif state.subsection == "rationale":
        decision = replace(decision, rationale=content)
    elif state.subsection == "context":
        decision = replace(decision, context=content)
    return replace(state, current=decision, buffer=())


def _close_decision(state: _ResearchState) -> _ResearchState:
    state = _flush(state)
    if state.current is None:
        return state
    return replace(state, decisions=state.decisions + (state.current,), current=None, subsection="")


def _step(state: _ResearchState, node: Node) -> _ResearchState:
    if node.is_heading(2):
        lowered = node.text().lower()
        section = DECISIONS if "phase" in lowered or "research" in lowered else ""
        return replace(_close_decision(state), section=section)

    if node.is_heading(3):
        if state.section != DECISIONS:
            return state
        state = _close_decision(state)
        title = _NUMBERING.sub("", node.text()).strip()
        return replace(state, current=ParsedDecision(title=title))

    if state.current is None:
        return state

    if node.type == "heading" and node.depth >= 4:
        return replace(_flush(state), subsection=_subsection_for(node.text()))

    if node.type == "paragraph":
        return _read_paragraph(state, node.text())

    if node.type == "list":
        return _read_list(state, [item.text().strip() for item in node.items])

    if node.type == "code" and state.subsection == "context":
        return replace(state, buffer=state.buffer + (f"```\n{node.value}\n```",))

    return state


def _read_paragraph(state: _ResearchState, text: str) -> _ResearchState:
    if _DECISION_LABEL.match(text):
        # "**Decision**: ...\n**Rationale**: ..." is one paragraph in most research.md files
        state = _flush(state)
        state = replace(state, current=replace(state.current, decision=""), subsection="")
        return _read_labelled_items(state, _split_labelled(text))

    if state.subsection:
        return replace(state, buffer=state.buffer + (text,))
    if not state.buffer and not state.current.decision:
        # an unlabelled first paragraph is the decision itself
        return replace(state, buffer=(text,))
    return state


def _read_list(state: _ResearchState, items: list) -> _ResearchState:
    if state.subsection == "alternatives":
        alternatives = []
        for item in items:
            match = _ALTERNATIVE_LABEL.match(item)
            alternatives.append(f"{match.group(1)}: {match.group(2)}" if match else item)
        current = replace(state.current, alternatives=state.current.alternatives + tuple(alternatives))
        return replace(state, current=current)

    if state.subsection:
        bullets = "\n".join(f"- {item}" for item in items)
        return replace(state, buffer=state.buffer + (bullets,))
    return _read_labelled_items(state, items)


def _split_labelled(text: str) -> list:
    starts = [match.start() for match in _LABELLED_LINE.finditer(text)]
    ends = starts[1:] + [len(text)]
    return [text[start:end].strip() for start, end in zip(starts, ends)]


def _read_labelled_items(state: _ResearchState, items: list) -> _ResearchState:
    """Handle the compact ``- **Decision**: ...`` / ``- **Rationale**: ...`` form."""
    current = state.current
    for item in items:
        match = _ALTERNATIVE_LABEL.match(item)
        if not match:
            continue
        field_name = _subsection_for(match.group(1))
        value = match.group(2).strip()
        if field_name == "decision" and not current.decision:
            current = replace(current, decision=value)
        elif field_name == "rationale":
            current = replace(current, rationale=value)
        elif field_name == "context":
            current = replace(current, context=value)
        elif field_name == "alternatives":
            current = replace(current, alternatives=current.alternatives + (value,))
    return replace(state, current=current)
