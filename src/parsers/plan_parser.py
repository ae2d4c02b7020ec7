"""Parse plan.md into summary, tech stack, phases, dependencies and risks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from functools import reduce
from pathlib import Path
from typing import Dict, Optional, Union

from ..markdown import Node, parse_markdown
from ..models import ParsedPhase, ParsedPlan, ParsedRisk

logger = logging.getLogger("speckit.parsers.plan")

_TECH_PAIR = re.compile(r"\*\*([^*]+)\*\*:\s*([^\n]+)")
_RISK_SEPARATOR = re.compile(r"[-–:]")

SUMMARY = "summary"
TECH_STACK = "tech_stack"
PHASE = "phase"
DEPENDENCIES = "dependencies"
RISKS = "risks"


@dataclass(frozen=True)
class _PlanState:
    result: ParsedPlan = field(default_factory=ParsedPlan)
    section: str = ""
    phase_order: int = 0


def parse_plan(text: str) -> ParsedPlan:
    """Parse plan.md content.

    ``##`` headings select the section by substring: summary, technical
    context, phase, dependencies or risk. Each phase heading opens a new
    phase record numbered in document order.
    """
    state = reduce(_step, parse_markdown(text), _PlanState())
    logger.debug(f"Parsed plan: {len(state.result.phases)} phases, {len(state.result.risks)} risks")
    return state.result


def parse_plan_file(path: Union[str, Path]) -> ParsedPlan:
    return parse_plan(Path(path).read_text(encoding="utf-8-sig"))


def _section_for(heading: str) -> str:
    lowered = heading.lower()
    if "summary" in lowered:
        return SUMMARY
    if "technical context" in lowered or "tech" in lowered:
        return TECH_STACK
    if "phase" in lowered:
        return PHASE
    if "dependencies" in lowered:
        return DEPENDENCIES
    if "risk" in lowered:
        return RISKS
    return ""


def _step(state: _PlanState, node: Node) -> _PlanState:
    if node.is_heading(2):
        heading = node.text()
        section = _section_for(heading)
        if section != PHASE:
            return replace(state, section=section)
        order = state.phase_order + 1
        phase = ParsedPhase(name=heading, order=order)
        result = replace(state.result, phases=state.result.phases + (phase,))
        return replace(state, result=result, section=PHASE, phase_order=order)

    if node.type == "paragraph":
        return _read_paragraph(state, node.text())

    if node.type == "list":
        return _read_list(state, [item.text().strip() for item in node.items])

    return state


def _read_paragraph(state: _PlanState, text: str) -> _PlanState:
    result = state.result
    if state.section == SUMMARY and not result.summary:
        result = replace(result, summary=text)
    elif state.section == PHASE and result.phases and not result.phases[-1].goal:
        phase = replace(result.phases[-1], goal=text)
        result = replace(result, phases=result.phases[:-1] + (phase,))
    elif state.section == TECH_STACK:
        result = replace(result, tech_stack=_merge_tech_stack(result.tech_stack, text))
    return replace(state, result=result)


def _read_list(state: _PlanState, items: list) -> _PlanState:
    result = state.result
    if state.section == PHASE and result.phases:
        phase = result.phases[-1]
        phase = replace(phase, tasks=phase.tasks + tuple(items))
        result = replace(result, phases=result.phases[:-1] + (phase,))
    elif state.section == DEPENDENCIES:
        result = replace(result, dependencies=result.dependencies + tuple(items))
    elif state.section == RISKS:
        risks = tuple(risk for risk in map(parse_risk, items) if risk is not None)
        result = replace(result, risks=result.risks + risks)
    elif state.section == TECH_STACK:
        # "- **Language**: Python 3.11" lists are as common as paragraphs here
        tech_stack = result.tech_stack
        for item in items:
            tech_stack = _merge_tech_stack(tech_stack, item)
        result = replace(result, tech_stack=tech_stack)
    return replace(state, result=result)


def _merge_tech_stack(tech_stack: Dict[str, str], text: str) -> Dict[str, str]:
    pairs = {key.strip(): value.strip() for key, value in _TECH_PAIR.findall(text)}
    if not pairs:
        return tech_stack
    return {**tech_stack, **pairs}


def parse_risk(item: str) -> Optional[ParsedRisk]:
    """Split ``risk - mitigation`` on the first ``-``, ``–`` or ``:``."""
    parts = _RISK_SEPARATOR.split(item, maxsplit=1)
    if len(parts) < 2:
        return None
    risk = parts[0].replace("*", "").strip()
    mitigation = parts[1].replace("*", "").strip()
    if not risk:
        return None
    return ParsedRisk(risk=risk, mitigation=mitigation)
