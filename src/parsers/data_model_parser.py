"""Parse data-model.md into entities, attributes and relationships.

Layout understood::

    ## Overview                 -> overview text
    ## Core Entities            -> category label, never an entity
    ### User                    -> entity
    #### Attributes             -> attribute subsection (or **Attributes**:)
    - `id` (UUID, PK): unique identifier
    #### Relationships
    - has many Sessions (1:N)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from functools import reduce
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..markdown import Node, parse_markdown
from ..models import EntityAttribute, EntityRelationship, ParsedDataModel, ParsedEntity

logger = logging.getLogger("speckit.parsers.data_model")

_ATTRIBUTE_PATTERN = re.compile(r"^`?([^`(]+)`?\s*\(([^)]+)\)\s*:\s*(.*)$")
_ATTRIBUTE_FALLBACK = re.compile(r"^`?([^`:]+)`?\s*:\s*(.+)$")
_RELATIONSHIP_TARGET = re.compile(r"(?:has|belongs|references)\s+(?:many|one|to)?\s*(\w+)", re.IGNORECASE)
_TAG_PUNCTUATION = re.compile(r"[^\w\s-]")
_INLINE_MARKUP = (
    re.compile(r"`([^`]*)`"),
    re.compile(r"\*\*(.+?)\*\*"),
    re.compile(r"__(.+?)__"),
    re.compile(r"(?<!\w)\*(.+?)\*(?!\w)"),
    re.compile(r"(?<!\w)_(.+?)_(?!\w)"),
)

OVERVIEW = "overview"
RELATIONSHIPS = "relationships"
ATTRIBUTES = "attributes"

_ATTRIBUTE_WORDS = ("attribute", "field", "column")
_RELATIONSHIP_WORDS = ("relationship", "association")
_TAG_WORDS = ("lifecycle", "validation")


@dataclass(frozen=True)
class _DataModelState:
    result: ParsedDataModel = field(default_factory=ParsedDataModel)
    section: str = ""
    entity_open: bool = False
    subsection: str = ""


def parse_data_model(text: str) -> ParsedDataModel:
    """Parse data-model.md content.

    Entities are appended in document order. Two ``###`` headings with the
    same name produce two entities; nothing is merged here.
    """
    state = reduce(_step, parse_markdown(text), _DataModelState())
    logger.debug(f"Parsed data model: {len(state.result.entities)} entities")
    return state.result


def parse_data_model_file(path: Union[str, Path]) -> ParsedDataModel:
    return parse_data_model(Path(path).read_text(encoding="utf-8-sig"))


def parse_relation_type(text: str) -> str:
    """Cardinality named anywhere in a relationship line, defaulting to 1:1."""
    if "1:N" in text or "one-to-many" in text:
        return "1:N"
    if "N:1" in text or "many-to-one" in text:
        return "N:1"
    if "N:N" in text or "many-to-many" in text:
        return "N:N"
    return "1:1"


def strip_inline_markup(text: str) -> str:
    """Drop code-span and emphasis markers, keeping the text inside them."""
    for pattern in _INLINE_MARKUP:
        text = pattern.sub(r"\1", text)
    return text.strip()


def _classify_subsection(label: str) -> str:
    lowered = label.lower()
    if any(word in lowered for word in _ATTRIBUTE_WORDS):
        return ATTRIBUTES
    if any(word in lowered for word in _RELATIONSHIP_WORDS):
        return RELATIONSHIPS
    return _TAG_PUNCTUATION.sub("", lowered).strip()


def _section_for(heading: str) -> str:
    lowered = heading.lower()
    if "overview" in lowered or "summary" in lowered:
        return OVERVIEW
    if "relationship" in lowered:
        return RELATIONSHIPS
    return lowered


def _step(state: _DataModelState, node: Node) -> _DataModelState:
    if node.is_heading(2):
        return replace(state, section=_section_for(node.text()), entity_open=False, subsection="")

    if node.is_heading(3):
        entity = ParsedEntity(name=strip_inline_markup(node.text()))
        result = replace(state.result, entities=state.result.entities + (entity,))
        return replace(state, result=result, entity_open=True, subsection="")

    if node.is_heading(4):
        return _enter_subsection(state, node.text())

    if node.type == "paragraph":
        return _read_paragraph(state, node.text())

    if not state.entity_open:
        return state

    if node.type == "list":
        items = [item.text().strip() for item in node.items]
        if state.subsection == ATTRIBUTES:
            attributes = tuple(attr for attr in map(parse_attribute_line, items) if attr is not None)
            return _update_entity(state, attributes=_current(state).attributes + attributes)
        if state.subsection == RELATIONSHIPS:
            relationships = tuple(rel for rel in map(parse_relationship_line, items) if rel is not None)
            return _update_entity(state, relationships=_current(state).relationships + relationships)

    if node.type == "table" and state.subsection == ATTRIBUTES:
        return _update_entity(state, attributes=_current(state).attributes + _table_attributes(node))

    return state


def _current(state: _DataModelState) -> ParsedEntity:
    return state.result.entities[-1]


def _update_entity(state: _DataModelState, **changes) -> _DataModelState:
    entity = replace(_current(state), **changes)
    entities = state.result.entities[:-1] + (entity,)
    return replace(state, result=replace(state.result, entities=entities))


def _enter_subsection(state: _DataModelState, label: str) -> _DataModelState:
    subsection = _classify_subsection(label)
    state = replace(state, subsection=subsection)
    if state.entity_open and subsection not in (ATTRIBUTES, RELATIONSHIPS) and subsection:
        sections = _current(state).sections
        if subsection not in sections:
            state = _update_entity(state, sections=sections + (subsection,))
    return state


def _is_subsection_marker(text: str) -> bool:
    # other bold labels (**Notes**:) are ordinary paragraphs
    if not text.startswith("**"):
        return False
    lowered = text.lower()
    keywords = _ATTRIBUTE_WORDS[:2] + _RELATIONSHIP_WORDS + _TAG_WORDS
    return any(word in lowered for word in keywords)


def _read_paragraph(state: _DataModelState, text: str) -> _DataModelState:
    if state.section == OVERVIEW and not state.result.overview:
        return replace(state, result=replace(state.result, overview=text))

    if not state.entity_open:
        return state

    stripped = text.strip()
    if _is_subsection_marker(stripped):
        return _enter_subsection(state, stripped.replace("**", "").rstrip(":"))

    entity = _current(state)
    if not entity.description and not state.subsection:
        return _update_entity(state, description=text)
    return state


def parse_attribute_line(item: str) -> Optional[EntityAttribute]:
    """Read ```name` (TYPE, CONSTRAINTS): description`` or ``name: type``."""
    match = _ATTRIBUTE_PATTERN.match(item)
    if match:
        type_parts = [part.strip() for part in match.group(2).split(",")]
        description = match.group(3).strip()
        constraints = ", ".join(part for part in type_parts[1:] if part)
        return EntityAttribute(
            name=strip_inline_markup(match.group(1)),
            type=strip_inline_markup(type_parts[0]),
            constraints=constraints or description or None,
        )

    fallback = _ATTRIBUTE_FALLBACK.match(item)
    if fallback:
        return EntityAttribute(
            name=strip_inline_markup(fallback.group(1)),
            type=strip_inline_markup(fallback.group(2)),
        )
    return None


def parse_relationship_line(item: str) -> Optional[EntityRelationship]:
    """Read ``has many X`` / ``belongs to X`` / ``references X`` lines."""
    match = _RELATIONSHIP_TARGET.search(item)
    if not match:
        return None
    return EntityRelationship(target=match.group(1), type=parse_relation_type(item), description=item)


def _table_attributes(node: Node) -> Tuple[EntityAttribute, ...]:
    attributes: List[EntityAttribute] = []
    for row in node.children[1:]:
        cells = [cell.text().strip() for cell in row.children]
        if len(cells) >= 2:
            attributes.append(
                EntityAttribute(
                    name=strip_inline_markup(cells[0]),
                    type=strip_inline_markup(cells[1]),
                    constraints=cells[2] if len(cells) > 2 and cells[2] else None,
                )
            )
    return tuple(attributes)
