"""Parsers for the markdown documents of a Spec-kit feature folder."""

from .data_model_parser import parse_data_model, parse_data_model_file
from .plan_parser import parse_plan, parse_plan_file
from .research_parser import parse_research, parse_research_file
from .spec_parser import parse_spec, parse_spec_file
from .tasks_parser import parse_checkbox_status, parse_tasks, parse_tasks_file

__all__ = [
    "parse_data_model",
    "parse_data_model_file",
    "parse_plan",
    "parse_plan_file",
    "parse_research",
    "parse_research_file",
    "parse_spec",
    "parse_spec_file",
    "parse_checkbox_status",
    "parse_tasks",
    "parse_tasks_file",
]
