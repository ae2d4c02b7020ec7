"""Shared fixtures: on-disk Spec-kit projects and stores."""

from pathlib import Path
from typing import Dict

import pytest

from src.store import MemoryFeatureStore


AUTH_SPEC = """# Feature Specification: User Authentication

**Feature Branch**: `001-user-auth`
**Created**: 2025-01-15
**Status**: Approved

## User Scenarios & Testing

### User Story 1 - Sign in (Priority: P1)

A registered user signs in.

1. **Given** valid credentials, **When** submitted, **Then** the dashboard opens

### User Story 2 - Reset password (Priority: P2)

A user resets a forgotten password.

## Requirements

- **FR-001**: System MUST authenticate users by email
- **NFR-001**: Sign-in completes within 200ms
"""

AUTH_PLAN = """# Implementation Plan

## Summary

Email and password sign-in.

## Technical Context

**Language/Version**: Python 3.11

## Phase 1: Setup

- Create module
"""

AUTH_TASKS = """# Tasks: User Authentication

## Phase 1: Setup

- [x] T001 Create project structure
- [x] T002 [P] Configure linting in `pyproject.toml`

## Phase 2: Core

- [/] T003 [US1] Implement sign-in in `src/auth.py`
- [ ] T004 [US2] Implement reset in `src/reset.py`
"""

AUTH_DATA_MODEL = """# Data Model

### User

An account holder.

#### Attributes

- `id` (UUID, PK): identifier
- `email` (string): login

### Session

#### Relationships

- belongs to User (N:1)
"""

AUTH_RESEARCH = """# Research

## Phase 0: Research

### 1. Hashing

**Decision**: argon2id
**Rationale**: Memory-hard
"""

DARK_MODE_SPEC = """# Feature Specification: Dark Mode

**Status**: Draft

## User Scenarios & Testing

### User Story 1 - Toggle theme (Priority: P3)

A user switches to a dark theme.
"""

DARK_MODE_TASKS = """# Tasks

- [ ] T001 Add theme toggle
"""


def write_feature(root: Path, folder: str, files: Dict[str, str]) -> Path:
    """Create ``specs/<folder>`` under ``root`` with the given documents."""
    feature_dir = root / "specs" / folder
    feature_dir.mkdir(parents=True, exist_ok=True)
    for name, content in files.items():
        (feature_dir / name).write_text(content, encoding="utf-8")
    return feature_dir


@pytest.fixture
def store():
    return MemoryFeatureStore()


@pytest.fixture
def empty_project(tmp_path):
    """A project with .specify/ and an empty specs/ directory."""
    root = tmp_path / "project"
    (root / ".specify" / "memory").mkdir(parents=True)
    (root / "specs").mkdir()
    return root


@pytest.fixture
def add_feature(empty_project):
    """Factory writing a feature folder into the project fixture."""

    def _add(folder: str, files: Dict[str, str]) -> Path:
        return write_feature(empty_project, folder, files)

    return _add


@pytest.fixture
def sample_project(empty_project):
    """A project with one fully documented feature and one minimal feature."""
    write_feature(empty_project, "001-user-auth", {
        "spec.md": AUTH_SPEC,
        "plan.md": AUTH_PLAN,
        "tasks.md": AUTH_TASKS,
        "data-model.md": AUTH_DATA_MODEL,
        "research.md": AUTH_RESEARCH,
    })
    write_feature(empty_project, "002-dark-mode", {
        "spec.md": DARK_MODE_SPEC,
        "tasks.md": DARK_MODE_TASKS,
    })
    return empty_project
