"""Unit tests for the research.md parser."""

from src.parsers import parse_research, parse_research_file


RESEARCH_MD = """# Research: User Authentication

## Phase 0: Research

### 1. Password hashing

#### Decision

Use argon2id through the argon2-cffi package.

#### Rationale

Memory-hard and the current OWASP recommendation.

It is also fast enough on our hardware.

#### Alternatives Considered

- **bcrypt**: widely deployed but weaker against GPUs
- scrypt

#### Implementation Notes

```
hasher = PasswordHasher()
```

### 2. Session storage

**Decision**: Signed cookies
**Rationale**: No server-side state to manage
**Alternatives considered**: Redis sessions

### 3. Token format

JWT with short expiry.

## Open Questions

### Not a decision

Text.
"""


class TestResearchDecisions:
    """Decision headings and subsections."""

    def test_decision_titles(self):
        """Test that numbering is stripped and only research sections count."""
        decisions = parse_research(RESEARCH_MD).decisions

        assert [decision.title for decision in decisions] == [
            "Password hashing",
            "Session storage",
            "Token format",
        ]

    def test_heading_subsections(self):
        """Test decision, rationale, alternatives and context subsections."""
        hashing = parse_research(RESEARCH_MD).decisions[0]

        assert hashing.decision == "Use argon2id through the argon2-cffi package."
        assert hashing.rationale == (
            "Memory-hard and the current OWASP recommendation.\n\nIt is also fast enough on our hardware."
        )
        assert hashing.alternatives == ("bcrypt: widely deployed but weaker against GPUs", "scrypt")
        assert hashing.context == "```\nhasher = PasswordHasher()\n```"

    def test_labelled_paragraph(self):
        """Test the bold label form inside a single paragraph."""
        storage = parse_research(RESEARCH_MD).decisions[1]

        assert storage.decision == "Signed cookies"
        assert storage.rationale == "No server-side state to manage"
        assert storage.alternatives == ("Redis sessions",)

    def test_unlabelled_first_paragraph_is_decision(self):
        """Test that plain text right after the title is the decision."""
        token = parse_research(RESEARCH_MD).decisions[2]

        assert token.decision == "JWT with short expiry."
        assert token.rationale is None
        assert token.alternatives == ()

    def test_labelled_list_items(self):
        """Test the '- **Decision**: ...' list form."""
        text = (
            "## Research\n\n### Cache\n\n"
            "- **Decision**: In-process LRU\n"
            "- **Rationale**: Single instance\n"
            "- **Alternatives**: Redis\n"
        )
        cache = parse_research(text).decisions[0]

        assert cache.decision == "In-process LRU"
        assert cache.rationale == "Single instance"
        assert cache.alternatives == ("Redis",)

    def test_list_in_rationale_is_buffered(self):
        """Test that bullets inside a prose subsection are kept as text."""
        text = "## Research\n\n### A\n\n#### Why\n\n- fast\n- simple\n"

        assert parse_research(text).decisions[0].rationale == "- fast\n- simple"

    def test_no_research_section(self):
        """Test that decisions outside research sections are ignored."""
        assert parse_research("## Notes\n\n### Something\n\nText.\n").decisions == ()


class TestResearchFile:
    """Reading research.md from disk."""

    def test_parse_research_file(self, tmp_path):
        """Test parse_research_file and serialization."""
        path = tmp_path / "research.md"
        path.write_text(RESEARCH_MD, encoding="utf-8")

        data = parse_research_file(path).to_dict()
        assert len(data["decisions"]) == 3
        assert data["decisions"][1]["alternatives"] == ["Redis sessions"]
