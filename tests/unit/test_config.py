"""Unit tests for environment-driven configuration."""

from pathlib import Path

import pytest

from src.config import (
    DEFAULT_ANALYSIS_CACHE_TTL,
    DEFAULT_DEBOUNCE_MS,
    DashboardConfig,
    load_config,
)


class TestLoadConfig:
    """load_config with explicit environments."""

    def test_defaults(self):
        """Test the configuration of an empty environment."""
        config = load_config({})

        assert config.project_root is None
        assert config.store_path == Path.home() / ".speckit-dashboard" / "store.json"
        assert config.debounce_ms == DEFAULT_DEBOUNCE_MS == 500
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.analysis_cache_ttl == DEFAULT_ANALYSIS_CACHE_TTL

    def test_all_variables(self, tmp_path):
        """Test that every variable is honoured."""
        config = load_config({
            "SPECKIT_PROJECT_ROOT": str(tmp_path),
            "SPECKIT_DASHBOARD_STORE": str(tmp_path / "store.json"),
            "SPECKIT_DEBOUNCE_MS": "250",
            "SPECKIT_LOG_LEVEL": "debug",
            "SPECKIT_LOG_FILE": str(tmp_path / "dashboard.log"),
            "SPECKIT_ANALYSIS_CACHE_TTL": "12.5",
        })

        assert config == DashboardConfig(
            project_root=tmp_path,
            store_path=tmp_path / "store.json",
            debounce_ms=250,
            log_level="DEBUG",
            log_file=tmp_path / "dashboard.log",
            analysis_cache_ttl=12.5,
        )

    def test_blank_values_use_defaults(self):
        """Test that empty strings are treated as unset."""
        config = load_config({"SPECKIT_DEBOUNCE_MS": " ", "SPECKIT_ANALYSIS_CACHE_TTL": ""})

        assert config.debounce_ms == DEFAULT_DEBOUNCE_MS
        assert config.analysis_cache_ttl == DEFAULT_ANALYSIS_CACHE_TTL

    @pytest.mark.parametrize("raw", ["fast", "1.5"])
    def test_invalid_debounce(self, raw):
        """Test that a non-integer debounce names the variable."""
        with pytest.raises(ValueError, match="SPECKIT_DEBOUNCE_MS"):
            load_config({"SPECKIT_DEBOUNCE_MS": raw})

    def test_negative_debounce(self):
        """Test that a negative debounce is rejected."""
        with pytest.raises(ValueError, match="must not be negative"):
            load_config({"SPECKIT_DEBOUNCE_MS": "-5"})

    def test_invalid_ttl(self):
        """Test that a non-numeric TTL names the variable."""
        with pytest.raises(ValueError, match="SPECKIT_ANALYSIS_CACHE_TTL"):
            load_config({"SPECKIT_ANALYSIS_CACHE_TTL": "soon"})

    def test_reads_process_environment(self, monkeypatch):
        """Test that os.environ is used when no mapping is passed."""
        monkeypatch.setenv("SPECKIT_DEBOUNCE_MS", "75")

        assert load_config().debounce_ms == 75
