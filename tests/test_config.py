"""
Tests for config.py configuration management.

Tests configuration loading, merging, environment variables, blacklist
selection and global config management.
"""

import pytest
import yaml
from pathlib import Path
from unittest.mock import patch

from mity.config import (
    DEFAULT_BLACKLIST,
    MityConfig,
    get_config,
    set_config,
    load_config,
)


class TestMityConfig:
    """Test MityConfig class functionality."""

    def test_load_defaults_when_no_file(self):
        """Test loading defaults when defaults.yaml doesn't exist."""
        with patch("mity.config.Path.exists", return_value=False):
            config = MityConfig._load_defaults()

        assert config["call"]["min_mq"] == 30
        assert config["call"]["min_bq"] == 24
        assert config["call"]["min_af"] == 0.01
        assert config["call"]["min_ac"] == 4
        assert config["call"]["p"] == 0.002
        assert config["filter"]["min_dp"] == 15
        assert config["filter"]["sb_range"] == [0.1, 0.9]
        assert config["blacklist"]["default"] == DEFAULT_BLACKLIST

    def test_bundled_defaults_match_fallback(self):
        """The shipped defaults.yaml carries the same caller thresholds."""
        config = MityConfig.load()

        assert config.get_call_threshold("min_mq") == 30
        assert config.get_call_threshold("p") == 0.002
        assert config.get_filter_setting("min_mqmr") == 30.0
        assert config.get_filter_setting("min_aqr") == 20.0
        assert config.get_blacklist() == frozenset(DEFAULT_BLACKLIST)

    def test_load_yaml_invalid_yaml(self, tmp_path):
        """Test YAML loading with invalid YAML content."""
        config_path = tmp_path / "bad.yaml"
        config_path.write_text("invalid: yaml: content: [")

        with pytest.raises(ValueError, match="Invalid YAML"):
            MityConfig._load_yaml(config_path)

    def test_load_yaml_empty_file(self, tmp_path):
        """Test that an empty YAML file gives an empty mapping."""
        config_path = tmp_path / "empty.yaml"
        config_path.write_text("")

        assert MityConfig._load_yaml(config_path) == {}

    def test_merge_configs_recursive(self):
        """Test that nested sections merge key by key."""
        base = {"call": {"min_mq": 30, "min_bq": 24}, "tools": {}}
        overlay = {"call": {"min_mq": 20}, "tools": {"freebayes": {"executable": "fb"}}}

        result = MityConfig._merge_configs(base, overlay)

        assert result["call"] == {"min_mq": 20, "min_bq": 24}
        assert result["tools"]["freebayes"]["executable"] == "fb"

    def test_user_config_overrides_defaults(self, tmp_path):
        """Test that a user file overrides only the keys it names."""
        config_path = tmp_path / "user.yaml"
        config_path.write_text(yaml.dump({"call": {"min_ac": 2}, "filter": {"min_dp": 50}}))

        config = MityConfig.load(config_path)

        assert config.get_call_threshold("min_ac") == 2
        assert config.get_call_threshold("min_mq") == 30
        assert config.get_filter_setting("min_dp") == 50

    def test_env_overrides(self, monkeypatch):
        """Test MITY_* environment variables override file values."""
        monkeypatch.setenv("MITY_MIN_MQ", "10")
        monkeypatch.setenv("MITY_P", "0.01")
        monkeypatch.setenv("MITY_MIN_DP", "5")

        config = MityConfig.load()

        assert config.get_call_threshold("min_mq") == 10
        assert config.get_call_threshold("p") == 0.01
        assert config.get_filter_setting("min_dp") == 5

    def test_env_override_invalid_value(self, monkeypatch):
        """Test that a non-numeric environment value is rejected."""
        monkeypatch.setenv("MITY_MIN_AC", "four")

        with pytest.raises(ValueError, match="MITY_MIN_AC"):
            MityConfig.load()


class TestBlacklist:
    """Test per-build blacklist selection."""

    def test_default_blacklist_positions(self):
        """Test the default list covers 302-318 and 3105-3107."""
        blacklist = MityConfig.load().get_blacklist("hg38")

        assert 302 in blacklist and 318 in blacklist
        assert {3105, 3106, 3107} <= blacklist
        assert 301 not in blacklist and 319 not in blacklist

    def test_build_specific_list_replaces_default(self, tmp_path):
        """Test that a build key replaces the default list for that build only."""
        config_path = tmp_path / "user.yaml"
        config_path.write_text(yaml.dump({"blacklist": {"mm10": [9821]}}))

        config = MityConfig.load(config_path)

        assert config.get_blacklist("mm10") == frozenset({9821})
        assert config.get_blacklist("hg19") == frozenset(DEFAULT_BLACKLIST)


class TestTools:
    """Test tool executable lookup."""

    def test_tool_defaults_to_its_name(self):
        """Test tools without an entry use their own name."""
        config = MityConfig(call={}, filter={}, blacklist={}, tools={})
        assert config.get_tool("tabix") == "tabix"

    def test_tool_executable_override(self):
        """Test a configured executable path is returned."""
        config = MityConfig(
            call={},
            filter={},
            blacklist={},
            tools={"freebayes": {"executable": "/opt/bin/freebayes"}},
        )
        assert config.get_tool("freebayes") == "/opt/bin/freebayes"


class TestGlobalConfig:
    """Test global configuration management."""

    def test_get_config_loads_once(self):
        """Test that get_config caches the loaded configuration."""
        assert get_config() is get_config()

    def test_set_config(self):
        """Test that set_config replaces the global instance."""
        custom = MityConfig(call={"min_mq": 1}, filter={}, blacklist={}, tools={})
        set_config(custom)
        assert get_config() is custom

    def test_load_config_sets_global(self, tmp_path):
        """Test that load_config installs the loaded file globally."""
        config_path = tmp_path / "user.yaml"
        config_path.write_text(yaml.dump({"call": {"min_bq": 13}}))

        config = load_config(Path(config_path))

        assert get_config() is config
        assert get_config().get_call_threshold("min_bq") == 13
