"""Tests for plugin config normalisation and validation."""

import pytest

from plugin_loader.plugins.base import (
    DEFAULT_TIMEOUT_MS,
    PluginDescriptor,
    PluginStatus,
    canonicalize_config,
)
from plugin_loader.plugins.validator import PluginValidator


class TestPluginDescriptor:
    """`PluginDescriptor.from_config` defaults and aliases."""

    def test_defaults(self):
        plugin = PluginDescriptor.from_config({"name": "analytics"})

        assert plugin.id == "analytics"
        assert plugin.url is None
        assert plugin.type == "js"
        assert plugin.location == "body"
        assert plugin.async_ is True
        assert plugin.timeout_ms == DEFAULT_TIMEOUT_MS
        assert plugin.attributes == []
        assert plugin.active is True
        assert plugin.domains == ["all"]
        assert plugin.consent_state == ["all"]
        assert plugin.include == {}
        assert plugin.exclude == {}
        assert plugin.status is PluginStatus.INIT
        assert plugin.performance.status == "init"
        assert plugin.event_title == "plugin.analytics"

    def test_default_hooks_are_callable_noops(self):
        plugin = PluginDescriptor.from_config({"name": "analytics"})
        for hook in ("preload", "onload", "onerror", "ontimeout", "onignore"):
            assert getattr(plugin, hook)("arg") is None

    def test_missing_name_raises(self):
        with pytest.raises(ValueError):
            PluginDescriptor.from_config({"url": "https://cdn.example.com/a.js"})

    def test_aliases_map_to_canonical_fields(self):
        onload = lambda: None  # noqa: E731
        plugin = PluginDescriptor.from_config(
            {
                "name": "analytics",
                "async": False,
                "timeoutMs": 500,
                "consentState": ["analytics"],
                "onloadFn": onload,
            }
        )

        assert plugin.async_ is False
        assert plugin.timeout_ms == 500
        assert plugin.consent_state == ["analytics"]
        assert plugin.onload is onload

    def test_canonical_key_wins_over_alias(self):
        values = canonicalize_config({"timeout_ms": 100, "timeout": 900, "timeoutMs": 500})
        assert values == {"timeout_ms": 100}

    def test_first_listed_alias_wins(self):
        values = canonicalize_config({"consent": ["ads"], "consentState": ["analytics"]})
        assert values["consent_state"] == ["analytics"]

    def test_attributes_accept_mapping_or_pairs(self):
        from_mapping = PluginDescriptor.from_config(
            {"name": "a", "attributes": {"data-key": "abc", "crossorigin": "anonymous"}}
        )
        from_pairs = PluginDescriptor.from_config(
            {"name": "b", "attributes": [["data-key", "abc"]]}
        )

        assert from_mapping.attributes == [("data-key", "abc"), ("crossorigin", "anonymous")]
        assert from_pairs.attributes == [("data-key", "abc")]

    def test_wildcard_strings_become_lists(self):
        plugin = PluginDescriptor.from_config(
            {
                "name": "analytics",
                "domains": "all",
                "consent_state": "all",
                "include": {"section": "all"},
            }
        )
        assert plugin.domains == ["all"]
        assert plugin.consent_state == ["all"]
        assert plugin.include["section"] == ["all"]

    def test_special_is_kept_as_callable(self):
        special = lambda: True  # noqa: E731
        plugin = PluginDescriptor.from_config(
            {"name": "analytics", "exclude": {"special": special}}
        )
        assert plugin.exclude["special"] is special

    def test_location_is_lowercased(self):
        plugin = PluginDescriptor.from_config({"name": "a", "location": "HEAD"})
        assert plugin.location == "head"

    def test_summary_is_json_safe(self):
        plugin = PluginDescriptor.from_config(
            {
                "name": "analytics",
                "url": "https://cdn.example.com/a.js",
                "include": {"section": ["news"], "special": lambda: True},
            }
        )
        summary = plugin.summary()

        assert summary["include"] == {"section": ["news"]}
        assert summary["status"] == "init"
        assert summary["async"] is True
        assert "onload" not in summary
        assert "tag" not in summary

    def test_terminal_statuses(self):
        assert PluginStatus.LOADED.is_terminal
        assert PluginStatus.IGNORE.is_terminal
        assert not PluginStatus.REQUESTED.is_terminal
        assert not PluginStatus.CONSENT_PENDING.is_terminal


class TestPluginValidator:
    """Structural checks on raw configs."""

    @pytest.fixture
    def validator(self):
        return PluginValidator()

    def test_valid_config(self, validator):
        config = {
            "name": "sportsWidget",
            "url": "https://cdn.example.com/w.js",
            "location": "head",
            "timeout": 1500,
            "attributes": {"data-key": "abc"},
            "domains": ["www.example.com"],
            "consentState": ["analytics"],
            "include": {"section": ["sport"], "geo": "all", "special": lambda: False},
            "exclude": {"section": ["sport/betting"]},
        }
        assert validator.validate_config(config) == []

    def test_missing_name(self, validator):
        assert "Missing required field: name" in validator.validate_config({"url": "x"})

    def test_missing_url_only_warns(self, validator, caplog):
        assert validator.validate_config({"name": "a"}) == []
        assert "has no url" in caplog.text

    def test_invalid_location(self, validator):
        errors = validator.validate_config({"name": "a", "location": "footer"})
        assert any("Invalid location" in error for error in errors)

    @pytest.mark.parametrize("timeout", [0, -5, "fast", True])
    def test_invalid_timeout(self, validator, timeout):
        errors = validator.validate_config({"name": "a", "timeout_ms": timeout})
        assert any("Invalid timeout" in error for error in errors)

    def test_invalid_attributes(self, validator):
        errors = validator.validate_config({"name": "a", "attributes": [["only-key"]]})
        assert errors == ["attributes[0] is not a key/value pair"]

    def test_invalid_rules(self, validator):
        errors = validator.validate_config(
            {
                "name": "a",
                "include": {"section": "news", "special": True},
                "exclude": ["geo"],
            }
        )
        assert "include.section must be a list or 'all'" in errors
        assert "include.special must be callable" in errors
        assert "exclude must be a mapping of dimension to rules" in errors

    def test_invalid_domains_and_consent(self, validator):
        errors = validator.validate_config(
            {"name": "a", "domains": "www.example.com", "consent": "analytics"}
        )
        assert "domains must be a list or 'all'" in errors
        assert "consent_state must be a list or 'all'" in errors

    def test_unknown_fields_only_warn(self, validator, caplog):
        assert validator.validate_config({"name": "a", "url": "x", "colour": "red"}) == []
        assert "unknown fields" in caplog.text

    def test_non_mapping_config(self, validator):
        assert validator.validate_config(["name"]) == [
            "Plugin config must be a mapping, got list"
        ]
