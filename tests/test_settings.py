"""Settings resolver tests."""

from __future__ import annotations

import logging

import pytest

from tersh.errors import SettingsTypeError
from tersh.models import SettingDefinition
from tersh.settings import resolve_settings

SCHEMA = {
    "quiet": SettingDefinition(type="boolean", default=True),
    "level": SettingDefinition(type="string", default=None),
    "limit": SettingDefinition(type="number", default=10),
}


class TestResolveSettings:
    def test_empty_input_gives_all_defaults(self):
        assert resolve_settings({}, SCHEMA) == {"quiet": True, "level": None, "limit": 10}

    def test_none_input_gives_all_defaults(self):
        assert resolve_settings(None, SCHEMA) == {"quiet": True, "level": None, "limit": 10}

    def test_supplied_values_override_defaults(self):
        resolved = resolve_settings({"quiet": False, "limit": 2.5}, SCHEMA)
        assert resolved == {"quiet": False, "level": None, "limit": 2.5}

    def test_unknown_keys_are_dropped(self):
        resolved = resolve_settings({"quiet": False, "bogus": 1}, SCHEMA)
        assert "bogus" not in resolved
        assert set(resolved) == set(SCHEMA)

    def test_none_value_counts_as_absent(self):
        assert resolve_settings({"limit": None}, SCHEMA)["limit"] == 10

    def test_strict_mismatch_raises(self):
        with pytest.raises(SettingsTypeError) as exc:
            resolve_settings({"quiet": "yes"}, SCHEMA)
        assert exc.value.key == "quiet"
        assert exc.value.expected == "boolean"
        assert exc.value.stage == "matching"

    def test_bool_is_not_a_number(self):
        with pytest.raises(SettingsTypeError):
            resolve_settings({"limit": True}, SCHEMA)

    def test_lenient_mismatch_uses_default_and_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tersh.settings"):
            resolved = resolve_settings({"limit": "many"}, SCHEMA, strict=False)
        assert resolved["limit"] == 10
        assert "limit" in caplog.text

    def test_empty_schema_gives_empty_map(self):
        assert resolve_settings({"anything": 1}, {}) == {}
