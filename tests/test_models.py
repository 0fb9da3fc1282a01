"""Data model validation at the runtime boundary."""

from __future__ import annotations

from pathlib import Path

import pytest

from tersh.models import (
    ExecutedCommand,
    ExecuteResult,
    PrepareResult,
    SettingDefinition,
    SummaryResult,
    TruncationInfo,
    command_text,
    schema_from_dict,
)


def test_command_text_quotes_argv():
    assert command_text("cargo build") == "cargo build"
    assert command_text(["echo", "a b"]) == "echo 'a b'"


class TestPrepareResult:
    def test_from_dict_accepts_string_and_list(self):
        assert PrepareResult.from_dict({"command": "ls"}).command == "ls"
        assert PrepareResult.from_dict({"command": ["ls", "-l"], "env": {}}).command == ["ls", "-l"]

    def test_from_dict_rejects_bad_command(self):
        with pytest.raises(ValueError):
            PrepareResult.from_dict({"command": 42})

    def test_from_dict_rejects_non_string_env(self):
        with pytest.raises(ValueError):
            PrepareResult.from_dict({"command": "ls", "env": {"A": 1}})


class TestSummaryResult:
    def test_none_payload_means_keep_buffering(self):
        result = SummaryResult.from_dict(None)
        assert result.summary is None
        assert not result.decided

    def test_rejects_non_string_summary(self):
        with pytest.raises(ValueError):
            SummaryResult.from_dict({"summary": ["a"]})

    def test_truncation_survives_the_wire(self):
        original = SummaryResult(
            summary="ok",
            truncation=TruncationInfo(reason="filtered_noise", description="2 warnings"),
        )
        assert SummaryResult.from_dict(original.to_dict()) == original


def test_truncation_rejects_unknown_reason():
    with pytest.raises(ValueError):
        TruncationInfo.from_dict({"truncated": True, "reason": "because"})


def test_schema_from_dict_rejects_unknown_type():
    with pytest.raises(ValueError):
        schema_from_dict({"x": {"type": "list"}})


def test_setting_definition_defaults():
    definition = SettingDefinition.from_dict({"type": "string"})
    assert definition.default is None
    assert definition.description == ""


def test_execute_result_to_dict():
    result = ExecuteResult(
        summary="Build succeeded",
        exit_code=0,
        executed=ExecutedCommand(
            command="cargo --quiet build", env_overrides={}, working_dir=Path("/tmp")
        ),
        handler="cargo",
    )
    data = result.to_dict()
    assert data["truncated"] is False
    assert data["truncation"] is None
    assert data["executed_command"]["command"] == "cargo --quiet build"
    assert data["handler"] == "cargo"
