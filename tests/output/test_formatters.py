"""Tests for output-mode selection."""

from __future__ import annotations

import json

from proxctl.output.formatters import OutputSettings, format_result
from proxctl.services.result import ServiceResult

RESULT = ServiceResult(ok=True, op="profile_use", data={"item_id": "L1", "current": "L1"})


class TestFormatResult:
    def test_default_is_rich(self) -> None:
        assert format_result(RESULT).startswith("OK  profile_use")

    def test_json(self) -> None:
        parsed = json.loads(format_result(RESULT, settings=OutputSettings(json_output=True)))
        assert parsed["ok"] is True
        assert parsed["data"]["item_id"] == "L1"

    def test_quiet(self) -> None:
        assert format_result(RESULT, settings=OutputSettings(quiet=True)) == "OK: profile_use"

    def test_json_beats_quiet(self) -> None:
        output = format_result(RESULT, settings=OutputSettings(json_output=True, quiet=True))
        assert json.loads(output)["op"] == "profile_use"
