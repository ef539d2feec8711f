"""Tests for shared service-layer helper functions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from proxctl.services._helpers import looks_like_script, now_iso, now_utc, parse_assignments


class TestTimestamps:
    def test_now_utc_is_aware(self) -> None:
        assert now_utc().tzinfo is not None

    def test_now_iso_round_trips(self) -> None:
        parsed = datetime.fromisoformat(now_iso())
        assert parsed.utcoffset() is not None


class TestParseAssignments:
    def test_dotted_keys_nest(self) -> None:
        assert parse_assignments(["dns.enable=true", "dns.ipv6=false"]) == {
            "dns": {"enable": True, "ipv6": False}
        }

    def test_values_are_yaml(self) -> None:
        patch = parse_assignments(["port=7890", "mode=rule", "nameserver=[1.1.1.1]"])
        assert patch == {"port": 7890, "mode": "rule", "nameserver": ["1.1.1.1"]}

    def test_null_is_kept(self) -> None:
        assert parse_assignments(["dns.fallback=null"]) == {"dns": {"fallback": None}}

    @pytest.mark.parametrize("raw", ["novalue", "=1", " =x"])
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(ValueError, match="KEY=VALUE"):
            parse_assignments([raw])


class TestLooksLikeScript:
    def test_suffix_wins(self) -> None:
        assert looks_like_script(Path("tweak.j2"), "mode: rule\n")

    def test_sniffs_template_markers(self) -> None:
        assert looks_like_script(Path("tweak.txt"), "{% macro main(config) %}\n")

    def test_plain_yaml(self) -> None:
        assert not looks_like_script(Path("sub.yaml"), "mode: rule\nrules: []\n")

    def test_markers_past_head_ignored(self) -> None:
        text = "a: 1\nb: 2\nc: 3\nd: 4\ne: 5\nf: '{{ x }}'\n"
        assert not looks_like_script(Path("sub.yaml"), text)
