"""Tests for the YAML document codec."""

from __future__ import annotations

import pytest

from proxctl.domain.documents import (
    ParseError,
    nest_dotted,
    parse_document,
    parse_value,
    render_document,
)


class TestParseDocument:
    def test_mapping(self) -> None:
        doc = parse_document("mode: rule\ndns:\n  enable: true\nrules:\n  - MATCH,DIRECT\n")
        assert doc == {"mode": "rule", "dns": {"enable": True}, "rules": ["MATCH,DIRECT"]}

    def test_returns_plain_containers(self) -> None:
        doc = parse_document("a:\n  b: [1, 2]\n")
        assert type(doc) is dict
        assert type(doc["a"]) is dict
        assert type(doc["a"]["b"]) is list

    def test_empty_text_is_empty_document(self) -> None:
        assert parse_document("") == {}
        assert parse_document("# only a comment\n") == {}

    def test_top_level_list_rejected(self) -> None:
        with pytest.raises(ParseError, match="mapping"):
            parse_document("- a\n- b\n")

    def test_scalar_rejected(self) -> None:
        with pytest.raises(ParseError):
            parse_document("just text")

    def test_malformed_yaml(self) -> None:
        with pytest.raises(ParseError, match="invalid YAML"):
            parse_document("a: [1, 2\nb: {")

    def test_source_in_message(self) -> None:
        with pytest.raises(ParseError) as excinfo:
            parse_document("- x", source="profiles/L1.yaml")
        assert str(excinfo.value).startswith("profiles/L1.yaml: ")
        assert excinfo.value.source == "profiles/L1.yaml"

    def test_parse_error_is_value_error(self) -> None:
        assert issubclass(ParseError, ValueError)


class TestRenderDocument:
    def test_block_style_keeps_key_order(self) -> None:
        text = render_document({"z": 1, "a": {"y": [1, 2]}})
        assert text.index("z:") < text.index("a:")
        assert "- 1" in text
        assert "{" not in text

    def test_header_is_commented(self) -> None:
        text = render_document({"a": 1}, header="line one\nline two")
        assert text.startswith("# line one\n# line two\n")
        assert parse_document(text) == {"a": 1}

    def test_empty_document(self) -> None:
        assert parse_document(render_document({})) == {}

    def test_unicode_preserved(self) -> None:
        text = render_document({"name": "节点"})
        assert "节点" in text


class TestValues:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("7890", 7890),
            ("true", True),
            ("null", None),
            ("rule", "rule"),
            ("[1.1.1.1, 8.8.8.8]", ["1.1.1.1", "8.8.8.8"]),
            ("{enable: true}", {"enable": True}),
        ],
    )
    def test_parse_value(self, raw: str, expected: object) -> None:
        assert parse_value(raw) == expected

    def test_nest_dotted(self) -> None:
        assert nest_dotted("dns.fallback", None) == {"dns": {"fallback": None}}
        assert nest_dotted("mode", "rule") == {"mode": "rule"}

    def test_nest_dotted_empty_key(self) -> None:
        with pytest.raises(ValueError, match="empty key"):
            nest_dotted("..", 1)
