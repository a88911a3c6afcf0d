"""Tests for log format parsers."""

import logging

import pytest

from log_tailer.errors import ConfigurationError
from log_tailer.parsers import apply_parser, get_parser, parse_docker_json, parse_raw


async def _lines(*items):
    for item in items:
        yield item


async def _collect(agen) -> list[str]:
    return [line async for line in agen]


class TestParseDockerJson:
    def test_extracts_log_field(self):
        line = '{"log":"GET /health 200\\n","stream":"stdout","time":"2024-01-15T08:23:45Z"}'
        assert parse_docker_json(line) == "GET /health 200\n"

    def test_malformed_json_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert parse_docker_json("{not json") is None
        assert "malformed JSON" in caplog.text

    def test_non_string_log_dropped(self):
        assert parse_docker_json('{"log": 42}') is None

    def test_missing_log_dropped(self):
        assert parse_docker_json('{"stream": "stdout"}') is None

    def test_non_object_dropped(self):
        assert parse_docker_json('["log"]') is None


class TestGetParser:
    def test_default_is_raw(self):
        assert get_parser(None) is parse_raw
        assert get_parser("raw") is parse_raw

    def test_json(self):
        assert get_parser("json") is parse_docker_json

    def test_unknown_format(self):
        with pytest.raises(ConfigurationError, match="Unknown log format"):
            get_parser("xml")


class TestApplyParser:
    @pytest.mark.asyncio
    async def test_raw_passthrough(self):
        assert await _collect(apply_parser(_lines("a", "b"), parse_raw)) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_docker_lines(self):
        lines = _lines(
            '{"log":"first\\n"}',
            "garbage",
            '{"log":"second\\r\\n"}',
            '{"log":"\\n"}',
        )
        assert await _collect(apply_parser(lines, parse_docker_json)) == ["first", "second"]

    @pytest.mark.asyncio
    async def test_embedded_newlines_resplit(self):
        lines = _lines('{"log":"one\\ntwo\\n\\nthree"}')
        assert await _collect(apply_parser(lines, parse_docker_json)) == ["one", "two", "three"]
