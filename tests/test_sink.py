"""Tests for the PostgREST sink, using httpx's mock transport."""

import json

import httpx
import pytest

from log_tailer.errors import TransientSinkError
from log_tailer.sink import PostgrestSink


def _sink(handler) -> PostgrestSink:
    return PostgrestSink(
        "https://project.example.co/", "anon-key", "user-token",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_insert_posts_records():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    sink = _sink(handler)
    records = [{"user_id": "u", "agent_id": "a", "content": "hello", "source": "stdin"}]
    try:
        await sink.insert("eliza_logs", records)
    finally:
        await sink.aclose()

    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://project.example.co/rest/v1/eliza_logs"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer user-token"
    assert request.headers["prefer"] == "return=minimal"
    assert json.loads(request.content) == records


@pytest.mark.asyncio
async def test_error_status_is_transient():
    sink = _sink(lambda request: httpx.Response(503, text="upstream unavailable"))
    try:
        with pytest.raises(TransientSinkError, match="HTTP 503"):
            await sink.insert("eliza_logs", [{"content": "x"}])
    finally:
        await sink.aclose()


@pytest.mark.asyncio
async def test_transport_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    sink = _sink(handler)
    try:
        with pytest.raises(TransientSinkError, match="ConnectError"):
            await sink.insert("eliza_logs", [{"content": "x"}])
    finally:
        await sink.aclose()
