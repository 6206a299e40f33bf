"""Tests for AQL query building and paged execution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import httpx
import pytest

from ferry_core.aql import AqlClient, folder_contents_query, paginate, rfc3339, time_window_query
from ferry_core.config.models import ServerConfig
from ferry_core.errors import AgentProtocolError
from ferry_core.http import ServerHttpClient

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


# ── Query text ───────────────────────────────────────────────────────


def test_folder_query_text():
    assert folder_contents_query("libs", "org/acme") == (
        'items.find({"type":"any","$and":[{"repo":"libs","path":{"$eq":"org/acme"},"name":{"$match":"*"}}]})'
        '.include("repo","path","name","type")'
    )


def test_time_window_query_text():
    assert time_window_query("libs", T0, T0 + timedelta(minutes=15)) == (
        'items.find({"type":"file","$and":[{"repo":"libs"},'
        '{"modified":{"$gte":"2025-03-01T12:00:00Z"}},{"modified":{"$lt":"2025-03-01T12:15:00Z"}}]})'
        '.include("repo","path","name")'
    )


def test_queries_are_deterministic():
    assert folder_contents_query("r", ".") == folder_contents_query("r", ".")
    end = T0 + timedelta(minutes=15)
    assert time_window_query("r", T0, end) == time_window_query("r", T0, end)


def test_query_values_are_escaped():
    q = folder_contents_query("r", 'we"ird')
    assert '"$eq":"we\\"ird"' in q


def test_rfc3339_normalises_to_utc():
    plus_two = timezone(timedelta(hours=2))
    assert rfc3339(datetime(2025, 3, 1, 14, 0, tzinfo=plus_two)) == "2025-03-01T12:00:00Z"


def test_rfc3339_rejects_naive():
    with pytest.raises(ValueError):
        rfc3339(datetime(2025, 3, 1, 12, 0))


def test_paginate():
    assert paginate("items.find({})", 20, 10) == 'items.find({}).sort({"$asc":["path","name"]}).offset(20).limit(10)'


# ── Client ───────────────────────────────────────────────────────────


def _aql_client(handler, page_size: int = 2) -> AqlClient:
    http = ServerHttpClient(
        ServerConfig(url="https://source.example.com/", access_token="t"),
        transport=httpx.MockTransport(handler),
        retry_delay=0,
    )
    return AqlClient(http, page_size=page_size)


def test_iter_pages_until_short_page():
    pages = [
        [{"repo": "r", "path": ".", "name": "a"}, {"repo": "r", "path": ".", "name": "b"}],
        [{"repo": "r", "path": ".", "name": "c"}],
    ]
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content.decode())
        assert request.headers["content-type"] == "text/plain"
        return httpx.Response(200, json={"results": pages[len(bodies) - 1]})

    result = list(_aql_client(handler).iter_pages("items.find({})"))
    assert [[i.name for i in page] for page in result] == [["a", "b"], ["c"]]
    assert bodies[0].endswith(".offset(0).limit(2)")
    assert bodies[1].endswith(".offset(2).limit(2)")


def test_iter_pages_empty():
    client = _aql_client(lambda r: httpx.Response(200, json={"results": []}))
    assert list(client.iter_pages("items.find({})")) == []


def test_folder_type_parsed():
    client = _aql_client(
        lambda r: httpx.Response(200, json={"results": [{"repo": "r", "path": ".", "name": "d", "type": "folder"}]})
    )
    assert client.search("q")[0].type == "folder"


def test_bad_result_shape():
    client = _aql_client(lambda r: httpx.Response(200, json=[1, 2, 3]))
    with pytest.raises(AgentProtocolError):
        client.search("q")
