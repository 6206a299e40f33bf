"""Shared test fixtures for Ferry."""

from __future__ import annotations

import itertools
import json
import re
import threading
from pathlib import Path

import httpx
import pytest

from ferry_core.agent.client import SourceAgentClient
from ferry_core.config import FerryConfig, ServerConfig, ServerRegistry, TransferConfig

_EQ_PATH = re.compile(r'"path":\{"\$eq":("(?:[^"\\]|\\.)*")\}')
_OFFSET = re.compile(r"\.offset\((\d+)\)")


def aql_item(name: str, path: str = ".", type_: str = "file", repo: str = "R") -> dict:
    return {"repo": repo, "path": path, "name": name, "type": type_}


class FakeSource:
    """In-memory stand-in for the source server: AQL, repositories and the agent plugin.

    Chunks are accepted asynchronously (202) unless ``sync`` is set, and each
    token reports DONE on its ``ticks_to_done``-th status poll.
    """

    def __init__(self) -> None:
        self.repos: list[str] = ["R"]
        self.folders: dict[str, list[dict]] = {}
        self.window_items: list[dict] = []
        self.file_statuses: dict[str, tuple[str, str]] = {}
        self.sync = False
        self.ticks_to_done = 1
        self.busy_responses = 0
        self.node_ids = ["node-a"]
        self.props_pages = 1

        self.aql_queries: list[str] = []
        self.chunks: list[list[dict]] = []
        self.chunk_payloads: list[dict] = []
        self.status_requests: list[list[str]] = []
        self.props_requests: list[dict] = []
        self.stored_properties: list[str] = []
        self.pings = 0
        self.clean_starts = 0
        self.done_tokens: list[str] = []
        self.auth_headers: list[tuple[str, str | None]] = []
        self.max_outstanding = 0

        self._lock = threading.Lock()
        self._token_ids = itertools.count(1)
        self._polls: dict[str, int] = {}
        self._token_files: dict[str, list[dict]] = {}
        self._outstanding: set[str] = set()
        self._node_cycle = None

    # -- views -------------------------------------------------------------

    @property
    def folder_queries(self) -> list[str]:
        return [q for q in self.aql_queries if '"$eq"' in q]

    @property
    def window_queries(self) -> list[str]:
        return [q for q in self.aql_queries if '"modified"' in q]

    # -- transport ---------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        with self._lock:
            self.auth_headers.append((path.rsplit("/", 1)[-1], request.headers.get("authorization")))
            if path.endswith("/api/search/aql"):
                return self._aql(request.content.decode())
            if path.endswith("/api/repositories"):
                return httpx.Response(200, json=[{"key": r, "type": "LOCAL"} for r in self.repos])
            if path.endswith("/pingDataTransfer"):
                return self._ping()
            if path.endswith("/cleanStart"):
                self.clean_starts += 1
                return httpx.Response(200, json={"nodeId": self.node_ids[0]})
            if path.endswith("/uploadChunk"):
                return self._upload(json.loads(request.content))
            if path.endswith("/getUploadChunksStatus"):
                return self._status(json.loads(request.content)["uuidTokens"])
            if path.endswith("/handlePropertiesDiff"):
                return self._props(json.loads(request.content))
            if path.endswith("/storeProperties"):
                self.stored_properties.append(request.url.params["repoKey"])
                return httpx.Response(200, json={})
        return httpx.Response(404, text="not found")

    def _aql(self, query: str) -> httpx.Response:
        self.aql_queries.append(query)
        offset = int(_OFFSET.search(query).group(1)) if _OFFSET.search(query) else 0
        if offset:
            return httpx.Response(200, json={"results": []})
        m = _EQ_PATH.search(query)
        results = self.folders.get(json.loads(m.group(1)), []) if m else self.window_items
        return httpx.Response(200, json={"results": results})

    def _ping(self) -> httpx.Response:
        self.pings += 1
        if self._node_cycle is None:
            self._node_cycle = itertools.cycle(self.node_ids)
        return httpx.Response(200, json={"nodeId": next(self._node_cycle)})

    def _upload(self, body: dict) -> httpx.Response:
        if self.busy_responses > 0:
            self.busy_responses -= 1
            return httpx.Response(409, text="queue full")
        self.chunk_payloads.append(body)
        self.chunks.append(body["uploadCandidates"])
        if self.sync:
            return httpx.Response(200)
        token = f"tok-{next(self._token_ids)}"
        self._polls[token] = 0
        self._token_files[token] = body["uploadCandidates"]
        self._outstanding.add(token)
        self.max_outstanding = max(self.max_outstanding, len(self._outstanding))
        return httpx.Response(202, json={"uuidToken": token})

    def _status(self, tokens: list[str]) -> httpx.Response:
        self.status_requests.append(list(tokens))
        chunks = []
        for token in tokens:
            self._polls[token] += 1
            if self._polls[token] < self.ticks_to_done:
                chunks.append({"uuidToken": token, "status": "IN_PROGRESS"})
                continue
            files = []
            for f in self._token_files[token]:
                status, reason = self.file_statuses.get(f["name"], ("SUCCESS", ""))
                files.append({**f, "status": status, "statusCode": 0, "reason": reason})
            self._outstanding.discard(token)
            self.done_tokens.append(token)
            chunks.append({"uuidToken": token, "status": "DONE", "files": files})
        return httpx.Response(200, json={"chunksStatus": chunks})

    def _props(self, body: dict) -> httpx.Response:
        self.props_requests.append(body)
        page = int(body["cookie"] or 0) + 1
        cookie = str(page) if page < self.props_pages else ""
        return httpx.Response(
            200,
            json={"nodeId": "node-a", "cookie": cookie, "propertiesDelivered": 1, "propertiesTotal": self.props_pages},
        )


class FakeTarget:
    """Target server that knows a fixed set of repositories."""

    def __init__(self, repos: list[str] | None = None) -> None:
        self.repos = repos if repos is not None else ["R"]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        key = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        if key in self.repos:
            return httpx.Response(200, json={"key": key})
        return httpx.Response(400, json={"errors": [{"status": 400, "message": "Bad Request"}]})


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def source_server() -> ServerConfig:
    return ServerConfig(url="https://source.example.com/artifactory/", access_token="src-token")


@pytest.fixture
def target_server() -> ServerConfig:
    return ServerConfig(url="https://target.example.com/artifactory/", user="admin", password="secret")


@pytest.fixture
def identity(source_server: ServerConfig, target_server: ServerConfig) -> ServerRegistry:
    return ServerRegistry(FerryConfig(servers={"source": source_server, "target": target_server}))


@pytest.fixture
def transfer_config(tmp_path: Path) -> TransferConfig:
    """Fast intervals, a private home directory and no retry sleeps."""
    return TransferConfig(
        threads=2,
        chunk_size=16,
        home_dir=str(tmp_path / "home"),
        poll_interval=0.01,
        acquire_interval=0.01,
        node_detection_requests=5,
        retry_delay=0,
        max_retries=1,
    )


@pytest.fixture
def agent(fake_source: FakeSource, source_server: ServerConfig) -> SourceAgentClient:
    client = SourceAgentClient(source_server, retry_delay=0, transport=fake_source.transport())
    yield client
    client.close()
