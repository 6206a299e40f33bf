"""Typed client for the data-transfer plugin running on the source server."""

from __future__ import annotations

import logging
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ferry_core.agent.models import (
    ChunksStatusResponse,
    ChunkStatus,
    NodeIdResponse,
    PropertiesDiffRequest,
    PropertiesDiffResponse,
    UploadChunk,
    UploadChunkResponse,
)
from ferry_core.errors import AgentBusyError, AgentProtocolError
from ferry_core.http import ServerHttpClient, parse_json

logger = logging.getLogger(__name__)

PLUGIN_PREFIX = "api/plugins/execute/"

M = TypeVar("M", bound=BaseModel)


def _decode(resp: httpx.Response, model: type[M], operation: str) -> M:
    data = parse_json(resp, operation)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise AgentProtocolError(
            f"unexpected response shape: {e.error_count()} error(s)",
            operation,
            body=resp.text,
            cause=e,
        ) from e


class SourceAgentClient(ServerHttpClient):
    """Operations exposed by the source-side transfer agent."""

    def _plugin(self, name: str) -> str:
        return PLUGIN_PREFIX + name

    def ping(self) -> str:
        """Return the id of whichever cluster node answered."""
        resp = self.request("GET", self._plugin("pingDataTransfer"), "ping")
        return _decode(resp, NodeIdResponse, "ping").node_id

    def clean_start(self) -> str:
        resp = self.request("POST", self._plugin("cleanStart"), "clean start")
        return _decode(resp, NodeIdResponse, "clean start").node_id

    def upload_chunk(self, chunk: UploadChunk) -> str:
        """Hand a chunk to the agent.

        Returns the polling token, or "" when the agent finished synchronously.
        Raises AgentBusyError when the agent's queue is full.
        """
        op = "upload chunk"
        resp = self.request(
            "POST", self._plugin("uploadChunk"), op, allow=(409,), json=chunk.to_wire()
        )
        if resp.status_code == 409:
            raise AgentBusyError("agent upload queue is full", op)
        if resp.status_code == 200:
            return ""
        if resp.status_code != 202:
            raise AgentProtocolError(
                f"unexpected HTTP {resp.status_code}", op, body=resp.text, status_code=resp.status_code
            )
        token = _decode(resp, UploadChunkResponse, op).uuid_token
        if not token:
            raise AgentProtocolError("accepted chunk without a token", op, body=resp.text)
        return token

    def get_upload_chunks_status(self, tokens: list[str]) -> list[ChunkStatus]:
        op = "get upload chunks status"
        resp = self.request(
            "POST", self._plugin("getUploadChunksStatus"), op, json={"uuidTokens": list(tokens)}
        )
        return _decode(resp, ChunksStatusResponse, op).chunks_status

    def handle_properties_diff(self, request: PropertiesDiffRequest) -> PropertiesDiffResponse:
        op = "handle properties diff"
        resp = self.request(
            "POST", self._plugin("handlePropertiesDiff"), op, json=request.to_wire()
        )
        return _decode(resp, PropertiesDiffResponse, op)

    def store_properties(self, repo_key: str) -> None:
        self.request(
            "POST", self._plugin("storeProperties"), "store properties", params={"repoKey": repo_key}
        )
        logger.debug("Agent stored property baseline for %s", repo_key)
