"""Paged AQL execution against the source server."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Literal

from pydantic import BaseModel, ValidationError

from ferry_core.aql.queries import paginate
from ferry_core.errors import AgentProtocolError
from ferry_core.http import ServerHttpClient, parse_json

logger = logging.getLogger(__name__)

AQL_PATH = "api/search/aql"


class AqlItem(BaseModel):
    repo: str
    path: str
    name: str
    type: Literal["file", "folder"] = "file"


class AqlClient:
    """Runs AQL queries through a server client, one page at a time."""

    def __init__(self, http: ServerHttpClient, page_size: int = 10000) -> None:
        self._http = http
        self.page_size = page_size

    def search(self, query: str) -> list[AqlItem]:
        """Run a single query without paging."""
        op = "aql search"
        resp = self._http.request(
            "POST", AQL_PATH, op, content=query.encode(), headers={"Content-Type": "text/plain"}
        )
        data = parse_json(resp, op)
        try:
            return [AqlItem.model_validate(r) for r in data.get("results", [])]
        except (ValidationError, AttributeError) as e:
            raise AgentProtocolError("unexpected AQL result shape", op, body=resp.text, cause=e) from e

    def iter_pages(self, query: str) -> Iterator[list[AqlItem]]:
        """Yield result pages until a short page signals the end."""
        offset = 0
        while True:
            page = self.search(paginate(query, offset, self.page_size))
            logger.debug("AQL page at offset %d returned %d item(s)", offset, len(page))
            if page:
                yield page
            if len(page) < self.page_size:
                return
            offset += self.page_size
