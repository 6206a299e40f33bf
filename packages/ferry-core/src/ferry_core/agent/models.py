"""Wire models for the source agent's REST surface."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class FileRef(WireModel):
    """A file (or empty folder) inside a repository."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    repo: str
    path: str
    name: str


class TargetAuth(WireModel):
    target_url: str
    target_token: str | None = None
    target_username: str | None = None
    target_password: str | None = None


class UploadChunk(WireModel):
    target_auth: TargetAuth
    check_existence_in_filestore: bool = False
    upload_candidates: list[FileRef] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        payload = self.target_auth.to_wire()
        payload["checkExistenceInFilestore"] = self.check_existence_in_filestore
        payload["uploadCandidates"] = [f.to_wire() for f in self.upload_candidates]
        return payload


class ChunkState(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class FileStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    SKIPPED_LARGE_PROPS = "SKIPPED_LARGE_PROPS"


class FileOutcome(WireModel):
    repo: str
    path: str
    name: str
    status: FileStatus
    status_code: int = 0
    reason: str = ""

    @property
    def ref(self) -> FileRef:
        return FileRef(repo=self.repo, path=self.path, name=self.name)


class ChunkStatus(WireModel):
    uuid_token: str
    status: ChunkState
    files: list[FileOutcome] = Field(default_factory=list)


class ChunksStatusResponse(WireModel):
    chunks_status: list[ChunkStatus] = Field(default_factory=list)


class NodeIdResponse(WireModel):
    node_id: str


class UploadChunkResponse(WireModel):
    uuid_token: str = ""


class PropertiesDiffRequest(WireModel):
    repo_key: str
    from_time: datetime
    to_time: datetime
    cookie: str = ""


class PropertiesDiffResponse(WireModel):
    """One page of properties mutations; an empty cookie means no more pages."""

    node_id: str = ""
    cookie: str = ""
    properties_delivered: int = 0
    properties_total: int = 0
    errors: list[FileOutcome] = Field(default_factory=list)

    @property
    def has_more(self) -> bool:
        return bool(self.cookie)
