from .client import PLUGIN_PREFIX, SourceAgentClient
from .models import (
    ChunkState,
    ChunkStatus,
    FileOutcome,
    FileRef,
    FileStatus,
    PropertiesDiffRequest,
    PropertiesDiffResponse,
    TargetAuth,
    UploadChunk,
)

__all__ = [
    "ChunkState",
    "ChunkStatus",
    "FileOutcome",
    "FileRef",
    "FileStatus",
    "PLUGIN_PREFIX",
    "PropertiesDiffRequest",
    "PropertiesDiffResponse",
    "SourceAgentClient",
    "TargetAuth",
    "UploadChunk",
]
