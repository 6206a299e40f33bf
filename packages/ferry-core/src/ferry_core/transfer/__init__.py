"""Phases, scheduling and the driver of a source-to-target transfer."""

from ferry_core.transfer.catalog import HttpRepositoryCatalog, filter_repositories
from ferry_core.transfer.coordinator import ChunkCoordinator
from ferry_core.transfer.engine import RunReport, TransferEngine, detect_nodes, request_stop, transfer_dir_for
from ferry_core.transfer.filesdiff import FilesDiffPhase
from ferry_core.transfer.migration import MigrationPhase
from ferry_core.transfer.outcomes import OutcomeLog, read_records
from ferry_core.transfer.phases import (
    ChunkBuilder,
    FolderTask,
    Phase,
    PhaseContext,
    PropertiesCursorTask,
    RetryFileTask,
    TimeWindowTask,
    split_time_range,
)
from ferry_core.transfer.progress import NullProgressSink, RichProgressSink
from ferry_core.transfer.propsdiff import PropertiesDiffPhase
from ferry_core.transfer.retry import ErrorsRetryPhase
from ferry_core.transfer.runner import PhaseRunner

__all__ = [
    "ChunkBuilder",
    "ChunkCoordinator",
    "ErrorsRetryPhase",
    "FilesDiffPhase",
    "FolderTask",
    "HttpRepositoryCatalog",
    "MigrationPhase",
    "NullProgressSink",
    "OutcomeLog",
    "Phase",
    "PhaseContext",
    "PhaseRunner",
    "PropertiesCursorTask",
    "PropertiesDiffPhase",
    "RetryFileTask",
    "RichProgressSink",
    "RunReport",
    "TimeWindowTask",
    "TransferEngine",
    "detect_nodes",
    "filter_repositories",
    "read_records",
    "request_stop",
    "split_time_range",
    "transfer_dir_for",
]
