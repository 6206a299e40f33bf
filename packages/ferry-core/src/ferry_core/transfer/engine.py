"""Drives the transfer phases over every selected repository."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from ferry_core.agent.client import SourceAgentClient
from ferry_core.agent.models import TargetAuth
from ferry_core.aql.client import AqlClient
from ferry_core.config.models import ServerConfig, TransferConfig
from ferry_core.errors import RepositoryNotFoundError, TransferError, TransferInterruptedError
from ferry_core.http import ServerAuth, ServerHttpClient
from ferry_core.interfaces.catalog import RepositoryCatalog
from ferry_core.interfaces.identity import IdentityProvider
from ferry_core.interfaces.sinks import OutcomeSink, ProgressSink
from ferry_core.state.store import StateStore
from ferry_core.transfer.catalog import HttpRepositoryCatalog
from ferry_core.transfer.filesdiff import FilesDiffPhase
from ferry_core.transfer.migration import MigrationPhase
from ferry_core.transfer.outcomes import OutcomeLog
from ferry_core.transfer.phases import Phase, PhaseContext
from ferry_core.transfer.progress import NullProgressSink
from ferry_core.transfer.propsdiff import PropertiesDiffPhase
from ferry_core.transfer.retry import ErrorsRetryPhase

logger = logging.getLogger(__name__)

PHASES: tuple[type[Phase], ...] = (MigrationPhase, FilesDiffPhase, PropertiesDiffPhase, ErrorsRetryPhase)

STOP_FILE = "stop"


def transfer_dir_for(config: TransferConfig) -> Path:
    return Path(config.home_dir).expanduser() / "transfer"


def request_stop(config: TransferConfig) -> Path:
    """Ask a running transfer to stop at its next check."""
    path = transfer_dir_for(config) / STOP_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()
    return path


def target_auth_for(target: ServerConfig) -> TargetAuth:
    if target.access_token:
        return TargetAuth(target_url=target.url, target_token=target.access_token)
    return TargetAuth(target_url=target.url, target_username=target.user, target_password=target.password)


def detect_nodes(agent: SourceAgentClient, requests: int) -> list[str]:
    """Ping the source repeatedly and collect every node id that answers."""
    nodes = {agent.ping() for _ in range(requests)}
    logger.info("Detected %d source node(s) in %d ping(s)", len(nodes), requests)
    return sorted(nodes)


@dataclass
class RunReport:
    run_id: str
    repositories: list[str] = field(default_factory=list)
    missing_on_target: list[str] = field(default_factory=list)
    phases_run: list[tuple[str, str]] = field(default_factory=list)
    phases_planned: list[tuple[str, str]] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    nodes: list[str] = field(default_factory=list)


class TransferEngine:
    """Moves every selected repository of a source server to a target server."""

    def __init__(
        self,
        identity: IdentityProvider,
        source_id: str,
        target_id: str,
        config: TransferConfig,
        *,
        progress: ProgressSink | None = None,
        outcomes: OutcomeSink | None = None,
        source_catalog: RepositoryCatalog | None = None,
        target_catalog: RepositoryCatalog | None = None,
        dry_run: bool = False,
        check_existence_in_filestore: bool | None = None,
        source_transport: httpx.BaseTransport | None = None,
        target_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.dry_run = dry_run
        self.check_existence_in_filestore = (
            config.check_existence_in_filestore
            if check_existence_in_filestore is None
            else check_existence_in_filestore
        )
        self.transfer_dir = transfer_dir_for(config)
        self.run_id = str(int(time.time() * 1000))
        self.state = StateStore(self.transfer_dir, properties_diff_enabled=config.properties_diff)
        self.progress = progress or NullProgressSink()
        self.outcomes = outcomes or OutcomeLog(self.transfer_dir, self.run_id)

        self.identity = identity
        self.source_id = source_id
        self.target_id = target_id
        http_opts = dict(timeout=config.timeout, max_retries=config.max_retries, retry_delay=config.retry_delay)
        self.agent = SourceAgentClient(
            identity.get_server(source_id),
            transport=source_transport,
            auth=ServerAuth.from_provider(identity, source_id),
            **http_opts,
        )
        self.aql = AqlClient(self.agent, page_size=config.aql_page_size)
        self._target_http = ServerHttpClient(
            identity.get_server(target_id),
            transport=target_transport,
            auth=ServerAuth.from_provider(identity, target_id),
            **http_opts,
        )
        self.source_catalog = source_catalog or HttpRepositoryCatalog(self.agent)
        self.target_catalog = target_catalog or HttpRepositoryCatalog(self._target_http)
        self.report = RunReport(run_id=self.run_id)

    @property
    def stop_path(self) -> Path:
        return self.transfer_dir / STOP_FILE

    def target_auth(self) -> TargetAuth:
        """Target credentials for the next chunk, looked up afresh each time."""
        return target_auth_for(self.identity.get_server(self.target_id))

    def stop_requested(self) -> bool:
        return self.stop_path.exists()

    def close(self) -> None:
        self.agent.close()
        self._target_http.close()

    def context(self) -> PhaseContext:
        return PhaseContext(
            agent=self.agent,
            aql=self.aql,
            state=self.state,
            outcomes=self.outcomes,
            config=self.config,
            target_auth=self.target_auth,
            transfer_dir=self.transfer_dir,
            run_id=self.run_id,
            progress=self.progress,
            check_existence_in_filestore=self.check_existence_in_filestore,
            stop_requested=self.stop_requested,
        )

    def run(self) -> RunReport:
        """Transfer every selected repository.

        Raises the first phase error once all repositories had their turn,
        or TransferInterruptedError as soon as a stop is requested.
        """
        if not self.dry_run:
            self.stop_path.unlink(missing_ok=True)
            self._prepare_source()

        repos = self._select_repositories()
        ctx = self.context()
        first_error: Exception | None = None
        for repo_key in repos:
            error = self._transfer_repository(ctx, repo_key)
            if error is not None:
                self.report.failed[repo_key] = str(error)
                first_error = first_error or error

        if first_error is not None:
            raise first_error
        return self.report

    def _prepare_source(self) -> None:
        if self.state.is_clean_start():
            node_id = self.agent.clean_start()
            logger.info("Clean start acknowledged by source node %s", node_id)
            self.state.set_nodes(detect_nodes(self.agent, self.config.node_detection_requests))
        self.report.nodes = self.state.get_nodes()

    def _select_repositories(self) -> list[str]:
        candidates = self.source_catalog.list_repositories(
            self.config.include_repos or None, self.config.exclude_repos or None
        )
        selected = []
        for repo_key in candidates:
            try:
                self._require_on_target(repo_key)
            except RepositoryNotFoundError as e:
                logger.warning("Skipping %s: %s", repo_key, e)
                self.report.missing_on_target.append(repo_key)
                continue
            selected.append(repo_key)
        self.report.repositories = selected
        return selected

    def _require_on_target(self, repo_key: str) -> None:
        if not self.target_catalog.exists(repo_key):
            raise RepositoryNotFoundError(repo_key, self.target_id)

    def _transfer_repository(self, ctx: PhaseContext, repo_key: str) -> Exception | None:
        for phase_cls in PHASES:
            if self.stop_requested():
                raise TransferInterruptedError("stop requested", "transfer")
            phase = phase_cls(ctx, repo_key)
            if self.dry_run:
                if phase.planned():
                    self.report.phases_planned.append((repo_key, phase.name))
                continue
            if phase.should_skip():
                logger.info("Skipping phase %s for %s", phase.name, repo_key)
                continue
            try:
                phase.run()
            except (TransferError, ValueError, OSError) as e:
                if isinstance(e, TransferError) and e.fatal:
                    raise
                logger.error("Aborting %s after %s failed: %s", repo_key, phase.name, e)
                return e
            self.report.phases_run.append((repo_key, phase.name))
        return None
