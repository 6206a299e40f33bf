"""Tests for chunk admission and token polling."""

from __future__ import annotations

import threading

import httpx
import pytest

from ferry_core.agent import FileOutcome, FileRef, FileStatus, SourceAgentClient, TargetAuth, UploadChunk
from ferry_core.errors import NetworkTransientError
from ferry_core.transfer.coordinator import ChunkCoordinator


def _chunk(i: int) -> UploadChunk:
    return UploadChunk(
        target_auth=TargetAuth(target_url="https://target.example.com/", target_token="t"),
        upload_candidates=[FileRef(repo="R", path=".", name=f"f{i}.bin")],
    )


def _coordinator(agent: SourceAgentClient, threads: int = 2, **kwargs):
    outcomes: list[FileOutcome] = []
    lock = threading.Lock()

    def record(outcome: FileOutcome) -> None:
        with lock:
            outcomes.append(outcome)

    coordinator = ChunkCoordinator(
        agent, threads, on_outcome=record, poll_interval=0.01, acquire_interval=0.01, **kwargs
    )
    return coordinator, outcomes


class TestAdmission:
    def test_try_acquire_bounded(self, agent):
        coordinator, _ = _coordinator(agent, threads=2)
        assert coordinator.try_acquire()
        assert coordinator.try_acquire()
        assert not coordinator.try_acquire()
        coordinator.release()
        assert coordinator.try_acquire()
        assert coordinator.in_flight == 2

    def test_release_without_acquire(self, agent):
        coordinator, _ = _coordinator(agent)
        with pytest.raises(RuntimeError):
            coordinator.release()

    def test_admission_pressure(self, agent, fake_source):
        """Ten chunks through two slots: never more than two in flight, all reach DONE."""
        fake_source.ticks_to_done = 3
        coordinator, outcomes = _coordinator(agent, threads=2)
        coordinator.start()

        def submit_range(start: int) -> None:
            for i in range(start, start + 5):
                coordinator.submit(_chunk(i))

        submitters = [threading.Thread(target=submit_range, args=(s,)) for s in (0, 5)]
        for t in submitters:
            t.start()
        for t in submitters:
            t.join()
        coordinator.finish()

        assert coordinator.peak_in_flight <= 2
        assert fake_source.max_outstanding <= 2
        assert len(fake_source.done_tokens) == 10
        assert len(outcomes) == 10
        assert coordinator.in_flight == 0

    def test_busy_agent_is_retried(self, agent, fake_source):
        fake_source.busy_responses = 3
        coordinator, outcomes = _coordinator(agent)
        coordinator.start()
        coordinator.submit(_chunk(1))
        coordinator.finish()
        assert len(fake_source.chunks) == 1
        assert [o.status for o in outcomes] == [FileStatus.SUCCESS]


class TestPolling:
    def test_sync_completion_needs_no_polling(self, agent, fake_source):
        fake_source.sync = True
        coordinator, outcomes = _coordinator(agent)
        coordinator.start()
        coordinator.submit(_chunk(1))
        coordinator.finish()
        assert fake_source.status_requests == []
        assert coordinator.in_flight == 0
        assert outcomes[0].name == "f1.bin"
        assert outcomes[0].status == FileStatus.SUCCESS

    def test_per_file_outcomes_forwarded(self, agent, fake_source):
        fake_source.file_statuses = {"f1.bin": ("FAIL", "checksum mismatch")}
        coordinator, outcomes = _coordinator(agent)
        coordinator.start()
        coordinator.submit(_chunk(1))
        coordinator.finish()
        assert outcomes[0].status == FileStatus.FAIL
        assert outcomes[0].reason == "checksum mismatch"

    def test_chunk_done_callback(self, agent):
        done: list[UploadChunk] = []
        coordinator, _ = _coordinator(agent, on_chunk_done=done.append)
        coordinator.start()
        coordinator.submit(_chunk(1))
        coordinator.finish()
        assert len(done) == 1

    def test_persistent_poll_failure_surfaces(self, source_server):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/uploadChunk"):
                return httpx.Response(202, json={"uuidToken": "t1"})
            return httpx.Response(502)

        agent = SourceAgentClient(source_server, max_retries=0, transport=httpx.MockTransport(handler))
        coordinator, _ = _coordinator(agent)
        coordinator.start()
        coordinator.submit(_chunk(1))
        with pytest.raises(NetworkTransientError):
            coordinator.finish()
        assert coordinator.cancel.is_set()

    def test_cancel_abandons_tokens(self, agent, fake_source):
        fake_source.ticks_to_done = 10_000
        coordinator, outcomes = _coordinator(agent)
        coordinator.start()
        coordinator.submit(_chunk(1))
        coordinator.cancel.set()
        coordinator.finish()
        assert outcomes == []
