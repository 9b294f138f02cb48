from __future__ import annotations

import asyncio
import json
import re
import threading
from pathlib import Path

import pytest

from assetpack_engine.config import EngineConfig
from assetpack_engine.errors import BackendFailure, GenerationInFlight, ValidationFailure
from assetpack_engine.layout import Section
from assetpack_engine.providers.base import HealthReport, ImageArtifact, LoraInfo, ProgressSnapshot
from assetpack_engine.runs.events import EventWriter, read_events
from assetpack_engine.runs.receipts import GenerationJob
from assetpack_engine.session import controller as controller_module
from assetpack_engine.session.controller import SectionController
from assetpack_engine.session.state import FinalSelection, GlobalSettings, Outcome, SessionState


class FakeBackend:
    name = "fake"

    def __init__(self, gate: threading.Event | None = None, fail: Exception | None = None) -> None:
        self.gate = gate
        self.fail = fail
        self.started = threading.Event()
        self.jobs: list[GenerationJob] = []
        self._counter = 0

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        self.jobs.append(job)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail is not None:
            raise self.fail
        artifacts = []
        for _ in range(job.variant_count):
            self._counter += 1
            artifacts.append(ImageArtifact(data=f"img-{self._counter}".encode(), width=job.width, height=job.height))
        return artifacts

    def progress(self) -> ProgressSnapshot:
        return ProgressSnapshot(percent=50, current_step=10, total_steps=20)

    def list_loras(self) -> list[LoraInfo]:
        return []

    def health(self) -> HealthReport:
        return HealthReport(ok=True, status="ok")


def _controller(
    backend: FakeBackend,
    prompt: str = "pirate treasure",
    events: EventWriter | None = None,
) -> SectionController:
    section = Section("Symbol Icon 1", 256, 256, kind="symbol")
    settings = GlobalSettings(prompt=prompt, variant_count=3)
    config = EngineConfig(poll_interval=0.01)
    return SectionController(section, backend, settings, FinalSelection(), config=config, events=events)


def test_generate_replaces_gallery() -> None:
    backend = FakeBackend()
    controller = _controller(backend)
    artifacts = asyncio.run(controller.generate())
    assert len(artifacts) == 3
    assert controller.gallery == artifacts
    job = backend.jobs[0]
    assert (job.width, job.height, job.variant_count) == (256, 256, 3)
    assert job.prompt == "pirate treasure"
    assert artifacts[0].metadata["job"]["prompt"] == "pirate treasure"
    assert controller.state is SessionState.IDLE
    assert controller.last_outcome is Outcome.SUCCESS

    asyncio.run(controller.generate(variant_count=1))
    assert len(controller.gallery) == 1


def test_regenerate_replaces_single_index() -> None:
    backend = FakeBackend()
    controller = _controller(backend)
    controller.settings.variant_count = 5
    asyncio.run(controller.generate())
    before = list(controller.gallery)

    replacement = asyncio.run(controller.regenerate(2))

    assert backend.jobs[-1].variant_count == 1
    assert controller.gallery[2] == replacement
    assert controller.gallery[2] != before[2]
    for idx in (0, 1, 3, 4):
        assert controller.gallery[idx] is before[idx]


def test_regenerate_rejects_bad_index() -> None:
    backend = FakeBackend()
    controller = _controller(backend)
    with pytest.raises(ValidationFailure):
        asyncio.run(controller.regenerate(0))
    assert backend.jobs == []


def test_discard_shifts_following_variants() -> None:
    controller = _controller(FakeBackend())
    asyncio.run(controller.generate())
    first, second, third = controller.gallery
    removed = controller.discard(1)
    assert removed is second
    assert controller.gallery == [first, third]
    with pytest.raises(ValidationFailure):
        controller.discard(5)


def test_set_as_final_overwrites_entry() -> None:
    controller = _controller(FakeBackend())
    asyncio.run(controller.generate())
    controller.set_as_final(0)
    controller.set_dimensions(128, 96)
    controller.set_as_final(2)
    entry = controller.finals.get("Symbol Icon 1")
    assert entry is not None
    assert entry.artifact is controller.gallery[2]
    assert (entry.width, entry.height) == (128, 96)
    assert len(controller.finals) == 1


def test_final_selection_notifies_subscribers() -> None:
    controller = _controller(FakeBackend())
    asyncio.run(controller.generate())
    seen: list[str] = []
    unsubscribe = controller.finals.subscribe(lambda title, entry: seen.append(title))
    controller.set_as_final(1)
    snapshot = controller.finals.snapshot()
    unsubscribe()
    controller.set_as_final(0)
    assert seen == ["Symbol Icon 1"]
    assert snapshot["Symbol Icon 1"].artifact is controller.gallery[1]
    assert "Symbol Icon 1" in controller.finals


def test_download_names_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    controller = _controller(FakeBackend())
    asyncio.run(controller.generate())
    monkeypatch.setattr(controller_module, "epoch_ms", lambda: 1700000000000)
    first = controller.download(0, tmp_path)
    second = controller.download(0, tmp_path)
    assert first.name == "symbol-icon-1-1700000000000.png"
    assert second.name == "symbol-icon-1-1700000000000-1.png"
    assert first.read_bytes() == controller.gallery[0].data
    assert re.match(r"^symbol-icon-1-\d+(-\d+)?\.png$", second.name)


def test_empty_prompt_never_reaches_backend() -> None:
    backend = FakeBackend()
    controller = _controller(backend, prompt="   ")
    with pytest.raises(ValidationFailure):
        asyncio.run(controller.generate())
    assert backend.jobs == []
    assert controller.state is SessionState.IDLE


def test_second_job_rejected_while_in_flight() -> None:
    gate = threading.Event()
    backend = FakeBackend(gate=gate)
    controller = _controller(backend)

    async def scenario() -> None:
        task = asyncio.create_task(controller.generate())
        await asyncio.sleep(0)
        assert controller.in_flight
        with pytest.raises(GenerationInFlight):
            await controller.generate()
        gate.set()
        await task

    asyncio.run(scenario())
    assert len(backend.jobs) == 1
    assert len(controller.gallery) == 3


def test_progress_reaches_listeners_and_clears() -> None:
    gate = threading.Event()
    backend = FakeBackend(gate=gate)
    controller = _controller(backend)
    views = []
    controller.subscribe(views.append)

    async def scenario() -> None:
        task = asyncio.create_task(controller.generate())
        for _ in range(500):
            if any(view.progress is not None for view in views):
                break
            await asyncio.sleep(0.01)
        gate.set()
        await task

    asyncio.run(scenario())
    states = [view.state for view in views]
    assert SessionState.SUBMITTING in states
    assert SessionState.POLLING in states
    assert any(view.progress and view.progress.percent == 50 for view in views)
    assert views[-1].state is SessionState.IDLE
    assert views[-1].progress is None


def test_failure_keeps_previous_gallery(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    backend = FakeBackend()
    controller = _controller(backend, events=EventWriter(events_path, "run-1"))
    asyncio.run(controller.generate())
    before = list(controller.gallery)

    backend.fail = BackendFailure("A1111 request failed", status=500)
    with pytest.raises(BackendFailure):
        asyncio.run(controller.generate())

    assert controller.gallery == before
    view = controller.view()
    assert view.state is SessionState.IDLE
    assert view.last_outcome is Outcome.FAILURE
    assert view.last_error == "A1111 request failed (500)"
    events = read_events(events_path)
    failed = [event for event in events if event["type"] == "generation_failed"]
    assert failed[0]["status"] == 500
    assert failed[0]["section"] == "Symbol Icon 1"
    assert all("img-" not in json.dumps(event) for event in events)


def test_unexpected_errors_become_backend_failures() -> None:
    backend = FakeBackend(fail=RuntimeError("socket closed"))
    controller = _controller(backend)
    with pytest.raises(BackendFailure) as excinfo:
        asyncio.run(controller.generate())
    assert "socket closed" in str(excinfo.value)
    assert controller.gallery == []


def test_failed_regenerate_keeps_entry() -> None:
    backend = FakeBackend()
    controller = _controller(backend)
    asyncio.run(controller.generate())
    before = list(controller.gallery)

    backend.fail = BackendFailure("A1111 request failed", status=502)
    with pytest.raises(BackendFailure):
        asyncio.run(controller.regenerate(1))

    assert len(controller.gallery) == len(before)
    for idx, artifact in enumerate(before):
        assert controller.gallery[idx] is artifact
    assert controller.regenerating_index is None
    assert controller.state is SessionState.IDLE
    assert controller.last_outcome is Outcome.FAILURE


class SlowProgressBackend(FakeBackend):
    def __init__(self, gate: threading.Event) -> None:
        super().__init__(gate=gate)
        self.progress_entered = threading.Event()
        self.progress_release = threading.Event()

    def progress(self) -> ProgressSnapshot:
        self.progress_entered.set()
        self.progress_release.wait(5)
        return ProgressSnapshot(percent=77)


def test_late_progress_tick_is_discarded() -> None:
    gate = threading.Event()
    backend = SlowProgressBackend(gate)
    controller = _controller(backend)
    views = []
    controller.subscribe(views.append)

    async def scenario() -> None:
        task = asyncio.create_task(controller.generate())
        for _ in range(500):
            if backend.progress_entered.is_set():
                break
            await asyncio.sleep(0.01)
        gate.set()
        await task
        backend.progress_release.set()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert backend.progress_entered.is_set()
    assert controller.progress is None
    settled = max(idx for idx, view in enumerate(views) if view.state is SessionState.IDLE)
    assert settled == len(views) - 1
    assert all(view.progress is None for view in views[settled:])

    controller._apply_progress(controller._job_counter, ProgressSnapshot(percent=99))
    assert controller.progress is None


def test_listener_error_still_settles_section() -> None:
    backend = FakeBackend()
    controller = _controller(backend)

    def fragile_listener(view) -> None:
        if view.state is SessionState.SUBMITTING:
            raise RuntimeError("render failed")

    unsubscribe = controller.subscribe(fragile_listener)
    with pytest.raises(BackendFailure, match="render failed"):
        asyncio.run(controller.generate())
    assert controller.state is SessionState.IDLE
    assert not controller.in_flight
    assert controller.last_error is not None

    unsubscribe()
    asyncio.run(controller.generate())
    assert len(controller.gallery) == 3
