from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from assetpack_engine.config import EngineConfig
from assetpack_engine.errors import BackendFailure, ValidationFailure
from assetpack_engine.layout import Section, reference_layout
from assetpack_engine.providers.base import HealthReport, ImageArtifact, LoraInfo, ProgressSnapshot
from assetpack_engine.prompts.expander import PromptBundle
from assetpack_engine.runs.events import EventWriter, read_events
from assetpack_engine.runs.receipts import GenerationJob
from assetpack_engine.session.board import AssetBoard


class PickyBackend:
    name = "picky"

    def __init__(self) -> None:
        self.jobs: list[GenerationJob] = []

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        self.jobs.append(job)
        if job.width == 32:
            raise BackendFailure("A1111 request failed", status=500)
        return [ImageArtifact(data=f"{job.width}-{idx}".encode()) for idx in range(job.variant_count)]

    def progress(self) -> ProgressSnapshot:
        return ProgressSnapshot()

    def list_loras(self) -> list[LoraInfo]:
        return []

    def health(self) -> HealthReport:
        return HealthReport(ok=True, status="ok")


class StaticExpander:
    def __init__(self, bundle: PromptBundle) -> None:
        self.bundle = bundle
        self.themes: list[str] = []

    def expand(self, theme: str) -> PromptBundle:
        self.themes.append(theme)
        return self.bundle


def _bundle() -> PromptBundle:
    return PromptBundle(
        background="stormy harbor",
        frame="rope frame",
        symbol_icons=tuple(f"symbol {idx}" for idx in range(20)),
        wild_icons=tuple(f"wild {idx}" for idx in range(5)),
    )


def test_generate_all_isolates_failures() -> None:
    backend = PickyBackend()
    sections = [
        Section("Coin", 64, 64, kind="symbol"),
        Section("Broken", 32, 32, kind="bonus"),
        Section("Gem", 48, 48, kind="symbol", slot=1),
    ]
    board = AssetBoard.from_layout(backend, sections)
    board.set_global_prompt("pirates")
    board.configure(variant_count=2)

    outcome = asyncio.run(board.generate_all())

    assert outcome["Coin"] is None
    assert outcome["Gem"] is None
    assert isinstance(outcome["Broken"], BackendFailure)
    assert len(board.get("Coin").gallery) == 2
    assert len(board.get("Gem").gallery) == 2
    assert board.get("Broken").gallery == []
    assert len(backend.jobs) == 3


def test_generate_all_requires_global_prompt() -> None:
    backend = PickyBackend()
    board = AssetBoard.from_layout(backend, [Section("Coin", 64, 64, kind="symbol")])
    board.get("Coin").edit_prompt("gold coin")
    with pytest.raises(ValidationFailure):
        asyncio.run(board.generate_all())
    assert backend.jobs == []


def test_global_prompt_respects_overrides() -> None:
    board = AssetBoard.from_layout(PickyBackend(), reference_layout())
    board.set_global_prompt("jungle")
    board.get("Background").edit_prompt("waterfall cave")
    board.set_global_prompt("volcano")
    assert board.get("Background").prompt.text == "waterfall cave"
    assert board.get("UI Frame").prompt.text == "volcano"
    board.get("Background").reset_prompt()
    assert board.get("Background").prompt.text == "volcano"


def test_register_rejects_duplicate_titles() -> None:
    board = AssetBoard(PickyBackend())
    board.add_section(Section("Coin", 64, 64, kind="symbol"))
    with pytest.raises(ValueError):
        board.add_section(Section("Coin", 32, 32, kind="symbol"))
    with pytest.raises(KeyError):
        board.get("Missing")


def test_configure_clamps_variant_count() -> None:
    board = AssetBoard(PickyBackend())
    board.configure(variant_count=42, lora="pixel-art-xl", style="ink", cfg_scale=11)
    assert board.settings.variant_count == 10
    assert board.settings.lora == "pixel-art-xl"
    assert board.settings.cfg_scale == 11.0


def test_apply_expansion_targets_slots() -> None:
    board = AssetBoard.from_layout(PickyBackend(), reference_layout())
    board.set_global_prompt("pirates")
    applied = board.apply_expansion(_bundle())
    assert applied == 27 - 1
    assert board.get("Background").prompt.text == "stormy harbor"
    assert board.get("UI Frame").prompt.text == "rope frame"
    assert board.get("Symbol Icon 3").prompt.text == "symbol 2"
    assert board.get("Wild Icon 5").prompt.text == "wild 4"
    assert board.get("Symbol Icon 3").prompt.overridden
    assert not board.get("Bonus Art").prompt.overridden
    board.set_global_prompt("ninjas")
    assert board.get("Symbol Icon 3").prompt.text == "symbol 2"
    assert board.get("Bonus Art").prompt.text == "ninjas"


def test_expand_prompts_emits_event(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    board = AssetBoard.from_layout(
        PickyBackend(),
        reference_layout(),
        events=EventWriter(events_path, "run-1"),
    )
    expander = StaticExpander(_bundle())
    with pytest.raises(ValidationFailure):
        asyncio.run(board.expand_prompts(expander))
    assert expander.themes == []

    board.set_global_prompt("pirates")
    asyncio.run(board.expand_prompts(expander))
    assert expander.themes == ["pirates"]
    events = read_events(events_path)
    assert events[-1]["type"] == "prompts_expanded"
    assert events[-1]["sections"] == 26


class GatedBackend(PickyBackend):
    def __init__(self, gate: threading.Event) -> None:
        super().__init__()
        self.gate = gate
        self.progress_calls = 0
        self._lock = threading.Lock()

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        self.gate.wait(5)
        return super().txt2img(job)

    def progress(self) -> ProgressSnapshot:
        with self._lock:
            self.progress_calls += 1
        return ProgressSnapshot(percent=40)


def test_progress_flows_while_every_section_is_generating() -> None:
    gate = threading.Event()
    backend = GatedBackend(gate)
    sections = [Section(f"Symbol Icon {idx + 1}", 64, 64, kind="symbol", slot=idx) for idx in range(6)]
    board = AssetBoard.from_layout(backend, sections, config=EngineConfig(poll_interval=0.02))
    board.set_global_prompt("pirates")
    seen_progress: set[str] = set()

    def _record(view) -> None:
        if view.progress is not None:
            seen_progress.add(view.title)

    for controller in board.sections:
        controller.subscribe(_record)

    async def scenario() -> dict[str, BaseException | None]:
        # Fewer default workers than sections, so generation requests fill the pool.
        asyncio.get_running_loop().set_default_executor(ThreadPoolExecutor(max_workers=2))
        task = asyncio.create_task(board.generate_all(1))
        for _ in range(300):
            if len(seen_progress) == len(sections):
                break
            await asyncio.sleep(0.01)
        gate.set()
        return await task

    outcome = asyncio.run(scenario())
    assert all(error is None for error in outcome.values())
    assert backend.progress_calls > 0
    assert seen_progress == {section.title for section in sections}
    assert all(controller.progress is None for controller in board.sections)
