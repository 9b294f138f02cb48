"""Per-section generation session."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Any, Callable

from ..config import EngineConfig
from ..errors import AssetpackError, BackendFailure, GenerationInFlight, MalformedResponseFailure, ValidationFailure
from ..layout import Section
from ..prompts.composer import PromptContext, compose
from ..prompts.tracking import SectionPrompt
from ..providers.base import ImageArtifact, ImageBackend, ProgressSnapshot
from ..runs.events import EventWriter
from ..runs.receipts import GenerationJob, clamp_variant_count
from ..utils import epoch_ms, serialize, slugify
from .poller import ProgressPoller
from .state import FinalEntry, FinalSelection, GlobalSettings, Outcome, SectionView, SessionState


SectionListener = Callable[[SectionView], None]


class SectionController:
    def __init__(
        self,
        section: Section,
        backend: ImageBackend,
        settings: GlobalSettings,
        finals: FinalSelection,
        *,
        config: EngineConfig | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self.section = section
        self.backend = backend
        self.settings = settings
        self.finals = finals
        self.config = config or EngineConfig()
        self.events = events
        self.width = section.width
        self.height = section.height
        self.prompt = SectionPrompt(settings.prompt)
        self.gallery: list[ImageArtifact] = []
        self.state = SessionState.IDLE
        self.regenerating_index: int | None = None
        self.progress: ProgressSnapshot | None = None
        self.last_outcome: Outcome | None = None
        self.last_error: str | None = None
        self._listeners: list[SectionListener] = []
        self._job_counter = 0
        self._active_job: int | None = None

    @property
    def title(self) -> str:
        return self.section.title

    @property
    def in_flight(self) -> bool:
        return self.state is not SessionState.IDLE

    def view(self) -> SectionView:
        return SectionView(
            title=self.title,
            state=self.state,
            regenerating_index=self.regenerating_index,
            gallery=tuple(self.gallery),
            progress=self.progress,
            prompt=self.prompt.text,
            prompt_overridden=self.prompt.overridden,
            last_outcome=self.last_outcome,
            last_error=self.last_error,
        )

    def subscribe(self, listener: SectionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # Prompt editing

    def sync_global_prompt(self, global_prompt: str) -> None:
        if self.prompt.sync_global(global_prompt):
            self._notify()

    def edit_prompt(self, text: str) -> None:
        self.prompt.edit(text)
        self._notify()

    def inject_prompt(self, text: str) -> None:
        self.prompt.inject(text)
        self._notify()

    def reset_prompt(self) -> None:
        self.prompt.reset_to_global(self.settings.prompt)
        self._notify()

    def set_dimensions(self, width: int, height: int) -> None:
        self.width = int(width)
        self.height = int(height)
        self._notify()

    def prompt_context(self) -> PromptContext:
        return PromptContext(
            global_prompt=self.settings.prompt,
            section_prompt=self.prompt.text,
            global_style=self.settings.style,
            lora=self.settings.lora,
            cohesion_hint=self.section.cohesion_hint,
            min_words=self.section.min_words,
        )

    def build_job(self, prompt: str, variant_count: Any) -> GenerationJob:
        return GenerationJob(
            prompt=prompt,
            width=self.width,
            height=self.height,
            cfg_scale=self.settings.cfg_scale,
            steps=self.config.steps,
            sampler=self.config.sampler,
            variant_count=clamp_variant_count(variant_count),
            negative_prompt=self.config.negative_prompt,
        )

    # Generation

    async def generate(self, variant_count: int | None = None) -> list[ImageArtifact]:
        self._ensure_idle()
        prompt = compose(self.prompt_context())
        count = variant_count if variant_count is not None else self.settings.variant_count
        job = self.build_job(prompt, count)

        def _replace_gallery(artifacts: list[ImageArtifact]) -> None:
            self.gallery = list(artifacts)

        return await self._run_job(job, action="generate", index=None, apply=_replace_gallery)

    async def regenerate(self, index: int) -> ImageArtifact:
        self._ensure_idle()
        self._check_index(index)
        prompt = compose(self.prompt_context())
        job = self.build_job(prompt, 1)

        def _replace_one(artifacts: list[ImageArtifact]) -> None:
            updated = list(self.gallery)
            if index < len(updated):
                updated[index] = artifacts[0]
            else:
                updated.append(artifacts[0])
            self.gallery = updated

        artifacts = await self._run_job(job, action="regenerate", index=index, apply=_replace_one)
        return artifacts[0]

    async def _run_job(
        self,
        job: GenerationJob,
        *,
        action: str,
        index: int | None,
        apply: Callable[[list[ImageArtifact]], None],
    ) -> list[ImageArtifact]:
        self._job_counter += 1
        job_id = self._job_counter
        self._active_job = job_id
        self.state = SessionState.SUBMITTING
        self.regenerating_index = index
        self.last_error = None
        poller = ProgressPoller(
            self.backend.progress,
            partial(self._apply_progress, job_id),
            interval_s=self.config.poll_interval,
        )
        request: asyncio.Future[list[ImageArtifact]] | None = None
        try:
            try:
                self._notify()
                self._emit("generation_started", action=action, index=index, job=job)
                request = asyncio.ensure_future(asyncio.to_thread(self.backend.txt2img, job))
                poller.start()
                self.state = SessionState.POLLING
                self._notify()
                artifacts = await request
            finally:
                self._active_job = None
                await poller.stop()
                if request is not None and not request.done():
                    request.cancel()
            if not artifacts:
                raise MalformedResponseFailure("Backend returned no images.")
            artifacts = [_tag_job(artifact, job) for artifact in artifacts]
            apply(artifacts)
        except AssetpackError as exc:
            self._record_failure(action, index, exc)
            raise
        except Exception as exc:
            failure = BackendFailure(f"Generation failed: {exc}")
            self._record_failure(action, index, failure)
            raise failure from exc
        else:
            self.last_outcome = Outcome.SUCCESS
            event = "variant_regenerated" if action == "regenerate" else "generation_succeeded"
            self._emit(event, action=action, index=index, variants=len(artifacts))
            return artifacts
        finally:
            self.progress = None
            self.state = SessionState.IDLE
            self.regenerating_index = None
            self._notify()

    def _apply_progress(self, job_id: int, snapshot: ProgressSnapshot) -> None:
        if self._active_job != job_id:
            return
        self.progress = snapshot
        self._notify()

    def _record_failure(self, action: str, index: int | None, exc: AssetpackError) -> None:
        self.last_outcome = Outcome.FAILURE
        self.last_error = str(exc)
        self._emit(
            "generation_failed",
            action=action,
            index=index,
            error=str(exc),
            status=getattr(exc, "status", None),
        )

    # Gallery operations

    def discard(self, index: int) -> ImageArtifact:
        self._check_index(index)
        updated = list(self.gallery)
        removed = updated.pop(index)
        self.gallery = updated
        self._emit("variant_discarded", index=index)
        self._notify()
        return removed

    def set_as_final(self, index: int) -> FinalEntry:
        self._check_index(index)
        entry = FinalEntry(artifact=self.gallery[index], width=self.width, height=self.height)
        self.finals.set(self.title, entry)
        self._emit("final_selected", index=index, width=self.width, height=self.height)
        return entry

    def download(self, index: int, dest_dir: Path) -> Path:
        self._check_index(index)
        artifact = self.gallery[index]
        dest_dir.mkdir(parents=True, exist_ok=True)
        stem = f"{slugify(self.title) or 'asset'}-{epoch_ms()}"
        path = dest_dir / f"{stem}.{artifact.extension}"
        suffix = 1
        while path.exists():
            path = dest_dir / f"{stem}-{suffix}.{artifact.extension}"
            suffix += 1
        path.write_bytes(artifact.data)
        return path

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.gallery):
            raise ValidationFailure(f"{self.title} has no variant at index {index}.")

    def _ensure_idle(self) -> None:
        if self.in_flight:
            raise GenerationInFlight(f"{self.title} is already generating.")

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            listener(view)

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is None:
            return
        self.events.emit(event_type, section=self.title, **payload)


def _tag_job(artifact: ImageArtifact, job: GenerationJob) -> ImageArtifact:
    return replace(artifact, metadata={**artifact.metadata, "job": serialize(job)})
