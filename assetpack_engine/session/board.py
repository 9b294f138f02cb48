"""Asset board: the set of section sessions sharing global settings."""

from __future__ import annotations

import asyncio
from typing import Iterable, Protocol

from ..config import EngineConfig
from ..errors import ValidationFailure
from ..layout import Section
from ..prompts.expander import PromptBundle
from ..providers.base import ImageBackend
from ..runs.events import EventWriter
from ..runs.receipts import clamp_variant_count
from .controller import SectionController
from .state import FinalSelection, GlobalSettings


class PromptExpander(Protocol):
    def expand(self, theme: str) -> PromptBundle:
        ...


class AssetBoard:
    def __init__(
        self,
        backend: ImageBackend,
        *,
        config: EngineConfig | None = None,
        settings: GlobalSettings | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or EngineConfig()
        self.settings = settings or GlobalSettings(cfg_scale=self.config.cfg_scale)
        self.events = events
        self.finals = FinalSelection()
        self.sections: list[SectionController] = []

    @classmethod
    def from_layout(cls, backend: ImageBackend, sections: Iterable[Section], **kwargs) -> "AssetBoard":
        board = cls(backend, **kwargs)
        for section in sections:
            board.add_section(section)
        return board

    def add_section(self, section: Section) -> SectionController:
        controller = SectionController(
            section,
            self.backend,
            self.settings,
            self.finals,
            config=self.config,
            events=self.events,
        )
        self.register(controller)
        return controller

    def register(self, controller: SectionController) -> None:
        if any(existing.title == controller.title for existing in self.sections):
            raise ValueError(f"Section already registered: {controller.title}")
        self.sections.append(controller)

    def get(self, title: str) -> SectionController:
        for controller in self.sections:
            if controller.title == title:
                return controller
        raise KeyError(title)

    def set_global_prompt(self, prompt: str) -> None:
        self.settings.prompt = prompt
        for controller in self.sections:
            controller.sync_global_prompt(prompt)

    def configure(
        self,
        *,
        style: str | None = None,
        lora: str | None = None,
        variant_count: int | None = None,
        cfg_scale: float | None = None,
    ) -> None:
        if style is not None:
            self.settings.style = style
        if lora is not None:
            self.settings.lora = lora
        if variant_count is not None:
            self.settings.variant_count = clamp_variant_count(variant_count)
        if cfg_scale is not None:
            self.settings.cfg_scale = float(cfg_scale)

    def apply_expansion(self, bundle: PromptBundle) -> int:
        applied = 0
        for controller in self.sections:
            section = controller.section
            if section.kind == "background":
                text = bundle.background
            elif section.kind == "frame":
                text = bundle.frame
            elif section.kind == "symbol" and section.slot < len(bundle.symbol_icons):
                text = bundle.symbol_icons[section.slot]
            elif section.kind == "wild" and section.slot < len(bundle.wild_icons):
                text = bundle.wild_icons[section.slot]
            else:
                continue
            controller.inject_prompt(text)
            applied += 1
        return applied

    async def expand_prompts(self, expander: PromptExpander) -> PromptBundle:
        if not self.settings.prompt.strip():
            raise ValidationFailure("Enter a global prompt first.")
        bundle = await asyncio.to_thread(expander.expand, self.settings.prompt)
        applied = self.apply_expansion(bundle)
        if self.events is not None:
            self.events.emit("prompts_expanded", theme=self.settings.prompt, sections=applied)
        return bundle

    async def generate_all(self, variant_count: int | None = None) -> dict[str, BaseException | None]:
        if not self.settings.prompt.strip():
            raise ValidationFailure("Enter a global prompt before generating all assets.")
        count = variant_count if variant_count is not None else self.settings.variant_count
        results = await asyncio.gather(
            *(controller.generate(count) for controller in self.sections),
            return_exceptions=True,
        )
        outcome: dict[str, BaseException | None] = {}
        for controller, result in zip(self.sections, results):
            outcome[controller.title] = result if isinstance(result, BaseException) else None
        return outcome
