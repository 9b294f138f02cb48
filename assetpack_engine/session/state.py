"""Shared session state: global settings, views and the final canvas."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..providers.base import ImageArtifact, ProgressSnapshot
from ..prompts.composer import LORA_NONE


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class GlobalSettings:
    prompt: str = ""
    style: str = ""
    lora: str = LORA_NONE
    variant_count: int = 1
    cfg_scale: float = 7.0


@dataclass(frozen=True)
class SectionView:
    title: str
    state: SessionState
    regenerating_index: int | None
    gallery: tuple[ImageArtifact, ...]
    progress: ProgressSnapshot | None
    prompt: str
    prompt_overridden: bool
    last_outcome: Outcome | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class FinalEntry:
    artifact: ImageArtifact
    width: int
    height: int


FinalListener = Callable[[str, FinalEntry], None]


class FinalSelection:
    """Final canvas keyed by section title; last writer wins."""

    def __init__(self) -> None:
        self._entries: dict[str, FinalEntry] = {}
        self._listeners: list[FinalListener] = []

    def set(self, title: str, entry: FinalEntry) -> None:
        self._entries[title] = entry
        for listener in list(self._listeners):
            listener(title, entry)

    def get(self, title: str) -> FinalEntry | None:
        return self._entries.get(title)

    def items(self) -> list[tuple[str, FinalEntry]]:
        return list(self._entries.items())

    def snapshot(self) -> dict[str, FinalEntry]:
        return dict(self._entries)

    def subscribe(self, listener: FinalListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __contains__(self, title: object) -> bool:
        return title in self._entries

    def __len__(self) -> int:
        return len(self._entries)
