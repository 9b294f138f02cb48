"""Section prompt that mirrors the global prompt until overridden."""

from __future__ import annotations

from enum import Enum


class PromptMode(str, Enum):
    TRACKING = "tracking"
    OVERRIDDEN = "overridden"


class SectionPrompt:
    def __init__(self, global_prompt: str = "") -> None:
        self.mode = PromptMode.TRACKING
        self._text = global_prompt

    @property
    def text(self) -> str:
        return self._text

    @property
    def overridden(self) -> bool:
        return self.mode is PromptMode.OVERRIDDEN

    def sync_global(self, global_prompt: str) -> bool:
        """Mirror the global prompt; returns False when latched."""
        if self.mode is PromptMode.OVERRIDDEN:
            return False
        self._text = global_prompt
        return True

    def edit(self, text: str) -> None:
        self.mode = PromptMode.OVERRIDDEN
        self._text = text

    def inject(self, text: str) -> None:
        # Expanded prompts latch exactly like a manual edit.
        self.edit(text)

    def reset_to_global(self, global_prompt: str) -> None:
        self.mode = PromptMode.TRACKING
        self._text = global_prompt
