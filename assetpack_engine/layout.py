"""Asset slots of a slot-game art pack."""

from __future__ import annotations

from dataclasses import dataclass

from .prompts.expander import SYMBOL_ICON_COUNT, WILD_ICON_COUNT


SYMBOL_COHESION_HINT = (
    "A simple, clear symbol icon representing {object/idea: e.g., sword, star, coin, potion}, "
    "in {art style}, bold silhouette, {color palette}, designed for small-scale visibility, "
    "transparent background, crisp edges, minimal design, designed to blend seamlessly with the "
    "game interface without standing out too much."
)
WILD_COHESION_HINT = (
    "A glowing, attention-grabbing wild icon symbolizing {wild feature: e.g., phoenix, crown, magic crystal}, "
    "in {art style}, with luminous effects, bold outline, high contrast, {color palette}, designed to stand "
    "out from regular icons, minimal background, glowing aura, magical particles, dynamic energy."
)
BONUS_COHESION_HINT = "Follow the visual language set by the Background and UI Frame for palette, lighting, and style."
ICON_MIN_WORDS = 25


@dataclass(frozen=True)
class Section:
    title: str
    width: int
    height: int
    kind: str
    slot: int = 0
    cohesion_hint: str | None = None
    min_words: int | None = None


def reference_layout() -> list[Section]:
    sections = [
        Section("Background", 512, 512, kind="background"),
        Section("UI Frame", 512, 512, kind="frame"),
    ]
    for idx in range(SYMBOL_ICON_COUNT):
        sections.append(
            Section(
                f"Symbol Icon {idx + 1}",
                256,
                256,
                kind="symbol",
                slot=idx,
                cohesion_hint=SYMBOL_COHESION_HINT,
                min_words=ICON_MIN_WORDS,
            )
        )
    for idx in range(WILD_ICON_COUNT):
        sections.append(
            Section(
                f"Wild Icon {idx + 1}",
                512,
                512,
                kind="wild",
                slot=idx,
                cohesion_hint=WILD_COHESION_HINT,
                min_words=ICON_MIN_WORDS,
            )
        )
    sections.append(Section("Bonus Art", 768, 768, kind="bonus", cohesion_hint=BONUS_COHESION_HINT))
    return sections


def select_sections(sections: list[Section], titles: list[str] | None) -> list[Section]:
    if not titles:
        return list(sections)
    wanted = {title.strip().lower() for title in titles if title.strip()}
    return [section for section in sections if section.title.lower() in wanted]
