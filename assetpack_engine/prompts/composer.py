"""Final prompt composition.

A section's prompt is assembled from layered inputs: the effective prompt (section
override or the global prompt), the global style, an optional LoRA directive and the
section's cohesion hint. Sections that need longer prompts can require a minimum
word count, met by appending descriptive padding phrases.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationFailure


LORA_NONE = "none"
FRAGMENT_SEPARATOR = ", "

# Fixed order; never shuffled so composition stays deterministic.
PADDING_PHRASES: tuple[str, ...] = (
    "highly detailed",
    "intricate shading",
    "volumetric lighting",
    "dramatic contrast",
    "cinematic composition",
    "professional rendering",
    "realistic materials",
    "coherent color palette",
    "rich textures",
    "studio quality",
    "ultra sharp",
    "depth and dimension",
    "natural shadows",
    "refined highlights",
    "polished finish",
    "clean silhouette",
    "balanced composition",
    "crisp linework",
    "vivid accent colors",
    "soft ambient occlusion",
    "subtle rim light",
    "consistent perspective",
    "smooth gradients",
    "high dynamic range",
    "fine surface detail",
    "premium game art",
    "readable at small sizes",
    "harmonious lighting",
    "sharp focus",
    "masterful craftsmanship",
)


@dataclass(frozen=True)
class PromptContext:
    global_prompt: str = ""
    section_prompt: str | None = None
    global_style: str = ""
    lora: str | None = None
    cohesion_hint: str | None = None
    min_words: int | None = None


def lora_directive(name: str | None) -> str:
    if not name or name.strip().lower() == LORA_NONE:
        return ""
    return f"<lora:{name.strip()}:1>"


def effective_prompt(context: PromptContext) -> str:
    effective = (context.section_prompt or "").strip() or (context.global_prompt or "").strip()
    if not effective:
        raise ValidationFailure("Enter a section prompt or a global prompt before generating.")
    return effective


def compose(context: PromptContext) -> str:
    fragments = [
        effective_prompt(context),
        (context.global_style or "").strip(),
        lora_directive(context.lora),
        (context.cohesion_hint or "").strip(),
    ]
    prompt = FRAGMENT_SEPARATOR.join(fragment for fragment in fragments if fragment)
    if context.min_words and context.min_words > 0:
        prompt = ensure_min_words(prompt, context.min_words)
    return prompt


def word_count(text: str) -> int:
    return len(text.split())


def ensure_min_words(prompt: str, min_words: int) -> str:
    count = word_count(prompt)
    if count >= min_words:
        return prompt
    extra: list[str] = []
    for phrase in PADDING_PHRASES:
        if count >= min_words:
            break
        extra.append(phrase)
        count += word_count(phrase)
    return FRAGMENT_SEPARATOR.join([prompt, *extra])
