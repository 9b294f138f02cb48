"""Theme expansion into per-section prompts (Gemini)."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..config import DEFAULT_EXPAND_MODEL
from ..errors import BackendFailure, MalformedResponseFailure, ValidationFailure


SYMBOL_ICON_COUNT = 20
WILD_ICON_COUNT = 5

_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)


@dataclass(frozen=True)
class PromptBundle:
    background: str
    frame: str
    symbol_icons: tuple[str, ...]
    wild_icons: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "background": self.background,
            "frame": self.frame,
            "symbol_icons": list(self.symbol_icons),
            "wild_icons": list(self.wild_icons),
        }


def coerce_list(values: Any, length: int) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, str):
        values = []
    items = [str(item) if item is not None else "" for item in values[:length]]
    items.extend("" for _ in range(length - len(items)))
    return tuple(items)


def coerce_bundle(payload: Mapping[str, Any]) -> PromptBundle:
    return PromptBundle(
        background=str(payload.get("background") or ""),
        frame=str(payload.get("frame") or ""),
        symbol_icons=coerce_list(payload.get("symbol_icons"), SYMBOL_ICON_COUNT),
        wild_icons=coerce_list(payload.get("wild_icons"), WILD_ICON_COUNT),
    )


def extract_json(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match and match.group(1):
        return match.group(1)
    return text.strip()


def parse_bundle(text: str) -> PromptBundle:
    try:
        payload = json.loads(extract_json(text))
    except json.JSONDecodeError as exc:
        raise MalformedResponseFailure("Failed to parse expansion JSON.", details=text) from exc
    if not isinstance(payload, Mapping):
        raise MalformedResponseFailure("Expansion JSON is not an object.", details=text)
    return coerce_bundle(payload)


def expansion_instruction(theme: str) -> str:
    escaped = theme.replace('"', '\\"')
    return f"""
You are generating structured prompts for a slots video game art pack.
Given a global theme prompt, return JSON with these keys:
{{
  "background": string,
  "frame": string,
  "symbol_icons": string[{SYMBOL_ICON_COUNT}],
  "wild_icons": string[{WILD_ICON_COUNT}]
}}
"background" is one prompt for the game's background, "frame" one prompt for the UI frame,
"symbol_icons" {SYMBOL_ICON_COUNT} distinct symbol icon ideas (each a distinct object or concept),
"wild_icons" {WILD_ICON_COUNT} distinct, thematically coherent wild symbol ideas.

Follow these templates for each type:

Background: "A highly detailed {{theme}} game background for a game, featuring {{specific environment details like forest temple, space station, desert ruins}}, in a {{art style}}, with {{mood/color palette}}, no characters, wide composition, suitable as a backdrop for gameplay."

UI Frame: "A decorative UI frame for a {{theme}} game, designed in {{art style}}, with clean edges, symmetrical layout, {{material/texture like gold filigree, neon circuits, stone carvings}}, leaving transparent space inside for text or buttons, polished and readable."

Symbol Icon: "A simple, clear symbol icon representing {{object/idea: e.g., sword, star, coin, potion}}, in {{art style}}, bold silhouette, {{color palette}}, designed for small-scale visibility, transparent background, crisp edges, minimal design, designed to blend seamlessly with the game interface without standing out too much."

Wild Icon: "A glowing, attention-grabbing wild icon symbolizing {{wild feature: e.g., phoenix, crown, magic crystal}}, in {{art style}}, with luminous effects, bold outline, high contrast, {{color palette}}, designed to stand out from regular icons, minimal background, glowing aura, magical particles, dynamic energy."

Rules:
- Use concise, production-ready image prompts, include art style modifiers if helpful.
- Do NOT include JSON comments in the output.
- The JSON MUST be the only output (no markdown, no prose).
Global theme: "{escaped}".
"""


class GeminiExpander:
    name = "gemini"

    def __init__(self, api_key: str | None, model: str = DEFAULT_EXPAND_MODEL, temperature: float = 0.8) -> None:
        self.api_key = api_key
        self.model = model
        self.temperature = temperature

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def expand(self, theme: str) -> PromptBundle:
        if not theme or not theme.strip():
            raise ValidationFailure("Enter a global prompt before expanding section prompts.")
        if not self.api_key:
            raise BackendFailure("GEMINI_API_KEY or GOOGLE_API_KEY not set.")
        text = _call_gemini(self.api_key, self.model, expansion_instruction(theme), self.temperature)
        if not text or not text.strip():
            raise MalformedResponseFailure("Gemini returned no content.")
        return parse_bundle(text)


def _call_gemini(api_key: str, model: str, instruction: str, temperature: float) -> str:
    from google import genai  # type: ignore
    from google.genai import errors as genai_errors  # type: ignore
    from google.genai import types  # type: ignore

    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=model,
            contents=instruction,
            config=types.GenerateContentConfig(temperature=temperature),
        )
    except genai_errors.APIError as exc:
        raise BackendFailure(f"Gemini error: {exc.message}", status=exc.code) from exc
    except Exception as exc:
        raise BackendFailure(f"Gemini request failed: {exc}") from exc

    text = getattr(response, "text", None)
    if isinstance(text, str) and text.strip():
        return text
    chunks: list[str] = []
    for candidate in getattr(response, "candidates", []) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            chunk = getattr(part, "text", None)
            if isinstance(chunk, str) and chunk.strip():
                chunks.append(chunk)
    return "\n".join(chunks)
