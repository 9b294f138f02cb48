"""Engine configuration resolved from the environment."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace
from typing import Any

from .utils import getenv_float, getenv_int


DEFAULT_BASE_URL = "http://127.0.0.1:7860"
DEFAULT_SAMPLER = "DPM++ 2M Karras"
DEFAULT_EXPAND_MODEL = "gemini-2.5-flash"

_SDAPI_SUFFIX_RE = re.compile(r"/?sdapi.*", re.IGNORECASE)


def normalize_base_url(raw: str) -> str:
    url = raw.strip().rstrip("/")
    return _SDAPI_SUFFIX_RE.sub("", url)


@dataclass(frozen=True)
class EngineConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = 0.7
    request_timeout: float = 600.0
    progress_timeout: float = 10.0
    cfg_scale: float = 7.0
    steps: int = 20
    sampler: str = DEFAULT_SAMPLER
    negative_prompt: str = ""
    expand_model: str = DEFAULT_EXPAND_MODEL
    gemini_api_key: str | None = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            base_url=normalize_base_url(os.getenv("A1111_BASE_URL") or DEFAULT_BASE_URL),
            poll_interval=max(0.05, getenv_float("ASSETPACK_POLL_INTERVAL", 0.7)),
            request_timeout=getenv_float("ASSETPACK_REQUEST_TIMEOUT", 600.0),
            progress_timeout=getenv_float("ASSETPACK_PROGRESS_TIMEOUT", 10.0),
            cfg_scale=getenv_float("ASSETPACK_CFG_SCALE", 7.0),
            steps=getenv_int("ASSETPACK_STEPS", 20),
            sampler=os.getenv("ASSETPACK_SAMPLER") or DEFAULT_SAMPLER,
            negative_prompt=os.getenv("ASSETPACK_NEGATIVE_PROMPT") or "",
            expand_model=os.getenv("ASSETPACK_EXPAND_MODEL") or DEFAULT_EXPAND_MODEL,
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        )

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        if "base_url" in cleaned:
            cleaned["base_url"] = normalize_base_url(str(cleaned["base_url"]))
        return replace(self, **cleaned)
