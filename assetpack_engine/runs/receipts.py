"""Generation jobs and artifact receipts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from ..utils import now_utc_iso, sanitize_payload, serialize, write_json


RECEIPT_SCHEMA_VERSION = 1
MAX_VARIANTS = 10


@dataclass(frozen=True)
class GenerationJob:
    prompt: str
    width: int = 512
    height: int = 512
    cfg_scale: float = 7.0
    steps: int = 20
    sampler: str = "DPM++ 2M Karras"
    variant_count: int = 1
    negative_prompt: str = ""


def clamp_variant_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError):
        count = 1
    return max(1, min(MAX_VARIANTS, count))


def build_receipt(
    *,
    section_title: str,
    job: GenerationJob | Mapping[str, Any] | None,
    image_path: Path,
    receipt_path: Path,
    width: int,
    height: int,
    artifact_metadata: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "schema_version": RECEIPT_SCHEMA_VERSION,
        "section": section_title,
        "job": serialize(job),
        "dimensions": {"width": width, "height": height},
        "artifacts": {
            "image_path": str(image_path),
            "receipt_path": str(receipt_path),
        },
        "artifact_metadata": sanitize_payload(dict(artifact_metadata or {})),
        "ts": now_utc_iso(),
    }


def write_receipt(path: Path, payload: Mapping[str, Any]) -> None:
    write_json(path, payload)
