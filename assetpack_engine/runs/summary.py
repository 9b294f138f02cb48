"""Run summary generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, write_json


@dataclass
class RunSummary:
    run_id: str
    started_at: str
    finished_at: str
    total_sections: int
    total_variants: int
    finals: list[str]
    failures: dict[str, str] = field(default_factory=dict)


def write_summary(path: Path, summary: RunSummary, extra: dict[str, Any] | None = None) -> None:
    payload = {
        "run_id": summary.run_id,
        "started_at": summary.started_at,
        "finished_at": summary.finished_at,
        "total_sections": summary.total_sections,
        "total_variants": summary.total_variants,
        "finals": summary.finals,
        "failures": summary.failures,
        "ts": now_utc_iso(),
    }
    if extra:
        payload.update(extra)
    write_json(path, payload)
