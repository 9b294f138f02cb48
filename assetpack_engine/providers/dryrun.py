"""Dry-run image backend (offline)."""

from __future__ import annotations

import hashlib
import io
import random
import threading
import time

from PIL import Image, ImageDraw, ImageFont

from ..runs.receipts import MAX_VARIANTS, GenerationJob, clamp_variant_count
from .base import HealthReport, ImageArtifact, LoraInfo, ProgressSnapshot, decode_image


DRYRUN_LORAS = (
    LoraInfo(name="pixel-art-xl", alias="pixel"),
    LoraInfo(name="gold-filigree"),
)


class DryRunBackend:
    name = "dryrun"

    def __init__(self, delay_s: float = 0.0, seed: int | None = None) -> None:
        self.delay_s = max(0.0, delay_s)
        self.seed = seed
        self.jobs: list[GenerationJob] = []
        self._lock = threading.Lock()
        self._started: float | None = None
        self._total_steps = 0

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        with self._lock:
            self.jobs.append(job)
            self._started = time.monotonic()
            self._total_steps = max(1, int(job.steps))
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            results: list[ImageArtifact] = []
            for idx in range(clamp_variant_count(job.variant_count)):
                seed = self.seed if self.seed is not None else random.randint(1, 10_000_000)
                results.append(_render(job, seed, idx))
            return results
        finally:
            with self._lock:
                self._started = None

    def progress(self) -> ProgressSnapshot:
        with self._lock:
            started = self._started
            total = self._total_steps
        if started is None or not self.delay_s:
            return ProgressSnapshot(percent=0)
        elapsed = time.monotonic() - started
        fraction = max(0.0, min(1.0, elapsed / self.delay_s))
        return ProgressSnapshot(
            percent=int(round(fraction * 100)),
            current_step=int(fraction * total),
            total_steps=total,
            eta_seconds=max(0.0, self.delay_s - elapsed),
        )

    def list_loras(self) -> list[LoraInfo]:
        return list(DRYRUN_LORAS)

    def health(self) -> HealthReport:
        return HealthReport(
            ok=True,
            status="offline dry run",
            provider=self.name,
            models=["dryrun-image-1"],
            samplers=["dryrun"],
            max_images_per_request=MAX_VARIANTS,
        )


def _render(job: GenerationJob, seed: int, idx: int) -> ImageArtifact:
    width = max(1, int(job.width) or 512)
    height = max(1, int(job.height) or 512)
    image = Image.new("RGB", (width, height), _color_from_prompt(job.prompt, seed))
    draw = ImageDraw.Draw(image)
    font = ImageFont.load_default()
    draw.text((8, 8), f"dryrun\n{job.prompt[:40]}", fill=(255, 255, 255), font=font)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return decode_image(buffer.getvalue(), {"backend": "dryrun", "index": idx, "seed": seed})


def _color_from_prompt(prompt: str, seed: int) -> tuple[int, int, int]:
    digest = hashlib.sha256(f"{prompt}:{seed}".encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
