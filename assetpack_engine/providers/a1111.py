"""AUTOMATIC1111 web UI (sdapi) backend."""

from __future__ import annotations

import base64
import json
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from ..config import DEFAULT_BASE_URL, EngineConfig, normalize_base_url
from ..errors import BackendFailure, MalformedResponseFailure
from ..runs.receipts import MAX_VARIANTS, GenerationJob, clamp_variant_count
from .base import HealthReport, ImageArtifact, LoraInfo, ProgressSnapshot


class A1111Backend:
    name = "a1111"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        basic_auth: str | None = None,
        bearer_token: str | None = None,
        request_timeout: float = 600.0,
        progress_timeout: float = 10.0,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.request_timeout = request_timeout
        self.progress_timeout = progress_timeout
        self._headers = _build_headers(basic_auth=basic_auth, bearer_token=bearer_token)

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        basic_auth: str | None = None,
        bearer_token: str | None = None,
    ) -> "A1111Backend":
        return cls(
            config.base_url,
            basic_auth=basic_auth,
            bearer_token=bearer_token,
            request_timeout=config.request_timeout,
            progress_timeout=config.progress_timeout,
        )

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        payload = build_txt2img_payload(job)
        response = _post_json(f"{self.base_url}/sdapi/v1/txt2img", payload, self._headers, self.request_timeout)
        images = response.get("images")
        if not isinstance(images, list) or not images:
            raise MalformedResponseFailure("A1111 response contained no images.")
        info = _parse_info(response.get("info"))
        seeds = info.get("all_seeds") if isinstance(info.get("all_seeds"), list) else []
        artifacts: list[ImageArtifact] = []
        for idx, encoded in enumerate(images):
            if not isinstance(encoded, str) or not encoded:
                raise MalformedResponseFailure(f"A1111 image {idx} is not a base64 string.")
            metadata: dict[str, Any] = {"backend": self.name, "index": idx}
            if idx < len(seeds):
                metadata["seed"] = seeds[idx]
            artifacts.append(ImageArtifact.from_base64(encoded, metadata))
        return artifacts

    def progress(self) -> ProgressSnapshot:
        query = urlencode({"skip_current_image": "true"})
        data = _get_json(f"{self.base_url}/sdapi/v1/progress?{query}", self._headers, self.progress_timeout)
        return parse_progress(data)

    def list_loras(self) -> list[LoraInfo]:
        data = _get_json(f"{self.base_url}/sdapi/v1/loras", self._headers, self.progress_timeout)
        if not isinstance(data, list):
            raise MalformedResponseFailure("A1111 LoRA listing is not a list.")
        loras: list[LoraInfo] = []
        for item in data:
            if not isinstance(item, Mapping):
                continue
            name = str(item.get("name") or "").strip()
            if not name:
                continue
            alias = item.get("alias")
            loras.append(LoraInfo(name=name, alias=str(alias) if alias else None))
        return loras

    def health(self) -> HealthReport:
        report = HealthReport(
            ok=False,
            status="unreachable",
            base_url=self.base_url,
            provider=self.name,
            max_images_per_request=MAX_VARIANTS,
        )
        try:
            models = _get_json(f"{self.base_url}/sdapi/v1/sd-models", self._headers, self.progress_timeout)
            samplers = _get_json(f"{self.base_url}/sdapi/v1/samplers", self._headers, self.progress_timeout)
        except BackendFailure as exc:
            report.status = str(exc.status or "unreachable")
            report.error = exc.details or exc.message
            return report
        report.models = _names(models, "title")
        report.samplers = _names(samplers, "name")
        report.ok = True
        report.status = "Connected successfully"
        return report


def build_txt2img_payload(job: GenerationJob) -> dict[str, Any]:
    return {
        "prompt": job.prompt,
        "negative_prompt": job.negative_prompt or "",
        "width": int(job.width) or 512,
        "height": int(job.height) or 512,
        "cfg_scale": float(job.cfg_scale),
        "steps": int(job.steps),
        "n_iter": clamp_variant_count(job.variant_count),
        "batch_size": 1,
        "sampler_name": job.sampler or "DPM++ 2M Karras",
    }


def parse_progress(data: Any) -> ProgressSnapshot:
    if not isinstance(data, Mapping):
        raise MalformedResponseFailure("A1111 progress payload is not an object.")
    raw = data.get("progress")
    percent = 0
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        percent = max(0, min(100, round(raw * 100)))
    state = data.get("state") if isinstance(data.get("state"), Mapping) else {}
    eta = data.get("eta_relative")
    return ProgressSnapshot(
        percent=int(percent),
        current_step=_optional_int(state.get("sampling_step")),
        total_steps=_optional_int(state.get("sampling_steps")),
        eta_seconds=float(eta) if isinstance(eta, (int, float)) and not isinstance(eta, bool) else None,
    )


def _build_headers(*, basic_auth: str | None, bearer_token: str | None) -> dict[str, str]:
    headers = {"Content-Type": "application/json", "accept": "application/json"}
    if basic_auth:
        encoded = base64.b64encode(basic_auth.encode("utf-8")).decode("ascii")
        headers["Authorization"] = f"Basic {encoded}"
    elif bearer_token:
        headers["Authorization"] = f"Bearer {bearer_token}"
    return headers


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _names(payload: Any, key: str) -> list[str]:
    if not isinstance(payload, list):
        return []
    names: list[str] = []
    for item in payload:
        if isinstance(item, Mapping) and item.get(key):
            names.append(str(item[key]))
    return names


def _parse_info(raw: Any) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str) or not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _post_json(url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout_s: float) -> Any:
    body = json.dumps(payload).encode("utf-8")
    req = Request(url, data=body, headers=dict(headers), method="POST")
    return _send(req, timeout_s)


def _get_json(url: str, headers: Mapping[str, str], timeout_s: float) -> Any:
    req = Request(url, headers=dict(headers), method="GET")
    return _send(req, timeout_s)


def _send(req: Request, timeout_s: float) -> Any:
    try:
        with urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="replace") if exc.fp else str(exc)
        raise BackendFailure(f"A1111 request failed: {req.full_url}", status=exc.code, details=raw) from exc
    except (URLError, TimeoutError) as exc:
        raise BackendFailure(f"A1111 request failed: {exc}", details=req.full_url) from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedResponseFailure(f"A1111 returned non-JSON payload from {req.full_url}") from exc
