"""Image backend base classes."""

from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from PIL import Image, UnidentifiedImageError

from ..errors import MalformedResponseFailure
from ..runs.receipts import GenerationJob


_FORMAT_MIME = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}
_MIME_EXTENSION = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class ImageArtifact:
    data: bytes = field(repr=False)
    mime_type: str = "image/png"
    width: int | None = None
    height: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def extension(self) -> str:
        return _MIME_EXTENSION.get(self.mime_type.lower(), "png")

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    @classmethod
    def from_data_url(cls, url: str, metadata: Mapping[str, Any] | None = None) -> "ImageArtifact":
        header, sep, encoded = url.partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header:
            raise MalformedResponseFailure("Image is not a base64 data URL.")
        return decode_image(_b64decode(encoded), metadata)

    @classmethod
    def from_base64(cls, encoded: str, metadata: Mapping[str, Any] | None = None) -> "ImageArtifact":
        if encoded.startswith("data:"):
            return cls.from_data_url(encoded, metadata)
        return decode_image(_b64decode(encoded), metadata)


def decode_image(data: bytes, metadata: Mapping[str, Any] | None = None) -> ImageArtifact:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = (image.format or "PNG").upper()
            width, height = image.size
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise MalformedResponseFailure(f"Backend returned an undecodable image: {exc}") from exc
    return ImageArtifact(
        data=data,
        mime_type=_FORMAT_MIME.get(image_format, "image/png"),
        width=width,
        height=height,
        metadata=dict(metadata or {}),
    )


def _b64decode(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedResponseFailure("Backend returned invalid base64 image data.") from exc


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: int = 0
    current_step: int | None = None
    total_steps: int | None = None
    eta_seconds: float | None = None


@dataclass(frozen=True)
class LoraInfo:
    name: str
    alias: str | None = None


@dataclass
class HealthReport:
    ok: bool
    status: str
    base_url: str | None = None
    provider: str = ""
    models: list[str] = field(default_factory=list)
    samplers: list[str] = field(default_factory=list)
    max_images_per_request: int = 10
    text_provider_configured: bool = False
    error: str | None = None


class ImageBackend(Protocol):
    name: str

    def txt2img(self, job: GenerationJob) -> list[ImageArtifact]:
        ...

    def progress(self) -> ProgressSnapshot:
        ...

    def list_loras(self) -> list[LoraInfo]:
        ...

    def health(self) -> HealthReport:
        ...


class ProviderRegistry:
    def __init__(self, providers: Iterable[ImageBackend]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    def get(self, name: str) -> ImageBackend | None:
        return self._providers.get(name)

    def list(self) -> list[str]:
        return sorted(self._providers.keys())
