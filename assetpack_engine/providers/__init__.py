"""Backend registry."""

from __future__ import annotations

from ..config import EngineConfig
from .a1111 import A1111Backend
from .base import ProviderRegistry
from .dryrun import DryRunBackend


def default_registry(
    config: EngineConfig,
    *,
    basic_auth: str | None = None,
    bearer_token: str | None = None,
    dryrun_delay_s: float = 0.0,
) -> ProviderRegistry:
    return ProviderRegistry(
        [
            DryRunBackend(delay_s=dryrun_delay_s),
            A1111Backend.from_config(config, basic_auth=basic_auth, bearer_token=bearer_token),
        ]
    )
