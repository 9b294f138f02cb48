"""Error taxonomy."""

from __future__ import annotations


class AssetpackError(RuntimeError):
    pass


class ValidationFailure(AssetpackError):
    """Rejected before any network call."""


class GenerationInFlight(ValidationFailure):
    pass


class BackendFailure(AssetpackError):
    def __init__(self, message: str, *, status: int | str | None = None, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"{self.message} ({self.status})"


class MalformedResponseFailure(BackendFailure):
    """The backend answered with success but the payload was unusable."""
