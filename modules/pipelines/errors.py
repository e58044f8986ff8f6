"""Error taxonomy shared by the gateway, orchestrator and history store."""

from __future__ import annotations


RATE_LIMIT_MESSAGE = "You've likely exceeded the request limit. Please wait a moment before trying again."
SERVER_ERROR_MESSAGE = (
    "An unexpected server error occurred. This might be a temporary issue. "
    "Please try again in a few moments."
)


class NanoBananaryError(Exception):
    """Base class for all errors raised by the generation core."""


class ValidationError(NanoBananaryError):
    """A required input was missing before any remote call was attempted."""


class StageBusyError(ValidationError):
    """A stage received a new submission while an attempt is still in flight."""

    def __init__(self, stage_id: str) -> None:
        super().__init__(f"Stage '{stage_id}' is already running.")
        self.stage_id = stage_id


class GenerationFailed(NanoBananaryError):
    """The remote service refused the request or returned no usable artifact."""


class TransientServiceError(GenerationFailed):
    """Rate limit or server-side failure; the caller may back off and retry."""


class PersistenceError(NanoBananaryError):
    """The history store could not be read or written."""
