"""Custom exceptions for the overlay engine.

Every failure the core can report derives from OverlayError and carries a
machine-readable code next to its human-readable message. Cancellation is not
an error and is signalled with asyncio.CancelledError instead.
"""

from typing import Any


class OverlayError(Exception):
    """Base exception for all overlay engine errors."""

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for event payloads and logs."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


# =============================================================================
# Input Errors
# =============================================================================


class MalformedTrackError(OverlayError):
    """No usable coordinate sequence could be extracted from the track."""

    code = "MALFORMED_TRACK"
    message = "Track contains no usable coordinates"


class InvalidJobSpecError(OverlayError):
    """Job submission failed validation."""

    code = "INVALID_JOB_SPEC"
    message = "Invalid job specification"

    def __init__(self, message: str | None = None, *, field: str | None = None):
        self.field = field
        if message and field:
            message = f"{field}: {message}"
        super().__init__(message)


# =============================================================================
# Rendering Errors
# =============================================================================


class NoTrackDataError(OverlayError):
    """A layer has no usable samples to draw."""

    code = "NO_TRACK_DATA"
    message = "Track has no usable samples for this layer"

    def __init__(self, layer: str | None = None, reason: str | None = None):
        self.layer = layer
        if layer:
            message = f"No track data for {layer} layer"
            if reason:
                message += f": {reason}"
        else:
            message = None
        super().__init__(message)


class RenderFailedError(OverlayError):
    """An overlay clip could not be produced."""

    code = "RENDER_FAILED"
    message = "Overlay rendering failed"


# =============================================================================
# External Tool Errors
# =============================================================================


class ProbeFailedError(OverlayError):
    """ffprobe could not read the source video."""

    code = "PROBE_FAILED"
    message = "Could not probe source video"


class EncodeFailedError(OverlayError):
    """The encoder exited unsuccessfully."""

    code = "ENCODE_FAILED"
    message = "Video encoding failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        exit_code: int | None = None,
        stderr_tail: str | None = None,
    ):
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        if message is None and exit_code is not None:
            message = f"Encoder exited with code {exit_code}"
            if stderr_tail:
                message += f": {stderr_tail}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        return data


# =============================================================================
# Job Errors
# =============================================================================


class JobNotFoundError(OverlayError):
    """Job id is unknown or already evicted."""

    code = "JOB_NOT_FOUND"
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class InvalidStateTransitionError(OverlayError):
    """Requested job state change is not allowed."""

    code = "INVALID_STATE_TRANSITION"
    message = "Invalid job state transition"

    def __init__(self, current: str | None = None, requested: str | None = None):
        if current and requested:
            message = f"Cannot move job from {current} to {requested}"
        else:
            message = None
        super().__init__(message)
