"""
Error kinds raised by the segmentation helpers.

Each error carries an `error_code` so callers can react the way the
sample UI does (e.g. switch the delegate selector back to CPU on GPU_ERROR).
"""
from __future__ import annotations

OTHER_ERROR = 0
GPU_ERROR = 1


class SegmenterError(Exception):
    error_code: int = OTHER_ERROR

    def __init__(self, message: str, error_code: int | None = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ModelLoadFailure(SegmenterError):
    """Model asset missing or corrupt. The helper stays closed."""


class UnsupportedAccelerator(SegmenterError):
    """Requested delegate is not available; the helper fell back to CPU."""
    error_code = GPU_ERROR


class InvalidBufferSize(SegmenterError):
    """Packer/decoder precondition violated (programmer error)."""


class UnsupportedMediaType(SegmenterError):
    """Picked file is not an image."""


class Cancelled(SegmenterError):
    """Request was cancelled. Not reported as an error."""
