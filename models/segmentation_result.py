from __future__ import annotations
from dataclasses import dataclass

from models.image import Image

OUTPUT_CATEGORY = "category"
OUTPUT_CONFIDENCE = "confidence"


@dataclass
class SegmentationResult:
    """
    Raw output of one segmentation call, row-major, width × height values long.
    `mask` holds one class byte per pixel for OUTPUT_CATEGORY,
    one float32 confidence per pixel for OUTPUT_CONFIDENCE.
    """
    mask: bytes
    width: int
    height: int
    inference_time_ms: int = 0  # wall time of the model call
    output_type: str = OUTPUT_CATEGORY


@dataclass
class OverlayResult:
    """
    Final product of one request: the base image masked by the overlay.
    """
    image: Image
    mask_width: int
    mask_height: int
    inference_time_ms: int = 0
