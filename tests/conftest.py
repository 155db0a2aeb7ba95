from __future__ import annotations
import threading

import numpy as np
import pytest

from models.image import Image
from models.segmentation_result import SegmentationResult

SCENARIO_MASK = np.array([[0, 1, 2],
                          [0, 1, 2],
                          [0, 1, 2]], dtype=np.uint8)


class FakeRepository:
    """Stands in for a loaded model: returns a fixed category mask."""

    def __init__(self, mask: np.ndarray = SCENARIO_MASK,
                 gate: threading.Event | None = None,
                 started: threading.Event | None = None):
        self.mask = mask.astype(np.uint8)
        self.gate = gate
        self.started = started
        self.closed = False
        self.calls = 0

    def retrieve_mask(self, img: Image) -> SegmentationResult:
        self.calls += 1
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        height, width = self.mask.shape
        return SegmentationResult(self.mask.tobytes(), width, height, inference_time_ms=3)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def rgb_image() -> Image:
    pixels = np.full((6, 6, 3), 200, dtype=np.uint8)
    return Image(pixels=pixels)


@pytest.fixture
def no_dotenv(monkeypatch):
    for name in ("SEGMENTER_MODEL", "SEGMENTER_DELEGATE", "SEGMENTER_BACKEND", "MASK_CLASS_COUNT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def scenario_mask() -> np.ndarray:
    return SCENARIO_MASK.copy()


@pytest.fixture
def fake_repository():
    """Factory for FakeRepository instances."""
    return FakeRepository
