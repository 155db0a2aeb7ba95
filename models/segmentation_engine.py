# models/segmentation_engine.py
"""
Wrapper around the MediaPipe Tasks ImageSegmenter.

• Loads one .tflite graph per instance (IMAGE running mode, category mask only).
• Exposes .predict(rgb)  →  uint8 category mask (H, W), one class index per pixel.
• Must be closed explicitly; a closed engine cannot be reused.
"""
from __future__ import annotations
import logging
from pathlib import Path

import mediapipe as mp
import numpy as np
from mediapipe.tasks import python as mp_python
from mediapipe.tasks.python import vision

from models.errors import ModelLoadFailure, UnsupportedAccelerator

logger = logging.getLogger(__name__)

DELEGATE_CPU = "CPU"
DELEGATE_GPU = "GPU"

_DELEGATES = {
    DELEGATE_CPU: mp_python.BaseOptions.Delegate.CPU,
    DELEGATE_GPU: mp_python.BaseOptions.Delegate.GPU,
}


class SegmentationEngine:
    def __init__(self, model_path: str | Path, delegate: str = DELEGATE_CPU):
        self.model_path = Path(model_path)
        self.delegate = delegate
        self._segmenter: vision.ImageSegmenter | None = None
        self._init_runtime()

    # --------------------------------------------------
    def _init_runtime(self) -> None:
        if self.delegate not in _DELEGATES:
            raise UnsupportedAccelerator(
                f"Delegate {self.delegate} is not supported by the vision task backend"
            )
        if not self.model_path.is_file():
            raise ModelLoadFailure(f"Model asset not found: {self.model_path}")

        base_options = mp_python.BaseOptions(
            model_asset_path=str(self.model_path),
            delegate=_DELEGATES[self.delegate],
        )
        options = vision.ImageSegmenterOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            output_category_mask=True,
            output_confidence_masks=False,
        )
        try:
            self._segmenter = vision.ImageSegmenter.create_from_options(options)
        except RuntimeError as e:
            logger.error(f"Image segmenter failed to load model with error: {e}")
            # Raised when the model does not support the GPU delegate
            if self.delegate == DELEGATE_GPU:
                raise UnsupportedAccelerator(
                    "Image segmenter failed to initialize on GPU. See error logs for details"
                ) from e
            raise ModelLoadFailure(
                "Image segmenter failed to initialize. See error logs for details"
            ) from e
        except ValueError as e:
            logger.error(f"Image segmenter failed to load model with error: {e}")
            raise ModelLoadFailure(
                "Image segmenter failed to initialize. See error logs for details"
            ) from e

    # --------------------------------------------------
    def predict(self, rgb: np.ndarray) -> np.ndarray:
        """
        Args
        ----
        rgb : np.ndarray  (H, W, 3)  uint8  RGB order

        Returns
        -------
        mask : np.ndarray  (H, W)  uint8  class index per pixel
        """
        if self._segmenter is None:
            raise ModelLoadFailure("Image segmenter is closed")
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB,
                            data=np.ascontiguousarray(rgb[:, :, :3]))
        result = self._segmenter.segment(mp_image)
        return result.category_mask.numpy_view().astype("uint8")

    def close(self) -> None:
        if self._segmenter is not None:
            self._segmenter.close()
            self._segmenter = None
