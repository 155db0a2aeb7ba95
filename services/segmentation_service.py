from __future__ import annotations
from pathlib import Path
from typing import Callable, Optional
import logging
import os
import threading

from dotenv import load_dotenv

from models.errors import ModelLoadFailure, SegmenterError, UnsupportedAccelerator
from models.image import Image
from models.interpreter_engine import InterpreterEngine, DELEGATE_NNAPI
from models.segmentation_engine import SegmentationEngine, DELEGATE_CPU, DELEGATE_GPU
from models.segmentation_result import SegmentationResult
from repositories.segmentation_repository import (
    InterpreterSegmentationRepository,
    SegmentationRepository,
)

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

MODEL_DEEPLABV3 = "DEEPLABV3"
MODEL_HAIR_SEGMENTER = "HAIR_SEGMENTER"
MODEL_SELFIE_SEGMENTER = "SELFIE_SEGMENTER"
MODEL_SELFIE_MULTICLASS = "SELFIE_MULTICLASS"

MODEL_PATHS = {
    MODEL_DEEPLABV3: "deeplabv3.tflite",
    MODEL_HAIR_SEGMENTER: "hair_segmenter.tflite",
    MODEL_SELFIE_SEGMENTER: "selfie_segmenter.tflite",
    MODEL_SELFIE_MULTICLASS: "selfie_multiclass.tflite",
}

BACKEND_VISION = "vision"
BACKEND_INTERPRETER = "interpreter"

DELEGATES = {
    BACKEND_VISION: (DELEGATE_CPU, DELEGATE_GPU),
    BACKEND_INTERPRETER: (DELEGATE_CPU, DELEGATE_GPU, DELEGATE_NNAPI),
}

ErrorListener = Callable[[SegmenterError], None]


class SegmentationService:
    """
    Owns one segmenter handle built from the current settings.

    The handle is replaced, never shared: clear() closes it before a new one is
    built, and waits for an in-flight segment() call to return first.
    Construction errors go to *on_error* once; a ModelLoadFailure leaves the
    service closed, an UnsupportedAccelerator falls back to the CPU delegate.
    """

    def __init__(
            self,
            model: str | None = None,
            delegate: str | None = None,
            backend: str | None = None,
            num_threads: int | None = None,
            assets_dir: str | Path | None = None,
            on_error: Optional[ErrorListener] = None,
            repository_factory: Callable[[Path, str], object] | None = None,
    ) -> None:
        self.model = model or os.getenv("SEGMENTER_MODEL", MODEL_DEEPLABV3)
        self.delegate = delegate or os.getenv("SEGMENTER_DELEGATE", DELEGATE_CPU)
        self.backend = backend or os.getenv("SEGMENTER_BACKEND", BACKEND_VISION)
        self.num_threads = num_threads or int(os.getenv("INTERPRETER_NUM_THREADS", "2"))
        self.assets_dir = Path(assets_dir or os.getenv("MODEL_ASSETS_DIR", "assets"))
        self.on_error = on_error
        self._repository_factory = repository_factory or self._build_repository

        self.repo = None
        self.last_error: SegmenterError | None = None
        self._lock = threading.Lock()
        self._validate_options()
        self.setup()

    # ---------- settings ----------
    def _validate_options(self) -> None:
        if self.model not in MODEL_PATHS:
            raise ValueError(f"Unknown model {self.model}, expected one of {sorted(MODEL_PATHS)}")
        if self.backend not in DELEGATES:
            raise ValueError(f"Unknown backend {self.backend}, expected one of {sorted(DELEGATES)}")
        if self.delegate not in DELEGATES[self.backend]:
            raise ValueError(f"Delegate {self.delegate} is not available for the {self.backend} backend")

    @property
    def model_path(self) -> Path:
        return self.assets_dir / MODEL_PATHS[self.model]

    def _build_repository(self, model_path: Path, delegate: str):
        if self.backend == BACKEND_INTERPRETER:
            engine = InterpreterEngine(model_path, num_threads=self.num_threads, delegate=delegate)
            return InterpreterSegmentationRepository(engine)
        return SegmentationRepository(SegmentationEngine(model_path, delegate=delegate))

    def _notify(self, error: SegmenterError) -> None:
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)

    # ---------- handle lifecycle ----------
    def setup(self) -> None:
        """Build the handle for the current settings."""
        self.last_error = None
        try:
            self.repo = self._repository_factory(self.model_path, self.delegate)
        except UnsupportedAccelerator as e:
            logger.warning(f"{self.delegate} delegate unavailable, falling back to CPU: {e}")
            self.delegate = DELEGATE_CPU
            self._notify(e)
            try:
                self.repo = self._repository_factory(self.model_path, self.delegate)
            except ModelLoadFailure as load_error:
                logger.error(f"Image segmenter failed to initialize: {load_error}")
                self.repo = None
                self._notify(load_error)
        except ModelLoadFailure as e:
            logger.error(f"Image segmenter failed to initialize: {e}")
            self.repo = None
            self._notify(e)

    def clear(self) -> None:
        """Close the handle. Blocks until a running segment() call returns."""
        with self._lock:
            if self.repo is not None:
                self.repo.close()
                self.repo = None

    def is_closed(self) -> bool:
        return self.repo is None

    def reconfigure(self, *, model: str | None = None, delegate: str | None = None,
                    backend: str | None = None) -> None:
        self.clear()
        self.model = model or self.model
        self.backend = backend or self.backend
        self.delegate = delegate or self.delegate
        self._validate_options()
        self.setup()

    # ---------- inference ----------
    def segment(self, img: Image) -> SegmentationResult:
        with self._lock:
            if self.repo is None:
                raise ModelLoadFailure("Image segmenter is closed")
            result = self.repo.retrieve_mask(img)
        logger.debug(f"Segmented {result.width}x{result.height} mask in {result.inference_time_ms} ms")
        return result
