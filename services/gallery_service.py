"""
Request controller for "pick an image → segment → show the masked image".

One request is in flight at a time:

    IDLE → LOADING → INFERRING → DECODING → COMPOSITING → DONE
    any failure → ERROR, stop_all_tasks() / a new request → CANCELLED

Loading and inference run on a single worker thread; decoding and compositing
run on a single "ui" thread that owns the OverlayService. Each request hands
back a Future resolving to an OverlayResult.
"""
from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union
import logging
import os
import threading
import uuid

from dotenv import load_dotenv

from models.errors import Cancelled, SegmenterError, UnsupportedAccelerator
from models.image import Image
from models.segmentation_engine import DELEGATE_CPU
from models.segmentation_result import OverlayResult, SegmentationResult
from repositories.tensor_buffer_repository import TensorBufferRepository, DEFAULT_CLASS_COUNT
from services.image_service import ImageService
from services.overlay_service import OverlayService
from services.segmentation_service import SegmentationService

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

ImageSource = Union[str, Path, Image]


class RequestState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    INFERRING = "inferring"
    DECODING = "decoding"
    COMPOSITING = "compositing"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class SegmentationRequest:
    """Single-shot request; every state change goes through one lock."""

    def __init__(self, source: ImageSource) -> None:
        self.request_id = uuid.uuid4().hex
        self.source = source
        self.state = RequestState.IDLE
        self.future: Future = Future()
        self._lock = threading.RLock()

    @property
    def cancelled(self) -> bool:
        return self.future.cancelled()

    @contextmanager
    def active(self):
        """Run the block only while the request is still live."""
        with self._lock:
            if self.future.cancelled():
                raise Cancelled(f"Request {self.request_id} was cancelled")
            yield

    def advance(self, state: RequestState) -> None:
        with self.active():
            logger.debug(f"Request {self.request_id}: {self.state.value} → {state.value}")
            self.state = state

    def cancel(self) -> bool:
        with self._lock:
            if self.future.done():
                return False
            self.state = RequestState.CANCELLED
            return self.future.cancel()

    def finish(self, result: OverlayResult) -> None:
        with self.active():
            self.state = RequestState.DONE
            self.future.set_result(result)

    def fail(self, error: BaseException) -> bool:
        with self._lock:
            if self.future.done():
                return False
            self.state = RequestState.ERROR
            self.future.set_exception(error)
            return True


class GalleryService:
    """
    Business logic behind the gallery screen.

    *   A new segmenter is built on the worker thread for each request and
        torn down by stop_all_tasks().
    *   Cancelled requests never touch the overlay; their results are dropped.
    """

    def __init__(
            self,
            overlay: OverlayService | None = None,
            image_service: ImageService | None = None,
            segmentation_service_factory: Callable[..., SegmentationService] = SegmentationService,
            on_error: Optional[Callable[[BaseException], None]] = None,
            model: str | None = None,
            delegate: str | None = None,
            backend: str | None = None,
    ) -> None:
        self.overlay = overlay or OverlayService()
        self.image_service = image_service or ImageService()
        self._helper_factory = segmentation_service_factory
        self.on_error = on_error
        self.options = {"model": model, "delegate": delegate, "backend": backend}
        self.class_count = int(os.getenv("MASK_CLASS_COUNT", str(DEFAULT_CLASS_COUNT)))

        self.helper: SegmentationService | None = None
        self._current: SegmentationRequest | None = None
        self._lock = threading.Lock()
        self._ui_enabled = True
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmenter-worker")
        self._ui = ThreadPoolExecutor(max_workers=1, thread_name_prefix="segmenter-ui")

    @property
    def ui_enabled(self) -> bool:
        with self._lock:
            return self._ui_enabled

    def _set_ui_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._ui_enabled = enabled

    # ---------- settings (selector handlers) ----------
    def set_model(self, model: str) -> None:
        self.options["model"] = model
        self.stop_all_tasks()

    def set_delegate(self, delegate: str) -> None:
        self.options["delegate"] = delegate
        self.stop_all_tasks()

    def set_backend(self, backend: str) -> None:
        self.options["backend"] = backend
        self.stop_all_tasks()

    # ---------- request lifecycle ----------
    def run_segmentation(self, source: ImageSource) -> Future:
        self.stop_all_tasks()
        request = SegmentationRequest(source)
        with self._lock:
            self._current = request
            self._ui_enabled = False
        self._worker.submit(self._run_background, request)
        return request.future

    def stop_all_tasks(self) -> None:
        """Cancel the in-flight request, then release the segmenter and clear the overlay."""
        with self._lock:
            request, self._current = self._current, None
            helper, self.helper = self.helper, None
        if request is not None and request.cancel():
            logger.info(f"Cancelled request {request.request_id}")
        if helper is not None:
            helper.clear()
        self.overlay.clear()
        self._set_ui_enabled(True)

    def shutdown(self) -> None:
        self.stop_all_tasks()
        self._worker.shutdown(wait=True)
        self._ui.shutdown(wait=True)

    # ---------- worker side ----------
    def _load(self, source: ImageSource) -> Image:
        image = source if isinstance(source, Image) else self.image_service.load(source)
        return self.image_service.scale_down(image)

    def _on_helper_error(self, error: SegmenterError) -> None:
        # Only the delegate fallback is reported here, load failures fail the request
        if isinstance(error, UnsupportedAccelerator):
            self.options["delegate"] = DELEGATE_CPU
            self._ui.submit(self._notify, error)

    def _build_helper(self, request: SegmentationRequest) -> SegmentationService:
        helper = self._helper_factory(on_error=self._on_helper_error, **{
            k: v for k, v in self.options.items() if v is not None
        })
        with self._lock:
            if self._current is not request:
                helper.clear()
                raise Cancelled(f"Request {request.request_id} was cancelled")
            self.helper = helper
        if helper.is_closed():
            raise helper.last_error or SegmenterError("Image segmenter failed to initialize")
        return helper

    def _run_background(self, request: SegmentationRequest) -> None:
        try:
            request.advance(RequestState.LOADING)
            image = self._load(request.source)
            helper = self._build_helper(request)

            request.advance(RequestState.INFERRING)
            result = helper.segment(image)
        except Cancelled:
            logger.debug(f"Request {request.request_id} discarded")
            return
        except Exception as e:
            self._fail(request, e)
            return
        self._ui.submit(self._apply_results, request, image, result)

    # ---------- ui side ----------
    def _apply_results(self, request: SegmentationRequest, image: Image,
                       result: SegmentationResult) -> None:
        try:
            with request.active():
                request.advance(RequestState.DECODING)
                pixels = TensorBufferRepository.decode_result(result, class_count=self.class_count)

                request.advance(RequestState.COMPOSITING)
                height, width = self.image_service.get_image_dimensions(image)
                self.overlay.set_viewport_dimensions(width, height)
                self.overlay.set_mask(pixels, result.width, result.height)
                masked = self.overlay.masked_image(image) or image

                self._set_ui_enabled(True)
                logger.info(f"Request {request.request_id} done in {result.inference_time_ms} ms")
                request.finish(OverlayResult(
                    image=masked,
                    mask_width=result.width,
                    mask_height=result.height,
                    inference_time_ms=result.inference_time_ms,
                ))
        except Cancelled:
            logger.debug(f"Request {request.request_id} discarded")
        except Exception as e:
            self._fail(request, e)

    def _fail(self, request: SegmentationRequest, error: BaseException) -> None:
        logger.error(f"Request {request.request_id} failed: {error}")
        if request.fail(error):
            self._set_ui_enabled(True)
            self._ui.submit(self._segmentation_error, error)

    def _segmentation_error(self, error: BaseException) -> None:
        self.overlay.clear()
        self._notify(error)

    def _notify(self, error: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(error)
