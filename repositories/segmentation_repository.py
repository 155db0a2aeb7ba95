# repositories/segmentation_repository.py
import logging
import time

from models.image import Image
from models.interpreter_engine import InterpreterEngine
from models.segmentation_engine import SegmentationEngine
from models.segmentation_result import SegmentationResult
from repositories.tensor_buffer_repository import TensorBufferRepository

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class SegmentationRepository:
    """
    One-image inference through the MediaPipe vision task.
    Returns the category mask as raw bytes (one class index per pixel).
    """

    def __init__(self, engine: SegmentationEngine) -> None:
        self.engine = engine

    def retrieve_mask(self, img: Image) -> SegmentationResult:
        start = time.perf_counter()
        mask = self.engine.predict(img.pixels)          # uint8 (H, W)
        height, width = mask.shape[:2]
        return SegmentationResult(
            mask=mask.tobytes(),
            width=width,
            height=height,
            inference_time_ms=_elapsed_ms(start),
        )

    def close(self) -> None:
        self.engine.close()


class InterpreterSegmentationRepository:
    """
    One-image inference through a raw TFLite interpreter.

    • Packs the image into the model's float32 input buffer.
    • Multi-class score tensors become a category mask (argmax),
      single-channel float maps stay a confidence mask.
    """

    def __init__(self, engine: InterpreterEngine) -> None:
        self.engine = engine
        self.buffers = TensorBufferRepository()

    def retrieve_mask(self, img: Image) -> SegmentationResult:
        start = time.perf_counter()
        size = self.engine.input_size
        input_buffer = self.buffers.pack_input(img, size=size)
        output = self.engine.run(input_buffer)
        logger.debug(f"Interpreter output tensor: {output.shape} {output.dtype}")

        mask, output_type = self.buffers.mask_from_output(output)
        height, width = output.shape[:2]
        return SegmentationResult(
            mask=mask,
            width=width,
            height=height,
            inference_time_ms=_elapsed_ms(start),
            output_type=output_type,
        )

    def close(self) -> None:
        self.engine.close()
