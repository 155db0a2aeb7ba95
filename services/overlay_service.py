import logging

import numpy as np

from models.errors import InvalidBufferSize
from models.image import Image
from models.segmentation_result import SegmentationResult
from repositories.overlay_repository import OverlayRepository
from repositories.tensor_buffer_repository import TensorBufferRepository, DEFAULT_CLASS_COUNT

logger = logging.getLogger(__name__)


class OverlayService:
    """
    Display surface for segmentation masks.

    • set_mask() scales the decoded ARGB mask to fit the viewport.
    • masked_image() keeps only the parts of the base image under opaque mask pixels.
    • update_count counts the overlay updates actually applied.
    """

    def __init__(self, width: int = 0, height: int = 0) -> None:
        self.overlay_repository = OverlayRepository()
        self.width = width
        self.height = height
        self._scaled_mask: np.ndarray | None = None
        self.update_count = 0

    def set_viewport_dimensions(self, width: int, height: int) -> None:
        self.width = width
        self.height = height

    @property
    def scaled_mask(self) -> np.ndarray | None:
        """(h, w, 4) uint8 RGBA, or None when nothing is shown."""
        return self._scaled_mask

    def clear(self) -> None:
        self._scaled_mask = None

    def set_mask(self, pixels: np.ndarray, width: int, height: int) -> None:
        if pixels.size != width * height:
            raise InvalidBufferSize(f"{pixels.size} mask pixels for a {width}x{height} mask")

        size = self.overlay_repository.scaled_size(width, height, self.width, self.height)
        if size is None:
            logger.debug(f"Skipping overlay: mask {width}x{height}, viewport {self.width}x{self.height}")
            return

        rgba = TensorBufferRepository.argb_to_rgba(pixels.reshape(height, width))
        self._scaled_mask = self.overlay_repository.scale_mask(rgba, *size)
        self.update_count += 1

    def masked_image(self, base: Image) -> Image | None:
        if self._scaled_mask is None:
            return None
        pixels = self.overlay_repository.composite_destination_in(base.pixels, self._scaled_mask)
        return Image(pixels=pixels, path=base.path)

    def apply_result(
            self,
            base: Image,
            result: SegmentationResult,
            class_count: int = DEFAULT_CLASS_COUNT,
    ) -> Image:
        """
        Decode *result*, show it and return the masked base image.
        The base image comes back unchanged when there is nothing to composite.
        """
        pixels = TensorBufferRepository.decode_result(result, class_count=class_count)
        self.set_mask(pixels, result.width, result.height)
        return self.masked_image(base) or base
