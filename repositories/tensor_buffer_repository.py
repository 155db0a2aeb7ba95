# repositories/tensor_buffer_repository.py
from __future__ import annotations
from typing import Tuple, Union

import cv2
import numpy as np

from models.errors import InvalidBufferSize
from models.image import Image
from models.segmentation_result import OUTPUT_CATEGORY, OUTPUT_CONFIDENCE, SegmentationResult

BufferLike = Union[bytes, bytearray, memoryview, np.ndarray]

# ARGB_8888 colours, packed as 0xAARRGGBB
TRANSPARENT = 0x00000000
BLUE = 0xFF0000FF
HIGHLIGHT_COLOR = BLUE

DEFAULT_CLASS_COUNT = 20
DEFAULT_INPUT_SIZE = 257
DEFAULT_CONFIDENCE_THRESHOLD = 0.5


class TensorBufferRepository:
    """
    Byte-level marshaling between images and model tensors.

    • pack_input    : image → flat float32 input buffer
    • mask_from_output : output tensor → category or confidence mask bytes
    • decode_*      : raw mask buffer → ARGB mask pixels
    No model calls here.
    """

    @staticmethod
    def expected_input_size(size: int, channels: int = 3, byte_width: int = 4) -> int:
        return size * size * channels * byte_width

    # ---------- input packer ----------
    @staticmethod
    def pack_input(image: Image, size: int = DEFAULT_INPUT_SIZE) -> bytes:
        """
        Resize to size × size (aspect ratio NOT kept, the model wants a square)
        and emit three float32 per pixel, (channel - 127) / 255, native byte order.
        Alpha is dropped, gray is repeated over R, G and B.
        """
        if image is None or image.pixels is None:
            raise ValueError("Cannot pack an empty image")
        pixels = image.pixels
        if pixels.ndim not in (2, 3) or pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise ValueError(f"Cannot pack an image of shape {pixels.shape}")
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        if pixels.shape[2] < 3:
            pixels = np.repeat(pixels[:, :, :1], 3, axis=2)

        resized = cv2.resize(np.ascontiguousarray(pixels[:, :, :3]), (size, size),
                             interpolation=cv2.INTER_LINEAR)
        normalized = (resized.astype(np.float32) - 127.0) / 255.0
        buffer = np.ascontiguousarray(normalized, dtype=np.float32).tobytes()

        expected = TensorBufferRepository.expected_input_size(size)
        if len(buffer) != expected:
            raise InvalidBufferSize(f"Packed {len(buffer)} bytes, expected {expected}")
        return buffer

    # ---------- output tensor ----------
    @staticmethod
    def category_mask_from_scores(scores: np.ndarray) -> bytes:
        """
        (H, W, C) per-class scores → one class byte per pixel (argmax).
        A (H, W) array is taken as class indices already.
        """
        if scores.ndim == 3:
            scores = np.argmax(scores, axis=-1)
        elif scores.ndim != 2:
            raise InvalidBufferSize(f"Unexpected output tensor shape {scores.shape}")
        return np.ascontiguousarray(scores, dtype=np.uint8).tobytes()

    @staticmethod
    def mask_from_output(output: np.ndarray) -> Tuple[bytes, str]:
        """
        Interpreter output → (mask bytes, output type).

        • (H, W, C>1) scores          → category mask (argmax)
        • (H, W, 1) or (H, W) floats  → confidence mask, float32 per pixel
        • (H, W) integers             → category mask as is
        """
        if output.ndim == 3 and output.shape[2] == 1:
            output = output[:, :, 0]
        if output.ndim == 2 and np.issubdtype(output.dtype, np.floating):
            return np.ascontiguousarray(output, dtype=np.float32).tobytes(), OUTPUT_CONFIDENCE
        return TensorBufferRepository.category_mask_from_scores(output), OUTPUT_CATEGORY

    # ---------- output decoder ----------
    @staticmethod
    def _check_dimensions(length: int, width: int, height: int) -> None:
        if width < 0 or height < 0 or length != width * height:
            raise InvalidBufferSize(
                f"Buffer holds {length} values, mask is {width}x{height}"
            )

    @staticmethod
    def decode_category_mask(
            buffer: BufferLike,
            width: int,
            height: int,
            class_count: int = DEFAULT_CLASS_COUNT,
            color: int = HIGHLIGHT_COLOR,
    ) -> np.ndarray:
        """
        One byte per pixel → (H, W) uint32 ARGB.
        byte mod class_count == 0 is background (transparent), anything else
        gets the single highlight colour. An empty 0-sized mask decodes to an
        empty array.
        """
        data = np.frombuffer(buffer, dtype=np.uint8)
        TensorBufferRepository._check_dimensions(data.size, width, height)

        class_index = data % class_count
        pixels = np.where(class_index == 0, TRANSPARENT, color).astype(np.uint32)
        return pixels.reshape(height, width)

    @staticmethod
    def decode_confidence_mask(
            buffer: BufferLike,
            width: int,
            height: int,
            threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
            color: int = HIGHLIGHT_COLOR,
    ) -> np.ndarray:
        """One float32 confidence per pixel → (H, W) uint32 ARGB."""
        data = np.frombuffer(buffer, dtype=np.float32)
        TensorBufferRepository._check_dimensions(data.size, width, height)

        pixels = np.where(data > threshold, color, TRANSPARENT).astype(np.uint32)
        return pixels.reshape(height, width)

    @staticmethod
    def decode_result(
            result: SegmentationResult,
            class_count: int = DEFAULT_CLASS_COUNT,
            threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ) -> np.ndarray:
        if result.output_type == OUTPUT_CONFIDENCE:
            return TensorBufferRepository.decode_confidence_mask(
                result.mask, result.width, result.height, threshold=threshold
            )
        return TensorBufferRepository.decode_category_mask(
            result.mask, result.width, result.height, class_count=class_count
        )

    # ---------- colour helpers ----------
    @staticmethod
    def argb_to_rgba(pixels: np.ndarray) -> np.ndarray:
        """(H, W) uint32 ARGB → (H, W, 4) uint8 RGBA."""
        p = pixels.astype(np.uint32)
        a = (p >> 24) & 0xFF
        r = (p >> 16) & 0xFF
        g = (p >> 8) & 0xFF
        b = p & 0xFF
        return np.stack([r, g, b, a], axis=-1).astype(np.uint8)
