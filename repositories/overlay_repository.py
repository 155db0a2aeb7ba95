# repositories/overlay_repository.py
from __future__ import annotations
from typing import Tuple

import cv2
import numpy as np


class OverlayRepository:
    """
    Mask scaling + destination-in compositing on RGBA numpy arrays.
    """

    @staticmethod
    def scale_factor(mask_w: int, mask_h: int, view_w: int, view_h: int) -> float | None:
        """Uniform fit-inside factor, None when any side is empty."""
        if min(mask_w, mask_h, view_w, view_h) <= 0:
            return None
        return min(view_w / mask_w, view_h / mask_h)

    @staticmethod
    def scaled_size(mask_w: int, mask_h: int, view_w: int, view_h: int) -> Tuple[int, int] | None:
        """
        Mask size after fitting into the viewport.
        The limiting axis matches the viewport exactly (integer math, no float drift).
        """
        if OverlayRepository.scale_factor(mask_w, mask_h, view_w, view_h) is None:
            return None
        if view_w * mask_h <= view_h * mask_w:
            size = (view_w, mask_h * view_w // mask_w)
        else:
            size = (mask_w * view_h // mask_h, view_h)
        if min(size) <= 0:
            return None
        return size

    @staticmethod
    def scale_mask(mask_rgba: np.ndarray, width: int, height: int) -> np.ndarray:
        # nearest neighbour: class edges stay hard
        return cv2.resize(mask_rgba, (width, height), interpolation=cv2.INTER_NEAREST)

    @staticmethod
    def to_rgba(pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim == 2:
            pixels = np.stack([pixels] * 3, axis=-1)
        if pixels.shape[2] == 4:
            return pixels.astype(np.uint8)
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
        return np.concatenate([pixels[:, :, :3].astype(np.uint8), alpha], axis=-1)

    @staticmethod
    def composite_destination_in(base: np.ndarray, mask_rgba: np.ndarray) -> np.ndarray:
        """
        Draw *base* at the origin of a mask-sized canvas, then the mask with
        DST_IN: keep base colour, alpha = base.a * mask.a / 255.
        Canvas areas the base does not cover stay transparent.
        """
        mh, mw = mask_rgba.shape[:2]
        base_rgba = OverlayRepository.to_rgba(base)
        h = min(mh, base_rgba.shape[0])
        w = min(mw, base_rgba.shape[1])

        canvas = np.zeros((mh, mw, 4), dtype=np.uint8)
        canvas[:h, :w] = base_rgba[:h, :w]

        alpha = canvas[:, :, 3].astype(np.uint16) * mask_rgba[:, :, 3].astype(np.uint16) // 255
        canvas[:, :, 3] = alpha.astype(np.uint8)
        canvas[alpha == 0] = 0
        return canvas
