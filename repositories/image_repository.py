from pathlib import Path
from typing import Union, Iterable, Iterator
import logging
import mimetypes
import os

import numpy as np
import cv2
from PIL import Image as PILImage
from dotenv import load_dotenv

from models.errors import UnsupportedMediaType
from models.image import Image

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


class ImageRepository:
    """
    Handles file I/O for Image entities.
    """
    def __init__(self):
        exts = os.getenv("VALID_IMAGE_EXTENSIONS", ".jpg,.jpeg,.png,.bmp,.webp")
        self.VALID_EXTS = {ext.strip().lower() for ext in exts.split(",") if ext.strip()}

    @staticmethod
    def create_image(pixels: np.ndarray, path: Union[str, Path] = None) -> Image:
        if path is None:
            return Image(pixels)
        return Image(pixels=pixels, path=Path(path))

    @staticmethod
    def retrieve_media_type(path: Union[str, Path]) -> str:
        """'image', 'video' or 'unknown', from the file's mime type."""
        mime_type, _ = mimetypes.guess_type(str(path))
        if mime_type is None:
            return "unknown"
        if mime_type.startswith("image"):
            return "image"
        if mime_type.startswith("video"):
            return "video"
        return "unknown"

    @staticmethod
    def load(path: Union[str, Path], rgb: bool = True) -> Image:
        path = Path(path)
        if ImageRepository.retrieve_media_type(path) != "image":
            raise UnsupportedMediaType(f"Unsupported data type: {path.name}")

        arr_bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if arr_bgr is None:
            raise FileNotFoundError(f"Image not found or unreadable: {path}")

        arr = arr_bgr[:, :, ::-1] if rgb else arr_bgr
        return Image(pixels=np.ascontiguousarray(arr), path=path)

    @staticmethod
    def decode(data: bytes) -> Image:
        """Decode an in-memory encoded image (upload body) to RGB."""
        arr_bgr = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if arr_bgr is None:
            raise UnsupportedMediaType("Unsupported data type.")
        return Image(pixels=np.ascontiguousarray(arr_bgr[:, :, ::-1]))

    @staticmethod
    def save(image: Image) -> None:
        Path(image.path).parent.mkdir(parents=True, exist_ok=True)
        PILImage.fromarray(image.pixels).save(image.path)

    @staticmethod
    def resize(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
        return cv2.resize(pixels, (width, height), interpolation=cv2.INTER_LINEAR)

    def iter_dir(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Image]:
        """
        Yield Image objects one at a time.  Nothing accumulates in memory.
        """
        folder = Path(folder)
        if not folder.is_dir():
            raise NotADirectoryError(folder)

        allowed = {e.lower() for e in (exts or self.VALID_EXTS)}
        pattern = "**/*" if recursive else "*"

        for p in sorted(folder.glob(pattern)):
            if p.suffix.lower() not in allowed or not p.is_file():
                logger.debug(f"Skipping {p}")
                continue
            try:
                yield self.load(p)
            except (FileNotFoundError, UnsupportedMediaType) as err:
                logger.warning(f"Skipping {p.name}: {err}")
