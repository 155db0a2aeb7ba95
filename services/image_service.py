from pathlib import Path
from typing import Iterable, Union, Iterator
from io import BytesIO
import base64
import os

import numpy as np
from PIL import Image as PILImage
from dotenv import load_dotenv

from models.image import Image
from repositories.image_repository import ImageRepository

# Load environment variables
load_dotenv()


class ImageService:
    """I/O and sizing helpers.  No model calls."""
    def __init__(self):
        self.INPUT_IMAGE_MAX_WIDTH = int(os.getenv("INPUT_IMAGE_MAX_WIDTH", "512"))
        self.PNG_COMPRESSION = int(os.getenv("PNG_COMPRESSION", "6"))
        self.image_repository = ImageRepository()

    def create_image(self, pixels: np.ndarray, path: Union[str, Path] = None) -> Image:
        return self.image_repository.create_image(pixels, path)

    def load(self, path: str | Path) -> Image:
        """Load a single image from disk into an Image object."""
        return self.image_repository.load(path)

    def decode_upload(self, data: bytes) -> Image:
        return self.image_repository.decode(data)

    def stream_gallery(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[Image]:
        """
        Yield images lazily instead of returning a gigantic list.
        """
        return self.image_repository.iter_dir(folder,
                                              recursive=recursive,
                                              exts=exts)

    def save(self, image: Image) -> None:
        self.image_repository.save(image)

    def get_image_dimensions(self, img: Image):
        """(height, width)"""
        return img.pixels.shape[:2]

    def scale_down(self, img: Image, max_width: int | None = None) -> Image:
        """
        Shrink to *max_width* keeping the aspect ratio.
        Images already narrower are returned as they are.
        """
        max_width = max_width or self.INPUT_IMAGE_MAX_WIDTH
        height, width = self.get_image_dimensions(img)
        if max_width >= width:
            return img

        aspect_ratio = width / height
        target_height = max(1, int(max_width / aspect_ratio))
        pixels = self.image_repository.resize(img.pixels, int(max_width), target_height)
        return self.create_image(pixels, img.path)

    def to_pil_image(self, img: Image) -> PILImage.Image:
        np_img = img.pixels
        if not np_img.flags['C_CONTIGUOUS']:
            np_img = np.ascontiguousarray(np_img)
        return PILImage.fromarray(np_img)

    def to_base64_png(self, img: Image) -> str:
        """PNG keeps the mask's alpha channel, JPEG would drop it."""
        buffer = BytesIO()
        self.to_pil_image(img).save(buffer, format="PNG", compress_level=self.PNG_COMPRESSION)
        base64_string = base64.b64encode(buffer.getvalue()).decode("utf-8")
        return f"data:image/png;base64,{base64_string}"
