# pipeline/segment_gallery.py
from pathlib import Path
import logging
import os
from typing import Iterable, List

from dotenv import load_dotenv
from tqdm import tqdm

from models.image import Image
from models.segmentation_result import OverlayResult
from repositories.tensor_buffer_repository import DEFAULT_CLASS_COUNT
from services.image_service import ImageService
from services.overlay_service import OverlayService
from services.segmentation_service import SegmentationService

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# env‑vars
load_dotenv()
OUTPUT_DIR = os.getenv("OUTPUT_DIR_PATH", "data/masked_gallery")
MASK_CLASS_COUNT = int(os.getenv("MASK_CLASS_COUNT", str(DEFAULT_CLASS_COUNT)))


# ------------------------------------------------------------------
def segment_gallery(
    gallery: Iterable[Image],
    *,
    segmentation_service: SegmentationService,
    image_service: ImageService | None = None,
    output_dir: str | Path = OUTPUT_DIR,
    class_count: int = MASK_CLASS_COUNT,
    save: bool = True,
    progress: bool = True,
) -> List[OverlayResult]:
    """
    For every Image in *gallery*:
        • scale down to the input width
        • run the segmenter and decode the category mask
        • keep only the pixels under the mask (destination-in)
        • save as <stem>_masked.png in *output_dir*
    Runs synchronously; one failing image stops the batch.
    """
    image_service = image_service or ImageService()
    output_dir = Path(output_dir)

    results: List[OverlayResult] = []
    for i, img in enumerate(tqdm(gallery, desc="Segmenting", unit="img", disable=not progress)):
        scaled = image_service.scale_down(img)
        height, width = image_service.get_image_dimensions(scaled)

        result = segmentation_service.segment(scaled)
        masked = OverlayService(width, height).apply_result(scaled, result, class_count=class_count)

        stem = Path(img.path).stem if img.path else f"image_{i:04d}"
        masked.path = output_dir / f"{stem}_masked.png"
        if save:
            image_service.save(masked)
        logger.info(f"{stem}: {result.width}x{result.height} mask in {result.inference_time_ms} ms")

        results.append(OverlayResult(
            image=masked,
            mask_width=result.width,
            mask_height=result.height,
            inference_time_ms=result.inference_time_ms,
        ))

    return results
