#!/usr/bin/env python3
"""
Segment one image or a folder of images and write the masked results as PNG.
"""
import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# --- Centralized Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
    datefmt='%H:%M:%S'
)

from models.errors import SegmenterError
from pipeline.segment_gallery import segment_gallery, OUTPUT_DIR
from services.gallery_service import GalleryService
from services.image_service import ImageService
from services.segmentation_service import (
    BACKEND_INTERPRETER, BACKEND_VISION, MODEL_PATHS, SegmentationService,
)

logger = logging.getLogger("segmenter")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", type=Path, help="image file or folder of images")
    parser.add_argument("--model", choices=sorted(MODEL_PATHS), default=None)
    parser.add_argument("--delegate", choices=["CPU", "GPU", "NNAPI"], default=None)
    parser.add_argument("--backend", choices=[BACKEND_VISION, BACKEND_INTERPRETER], default=None)
    parser.add_argument("--output-dir", type=Path, default=Path(OUTPUT_DIR))
    parser.add_argument("--recursive", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _report(error: BaseException) -> None:
    logger.warning(f"{type(error).__name__}: {error}")


def segment_file(path: Path, args: argparse.Namespace, image_service: ImageService) -> None:
    gallery = GalleryService(image_service=image_service, on_error=_report,
                             model=args.model, delegate=args.delegate, backend=args.backend)
    try:
        outcome = gallery.run_segmentation(path).result()
    finally:
        gallery.shutdown()

    outcome.image.path = args.output_dir / f"{path.stem}_masked.png"
    image_service.save(outcome.image)
    logger.info(f"Saved {outcome.image.path} ({outcome.inference_time_ms} ms)")


def segment_folder(folder: Path, args: argparse.Namespace, image_service: ImageService) -> None:
    service = SegmentationService(model=args.model, delegate=args.delegate,
                                  backend=args.backend, on_error=_report)
    try:
        if service.is_closed():
            raise service.last_error
        results = segment_gallery(
            image_service.stream_gallery(folder, recursive=args.recursive),
            segmentation_service=service,
            image_service=image_service,
            output_dir=args.output_dir,
        )
    finally:
        service.clear()
    logger.info(f"Masked {len(results)} images into {args.output_dir}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    image_service = ImageService()
    try:
        if args.path.is_dir():
            segment_folder(args.path, args, image_service)
        else:
            segment_file(args.path, args, image_service)
    except (SegmenterError, FileNotFoundError, NotADirectoryError, ValueError) as e:
        logger.error(f"Segmentation failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
