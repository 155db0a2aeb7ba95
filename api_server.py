#!/usr/bin/env python3
"""
Image Segmenter API Server
Upload an image, get it back masked by the selected segmentation model.
"""

import os
import logging
import threading
from typing import Dict, Tuple
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.utils import secure_filename

# --- Centralized Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)-25s - %(levelname)-8s - %(message)s',
    datefmt='%H:%M:%S'
)

from models.errors import SegmenterError, UnsupportedMediaType
from repositories.tensor_buffer_repository import DEFAULT_CLASS_COUNT
from services.image_service import ImageService
from services.overlay_service import OverlayService
from services.segmentation_service import (
    DELEGATES, MODEL_PATHS, SegmentationService,
)

app = Flask(__name__)
CORS(app)  # Enable CORS for frontend communication

# Configuration
ALLOWED_EXTENSIONS = set(os.getenv("ALLOWED_EXTENSIONS", "png,jpg,jpeg,bmp,webp").split(","))
MAX_CONTENT_LENGTH = int(os.getenv("MAX_UPLOAD_SIZE_MB", "20")) * 1024 * 1024
MASK_CLASS_COUNT = int(os.getenv("MASK_CLASS_COUNT", str(DEFAULT_CLASS_COUNT)))

app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH

# Initialize services
image_service = ImageService()

logger = logging.getLogger(__name__)

# One segmenter per (model, delegate, backend), built on first use
SEGMENTATION_SERVICE_FACTORY = SegmentationService
segmenters: Dict[Tuple[str, str, str], SegmentationService] = {}
segmenters_lock = threading.Lock()


def allowed_file(filename: str) -> bool:
    """Check if file extension is allowed."""
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def get_segmentation_service(model: str = None, delegate: str = None,
                             backend: str = None) -> SegmentationService:
    key = (model, delegate, backend)
    with segmenters_lock:
        service = segmenters.get(key)
        if service is None or service.is_closed():
            if service is not None:
                service.clear()
            service = SEGMENTATION_SERVICE_FACTORY(
                model=model, delegate=delegate, backend=backend,
                on_error=lambda e: logger.warning(f"Segmenter setup: {e}"),
            )
            segmenters[key] = service
        return service


def clear_segmentation_services() -> None:
    with segmenters_lock:
        for service in segmenters.values():
            service.clear()
        segmenters.clear()


def _optional_int(name: str) -> int:
    value = request.form.get(name)
    return int(value) if value else 0


@app.route('/api/segment', methods=['POST'])
def segment():
    """Segment one uploaded image and return it masked as a PNG data URL."""
    try:
        if 'image' not in request.files:
            return jsonify({'success': False, 'message': 'No image provided'}), 400

        file = request.files['image']
        if file.filename == '':
            return jsonify({'success': False, 'message': 'No file selected'}), 400
        filename = secure_filename(file.filename)
        if not allowed_file(filename):
            return jsonify({'success': False, 'message': 'Unsupported data type.'}), 400

        service = get_segmentation_service(
            model=request.form.get('model') or None,
            delegate=request.form.get('delegate') or None,
            backend=request.form.get('backend') or None,
        )
        if service.is_closed():
            message = service.last_error.message if service.last_error else 'Image segmenter failed to initialize'
            return jsonify({'success': False, 'message': message}), 500

        image = image_service.scale_down(image_service.decode_upload(file.read()))
        height, width = image_service.get_image_dimensions(image)
        logger.info(f"Segmenting {filename}: {width}x{height} with {service.model}/{service.delegate}")

        result = service.segment(image)
        overlay = OverlayService(_optional_int('viewport_width') or width,
                                 _optional_int('viewport_height') or height)
        masked = overlay.apply_result(image, result, class_count=MASK_CLASS_COUNT)

        return jsonify({
            'success': True,
            'image': image_service.to_base64_png(masked),
            'mask_width': result.width,
            'mask_height': result.height,
            'inference_time_ms': result.inference_time_ms,
            'model': service.model,
            'delegate': service.delegate,
        })

    except (UnsupportedMediaType, ValueError) as e:
        logger.error(f"Rejected segmentation request: {e}")
        return jsonify({'success': False, 'message': str(e)}), 400
    except SegmenterError as e:
        logger.error(f"Segmentation error: {e}")
        return jsonify({'success': False, 'message': e.message, 'error_code': e.error_code}), 500
    except Exception as e:
        logger.error(f"Unexpected segmentation error: {e}")
        return jsonify({'success': False, 'message': f'Error in segmentation: {str(e)}'}), 500


@app.route('/api/models', methods=['GET'])
def list_models():
    """Models and delegates that can be selected."""
    return jsonify({
        'models': sorted(MODEL_PATHS),
        'delegates': {backend: list(delegates) for backend, delegates in DELEGATES.items()},
    })


@app.route('/api/health', methods=['GET'])
def health():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'loaded_segmenters': len(segmenters),
    })


if __name__ == '__main__':
    port = int(os.getenv("API_PORT", "5000"))
    logger.info(f"Starting Image Segmenter API on port {port}")
    try:
        app.run(host='0.0.0.0', port=port, debug=False, threaded=True)
    finally:
        clear_segmentation_services()
