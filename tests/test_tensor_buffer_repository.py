import numpy as np
import pytest

from models.errors import InvalidBufferSize
from models.image import Image
from models.segmentation_result import OUTPUT_CATEGORY, OUTPUT_CONFIDENCE, SegmentationResult
from repositories.tensor_buffer_repository import (
    BLUE, TRANSPARENT, TensorBufferRepository,
)

repo = TensorBufferRepository()


@pytest.mark.parametrize("shape", [(10, 20, 3), (300, 100, 4), (257, 257, 3), (1, 1, 3)])
def test_pack_input_has_fixed_length(shape):
    image = Image(pixels=np.random.randint(0, 256, size=shape, dtype=np.uint8))

    buffer = repo.pack_input(image, size=257)

    assert len(buffer) == 257 * 257 * 3 * 4


def test_pack_input_normalizes_channels_and_drops_alpha():
    pixels = np.zeros((4, 4, 4), dtype=np.uint8)
    pixels[..., 0] = 127
    pixels[..., 1] = 255
    pixels[..., 2] = 0
    pixels[..., 3] = 10

    floats = np.frombuffer(repo.pack_input(Image(pixels=pixels), size=2), dtype=np.float32)

    assert floats.size == 2 * 2 * 3
    np.testing.assert_allclose(floats[:3], [0.0, 128 / 255, -127 / 255], rtol=1e-6)
    np.testing.assert_allclose(floats.reshape(-1, 3), np.tile(floats[:3], (4, 1)))


@pytest.mark.parametrize("shape", [(5, 7), (5, 7, 1)])
def test_pack_input_repeats_gray_over_rgb(shape):
    image = Image(pixels=np.full(shape, 200, dtype=np.uint8))

    floats = np.frombuffer(repo.pack_input(image, size=3), dtype=np.float32)

    assert floats.size == 3 * 3 * 3
    np.testing.assert_allclose(floats, (200 - 127) / 255, rtol=1e-6)


def test_pack_input_rejects_empty_images():
    with pytest.raises(ValueError):
        repo.pack_input(None)
    with pytest.raises(ValueError):
        repo.pack_input(Image(pixels=np.zeros((0, 5, 3), dtype=np.uint8)))


def test_decode_three_by_three_scenario():
    pixels = repo.decode_category_mask(bytes([0, 1, 2, 0, 1, 2, 0, 1, 2]), 3, 3)

    flat = pixels.ravel()
    assert pixels.shape == (3, 3)
    assert pixels.dtype == np.uint32
    for i in range(9):
        expected = TRANSPARENT if i in (0, 3, 6) else BLUE
        assert flat[i] == expected


def test_decode_uses_class_count_modulo():
    pixels = repo.decode_category_mask(bytes([20, 40, 21, 255]), 2, 2).ravel()

    assert list(pixels) == [TRANSPARENT, TRANSPARENT, BLUE, BLUE]


def test_decode_is_pure():
    buffer = bytes(np.random.randint(0, 256, size=64, dtype=np.uint8))

    first = repo.decode_category_mask(buffer, 8, 8)
    second = repo.decode_category_mask(buffer, 8, 8)

    np.testing.assert_array_equal(first, second)


def test_decode_output_length_matches_buffer_capacity():
    buffer = bytearray(range(12))

    pixels = repo.decode_category_mask(buffer, 4, 3)

    assert pixels.size == len(buffer)


@pytest.mark.parametrize("width,height", [(2, 2), (0, 9), (9, 0)])
def test_decode_rejects_mismatched_dimensions(width, height):
    with pytest.raises(InvalidBufferSize):
        repo.decode_category_mask(bytes(9), width, height)


def test_decode_confidence_mask_thresholds_floats():
    buffer = np.array([0.1, 0.9, 0.5, 0.51], dtype=np.float32).tobytes()

    pixels = repo.decode_confidence_mask(buffer, 2, 2).ravel()

    assert list(pixels) == [TRANSPARENT, BLUE, TRANSPARENT, BLUE]


def test_category_mask_from_scores_takes_argmax():
    scores = np.zeros((2, 3, 21), dtype=np.float32)
    scores[0, 1, 15] = 5.0
    scores[1, 2, 7] = 1.0

    mask = np.frombuffer(repo.category_mask_from_scores(scores), dtype=np.uint8).reshape(2, 3)

    assert mask[0, 1] == 15
    assert mask[1, 2] == 7
    assert mask[0, 0] == 0


def test_argb_to_rgba():
    rgba = repo.argb_to_rgba(np.array([[BLUE, TRANSPARENT]], dtype=np.uint32))

    assert rgba.shape == (1, 2, 4)
    assert list(rgba[0, 0]) == [0, 0, 255, 255]
    assert list(rgba[0, 1]) == [0, 0, 0, 0]


def test_decode_empty_mask():
    assert repo.decode_category_mask(b"", 0, 0).shape == (0, 0)
    assert repo.decode_confidence_mask(b"", 0, 0).shape == (0, 0)


def test_single_channel_float_output_is_a_confidence_mask():
    output = np.array([[[0.2], [0.8]], [[0.9], [0.1]]], dtype=np.float32)

    mask, output_type = repo.mask_from_output(output)

    assert output_type == OUTPUT_CONFIDENCE
    np.testing.assert_allclose(np.frombuffer(mask, dtype=np.float32), [0.2, 0.8, 0.9, 0.1])


def test_multi_class_output_is_a_category_mask():
    output = np.zeros((2, 2, 3), dtype=np.float32)
    output[0, 1, 2] = 1.0
    output[1, 0, 1] = 1.0

    mask, output_type = repo.mask_from_output(output)

    assert output_type == OUTPUT_CATEGORY
    assert list(mask) == [0, 2, 1, 0]


def test_decode_result_follows_output_type():
    confidence = np.array([0.2, 0.8, 0.9, 0.1], dtype=np.float32).tobytes()
    categories = bytes([0, 1, 1, 0])

    from_confidence = repo.decode_result(
        SegmentationResult(mask=confidence, width=2, height=2, output_type=OUTPUT_CONFIDENCE))
    from_categories = repo.decode_result(SegmentationResult(mask=categories, width=2, height=2))

    expected = [TRANSPARENT, BLUE, BLUE, TRANSPARENT]
    assert list(from_confidence.ravel()) == expected
    assert list(from_categories.ravel()) == expected
