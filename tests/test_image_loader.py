"""
图片加载与校验测试
"""
import base64

import cv2
import numpy as np
import pytest

from comm_assistant.image_loader import (
    ImageLoadError, LoadedImage, MAX_FILE_SIZE, downscale, encode_jpeg_base64,
    format_file_size, image_metadata, load_image, validate_for_ocr,
)


def make_image(width: int, height: int, file_size: int = 1024) -> LoadedImage:
    return LoadedImage(
        path="/tmp/fake.png",
        file_name="fake.png",
        file_size=file_size,
        pixels=np.zeros((height, width, 3), dtype=np.uint8),
    )


class TestValidation:

    def test_regular_screenshot_is_valid(self):
        assert validate_for_ocr(make_image(1080, 1920)) == (True, None)

    def test_too_large_file(self):
        is_valid, message = validate_for_ocr(make_image(1080, 1920, MAX_FILE_SIZE + 1))
        assert not is_valid
        assert "too large" in message

    def test_exactly_ten_megabytes_is_allowed(self):
        assert validate_for_ocr(make_image(1080, 1920, MAX_FILE_SIZE))[0] is True

    @pytest.mark.parametrize("width, height", [(199, 800), (800, 199), (100, 100)])
    def test_too_small(self, width, height):
        is_valid, message = validate_for_ocr(make_image(width, height))
        assert not is_valid
        assert "too small" in message

    @pytest.mark.parametrize("width, height", [(1001, 200), (200, 1001)])
    def test_unusual_aspect_ratio(self, width, height):
        is_valid, message = validate_for_ocr(make_image(width, height))
        assert not is_valid
        assert "aspect ratio" in message

    @pytest.mark.parametrize("width, height", [(1000, 200), (200, 1000)])
    def test_aspect_ratio_bounds_are_inclusive(self, width, height):
        assert validate_for_ocr(make_image(width, height))[0] is True


class TestLoading:

    def test_load_png(self, tmp_path):
        path = tmp_path / "chat.png"
        cv2.imwrite(str(path), np.full((400, 300, 3), 255, dtype=np.uint8))

        image = load_image(str(path))
        assert (image.width, image.height) == (300, 400)
        assert image.file_name == "chat.png"
        assert image.file_size == path.stat().st_size

    def test_missing_file(self, tmp_path):
        with pytest.raises(ImageLoadError, match="not found"):
            load_image(str(tmp_path / "missing.png"))

    def test_undecodable_file(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"definitely not an image")
        with pytest.raises(ImageLoadError, match="Cannot decode"):
            load_image(str(path))


class TestTransforms:

    def test_downscale_keeps_aspect_ratio(self):
        pixels = np.zeros((4000, 1000, 3), dtype=np.uint8)
        resized = downscale(pixels, 2000, 2000)
        assert resized.shape[:2] == (2000, 500)

    def test_small_image_untouched(self):
        pixels = np.zeros((300, 200, 3), dtype=np.uint8)
        assert downscale(pixels, 2000, 2000) is pixels

    def test_jpeg_encoding(self):
        encoded = encode_jpeg_base64(np.zeros((10, 10, 3), dtype=np.uint8))
        raw = base64.b64decode(encoded)
        assert raw[:2] == b"\xff\xd8"


class TestMetadata:

    @pytest.mark.parametrize("num_bytes, expected", [
        (0, "0 Bytes"),
        (500, "500 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (10 * 1024 * 1024, "10 MB"),
    ])
    def test_format_file_size(self, num_bytes, expected):
        assert format_file_size(num_bytes) == expected

    def test_image_metadata(self):
        metadata = image_metadata(make_image(1080, 1920, 2048))
        assert metadata["file_size"] == "2 KB"
        assert metadata["dimensions"] == "1080 × 1920"
        assert metadata["aspect_ratio"] == "0.56"
