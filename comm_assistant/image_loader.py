"""
图片加载器 - 读取聊天截图并检查是否适合文字识别
"""
import base64
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MIN_DIMENSION = 200
MIN_ASPECT_RATIO = 0.2
MAX_ASPECT_RATIO = 5.0
SUPPORTED_FORMATS = (".jpg", ".jpeg", ".png")


class ImageLoadError(Exception):
    """图片加载错误"""
    pass


@dataclass
class LoadedImage:
    """已加载的图片"""
    path: str
    file_name: str
    file_size: int
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def load_image(path: str) -> LoadedImage:
    """用OpenCV读取图片"""
    if not os.path.isfile(path):
        raise ImageLoadError(f"Image file not found: {path}")

    if not path.lower().endswith(SUPPORTED_FORMATS):
        logger.warning(f"Unexpected image extension, trying anyway: {path}")

    pixels = cv2.imread(path, cv2.IMREAD_COLOR)
    if pixels is None:
        raise ImageLoadError(f"Cannot decode image: {path}")

    return LoadedImage(
        path=path,
        file_name=os.path.basename(path),
        file_size=os.path.getsize(path),
        pixels=pixels,
    )


def validate_for_ocr(image: LoadedImage) -> Tuple[bool, Optional[str]]:
    """
    检查图片是否适合文字识别

    Returns:
        (是否可用, 不可用时的提示)
    """
    if image.file_size > MAX_FILE_SIZE:
        return False, "Image file is too large. Please select an image smaller than 10MB."

    if image.width < MIN_DIMENSION or image.height < MIN_DIMENSION:
        return False, "Image is too small. Please select a larger image for better text recognition."

    # 过宽/过高的图片识别效果差
    aspect_ratio = image.width / image.height
    if aspect_ratio > MAX_ASPECT_RATIO or aspect_ratio < MIN_ASPECT_RATIO:
        return False, "Image aspect ratio is unusual. Please select a more standard screenshot format."

    return True, None


def downscale(pixels: np.ndarray, max_width: int, max_height: int) -> np.ndarray:
    """等比缩小到不超过 max_width x max_height"""
    height, width = pixels.shape[:2]
    scale = min(max_width / width, max_height / height, 1.0)
    if scale >= 1.0:
        return pixels
    size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)


def encode_jpeg_base64(pixels: np.ndarray, quality: int = 80) -> str:
    """将图片编码为Base64 JPEG"""
    success, buffer = cv2.imencode('.jpg', pixels, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        raise ImageLoadError("Failed to encode image to JPEG")
    return base64.b64encode(buffer).decode('utf-8')


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def image_metadata(image: LoadedImage) -> Dict[str, str]:
    return {
        "file_name": image.file_name,
        "file_size": format_file_size(image.file_size),
        "dimensions": f"{image.width} × {image.height}",
        "aspect_ratio": f"{image.width / image.height:.2f}",
    }
