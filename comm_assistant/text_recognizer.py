"""
文字识别器 - 调用视觉大模型识别聊天截图中的文字
输出整体文本、文本块及置信度
"""
import logging
from typing import List, Optional

import httpx

from .image_loader import (
    ImageLoadError, downscale, encode_jpeg_base64, image_metadata, load_image,
    validate_for_ocr,
)
from .json_utils import extract_json_object
from .llm_client import ChatRequest, LLMClient, LLMClientError
from .models import BoundingBox, LLMConfig, OCRResult, RecognizerConfig, TextBlock

logger = logging.getLogger(__name__)


OCR_PROMPT = """Read all text in this chat screenshot, top to bottom.
Keep each chat bubble as one block and keep the sender name prefix ("Name: ...") when it is visible.
Return JSON only:
{
  "blocks": [
    {"text": "block text", "confidence": 0.0-1.0, "bbox": [x, y, width, height]}
  ]
}"""


class TextRecognitionError(Exception):
    """文字识别错误"""
    pass


def overall_confidence(blocks: List[TextBlock]) -> float:
    """文本块置信度均值，限制在[0, 1]，无文本块时为0"""
    if not blocks:
        return 0.0
    mean = sum(block.confidence for block in blocks) / len(blocks)
    return max(0.0, min(1.0, mean))


class TextRecognizer:
    """文字识别器"""

    def __init__(
        self,
        config: Optional[RecognizerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or RecognizerConfig()
        self.client = LLMClient(
            LLMConfig(
                base_url=self.config.base_url,
                api_key=self.config.api_key,
                model=self.config.model,
                temperature=0.0,
                max_tokens=2000,
                max_retries=self.config.max_retries,
                timeout=self.config.timeout,
            ),
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.close()

    def _build_request(self, image_data: str) -> ChatRequest:
        return ChatRequest(
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_data}"},
                        },
                        {"type": "text", "text": OCR_PROMPT},
                    ],
                }
            ]
        )

    def _parse_block(self, data: dict) -> Optional[TextBlock]:
        text = str(data.get("text", "")).strip()
        if not text:
            return None

        try:
            confidence = float(data.get("confidence") or self.config.default_block_confidence)
        except (TypeError, ValueError):
            confidence = self.config.default_block_confidence

        box = None
        bbox = data.get("bbox")
        if isinstance(bbox, (list, tuple)) and len(bbox) == 4:
            try:
                box = BoundingBox(*(float(v) for v in bbox))
            except (TypeError, ValueError):
                box = None

        return TextBlock(text=text, confidence=confidence, bounding_box=box)

    def parse_response(self, response: str) -> OCRResult:
        """解析识别结果；非JSON回复按空行分段"""
        parsed = extract_json_object(response)
        blocks: List[TextBlock] = []

        if parsed is not None and isinstance(parsed.get("blocks"), list):
            for item in parsed["blocks"]:
                if isinstance(item, dict):
                    block = self._parse_block(item)
                    if block:
                        blocks.append(block)
        else:
            for paragraph in response.split("\n\n"):
                if paragraph.strip():
                    blocks.append(TextBlock(
                        text=paragraph.strip(),
                        confidence=self.config.default_block_confidence,
                    ))

        return OCRResult(
            text="\n".join(block.text for block in blocks),
            confidence=overall_confidence(blocks),
            blocks=blocks,
        )

    async def recognize(self, image_uri: str) -> OCRResult:
        """
        识别图片中的文字

        Args:
            image_uri: 本地图片路径

        Returns:
            OCRResult: 识别结果
        """
        try:
            image = load_image(image_uri)
            logger.debug(f"Loaded image for recognition: {image_metadata(image)}")
            is_valid, message = validate_for_ocr(image)
            if not is_valid:
                raise TextRecognitionError(message)

            pixels = downscale(image.pixels, self.config.max_width, self.config.max_height)
            image_data = encode_jpeg_base64(pixels, self.config.jpeg_quality)
        except ImageLoadError as e:
            raise TextRecognitionError(str(e)) from e

        try:
            response = await self.client.complete(self._build_request(image_data))
        except LLMClientError as e:
            logger.error(f"OCR extraction failed: {e}")
            raise TextRecognitionError("Failed to extract text from image") from e

        result = self.parse_response(response)
        if result.blocks and result.confidence < self.config.min_confidence:
            logger.warning(
                f"Low recognition confidence {result.confidence:.2f} for {image_uri}"
            )
        logger.info(f"Recognized {len(result.blocks)} text blocks from {image_uri}")
        return result
