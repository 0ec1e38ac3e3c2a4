"""
沟通助手主类 - 整合文字识别、对话分析、AI建议与本地存储
流程：截图 -> 识别文字 -> 解析对话 -> AI分析 -> 缓存/保存
"""
import logging
from typing import Any, Dict, List, Optional

from .ai_service import AIService, AIServiceError, fallback_response
from .llm_client import LLMClient
from .models import (
    AIResponse, AnalysisResult, AnalysisType, AssistantConfig, CommunicationMode,
    ConversationData, ResponseOption,
)
from .storage import ConversationStore, KeyValueStore
from .text_analyzer import ConversationTextAnalyzer, validate_conversation_text
from .text_recognizer import TextRecognizer

logger = logging.getLogger(__name__)


class InsufficientTextError(Exception):
    """识别出的文本不足以分析"""
    pass


class ConversationAssistant:
    """沟通助手主类"""

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        recognizer: Optional[TextRecognizer] = None,
        ai_service: Optional[AIService] = None,
        store: Optional[ConversationStore] = None,
        analyzer: Optional[ConversationTextAnalyzer] = None,
    ):
        self.config = config or AssistantConfig()

        # 各组件可注入，便于替换为测试替身
        self.recognizer = recognizer or TextRecognizer(self.config.recognizer_config)
        self.ai_service = ai_service or AIService(LLMClient(self.config.llm_config))
        self.store = store or ConversationStore(
            KeyValueStore(self.config.storage_config.path), self.config.storage_config
        )
        self.analyzer = analyzer or ConversationTextAnalyzer()

        # 统计信息
        self._analyses = 0
        self._ai_failures = 0
        self._recognized_images = 0

    async def _run_ai_analysis(
        self, data: ConversationData, analysis_type: AnalysisType
    ) -> AIResponse:
        try:
            return await self.ai_service.analyze_conversation(data, analysis_type)
        except AIServiceError as e:
            self._ai_failures += 1
            logger.warning(f"AI analysis unavailable, using fallback: {e}")
            return fallback_response()

    def _finish(self, data: ConversationData, ai_response: Optional[AIResponse]) -> AnalysisResult:
        result = AnalysisResult(conversation_data=data)
        if ai_response is not None:
            result.suggestions = ai_response.suggestions
            result.insights = ai_response.insights
            result.analysis = ai_response.analysis
            self.store.cache_analysis_result(data.id, result)

        if self.store.get_settings().auto_save_conversations:
            self.store.save_conversation(data)

        self._analyses += 1
        return result

    async def analyze_text(
        self,
        text: str,
        analysis_type: AnalysisType = AnalysisType.FULL,
        image_uri: Optional[str] = None,
        structured: bool = False,
        use_ai: bool = True,
    ) -> AnalysisResult:
        """
        分析一段对话文本

        Raises:
            InsufficientTextError: 文本太少
            StorageError: 自动保存失败
        """
        is_valid, message = validate_conversation_text(text)
        if not is_valid:
            raise InsufficientTextError(message)

        data = self.analyzer.analyze(text, image_uri=image_uri, structured=structured)
        logger.info(
            f"Parsed {len(data.messages)} messages from {len(data.participants)} participants, "
            f"tone={data.conversation_tone.overall_tone.value}"
        )

        ai_response = await self._run_ai_analysis(data, analysis_type) if use_ai else None
        return self._finish(data, ai_response)

    async def analyze_image(
        self,
        image_uri: str,
        analysis_type: AnalysisType = AnalysisType.FULL,
        use_ai: bool = True,
    ) -> AnalysisResult:
        """
        识别截图并分析

        Raises:
            TextRecognitionError: 识别失败
            InsufficientTextError: 识别出的文本太少
        """
        ocr_result = await self.recognizer.recognize(image_uri)
        self._recognized_images += 1
        logger.info(
            f"Recognized text from {image_uri} (confidence {ocr_result.confidence:.2f})"
        )
        return await self.analyze_text(
            ocr_result.text,
            analysis_type=analysis_type,
            image_uri=image_uri,
            structured=self.config.structured_parsing,
            use_ai=use_ai,
        )

    async def get_analysis(
        self,
        conversation_id: str,
        analysis_type: AnalysisType = AnalysisType.FULL,
    ) -> Optional[AnalysisResult]:
        """读取已保存对话的分析结果，缓存失效时重新调用AI"""
        cached = self.store.get_cached_analysis(conversation_id)
        if cached is not None:
            return cached

        data = self.store.get_conversation_by_id(conversation_id)
        if data is None:
            return None

        ai_response = await self._run_ai_analysis(data, analysis_type)
        result = AnalysisResult(
            conversation_data=data,
            suggestions=ai_response.suggestions,
            insights=ai_response.insights,
            analysis=ai_response.analysis,
        )
        self.store.cache_analysis_result(conversation_id, result)
        return result

    async def suggest_replies(
        self, text: str, mode: Optional[CommunicationMode] = None
    ) -> List[ResponseOption]:
        """
        生成候选回复
        未指定模式时使用用户资料中的偏好模式，并套用已分析的写作风格

        Raises:
            AIServiceError: 大模型调用失败
        """
        profile = self.store.get_user_profile()
        if mode is None:
            mode = profile.preferred_mode if profile else CommunicationMode.HEALTHY
        style = profile.style_data if profile else None
        return await self.ai_service.generate_response_options(text, mode, style)

    def history(self, limit: Optional[int] = None) -> List[ConversationData]:
        conversations = self.store.get_all_conversations()
        return conversations if limit is None else conversations[:max(limit, 0)]

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        return {
            "analyses": self._analyses,
            "recognized_images": self._recognized_images,
            "ai_failures": self._ai_failures,
            "storage": self.store.get_storage_stats().to_dict(),
        }

    async def close(self) -> None:
        await self.recognizer.close()
        await self.ai_service.close()
