"""
沟通助手
- 聊天截图文字识别
- 按说话人解析对话
- 基于词表的情感与语气判断
- 基于大模型的沟通建议
"""

from .text_analyzer import ConversationTextAnalyzer
from .text_recognizer import TextRecognizer
from .llm_client import LLMClient
from .ai_service import AIService
from .storage import ConversationStore, KeyValueStore
from .assistant import ConversationAssistant

__all__ = [
    "ConversationTextAnalyzer",
    "TextRecognizer",
    "LLMClient",
    "AIService",
    "ConversationStore",
    "KeyValueStore",
    "ConversationAssistant",
]
