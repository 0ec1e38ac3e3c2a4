"""
核心数据模型和枚举类型定义
对话、语气、AI建议与存储相关的数据结构，支持JSON往返
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Optional, Any, Dict
from enum import Enum
import json


UNKNOWN_SENDER = "Unknown"


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _str_to_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    # 兼容 "Z" 结尾的UTC时间
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class Sentiment(Enum):
    """单条消息情感"""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class OverallTone(Enum):
    """整体语气分档"""
    FRIENDLY = "friendly"
    NEUTRAL = "neutral"
    TENSE = "tense"
    HEATED = "heated"


class SuggestionType(Enum):
    CLARIFICATION = "clarification"
    EMPATHY = "empathy"
    SOLUTION = "solution"
    ACKNOWLEDGMENT = "acknowledgment"


class SuggestionTone(Enum):
    SUPPORTIVE = "supportive"
    NEUTRAL = "neutral"
    ASSERTIVE = "assertive"


class InsightCategory(Enum):
    PATTERN = "pattern"
    EMOTION = "emotion"
    TOPIC = "topic"
    OPPORTUNITY = "opportunity"


class Importance(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnalysisType(Enum):
    """AI分析深度"""
    FULL = "full"
    QUICK = "quick"
    SUGGESTIONS = "suggestions"


class CommunicationMode(Enum):
    """沟通模式"""
    HEALTHY = "healthy_communication"
    ASSERTIVE = "assertive"


def _enum_or_default(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


@dataclass
class Message:
    """从识别文本中解析出的单条消息"""
    id: str
    sender: str
    content: str
    timestamp: datetime
    sentiment: Sentiment
    time_label: Optional[str] = None  # 行内检测到的 H:MM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": _dt_to_str(self.timestamp),
            "sentiment": self.sentiment.value,
            "time_label": self.time_label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            sender=data["sender"],
            content=data["content"],
            timestamp=_str_to_dt(data["timestamp"]),
            sentiment=Sentiment(data["sentiment"]),
            time_label=data.get("time_label"),
        )


@dataclass
class ToneAnalysis:
    """整体语气分析结果"""
    overall_tone: OverallTone
    emotional_intensity: int  # 1-10
    key_topics: List[str] = field(default_factory=list)
    communication_patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_tone": self.overall_tone.value,
            "emotional_intensity": self.emotional_intensity,
            "key_topics": list(self.key_topics),
            "communication_patterns": list(self.communication_patterns),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToneAnalysis":
        return cls(
            overall_tone=OverallTone(data["overall_tone"]),
            emotional_intensity=data["emotional_intensity"],
            key_topics=data.get("key_topics", []),
            communication_patterns=data.get("communication_patterns", []),
        )


@dataclass
class ConversationData:
    """一次分析得到的完整对话数据"""
    id: str
    timestamp: datetime
    messages: List[Message]
    participants: List[str]
    conversation_tone: ToneAnalysis
    extracted_text: str
    image_uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": _dt_to_str(self.timestamp),
            "messages": [m.to_dict() for m in self.messages],
            "participants": list(self.participants),
            "conversation_tone": self.conversation_tone.to_dict(),
            "extracted_text": self.extracted_text,
            "image_uri": self.image_uri,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationData":
        return cls(
            id=data["id"],
            timestamp=_str_to_dt(data["timestamp"]),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            participants=data.get("participants", []),
            conversation_tone=ToneAnalysis.from_dict(data["conversation_tone"]),
            extracted_text=data.get("extracted_text", ""),
            image_uri=data.get("image_uri"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, json_str: str) -> "ConversationData":
        return cls.from_dict(json.loads(json_str))


@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(**data)


@dataclass
class TextBlock:
    """识别出的文本块"""
    text: str
    confidence: float
    bounding_box: Optional[BoundingBox] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextBlock":
        box = data.get("bounding_box")
        return cls(
            text=data["text"],
            confidence=data["confidence"],
            bounding_box=BoundingBox.from_dict(box) if box else None,
        )


@dataclass
class OCRResult:
    """文字识别结果"""
    text: str
    confidence: float
    blocks: List[TextBlock] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "blocks": [b.to_dict() for b in self.blocks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OCRResult":
        return cls(
            text=data["text"],
            confidence=data["confidence"],
            blocks=[TextBlock.from_dict(b) for b in data.get("blocks", [])],
        )


@dataclass
class ResponseSuggestion:
    """回复建议"""
    id: str
    type: SuggestionType
    content: str
    rationale: str
    tone: SuggestionTone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "rationale": self.rationale,
            "tone": self.tone.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseSuggestion":
        return cls(
            id=data.get("id", ""),
            type=_enum_or_default(SuggestionType, data.get("type"), SuggestionType.CLARIFICATION),
            content=data.get("content", ""),
            rationale=data.get("rationale", ""),
            tone=_enum_or_default(SuggestionTone, data.get("tone"), SuggestionTone.NEUTRAL),
        )


@dataclass
class CommunicationInsight:
    """沟通洞察"""
    category: InsightCategory
    title: str
    description: str
    importance: Importance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "importance": self.importance.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommunicationInsight":
        return cls(
            category=_enum_or_default(InsightCategory, data.get("category"), InsightCategory.PATTERN),
            title=data.get("title", ""),
            description=data.get("description", ""),
            importance=_enum_or_default(Importance, data.get("importance"), Importance.MEDIUM),
        )


@dataclass
class AIResponse:
    """AI对话分析结果"""
    analysis: str
    suggestions: List[ResponseSuggestion]
    insights: List[CommunicationInsight]
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis": self.analysis,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "insights": [i.to_dict() for i in self.insights],
            "confidence": self.confidence,
        }


@dataclass
class AnalysisResult:
    """对话数据 + AI建议"""
    conversation_data: ConversationData
    suggestions: List[ResponseSuggestion] = field(default_factory=list)
    insights: List[CommunicationInsight] = field(default_factory=list)
    analysis: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conversation_data": self.conversation_data.to_dict(),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "insights": [i.to_dict() for i in self.insights],
            "analysis": self.analysis,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            conversation_data=ConversationData.from_dict(data["conversation_data"]),
            suggestions=[ResponseSuggestion.from_dict(s) for s in data.get("suggestions", [])],
            insights=[CommunicationInsight.from_dict(i) for i in data.get("insights", [])],
            analysis=data.get("analysis", ""),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


@dataclass
class ChatTurn:
    """生成回复时提供的历史消息"""
    content: str
    role: str = "other"  # "user" | "other"
    timestamp: Optional[datetime] = None


@dataclass
class StyleProfile:
    """用户写作风格"""
    text_samples: List[str]
    tone: str = "casual"
    vocabulary: List[str] = field(default_factory=list)
    sentence_structure: str = "conversational"
    communication_preferences: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text_samples": list(self.text_samples),
            "tone": self.tone,
            "vocabulary": list(self.vocabulary),
            "sentence_structure": self.sentence_structure,
            "communication_preferences": list(self.communication_preferences),
            "last_updated": _dt_to_str(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StyleProfile":
        return cls(
            text_samples=data.get("text_samples", []),
            tone=data.get("tone", "casual"),
            vocabulary=data.get("vocabulary", []),
            sentence_structure=data.get("sentence_structure", "conversational"),
            communication_preferences=data.get("communication_preferences", []),
            last_updated=_str_to_dt(data.get("last_updated")),
        )


@dataclass
class ResponseRequest:
    """回复生成请求"""
    input_text: str
    mode: CommunicationMode = CommunicationMode.HEALTHY
    conversation_context: Optional[str] = None
    style: Optional[StyleProfile] = None
    previous_messages: List[ChatTurn] = field(default_factory=list)


@dataclass
class GeneratedResponse:
    response: str
    suggestions: List[str]
    confidence: float
    mode: CommunicationMode


@dataclass
class ResponseOption:
    """按模式生成的候选回复"""
    id: str
    title: str
    content: str
    tone: str
    rationale: str


@dataclass
class AnimalAvatar:
    id: str
    name: str
    emoji: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnimalAvatar":
        return cls(id=data["id"], name=data["name"], emoji=data["emoji"])


DEFAULT_AVATARS: List[AnimalAvatar] = [
    AnimalAvatar("lion", "Lion", "🦁"),
    AnimalAvatar("tiger", "Tiger", "🐅"),
    AnimalAvatar("wolf", "Wolf", "🐺"),
    AnimalAvatar("bear", "Bear", "🐻"),
    AnimalAvatar("eagle", "Eagle", "🦅"),
    AnimalAvatar("shark", "Shark", "🦈"),
    AnimalAvatar("dragon", "Dragon", "🐉"),
    AnimalAvatar("fox", "Fox", "🦊"),
    AnimalAvatar("panda", "Panda", "🐼"),
    AnimalAvatar("koala", "Koala", "🐨"),
    AnimalAvatar("owl", "Owl", "🦉"),
    AnimalAvatar("cat", "Cat", "🐱"),
]


@dataclass
class UserProfile:
    """用户资料"""
    id: str
    avatar: AnimalAvatar
    preferred_mode: CommunicationMode
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    style_data: Optional[StyleProfile] = None
    has_completed_onboarding: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar.to_dict(),
            "preferred_mode": self.preferred_mode.value,
            "style_data": self.style_data.to_dict() if self.style_data else None,
            "has_completed_onboarding": self.has_completed_onboarding,
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        style = data.get("style_data")
        return cls(
            id=data["id"],
            name=data.get("name"),
            avatar=AnimalAvatar.from_dict(data["avatar"]),
            preferred_mode=_enum_or_default(
                CommunicationMode, data.get("preferred_mode"), CommunicationMode.HEALTHY
            ),
            style_data=StyleProfile.from_dict(style) if style else None,
            has_completed_onboarding=data.get("has_completed_onboarding", False),
            created_at=_str_to_dt(data["created_at"]),
            updated_at=_str_to_dt(data["updated_at"]),
        )


@dataclass
class AppSettings:
    """应用设置"""
    api_key: str = ""
    auto_save_conversations: bool = True
    analysis_type: str = AnalysisType.FULL.value
    notifications_enabled: bool = True
    theme: str = "light"
    max_stored_conversations: int = 50

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppSettings":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class StorageStats:
    total_conversations: int
    total_cached_analyses: int
    oldest_conversation: Optional[datetime] = None
    newest_conversation: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_conversations": self.total_conversations,
            "total_cached_analyses": self.total_cached_analyses,
            "oldest_conversation": _dt_to_str(self.oldest_conversation),
            "newest_conversation": _dt_to_str(self.newest_conversation),
        }


@dataclass
class LLMConfig:
    """大模型客户端配置"""
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key: str = ""
    model: str = "qwen-plus"
    summary_model: str = "qwen-flash"
    temperature: float = 0.7
    max_tokens: int = 1500
    max_retries: int = 3
    timeout: float = 30.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LLMConfig":
        return cls(**data)


@dataclass
class RecognizerConfig:
    """文字识别配置"""
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key: str = ""
    model: str = "qwen-vl-ocr"
    max_retries: int = 3
    timeout: float = 30.0
    default_block_confidence: float = 0.8
    min_confidence: float = 0.6
    max_width: int = 2000
    max_height: int = 2000
    jpeg_quality: int = 80

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecognizerConfig":
        return cls(**data)


@dataclass
class StorageConfig:
    """本地存储配置"""
    path: str = "comm_assistant_store.json"
    max_conversations: int = 50
    cache_expiry_hours: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorageConfig":
        return cls(**data)


@dataclass
class AssistantConfig:
    """整体配置"""
    llm_config: LLMConfig = field(default_factory=LLMConfig)
    recognizer_config: RecognizerConfig = field(default_factory=RecognizerConfig)
    storage_config: StorageConfig = field(default_factory=StorageConfig)
    structured_parsing: bool = True  # 图片输入使用清洗+合并解析

    def to_dict(self) -> Dict[str, Any]:
        return {
            "llm_config": self.llm_config.to_dict(),
            "recognizer_config": self.recognizer_config.to_dict(),
            "storage_config": self.storage_config.to_dict(),
            "structured_parsing": self.structured_parsing,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssistantConfig":
        return cls(
            llm_config=LLMConfig.from_dict(data.get("llm_config", {})),
            recognizer_config=RecognizerConfig.from_dict(data.get("recognizer_config", {})),
            storage_config=StorageConfig.from_dict(data.get("storage_config", {})),
            structured_parsing=data.get("structured_parsing", True),
        )
