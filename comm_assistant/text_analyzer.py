"""
对话文本分析器 - 解析识别出的聊天文本
按说话人切分消息、基于词表判断情感和整体语气、提取关键词与沟通模式
纯同步计算，不持有可变状态，可在多个调用方之间共享
"""
import logging
import random
import re
import string
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from .models import (
    ConversationData, Message, OverallTone, Sentiment, ToneAnalysis,
    UNKNOWN_SENDER,
)

logger = logging.getLogger(__name__)


# "Name: message"
SPEAKER_PATTERN = re.compile(r"^([A-Za-z\s]+):\s*(.+)$")
# "message 12:30 content"，行内带时间
INLINE_TIME_PATTERN = re.compile(r"^(.+?)\s+(\d{1,2}:\d{2})\s*(.+)$")
# 整行都是时间/日期的行（聊天截图里的分隔时间戳）
TIMESTAMP_LINE_PATTERN = re.compile(
    r"^(?:\d{1,2}:\d{2}(?:\s?[AaPp][Mm])?"
    r"|\d{1,2}/\d{1,2}(?:/\d{2,4})?"
    r"|\d{4}-\d{2}-\d{2})$"
)
HORIZONTAL_SPACE_PATTERN = re.compile(r"[^\S\n]+")
NON_WORD_PATTERN = re.compile(r"[^\w\s]")

MIN_CLEAN_LINE_LENGTH = 3
MIN_TOPIC_WORD_LENGTH = 4
MAX_KEY_TOPICS = 5
MIN_CONVERSATION_TEXT_LENGTH = 10
INSUFFICIENT_TEXT_MESSAGE = "Not enough text detected in the image"


@dataclass(frozen=True)
class Lexicons:
    """情感/语气词表"""
    sentiment_positive: Tuple[str, ...] = ("love", "happy", "great", "good", "wonderful", "thanks")
    sentiment_negative: Tuple[str, ...] = ("hate", "angry", "bad", "terrible", "no", "never")
    tone_positive: Tuple[str, ...] = ("love", "happy", "great", "good", "wonderful", "amazing")
    tone_negative: Tuple[str, ...] = ("hate", "angry", "bad", "terrible", "awful", "stupid")
    tension: Tuple[str, ...] = ("but", "however", "wrong", "never", "always")


DEFAULT_LEXICONS = Lexicons()

# 语气判定阈值，规则按顺序匹配
HEATED_MARGIN = 2
TENSION_LIMIT = 2
FRIENDLY_MARGIN = 1

TONE_INTENSITY = {
    OverallTone.HEATED: 8,
    OverallTone.TENSE: 6,
    OverallTone.NEUTRAL: 5,
    OverallTone.FRIENDLY: 3,
}

# (触发词, 标记)，按顺序检查
PATTERN_FLAGS = [
    (("?",), "Questions present"),
    (("!",), "Emotional expressions"),
    (("sorry", "apologize"), "Apologies detected"),
    (("but", "however"), "Contradictions present"),
]


def count_terms(text: str, terms: Tuple[str, ...]) -> int:
    """统计出现在文本中的词表项数量（子串匹配，每个词只计一次）"""
    return sum(1 for term in terms if term in text)


def generate_conversation_id() -> str:
    """生成对话ID: conv_<毫秒时间戳>_<9位随机串>"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"conv_{int(time.time() * 1000)}_{suffix}"


class ConversationTextAnalyzer:
    """对话文本分析器"""

    def __init__(self, lexicons: Optional[Lexicons] = None, fix_characters: bool = False):
        self.lexicons = lexicons or DEFAULT_LEXICONS
        # 0->O, 1->I 修正会破坏正常数字，默认关闭
        self.fix_characters = fix_characters

    def analyze(
        self,
        raw_text: str,
        image_uri: Optional[str] = None,
        structured: bool = False,
    ) -> ConversationData:
        """
        分析识别文本，生成对话数据

        Args:
            raw_text: 识别出的原始文本
            image_uri: 来源图片
            structured: 是否先清洗OCR噪声并合并续行

        Returns:
            ConversationData: 消息、参与者和语气分析
        """
        raw_text = raw_text or ""
        if structured:
            messages = self.parse_structured_messages(raw_text)
        else:
            messages = self.parse_messages(raw_text)

        data = ConversationData(
            id=generate_conversation_id(),
            timestamp=datetime.now(),
            messages=messages,
            participants=self.identify_participants(messages),
            conversation_tone=self.analyze_tone(raw_text),
            extracted_text=raw_text,
            image_uri=image_uri,
        )
        logger.debug(
            f"Analyzed conversation {data.id}: {len(messages)} messages, "
            f"tone={data.conversation_tone.overall_tone.value}"
        )
        return data

    # ---------- 消息切分 ----------

    def _attribute_line(self, line: str) -> Tuple[str, str, Optional[str]]:
        """返回 (sender, content, time_label)，第一个匹配的规则生效"""
        match = SPEAKER_PATTERN.match(line)
        if match:
            return match.group(1).strip(), match.group(2).strip(), None

        match = INLINE_TIME_PATTERN.match(line)
        if match:
            return UNKNOWN_SENDER, line, match.group(2)

        return UNKNOWN_SENDER, line, None

    def _build_message(
        self, index: int, sender: str, content: str, time_label: Optional[str] = None
    ) -> Message:
        return Message(
            id=f"msg_{index}",
            sender=sender,
            content=content,
            timestamp=datetime.now(),
            sentiment=self.classify_sentiment(content),
            time_label=time_label,
        )

    def parse_messages(self, raw_text: str) -> List[Message]:
        """逐行切分并识别说话人"""
        lines = [line.strip() for line in raw_text.split("\n") if line.strip()]
        messages = []
        for index, line in enumerate(lines):
            sender, content, time_label = self._attribute_line(line)
            if content:
                messages.append(self._build_message(index, sender, content, time_label))
        return messages

    def clean_ocr_text(self, raw_text: str) -> str:
        """清除OCR噪声：合并空白、去掉竖线、丢弃过短的行"""
        text = HORIZONTAL_SPACE_PATTERN.sub(" ", (raw_text or "").replace("|", ""))
        if self.fix_characters:
            text = re.sub(r"(?<=[A-Za-z])0|0(?=[A-Za-z])", "O", text)
            text = re.sub(r"(?<=[A-Za-z])1|1(?=[A-Za-z])", "I", text)

        lines = [line.strip() for line in text.split("\n")]
        return "\n".join(line for line in lines if len(line) >= MIN_CLEAN_LINE_LENGTH)

    def parse_structured_messages(self, raw_text: str) -> List[Message]:
        """
        清洗后按说话人合并续行
        整行时间戳被丢弃；没有说话人前缀的行拼接到上一条消息
        """
        blocks: List[List[str]] = []
        for line in self.clean_ocr_text(raw_text).split("\n"):
            if not line or TIMESTAMP_LINE_PATTERN.match(line):
                continue

            match = SPEAKER_PATTERN.match(line)
            if match:
                blocks.append([match.group(1).strip(), match.group(2).strip()])
            elif blocks:
                blocks[-1][1] = f"{blocks[-1][1]} {line}".strip()
            else:
                blocks.append([UNKNOWN_SENDER, line])

        return [
            self._build_message(index, sender, content)
            for index, (sender, content) in enumerate(blocks)
            if content
        ]

    def identify_participants(self, messages: List[Message]) -> List[str]:
        """去重后的参与者，按首次出现顺序，不含 Unknown"""
        participants: List[str] = []
        for message in messages:
            if message.sender != UNKNOWN_SENDER and message.sender not in participants:
                participants.append(message.sender)
        return participants

    # ---------- 情感与语气 ----------

    def classify_sentiment(self, content: str) -> Sentiment:
        lower = content.lower()
        positive = count_terms(lower, self.lexicons.sentiment_positive)
        negative = count_terms(lower, self.lexicons.sentiment_negative)

        if positive > negative:
            return Sentiment.POSITIVE
        if negative > positive:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def classify_tone(self, raw_text: str) -> Tuple[OverallTone, int]:
        """返回 (整体语气, 情绪强度)"""
        lower = (raw_text or "").lower()
        positive = count_terms(lower, self.lexicons.tone_positive)
        negative = count_terms(lower, self.lexicons.tone_negative)
        tension = count_terms(lower, self.lexicons.tension)

        if negative > positive + HEATED_MARGIN:
            tone = OverallTone.HEATED
        elif tension > TENSION_LIMIT or negative > positive:
            tone = OverallTone.TENSE
        elif positive > negative + FRIENDLY_MARGIN:
            tone = OverallTone.FRIENDLY
        else:
            tone = OverallTone.NEUTRAL
        return tone, TONE_INTENSITY[tone]

    def analyze_tone(self, raw_text: str) -> ToneAnalysis:
        tone, intensity = self.classify_tone(raw_text)
        return ToneAnalysis(
            overall_tone=tone,
            emotional_intensity=intensity,
            key_topics=self.extract_key_topics(raw_text),
            communication_patterns=self.identify_patterns(raw_text),
        )

    def extract_key_topics(self, raw_text: str) -> List[str]:
        """按词频取前5个长度大于3的词，同频按首次出现顺序"""
        words = NON_WORD_PATTERN.sub("", (raw_text or "").lower()).split()
        counts = Counter(w for w in words if len(w) >= MIN_TOPIC_WORD_LENGTH)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [word for word, _ in ranked[:MAX_KEY_TOPICS]]

    def identify_patterns(self, raw_text: str) -> List[str]:
        lower = (raw_text or "").lower()
        return [
            flag for triggers, flag in PATTERN_FLAGS
            if any(trigger in lower for trigger in triggers)
        ]


def validate_conversation_text(text: str) -> Tuple[bool, Optional[str]]:
    """检查识别文本是否足够进行分析"""
    stripped = (text or "").strip()
    if len(stripped) < MIN_CONVERSATION_TEXT_LENGTH:
        return False, INSUFFICIENT_TEXT_MESSAGE
    if not any(ch.isalpha() for ch in stripped):
        return False, INSUFFICIENT_TEXT_MESSAGE
    return True, None
