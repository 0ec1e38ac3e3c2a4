"""
测试替身：假的大模型客户端和文字识别器
"""
import json
from typing import Callable, List, Optional, Union

import httpx
import pytest

from comm_assistant.llm_client import LLMClientError
from comm_assistant.models import LLMConfig, OCRResult, StorageConfig, TextBlock
from comm_assistant.storage import ConversationStore, KeyValueStore
from comm_assistant.text_recognizer import overall_confidence


Reply = Union[str, Exception]


class FakeLLMClient:
    """按顺序返回预设回复，记录每次调用"""

    def __init__(self, replies: Optional[List[Reply]] = None, default: Reply = "{}"):
        self.config = LLMConfig()
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[dict] = []
        self.closed = False

    async def chat(self, system_prompt, user_prompt, model=None, temperature=None, max_tokens=None):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self):
        self.closed = True


class FakeRecognizer:
    """返回固定文本的识别器"""

    def __init__(self, text: str, error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    async def recognize(self, image_uri: str) -> OCRResult:
        self.calls.append(image_uri)
        if self.error:
            raise self.error
        blocks = [TextBlock(text=line, confidence=0.9) for line in self.text.split("\n") if line]
        return OCRResult(text=self.text, confidence=overall_confidence(blocks), blocks=blocks)

    async def close(self):
        self.closed = True


def sse_body(*contents: str, done: bool = True) -> str:
    """构造 chat/completions 的SSE响应体"""
    lines = []
    for content in contents:
        chunk = {"choices": [{"delta": {"content": content}}]}
        lines.append(f"data: {json.dumps(chunk)}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


def mock_transport(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


ANALYSIS_REPLY = json.dumps({
    "analysis": "Both people are friendly.",
    "suggestions": [
        {
            "type": "empathy",
            "content": "Glad you're doing well!",
            "rationale": "Mirrors the positive tone",
            "tone": "supportive",
        }
    ],
    "insights": [
        {
            "category": "emotion",
            "title": "Warm exchange",
            "description": "Greetings are reciprocated",
            "importance": "low",
        }
    ],
    "confidence": 0.9,
})


@pytest.fixture
def store(tmp_path) -> ConversationStore:
    config = StorageConfig(path=str(tmp_path / "store.json"))
    return ConversationStore(KeyValueStore(config.path), config)


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def failing_llm() -> FakeLLMClient:
    return FakeLLMClient(default=LLMClientError("network down"))
