"""
大模型客户端 - 调用 OpenAI 兼容的 chat/completions 接口
流式读取响应，失败时指数退避重试
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .models import LLMConfig

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"


@dataclass
class ChatRequest:
    """对话请求"""
    messages: List[Dict[str, Any]]
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    @classmethod
    def from_prompts(
        cls,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> "ChatRequest":
        return cls(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )


@dataclass
class ChatStreamChunk:
    """流式响应块"""
    content: str
    is_final: bool


class LLMClientError(Exception):
    """大模型客户端错误"""
    pass


class _RateLimited(Exception):
    def __init__(self, wait: float):
        super().__init__(f"rate limited for {wait}s")
        self.wait = wait


def parse_sse_line(line: str) -> Optional[str]:
    """
    解析一行SSE数据

    Returns:
        增量文本；结束标记返回 SSE_DONE；无内容的行返回 None
    """
    if not line.startswith(SSE_PREFIX):
        return None
    payload = line[len(SSE_PREFIX):].strip()
    if payload == SSE_DONE:
        return SSE_DONE

    try:
        chunk = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning(f"Skipping malformed stream chunk: {payload[:80]}")
        return None

    choices = chunk.get("choices") if isinstance(chunk, dict) else None
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content") or None


class LLMClient:
    """大模型客户端 - 流式调用 chat/completions"""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or LLMConfig()
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self.retry_delays: List[float] = [1.0, 2.0, 4.0]  # 指数退避
        self._sent: List[Dict[str, Any]] = []

    async def _get_client(self) -> httpx.AsyncClient:
        """按需创建HTTP客户端"""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, request: ChatRequest) -> Dict[str, Any]:
        """构建API请求体"""
        temperature = request.temperature
        if temperature is None:
            temperature = self.config.temperature
        return {
            "model": request.model or self.config.model,
            "messages": request.messages,
            "temperature": temperature,
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "stream": True,
        }

    def _retry_delay(self, attempt: int) -> float:
        return self.retry_delays[min(attempt, len(self.retry_delays) - 1)]

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        """retry-after 只接受秒数，HTTP日期等其他格式按退避时间处理"""
        value = response.headers.get("retry-after")
        if value:
            try:
                return max(float(value), 0.0)
            except ValueError:
                logger.warning(f"Ignoring unparseable retry-after header: {value}")
        return self._retry_delay(attempt)

    def _check_status(self, response: httpx.Response, attempt: int) -> None:
        """401 直接失败，429 要求等待，5xx 交给重试"""
        status = response.status_code
        if status == 401:
            raise LLMClientError("Authentication failed: Invalid API key")
        if status == 429:
            raise _RateLimited(self._retry_after(response, attempt))
        if status >= 500:
            raise httpx.HTTPStatusError(
                f"Server error: {status}", request=response.request, response=response
            )
        response.raise_for_status()

    async def complete_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """
        流式调用 chat/completions

        Yields:
            ChatStreamChunk: 流式响应块，最后一个块 is_final=True
        """
        body = self._build_request_body(request)
        self._sent.append({"url": self.endpoint, "body": body})

        attempts = self.config.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                client = await self._get_client()
                async with client.stream(
                    "POST", self.endpoint, headers=self._headers(), json=body
                ) as response:
                    self._check_status(response, attempt)

                    # 整个流读完才输出，中途断开重试时不会重复
                    received = []
                    async for line in response.aiter_lines():
                        content = parse_sse_line(line)
                        if content == SSE_DONE:
                            break
                        if content:
                            received.append(content)

                for content in received:
                    yield ChatStreamChunk(content=content, is_final=False)
                yield ChatStreamChunk(content="", is_final=True)
                return

            except _RateLimited as e:
                last_error = e
                logger.warning(f"Rate limited by {self.endpoint}, retrying in {e.wait}s")
                await asyncio.sleep(e.wait)
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                last_error = e
                if attempt + 1 < attempts:
                    delay = self._retry_delay(attempt)
                    logger.warning(
                        f"Chat request attempt {attempt + 1}/{attempts} failed, "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)

        raise LLMClientError(f"All {attempts} retries failed: {last_error}")

    async def complete(self, request: ChatRequest) -> str:
        """收集所有流式块，返回完整回复"""
        return "".join([
            chunk.content async for chunk in self.complete_stream(request)
            if not chunk.is_final
        ])

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """system + user 两段提示词的便捷调用"""
        request = ChatRequest.from_prompts(
            system_prompt, user_prompt,
            model=model, temperature=temperature, max_tokens=max_tokens,
        )
        return await self.complete(request)

    def get_request_history(self) -> List[Dict[str, Any]]:
        """已发送的请求（测试用）"""
        return self._sent

    def clear_request_history(self) -> None:
        self._sent.clear()
