"""
LLM 服务：调用 OpenAI 兼容接口（默认 DeepSeek）生成回答
"""
import asyncio
import json
import logging
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


class LLMClient:
    """大模型客户端：单次调用，不重试；超时抛出 UpstreamTimeoutError，其余失败抛出 UpstreamError"""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = AsyncOpenAI(
            api_key=api_key or "dummy",
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> str:
        """发送消息列表，返回模型生成的文本"""
        if not self.api_key:
            raise UpstreamError("大模型 API 密钥未配置")
        try:
            resp = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            logger.error("大模型接口超时（%ss）", self.timeout)
            raise UpstreamTimeoutError() from e
        except openai.APIStatusError as e:
            logger.error("大模型接口返回错误 status=%s", e.status_code)
            raise UpstreamError(
                f"大模型 API错误: {e.status_code}",
                detail=_error_body(e),
            ) from e
        except openai.APIError as e:
            logger.error("调用大模型接口失败: %s", e)
            raise UpstreamError("调用大模型接口失败", detail=str(e)) from e

        choices = getattr(resp, "choices", None) or []
        content = choices[0].message.content if choices and choices[0].message else None
        if content is None:
            raise UpstreamError("大模型响应格式异常", detail="响应中缺少 choices[0].message.content")
        return content


def _error_body(e: "openai.APIStatusError") -> str:
    body = getattr(e, "body", None)
    if body is None:
        return str(e)
    try:
        return json.dumps(body, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(body)


_default_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """FastAPI 依赖：进程内复用同一个客户端（懒加载）"""
    global _default_client
    if _default_client is None:
        _default_client = LLMClient(
            api_key=settings.LLM_API_KEY,
            base_url=settings.LLM_BASE_URL,
            model=settings.LLM_MODEL,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
    return _default_client
