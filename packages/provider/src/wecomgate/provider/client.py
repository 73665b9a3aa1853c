"""LiteLLMClient -- LiteLLM Proxy 流式调用封装

通过 litellm.acompletion(stream=True) 调用 Proxy，逐段产出文本增量。
"""

import time
from collections.abc import AsyncIterator

import httpx
import structlog
from litellm import acompletion

from .exceptions import ProviderError, ProxyUnreachableError

log = structlog.get_logger()

# 健康检查超时（应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5

# 连接类异常（触发 ProxyUnreachableError，进而触发 FallbackManager 降级）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    OSError,
    TimeoutError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.TimeoutException,
)


def _is_connection_error(e: Exception) -> bool:
    """判断异常是否为连接类错误（Proxy 不可达）"""
    if isinstance(e, _CONNECTION_ERROR_TYPES):
        return True
    # LiteLLM 的 APIConnectionError 也属于连接类错误
    return type(e).__name__ in ("APIConnectionError", "APITimeoutError")


def _chunk_text(chunk) -> str:
    """从流式 chunk 中取出文本增量"""
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None) if delta is not None else None
    return content if isinstance(content, str) else ""


class LiteLLMClient:
    """LiteLLM Proxy 客户端"""

    def __init__(
        self,
        proxy_base_url: str = "http://localhost:4000",
        proxy_api_key: str = "",
        timeout_s: int = 30,
    ) -> None:
        """
        Args:
            proxy_base_url: Proxy 基础 URL
            proxy_api_key: Proxy 访问密钥（LITELLM_PROXY_KEY）
            timeout_s: 请求超时（秒）
        """
        self._proxy_base_url = proxy_base_url.rstrip("/")
        self._proxy_api_key = proxy_api_key
        self._timeout_s = timeout_s

    @property
    def proxy_base_url(self) -> str:
        return self._proxy_base_url

    async def stream(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "main",
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs,
    ) -> AsyncIterator[str]:
        """发送流式 chat completion 请求

        Args:
            messages: 消息列表，格式 [{"role": "user", "content": "..."}]
            model_alias: Proxy 中的模型组名
            temperature: 采样温度
            max_tokens: 最大生成 token 数，None 使用模型默认
            **kwargs: 其他 LiteLLM 支持的参数

        Yields:
            非空文本增量

        Raises:
            ProxyUnreachableError: Proxy 连接失败或超时
            ProviderError: Proxy 返回错误（如模型不可用、配额耗尽）
        """
        start_time = time.monotonic()
        call_kwargs = {
            "model": model_alias,
            "messages": messages,
            "api_base": self._proxy_base_url,
            "api_key": self._proxy_api_key or "no-key",
            "temperature": temperature,
            "timeout": self._timeout_s,
            "stream": True,
            **kwargs,
        }
        if max_tokens is not None:
            call_kwargs["max_tokens"] = max_tokens

        log.debug(
            "litellm_stream_start",
            model_alias=model_alias,
            message_count=len(messages),
        )

        chunk_count = 0
        try:
            response = await acompletion(**call_kwargs)
            async for chunk in response:
                text = _chunk_text(chunk)
                if text:
                    chunk_count += 1
                    yield text
        except Exception as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            log.error(
                "litellm_stream_failed",
                model_alias=model_alias,
                error=str(e),
                error_type=type(e).__name__,
                chunk_count=chunk_count,
                duration_ms=duration_ms,
            )
            if _is_connection_error(e):
                raise ProxyUnreachableError(
                    proxy_url=self._proxy_base_url,
                    original_error=e,
                ) from e
            raise ProviderError(f"LLM 调用失败: {e}", recoverable=True) from e

        log.info(
            "litellm_stream_completed",
            model_alias=model_alias,
            chunk_count=chunk_count,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

    async def health_check(self) -> bool:
        """检查 LiteLLM Proxy 可达性

        发送 GET {proxy_base_url}/health/liveliness；不抛出异常。
        """
        url = f"{self._proxy_base_url}/health/liveliness"
        try:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.get(url, timeout=HEALTH_CHECK_TIMEOUT_S)
                return resp.status_code == 200
        except Exception as e:
            log.debug("health_check_failed", url=url, error=str(e))
            return False
