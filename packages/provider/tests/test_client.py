"""LiteLLMClient 单元测试

Mock litellm.acompletion()，验证 stream() 逐段产出文本增量、
连接类错误转换为 ProxyUnreachableError、其他错误转换为 ProviderError、
health_check() 返回 bool。
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from wecomgate.provider.client import LiteLLMClient
from wecomgate.provider.exceptions import ProviderError, ProxyUnreachableError


@pytest.fixture
def client():
    return LiteLLMClient(
        proxy_base_url="http://localhost:4000/",
        proxy_api_key="sk-test",
        timeout_s=30,
    )


def _chunk(content: str | None):
    chunk = MagicMock()
    choice = MagicMock()
    choice.delta.content = content
    chunk.choices = [choice]
    return chunk


async def _stream(*contents, fail_with: Exception | None = None):
    for content in contents:
        yield _chunk(content)
    if fail_with is not None:
        raise fail_with


async def _collect(aiter) -> list[str]:
    return [chunk async for chunk in aiter]


class APIConnectionError(Exception):
    """与 litellm 同名的连接异常"""


class TestLiteLLMClientStream:
    """stream() 方法测试"""

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_yields_text_deltas(self, mock_acompletion, client):
        """跳过空增量与 None"""
        mock_acompletion.return_value = _stream("Hel", "", "lo", None, "!")

        chunks = await _collect(client.stream([{"role": "user", "content": "hi"}]))

        assert chunks == ["Hel", "lo", "!"]

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_call_kwargs(self, mock_acompletion, client):
        mock_acompletion.return_value = _stream("ok")

        await _collect(
            client.stream(
                [{"role": "user", "content": "hi"}],
                model_alias="cheap",
                max_tokens=64,
            )
        )

        kwargs = mock_acompletion.call_args.kwargs
        assert kwargs["model"] == "cheap"
        assert kwargs["stream"] is True
        assert kwargs["api_base"] == "http://localhost:4000"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["timeout"] == 30
        assert kwargs["max_tokens"] == 64

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_max_tokens_omitted_by_default(self, mock_acompletion, client):
        mock_acompletion.return_value = _stream("ok")
        await _collect(client.stream([{"role": "user", "content": "hi"}]))
        assert "max_tokens" not in mock_acompletion.call_args.kwargs

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_connection_error_raises_proxy_unreachable(
        self, mock_acompletion, client
    ):
        mock_acompletion.side_effect = ConnectionError("Connection refused")

        with pytest.raises(ProxyUnreachableError) as exc_info:
            await _collect(client.stream([{"role": "user", "content": "hi"}]))
        assert "localhost:4000" in str(exc_info.value)

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_litellm_connection_error_by_name(self, mock_acompletion, client):
        mock_acompletion.side_effect = APIConnectionError("dns failure")

        with pytest.raises(ProxyUnreachableError):
            await _collect(client.stream([{"role": "user", "content": "hi"}]))

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_business_error_raises_provider_error(self, mock_acompletion, client):
        mock_acompletion.side_effect = ValueError("model not found")

        with pytest.raises(ProviderError) as exc_info:
            await _collect(client.stream([{"role": "user", "content": "hi"}]))
        assert not isinstance(exc_info.value, ProxyUnreachableError)

    @patch("wecomgate.provider.client.acompletion", new_callable=AsyncMock)
    async def test_error_mid_stream(self, mock_acompletion, client):
        """已产出部分增量后失败"""
        mock_acompletion.return_value = _stream(
            "partial", fail_with=RuntimeError("stream reset")
        )
        received: list[str] = []

        with pytest.raises(ProviderError):
            async for chunk in client.stream([{"role": "user", "content": "hi"}]):
                received.append(chunk)
        assert received == ["partial"]


class TestLiteLLMClientHealthCheck:
    """health_check() 方法测试"""

    @patch("httpx.AsyncClient.get")
    async def test_healthy_proxy(self, mock_get, client):
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_get.return_value = mock_response

        assert await client.health_check() is True
        assert mock_get.call_args.args[0] == "http://localhost:4000/health/liveliness"

    @patch("httpx.AsyncClient.get")
    async def test_unreachable_proxy(self, mock_get, client):
        mock_get.side_effect = httpx.ConnectError("Connection refused")
        assert await client.health_check() is False

    @patch("httpx.AsyncClient.get")
    async def test_server_error(self, mock_get, client):
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_get.return_value = mock_response
        assert await client.health_check() is False
