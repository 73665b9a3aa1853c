"""apps/gateway 测试配置 -- ServiceGroup + FastAPI AsyncClient fixture"""

import asyncio
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from wecomgate.core.conversation_queue import ConversationQueue
from wecomgate.core.heartbeat import HeartbeatScheduler
from wecomgate.core.store import StreamRegistry
from wecomgate.gateway.config import GatewayConfig
from wecomgate.gateway.services.service_group import ServiceGroup
from wecomgate.provider import ProviderConfig

# 测试用心跳间隔（秒）
HEARTBEAT_TICK = 0.01


class ScriptedDispatcher:
    """按脚本产出增量的回复生成器

    gate 非空时等待放行后才开始产出；产出完毕后若配置了 error 则抛出。
    """

    def __init__(
        self,
        chunks: tuple[str, ...] = ("Hello", " world"),
        delay_s: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.chunks = list(chunks)
        self.delay_s = delay_s
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[list[dict[str, str]]] = []

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def stream_with_fallback(self, messages, model_alias="main", **kwargs):
        self.calls.append(messages)
        if self.gate is not None:
            await self.gate.wait()
        for chunk in self.chunks:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            yield chunk
        if self.error is not None:
            raise self.error


@pytest.fixture
def gateway_config(token: str, encoding_aes_key: str) -> GatewayConfig:
    return GatewayConfig(
        token=SecretStr(token),
        encoding_aes_key=SecretStr(encoding_aes_key),
        finished_stream_grace_s=0.05,
    )


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(llm_mode="echo")


@pytest.fixture
def dispatcher() -> ScriptedDispatcher:
    return ScriptedDispatcher()


@pytest_asyncio.fixture
async def services(gateway_config, provider_config, dispatcher):
    """短心跳间隔的 ServiceGroup"""
    registry = StreamRegistry()
    group = ServiceGroup(
        gateway_config,
        provider_config,
        dispatcher=dispatcher,
        registry=registry,
        heartbeat=HeartbeatScheduler(registry, interval_s=HEARTBEAT_TICK, deadline_s=5),
        queue=ConversationQueue(max_backlog=2, idle_reclaim_s=0.05),
    )
    group.start()
    yield group
    group.shutdown()


@pytest_asyncio.fixture
async def app(gateway_config, provider_config, services):
    """创建测试用 FastAPI app 实例（绕过 lifespan，手动挂载 ServiceGroup）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from wecomgate.gateway.main import create_app

    application = create_app(gateway_config, provider_config)
    application.state.services = services
    yield application

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def webhook_path(gateway_config) -> str:
    return gateway_config.webhook_path


@pytest.fixture
def post_callback(client, callbacks, webhook_path):
    """加密并投递一条回调，返回 httpx 响应"""

    async def _post(message: dict):
        query, body = callbacks.callback(message)
        return await client.post(webhook_path, params=query, content=body)

    return _post


@pytest.fixture
def refresh(post_callback, callbacks):
    """发送流刷新回调，返回解密后的 stream 字段"""

    async def _refresh(stream_id: str) -> dict:
        resp = await post_callback(callbacks.stream_refresh(stream_id))
        assert resp.status_code == 200
        return callbacks.open_reply(resp.json())["stream"]

    return _refresh
