"""集成测试共享 fixture -- 经过完整 lifespan 的网关应用"""

import asyncio
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from wecomgate.gateway.config import GatewayConfig
from wecomgate.provider import ProviderConfig


@pytest.fixture
def gateway_config(token: str, encoding_aes_key: str) -> GatewayConfig:
    return GatewayConfig(
        token=SecretStr(token),
        encoding_aes_key=SecretStr(encoding_aes_key),
        webhook_path="/webhooks/wecom",
        finished_stream_grace_s=0.05,
    )


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(llm_mode="echo")


@pytest_asyncio.fixture
async def integration_app(gateway_config, provider_config):
    """集成测试用 FastAPI app（lifespan 内构建 ServiceGroup）"""
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"

    from wecomgate.gateway.main import create_app, lifespan

    app = create_app(gateway_config, provider_config)
    async with lifespan(app):
        yield app

    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def bot(client, callbacks, gateway_config):
    """模拟企业微信平台：发送回调、轮询流刷新"""

    class PlatformSimulator:
        async def send(self, message: dict):
            query, body = callbacks.callback(message)
            return await client.post(gateway_config.webhook_path, params=query, content=body)

        async def open_stream(self, message: dict) -> str:
            resp = await self.send(message)
            assert resp.status_code == 200
            return callbacks.open_reply(resp.json())["stream"]["id"]

        async def refresh(self, stream_id: str) -> dict:
            resp = await self.send(callbacks.stream_refresh(stream_id))
            assert resp.status_code == 200
            return callbacks.open_reply(resp.json())["stream"]

        async def poll_until_finished(self, stream_id: str, timeout: float = 2.0) -> dict:
            """按平台节奏刷新，直到 finish=true"""
            deadline = asyncio.get_running_loop().time() + timeout
            snapshots: list[dict] = []
            while True:
                stream = await self.refresh(stream_id)
                snapshots.append(stream)
                if stream["finish"]:
                    stream["snapshots"] = snapshots
                    return stream
                if asyncio.get_running_loop().time() > deadline:
                    raise AssertionError(f"stream {stream_id} not finished in time")
                await asyncio.sleep(0.01)

    return PlatformSimulator()
