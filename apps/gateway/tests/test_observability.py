"""可观测性测试

测试内容：
1. HTTP 请求含 X-Request-ID 响应头（ULID）
2. 回调请求绑定由 timestamp + nonce 派生的 trace_id
3. setup_logging / setup_logfire 按环境变量配置
4. 敏感字段脱敏
"""

import logging

import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from ulid import ULID
from wecomgate.gateway.middleware.logging_config import (
    REDACTED,
    redact_sensitive,
    setup_logfire,
    setup_logging,
)
from wecomgate.gateway.middleware.logging_mw import LoggingMiddleware
from wecomgate.gateway.middleware.trace_mw import TraceMiddleware


@pytest_asyncio.fixture
async def context_client():
    """返回当前 structlog 上下文变量的最小应用"""
    app = FastAPI()
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    @app.get("/context")
    async def context():
        return dict(structlog.contextvars.get_contextvars())

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


class TestObservability:
    """请求级日志与回调追踪"""

    async def test_request_id_in_response_header(self, client: AsyncClient):
        resp = await client.get("/health")

        assert resp.status_code == 200
        request_id = resp.headers["X-Request-ID"]
        assert len(request_id) == 26
        ULID.from_str(request_id)

    async def test_request_ids_unique(self, client: AsyncClient):
        first = await client.get("/health")
        second = await client.get("/health")
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]

    async def test_webhook_response_has_request_id(
        self, client: AsyncClient, callbacks, webhook_path
    ):
        resp = await client.get(webhook_path, params=callbacks.verify_query())
        assert "X-Request-ID" in resp.headers

    async def test_trace_id_from_timestamp_and_nonce(self, context_client: AsyncClient):
        resp = await context_client.get(
            "/context", params={"timestamp": "1700000000", "nonce": "abc"}
        )

        data = resp.json()
        assert data["trace_id"] == "trace-1700000000-abc"
        assert data["request_id"] == resp.headers["X-Request-ID"]
        assert data["method"] == "GET"
        assert data["path"] == "/context"

    async def test_trace_id_from_nonce_only(self, context_client: AsyncClient):
        resp = await context_client.get("/context", params={"nonce": "abc"})
        assert resp.json()["trace_id"] == "trace-abc"

    async def test_no_trace_id_without_nonce(self, context_client: AsyncClient):
        resp = await context_client.get("/context")
        assert "trace_id" not in resp.json()

    async def test_context_not_leaked_between_requests(
        self, context_client: AsyncClient
    ):
        await context_client.get("/context", params={"nonce": "first"})
        resp = await context_client.get("/context")
        assert "trace_id" not in resp.json()

class TestLoggingSetup:
    """setup_logging / setup_logfire"""

    def test_json_format(self, monkeypatch):
        monkeypatch.setenv("WECOMGATE_LOG_FORMAT", "json")
        monkeypatch.setenv("WECOMGATE_LOG_LEVEL", "debug")
        setup_logging()

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("litellm").level == logging.WARNING

        monkeypatch.delenv("WECOMGATE_LOG_FORMAT")
        monkeypatch.delenv("WECOMGATE_LOG_LEVEL")
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_logfire_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv("LOGFIRE_SEND_TO_LOGFIRE", raising=False)
        setup_logfire(FastAPI())


class TestRedaction:
    """敏感字段脱敏"""

    def test_sensitive_fields_masked(self):
        event = {
            "event": "callback_rejected",
            "encrypt": "c2VjcmV0",
            "msg_signature": "abcdef",
            "token": "plain-token",
            "nonce": "n1",
        }

        result = redact_sensitive(None, "warning", event)

        assert result["encrypt"] == REDACTED
        assert result["msg_signature"] == REDACTED
        assert result["token"] == REDACTED
        assert result["nonce"] == "n1"

    def test_empty_values_untouched(self):
        result = redact_sensitive(None, "info", {"event": "x", "encrypt": ""})
        assert result["encrypt"] == ""
