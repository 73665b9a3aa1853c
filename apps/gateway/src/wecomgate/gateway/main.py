"""FastAPI 应用主文件

app 创建 + lifespan 管理：启动时构建 ServiceGroup（加解密、流注册表、心跳、
会话队列、回复生成器），关闭时停止所有后台任务与定时器。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from wecomgate.provider import ProviderConfig, load_provider_config

from .config import GatewayConfig, load_gateway_config
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, webhook
from .services.service_group import ServiceGroup

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理

    Token / EncodingAESKey 非法时 ServiceGroup 构造抛出 CryptoConfigError，
    应用启动失败。
    """
    services = ServiceGroup(
        gateway_config=app.state.gateway_config,
        provider_config=app.state.provider_config,
    )
    services.start()
    app.state.services = services
    log.info(
        "gateway_started",
        webhook_path=app.state.gateway_config.webhook_path,
        llm_mode=app.state.provider_config.llm_mode,
    )

    yield

    services.shutdown()


def create_app(
    gateway_config: GatewayConfig | None = None,
    provider_config: ProviderConfig | None = None,
) -> FastAPI:
    """创建 FastAPI 应用实例"""
    gateway_config = gateway_config or load_gateway_config()
    provider_config = provider_config or load_provider_config()

    app = FastAPI(
        title="wecomgate",
        version="0.1.0",
        description="企业微信 AI Bot 回调网关",
        lifespan=lifespan,
    )
    app.state.gateway_config = gateway_config
    app.state.provider_config = provider_config

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire(app)

    app.include_router(
        webhook.router,
        prefix=gateway_config.webhook_path,
        tags=["webhook"],
    )
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
