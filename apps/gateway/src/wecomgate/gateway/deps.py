"""依赖注入模块 -- 通过 FastAPI Depends 注入服务实例

服务实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from fastapi import Request

from .config import GatewayConfig
from .services.reply_service import ReplyService
from .services.service_group import ServiceGroup
from .services.webhook_handler import WebhookHandler


def get_service_group(request: Request) -> ServiceGroup:
    """从 app.state 获取 ServiceGroup 实例"""
    return request.app.state.services


def get_webhook_handler(request: Request) -> WebhookHandler:
    return request.app.state.services.handler


def get_reply_service(request: Request) -> ReplyService:
    return request.app.state.services.reply_service


def get_gateway_config(request: Request) -> GatewayConfig:
    return request.app.state.services.gateway_config
