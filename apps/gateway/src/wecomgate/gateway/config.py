"""GatewayConfig -- 网关配置加载

Token / EncodingAESKey 来自企业微信后台「API 接收消息」配置，
以 SecretStr 保存，日志与 repr 中不出现明文。
"""

import os

from pydantic import BaseModel, Field, SecretStr, field_validator
from wecomgate.core.config import FINISHED_STREAM_GRACE_S

from .services.notices import WELCOME_MESSAGE


class GatewayConfig(BaseModel):
    """网关配置

    环境变量:
        WECOMGATE_TOKEN: 回调 Token
        WECOMGATE_ENCODING_AES_KEY: 43 位 EncodingAESKey
        WECOMGATE_WEBHOOK_PATH: 回调路径（默认 /webhooks/wecom）
        WECOMGATE_FINISHED_STREAM_GRACE_S: 完成流的保留时间（秒）
        WECOMGATE_WELCOME_MESSAGE: 进入会话时的欢迎语
    """

    token: SecretStr = Field(description="回调 Token")
    encoding_aes_key: SecretStr = Field(description="EncodingAESKey")
    webhook_path: str = Field(
        default="/webhooks/wecom",
        description="回调 URL 路径",
    )
    finished_stream_grace_s: float = Field(
        default=FINISHED_STREAM_GRACE_S,
        ge=0,
        description="流完成并被读取后，延迟删除的宽限期（秒）",
    )
    welcome_message: str = Field(
        default=WELCOME_MESSAGE,
        description="enter_chat 事件的欢迎语",
    )

    @field_validator("webhook_path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        value = value.strip() or "/webhooks/wecom"
        if not value.startswith("/"):
            value = f"/{value}"
        return value.rstrip("/") or "/webhooks/wecom"


def load_gateway_config() -> GatewayConfig:
    """从环境变量加载网关配置

    Token / EncodingAESKey 缺失时为空串，由 WecomCrypto 在启动阶段报错。
    """
    kwargs: dict = {
        "token": SecretStr(os.environ.get("WECOMGATE_TOKEN", "")),
        "encoding_aes_key": SecretStr(os.environ.get("WECOMGATE_ENCODING_AES_KEY", "")),
    }

    if val := os.environ.get("WECOMGATE_WEBHOOK_PATH"):
        kwargs["webhook_path"] = val

    if val := os.environ.get("WECOMGATE_FINISHED_STREAM_GRACE_S"):
        kwargs["finished_stream_grace_s"] = float(val)

    if val := os.environ.get("WECOMGATE_WELCOME_MESSAGE"):
        kwargs["welcome_message"] = val

    return GatewayConfig(**kwargs)
