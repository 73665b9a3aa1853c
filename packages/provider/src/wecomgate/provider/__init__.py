"""wecomgate Provider -- 回复生成抽象层

packages/provider 的公开接口导出。
"""

# 核心组件
from .client import LiteLLMClient

# 配置
from .config import ProviderConfig, load_provider_config
from .echo_adapter import EchoMessageAdapter

# 异常
from .exceptions import (
    FallbackExhaustedError,
    ProviderError,
    ProxyUnreachableError,
    StreamInterruptedError,
)
from .fallback import FallbackManager

__all__ = [
    "LiteLLMClient",
    "FallbackManager",
    "EchoMessageAdapter",
    "ProviderConfig",
    "load_provider_config",
    "ProviderError",
    "ProxyUnreachableError",
    "StreamInterruptedError",
    "FallbackExhaustedError",
]
