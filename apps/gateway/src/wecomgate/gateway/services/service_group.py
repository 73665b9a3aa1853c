"""ServiceGroup -- 进程内服务实例组

应用启动时构建一次，挂到 app.state；关闭时按依赖逆序清理。
"""

import structlog
from wecomgate.core.conversation_queue import ConversationQueue
from wecomgate.core.crypto import WecomCrypto
from wecomgate.core.heartbeat import HeartbeatScheduler
from wecomgate.core.store import MessageDeduplicator, StreamRegistry
from wecomgate.provider import (
    EchoMessageAdapter,
    FallbackManager,
    LiteLLMClient,
    ProviderConfig,
)

from ..config import GatewayConfig
from .reply_service import ReplyService
from .webhook_handler import WebhookHandler

log = structlog.get_logger()


def build_dispatcher(
    provider_config: ProviderConfig,
) -> tuple[FallbackManager, LiteLLMClient | None]:
    """根据运行模式构建回复生成器

    Returns:
        (FallbackManager, LiteLLMClient)；echo 模式下 LiteLLMClient 为 None
    """
    if provider_config.llm_mode == "litellm":
        litellm_client = LiteLLMClient(
            proxy_base_url=provider_config.proxy_base_url,
            proxy_api_key=provider_config.proxy_api_key.get_secret_value(),
            timeout_s=provider_config.timeout_s,
        )
        dispatcher = FallbackManager(
            primary=litellm_client,
            fallback=EchoMessageAdapter(),
        )
        log.info(
            "dispatcher_initialized",
            mode="litellm",
            proxy_url=provider_config.proxy_base_url,
            timeout_s=provider_config.timeout_s,
        )
        return dispatcher, litellm_client

    log.info("dispatcher_initialized", mode="echo")
    return FallbackManager(primary=EchoMessageAdapter(), fallback=None), None


class ServiceGroup:
    """服务实例组"""

    def __init__(
        self,
        gateway_config: GatewayConfig,
        provider_config: ProviderConfig,
        dispatcher: FallbackManager | None = None,
        registry: StreamRegistry | None = None,
        heartbeat: HeartbeatScheduler | None = None,
        queue: ConversationQueue | None = None,
    ) -> None:
        """
        Raises:
            CryptoConfigError: Token / EncodingAESKey 非法
        """
        self.gateway_config = gateway_config
        self.provider_config = provider_config

        self.crypto = WecomCrypto(
            gateway_config.token.get_secret_value(),
            gateway_config.encoding_aes_key.get_secret_value(),
        )
        self.handler = WebhookHandler(self.crypto, MessageDeduplicator())
        self.registry = registry or StreamRegistry()
        self.heartbeat = heartbeat or HeartbeatScheduler(self.registry)
        self.queue = queue or ConversationQueue()

        if dispatcher is None:
            dispatcher, litellm_client = build_dispatcher(provider_config)
        else:
            litellm_client = None
        self.dispatcher = dispatcher
        self.litellm_client = litellm_client

        self.reply_service = ReplyService(
            registry=self.registry,
            heartbeat=self.heartbeat,
            queue=self.queue,
            dispatcher=self.dispatcher,
            model_alias=provider_config.model_alias,
        )

    def start(self) -> None:
        self.registry.start()

    def shutdown(self) -> None:
        """停止心跳、取消后台任务与定时器"""
        self.heartbeat.clear()
        self.reply_service.close()
        self.queue.close()
        self.registry.stop()
        log.info("service_group_shutdown", **self.registry.get_stats())
