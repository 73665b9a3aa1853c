"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出
回调相关的敏感字段（密文、签名、Token、EncodingAESKey）在渲染前统一脱敏。
Logfire APM：LOGFIRE_SEND_TO_LOGFIRE 环境变量控制，false 时降级为纯本地日志。
"""

import logging
import os

import structlog
from fastapi import FastAPI

# 渲染前替换为掩码的字段
SENSITIVE_KEYS = frozenset(
    {
        "encrypt",
        "echostr",
        "msg_signature",
        "msgsignature",
        "token",
        "encoding_aes_key",
        "api_key",
    }
)

REDACTED = "***"

# 第三方库日志只保留 WARNING 及以上
NOISY_LOGGERS = ("litellm", "LiteLLM", "httpx", "httpcore")


def redact_sensitive(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog 处理器：掩码敏感字段"""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_sensitive,
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging() -> None:
    """初始化 structlog 配置

    环境变量:
        WECOMGATE_LOG_FORMAT: "json"（生产）或 "dev"（默认）
        WECOMGATE_LOG_LEVEL: 日志级别（默认 INFO）
    """
    log_format = os.environ.get("WECOMGATE_LOG_FORMAT", "dev")
    log_level = os.environ.get("WECOMGATE_LOG_LEVEL", "INFO")
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn / litellm 等标准库日志走同一个渲染器
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logfire(app: FastAPI) -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE:
    - "true": 启用 Logfire APM（需要 LOGFIRE_TOKEN，安装 logfire extra）
    - "false" (默认): 纯本地日志
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi(app)
    except Exception as e:
        structlog.get_logger().warning(
            "logfire_init_failed",
            error=str(e),
            message="Logfire 初始化失败，降级为纯本地日志",
        )
