"""配置常量模块 -- 可通过环境变量覆盖

包含流式会话、心跳、会话队列等运行时参数，以及企业微信协议的固定限制。
时间类参数统一以秒为单位。
"""

import os


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


# ============================================================
# 协议固定限制（由企业微信 AI Bot 流式协议决定，不可配置）
# ============================================================

# 流式消息 content 最大字节数（UTF-8）
STREAM_CONTENT_MAX_BYTES: int = 20480

# 图文混排 msg_item 最多 10 项
STREAM_MAX_ATTACHMENTS: int = 10

# feedback.id 最大字节数
FEEDBACK_ID_MAX_BYTES: int = 256

# EncodingAESKey 固定长度
AES_KEY_LENGTH: int = 43

# PKCS#7 填充块大小（企业微信约定 32，而非 AES 的 16）
PKCS7_BLOCK_SIZE: int = 32

# 单张图片最大字节数（base64 编码前）
MAX_IMAGE_BYTES: int = 2 * 1024 * 1024

# ============================================================
# 运行时参数（可通过环境变量覆盖）
# ============================================================

# 流无活动多久后可被回收（秒）
STREAM_EXPIRY_S: float = _env_float("WECOMGATE_STREAM_EXPIRY_S", 600)

# 过期清理周期（秒）
STREAM_SWEEP_INTERVAL_S: float = _env_float("WECOMGATE_STREAM_SWEEP_INTERVAL_S", 60)

# 心跳间隔（秒）
HEARTBEAT_INTERVAL_S: float = _env_float("WECOMGATE_HEARTBEAT_INTERVAL_S", 3)

# 心跳截止时间（秒），到期视为处理超时
HEARTBEAT_DEADLINE_S: float = _env_float("WECOMGATE_HEARTBEAT_DEADLINE_S", 60)

# 心跳文案轮换周期（秒）
HEARTBEAT_ROTATION_S: float = 10

# 每个会话最大排队数
QUEUE_MAX_BACKLOG: int = _env_int("WECOMGATE_QUEUE_MAX_BACKLOG", 5)

# 会话队列空闲后回收延迟（秒）
QUEUE_IDLE_RECLAIM_S: float = _env_float("WECOMGATE_QUEUE_IDLE_RECLAIM_S", 60)

# 消息去重窗口（秒）
DEDUP_TTL_S: float = _env_float("WECOMGATE_DEDUP_TTL_S", 300)

# 流完成后保留多久供最后一次刷新读取（秒）
FINISHED_STREAM_GRACE_S: float = _env_float("WECOMGATE_FINISHED_STREAM_GRACE_S", 30)

# 日志预览截断长度
MESSAGE_PREVIEW_LENGTH: int = 50
