"""枚举定义

包含回调消息类型、会话类型、心跳状态机与 HTTP 层回调分类。
"""

from enum import StrEnum


class MessageKind(StrEnum):
    """解密后内层消息的 msgtype"""

    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    EVENT = "event"
    STREAM = "stream"
    # 图文混排入站消息，当前不支持
    MIXED = "mixed"


# 需要创建流并异步生成回复的消息类型
REPLYABLE_KINDS: set[MessageKind] = {
    MessageKind.TEXT,
    MessageKind.IMAGE,
    MessageKind.VOICE,
}


class ChatType(StrEnum):
    """会话类型"""

    SINGLE = "single"
    GROUP = "group"


class EventType(StrEnum):
    """平台生命周期事件"""

    ENTER_CHAT = "enter_chat"


class HeartbeatPhase(StrEnum):
    """心跳状态机：IDLE -> RUNNING -> {STOPPED, TIMED_OUT}"""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    TIMED_OUT = "TIMED_OUT"


class CallbackKind(StrEnum):
    """一次 POST 回调解析后的分类"""

    MESSAGE = "message"
    STREAM_REFRESH = "stream_refresh"
    EVENT = "event"
    DUPLICATE = "duplicate"
    UNSUPPORTED = "unsupported"
