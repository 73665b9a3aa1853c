"""wecomgate Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    REPLYABLE_KINDS,
    CallbackKind,
    ChatType,
    EventType,
    HeartbeatPhase,
    MessageKind,
)
from .message import InboundMessage, QuotedMessage
from .payloads import (
    CallbackMessage,
    EncryptedBody,
    EncryptedEnvelope,
    Feedback,
    StreamReply,
    StreamState,
)
from .stream import AttachmentItem, ImagePayload, PendingAttachment, Stream

__all__ = [
    # 枚举
    "MessageKind",
    "REPLYABLE_KINDS",
    "ChatType",
    "EventType",
    "HeartbeatPhase",
    "CallbackKind",
    # Stream
    "Stream",
    "AttachmentItem",
    "ImagePayload",
    "PendingAttachment",
    # Message
    "InboundMessage",
    "QuotedMessage",
    # 协议载荷
    "CallbackMessage",
    "EncryptedBody",
    "EncryptedEnvelope",
    "Feedback",
    "StreamReply",
    "StreamState",
]
