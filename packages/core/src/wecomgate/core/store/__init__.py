"""wecomgate Core Store -- 进程内状态存储

流式会话与消息去重均只存在于内存，进程重启即丢失。
"""

from .dedup import MessageDeduplicator
from .stream_registry import AttachmentPreparer, StreamRegistry

__all__ = [
    "StreamRegistry",
    "AttachmentPreparer",
    "MessageDeduplicator",
]
