"""MessageDeduplicator -- 短 TTL 的已见消息集合

平台按至少一次语义重投回调，同一 msgid 在窗口内只处理一次。
过期条目在访问时惰性清理，不依赖后台定时器。
"""

import time
from collections import OrderedDict
from collections.abc import Callable

from ..config import DEDUP_TTL_S


class MessageDeduplicator:
    """按 msgid 去重"""

    def __init__(
        self,
        ttl_s: float = DEDUP_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        # msg_id -> expires_at，按插入顺序即按过期顺序
        self._seen: OrderedDict[str, float] = OrderedDict()

    def _prune(self, now: float) -> None:
        while self._seen:
            msg_id, expires_at = next(iter(self._seen.items()))
            if expires_at > now:
                break
            del self._seen[msg_id]

    def is_duplicate(self, msg_id: str) -> bool:
        """检查并标记：首次出现返回 False，窗口内重复返回 True"""
        now = self._clock()
        self._prune(now)
        if msg_id in self._seen:
            return True
        self._seen[msg_id] = now + self._ttl_s
        return False

    def mark_as_seen(self, msg_id: str) -> None:
        now = self._clock()
        self._prune(now)
        self._seen.pop(msg_id, None)
        self._seen[msg_id] = now + self._ttl_s

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._seen)
