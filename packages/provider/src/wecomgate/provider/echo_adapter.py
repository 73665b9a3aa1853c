"""EchoMessageAdapter -- Echo 模式

不依赖任何后端，把最后一条 user 消息按词回显为流式增量。
用于本地联调，也是 FallbackManager 的默认降级后备。
"""

import asyncio
from collections.abc import AsyncIterator


class EchoMessageAdapter:
    """Echo 回复生成器"""

    def __init__(self, chunk_delay_s: float = 0.01) -> None:
        self._chunk_delay_s = chunk_delay_s

    async def stream(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "echo",
        **kwargs,
    ) -> AsyncIterator[str]:
        """产出 "Echo: {content}"，按空白切分为多个增量"""
        text = f"Echo: {self._extract_last_user_content(messages)}"
        words = text.split(" ")
        for index, word in enumerate(words):
            await asyncio.sleep(self._chunk_delay_s)
            yield word if index == 0 else f" {word}"

    async def health_check(self) -> bool:
        return True

    @staticmethod
    def _extract_last_user_content(messages: list[dict[str, str]]) -> str:
        """提取最后一条 user 消息，无 user 消息时返回 "(empty)" """
        for msg in reversed(messages):
            if msg.get("role") == "user":
                return msg.get("content", "")

        if messages:
            return messages[-1].get("content", "(empty)")
        return "(empty)"
