"""FallbackManager 单元测试

验证 primary 成功不触发 fallback、primary 在输出前失败触发 fallback、
输出过程中失败不降级、双方失败抛 ProviderError、lazy probe 恢复。
"""

import pytest
from wecomgate.provider.exceptions import (
    FallbackExhaustedError,
    ProviderError,
    ProxyUnreachableError,
    StreamInterruptedError,
)
from wecomgate.provider.fallback import FallbackManager


class ScriptedStream:
    """按脚本产出增量，可在第 fail_after 段之后抛错"""

    def __init__(
        self,
        chunks: list[str],
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.chunks = chunks
        self.fail_after = fail_after
        self.error = error or ProxyUnreachableError(
            "http://localhost:4000", ConnectionError("refused")
        )
        self.calls = 0

    async def stream(self, messages, model_alias="main", **kwargs):
        self.calls += 1
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.error
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise self.error

    async def health_check(self) -> bool:
        return True


async def _collect(manager, messages) -> list[str]:
    return [chunk async for chunk in manager.stream_with_fallback(messages)]


MESSAGES = [{"role": "user", "content": "test"}]


class TestPrimarySuccess:
    async def test_primary_success_no_fallback(self):
        primary = ScriptedStream(["a", "b"])
        fallback = ScriptedStream(["echo"])
        manager = FallbackManager(primary=primary, fallback=fallback)

        assert await _collect(manager, MESSAGES) == ["a", "b"]
        assert fallback.calls == 0


class TestPrimaryFailure:
    async def test_failure_before_output_triggers_fallback(self):
        primary = ScriptedStream(["a"], fail_after=0)
        fallback = ScriptedStream(["echo"])
        manager = FallbackManager(primary=primary, fallback=fallback)

        assert await _collect(manager, MESSAGES) == ["echo"]
        assert fallback.calls == 1

    async def test_provider_error_triggers_fallback(self):
        primary = ScriptedStream([], fail_after=0, error=ProviderError("quota"))
        fallback = ScriptedStream(["echo"])
        manager = FallbackManager(primary=primary, fallback=fallback)

        assert await _collect(manager, MESSAGES) == ["echo"]

    async def test_failure_after_output_does_not_fall_back(self):
        primary = ScriptedStream(["a", "b"], fail_after=1)
        fallback = ScriptedStream(["echo"])
        manager = FallbackManager(primary=primary, fallback=fallback)
        received: list[str] = []

        with pytest.raises(StreamInterruptedError) as exc_info:
            async for chunk in manager.stream_with_fallback(MESSAGES):
                received.append(chunk)

        assert received == ["a"]
        assert exc_info.value.produced_chunks == 1
        assert exc_info.value.recoverable is False
        assert fallback.calls == 0

    async def test_no_fallback_configured(self):
        primary = ScriptedStream([], fail_after=0)
        manager = FallbackManager(primary=primary, fallback=None)

        with pytest.raises(FallbackExhaustedError) as exc_info:
            await _collect(manager, MESSAGES)
        assert exc_info.value.fallback_error is None
        assert exc_info.value.recoverable is False

    async def test_both_fail(self):
        primary = ScriptedStream([], fail_after=0)
        fallback = ScriptedStream([], fail_after=0, error=RuntimeError("echo down"))
        manager = FallbackManager(primary=primary, fallback=fallback)

        with pytest.raises(FallbackExhaustedError, match="均失败") as exc_info:
            await _collect(manager, MESSAGES)
        assert str(exc_info.value.fallback_error) == "echo down"


class TestLazyProbe:
    async def test_primary_retried_on_every_call(self):
        """不记忆降级状态，primary 恢复后立即使用"""
        primary = ScriptedStream(["primary"], fail_after=0)
        fallback = ScriptedStream(["echo"])
        manager = FallbackManager(primary=primary, fallback=fallback)

        assert await _collect(manager, MESSAGES) == ["echo"]
        primary.fail_after = None
        assert await _collect(manager, MESSAGES) == ["primary"]
        assert primary.calls == 2

    async def test_health_check_delegates_to_primary(self):
        manager = FallbackManager(primary=ScriptedStream([]))
        assert await manager.health_check() is True
