"""HeartbeatScheduler -- 处理期间保持流"看起来活着"

每个流一个 tick 任务：在真实回复出现前周期性写入占位文案
（"正在思考... ⏳"），防止客户端认为会话已死；到达截止时间后
触发超时回调。任何时刻每个流最多一个心跳在运行。

状态机：IDLE -> RUNNING -> {STOPPED, TIMED_OUT}
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from .config import HEARTBEAT_DEADLINE_S, HEARTBEAT_INTERVAL_S, HEARTBEAT_ROTATION_S
from .models.enums import HeartbeatPhase
from .store.stream_registry import StreamRegistry

log = structlog.get_logger()

PLACEHOLDER_MARK = "⏳"

# 按 rotation_s 轮换的占位文案
THINKING_PHRASES: tuple[str, ...] = (
    "正在思考",
    "正在分析",
    "正在处理",
    "正在生成回复",
)

TimeoutHandler = Callable[[str], Awaitable[None] | None]


@dataclass
class _HeartbeatState:
    stream_id: str
    started_at: float
    on_timeout: TimeoutHandler | None = None
    dots: int = 0
    has_real_content: bool = False
    phase: HeartbeatPhase = HeartbeatPhase.RUNNING
    task: asyncio.Task | None = field(default=None, repr=False)


def format_placeholder(elapsed_s: float, dots: int, rotation_s: float) -> str:
    """生成占位文案，dots 取值 0-3 对应 1-4 个点"""
    phrase = THINKING_PHRASES[int(elapsed_s // rotation_s) % len(THINKING_PHRASES)]
    return f"{phrase}{'.' * (dots + 1)} {PLACEHOLDER_MARK}"


class HeartbeatScheduler:
    """流心跳调度器"""

    def __init__(
        self,
        registry: StreamRegistry,
        interval_s: float = HEARTBEAT_INTERVAL_S,
        deadline_s: float = HEARTBEAT_DEADLINE_S,
        rotation_s: float = HEARTBEAT_ROTATION_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._interval_s = interval_s
        self._deadline_s = deadline_s
        self._rotation_s = rotation_s
        self._clock = clock
        self._states: dict[str, _HeartbeatState] = {}

    @staticmethod
    def is_placeholder(content: str) -> bool:
        """判断内容是否为心跳占位文案"""
        if not content or PLACEHOLDER_MARK not in content:
            return False
        return any(phrase in content for phrase in THINKING_PHRASES)

    def start(
        self,
        stream_id: str,
        on_timeout: TimeoutHandler | None = None,
    ) -> Callable[[], bool]:
        """启动心跳

        已在运行时不重复启动，直接返回停止函数。

        Args:
            stream_id: 流 ID
            on_timeout: 超时回调，参数为 stream_id，可为协程函数

        Returns:
            停止函数
        """
        if stream_id in self._states:
            log.debug("heartbeat_already_running", stream_id=stream_id)
            return lambda: self.stop(stream_id)

        state = _HeartbeatState(
            stream_id=stream_id,
            started_at=self._clock(),
            on_timeout=on_timeout,
        )
        self._states[stream_id] = state
        state.task = asyncio.get_running_loop().create_task(self._run(state))
        log.info(
            "heartbeat_started",
            stream_id=stream_id,
            interval_s=self._interval_s,
            deadline_s=self._deadline_s,
        )
        return lambda: self.stop(stream_id)

    async def _run(self, state: _HeartbeatState) -> None:
        while state.phase == HeartbeatPhase.RUNNING:
            await asyncio.sleep(self._interval_s)
            if self._states.get(state.stream_id) is not state:
                return
            await self._tick(state)

    async def _tick(self, state: _HeartbeatState) -> None:
        stream_id = state.stream_id
        elapsed = self._clock() - state.started_at

        if elapsed >= self._deadline_s:
            state.phase = HeartbeatPhase.TIMED_OUT
            # 只移除状态，不取消当前任务（回调就在本任务中执行）
            self._states.pop(stream_id, None)
            log.warning(
                "heartbeat_timed_out",
                stream_id=stream_id,
                elapsed_s=round(elapsed, 3),
            )
            if state.on_timeout is not None:
                await self._invoke_timeout(state)
            return

        stream = self._registry.get(stream_id)
        if stream is None or stream.finished:
            self._finish(state, reason="stream_gone" if stream is None else "finished")
            return

        # 出现过真实内容后不再写占位，即使内容随后被清空
        if state.has_real_content:
            return

        if stream.content and not self.is_placeholder(stream.content):
            state.has_real_content = True
            log.debug("heartbeat_real_content_detected", stream_id=stream_id)
            return

        content = format_placeholder(elapsed, state.dots, self._rotation_s)
        state.dots = (state.dots + 1) % 4
        self._registry.update(stream_id, content, finished=False)

    async def _invoke_timeout(self, state: _HeartbeatState) -> None:
        try:
            result = state.on_timeout(state.stream_id)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log.error(
                "heartbeat_timeout_handler_failed",
                stream_id=state.stream_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _finish(self, state: _HeartbeatState, reason: str) -> None:
        state.phase = HeartbeatPhase.STOPPED
        if self._states.get(state.stream_id) is state:
            del self._states[state.stream_id]
        log.debug("heartbeat_stopped", stream_id=state.stream_id, reason=reason)

    def stop(self, stream_id: str) -> bool:
        """停止心跳（幂等）

        Returns:
            是否确实停止了一个运行中的心跳
        """
        state = self._states.pop(stream_id, None)
        if state is None:
            return False
        state.phase = HeartbeatPhase.STOPPED
        task = state.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        log.debug("heartbeat_stopped", stream_id=stream_id, reason="stopped")
        return True

    def has(self, stream_id: str) -> bool:
        return stream_id in self._states

    def phase(self, stream_id: str) -> HeartbeatPhase:
        state = self._states.get(stream_id)
        return state.phase if state is not None else HeartbeatPhase.IDLE

    def clear(self) -> None:
        """停止全部心跳"""
        for stream_id in list(self._states):
            self.stop(stream_id)

    def get_stats(self) -> dict[str, int]:
        return {"active": len(self._states)}
