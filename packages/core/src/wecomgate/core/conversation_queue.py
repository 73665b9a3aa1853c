"""ConversationQueue -- 按会话串行化任务

同一会话键（群聊 ID 或私聊用户 ID）任何时刻最多一个任务在执行，
其余按 FIFO 排队，积压上限 max_backlog；超出时拒绝。
不同会话之间完全并发。

空闲的会话状态在 idle_reclaim_s 后回收；回收定时器通过代数（generation）
围栏，期间若有新任务进入则不回收。reset() 之后，被放弃任务的完成
不再影响该会话：完成回调同时校验状态对象身份与 epoch，
状态被回收后重建的会话不会被旧任务推进。
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from .config import QUEUE_IDLE_RECLAIM_S, QUEUE_MAX_BACKLOG

log = structlog.get_logger()

QUEUE_FULL_MESSAGE = "⚠️ 消息较多，请稍后再试。当前正在处理您的消息，请耐心等待。"


@dataclass
class ConversationJob:
    """排队中的一次消息处理"""

    stream_id: str
    payload: Any = None


@dataclass
class EnqueueResult:
    """入队结果

    queued=False 且 queue_full=False 表示已立即开始执行。
    """

    queued: bool
    position: int = 0
    queue_full: bool = False


JobProcessor = Callable[[ConversationJob], Awaitable[Any]]


@dataclass
class _ConversationState:
    backlog: deque[tuple[ConversationJob, JobProcessor]] = field(default_factory=deque)
    processing: bool = False
    current_job_id: str | None = None
    generation: int = 0
    epoch: int = 0
    reclaim_handle: asyncio.TimerHandle | None = None


def queue_full_message() -> str:
    return QUEUE_FULL_MESSAGE


def waiting_message(position: int) -> str:
    """排队提示文案"""
    if position == 1:
        return "⏳ 收到您的消息，将在当前消息处理完成后立即处理。"
    return f"⏳ 收到您的消息，当前排在第 {position} 位，请稍候..."


class ConversationQueue:
    """会话级 FIFO 串行队列"""

    def __init__(
        self,
        max_backlog: int = QUEUE_MAX_BACKLOG,
        idle_reclaim_s: float = QUEUE_IDLE_RECLAIM_S,
    ) -> None:
        self._max_backlog = max_backlog
        self._idle_reclaim_s = idle_reclaim_s
        self._states: dict[str, _ConversationState] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    queue_full_message = staticmethod(queue_full_message)
    waiting_message = staticmethod(waiting_message)

    def enqueue(
        self,
        key: str,
        job: ConversationJob,
        processor: JobProcessor,
    ) -> EnqueueResult:
        """提交任务

        Args:
            key: 会话键
            job: 任务
            processor: 执行任务的协程函数

        Returns:
            EnqueueResult
        """
        state = self._states.get(key)
        if state is None:
            state = _ConversationState()
            self._states[key] = state

        state.generation += 1
        if state.reclaim_handle is not None:
            state.reclaim_handle.cancel()
            state.reclaim_handle = None

        if not state.processing:
            self._start(key, state, job, processor)
            return EnqueueResult(queued=False)

        if len(state.backlog) >= self._max_backlog:
            log.warning(
                "conversation_queue_full",
                key=key,
                stream_id=job.stream_id,
                max_backlog=self._max_backlog,
            )
            return EnqueueResult(queued=False, queue_full=True)

        state.backlog.append((job, processor))
        position = len(state.backlog)
        log.info(
            "conversation_job_queued",
            key=key,
            stream_id=job.stream_id,
            position=position,
        )
        return EnqueueResult(queued=True, position=position)

    def _start(
        self,
        key: str,
        state: _ConversationState,
        job: ConversationJob,
        processor: JobProcessor,
    ) -> None:
        state.processing = True
        state.current_job_id = job.stream_id
        task = asyncio.get_running_loop().create_task(
            self._run(key, state, state.epoch, job, processor)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        log.debug("conversation_job_started", key=key, stream_id=job.stream_id)

    async def _run(
        self,
        key: str,
        state: _ConversationState,
        epoch: int,
        job: ConversationJob,
        processor: JobProcessor,
    ) -> None:
        try:
            await processor(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(
                "conversation_job_failed",
                key=key,
                stream_id=job.stream_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._on_complete(key, state, epoch)

    def _on_complete(
        self, key: str, state: _ConversationState, epoch: int
    ) -> None:
        # reset 之后被放弃的任务不再推进该会话；状态被回收重建后同样不认旧任务
        if self._closed or self._states.get(key) is not state or state.epoch != epoch:
            return

        if state.backlog:
            job, processor = state.backlog.popleft()
            self._start(key, state, job, processor)
            return

        state.processing = False
        state.current_job_id = None
        self._schedule_reclaim(key, state)

    def _schedule_reclaim(self, key: str, state: _ConversationState) -> None:
        generation = state.generation
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        def _reclaim() -> None:
            current = self._states.get(key)
            if current is not state:
                return
            current.reclaim_handle = None
            if (
                current.generation == generation
                and not current.processing
                and not current.backlog
            ):
                del self._states[key]
                log.debug("conversation_state_reclaimed", key=key)

        state.reclaim_handle = loop.call_later(self._idle_reclaim_s, _reclaim)

    def reset(self, key: str) -> None:
        """放弃会话当前任务与积压（超时恢复用）

        被放弃的任务仍可能在后台运行，但其完成不会再启动积压任务。
        """
        state = self._states.get(key)
        if state is None:
            return
        dropped = len(state.backlog)
        state.backlog.clear()
        state.processing = False
        state.current_job_id = None
        state.epoch += 1
        state.generation += 1
        if state.reclaim_handle is not None:
            state.reclaim_handle.cancel()
            state.reclaim_handle = None
        self._schedule_reclaim(key, state)
        log.info("conversation_queue_reset", key=key, dropped=dropped)

    def cancel(self, key: str) -> int:
        """清空积压（不影响正在执行的任务）

        Returns:
            被丢弃的任务数
        """
        state = self._states.get(key)
        if state is None:
            return 0
        dropped = len(state.backlog)
        state.backlog.clear()
        if dropped:
            log.info("conversation_queue_cancelled", key=key, dropped=dropped)
        return dropped

    def is_processing(self, key: str) -> bool:
        state = self._states.get(key)
        return state is not None and state.processing

    def get_queue_length(self, key: str) -> int:
        state = self._states.get(key)
        return len(state.backlog) if state is not None else 0

    def get_current_job_id(self, key: str) -> str | None:
        state = self._states.get(key)
        return state.current_job_id if state is not None else None

    def has_state(self, key: str) -> bool:
        return key in self._states

    def get_stats(self) -> dict[str, int]:
        return {
            "active_queues": len(self._states),
            "processing": sum(1 for s in self._states.values() if s.processing),
            "queued": sum(len(s.backlog) for s in self._states.values()),
        }

    async def join(self) -> None:
        """等待当前所有运行中任务（含其触发的积压任务）结束"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """取消所有回收定时器与运行中的任务（关闭时调用）"""
        self._closed = True
        for state in self._states.values():
            if state.reclaim_handle is not None:
                state.reclaim_handle.cancel()
                state.reclaim_handle = None
            state.backlog.clear()
        for task in list(self._tasks):
            task.cancel()
