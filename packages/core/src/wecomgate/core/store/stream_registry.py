"""StreamRegistry -- 内存中的流式会话表

所有进行中/已完成流的唯一数据源。同步方法均为单条记录的读-改-写，
在单事件循环内天然原子；流不存在时返回 False/None，从不抛出。

后台过期清理在首次使用时惰性启动（不在 import 时产生常驻任务），
关闭时通过 stop() 取消，保证进程可以干净退出。
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from ..attachments import PreparedAttachment, prepare_image_for_msg_item
from ..config import (
    FEEDBACK_ID_MAX_BYTES,
    STREAM_CONTENT_MAX_BYTES,
    STREAM_EXPIRY_S,
    STREAM_MAX_ATTACHMENTS,
    STREAM_SWEEP_INTERVAL_S,
)
from ..models.stream import AttachmentItem, ImagePayload, PendingAttachment, Stream
from ..textutil import truncate_utf8, utf8_len

log = structlog.get_logger()

AttachmentPreparer = Callable[[str], Awaitable[PreparedAttachment]]


class StreamRegistry:
    """流式会话注册表"""

    def __init__(
        self,
        expiry_s: float = STREAM_EXPIRY_S,
        sweep_interval_s: float = STREAM_SWEEP_INTERVAL_S,
        attachment_preparer: AttachmentPreparer = prepare_image_for_msg_item,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            expiry_s: 无活动多久后可被回收
            sweep_interval_s: 过期清理周期
            attachment_preparer: 附件准备函数（来源引用 -> PreparedAttachment）
            clock: 时间源（秒），测试可注入
        """
        self._streams: dict[str, Stream] = {}
        self._expiry_s = expiry_s
        self._sweep_interval_s = sweep_interval_s
        self._prepare_attachment = attachment_preparer
        self._clock = clock
        self._sweep_task: asyncio.Task | None = None
        self._pending_deletes: dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------

    def start(self) -> None:
        """启动定时清理（幂等）；无运行中的事件循环时静默跳过"""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweep_task = loop.create_task(self._sweep_loop())

    def stop(self) -> None:
        """停止定时清理并取消所有延迟删除"""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        for handle in self._pending_deletes.values():
            handle.cancel()
        self._pending_deletes.clear()

    @property
    def sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_s)
            self.sweep_expired()

    # ------------------------------------------------------------
    # 写操作
    # ------------------------------------------------------------

    def create(self, stream_id: str, feedback_id: str | None = None) -> str:
        """创建空流；同 ID 的旧记录被覆盖"""
        self.start()
        if feedback_id:
            feedback_id = truncate_utf8(feedback_id, FEEDBACK_ID_MAX_BYTES)
        self._streams[stream_id] = Stream(
            stream_id=stream_id,
            updated_at=self._clock(),
            feedback_id=feedback_id or None,
        )
        log.debug("stream_created", stream_id=stream_id, feedback_id=feedback_id)
        return stream_id

    def _fit(self, stream_id: str, content: str) -> str:
        content_bytes = utf8_len(content)
        if content_bytes <= STREAM_CONTENT_MAX_BYTES:
            return content
        log.warning(
            "stream_content_truncated",
            stream_id=stream_id,
            bytes=content_bytes,
            limit=STREAM_CONTENT_MAX_BYTES,
        )
        return truncate_utf8(content, STREAM_CONTENT_MAX_BYTES)

    def update(
        self,
        stream_id: str,
        content: str,
        finished: bool = False,
        attachment_items: list[AttachmentItem] | None = None,
    ) -> bool:
        """整体替换流内容

        Args:
            stream_id: 流 ID
            content: 新内容（超出字节预算时截断）
            finished: 是否完成；已完成的流不会被改回未完成
            attachment_items: 仅在 finished=True 时生效，最多保留 10 项

        Returns:
            流不存在时返回 False
        """
        self.start()
        stream = self._streams.get(stream_id)
        if stream is None:
            log.warning("stream_not_found_for_update", stream_id=stream_id)
            return False

        stream.content = self._fit(stream_id, content)
        stream.finished = stream.finished or finished
        stream.updated_at = self._clock()

        if finished and attachment_items:
            stream.attachment_items = list(attachment_items[:STREAM_MAX_ATTACHMENTS])

        log.debug(
            "stream_updated",
            stream_id=stream_id,
            content_bytes=utf8_len(stream.content),
            finished=stream.finished,
            attachment_count=len(stream.attachment_items),
        )
        return True

    def append(self, stream_id: str, chunk: str) -> bool:
        """追加内容（流式生成），同样受字节预算约束"""
        self.start()
        stream = self._streams.get(stream_id)
        if stream is None:
            log.warning("stream_not_found_for_append", stream_id=stream_id)
            return False

        stream.content = self._fit(stream_id, stream.content + chunk)
        stream.updated_at = self._clock()
        return True

    def queue_attachment(self, stream_id: str, source_ref: str) -> bool:
        """登记一个待随完成一起发送的附件"""
        self.start()
        stream = self._streams.get(stream_id)
        if stream is None:
            log.warning("stream_not_found_for_queue_attachment", stream_id=stream_id)
            return False

        now = self._clock()
        stream.pending_attachments.append(
            PendingAttachment(source_ref=source_ref, queued_at=now)
        )
        stream.updated_at = now
        log.debug(
            "attachment_queued",
            stream_id=stream_id,
            source_ref=source_ref,
            total_queued=len(stream.pending_attachments),
        )
        return True

    async def finalize_attachments(self, stream_id: str) -> list[AttachmentItem]:
        """按入队顺序准备所有待定稿附件

        单个附件失败只记录日志并跳过；成功满 10 项后丢弃剩余附件。
        """
        stream = self._streams.get(stream_id)
        if stream is None or not stream.pending_attachments:
            return []

        pending = list(stream.pending_attachments)
        items: list[AttachmentItem] = []
        for index, attachment in enumerate(pending):
            if len(items) >= STREAM_MAX_ATTACHMENTS:
                log.warning(
                    "stream_attachment_limit_reached",
                    stream_id=stream_id,
                    total=len(pending),
                    discarded=len(pending) - index,
                )
                break
            try:
                prepared = await self._prepare_attachment(attachment.source_ref)
            except Exception as e:
                log.error(
                    "attachment_prepare_failed",
                    stream_id=stream_id,
                    source_ref=attachment.source_ref,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            items.append(
                AttachmentItem(
                    image=ImagePayload(base64=prepared.base64, md5=prepared.md5)
                )
            )

        log.info(
            "stream_attachments_finalized",
            stream_id=stream_id,
            processed=len(items),
            pending=len(pending),
        )
        return items

    async def finish(self, stream_id: str) -> bool:
        """标记流完成，并定稿待发送的附件

        已完成的流直接返回 False，保证附件最多定稿一次。
        """
        self.start()
        stream = self._streams.get(stream_id)
        if stream is None:
            log.warning("stream_not_found_for_finish", stream_id=stream_id)
            return False
        if stream.finished:
            log.debug("stream_already_finished", stream_id=stream_id)
            return False

        if stream.pending_attachments:
            items = await self.finalize_attachments(stream_id)
            # 定稿期间可能已被并发 finish 或删除
            if stream.finished or stream_id not in self._streams:
                return False
            stream.attachment_items = items
            stream.pending_attachments = []

        stream.finished = True
        stream.updated_at = self._clock()
        log.info(
            "stream_finished",
            stream_id=stream_id,
            content_length=len(stream.content),
            attachment_count=len(stream.attachment_items),
        )
        return True

    # ------------------------------------------------------------
    # 读 / 删除
    # ------------------------------------------------------------

    def get(self, stream_id: str) -> Stream | None:
        """获取流的当前状态（返回注册表持有的记录，调用方应只读）"""
        return self._streams.get(stream_id)

    def exists(self, stream_id: str) -> bool:
        return stream_id in self._streams

    def delete(self, stream_id: str) -> bool:
        handle = self._pending_deletes.pop(stream_id, None)
        if handle is not None:
            handle.cancel()
        deleted = self._streams.pop(stream_id, None) is not None
        if deleted:
            log.debug("stream_deleted", stream_id=stream_id)
        return deleted

    def schedule_delete(self, stream_id: str, delay_s: float) -> None:
        """延迟删除（完成后的宽限期）；同一流只保留一个待执行删除"""
        if stream_id in self._pending_deletes:
            return
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._pending_deletes.pop(stream_id, None)
            self.delete(stream_id)

        self._pending_deletes[stream_id] = loop.call_later(delay_s, _fire)

    def sweep_expired(
        self, now: float | None = None, timeout_s: float | None = None
    ) -> int:
        """清理超过过期时间未更新的流

        Returns:
            清理数量
        """
        now = self._clock() if now is None else now
        timeout = self._expiry_s if timeout_s is None else timeout_s
        expired = [
            stream_id
            for stream_id, stream in self._streams.items()
            if now - stream.updated_at > timeout
        ]
        for stream_id in expired:
            self.delete(stream_id)

        if expired:
            log.info("expired_streams_cleaned", count=len(expired))
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        total = len(self._streams)
        finished = sum(1 for s in self._streams.values() if s.finished)
        return {"total": total, "finished": finished, "active": total - finished}
