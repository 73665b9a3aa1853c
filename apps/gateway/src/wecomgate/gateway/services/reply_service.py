"""ReplyService -- 回复编排

把 HeartbeatScheduler、ConversationQueue 与回复生成器串起来：
1. 新消息：启动心跳 -> 按会话键入队
2. 任务执行：构建 prompt -> 流式生成 -> 写入流 -> finish
3. 心跳超时：写入超时提示 -> finish -> 重置会话队列

deliver_text / deliver_media 是出站接口：能自行调用工具的回复生成器（agent）
在生成过程中通过它们向"当前会话的活动流"追加文本块或图片附件，
图片附件随后由 StreamRegistry 在 finish 时定稿。内置的 LiteLLM 与 echo
生成器只产出文本增量，不会调用这两个方法。
"""

import asyncio
import functools
import re
from contextlib import aclosing

import structlog
from wecomgate.core.config import MESSAGE_PREVIEW_LENGTH
from wecomgate.core.conversation_queue import (
    ConversationJob,
    ConversationQueue,
    queue_full_message,
    waiting_message,
)
from wecomgate.core.heartbeat import HeartbeatScheduler
from wecomgate.core.models import InboundMessage, MessageKind
from wecomgate.core.store import StreamRegistry
from wecomgate.core.textutil import preview
from wecomgate.provider import FallbackManager, ProviderError

from .notices import (
    IMAGE_PLACEHOLDER,
    PROCESSING_FAILED_MESSAGE,
    PROCESSING_TIMEOUT_MESSAGE,
)

log = structlog.get_logger()

BLOCK_SEPARATOR = "\n\n"

_SANDBOX_PREFIX = re.compile(r"^sandbox:/{0,2}")


def build_prompt(message: InboundMessage) -> str:
    """由入站消息构建发给模型的文本"""
    if message.msg_type == MessageKind.IMAGE:
        body = f"[图片] {message.image_url}" if message.image_url else ""
    elif message.msg_type == MessageKind.VOICE:
        if message.content:
            body = message.content
        elif message.voice_url:
            body = f"[语音] {message.voice_url}"
        else:
            body = ""
    else:
        body = message.content.strip()

    if body and message.quote is not None and message.quote.content:
        body = f"> {message.quote.content}{BLOCK_SEPARATOR}{body}"
    return body


def resolve_local_media(media_url: str) -> str | None:
    """本地路径（/... 或 sandbox:）返回绝对路径，远程地址返回 None"""
    if media_url.startswith("sandbox:"):
        path = _SANDBOX_PREFIX.sub("", media_url)
        return path if path.startswith("/") else f"/{path}"
    if media_url.startswith("/"):
        return media_url
    return None


def _contains_block(content: str, block: str) -> bool:
    sep = BLOCK_SEPARATOR
    return (
        content == block
        or content.startswith(f"{block}{sep}")
        or content.endswith(f"{sep}{block}")
        or f"{sep}{block}{sep}" in content
    )


class ReplyService:
    """回复编排服务"""

    def __init__(
        self,
        registry: StreamRegistry,
        heartbeat: HeartbeatScheduler,
        queue: ConversationQueue,
        dispatcher: FallbackManager,
        model_alias: str = "main",
    ) -> None:
        self._registry = registry
        self._heartbeat = heartbeat
        self._queue = queue
        self._dispatcher = dispatcher
        self._model_alias = model_alias
        # 会话键 -> 当前正在生成的流
        self._active_streams: dict[str, str] = {}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------
    # 调度
    # ------------------------------------------------------------

    def submit(self, message: InboundMessage, stream_id: str) -> None:
        """在后台调度处理，调用方（HTTP 回调）立即返回"""
        task = asyncio.get_running_loop().create_task(
            self.schedule_processing(message, stream_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def schedule_processing(self, message: InboundMessage, stream_id: str) -> None:
        """启动心跳并按会话键入队"""
        key = message.conversation_key
        self._heartbeat.start(
            stream_id,
            on_timeout=functools.partial(self._handle_timeout, key),
        )

        result = self._queue.enqueue(
            key,
            ConversationJob(stream_id=stream_id, payload=message),
            self._process_job,
        )

        if result.queue_full:
            self._registry.update(stream_id, queue_full_message())
            await self._registry.finish(stream_id)
            self._heartbeat.stop(stream_id)
            return

        if result.queued:
            self._registry.update(stream_id, waiting_message(result.position))

    async def _process_job(self, job: ConversationJob) -> None:
        try:
            await self.process_inbound_message(job.payload, job.stream_id)
        finally:
            self._heartbeat.stop(job.stream_id)

    async def _handle_timeout(self, key: str, stream_id: str) -> None:
        log.warning("reply_timed_out", conversation_key=key, stream_id=stream_id)
        self._registry.update(stream_id, PROCESSING_TIMEOUT_MESSAGE)
        await self._registry.finish(stream_id)
        if self._active_streams.get(key) == stream_id:
            del self._active_streams[key]
        self._queue.reset(key)

    # ------------------------------------------------------------
    # 处理
    # ------------------------------------------------------------

    def _is_closed(self, stream_id: str) -> bool:
        stream = self._registry.get(stream_id)
        return stream is None or stream.finished

    async def process_inbound_message(
        self, message: InboundMessage, stream_id: str
    ) -> None:
        """生成回复并写入流；无论成败都会 finish"""
        key = message.conversation_key
        self._active_streams[key] = stream_id
        log.info(
            "reply_processing_started",
            conversation_key=key,
            stream_id=stream_id,
            msg_type=message.msg_type,
            preview=preview(message.content, MESSAGE_PREVIEW_LENGTH),
        )

        try:
            prompt = build_prompt(message)
            if not prompt:
                log.warning("empty_message_skipped", stream_id=stream_id)
                return
            await self._generate(stream_id, prompt)
        finally:
            stream = self._registry.get(stream_id)
            if stream is not None and not stream.finished:
                if HeartbeatScheduler.is_placeholder(stream.content):
                    self._registry.update(stream_id, "")
                await self._registry.finish(stream_id)
            if self._active_streams.get(key) == stream_id:
                del self._active_streams[key]

    async def _generate(self, stream_id: str, prompt: str) -> None:
        messages = [{"role": "user", "content": prompt}]
        chunk_count = 0
        try:
            async with aclosing(
                self._dispatcher.stream_with_fallback(
                    messages, model_alias=self._model_alias
                )
            ) as chunks:
                async for chunk in chunks:
                    if self._is_closed(stream_id):
                        log.info("stream_closed_during_generation", stream_id=stream_id)
                        return
                    # 首段替换占位/排队提示，之后追加
                    if chunk_count == 0:
                        self._registry.update(stream_id, chunk)
                    else:
                        self._registry.append(stream_id, chunk)
                    chunk_count += 1
        except ProviderError as e:
            log.error(
                "reply_generation_failed",
                stream_id=stream_id,
                error=str(e),
                chunk_count=chunk_count,
            )
            if self._is_closed(stream_id):
                return
            if chunk_count == 0:
                self._registry.update(stream_id, PROCESSING_FAILED_MESSAGE)
            else:
                self._registry.append(
                    stream_id, f"{BLOCK_SEPARATOR}{PROCESSING_FAILED_MESSAGE}"
                )
            return

        log.info("reply_generation_completed", stream_id=stream_id, chunk_count=chunk_count)

    # ------------------------------------------------------------
    # 流内投递
    # ------------------------------------------------------------

    def get_active_stream(self, conversation_key: str) -> str | None:
        return self._active_streams.get(conversation_key)

    def _append_block(self, stream_id: str, block: str) -> bool:
        stream = self._registry.get(stream_id)
        if stream is None or stream.finished:
            log.warning("deliver_to_closed_stream", stream_id=stream_id)
            return False

        current = stream.content
        if HeartbeatScheduler.is_placeholder(current):
            current = ""
        if current and _contains_block(current, block):
            log.debug("duplicate_block_skipped", stream_id=stream_id)
            return True

        content = f"{current}{BLOCK_SEPARATOR}{block}" if current else block
        return self._registry.update(stream_id, content)

    def deliver_text(self, conversation_key: str, text: str) -> bool:
        """向会话的活动流追加一个文本块（空行分隔，跳过完全重复的块）"""
        stream_id = self._active_streams.get(conversation_key)
        if stream_id is None:
            log.warning("no_active_stream", conversation_key=conversation_key)
            return False
        if not text:
            return True
        return self._append_block(stream_id, text)

    def deliver_media(
        self, conversation_key: str, media_url: str, text: str = ""
    ) -> bool:
        """投递图片

        本地文件排队为附件（finish 时定稿），正文中留 [图片] 占位；
        远程地址无法内嵌，退化为 markdown 图片链接。
        """
        stream_id = self._active_streams.get(conversation_key)
        if stream_id is None:
            log.warning("no_active_stream", conversation_key=conversation_key)
            return False

        local_path = resolve_local_media(media_url)
        if local_path is not None:
            if not self._registry.queue_attachment(stream_id, local_path):
                return False
            marker = IMAGE_PLACEHOLDER
        else:
            log.info("remote_media_as_link", stream_id=stream_id, media_url=media_url)
            marker = f"![image]({media_url})"

        block = f"{text}{BLOCK_SEPARATOR}{marker}" if text else marker
        return self._append_block(stream_id, block)

    async def drain(self) -> None:
        """等待所有调度任务及其触发的会话任务完成"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._queue.join()

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
