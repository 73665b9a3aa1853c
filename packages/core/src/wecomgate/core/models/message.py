"""InboundMessage Domain Model -- 入站消息的统一格式

由 WebhookHandler 从 CallbackMessage 归一化而来，作为会话队列任务的载荷。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import ChatType, MessageKind


class QuotedMessage(BaseModel):
    """被引用的消息"""

    msg_type: str = Field(default="", description="被引用消息类型")
    content: str = Field(default="", description="文本内容或图片地址")


class InboundMessage(BaseModel):
    """入站消息（text / image / voice）"""

    msg_id: str = Field(description="消息 ID")
    msg_type: MessageKind = Field(description="消息类型")
    content: str = Field(default="", description="文本内容或语音转写")
    image_url: str = Field(default="", description="图片地址")
    voice_url: str = Field(default="", description="语音地址")
    media_id: str = Field(default="", description="语音 media_id")
    from_user: str = Field(default="", description="发送者 userid")
    chat_type: ChatType = Field(default=ChatType.SINGLE, description="会话类型")
    chat_id: str = Field(default="", description="群聊 ID")
    aibot_id: str = Field(default="", description="机器人 ID")
    response_url: str = Field(default="", description="一次性主动回复地址")
    quote: QuotedMessage | None = Field(default=None, description="引用消息")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="接收时间",
    )

    @property
    def is_group(self) -> bool:
        return self.chat_type == ChatType.GROUP and bool(self.chat_id)

    @property
    def conversation_key(self) -> str:
        """会话键：群聊用 chat_id，私聊用发送者 userid"""
        return self.chat_id if self.is_group else self.from_user
