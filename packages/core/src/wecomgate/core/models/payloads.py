"""企业微信 AI Bot 协议载荷

入站：外层 {encrypt} -> 解密后的 CallbackMessage（按 msgtype 区分）。
出站：StreamReply 明文 -> 加密后包装为 EncryptedEnvelope。
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .stream import AttachmentItem

# ============================================================
# 入站
# ============================================================


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EncryptedBody(_WireModel):
    """POST 请求体"""

    encrypt: str = Field(default="", description="base64 密文")


class Sender(_WireModel):
    userid: str = Field(default="", description="发送者 userid")


class TextBody(_WireModel):
    content: str = Field(default="", description="文本内容")


class ImageBody(_WireModel):
    url: str = Field(default="", description="图片下载地址")


class VoiceBody(_WireModel):
    url: str = Field(default="", description="语音下载地址")
    media_id: str = Field(default="", description="语音 media_id")
    content: str = Field(default="", description="平台提供的语音转写文本")


class StreamBody(_WireModel):
    id: str = Field(default="", description="流 ID")


class EventBody(_WireModel):
    event_type: str = Field(
        default="",
        validation_alias=AliasChoices("event_type", "eventtype"),
        description="事件类型",
    )


class QuoteBody(_WireModel):
    msgtype: str = Field(default="", description="被引用消息类型")
    text: TextBody | None = None
    image: ImageBody | None = None


class CallbackMessage(_WireModel):
    """解密后的内层回调消息"""

    msgid: str = Field(default="", description="消息 ID，用于去重")
    msgtype: str = Field(default="", description="消息类型")
    aibotid: str = Field(default="", description="机器人 ID")
    chattype: str = Field(default="single", description="single 或 group")
    chatid: str = Field(default="", description="群聊 ID（仅群聊）")
    response_url: str = Field(default="", description="一次性主动回复地址")
    sender: Sender = Field(
        default_factory=Sender,
        validation_alias=AliasChoices("from", "sender"),
        description="发送者",
    )
    text: TextBody | None = None
    image: ImageBody | None = None
    voice: VoiceBody | None = None
    stream: StreamBody | None = None
    event: EventBody | None = None
    quote: QuoteBody | None = None


# ============================================================
# 出站
# ============================================================


class Feedback(BaseModel):
    id: str = Field(description="反馈追踪 ID")


class StreamState(BaseModel):
    """stream 字段"""

    id: str
    finish: bool
    content: str
    msg_item: list[AttachmentItem] | None = None
    feedback: Feedback | None = None


class StreamReply(BaseModel):
    """被动回复明文"""

    msgtype: str = "stream"
    stream: StreamState


class EncryptedEnvelope(BaseModel):
    """被动回复密文包"""

    encrypt: str
    msgsignature: str
    timestamp: str
    nonce: str
