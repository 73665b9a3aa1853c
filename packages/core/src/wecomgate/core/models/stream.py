"""Stream Domain Model -- 一次进行中或已完成的流式回复

content 受 20480 字节预算约束（写入时截断而非拒绝）；
finished 单调 false -> true；attachment_items 仅在完成时填充，最多 10 项。
"""

from pydantic import BaseModel, Field


class ImagePayload(BaseModel):
    """msg_item 中的图片内容"""

    base64: str = Field(description="图片 base64 编码")
    md5: str = Field(description="图片原始字节的 MD5")


class AttachmentItem(BaseModel):
    """已定稿的图文混排项（对应 stream.msg_item[]）"""

    msgtype: str = Field(default="image", description="类型标签")
    image: ImagePayload = Field(description="图片内容")


class PendingAttachment(BaseModel):
    """完成前排队的附件来源引用"""

    source_ref: str = Field(description="附件来源（本地绝对路径）")
    queued_at: float = Field(description="入队时间戳（秒）")


class Stream(BaseModel):
    """流式会话记录 -- 由 StreamRegistry 独占持有"""

    stream_id: str = Field(description="流 ID，跨刷新请求的关联键")
    content: str = Field(default="", description="累积回复文本")
    finished: bool = Field(default=False, description="是否已完成")
    updated_at: float = Field(description="最后一次变更时间戳（秒）")
    feedback_id: str | None = Field(default=None, description="用户反馈追踪 ID")
    attachment_items: list[AttachmentItem] = Field(
        default_factory=list,
        description="已定稿的附件列表",
    )
    pending_attachments: list[PendingAttachment] = Field(
        default_factory=list,
        description="待定稿的附件队列",
    )
