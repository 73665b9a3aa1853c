"""图片附件准备 -- 为 stream.msg_item 生成可内嵌的图片

加载本地文件 -> 校验大小（<= 2MB）-> 识别格式（仅 JPG/PNG）-> base64 + MD5。
任何一步失败都抛出 AttachmentError，由调用方决定是否跳过。
"""

import asyncio
import base64
import hashlib
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from .config import MAX_IMAGE_BYTES
from .exceptions import AttachmentError

log = structlog.get_logger()

# 图片格式魔数
IMAGE_SIGNATURES: dict[str, bytes] = {
    "PNG": bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A]),
    "JPG": bytes([0xFF, 0xD8, 0xFF]),
}


class PreparedAttachment(BaseModel):
    """准备完成的图片"""

    base64: str = Field(description="base64 编码内容")
    md5: str = Field(description="原始字节 MD5")
    format: str = Field(description="JPG 或 PNG")
    size: int = Field(ge=0, description="原始字节数")


def detect_image_format(data: bytes, source_ref: str = "") -> str:
    """根据魔数识别图片格式

    Raises:
        AttachmentError: 非 JPG/PNG
    """
    for fmt, signature in IMAGE_SIGNATURES.items():
        if data.startswith(signature):
            return fmt
    header = data[:16].hex()
    raise AttachmentError(
        source_ref,
        f"Unsupported image format, only JPG and PNG are supported (header {header})",
    )


def validate_image_size(data: bytes, source_ref: str = "") -> None:
    if len(data) > MAX_IMAGE_BYTES:
        size_mb = len(data) / 1024 / 1024
        raise AttachmentError(
            source_ref,
            f"Image size {size_mb:.2f}MB exceeds 2MB limit",
        )


async def load_image(path: str) -> bytes:
    """在线程池中读取文件，避免阻塞事件循环"""
    try:
        return await asyncio.to_thread(Path(path).read_bytes)
    except FileNotFoundError as e:
        raise AttachmentError(path, "Image file not found") from e
    except PermissionError as e:
        raise AttachmentError(path, "Permission denied reading image") from e
    except OSError as e:
        raise AttachmentError(path, f"Failed to read image file ({e.strerror})") from e


async def prepare_image_for_msg_item(path: str) -> PreparedAttachment:
    """完整图片处理管道

    Args:
        path: 图片绝对路径

    Returns:
        PreparedAttachment

    Raises:
        AttachmentError: 任一步骤失败
    """
    data = await load_image(path)
    validate_image_size(data, path)
    fmt = detect_image_format(data, path)

    prepared = PreparedAttachment(
        base64=base64.b64encode(data).decode("ascii"),
        md5=hashlib.md5(data).hexdigest(),
        format=fmt,
        size=len(data),
    )
    log.info(
        "image_prepared",
        path=path,
        format=fmt,
        size=prepared.size,
        md5=prepared.md5,
    )
    return prepared
