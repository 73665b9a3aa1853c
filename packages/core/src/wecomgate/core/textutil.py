"""UTF-8 字节预算工具"""


def utf8_len(text: str) -> int:
    """返回文本的 UTF-8 字节长度"""
    return len(text.encode("utf-8"))


def truncate_utf8(text: str, max_bytes: int) -> str:
    """按 UTF-8 字节数截断文本，保证不切断多字节字符

    Args:
        text: 原文本
        max_bytes: 最大字节数

    Returns:
        截断后的文本，其 UTF-8 长度 <= max_bytes
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    # 截断点落在多字节序列中间时，ignore 会丢弃残缺的尾部字节
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def preview(text: str, length: int) -> str:
    """日志用预览文本"""
    return text[:length]
