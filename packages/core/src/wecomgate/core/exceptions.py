"""Core 异常体系

配置类错误在启动时抛出（致命）；解密、附件等错误按单次请求/单个附件处理。
"""


class WecomGateError(Exception):
    """wecomgate 基础异常"""


class CryptoConfigError(WecomGateError):
    """Token / EncodingAESKey 配置非法

    在构造 WecomCrypto 时立即抛出，不应在请求路径上出现。
    """


class DecryptError(WecomGateError):
    """密文无法还原：base64 非法、填充不一致或长度字段越界

    视为篡改或密钥不匹配信号，不可重试。
    """


class AttachmentError(WecomGateError):
    """附件准备失败（文件不存在、格式不支持、超出大小限制等）"""

    def __init__(self, source_ref: str, reason: str) -> None:
        """
        Args:
            source_ref: 附件来源引用（本地路径）
            reason: 失败原因
        """
        super().__init__(f"{reason}: {source_ref}")
        self.source_ref = source_ref
        self.reason = reason
