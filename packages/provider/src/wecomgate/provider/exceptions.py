"""Provider 异常体系

ProviderError 是回复生成失败的统一出口；网关层只把它转换为用户可见的
失败提示文本，不会暴露给平台。
"""


class ProviderError(Exception):
    """Provider 包基础异常

    recoverable 表示换一个生成器（或稍后重试）是否可能成功。
    """

    def __init__(self, message: str, recoverable: bool = True) -> None:
        super().__init__(message)
        self.recoverable = recoverable


class ProxyUnreachableError(ProviderError):
    """连接 LiteLLM Proxy 失败（拒绝连接、超时、DNS 等），FallbackManager 据此降级"""

    def __init__(self, proxy_url: str, original_error: Exception) -> None:
        super().__init__(f"LiteLLM Proxy 不可达: {proxy_url} -- {original_error}")
        self.proxy_url = proxy_url
        self.original_error = original_error


class StreamInterruptedError(ProviderError):
    """已经产出部分文本后生成器失败

    用户已经看到了部分回复，此时切换生成器会拼出两段无关的文本，因此不可恢复。
    """

    def __init__(self, produced_chunks: int, original_error: Exception) -> None:
        super().__init__(
            f"生成在第 {produced_chunks} 个分片后中断: {original_error}",
            recoverable=False,
        )
        self.produced_chunks = produced_chunks


class FallbackExhaustedError(ProviderError):
    """降级链上没有可用的生成器"""

    def __init__(
        self, primary_error: Exception, fallback_error: Exception | None = None
    ) -> None:
        if fallback_error is None:
            message = f"Primary 调用失败且无 fallback 配置: {primary_error}"
        else:
            message = (
                f"Primary 和 Fallback 均失败。Primary: {primary_error}; "
                f"Fallback: {fallback_error}"
            )
        super().__init__(message, recoverable=False)
        self.primary_error = primary_error
        self.fallback_error = fallback_error
