"""FallbackManager -- 流式降级管理器

Lazy probe 策略：每次调用先尝试 primary，失败则切换到 fallback，
不维护显式的"降级状态"。已向调用方产出内容后不再降级。
"""

from collections.abc import AsyncIterator

import structlog

from .exceptions import FallbackExhaustedError, StreamInterruptedError

log = structlog.get_logger()


class FallbackManager:
    """降级链: LiteLLMClient -> EchoMessageAdapter

    primary / fallback 只需提供 ``stream(messages=..., model_alias=...)``
    异步生成器与 ``health_check()``。
    """

    def __init__(self, primary, fallback=None) -> None:
        self._primary = primary
        self._fallback = fallback

    @property
    def primary(self):
        return self._primary

    async def stream_with_fallback(
        self,
        messages: list[dict[str, str]],
        model_alias: str = "main",
        **kwargs,
    ) -> AsyncIterator[str]:
        """带降级的流式生成

        Raises:
            StreamInterruptedError: primary 产出部分内容后失败
            FallbackExhaustedError: primary 未产出内容即失败，且 fallback 缺失或同样失败
        """
        produced = 0
        try:
            async for chunk in self._primary.stream(
                messages=messages, model_alias=model_alias, **kwargs
            ):
                produced += 1
                yield chunk
            return
        except Exception as e:
            if produced:
                log.warning(
                    "primary_interrupted",
                    error=str(e),
                    produced_chunks=produced,
                    model_alias=model_alias,
                )
                raise StreamInterruptedError(produced, e) from e
            primary_error = e

        if self._fallback is None:
            raise FallbackExhaustedError(primary_error) from primary_error

        log.warning(
            "fallback_activated",
            fallback_reason=str(primary_error),
            model_alias=model_alias,
        )
        try:
            async for chunk in self._fallback.stream(
                messages=messages, model_alias=model_alias
            ):
                yield chunk
        except Exception as fallback_error:
            log.error(
                "fallback_exhausted",
                primary_error=str(primary_error),
                fallback_error=str(fallback_error),
            )
            raise FallbackExhaustedError(primary_error, fallback_error) from fallback_error

    async def health_check(self) -> bool:
        return await self._primary.health_check()
