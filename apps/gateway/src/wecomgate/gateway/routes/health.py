"""健康检查路由

GET /health: 存活检查，进程在即返回 200。
GET /ready: 就绪检查，汇报 ServiceGroup 内各组件的统计；
            profile=llm/full 时额外探测 LiteLLM Proxy。
"""

from typing import Any

import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

from ..services.service_group import ServiceGroup

log = structlog.get_logger()

router = APIRouter()

PROBE_PROFILES = frozenset({"llm", "full"})


def _component_checks(services: ServiceGroup | None) -> tuple[dict[str, Any], bool]:
    if services is None:
        return {"crypto": "error: services not initialized"}, False
    return (
        {
            "crypto": "ok",
            "streams": services.registry.get_stats(),
            "heartbeats": services.heartbeat.get_stats(),
            "queues": services.queue.get_stats(),
        },
        True,
    )


async def _probe_proxy(services: ServiceGroup | None) -> str:
    """返回 ok / unreachable / skipped；echo 模式没有客户端，直接跳过"""
    client = services.litellm_client if services is not None else None
    if client is None:
        return "skipped"
    try:
        healthy = await client.health_check()
    except Exception as e:
        log.warning("proxy_probe_error", error=str(e))
        return "unreachable"
    return "ok" if healthy else "unreachable"


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）只看内存组件；llm/full 额外探测 LiteLLM Proxy",
    ),
):
    effective_profile = profile or "core"
    services = getattr(request.app.state, "services", None)

    checks, ok = _component_checks(services)
    if effective_profile in PROBE_PROFILES:
        checks["litellm_proxy"] = await _probe_proxy(services)
        ok = ok and checks["litellm_proxy"] != "unreachable"
    else:
        checks["litellm_proxy"] = "skipped"

    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "status": "ready" if ok else "not_ready",
            "profile": effective_profile,
            "checks": checks,
        },
    )
