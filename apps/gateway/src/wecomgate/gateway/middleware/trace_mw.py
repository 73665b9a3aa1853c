"""TraceMiddleware -- 回调级追踪

企业微信每次回调携带 timestamp + nonce，同一回调的重投复用相同的值，
trace_id 由二者派生，重投请求与首次请求共享同一 trace_id。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response


class TraceMiddleware(BaseHTTPMiddleware):
    """为带 nonce 的回调请求绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        nonce = request.query_params.get("nonce")
        timestamp = request.query_params.get("timestamp")

        if nonce:
            trace_id = f"trace-{timestamp}-{nonce}" if timestamp else f"trace-{nonce}"
            structlog.contextvars.bind_contextvars(trace_id=trace_id)

        return await call_next(request)
