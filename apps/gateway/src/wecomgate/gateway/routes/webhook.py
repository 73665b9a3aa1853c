"""企业微信回调路由

GET  {webhook_path}: URL 验证，返回解密后的 echostr
POST {webhook_path}: 消息回调，返回加密的流式被动回复

同步路径只做到"流已创建、空回复已返回"，回复生成全部在后台进行。
"""

import structlog
from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse, PlainTextResponse
from ulid import ULID
from wecomgate.core.exceptions import DecryptError
from wecomgate.core.models import CallbackKind, EventType

from ..deps import get_service_group, get_webhook_handler
from ..services.notices import STREAM_EXPIRED_MESSAGE
from ..services.service_group import ServiceGroup
from ..services.webhook_handler import (
    CallbackResult,
    MissingParameterError,
    SignatureMismatchError,
    WebhookHandler,
    WebhookProtocolError,
)

log = structlog.get_logger()

router = APIRouter()

# 平台对未处理类型的通用确认
ACK_TEXT = "success"


def _envelope_response(envelope) -> JSONResponse:
    return JSONResponse(content=envelope.model_dump())


@router.get("")
async def verify_url(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    """URL 验证

    - 缺少参数返回 400
    - 签名不符或 echostr 无法解密返回 403
    """
    try:
        echo = handler.verify_url(request.query_params)
    except MissingParameterError as e:
        log.warning("url_verification_rejected", reason=str(e))
        return PlainTextResponse("missing parameters", status_code=400)
    except (SignatureMismatchError, DecryptError) as e:
        log.warning(
            "url_verification_rejected",
            reason=str(e),
            error_type=type(e).__name__,
        )
        return PlainTextResponse("forbidden", status_code=403)
    return PlainTextResponse(echo)


@router.post("")
async def receive_callback(
    request: Request,
    services: ServiceGroup = Depends(get_service_group),
):
    """消息回调"""
    body = await request.body()
    try:
        result = services.handler.parse_callback(request.query_params, body)
    except (WebhookProtocolError, DecryptError) as e:
        log.warning(
            "callback_rejected",
            reason=str(e),
            error_type=type(e).__name__,
        )
        return PlainTextResponse("bad request", status_code=400)

    structlog.contextvars.bind_contextvars(msg_type=result.msg_type)

    if result.kind == CallbackKind.MESSAGE:
        return _handle_message(services, result)
    if result.kind == CallbackKind.STREAM_REFRESH:
        return _handle_refresh(services, result)
    if result.kind == CallbackKind.EVENT and result.event_type == EventType.ENTER_CHAT:
        return await _handle_enter_chat(services, result)

    log.debug("callback_acknowledged", kind=result.kind, event_type=result.event_type)
    return PlainTextResponse(ACK_TEXT)


def _handle_message(services: ServiceGroup, result: CallbackResult) -> JSONResponse:
    stream_id = f"stream_{ULID()}"
    services.registry.create(stream_id)
    services.reply_service.submit(result.message, stream_id)
    log.info(
        "stream_opened",
        stream_id=stream_id,
        msg_id=result.msg_id,
        conversation_key=result.message.conversation_key,
    )
    envelope = services.handler.build_stream_response(
        stream_id,
        "",
        False,
        result.timestamp,
        result.nonce,
    )
    return _envelope_response(envelope)


def _handle_refresh(services: ServiceGroup, result: CallbackResult) -> JSONResponse:
    stream = services.registry.get(result.stream_id) if result.stream_id else None
    if stream is None:
        log.info("stream_refresh_expired", stream_id=result.stream_id)
        envelope = services.handler.build_stream_response(
            result.stream_id,
            STREAM_EXPIRED_MESSAGE,
            True,
            result.timestamp,
            result.nonce,
        )
        return _envelope_response(envelope)

    if stream.finished:
        services.registry.schedule_delete(
            stream.stream_id,
            services.gateway_config.finished_stream_grace_s,
        )

    envelope = services.handler.build_stream_response(
        stream.stream_id,
        stream.content,
        stream.finished,
        result.timestamp,
        result.nonce,
        attachment_items=stream.attachment_items if stream.finished else None,
        feedback_id=stream.feedback_id,
    )
    log.debug(
        "stream_refreshed",
        stream_id=stream.stream_id,
        finished=stream.finished,
        content_length=len(stream.content),
    )
    return _envelope_response(envelope)


async def _handle_enter_chat(
    services: ServiceGroup, result: CallbackResult
) -> JSONResponse:
    stream_id = f"welcome_{ULID()}"
    services.registry.create(stream_id)
    services.registry.append(stream_id, services.gateway_config.welcome_message)
    await services.registry.finish(stream_id)

    stream = services.registry.get(stream_id)
    log.info("welcome_sent", stream_id=stream_id, from_user=result.from_user)
    envelope = services.handler.build_stream_response(
        stream_id,
        stream.content,
        True,
        result.timestamp,
        result.nonce,
    )
    return _envelope_response(envelope)
