"""WebhookHandler -- 企业微信 AI Bot 回调协议处理

POST 处理流程：VerifySignature -> Decrypt -> ParseEnvelope -> Dispatch[msgtype]。
本模块只负责协议层（验签、解密、解析、去重、封包），
不触碰 HTTP 框架；路由层负责把结果与异常映射为 HTTP 状态。
"""

import json
from collections.abc import Mapping

import structlog
from pydantic import BaseModel, Field, ValidationError
from wecomgate.core.crypto import WecomCrypto
from wecomgate.core.exceptions import DecryptError, WecomGateError
from wecomgate.core.models import (
    REPLYABLE_KINDS,
    AttachmentItem,
    CallbackKind,
    CallbackMessage,
    ChatType,
    EncryptedBody,
    EncryptedEnvelope,
    Feedback,
    InboundMessage,
    MessageKind,
    QuotedMessage,
    StreamReply,
    StreamState,
)
from wecomgate.core.store import MessageDeduplicator

log = structlog.get_logger()

VERIFY_PARAMS = ("msg_signature", "timestamp", "nonce", "echostr")
CALLBACK_PARAMS = ("msg_signature", "timestamp", "nonce")

# 日志中签名只保留前缀
_SIGNATURE_LOG_PREFIX = 8


class WebhookProtocolError(WecomGateError):
    """协议层错误基类 -- 单次请求失败，不重试"""


class MissingParameterError(WebhookProtocolError):
    """缺少必需的 query 参数或请求体字段"""


class MalformedBodyError(WebhookProtocolError):
    """请求体或解密后的内层消息不是合法 JSON"""


class SignatureMismatchError(WebhookProtocolError):
    """签名校验失败"""


class CallbackResult(BaseModel):
    """一次 POST 回调的解析结果"""

    kind: CallbackKind = Field(description="回调分类")
    msg_type: str = Field(default="", description="原始 msgtype")
    msg_id: str = Field(default="", description="消息 ID")
    timestamp: str = Field(description="请求 timestamp，回包复用")
    nonce: str = Field(description="请求 nonce，回包复用")
    message: InboundMessage | None = Field(default=None, description="可回复消息")
    stream_id: str = Field(default="", description="刷新请求携带的流 ID")
    event_type: str = Field(default="", description="事件类型")
    from_user: str = Field(default="", description="发送者 userid")


def _require(query: Mapping[str, str], names: tuple[str, ...]) -> dict[str, str]:
    values = {name: query.get(name) or "" for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingParameterError(f"Missing query parameters: {', '.join(missing)}")
    return values


def normalize_message(msg: CallbackMessage) -> InboundMessage:
    """把内层回调消息归一化为 InboundMessage"""
    content = ""
    image_url = ""
    voice_url = ""
    media_id = ""
    if msg.msgtype == MessageKind.TEXT and msg.text is not None:
        content = msg.text.content
    elif msg.msgtype == MessageKind.IMAGE and msg.image is not None:
        image_url = msg.image.url
    elif msg.msgtype == MessageKind.VOICE and msg.voice is not None:
        content = msg.voice.content
        voice_url = msg.voice.url
        media_id = msg.voice.media_id

    quote = None
    if msg.quote is not None:
        quoted = ""
        if msg.quote.text is not None:
            quoted = msg.quote.text.content
        elif msg.quote.image is not None:
            quoted = msg.quote.image.url
        quote = QuotedMessage(msg_type=msg.quote.msgtype, content=quoted)

    chat_type = ChatType.GROUP if msg.chattype == ChatType.GROUP else ChatType.SINGLE

    return InboundMessage(
        msg_id=msg.msgid,
        msg_type=MessageKind(msg.msgtype),
        content=content,
        image_url=image_url,
        voice_url=voice_url,
        media_id=media_id,
        from_user=msg.sender.userid,
        chat_type=chat_type,
        chat_id=msg.chatid,
        aibot_id=msg.aibotid,
        response_url=msg.response_url,
        quote=quote,
    )


class WebhookHandler:
    """回调协议处理器"""

    def __init__(
        self,
        crypto: WecomCrypto,
        deduplicator: MessageDeduplicator | None = None,
    ) -> None:
        self._crypto = crypto
        self._dedup = deduplicator or MessageDeduplicator()

    def _verify(self, signature: str, timestamp: str, nonce: str, payload: str) -> None:
        if self._crypto.verify_signature(signature, timestamp, nonce, payload):
            return
        expected = self._crypto.signature(timestamp, nonce, payload)
        log.warning(
            "signature_mismatch",
            provided=signature[:_SIGNATURE_LOG_PREFIX],
            expected=expected[:_SIGNATURE_LOG_PREFIX],
            timestamp=timestamp,
        )
        raise SignatureMismatchError("Signature verification failed")

    def verify_url(self, query: Mapping[str, str]) -> str:
        """URL 验证（GET）

        Returns:
            解密后的 echostr 明文

        Raises:
            MissingParameterError: 缺少参数（不做任何加解密）
            SignatureMismatchError: 签名不符（不尝试解密）
            DecryptError: echostr 无法解密
        """
        params = _require(query, VERIFY_PARAMS)
        self._verify(
            params["msg_signature"],
            params["timestamp"],
            params["nonce"],
            params["echostr"],
        )
        try:
            plain = self._crypto.decrypt(params["echostr"])
        except DecryptError as e:
            log.warning("url_verification_decrypt_failed", error=str(e))
            raise
        log.info("url_verification_succeeded")
        return plain

    def parse_callback(
        self,
        query: Mapping[str, str],
        body: bytes | str,
    ) -> CallbackResult:
        """解析消息回调（POST）

        Raises:
            WebhookProtocolError: 参数缺失、请求体非法、签名不符
            DecryptError: 密文无法解密
        """
        params = _require(query, CALLBACK_PARAMS)
        timestamp = params["timestamp"]
        nonce = params["nonce"]

        try:
            envelope = EncryptedBody.model_validate_json(body)
        except ValidationError as e:
            log.warning("callback_body_invalid", error_count=e.error_count())
            raise MalformedBodyError("Request body is not a valid JSON envelope") from e
        if not envelope.encrypt:
            raise MissingParameterError("Request body missing 'encrypt' field")

        self._verify(params["msg_signature"], timestamp, nonce, envelope.encrypt)

        try:
            plain = self._crypto.decrypt(envelope.encrypt)
        except DecryptError as e:
            log.warning("callback_decrypt_failed", error=str(e))
            raise

        try:
            data = json.loads(plain)
            msg = CallbackMessage.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            log.warning("callback_message_invalid", error=str(e))
            raise MalformedBodyError("Decrypted message is not valid JSON") from e

        base = {
            "msg_type": msg.msgtype,
            "msg_id": msg.msgid,
            "timestamp": timestamp,
            "nonce": nonce,
            "from_user": msg.sender.userid,
        }
        log.info(
            "callback_received",
            msg_type=msg.msgtype,
            msg_id=msg.msgid,
            from_user=msg.sender.userid,
            chat_type=msg.chattype,
        )

        if msg.msgtype in REPLYABLE_KINDS:
            if msg.msgid and self._dedup.is_duplicate(msg.msgid):
                log.info("duplicate_message_ignored", msg_id=msg.msgid)
                return CallbackResult(kind=CallbackKind.DUPLICATE, **base)
            return CallbackResult(
                kind=CallbackKind.MESSAGE,
                message=normalize_message(msg),
                **base,
            )

        if msg.msgtype == MessageKind.STREAM:
            stream_id = msg.stream.id if msg.stream is not None else ""
            return CallbackResult(
                kind=CallbackKind.STREAM_REFRESH,
                stream_id=stream_id,
                **base,
            )

        if msg.msgtype == MessageKind.EVENT:
            event_type = msg.event.event_type if msg.event is not None else ""
            return CallbackResult(
                kind=CallbackKind.EVENT,
                event_type=event_type,
                **base,
            )

        if msg.msgtype == MessageKind.MIXED:
            log.warning("mixed_message_unsupported", msg_id=msg.msgid)
        else:
            log.warning("unknown_message_type", msg_type=msg.msgtype, msg_id=msg.msgid)
        return CallbackResult(kind=CallbackKind.UNSUPPORTED, **base)

    def build_stream_response(
        self,
        stream_id: str,
        content: str,
        finish: bool,
        timestamp: str,
        nonce: str,
        attachment_items: list[AttachmentItem] | None = None,
        feedback_id: str | None = None,
    ) -> EncryptedEnvelope:
        """构建加密的被动回复"""
        reply = StreamReply(
            stream=StreamState(
                id=stream_id,
                finish=finish,
                content=content,
                msg_item=list(attachment_items) if attachment_items else None,
                feedback=Feedback(id=feedback_id) if feedback_id else None,
            )
        )
        plain = reply.model_dump_json(exclude_none=True)
        encrypted = self._crypto.encrypt(plain)
        return EncryptedEnvelope(
            encrypt=encrypted,
            msgsignature=self._crypto.signature(timestamp, nonce, encrypted),
            timestamp=timestamp,
            nonce=nonce,
        )
