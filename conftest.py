"""全局 pytest 配置 -- 企业微信加解密测试数据 + 回调构造 fixture"""

import base64
import json
import time

import pytest
from wecomgate.core.crypto import WecomCrypto

TEST_TOKEN = "wecomgate-test-token"


class CallbackFactory:
    """按平台格式构造加密回调请求"""

    def __init__(self, crypto: WecomCrypto) -> None:
        self.crypto = crypto
        self._counter = 0

    def _next_nonce(self) -> str:
        self._counter += 1
        return f"nonce{self._counter:04d}"

    def verify_query(self, echo: str = "echo-plain-text") -> dict[str, str]:
        timestamp = str(int(time.time()))
        nonce = self._next_nonce()
        echostr = self.crypto.encrypt(echo)
        return {
            "msg_signature": self.crypto.signature(timestamp, nonce, echostr),
            "timestamp": timestamp,
            "nonce": nonce,
            "echostr": echostr,
        }

    def callback(self, message: dict) -> tuple[dict[str, str], bytes]:
        """返回 (query, body)"""
        timestamp = str(int(time.time()))
        nonce = self._next_nonce()
        encrypted = self.crypto.encrypt(json.dumps(message, ensure_ascii=False))
        query = {
            "msg_signature": self.crypto.signature(timestamp, nonce, encrypted),
            "timestamp": timestamp,
            "nonce": nonce,
        }
        body = json.dumps({"encrypt": encrypted}).encode("utf-8")
        return query, body

    def open_reply(self, envelope: dict) -> dict:
        """校验回包签名并解密为 stream 明文"""
        expected = self.crypto.signature(
            envelope["timestamp"], envelope["nonce"], envelope["encrypt"]
        )
        assert envelope["msgsignature"] == expected
        return json.loads(self.crypto.decrypt(envelope["encrypt"]))

    @staticmethod
    def text_message(
        content: str,
        msgid: str = "msg-1",
        userid: str = "zhangsan",
        chattype: str = "single",
        chatid: str = "",
    ) -> dict:
        message = {
            "msgid": msgid,
            "aibotid": "bot-1",
            "chattype": chattype,
            "from": {"userid": userid},
            "response_url": "https://example.invalid/response",
            "msgtype": "text",
            "text": {"content": content},
        }
        if chatid:
            message["chatid"] = chatid
        return message

    @staticmethod
    def stream_refresh(stream_id: str, msgid: str = "refresh-1") -> dict:
        return {
            "msgid": msgid,
            "aibotid": "bot-1",
            "chattype": "single",
            "from": {"userid": "zhangsan"},
            "msgtype": "stream",
            "stream": {"id": stream_id},
        }

    @staticmethod
    def event(event_type: str, msgid: str = "event-1") -> dict:
        return {
            "msgid": msgid,
            "aibotid": "bot-1",
            "chattype": "single",
            "from": {"userid": "zhangsan"},
            "msgtype": "event",
            "event": {"eventtype": event_type},
        }


@pytest.fixture
def encoding_aes_key() -> str:
    """合法的 43 位 EncodingAESKey"""
    return base64.b64encode(bytes(range(32))).decode("ascii").rstrip("=")


@pytest.fixture
def token() -> str:
    return TEST_TOKEN


@pytest.fixture
def crypto(token: str, encoding_aes_key: str) -> WecomCrypto:
    return WecomCrypto(token, encoding_aes_key)


@pytest.fixture
def callbacks(crypto: WecomCrypto) -> CallbackFactory:
    return CallbackFactory(crypto)
