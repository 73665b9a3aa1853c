"""WecomCrypto -- 企业微信 AI Bot 消息加解密

签名：token/timestamp/nonce/密文 四者字典序排序拼接后取 SHA-1。
加密：AES-256-CBC，IV 固定为密钥前 16 字节，PKCS#7 按 32 字节块手动填充。
明文布局：16 字节随机数 | 4 字节大端长度 | 消息体 | receive_id（AI Bot 模式为空，忽略）。

IV 不随消息变化，跨消息的机密性依赖明文前缀的 16 字节随机数，
必须保持此格式以兼容企业微信平台。
"""

import base64
import binascii
import hashlib
import hmac
import secrets

import structlog
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .config import AES_KEY_LENGTH, PKCS7_BLOCK_SIZE
from .exceptions import CryptoConfigError, DecryptError

log = structlog.get_logger()

_RANDOM_PREFIX_BYTES = 16
_LENGTH_FIELD_BYTES = 4


def compute_signature(token: str, timestamp: str, nonce: str, payload: str) -> str:
    """计算消息签名

    Args:
        token: 回调 Token
        timestamp: 请求时间戳
        nonce: 随机串
        payload: 密文（或 echostr）

    Returns:
        小写十六进制 SHA-1 摘要
    """
    joined = "".join(sorted([token, timestamp, nonce, payload]))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def pkcs7_pad(data: bytes, block_size: int = PKCS7_BLOCK_SIZE) -> bytes:
    """PKCS#7 填充（数据恰好对齐时补一整块）"""
    amount = block_size - (len(data) % block_size)
    return data + bytes([amount]) * amount


def pkcs7_unpad(data: bytes, block_size: int = PKCS7_BLOCK_SIZE) -> bytes:
    """移除 PKCS#7 填充并校验所有填充字节

    Raises:
        DecryptError: 填充长度越界或填充字节不一致
    """
    if not data:
        raise DecryptError("Invalid PKCS7 padding: empty buffer")
    pad = data[-1]
    if pad < 1 or pad > block_size or pad > len(data):
        raise DecryptError(f"Invalid PKCS7 padding: {pad}")
    if data[-pad:] != bytes([pad]) * pad:
        raise DecryptError("Invalid PKCS7 padding: inconsistent padding bytes")
    return data[:-pad]


class WecomCrypto:
    """企业微信 AI Bot 加解密器（无 corpId 校验）"""

    def __init__(self, token: str, encoding_aes_key: str) -> None:
        """
        Args:
            token: 回调 Token
            encoding_aes_key: 43 位 EncodingAESKey

        Raises:
            CryptoConfigError: 配置非法，启动阶段即失败
        """
        if not encoding_aes_key or len(encoding_aes_key) != AES_KEY_LENGTH:
            raise CryptoConfigError(
                f"EncodingAESKey invalid: length must be {AES_KEY_LENGTH}"
            )
        if not token:
            raise CryptoConfigError("Token is required")

        try:
            aes_key = base64.b64decode(encoding_aes_key + "=", validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoConfigError("EncodingAESKey invalid: not base64") from e
        if len(aes_key) != 32:
            raise CryptoConfigError("EncodingAESKey invalid: must decode to 32 bytes")

        self._token = token
        self._aes_key = aes_key
        self._iv = aes_key[:16]
        log.debug("wecom_crypto_initialized")

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._aes_key), modes.CBC(self._iv))

    def signature(self, timestamp: str, nonce: str, payload: str) -> str:
        """使用当前 Token 计算签名"""
        return compute_signature(self._token, timestamp, nonce, payload)

    def verify_signature(
        self, signature: str, timestamp: str, nonce: str, payload: str
    ) -> bool:
        """常量时间比较签名

        按 UTF-8 字节比较，非 ASCII 的伪造签名同样返回 False。
        """
        expected = self.signature(timestamp, nonce, payload)
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))

    def decrypt(self, cipher_text: str) -> str:
        """解密 base64 密文，返回消息体文本

        Raises:
            DecryptError: base64 非法、块长度非法、填充非法、长度字段越界或非 UTF-8
        """
        try:
            raw = base64.b64decode(cipher_text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptError("Cipher text is not valid base64") from e

        if not raw or len(raw) % 16 != 0:
            raise DecryptError(f"Cipher text length {len(raw)} is not a multiple of 16")

        decryptor = self._cipher().decryptor()
        plain = decryptor.update(raw) + decryptor.finalize()
        plain = pkcs7_unpad(plain)

        header_len = _RANDOM_PREFIX_BYTES + _LENGTH_FIELD_BYTES
        if len(plain) < header_len:
            raise DecryptError("Decrypted buffer shorter than header")

        msg_len = int.from_bytes(plain[_RANDOM_PREFIX_BYTES:header_len], "big")
        if header_len + msg_len > len(plain):
            raise DecryptError(
                f"Declared length {msg_len} exceeds remaining buffer "
                f"{len(plain) - header_len}"
            )

        try:
            return plain[header_len : header_len + msg_len].decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError("Decrypted payload is not valid UTF-8") from e

    def encrypt(self, plain_text: str) -> str:
        """加密文本，返回 base64 密文"""
        body = plain_text.encode("utf-8")
        raw = (
            secrets.token_bytes(_RANDOM_PREFIX_BYTES)
            + len(body).to_bytes(_LENGTH_FIELD_BYTES, "big")
            + body
        )
        encryptor = self._cipher().encryptor()
        ciphered = encryptor.update(pkcs7_pad(raw)) + encryptor.finalize()
        return base64.b64encode(ciphered).decode("ascii")
