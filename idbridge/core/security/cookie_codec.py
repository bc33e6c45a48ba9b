"""
Encrypted, authenticated session cookie codec.

Wire format (every segment is ASCII, joined with "."):

    v1 . base64url(iv) . base64url(ciphertext) . expiry . base64url(tag)

- ciphertext: AES-256-CBC with PKCS7 padding over the UTF-8 JSON payload
- expiry: absolute UNIX time in whole seconds
- tag: HMAC-SHA256 over the text "v1.<iv>.<ciphertext>.<expiry>"

The tag is checked before anything is decrypted, and every rejection
raises the same CookieDecodeError so callers cannot learn why a cookie
was refused.
"""

from typing import Any, Callable, Dict, Mapping, Tuple
import base64
import json
import logging
import os
import re
import time

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from idbridge.core.exceptions import CookieDecodeError, SessionTooLargeError, config_error

logger = logging.getLogger(__name__)

VERSION = "v1"
KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 32
# Browsers drop cookies beyond roughly 4 KB
MAX_COOKIE_LENGTH = 4096

_COOKIE_PATTERN = re.compile(r"[A-Za-z0-9_\-.]+")
_EXPIRY_PATTERN = re.compile(r"[0-9]{1,15}")

_ENCRYPTION_INFO = b"idbridge session cookie encryption"
_SIGNING_INFO = b"idbridge session cookie signature"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
    # Unused trailing bits would let two spellings decode to the same bytes
    if _b64encode(raw) != segment:
        raise ValueError("non-canonical base64 segment")
    return raw


def derive_keys(secret: str) -> Tuple[bytes, bytes]:
    """Derive independent (encryption, signing) keys from one configured secret"""
    material = secret.encode("utf-8")
    keys = []
    for info in (_ENCRYPTION_INFO, _SIGNING_INFO):
        hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=None, info=info)
        keys.append(hkdf.derive(material))
    return keys[0], keys[1]


class CookieCodec:
    """
    Turns a session payload into an opaque cookie string and back.

    Keys are fixed at construction. Rotating them means building a new
    codec, which invalidates every cookie issued by the old one.
    """

    def __init__(
        self,
        encryption_key: bytes,
        signing_key: bytes,
        clock: Callable[[], float] = time.time
    ):
        if len(encryption_key) != KEY_LENGTH:
            raise config_error("Encryption key must be 32 bytes", "cookie_codec")
        if len(signing_key) != KEY_LENGTH:
            raise config_error("Signing key must be 32 bytes", "cookie_codec")
        if encryption_key == signing_key:
            raise config_error("Encryption and signing keys must differ", "cookie_codec")

        self._encryption_key = encryption_key
        self._signing_key = signing_key
        self._clock = clock

    @classmethod
    def from_secret(cls, secret: str, clock: Callable[[], float] = time.time) -> "CookieCodec":
        encryption_key, signing_key = derive_keys(secret)
        return cls(encryption_key, signing_key, clock=clock)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(version={VERSION!r})"

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, payload: Mapping[str, Any], expires_at: float) -> str:
        """
        Encrypt and sign a payload.

        Args:
            payload: JSON-compatible mapping
            expires_at: Absolute UNIX time after which the cookie is refused

        Raises:
            SessionTooLargeError: Encoded form does not fit in a cookie
        """
        plaintext = json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        iv = os.urandom(IV_LENGTH)
        encryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        body = ".".join((VERSION, _b64encode(iv), _b64encode(ciphertext), str(int(expires_at))))
        cookie = f"{body}.{_b64encode(self._sign(body.encode('ascii')))}"

        if len(cookie) > MAX_COOKIE_LENGTH:
            raise SessionTooLargeError(len(cookie), MAX_COOKIE_LENGTH)
        return cookie

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode(self, cookie: str) -> Dict[str, Any]:
        """
        Verify and decrypt a cookie produced by encode().

        Raises:
            CookieDecodeError: For any malformed, tampered or expired cookie
        """
        try:
            return self._decode(cookie)
        except (ValueError, TypeError, InvalidSignature):
            logger.debug("🍪 Session cookie rejected")
            raise CookieDecodeError() from None

    def _decode(self, cookie: str) -> Dict[str, Any]:
        if (
            not isinstance(cookie, str)
            or len(cookie) > MAX_COOKIE_LENGTH
            or not _COOKIE_PATTERN.fullmatch(cookie)
        ):
            raise ValueError("malformed cookie")

        parts = cookie.split(".")
        if len(parts) != 5:
            raise ValueError("wrong segment count")

        version, iv_segment, ciphertext_segment, expiry_segment, tag_segment = parts
        if version != VERSION or not _EXPIRY_PATTERN.fullmatch(expiry_segment):
            raise ValueError("malformed header")

        # Authenticate first; nothing is decrypted for a forged cookie
        tag = _b64decode(tag_segment)
        if len(tag) != TAG_LENGTH:
            raise ValueError("wrong tag length")
        self._verify(".".join(parts[:4]).encode("ascii"), tag)

        if int(expiry_segment) <= self._clock():
            raise ValueError("expired")

        iv = _b64decode(iv_segment)
        ciphertext = _b64decode(ciphertext_segment)
        if len(iv) != IV_LENGTH or not ciphertext or len(ciphertext) % IV_LENGTH:
            raise ValueError("wrong block layout")

        decryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()

        payload = json.loads(plaintext.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("payload is not an object")
        return payload

    # ------------------------------------------------------------------
    # Authentication tag
    # ------------------------------------------------------------------

    def _sign(self, data: bytes) -> bytes:
        mac = hmac.HMAC(self._signing_key, hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    def _verify(self, data: bytes, tag: bytes) -> None:
        # Constant-time comparison, raises InvalidSignature on mismatch
        mac = hmac.HMAC(self._signing_key, hashes.SHA256())
        mac.update(data)
        mac.verify(tag)
