"""
CSRF protection bound to the cookie session.

Tokens have the form ``<salt>.<digest>`` with
``digest = base64url(HMAC-SHA256(session.csrf_secret, salt))``. A fresh salt
is used for every issued token, but all of them verify against the same
session secret, and none verifies against any other session.
"""

from typing import Any, Dict, Mapping, Optional
import base64
import secrets

from cryptography.hazmat.primitives import hashes, hmac

from idbridge.models.session_state import Session

HEADER_NAME = "X-CSRF-Token"
FIELD_NAME = "_csrf"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

SALT_BYTES = 12
MAX_TOKEN_LENGTH = 256


class CsrfGuard:
    """Issues and verifies CSRF tokens for a session"""

    def issue_token(self, session: Session) -> str:
        salt = secrets.token_urlsafe(SALT_BYTES)
        digest = self._digest(session.csrf_secret, salt.encode("ascii"))
        return f"{salt}.{digest.decode('ascii')}"

    def verify(self, session: Optional[Session], supplied: Any) -> bool:
        """Check a client-supplied token against the session's secret"""
        if session is None or not isinstance(supplied, str):
            return False
        if not supplied or len(supplied) > MAX_TOKEN_LENGTH:
            return False

        salt, sep, digest = supplied.partition(".")
        if not sep or not salt or not digest:
            return False

        # Client text may hold lone surrogates, which have no UTF-8 form
        try:
            salt_bytes = salt.encode("utf-8")
            digest_bytes = digest.encode("utf-8")
        except UnicodeEncodeError:
            return False

        expected = self._digest(session.csrf_secret, salt_bytes)
        return secrets.compare_digest(expected, digest_bytes)

    @staticmethod
    def requires_verification(method: str) -> bool:
        return method.upper() not in SAFE_METHODS

    @staticmethod
    def extract_token(headers: Mapping[str, str], fields: Dict[str, Any]) -> Optional[Any]:
        """
        Take the client's token out of the request.

        The form/body field is always removed from ``fields``, whether or
        not the header was used.
        """
        field_token = fields.pop(FIELD_NAME, None)
        header_token = headers.get(HEADER_NAME)
        return header_token if header_token else field_token

    @staticmethod
    def _digest(secret: str, salt: bytes) -> bytes:
        mac = hmac.HMAC(secret.encode("utf-8"), hashes.SHA256())
        mac.update(salt)
        return base64.urlsafe_b64encode(mac.finalize()).rstrip(b"=")
