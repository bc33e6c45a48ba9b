"""
Cookie-backed session store.

Nothing is kept on the server. A session lives entirely in the encrypted
cookie and is re-issued on every response with a fresh expiry window
(rolling sessions), so an active user never gets logged out while an idle
one is after ``duration_seconds``.
"""

from datetime import datetime, timezone
from email.utils import format_datetime
from http.cookies import SimpleCookie
from typing import Callable, Optional
import logging
import time

from pydantic import ValidationError
from starlette.requests import cookie_parser

from idbridge.core.exceptions import CookieDecodeError
from idbridge.core.security.cookie_codec import CookieCodec
from idbridge.models.session_state import Session, SessionPayload

logger = logging.getLogger(__name__)


class SessionStore:
    """Loads sessions from request cookies and renders them back into Set-Cookie headers"""

    def __init__(
        self,
        codec: CookieCodec,
        cookie_name: str = "bridge_session",
        duration_seconds: int = 24 * 60 * 60,
        secure: bool = True,
        same_site: str = "lax",
        path: str = "/",
        clock: Callable[[], float] = time.time
    ):
        if duration_seconds <= 0:
            raise ValueError("duration_seconds must be positive")
        self.codec = codec
        self.cookie_name = cookie_name
        self.duration_seconds = duration_seconds
        self.secure = secure
        self.same_site = same_site
        self.path = path
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, codec: CookieCodec, policy, clock: Callable[[], float] = time.time) -> "SessionStore":
        return cls(
            codec,
            cookie_name=settings.SESSION_COOKIE_NAME,
            duration_seconds=settings.SESSION_DURATION_SECONDS,
            secure=policy.secure_cookies,
            clock=clock
        )

    def expires_at(self) -> int:
        """End of the window a cookie issued right now is valid for"""
        return int(self._clock()) + self.duration_seconds

    def load(self, cookie_header: Optional[str]) -> Session:
        """
        Build the session for a request from its raw Cookie header.

        Never fails: a missing, tampered, expired or otherwise unusable
        cookie gives a brand new empty session.
        """
        raw = cookie_parser(cookie_header or "").get(self.cookie_name)
        if not raw:
            return Session()

        try:
            payload = SessionPayload.model_validate(self.codec.decode(raw))
        except (CookieDecodeError, ValidationError):
            # Same message for every reason, see CookieCodec.decode
            logger.info("🔐 Discarded unusable session cookie, starting a new session")
            return Session()

        return Session.from_payload(payload)

    def save(self, session: Session) -> str:
        """
        Encode the session and return the full Set-Cookie header value.

        Raises:
            SessionTooLargeError: Session data does not fit in a cookie
        """
        expires_at = self.expires_at()
        value = self.codec.encode(session.to_payload().model_dump(), expires_at)

        cookie: SimpleCookie = SimpleCookie()
        cookie[self.cookie_name] = value
        morsel = cookie[self.cookie_name]
        morsel["max-age"] = self.duration_seconds
        morsel["expires"] = format_datetime(datetime.fromtimestamp(expires_at, timezone.utc), usegmt=True)
        morsel["path"] = self.path
        morsel["httponly"] = True
        morsel["samesite"] = self.same_site
        if self.secure:
            morsel["secure"] = True

        return cookie.output(header="").strip()
