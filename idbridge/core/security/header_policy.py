"""
Transport and response header policy.

Decided once from the security mode at startup, then applied the same way
to every response.
"""

from typing import Tuple
import logging

from idbridge.core.config import SecurityMode

logger = logging.getLogger(__name__)

Header = Tuple[str, str]

DEFAULT_HSTS_MAX_AGE = 31536000  # one year

# Always sent, regardless of mode
BASELINE_HEADERS: Tuple[Header, ...] = (
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("Referrer-Policy", "strict-origin-when-cross-origin"),
)

NO_CACHE_HEADERS: Tuple[Header, ...] = (
    ("Cache-Control", "no-cache, max-age=0"),
)


def headers_for(mode: SecurityMode, hsts_max_age: int = DEFAULT_HSTS_MAX_AGE) -> Tuple[Header, ...]:
    """Transport-security headers for a deployment mode"""
    if mode is SecurityMode.PRODUCTION:
        return (("Strict-Transport-Security", f"max-age={hsts_max_age}; includeSubDomains"),)
    return ()


class SecurityHeaderPolicy:
    """Response header decisions for one deployment mode"""

    def __init__(
        self,
        mode: SecurityMode,
        hsts_max_age: int = DEFAULT_HSTS_MAX_AGE,
        api_prefix: str = "/api/"
    ):
        self.mode = mode
        self.api_prefix = api_prefix
        self._transport_headers = headers_for(mode, hsts_max_age)

    @classmethod
    def from_settings(cls, settings) -> "SecurityHeaderPolicy":
        return cls(
            settings.SECURITY_MODE,
            hsts_max_age=settings.HSTS_MAX_AGE_SECONDS,
            api_prefix=settings.API_PREFIX
        )

    @property
    def secure_cookies(self) -> bool:
        """
        Whether session cookies carry the Secure flag.

        In production TLS ends at the proxy in front of us, so the forwarded
        connection is trusted as secure even though it arrives as plain HTTP.
        """
        return self.mode is SecurityMode.PRODUCTION

    def transport_headers(self) -> Tuple[Header, ...]:
        return self._transport_headers

    def is_api_path(self, path: str) -> bool:
        return path.startswith(self.api_prefix) or path == self.api_prefix.rstrip("/")

    def cache_headers_for(self, path: str) -> Tuple[Header, ...]:
        return NO_CACHE_HEADERS if self.is_api_path(path) else ()

    def response_headers(self, path: str) -> Tuple[Header, ...]:
        """Every header this policy attaches to a response for ``path``"""
        return BASELINE_HEADERS + self._transport_headers + self.cache_headers_for(path)

    def warn_if_insecure(self) -> bool:
        """Log the startup warning for plaintext development mode. Returns True if warned."""
        if self.mode is SecurityMode.LOCAL_DEVELOPMENT:
            logger.warning(
                "⚠️ Local development mode: session cookies are sent without the Secure "
                "flag and no HSTS header is emitted. Cookies are not transport-protected."
            )
            return True
        logger.info(f"🔒 Production mode: HSTS enabled, secure cookies")
        return False
