"""
Security layer of the identity bridge.

Centralizes the request-integrity primitives:
- Encrypted, signed session cookies
- Cookie-backed rolling sessions
- CSRF tokens bound to the session
- Transport and response header policy

The request pipeline in idbridge.middleware wires these together; route
handlers only ever see their results.
"""

from .cookie_codec import CookieCodec
from .csrf import CsrfGuard
from .header_policy import SecurityHeaderPolicy, headers_for
from .session_store import SessionStore

__all__ = [
    'CookieCodec',
    'CsrfGuard',
    'SecurityHeaderPolicy',
    'SessionStore',
    'headers_for'
]
