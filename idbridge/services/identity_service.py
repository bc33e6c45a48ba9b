# idbridge/services/identity_service.py
"""
Identity backend seam.

Sign-in and certificate provisioning live behind this interface; the
bridge itself only guarantees that calls arrive with a verified session,
a valid CSRF token and well-formed fields.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Union
import logging

from idbridge.core.exceptions import backend_error

logger = logging.getLogger(__name__)

PublicKey = Union[str, Dict[str, Any]]


class IdentityBackend(ABC):
    """Business logic the routes delegate to"""

    name = "identity"

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> bool:
        """Return True if the credentials belong to a real account"""

    @abstractmethod
    async def certify(self, email: str, pubkey: PublicKey, duration: int) -> str:
        """Return a certificate binding ``pubkey`` to ``email`` for ``duration`` seconds"""


class UnconfiguredBackend(IdentityBackend):
    """Placeholder used until a real backend is wired in. Every call fails with 503."""

    name = "unconfigured"

    async def authenticate(self, email: str, password: str) -> bool:
        logger.error("❌ Sign-in attempted but no identity backend is configured")
        raise backend_error("Identity backend not configured", self.name)

    async def certify(self, email: str, pubkey: PublicKey, duration: int) -> str:
        logger.error("❌ Provisioning attempted but no identity backend is configured")
        raise backend_error("Identity backend not configured", self.name)
