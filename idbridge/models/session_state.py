# idbridge/models/session_state.py

from collections.abc import MutableMapping
from typing import Any, Dict, Iterator, Optional
import secrets

from pydantic import BaseModel, Field

# Entropy of a freshly issued CSRF secret
CSRF_SECRET_BYTES = 32


def new_csrf_secret() -> str:
    return secrets.token_urlsafe(CSRF_SECRET_BYTES)


class SessionPayload(BaseModel):
    """
    Decrypted contents of a session cookie.

    Anything that does not match this shape after decryption is treated
    like a cookie that failed to decode.
    """
    csrf_secret: str = Field(min_length=16, max_length=256)
    data: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class Session(MutableMapping):
    """
    Per-request session state carried by the client in an encrypted cookie.

    Behaves like a dict of JSON-compatible values. The CSRF secret lives
    beside the data, is fixed when the session is created and survives
    clear(), so tokens issued earlier in the session stay valid.
    """

    def __init__(
        self,
        data: Optional[Dict[str, Any]] = None,
        csrf_secret: Optional[str] = None,
        is_new: bool = True
    ):
        self._data: Dict[str, Any] = dict(data or {})
        self._csrf_secret = csrf_secret or new_csrf_secret()
        self.is_new = is_new
        self.modified = False

    @classmethod
    def from_payload(cls, payload: SessionPayload) -> "Session":
        return cls(payload.data, csrf_secret=payload.csrf_secret, is_new=False)

    def to_payload(self) -> SessionPayload:
        return SessionPayload(csrf_secret=self._csrf_secret, data=dict(self._data))

    @property
    def csrf_secret(self) -> str:
        return self._csrf_secret

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise TypeError("Session keys must be strings")
        self._data[key] = value
        self.modified = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.modified = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        self._data.clear()
        self.modified = True

    def __repr__(self) -> str:
        # Secret deliberately left out
        return f"Session(keys={sorted(self._data)!r}, is_new={self.is_new})"
