"""Session identity backed by configuration."""
from __future__ import annotations

from .config import SessionConfig


class StaticIdentityProvider:
    """Returns a fixed user id; an empty id means nobody is signed in."""

    def __init__(self, user_id: str | None = None) -> None:
        self._user_id = user_id or None

    @classmethod
    def from_config(cls, config: SessionConfig) -> StaticIdentityProvider:
        return cls(config.user_id)

    def current_user_id(self) -> str | None:
        return self._user_id
