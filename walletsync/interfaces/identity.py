"""Identity provider protocol — opaque session credential."""
from typing import Protocol


class IdentityProvider(Protocol):
    """Abstract interface for the signed-in user."""

    def current_user_id(self) -> str | None: ...
