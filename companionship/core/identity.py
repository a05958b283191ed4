"""Current actor identity."""

import re
from dataclasses import dataclass
from typing import Protocol

# UUID v4; anything else is a local/offline placeholder that the store cannot address
_UUID4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_remote_identity(actor_id: str | None) -> bool:
    """Check whether an id is addressable by the remote store."""
    if not actor_id:
        return False
    return bool(_UUID4_RE.match(actor_id))


@dataclass(frozen=True)
class Identity:
    """An authenticated party."""

    id: str
    display_name: str | None = None

    @property
    def is_remote(self) -> bool:
        return is_remote_identity(self.id)


class IdentityProvider(Protocol):
    """Supplies the current actor and display names for notifications."""

    def current_actor(self) -> Identity | None: ...

    def display_name(self, actor_id: str | None) -> str | None: ...


class StaticIdentityProvider:
    """Identity provider for a fixed actor (one per authenticated session)."""

    def __init__(
        self,
        actor: Identity | None,
        names: dict[str, str] | None = None,
    ) -> None:
        self._actor = actor
        self._names = dict(names or {})
        if actor and actor.display_name:
            self._names.setdefault(actor.id, actor.display_name)

    def current_actor(self) -> Identity | None:
        return self._actor

    def display_name(self, actor_id: str | None) -> str | None:
        if actor_id is None:
            return None
        return self._names.get(actor_id)

    def logout(self) -> None:
        self._actor = None
