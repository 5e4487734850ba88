"""Contracts for the services this engine consumes but does not own.

The identity store, the community/post storage and push delivery live
elsewhere; the engine only needs the three narrow views declared here.
"""

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class UserInfo:
    """What the user directory tells us about one user."""

    id: int
    verified: bool = False
    is_admin: bool = False


class UserDirectory(Protocol):
    async def get_user(self, user_id: int) -> UserInfo | None: ...


class ContentStore(Protocol):
    async def exists(self, content_type: str, content_id: int) -> bool: ...

    async def owner_of(self, content_type: str, content_id: int) -> int | None: ...


class NotificationSink(Protocol):
    async def notify(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None: ...


@dataclass
class Collaborators:
    """Bundle handed to every service call that reaches outside the database."""

    directory: UserDirectory
    content_store: ContentStore
    notifier: NotificationSink


__all__ = [
    "Collaborators",
    "ContentStore",
    "NotificationSink",
    "UserDirectory",
    "UserInfo",
]
