"""In-memory stand-ins for the user directory, content store and push sink."""

from typing import Any

from expertdesk.collaborators import UserInfo


class FakeUserDirectory:
    """Directory backed by a dict; ``add`` registers users for a test."""

    def __init__(self):
        self.users: dict[int, UserInfo] = {}

    def add(self, user_id: int, verified: bool = False, is_admin: bool = False) -> UserInfo:
        user = UserInfo(id=user_id, verified=verified, is_admin=is_admin)
        self.users[user_id] = user
        return user

    async def get_user(self, user_id: int) -> UserInfo | None:
        return self.users.get(user_id)


class FakeContentStore:
    """Externally owned content (posts, comments) keyed by (type, id)."""

    def __init__(self):
        self.owners: dict[tuple[str, int], int] = {}

    def add(self, content_type: str, content_id: int, owner_id: int) -> None:
        self.owners[(content_type, content_id)] = owner_id

    async def exists(self, content_type: str, content_id: int) -> bool:
        return (content_type, content_id) in self.owners

    async def owner_of(self, content_type: str, content_id: int) -> int | None:
        return self.owners.get((content_type, content_id))


class RecordingNotifier:
    """Keeps every notification; set ``fail`` to simulate a dead push service."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[int, str, dict[str, Any]]] = []

    async def notify(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("push service unavailable")
        self.sent.append((user_id, event_kind, payload))

    def kinds_for(self, user_id: int) -> list[str]:
        return [kind for uid, kind, _ in self.sent if uid == user_id]
