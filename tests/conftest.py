from __future__ import annotations

from typing import Any

import pytest

from mxintent.errors import ErrorKind, MatrixRequestError
from mxintent.events import Event
from mxintent.intent import IntentAPI
from mxintent.state_store import MemoryStateStore
from mxintent.transport import JoinResponse, SendEventResponse


def err(kind: ErrorKind, message: str = "error") -> MatrixRequestError:
    return MatrixRequestError(kind, message)


class FakeClient:
    """In-memory ClientAPI that records calls and raises queued errors."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.errors: dict[str, list[BaseException]] = {}
        self.state_events: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.room_state: dict[str, dict[str, dict[str, Event]]] = {}
        self.joined: dict[str, dict[str, dict[str, Any]]] = {}
        self.member_events: dict[str, list[Event]] = {}
        self._event_seq = 0

    def fail(self, method: str, *errors: BaseException) -> None:
        self.errors.setdefault(method, []).extend(errors)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        queued = self.errors.get(method)
        if queued:
            raise queued.pop(0)

    def _next_event_id(self) -> str:
        self._event_seq += 1
        return f"$ev{self._event_seq}"

    def register(self, localpart: str, *, inhibit_login: bool = True) -> dict[str, Any]:
        self._call("register", localpart, inhibit_login)
        return {"user_id": self.user_id}

    def join_room(self, room_id: str) -> JoinResponse:
        self._call("join_room", room_id)
        return JoinResponse(room_id=room_id)

    def invite_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._call("invite_user", room_id, user_id)

    def kick_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._call("kick_user", room_id, user_id)

    def ban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._call("ban_user", room_id, user_id)

    def unban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._call("unban_user", room_id, user_id)

    def send_message_event(
        self, room_id: str, event_type: str, content: Any, *, timestamp: int | None = None
    ) -> SendEventResponse:
        self._call("send_message_event", room_id, event_type, content, timestamp)
        return SendEventResponse(event_id=self._next_event_id())

    def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Any,
        *,
        timestamp: int | None = None,
    ) -> SendEventResponse:
        self._call("send_state_event", room_id, event_type, state_key, content, timestamp)
        return SendEventResponse(event_id=self._next_event_id())

    def state_event(self, room_id: str, event_type: str, state_key: str) -> dict[str, Any]:
        self._call("state_event", room_id, event_type, state_key)
        content = self.state_events.get((room_id, event_type, state_key))
        if content is None:
            raise err(ErrorKind.NOT_FOUND, "Event not found.")
        return dict(content)

    def state(self, room_id: str) -> dict[str, dict[str, Event]]:
        self._call("state", room_id)
        return self.room_state.get(room_id, {})

    def joined_members(self, room_id: str) -> dict[str, dict[str, Any]]:
        self._call("joined_members", room_id)
        return self.joined.get(room_id, {})

    def members(
        self,
        room_id: str,
        *,
        membership: str | None = None,
        not_membership: str | None = None,
    ) -> list[Event]:
        self._call("members", room_id, membership, not_membership)
        return list(self.member_events.get(room_id, []))

    def redact_event(
        self, room_id: str, event_id: str, *, reason: str | None = None
    ) -> SendEventResponse:
        self._call("redact_event", room_id, event_id, reason)
        return SendEventResponse(event_id=self._next_event_id())

    def set_typing(self, room_id: str, typing: bool, timeout_ms: int) -> None:
        self._call("set_typing", room_id, typing, timeout_ms)

    def set_display_name(self, displayname: str) -> None:
        self._call("set_display_name", displayname)

    def set_avatar_url(self, avatar_url: str) -> None:
        self._call("set_avatar_url", avatar_url)

    def whoami(self) -> dict[str, Any]:
        self._call("whoami")
        return {"user_id": self.user_id}


ROOM = "!room:example.org"
USER = "@ghost_alice:example.org"
BOT = "@bridgebot:example.org"


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient(USER)


@pytest.fixture
def bot() -> FakeClient:
    return FakeClient(BOT)


@pytest.fixture
def intent(client: FakeClient, store: MemoryStateStore, bot: FakeClient) -> IntentAPI:
    return IntentAPI(client, store, localpart="ghost_alice", user_id=USER, bot=bot)
