from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    MEMBERSHIP_NONE,
    MEMBERSHIPS,
    PL_BAN,
    PL_EVENTS_DEFAULT,
    PL_INVITE,
    PL_KICK,
    PL_REDACT,
    PL_STATE_DEFAULT,
    PL_USERS_DEFAULT,
)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Event:
    room_id: str
    type: str
    sender: str = ""
    event_id: str = ""
    state_key: str | None = None
    content: dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    @property
    def is_state(self) -> bool:
        return self.state_key is not None


@dataclass
class MemberContent:
    membership: str = MEMBERSHIP_NONE
    displayname: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_content(cls, content: dict[str, Any]) -> MemberContent:
        membership = content.get("membership")
        if not isinstance(membership, str) or membership not in MEMBERSHIPS:
            membership = MEMBERSHIP_NONE
        displayname = content.get("displayname")
        avatar_url = content.get("avatar_url")
        return cls(
            membership=membership,
            displayname=displayname if isinstance(displayname, str) else None,
            avatar_url=avatar_url if isinstance(avatar_url, str) else None,
        )

    def to_content(self) -> dict[str, Any]:
        out: dict[str, Any] = {"membership": self.membership}
        if self.displayname is not None:
            out["displayname"] = self.displayname
        if self.avatar_url is not None:
            out["avatar_url"] = self.avatar_url
        return out


def _int_or(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class PowerLevels:
    users: dict[str, int] = field(default_factory=dict)
    users_default: int = PL_USERS_DEFAULT
    events: dict[str, int] = field(default_factory=dict)
    events_default: int = PL_EVENTS_DEFAULT
    state_default: int = PL_STATE_DEFAULT
    ban: int = PL_BAN
    kick: int = PL_KICK
    redact: int = PL_REDACT
    invite: int = PL_INVITE

    def get_user_level(self, user_id: str) -> int:
        return self.users.get(user_id, self.users_default)

    def set_user_level(self, user_id: str, level: int) -> None:
        if level == self.users_default:
            self.users.pop(user_id, None)
        else:
            self.users[user_id] = int(level)

    @classmethod
    def from_content(cls, content: dict[str, Any]) -> PowerLevels:
        users_raw = content.get("users")
        users: dict[str, int] = {}
        if isinstance(users_raw, dict):
            for k, v in users_raw.items():
                if isinstance(k, str):
                    users[k] = _int_or(v, PL_USERS_DEFAULT)

        events_raw = content.get("events")
        events: dict[str, int] = {}
        if isinstance(events_raw, dict):
            for k, v in events_raw.items():
                if isinstance(k, str):
                    events[k] = _int_or(v, PL_EVENTS_DEFAULT)

        return cls(
            users=users,
            users_default=_int_or(content.get("users_default"), PL_USERS_DEFAULT),
            events=events,
            events_default=_int_or(content.get("events_default"), PL_EVENTS_DEFAULT),
            state_default=_int_or(content.get("state_default"), PL_STATE_DEFAULT),
            ban=_int_or(content.get("ban"), PL_BAN),
            kick=_int_or(content.get("kick"), PL_KICK),
            redact=_int_or(content.get("redact"), PL_REDACT),
            invite=_int_or(content.get("invite"), PL_INVITE),
        )

    def copy(self) -> PowerLevels:
        return PowerLevels.from_content(self.to_content())

    def to_content(self) -> dict[str, Any]:
        return {
            "users": dict(self.users),
            "users_default": self.users_default,
            "events": dict(self.events),
            "events_default": self.events_default,
            "state_default": self.state_default,
            "ban": self.ban,
            "kick": self.kick,
            "redact": self.redact,
            "invite": self.invite,
        }


def make_outgoing_state_event(
    room_id: str,
    event_type: str,
    *,
    state_key: str,
    sender: str,
    content: dict[str, Any],
    event_id: str = "",
) -> Event:
    return Event(
        room_id=room_id,
        type=event_type,
        sender=sender,
        event_id=event_id,
        state_key=state_key,
        content=content,
        timestamp=now_ms(),
    )


def validate_event(ev: Event) -> None:
    if not isinstance(ev.room_id, str) or not ev.room_id:
        raise ValueError("event room_id must be a non-empty string")
    if not isinstance(ev.type, str) or not ev.type:
        raise ValueError("event type must be a non-empty string")
    if not isinstance(ev.content, dict):
        raise TypeError("event content must be a map")
    if ev.state_key is not None and not isinstance(ev.state_key, str):
        raise TypeError("state key must be a string")


def parse_event(raw: dict[str, Any], *, room_id: str | None = None) -> Event:
    """Build an Event from a server-shaped event dict.

    ``room_id`` fills in the room for responses that omit it per event.
    """
    if not isinstance(raw, dict):
        raise TypeError("event must be a JSON object")

    content = raw.get("content")
    if content is None:
        content = {}

    ts = raw.get("origin_server_ts", 0)
    ev = Event(
        room_id=raw.get("room_id") or room_id or "",
        type=raw.get("type") or "",
        sender=raw.get("sender") or "",
        event_id=raw.get("event_id") or "",
        state_key=raw.get("state_key"),
        content=content,
        timestamp=ts if isinstance(ts, int) else 0,
    )
    validate_event(ev)
    return ev
