"""State cache for the intent layer.

This module holds everything the intents need to skip redundant requests:
- Registered virtual users (optionally persisted to TOML)
- Room membership records per (room, user)
- Power levels per room
- Typing expiry per (room, user)
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol

from tomlkit import array, document, dumps, parse, table

from .constants import (
    EV_MEMBER,
    EV_POWER_LEVELS,
    MEMBERSHIP_INVITE,
    MEMBERSHIP_JOIN,
    MEMBERSHIP_NONE,
    MEMBERSHIPS,
    TYPING_STOPPED,
)
from .events import Event, MemberContent, PowerLevels, now_ms
from .paths import ensure_private_dir
from .util import expand_path


class StateStore(Protocol):
    def is_registered(self, user_id: str) -> bool: ...

    def mark_registered(self, user_id: str) -> None: ...

    def is_in_room(self, room_id: str, user_id: str) -> bool: ...

    def is_invited(self, room_id: str, user_id: str) -> bool: ...

    def is_membership(self, room_id: str, user_id: str, *allowed: str) -> bool: ...

    def get_membership(self, room_id: str, user_id: str) -> str: ...

    def set_membership(self, room_id: str, user_id: str, membership: str) -> None: ...

    def try_get_member(
        self, room_id: str, user_id: str
    ) -> tuple[MemberContent | None, bool]: ...

    def get_member(self, room_id: str, user_id: str) -> MemberContent: ...

    def set_member(self, room_id: str, user_id: str, member: MemberContent) -> None: ...

    def get_power_levels(self, room_id: str) -> PowerLevels | None: ...

    def set_power_levels(self, room_id: str, levels: PowerLevels) -> None: ...

    def is_typing(self, room_id: str, user_id: str) -> bool: ...

    def set_typing(self, room_id: str, user_id: str, timeout_ms: int) -> None: ...

    def update_state(self, event: Event) -> None: ...


class MemoryStateStore:
    """In-memory StateStore safe for concurrent use from many threads.

    If ``registry_path`` is set, the registered-user set is loaded from and
    written back to that TOML file.
    """

    def __init__(self, registry_path: str | None = None) -> None:
        self.log = logging.getLogger("mxintent.state")
        self._lock = threading.RLock()
        self._registry_write_lock = threading.Lock()
        self.registry_path = expand_path(registry_path) if registry_path else None

        self._registered: set[str] = set()
        self._members: dict[str, dict[str, MemberContent]] = {}
        self._power_levels: dict[str, PowerLevels] = {}
        self._typing: dict[str, dict[str, int]] = {}

        if self.registry_path:
            self._registered.update(load_registered_users(self.registry_path))

    # Registration

    def is_registered(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._registered

    def mark_registered(self, user_id: str) -> None:
        with self._lock:
            if user_id in self._registered:
                return
            self._registered.add(user_id)
        if self.registry_path:
            self._persist_registered()

    def _persist_registered(self) -> None:
        path = self.registry_path
        if not path:
            return
        try:
            with self._registry_write_lock:
                file_stat = None
                try:
                    file_stat = os.stat(path)
                except FileNotFoundError:
                    file_stat = None

                if file_stat is not None:
                    with open(path, encoding="utf-8") as f:
                        doc = parse(f.read())
                else:
                    parent = os.path.dirname(path)
                    if parent:
                        ensure_private_dir(Path(parent))
                    doc = document()

                reg = doc.get("registered")
                if reg is None:
                    reg = table()
                    doc["registered"] = reg

                with self._lock:
                    users = sorted(self._registered)
                users_arr = array()
                users_arr.extend(users)
                users_arr.multiline(True)
                reg["users"] = users_arr

                with open(path, "w", encoding="utf-8") as f:
                    f.write(dumps(doc))

                if file_stat is not None:
                    os.chmod(path, file_stat.st_mode)
                else:
                    os.chmod(path, 0o600)
        except OSError as e:
            self.log.warning("Registered users persist failed path=%s: %s", path, e)

    # Membership

    def _member_get(self, room_id: str, user_id: str) -> MemberContent | None:
        return self._members.get(room_id, {}).get(user_id)

    def get_membership(self, room_id: str, user_id: str) -> str:
        with self._lock:
            member = self._member_get(room_id, user_id)
            return member.membership if member is not None else MEMBERSHIP_NONE

    def is_membership(self, room_id: str, user_id: str, *allowed: str) -> bool:
        return self.get_membership(room_id, user_id) in allowed

    def is_in_room(self, room_id: str, user_id: str) -> bool:
        return self.is_membership(room_id, user_id, MEMBERSHIP_JOIN)

    def is_invited(self, room_id: str, user_id: str) -> bool:
        return self.is_membership(room_id, user_id, MEMBERSHIP_INVITE)

    def set_membership(self, room_id: str, user_id: str, membership: str) -> None:
        with self._lock:
            room = self._members.setdefault(room_id, {})
            member = room.get(user_id)
            if member is None:
                room[user_id] = MemberContent(membership=membership)
            else:
                member.membership = membership

    def try_get_member(
        self, room_id: str, user_id: str
    ) -> tuple[MemberContent | None, bool]:
        with self._lock:
            member = self._member_get(room_id, user_id)
            if member is None:
                return None, False
            return MemberContent(
                membership=member.membership,
                displayname=member.displayname,
                avatar_url=member.avatar_url,
            ), True

    def get_member(self, room_id: str, user_id: str) -> MemberContent:
        member, ok = self.try_get_member(room_id, user_id)
        return member if ok and member is not None else MemberContent()

    def set_member(self, room_id: str, user_id: str, member: MemberContent) -> None:
        with self._lock:
            self._members.setdefault(room_id, {})[user_id] = MemberContent(
                membership=member.membership,
                displayname=member.displayname,
                avatar_url=member.avatar_url,
            )

    # Power levels. Copied in and out; callers never hold the cached object.

    def get_power_levels(self, room_id: str) -> PowerLevels | None:
        with self._lock:
            levels = self._power_levels.get(room_id)
            return levels.copy() if levels is not None else None

    def set_power_levels(self, room_id: str, levels: PowerLevels) -> None:
        with self._lock:
            self._power_levels[room_id] = levels.copy()

    # Typing

    def is_typing(self, room_id: str, user_id: str) -> bool:
        with self._lock:
            expiry = self._typing.get(room_id, {}).get(user_id, TYPING_STOPPED)
        return expiry > now_ms()

    def set_typing(self, room_id: str, user_id: str, timeout_ms: int) -> None:
        expiry = now_ms() + int(timeout_ms) if timeout_ms > 0 else TYPING_STOPPED
        with self._lock:
            self._typing.setdefault(room_id, {})[user_id] = expiry

    # Observed events

    def update_state(self, event: Event) -> None:
        """Absorb an observed state event. Unknown event types are ignored."""
        if event.state_key is None:
            return
        if event.type == EV_MEMBER:
            if event.content.get("membership") not in MEMBERSHIPS:
                # e.g. knock; the cached record stays as it was
                self.log.debug(
                    "Ignoring unrecognized membership %r room=%s user=%s",
                    event.content.get("membership"),
                    event.room_id,
                    event.state_key,
                )
                return
            self.set_member(
                event.room_id, event.state_key, MemberContent.from_content(event.content)
            )
        elif event.type == EV_POWER_LEVELS:
            self.set_power_levels(event.room_id, PowerLevels.from_content(event.content))

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            memberships = sum(len(v) for v in self._members.values())
            joined = sum(
                1
                for room in self._members.values()
                for m in room.values()
                if m.membership == MEMBERSHIP_JOIN
            )
            return {
                "registered": len(self._registered),
                "rooms": len(self._members),
                "memberships": memberships,
                "joined": joined,
                "power_levels": len(self._power_levels),
            }


def load_registered_users(path: str) -> set[str]:
    """Load the registered-user set from a TOML file. Missing file yields an empty set."""
    if not path or not os.path.exists(path):
        return set()

    with open(path, encoding="utf-8") as f:
        doc = parse(f.read())

    reg = doc.get("registered")
    if not isinstance(reg, dict):
        return set()

    users = reg.get("users", [])
    out: set[str] = set()
    if isinstance(users, list):
        for u in users:
            if isinstance(u, str) and u.strip():
                out.add(u.strip())
    return out
