"""Keeps the state cache in step with what the intents write and read."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from .codec import CodecError, clone_content
from .constants import MEMBERSHIP_JOIN
from .events import Event, MemberContent, make_outgoing_state_event, validate_event

if TYPE_CHECKING:
    from .state_store import StateStore
    from .transport import RoomStateMap


class CacheReconciler:
    """
    Feeds the state store from two directions:
    - Outgoing: state the intent just wrote, synthesized without a read back
    - Incoming: authoritative state from reads, always overwriting the cache
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self.log = logging.getLogger("mxintent.reconcile")

    def update_with_outgoing_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Any,
        *,
        sender: str,
        event_id: str = "",
    ) -> None:
        """Mirror a successfully sent state event into the store.

        The remote write already succeeded, so failures here are logged and
        dropped instead of raised.
        """
        try:
            raw = clone_content(content)
        except CodecError as e:
            self.log.debug(
                "Failed to serialize %s content for state store room=%s: %s",
                event_type,
                room_id,
                e,
            )
            return

        evt = make_outgoing_state_event(
            room_id,
            event_type,
            state_key=state_key,
            sender=sender,
            content=raw,
            event_id=event_id,
        )
        try:
            validate_event(evt)
        except (TypeError, ValueError) as e:
            self.log.debug("Failed to build %s event for state store: %s", event_type, e)
            return

        self.store.update_state(evt)

    def absorb_events(self, events: Iterable[Event]) -> int:
        """Overwrite cache entries with observed events. Returns how many were absorbed."""
        count = 0
        for evt in events:
            self.store.update_state(evt)
            count += 1
        return count

    def absorb_state(self, state: RoomStateMap) -> int:
        return self.absorb_events(
            evt for by_key in state.values() for evt in by_key.values()
        )

    def absorb_joined_members(
        self, room_id: str, joined: dict[str, dict[str, Any]]
    ) -> int:
        for user_id, info in joined.items():
            info = info if isinstance(info, dict) else {}
            displayname = info.get("display_name")
            avatar_url = info.get("avatar_url")
            self.store.set_member(
                room_id,
                user_id,
                MemberContent(
                    membership=MEMBERSHIP_JOIN,
                    displayname=displayname if isinstance(displayname, str) else None,
                    avatar_url=avatar_url if isinstance(avatar_url, str) else None,
                ),
            )
        return len(joined)
