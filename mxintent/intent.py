"""Per-user intents for appservice virtual users.

An ``IntentAPI`` acts as one virtual user. Before any call that needs the user
to exist or to be in a room, it registers and joins on demand, using the state
store to skip requests it already knows are unnecessary. Nothing here locks:
two concurrent callers may both register or join, and every such request is
safe to repeat.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import (
    EV_MEMBER,
    EV_MESSAGE,
    EV_POWER_LEVELS,
    EV_ROOM_AVATAR,
    EV_ROOM_NAME,
    EV_ROOM_TOPIC,
    MEMBERSHIP_BAN,
    MEMBERSHIP_INVITE,
    MEMBERSHIP_JOIN,
    MEMBERSHIP_LEAVE,
    MSG_IMAGE,
    MSG_NOTICE,
    MSG_TEXT,
    MSG_VIDEO,
    TYPING_STOPPED,
)
from .errors import ErrorKind, IntentError, MatrixRequestError
from .events import Event, MemberContent, PowerLevels
from .reconcile import CacheReconciler
from .stats import StatsManager

if TYPE_CHECKING:
    from .state_store import StateStore
    from .transport import ClientAPI, JoinResponse, RoomStateMap, SendEventResponse


@dataclass(frozen=True)
class EnsureJoinedParams:
    ignore_cache: bool = False
    # Client used to invite this user when a direct join is forbidden.
    bot_override: ClientAPI | None = None


class IntentAPI:
    def __init__(
        self,
        client: ClientAPI,
        store: StateStore,
        *,
        localpart: str,
        user_id: str,
        bot: ClientAPI | None = None,
        is_custom_puppet: bool = False,
        stats: StatsManager | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.localpart = localpart
        self.user_id = user_id
        self.bot = bot
        self.is_custom_puppet = is_custom_puppet
        self.stats = stats or StatsManager()
        self.reconciler = CacheReconciler(store)
        self.log = logging.getLogger("mxintent.intent")

    def __repr__(self) -> str:
        return f"IntentAPI({self.user_id!r})"

    # Preconditions

    def register(self) -> None:
        self.client.register(self.localpart, inhibit_login=True)

    def ensure_registered(self) -> None:
        """Register this user unless it is a custom puppet or already known."""
        if self.is_custom_puppet or self.store.is_registered(self.user_id):
            return

        try:
            self.register()
        except MatrixRequestError as e:
            if e.kind != ErrorKind.USER_IN_USE:
                raise IntentError("failed to ensure registered", e) from e
            self.stats.inc("registrations_in_use")
            self.log.debug("User already registered user=%s", self.user_id)
        else:
            self.stats.inc("registrations")
            self.log.info("Registered user=%s", self.user_id)

        self.store.mark_registered(self.user_id)

    def ensure_joined(
        self, room_id: str, params: EnsureJoinedParams | None = None
    ) -> None:
        """Make sure this user is joined to ``room_id``.

        A forbidden join is retried once after the bot (or
        ``params.bot_override``) invites the user. Other failures raise
        ``IntentError`` without retrying.
        """
        params = params or EnsureJoinedParams()
        if not params.ignore_cache and self.store.is_in_room(room_id, self.user_id):
            self.stats.inc("join_cache_hits")
            return

        try:
            self.ensure_registered()
        except IntentError as e:
            raise IntentError("failed to ensure joined", e) from e

        try:
            resp = self.client.join_room(room_id)
        except MatrixRequestError as e:
            bot = params.bot_override or self.bot
            if e.kind != ErrorKind.FORBIDDEN or bot is None:
                raise IntentError("failed to ensure joined", e) from e
            resp = self._join_after_invite(room_id, bot)

        self.store.set_membership(resp.room_id, self.user_id, MEMBERSHIP_JOIN)
        self.stats.inc("joins")
        self.log.debug("Joined room=%s user=%s", resp.room_id, self.user_id)

    def _join_after_invite(self, room_id: str, bot: ClientAPI) -> JoinResponse:
        self.stats.inc("join_invite_fallbacks")
        self.log.info(
            "Join forbidden, inviting via %s room=%s user=%s",
            bot.user_id,
            room_id,
            self.user_id,
        )
        try:
            bot.invite_user(room_id, self.user_id)
        except MatrixRequestError as e:
            raise IntentError("failed to invite in ensure joined", e) from e

        try:
            return self.client.join_room(room_id)
        except MatrixRequestError as e:
            raise IntentError("failed to ensure joined after invite", e) from e

    # Messages

    def send_message_event(
        self, room_id: str, event_type: str, content: Any
    ) -> SendEventResponse:
        self.ensure_joined(room_id)
        resp = self.client.send_message_event(room_id, event_type, content)
        self.stats.inc("events_sent")
        return resp

    def send_massaged_message_event(
        self, room_id: str, event_type: str, content: Any, ts: int
    ) -> SendEventResponse:
        """Send a message event with an explicit origin timestamp."""
        self.ensure_joined(room_id)
        resp = self.client.send_message_event(room_id, event_type, content, timestamp=ts)
        self.stats.inc("events_sent")
        return resp

    def send_text(self, room_id: str, text: str) -> SendEventResponse:
        return self.send_message_event(
            room_id, EV_MESSAGE, {"msgtype": MSG_TEXT, "body": text}
        )

    def send_notice(self, room_id: str, text: str) -> SendEventResponse:
        return self.send_message_event(
            room_id, EV_MESSAGE, {"msgtype": MSG_NOTICE, "body": text}
        )

    def send_image(self, room_id: str, body: str, url: str) -> SendEventResponse:
        return self.send_message_event(
            room_id, EV_MESSAGE, {"msgtype": MSG_IMAGE, "body": body, "url": url}
        )

    def send_video(self, room_id: str, body: str, url: str) -> SendEventResponse:
        return self.send_message_event(
            room_id, EV_MESSAGE, {"msgtype": MSG_VIDEO, "body": body, "url": url}
        )

    def redact_event(
        self, room_id: str, event_id: str, *, reason: str | None = None
    ) -> SendEventResponse:
        self.ensure_joined(room_id)
        return self.client.redact_event(room_id, event_id, reason=reason)

    # State

    def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: Any
    ) -> SendEventResponse:
        self.ensure_joined(room_id)
        resp = self.client.send_state_event(room_id, event_type, state_key, content)
        self.stats.inc("state_events_sent")
        self.reconciler.update_with_outgoing_event(
            room_id,
            event_type,
            state_key,
            content,
            sender=self.user_id,
            event_id=resp.event_id,
        )
        return resp

    def send_massaged_state_event(
        self, room_id: str, event_type: str, state_key: str, content: Any, ts: int
    ) -> SendEventResponse:
        self.ensure_joined(room_id)
        resp = self.client.send_state_event(
            room_id, event_type, state_key, content, timestamp=ts
        )
        self.stats.inc("state_events_sent")
        self.reconciler.update_with_outgoing_event(
            room_id,
            event_type,
            state_key,
            content,
            sender=self.user_id,
            event_id=resp.event_id,
        )
        return resp

    def state_event(self, room_id: str, event_type: str, state_key: str) -> dict[str, Any]:
        self.ensure_joined(room_id)
        content = self.client.state_event(room_id, event_type, state_key)
        self.reconciler.absorb_events(
            [Event(room_id=room_id, type=event_type, state_key=state_key, content=content)]
        )
        return content

    def state(self, room_id: str) -> RoomStateMap:
        self.ensure_joined(room_id)
        state = self.client.state(room_id)
        self.stats.inc("state_absorbed", self.reconciler.absorb_state(state))
        return state

    def set_room_name(self, room_id: str, name: str) -> SendEventResponse:
        return self.send_state_event(room_id, EV_ROOM_NAME, "", {"name": name})

    def set_room_topic(self, room_id: str, topic: str) -> SendEventResponse:
        return self.send_state_event(room_id, EV_ROOM_TOPIC, "", {"topic": topic})

    def set_room_avatar(self, room_id: str, avatar_url: str) -> SendEventResponse:
        return self.send_state_event(room_id, EV_ROOM_AVATAR, "", {"url": avatar_url})

    # Membership of other users. The acting user need not be in the room.

    def invite_user(
        self, room_id: str, user_id: str, *, reason: str | None = None
    ) -> None:
        self.client.invite_user(room_id, user_id, reason=reason)
        self.store.set_membership(room_id, user_id, MEMBERSHIP_INVITE)
        self.stats.inc("invites")

    def kick_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self.client.kick_user(room_id, user_id, reason=reason)
        self.store.set_membership(room_id, user_id, MEMBERSHIP_LEAVE)
        self.stats.inc("kicks")

    def ban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self.client.ban_user(room_id, user_id, reason=reason)
        self.store.set_membership(room_id, user_id, MEMBERSHIP_BAN)
        self.stats.inc("bans")

    def unban_user(
        self, room_id: str, user_id: str, *, reason: str | None = None
    ) -> None:
        self.client.unban_user(room_id, user_id, reason=reason)
        self.store.set_membership(room_id, user_id, MEMBERSHIP_LEAVE)
        self.stats.inc("unbans")

    def ensure_invited(self, room_id: str, user_id: str) -> None:
        if self.store.is_invited(room_id, user_id):
            return
        try:
            self.invite_user(room_id, user_id)
        except MatrixRequestError as e:
            if e.kind != ErrorKind.ALREADY_IN_ROOM:
                raise
            self.stats.inc("invites_already_member")
            self.log.debug("User already in room room=%s user=%s", room_id, user_id)

    def joined_members(self, room_id: str) -> dict[str, dict[str, Any]]:
        joined = self.client.joined_members(room_id)
        self.stats.inc(
            "state_absorbed", self.reconciler.absorb_joined_members(room_id, joined)
        )
        return joined

    def members(
        self,
        room_id: str,
        *,
        membership: str | None = None,
        not_membership: str | None = None,
    ) -> list[Event]:
        events = self.client.members(
            room_id, membership=membership, not_membership=not_membership
        )
        self.stats.inc("state_absorbed", self.reconciler.absorb_events(events))
        return events

    # Read-through accessors

    def member(self, room_id: str, user_id: str) -> MemberContent | None:
        """Return the member record, fetching it on a cache miss.

        Returns ``None`` when the room has no membership event for the user.
        Other fetch failures propagate and leave the cache untouched.
        """
        member, ok = self.store.try_get_member(room_id, user_id)
        if ok:
            return member

        try:
            content = self.client.state_event(room_id, EV_MEMBER, user_id)
        except MatrixRequestError as e:
            if e.kind == ErrorKind.NOT_FOUND:
                return None
            raise

        member = MemberContent.from_content(content)
        self.store.set_member(room_id, user_id, member)
        return member

    def power_levels(self, room_id: str) -> PowerLevels:
        levels = self.store.get_power_levels(room_id)
        if levels is None:
            content = self.client.state_event(room_id, EV_POWER_LEVELS, "")
            levels = PowerLevels.from_content(content)
            self.store.set_power_levels(room_id, levels)
        return levels

    def set_power_levels(self, room_id: str, levels: PowerLevels) -> SendEventResponse:
        resp = self.send_state_event(room_id, EV_POWER_LEVELS, "", levels)
        self.store.set_power_levels(room_id, levels)
        return resp

    def set_power_level(
        self, room_id: str, user_id: str, level: int
    ) -> SendEventResponse | None:
        """Set one user's power level. Returns ``None`` if it was already ``level``."""
        current = self.power_levels(room_id)
        if current.get_user_level(user_id) == level:
            self.stats.inc("power_level_noops")
            return None

        current.set_user_level(user_id, level)
        return self.set_power_levels(room_id, current)

    # Typing

    def user_typing(self, room_id: str, typing: bool, timeout_ms: int) -> bool:
        """Set the typing indicator. Returns False if the cache showed it already set."""
        if self.store.is_typing(room_id, self.user_id) == typing:
            self.stats.inc("typing_skipped")
            return False

        self.client.set_typing(room_id, typing, timeout_ms)
        self.stats.inc("typing_sent")
        self.store.set_typing(
            room_id, self.user_id, timeout_ms if typing else TYPING_STOPPED
        )
        return True

    # Profile

    def set_display_name(self, displayname: str) -> None:
        self.ensure_registered()
        self.client.set_display_name(displayname)

    def set_avatar_url(self, avatar_url: str) -> None:
        self.ensure_registered()
        self.client.set_avatar_url(avatar_url)

    def whoami(self) -> dict[str, Any]:
        self.ensure_registered()
        return self.client.whoami()
