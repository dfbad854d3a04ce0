"""Counters for the intent layer."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .state_store import MemoryStateStore


class StatsManager:
    """
    Counts what the intents did and what they avoided doing.

    Tracks counters for:
    - Registrations (fresh and already-in-use)
    - Joins, invite fallbacks and cache hits
    - Membership changes issued
    - Events sent and state absorbed
    - Requests skipped by typing and power level dedup
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_monotonic = time.monotonic()

        self._counters: dict[str, int] = {
            "registrations": 0,
            "registrations_in_use": 0,
            "joins": 0,
            "join_cache_hits": 0,
            "join_invite_fallbacks": 0,
            "invites": 0,
            "invites_already_member": 0,
            "kicks": 0,
            "bans": 0,
            "unbans": 0,
            "events_sent": 0,
            "state_events_sent": 0,
            "state_absorbed": 0,
            "typing_sent": 0,
            "typing_skipped": 0,
            "power_level_noops": 0,
        }

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, store: MemoryStateStore | None = None) -> str:
        """Format current statistics as human-readable lines."""
        from . import __version__

        uptime_s = time.monotonic() - self.started_monotonic
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"mxintent {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")

        if store is not None:
            st: dict[str, Any] = store.get_stats()
            lines.append(
                "cache: registered={} rooms={} memberships={} joined={} power_levels={}".format(
                    st.get("registered", 0),
                    st.get("rooms", 0),
                    st.get("memberships", 0),
                    st.get("joined", 0),
                    st.get("power_levels", 0),
                )
            )

        lines.append(
            "registration: fresh={} in_use={}".format(
                c.get("registrations", 0),
                c.get("registrations_in_use", 0),
            )
        )
        lines.append(
            "joins: joined={} cache_hits={} invite_fallbacks={}".format(
                c.get("joins", 0),
                c.get("join_cache_hits", 0),
                c.get("join_invite_fallbacks", 0),
            )
        )
        lines.append(
            "membership: invites={} already_member={} kicks={} bans={} unbans={}".format(
                c.get("invites", 0),
                c.get("invites_already_member", 0),
                c.get("kicks", 0),
                c.get("bans", 0),
                c.get("unbans", 0),
            )
        )
        lines.append(
            "events: sent={} state_sent={} state_absorbed={}".format(
                c.get("events_sent", 0),
                c.get("state_events_sent", 0),
                c.get("state_absorbed", 0),
            )
        )
        lines.append(
            "dedup: typing_sent={} typing_skipped={} power_level_noops={}".format(
                c.get("typing_sent", 0),
                c.get("typing_skipped", 0),
                c.get("power_level_noops", 0),
            )
        )

        return "\n".join(lines)
