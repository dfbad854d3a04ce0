import os

from mxintent.constants import (
    EV_MEMBER,
    EV_POWER_LEVELS,
    EV_ROOM_NAME,
    MEMBERSHIP_INVITE,
    MEMBERSHIP_JOIN,
    MEMBERSHIP_LEAVE,
    MEMBERSHIP_NONE,
    TYPING_STOPPED,
)
from mxintent.events import Event, MemberContent, PowerLevels
from mxintent.state_store import MemoryStateStore, load_registered_users

ROOM = "!room:example.org"
ALICE = "@alice:example.org"
BOB = "@bob:example.org"


def test_unknown_membership_is_none() -> None:
    store = MemoryStateStore()
    assert store.get_membership(ROOM, ALICE) == MEMBERSHIP_NONE
    assert not store.is_in_room(ROOM, ALICE)
    assert store.try_get_member(ROOM, ALICE) == (None, False)
    assert store.get_member(ROOM, ALICE) == MemberContent()


def test_set_membership_keeps_profile() -> None:
    store = MemoryStateStore()
    store.set_member(ROOM, ALICE, MemberContent(MEMBERSHIP_INVITE, "Alice", "mxc://a/b"))
    store.set_membership(ROOM, ALICE, MEMBERSHIP_JOIN)
    member = store.get_member(ROOM, ALICE)
    assert member.membership == MEMBERSHIP_JOIN
    assert member.displayname == "Alice"
    assert store.is_in_room(ROOM, ALICE)


def test_returned_members_are_copies() -> None:
    store = MemoryStateStore()
    store.set_membership(ROOM, ALICE, MEMBERSHIP_JOIN)
    member, _ = store.try_get_member(ROOM, ALICE)
    member.membership = MEMBERSHIP_LEAVE
    assert store.is_in_room(ROOM, ALICE)


def test_update_state_member_and_power_levels() -> None:
    store = MemoryStateStore()
    store.update_state(
        Event(room_id=ROOM, type=EV_MEMBER, state_key=BOB, content={"membership": "invite"})
    )
    store.update_state(
        Event(room_id=ROOM, type=EV_POWER_LEVELS, state_key="", content={"users": {BOB: 50}})
    )
    assert store.is_invited(ROOM, BOB)
    assert store.get_power_levels(ROOM).get_user_level(BOB) == 50


def test_update_state_ignores_other_and_non_state_events() -> None:
    store = MemoryStateStore()
    store.update_state(Event(room_id=ROOM, type=EV_ROOM_NAME, state_key="", content={"name": "x"}))
    store.update_state(Event(room_id=ROOM, type=EV_MEMBER, content={"membership": "join"}))
    assert store.get_stats()["memberships"] == 0


def test_power_levels_are_copied_in_and_out() -> None:
    store = MemoryStateStore()
    levels = PowerLevels(users={BOB: 50})
    store.set_power_levels(ROOM, levels)
    levels.set_user_level(BOB, 100)
    assert store.get_power_levels(ROOM).get_user_level(BOB) == 50

    fetched = store.get_power_levels(ROOM)
    fetched.set_user_level(BOB, 75)
    assert store.get_power_levels(ROOM).get_user_level(BOB) == 50


def test_unrecognized_membership_keeps_cached_record() -> None:
    store = MemoryStateStore()
    store.set_membership(ROOM, ALICE, MEMBERSHIP_JOIN)
    store.update_state(
        Event(room_id=ROOM, type=EV_MEMBER, state_key=ALICE, content={"membership": "knock"})
    )
    assert store.is_in_room(ROOM, ALICE)

    store.update_state(
        Event(room_id=ROOM, type=EV_MEMBER, state_key=BOB, content={"membership": "knock"})
    )
    assert store.try_get_member(ROOM, BOB) == (None, False)


def test_typing_expires(monkeypatch) -> None:
    import mxintent.state_store as state_store

    now = [1_000_000]
    monkeypatch.setattr(state_store, "now_ms", lambda: now[0])
    store = MemoryStateStore()

    store.set_typing(ROOM, ALICE, 5000)
    assert store.is_typing(ROOM, ALICE)
    now[0] += 5001
    assert not store.is_typing(ROOM, ALICE)


def test_typing_stopped_sentinel() -> None:
    store = MemoryStateStore()
    store.set_typing(ROOM, ALICE, 30000)
    store.set_typing(ROOM, ALICE, TYPING_STOPPED)
    assert not store.is_typing(ROOM, ALICE)
    store.set_typing(ROOM, ALICE, 0)
    assert not store.is_typing(ROOM, ALICE)


def test_registered_users_persist(tmp_path) -> None:
    path = tmp_path / "state" / "registered.toml"
    store = MemoryStateStore(str(path))
    store.mark_registered(ALICE)
    store.mark_registered(BOB)
    store.mark_registered(ALICE)

    assert path.exists()
    assert os.stat(path).st_mode & 0o777 == 0o600
    assert load_registered_users(str(path)) == {ALICE, BOB}

    reloaded = MemoryStateStore(str(path))
    assert reloaded.is_registered(ALICE)
    assert reloaded.is_registered(BOB)


def test_registry_keeps_other_tables(tmp_path) -> None:
    path = tmp_path / "registered.toml"
    path.write_text('# keep me\n[extra]\nnote = "hi"\n', encoding="utf-8")
    store = MemoryStateStore(str(path))
    store.mark_registered(ALICE)

    text = path.read_text(encoding="utf-8")
    assert "# keep me" in text
    assert 'note = "hi"' in text
    assert load_registered_users(str(path)) == {ALICE}


def test_missing_registry_is_empty(tmp_path) -> None:
    assert load_registered_users(str(tmp_path / "nope.toml")) == set()


def test_concurrent_writers() -> None:
    import threading

    store = MemoryStateStore()
    users = [f"@u{i}:example.org" for i in range(50)]

    def worker(offset: int) -> None:
        for user in users:
            store.set_membership(f"!r{offset}:example.org", user, MEMBERSHIP_JOIN)
            store.mark_registered(user)
            store.is_in_room(f"!r{offset}:example.org", user)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = store.get_stats()
    assert stats["registered"] == 50
    assert stats["rooms"] == 8
    assert stats["joined"] == 400
