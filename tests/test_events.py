import pytest

from mxintent.constants import EV_MEMBER, MEMBERSHIP_NONE, PL_STATE_DEFAULT
from mxintent.events import (
    Event,
    MemberContent,
    PowerLevels,
    make_outgoing_state_event,
    parse_event,
    validate_event,
)

ROOM = "!room:example.org"


def test_power_levels_user_level_defaults() -> None:
    pl = PowerLevels.from_content({"users": {"@a:x": 100}, "users_default": 10})
    assert pl.get_user_level("@a:x") == 100
    assert pl.get_user_level("@b:x") == 10


def test_set_user_level_to_default_removes_override() -> None:
    pl = PowerLevels(users={"@a:x": 50})
    pl.set_user_level("@a:x", 0)
    assert "@a:x" not in pl.users
    pl.set_user_level("@b:x", 75)
    assert pl.users == {"@b:x": 75}


def test_power_levels_from_bad_content_uses_defaults() -> None:
    pl = PowerLevels.from_content({"users": {"@a:x": "high"}, "state_default": None})
    assert pl.get_user_level("@a:x") == 0
    assert pl.state_default == PL_STATE_DEFAULT


def test_power_levels_content_round_trip() -> None:
    pl = PowerLevels(users={"@a:x": 100}, events={"m.room.name": 75}, ban=80)
    assert PowerLevels.from_content(pl.to_content()) == pl


def test_member_content_ignores_unknown_membership() -> None:
    member = MemberContent.from_content({"membership": "knock-knock", "displayname": 5})
    assert member.membership == MEMBERSHIP_NONE
    assert member.displayname is None


def test_outgoing_state_event_shape() -> None:
    ev = make_outgoing_state_event(
        ROOM, EV_MEMBER, state_key="@a:x", sender="@a:x", content={"membership": "join"}, event_id="$1"
    )
    assert ev.is_state
    assert ev.sender == "@a:x"
    assert ev.event_id == "$1"
    validate_event(ev)


def test_parse_event_fills_room() -> None:
    ev = parse_event(
        {"type": EV_MEMBER, "state_key": "@a:x", "content": {"membership": "join"}},
        room_id=ROOM,
    )
    assert ev.room_id == ROOM
    assert ev.state_key == "@a:x"


def test_validate_rejects_missing_type() -> None:
    with pytest.raises(ValueError):
        parse_event({"room_id": ROOM, "content": {}})


def test_validate_rejects_bad_content_and_state_key() -> None:
    with pytest.raises(TypeError):
        validate_event(Event(room_id=ROOM, type=EV_MEMBER, content=["x"]))
    with pytest.raises(TypeError):
        validate_event(Event(room_id=ROOM, type=EV_MEMBER, state_key=5))
