import pytest

from conftest import BOT, ROOM, USER, FakeClient, err
from mxintent.constants import MEMBERSHIP_JOIN
from mxintent.errors import ErrorKind, IntentError
from mxintent.intent import EnsureJoinedParams, IntentAPI


def test_ensure_registered_registers_once(intent, client, store) -> None:
    intent.ensure_registered()
    intent.ensure_registered()
    assert client.count("register") == 1
    assert store.is_registered(USER)


def test_ensure_registered_skips_custom_puppet(client, store) -> None:
    puppet = IntentAPI(
        client, store, localpart="ghost_alice", user_id=USER, is_custom_puppet=True
    )
    puppet.ensure_registered()
    assert client.count("register") == 0
    assert not store.is_registered(USER)


def test_ensure_registered_tolerates_user_in_use(intent, client, store) -> None:
    client.fail("register", err(ErrorKind.USER_IN_USE, "User ID already taken."))
    intent.ensure_registered()
    assert store.is_registered(USER)
    assert intent.stats.get("registrations_in_use") == 1


def test_ensure_registered_wraps_other_failures(intent, client, store) -> None:
    client.fail("register", err(ErrorKind.RATE_LIMITED))
    with pytest.raises(IntentError) as exc:
        intent.ensure_registered()
    assert exc.value.stage == "failed to ensure registered"
    assert exc.value.kind == ErrorKind.RATE_LIMITED
    assert not store.is_registered(USER)


def test_ensure_joined_joins_and_caches(intent, client, store) -> None:
    intent.ensure_joined(ROOM)
    assert client.count("register") == 1
    assert client.count("join_room") == 1
    assert store.get_membership(ROOM, USER) == MEMBERSHIP_JOIN


def test_ensure_joined_skips_when_cached(intent, client, store) -> None:
    store.set_membership(ROOM, USER, MEMBERSHIP_JOIN)
    intent.ensure_joined(ROOM)
    assert client.calls == []


def test_ensure_joined_ignore_cache_rejoins(intent, client, store) -> None:
    store.set_membership(ROOM, USER, MEMBERSHIP_JOIN)
    intent.ensure_joined(ROOM, EnsureJoinedParams(ignore_cache=True))
    assert client.count("join_room") == 1


def test_forbidden_join_invites_then_retries(intent, client, bot, store) -> None:
    client.fail("join_room", err(ErrorKind.FORBIDDEN, "You are not invited"))
    intent.ensure_joined(ROOM)
    assert client.count("join_room") == 2
    assert bot.calls == [("invite_user", (ROOM, USER))]
    assert store.is_in_room(ROOM, USER)


def test_forbidden_join_without_inviter_fails_without_invite(client, store) -> None:
    lone = IntentAPI(client, store, localpart="ghost_alice", user_id=USER)
    client.fail("join_room", err(ErrorKind.FORBIDDEN))
    with pytest.raises(IntentError) as exc:
        lone.ensure_joined(ROOM)
    assert exc.value.stage == "failed to ensure joined"
    assert exc.value.kind == ErrorKind.FORBIDDEN
    assert client.count("join_room") == 1
    assert client.count("invite_user") == 0
    assert not store.is_in_room(ROOM, USER)


def test_forbidden_join_uses_bot_override(client, store) -> None:
    lone = IntentAPI(client, store, localpart="ghost_alice", user_id=USER)
    other = FakeClient(BOT)
    client.fail("join_room", err(ErrorKind.FORBIDDEN))
    lone.ensure_joined(ROOM, EnsureJoinedParams(bot_override=other))
    assert other.count("invite_user") == 1
    assert store.is_in_room(ROOM, USER)


def test_non_forbidden_join_failure_is_not_retried(intent, client, bot) -> None:
    client.fail("join_room", err(ErrorKind.NOT_FOUND, "No known servers"))
    with pytest.raises(IntentError):
        intent.ensure_joined(ROOM)
    assert client.count("join_room") == 1
    assert bot.calls == []


def test_invite_failure_in_fallback_has_stage(intent, client, bot, store) -> None:
    client.fail("join_room", err(ErrorKind.FORBIDDEN))
    bot.fail("invite_user", err(ErrorKind.FORBIDDEN, "bot lacks power"))
    with pytest.raises(IntentError) as exc:
        intent.ensure_joined(ROOM)
    assert exc.value.stage == "failed to invite in ensure joined"
    assert client.count("join_room") == 1
    assert not store.is_in_room(ROOM, USER)


def test_join_after_invite_failure_is_not_retried_again(intent, client, bot) -> None:
    client.fail("join_room", err(ErrorKind.FORBIDDEN), err(ErrorKind.FORBIDDEN))
    with pytest.raises(IntentError) as exc:
        intent.ensure_joined(ROOM)
    assert exc.value.stage == "failed to ensure joined after invite"
    assert client.count("join_room") == 2
    assert bot.count("invite_user") == 1


def test_registration_failure_blocks_join(intent, client) -> None:
    client.fail("register", err(ErrorKind.UNKNOWN_TOKEN))
    with pytest.raises(IntentError) as exc:
        intent.ensure_joined(ROOM)
    assert exc.value.stage == "failed to ensure joined"
    assert isinstance(exc.value.cause, IntentError)
    assert exc.value.kind == ErrorKind.UNKNOWN_TOKEN
    assert client.count("join_room") == 0
