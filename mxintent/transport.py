"""Homeserver transport for appservice users.

``ClientAPI`` is the contract the intents call; ``HTTPClient`` implements it
over the client-server HTTP API with appservice masquerading. Every failure is
raised as ``MatrixRequestError`` carrying an ``ErrorKind``. Nothing here
retries.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import requests

from .constants import AUTH_TYPE_APPSERVICE, CLIENT_API_PREFIX
from .errors import ErrorKind, MatrixRequestError, classify_error
from .events import Event, now_ms, parse_event

RoomStateMap = dict[str, dict[str, Event]]


@dataclass(frozen=True)
class SendEventResponse:
    event_id: str


@dataclass(frozen=True)
class JoinResponse:
    room_id: str


class ClientAPI(Protocol):
    user_id: str

    def register(self, localpart: str, *, inhibit_login: bool = True) -> dict[str, Any]: ...

    def join_room(self, room_id: str) -> JoinResponse: ...

    def invite_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None: ...

    def kick_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None: ...

    def ban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None: ...

    def unban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None: ...

    def send_message_event(
        self,
        room_id: str,
        event_type: str,
        content: Any,
        *,
        timestamp: int | None = None,
    ) -> SendEventResponse: ...

    def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Any,
        *,
        timestamp: int | None = None,
    ) -> SendEventResponse: ...

    def state_event(self, room_id: str, event_type: str, state_key: str) -> dict[str, Any]: ...

    def state(self, room_id: str) -> RoomStateMap: ...

    def joined_members(self, room_id: str) -> dict[str, dict[str, Any]]: ...

    def members(
        self,
        room_id: str,
        *,
        membership: str | None = None,
        not_membership: str | None = None,
    ) -> list[Event]: ...

    def redact_event(
        self, room_id: str, event_id: str, *, reason: str | None = None
    ) -> SendEventResponse: ...

    def set_typing(self, room_id: str, typing: bool, timeout_ms: int) -> None: ...

    def set_display_name(self, displayname: str) -> None: ...

    def set_avatar_url(self, avatar_url: str) -> None: ...

    def whoami(self) -> dict[str, Any]: ...


def _q(part: str) -> str:
    return quote(part, safe="")


def _content(obj: Any) -> Any:
    to_content = getattr(obj, "to_content", None)
    return to_content() if callable(to_content) else obj


class HTTPClient:
    """ClientAPI over HTTP, acting as ``user_id`` through the appservice token."""

    def __init__(
        self,
        homeserver_url: str,
        as_token: str,
        user_id: str,
        *,
        session: requests.Session | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.homeserver_url = homeserver_url.rstrip("/")
        self.as_token = as_token
        self.user_id = user_id
        self.session = session or requests.Session()
        self.timeout_s = float(timeout_s)
        self.log = logging.getLogger("mxintent.transport")
        self._txn_counter = itertools.count(1)

    def with_user(self, user_id: str) -> HTTPClient:
        """Return a client for another user sharing this client's HTTP session."""
        return HTTPClient(
            self.homeserver_url,
            self.as_token,
            user_id,
            session=self.session,
            timeout_s=self.timeout_s,
        )

    def _txn_id(self) -> str:
        return f"mxi{now_ms()}.{next(self._txn_counter)}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: dict[str, Any] | None = None,
        masquerade: bool = True,
    ) -> Any:
        url = f"{self.homeserver_url}{CLIENT_API_PREFIX}{path}"
        query: dict[str, Any] = dict(params or {})
        if masquerade:
            query["user_id"] = self.user_id

        self.log.debug("%s %s as=%s", method, path, self.user_id)
        try:
            resp = self.session.request(
                method,
                url,
                json=body,
                params=query,
                headers={"Authorization": f"Bearer {self.as_token}"},
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise MatrixRequestError(ErrorKind.NETWORK, f"{method} {path}: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            errcode = None
            message = f"HTTP {resp.status_code}"
            if isinstance(data, dict):
                errcode = data.get("errcode")
                message = data.get("error") or message
            raise MatrixRequestError(
                classify_error(resp.status_code, errcode, message),
                message,
                errcode=errcode,
                http_status=resp.status_code,
            )

        return data if data is not None else {}

    def register(self, localpart: str, *, inhibit_login: bool = True) -> dict[str, Any]:
        return self._request(
            "POST",
            "/register",
            body={
                "username": localpart,
                "type": AUTH_TYPE_APPSERVICE,
                "inhibit_login": bool(inhibit_login),
            },
            masquerade=False,
        )

    def join_room(self, room_id: str) -> JoinResponse:
        data = self._request("POST", f"/join/{_q(room_id)}", body={})
        return JoinResponse(room_id=data.get("room_id") or room_id)

    def _membership_action(
        self, action: str, room_id: str, user_id: str, reason: str | None
    ) -> None:
        body: dict[str, Any] = {"user_id": user_id}
        if reason:
            body["reason"] = reason
        self._request("POST", f"/rooms/{_q(room_id)}/{action}", body=body)

    def invite_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._membership_action("invite", room_id, user_id, reason)

    def kick_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._membership_action("kick", room_id, user_id, reason)

    def ban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._membership_action("ban", room_id, user_id, reason)

    def unban_user(self, room_id: str, user_id: str, *, reason: str | None = None) -> None:
        self._membership_action("unban", room_id, user_id, reason)

    def send_message_event(
        self,
        room_id: str,
        event_type: str,
        content: Any,
        *,
        timestamp: int | None = None,
    ) -> SendEventResponse:
        params = {"ts": int(timestamp)} if timestamp is not None else None
        data = self._request(
            "PUT",
            f"/rooms/{_q(room_id)}/send/{_q(event_type)}/{self._txn_id()}",
            body=_content(content),
            params=params,
        )
        return SendEventResponse(event_id=data.get("event_id", ""))

    def send_state_event(
        self,
        room_id: str,
        event_type: str,
        state_key: str,
        content: Any,
        *,
        timestamp: int | None = None,
    ) -> SendEventResponse:
        params = {"ts": int(timestamp)} if timestamp is not None else None
        data = self._request(
            "PUT",
            f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}",
            body=_content(content),
            params=params,
        )
        return SendEventResponse(event_id=data.get("event_id", ""))

    def state_event(self, room_id: str, event_type: str, state_key: str) -> dict[str, Any]:
        return self._request(
            "GET", f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}"
        )

    def state(self, room_id: str) -> RoomStateMap:
        data = self._request("GET", f"/rooms/{_q(room_id)}/state")
        out: RoomStateMap = {}
        for raw in data if isinstance(data, list) else []:
            ev = parse_event(raw, room_id=room_id)
            if ev.state_key is None:
                continue
            out.setdefault(ev.type, {})[ev.state_key] = ev
        return out

    def joined_members(self, room_id: str) -> dict[str, dict[str, Any]]:
        data = self._request("GET", f"/rooms/{_q(room_id)}/joined_members")
        joined = data.get("joined")
        return joined if isinstance(joined, dict) else {}

    def members(
        self,
        room_id: str,
        *,
        membership: str | None = None,
        not_membership: str | None = None,
    ) -> list[Event]:
        params: dict[str, Any] = {}
        if membership:
            params["membership"] = membership
        if not_membership:
            params["not_membership"] = not_membership
        data = self._request("GET", f"/rooms/{_q(room_id)}/members", params=params)
        chunk = data.get("chunk")
        return [parse_event(raw, room_id=room_id) for raw in chunk or []]

    def redact_event(
        self, room_id: str, event_id: str, *, reason: str | None = None
    ) -> SendEventResponse:
        body: dict[str, Any] = {}
        if reason:
            body["reason"] = reason
        data = self._request(
            "PUT",
            f"/rooms/{_q(room_id)}/redact/{_q(event_id)}/{self._txn_id()}",
            body=body,
        )
        return SendEventResponse(event_id=data.get("event_id", ""))

    def set_typing(self, room_id: str, typing: bool, timeout_ms: int) -> None:
        body: dict[str, Any] = {"typing": bool(typing)}
        if typing:
            body["timeout"] = int(timeout_ms)
        self._request(
            "PUT", f"/rooms/{_q(room_id)}/typing/{_q(self.user_id)}", body=body
        )

    def set_display_name(self, displayname: str) -> None:
        self._request(
            "PUT",
            f"/profile/{_q(self.user_id)}/displayname",
            body={"displayname": displayname},
        )

    def set_avatar_url(self, avatar_url: str) -> None:
        self._request(
            "PUT",
            f"/profile/{_q(self.user_id)}/avatar_url",
            body={"avatar_url": avatar_url},
        )

    def whoami(self) -> dict[str, Any]:
        return self._request("GET", "/account/whoami")
