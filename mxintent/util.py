from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def make_user_id(localpart: str, domain: str) -> str:
    return f"@{localpart}:{domain}"


def normalize_localpart(value) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip().lower()
    if not s:
        return None

    # Localparts are restricted to a conservative charset by the homeserver;
    # reject the obviously broken ones before a round trip.
    if any(c in s for c in ":@ \n\r\x00"):
        return None

    return s
