from __future__ import annotations

from typing import Any

import cbor2


class CodecError(ValueError):
    pass


def encode(obj) -> bytes:
    try:
        return cbor2.dumps(obj)
    except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
        raise CodecError(f"cannot encode {type(obj).__name__}: {e}") from e


def decode(b: bytes):
    try:
        return cbor2.loads(b)
    except (cbor2.CBORDecodeError, ValueError) as e:
        raise CodecError(f"cannot decode payload: {e}") from e


def clone_content(obj: Any) -> dict[str, Any]:
    """Detach event content from the caller's object via a serialization round trip.

    Objects with a ``to_content()`` method (MemberContent, PowerLevels) are
    converted first. The result must decode to a mapping.
    """
    to_content = getattr(obj, "to_content", None)
    if callable(to_content):
        obj = to_content()
    out = decode(encode(obj))
    if not isinstance(out, dict):
        raise CodecError("event content must be a map")
    return out
