"""Appservice intents: act as virtual users, registering and joining on demand."""

__version__ = "0.1.0"

from .appservice import AppService
from .config import AppServiceConfig
from .errors import ErrorKind, IntentError, MatrixRequestError
from .events import Event, MemberContent, PowerLevels
from .intent import EnsureJoinedParams, IntentAPI
from .state_store import MemoryStateStore, StateStore
from .transport import ClientAPI, HTTPClient, JoinResponse, SendEventResponse

__all__ = [
    "AppService",
    "AppServiceConfig",
    "ClientAPI",
    "EnsureJoinedParams",
    "ErrorKind",
    "Event",
    "HTTPClient",
    "IntentAPI",
    "IntentError",
    "JoinResponse",
    "MatrixRequestError",
    "MemberContent",
    "MemoryStateStore",
    "PowerLevels",
    "SendEventResponse",
    "StateStore",
    "__version__",
]
