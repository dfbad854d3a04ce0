from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .config import AppServiceConfig
from .events import Event
from .intent import IntentAPI
from .state_store import MemoryStateStore, StateStore
from .stats import StatsManager
from .transport import ClientAPI, HTTPClient
from .util import make_user_id, normalize_localpart

ClientFactory = Callable[[str], ClientAPI]


class AppService:
    """Owns the shared state store and hands out one intent per virtual user."""

    def __init__(
        self,
        config: AppServiceConfig,
        *,
        store: StateStore | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("mxintent.appservice")
        self.store: StateStore = store or MemoryStateStore(config.registry_path)
        self.stats = StatsManager()

        self._client_factory = client_factory or self._http_client
        self._base_client: HTTPClient | None = None
        self._clients: dict[str, ClientAPI] = {}
        self._intents: dict[str, IntentAPI] = {}
        self._lock = threading.Lock()

    @property
    def bot_user_id(self) -> str:
        return self.user_id(self.config.bot_localpart)

    def user_id(self, localpart: str) -> str:
        return make_user_id(localpart, self.config.homeserver_domain)

    def _http_client(self, user_id: str) -> ClientAPI:
        if self._base_client is None:
            self._base_client = HTTPClient(
                self.config.homeserver_url,
                self.config.as_token,
                user_id,
                timeout_s=self.config.request_timeout_s,
            )
            return self._base_client
        return self._base_client.with_user(user_id)

    def client(self, user_id: str) -> ClientAPI:
        with self._lock:
            cli = self._clients.get(user_id)
            if cli is None:
                cli = self._client_factory(user_id)
                self._clients[user_id] = cli
            return cli

    def bot_client(self) -> ClientAPI:
        return self.client(self.bot_user_id)

    def intent(self, localpart: str, *, is_custom_puppet: bool = False) -> IntentAPI:
        """Return the intent for ``localpart``, creating it on first use.

        Raises ValueError if ``is_custom_puppet`` differs from the cached intent.
        """
        lp = normalize_localpart(localpart)
        if lp is None:
            raise ValueError(f"invalid localpart {localpart!r}")

        user_id = self.user_id(lp)
        client = self.client(user_id)
        # The bot cannot invite itself, so its own intent gets no inviter.
        bot = None if user_id == self.bot_user_id else self.bot_client()

        with self._lock:
            intent = self._intents.get(lp)
            if intent is None:
                intent = IntentAPI(
                    client,
                    self.store,
                    localpart=lp,
                    user_id=user_id,
                    bot=bot,
                    is_custom_puppet=is_custom_puppet,
                    stats=self.stats,
                )
                self._intents[lp] = intent
            elif intent.is_custom_puppet != is_custom_puppet:
                raise ValueError(
                    f"intent for {user_id} already exists with is_custom_puppet={intent.is_custom_puppet}"
                )
            return intent

    def bot_intent(self) -> IntentAPI:
        return self.intent(self.config.bot_localpart)

    def update_state(self, event: Event) -> None:
        """Absorb a state event observed from the homeserver."""
        self.store.update_state(event)

    def format_stats(self) -> str:
        store = self.store if isinstance(self.store, MemoryStateStore) else None
        return self.stats.format_stats(store)
