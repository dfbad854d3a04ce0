from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any


@dataclass(frozen=True)
class AppServiceConfig:
    config_path: str | None = None
    homeserver_url: str = "http://localhost:8008"
    homeserver_domain: str = "localhost"
    as_token: str = ""
    bot_localpart: str = "bridgebot"
    registry_path: str | None = None
    request_timeout_s: float = 30.0
    typing_timeout_ms: int = 30000
    log_level: str = "INFO"
    log_http_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: AppServiceConfig, data: dict[str, Any]) -> AppServiceConfig:
    """Overlay values from a parsed TOML document onto ``cfg``.

    Keys may live at the top level or under ``[appservice]``; the
    ``[logging]`` table maps onto the ``log_*`` fields.
    """
    if not isinstance(data, dict):
        return cfg

    section = data.get("appservice")
    if isinstance(section, dict):
        data = {**data, **section}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for src, dst in (
            ("level", "log_level"),
            ("http_level", "log_http_level"),
            ("console", "log_console"),
            ("file", "log_file"),
            ("format", "log_format"),
            ("datefmt", "log_datefmt"),
        ):
            if src in log_table:
                mapped[dst] = log_table.get(src)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where to reload from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in ("registry_path", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None
    if "homeserver_url" in updates and isinstance(updates["homeserver_url"], str):
        updates["homeserver_url"] = updates["homeserver_url"].rstrip("/")
    if "request_timeout_s" in updates:
        updates["request_timeout_s"] = float(updates["request_timeout_s"])
    if "typing_timeout_ms" in updates:
        updates["typing_timeout_ms"] = int(updates["typing_timeout_ms"])

    return replace(cfg, **updates) if updates else cfg


def load_config(path: str, base: AppServiceConfig | None = None) -> AppServiceConfig:
    cfg = base or AppServiceConfig()
    cfg = replace(cfg, config_path=path)
    return apply_config_data(cfg, load_toml(path))
