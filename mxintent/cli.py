from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .appservice import AppService
from .config import AppServiceConfig, load_config
from .errors import IntentError, MatrixRequestError
from .intent import EnsureJoinedParams
from .logging_config import configure_logging
from .paths import default_config_path, default_registry_path, ensure_private_dir


def _write_default_config(config_path: str, registry_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# mxintent configuration (TOML)
#
# This file was created on first run.
# Fill in the homeserver details and the appservice token, then run mxintent again.

[appservice]

# Client-server API base URL of the homeserver.
homeserver_url = "http://localhost:8008"

# Server name used to build user ids (@localpart:domain).
homeserver_domain = "localhost"

# as_token from the appservice registration file.
as_token = ""

# Localpart of the appservice bot. The bot invites virtual users into rooms
# they are not allowed to join on their own.
bot_localpart = "bridgebot"

# Registered virtual users are remembered here so restarts do not re-register them.
registry_path = {registry_path!r}

# Per-request timeout. Failed requests are not retried.
request_timeout_s = 30.0

# Typing notification timeout used by the `typing` command.
typing_timeout_ms = 30000

[logging]

level = "INFO"

# Log level for the HTTP stack (urllib3/requests).
http_level = "WARNING"

console = true

# Optional file path for logs (leave empty to disable).
file = ""

format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mxintent", description="Act as an appservice virtual user"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--registry",
        default=None,
        help="Path to the registered-users TOML file",
    )
    p.add_argument("--homeserver-url", default=None, help="Homeserver base URL")
    p.add_argument("--domain", default=None, help="Homeserver domain for user ids")
    p.add_argument(
        "--user",
        default=None,
        help="Localpart to act as (default: the appservice bot)",
    )
    p.add_argument(
        "--custom-puppet",
        action="store_true",
        help="Treat the user as already existing; never register it",
    )
    p.add_argument(
        "--stats", action="store_true", help="Print intent statistics afterwards"
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("whoami", help="Register if needed and print the user id")

    sp = sub.add_parser("join", help="Ensure the user is joined to a room")
    sp.add_argument("room")
    sp.add_argument(
        "--ignore-cache", action="store_true", help="Join even if cached as joined"
    )

    sp = sub.add_parser("send", help="Send a text message")
    sp.add_argument("room")
    sp.add_argument("text")
    sp.add_argument("--notice", action="store_true", help="Send as m.notice")

    sp = sub.add_parser("invite", help="Invite a user unless already invited")
    sp.add_argument("room")
    sp.add_argument("target")

    sp = sub.add_parser("set-power-level", help="Set a user's power level in a room")
    sp.add_argument("room")
    sp.add_argument("target")
    sp.add_argument("level", type=int)

    sp = sub.add_parser("typing", help="Start or stop the typing indicator")
    sp.add_argument("room")
    sp.add_argument("--stop", action="store_true", help="Stop typing")

    sp = sub.add_parser("members", help="List joined members of a room")
    sp.add_argument("room")

    return p


def _run_command(svc: AppService, args: argparse.Namespace) -> None:
    localpart = args.user or svc.config.bot_localpart
    intent = svc.intent(localpart, is_custom_puppet=bool(args.custom_puppet))

    if args.command == "whoami":
        resp = intent.whoami()
        print(resp.get("user_id") or intent.user_id)
    elif args.command == "join":
        intent.ensure_joined(
            args.room, EnsureJoinedParams(ignore_cache=bool(args.ignore_cache))
        )
        print(f"{intent.user_id} joined {args.room}")
    elif args.command == "send":
        if args.notice:
            resp = intent.send_notice(args.room, args.text)
        else:
            resp = intent.send_text(args.room, args.text)
        print(resp.event_id)
    elif args.command == "invite":
        intent.ensure_invited(args.room, args.target)
        print(f"{args.target} invited to {args.room}")
    elif args.command == "set-power-level":
        resp = intent.set_power_level(args.room, args.target, int(args.level))
        if resp is None:
            print(f"{args.target} already at level {args.level}")
        else:
            print(resp.event_id)
    elif args.command == "typing":
        sent = intent.user_typing(
            args.room, not args.stop, svc.config.typing_timeout_ms
        )
        print("sent" if sent else "unchanged")
    elif args.command == "members":
        for user_id in sorted(intent.joined_members(args.room)):
            print(user_id)


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if not os.path.exists(config_path):
        _write_default_config(config_path, str(default_registry_path()))
        print(
            "Created default mxintent config. Edit it before running again:\n"
            f"- Config: {config_path}",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = load_config(config_path, AppServiceConfig())

    if args.registry is not None:
        cfg = replace(cfg, registry_path=str(args.registry) or None)
    if args.homeserver_url is not None:
        cfg = replace(cfg, homeserver_url=str(args.homeserver_url).rstrip("/"))
    if args.domain is not None:
        cfg = replace(cfg, homeserver_domain=str(args.domain))
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    if not cfg.as_token:
        print(f"as_token is not set in {config_path}", file=sys.stderr)
        raise SystemExit(2)

    svc = AppService(cfg)
    try:
        _run_command(svc, args)
    except (IntentError, MatrixRequestError) as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(1) from e
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    if args.stats:
        print(svc.format_stats())


if __name__ == "__main__":
    main()
