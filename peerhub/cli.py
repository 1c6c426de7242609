from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import RelayRuntimeConfig, default_config, load_config_file
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService


def _write_default_config(config_path: str, cfg: RelayRuntimeConfig) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# peerhub configuration (TOML)
#
# This file was created on first run.
# Edit it, then start peerhub again.

[relay]

# Listen address. When port is left commented out, the PORT environment
# variable is used (default 8080).
host = {cfg.host!r}
# port = 8080

# Optional directory of static files (the demo pages) served over plain HTTP
# on the same port. Leave empty to only accept websocket upgrades.
static_dir = ""

# Optional TLS. Browsers only allow camera/microphone access on secure
# origins, so set both to serve wss:// and https://.
tls_cert = ""
tls_key = ""

# Shared state aggregator: every tick_interval_s the full set of peer
# positions is sent to every peer as an "update" event. 0 disables.
tick_interval_s = {cfg.tick_interval_s}

# Chat behaviour.
# require_name_for_chat: drop "message" events from peers without a name.
# chat_echo_to_sender: also deliver chat messages back to their sender.
require_name_for_chat = true
chat_echo_to_sender = true

# Send "client-connection" / "client-disconnect" before each "clients" snapshot.
announce_companions = true

# Maximum accepted display name length (Unicode characters). 0 disables.
name_max_chars = {cfg.name_max_chars}

# Largest accepted inbound frame in bytes.
max_frame_bytes = {cfg.max_frame_bytes}

# Frames queued per peer before the oldest are dropped (0 = unbounded).
# Protects the relay from peers that stop reading.
max_outbox_frames = {cfg.max_outbox_frames}

# Relay-initiated liveness checks (0 disables).
ping_interval_s = 0.0
ping_timeout_s = 0.0

# Log counters every stats_interval_s seconds (0 disables).
stats_interval_s = 0.0

[logging]

# Log level for peerhub itself.
level = "INFO"

# Log level for the websockets library.
ws_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="peerhub", description="Run a peer rendezvous and message relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument(
        "--static-dir", default=None, help="Serve static files from this directory"
    )
    p.add_argument("--tls-cert", default=None, help="TLS certificate (PEM)")
    p.add_argument("--tls-key", default=None, help="TLS private key (PEM)")

    p.add_argument(
        "--tick-interval",
        type=float,
        default=None,
        help="Aggregate position broadcast interval seconds (0 disables)",
    )
    p.add_argument(
        "--no-require-name",
        action="store_true",
        help="Relay chat messages from peers that have not set a name",
    )
    p.add_argument(
        "--no-chat-echo",
        action="store_true",
        help="Do not send chat messages back to their sender",
    )

    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Relay-initiated ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close connection if pong not received within this many seconds (0 disables)",
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

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = default_config()

    config_path = str(args.config) if args.config else ""
    if config_path and os.path.exists(config_path):
        cfg = load_config_file(cfg, config_path)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.static_dir is not None:
        cfg = replace(cfg, static_dir=str(args.static_dir) or None)
    if args.tls_cert is not None:
        cfg = replace(cfg, tls_cert=str(args.tls_cert) or None)
    if args.tls_key is not None:
        cfg = replace(cfg, tls_key=str(args.tls_key) or None)

    if args.tick_interval is not None:
        cfg = replace(cfg, tick_interval_s=float(args.tick_interval))
    if args.no_require_name:
        cfg = replace(cfg, require_name_for_chat=False)
    if args.no_chat_echo:
        cfg = replace(cfg, chat_echo_to_sender=False)

    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if config_path and not os.path.exists(config_path):
        _write_default_config(config_path, default_config())
        print(
            "Created default peerhub config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run peerhub.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.run_forever()


if __name__ == "__main__":
    main()
