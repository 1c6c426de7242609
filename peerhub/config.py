from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace


def _default_port() -> int:
    try:
        return int(os.environ.get("PORT", "8080"))
    except ValueError:
        return 8080


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    static_dir: str | None = None
    tls_cert: str | None = None
    tls_key: str | None = None
    tick_interval_s: float = 0.1
    require_name_for_chat: bool = True
    chat_echo_to_sender: bool = True
    announce_companions: bool = True
    name_max_chars: int = 32
    max_frame_bytes: int = 64 * 1024  # 64 KiB default
    max_outbox_frames: int = 1024
    ping_interval_s: float = 0.0
    ping_timeout_s: float = 0.0
    stats_interval_s: float = 0.0
    log_level: str = "INFO"
    log_ws_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def default_config() -> RelayRuntimeConfig:
    return RelayRuntimeConfig(port=_default_port())


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "ws_level" in log_table:
            mapped["log_ws_level"] = log_table.get("ws_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file was loaded from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for opt_key in ("static_dir", "tls_cert", "tls_key", "log_file", "log_datefmt"):
        if opt_key in updates and updates[opt_key] == "":
            updates[opt_key] = None

    for int_key in ("port", "name_max_chars", "max_frame_bytes", "max_outbox_frames"):
        if int_key in updates:
            updates[int_key] = int(updates[int_key])

    for float_key in (
        "tick_interval_s",
        "ping_interval_s",
        "ping_timeout_s",
        "stats_interval_s",
    ):
        if float_key in updates:
            updates[float_key] = float(updates[float_key])

    return replace(base, **updates) if updates else base


def load_config_file(base: RelayRuntimeConfig, path: str) -> RelayRuntimeConfig:
    cfg = apply_config_data(base, load_toml(path))
    return replace(cfg, config_path=path)
