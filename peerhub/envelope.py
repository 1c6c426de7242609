from __future__ import annotations

import os
import time

from .constants import K_ARGS, K_T, K_TS, K_V, PROTOCOL_VERSION


def now_ms() -> int:
    return int(time.time() * 1000)


def conn_id() -> str:
    return os.urandom(10).hex()


def make_envelope(kind: str, *args, ts: int | None = None) -> dict:
    return {
        K_V: PROTOCOL_VERSION,
        K_T: str(kind),
        K_ARGS: list(args),
        K_TS: ts or now_ms(),
    }


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a map")

    for k in env.keys():
        if not isinstance(k, str):
            raise TypeError("envelope keys must be strings")

    if K_T not in env:
        raise ValueError(f"missing envelope key {K_T!r}")

    if K_V in env:
        v = env[K_V]
        if not isinstance(v, int) or isinstance(v, bool):
            raise TypeError("protocol version must be an integer")
        if v != PROTOCOL_VERSION:
            raise ValueError(f"unsupported version {v}")

    t = env[K_T]
    if not isinstance(t, str):
        raise TypeError("event kind must be a string")
    if not t:
        raise ValueError("event kind must not be empty")

    if K_ARGS in env:
        args = env[K_ARGS]
        if not isinstance(args, list):
            raise TypeError("event arguments must be a list")

    if K_TS in env:
        ts = env[K_TS]
        if not isinstance(ts, int) or isinstance(ts, bool):
            raise TypeError("timestamp must be an integer")
        if ts < 0:
            raise ValueError("timestamp must be unsigned")


def envelope_args(env: dict) -> list:
    args = env.get(K_ARGS)
    return list(args) if isinstance(args, list) else []
