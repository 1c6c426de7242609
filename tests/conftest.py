from __future__ import annotations

import pytest

from peerhub.codec import encode
from peerhub.config import RelayRuntimeConfig
from peerhub.service import RelayService


class RecordingTransport:
    """Stands in for the websocket layer and records every delivered frame."""

    def __init__(self) -> None:
        self.bound: dict[str, object] = {}
        self.sent: list[tuple[str, dict]] = []
        self.started = False

    def bind(self, cid: str, channel: object) -> None:
        self.bound[cid] = channel

    def unbind(self, cid: str) -> None:
        self.bound.pop(cid, None)

    def send(self, cid: str, env: dict) -> bool:
        if cid not in self.bound:
            return False
        self.sent.append((cid, env))
        return True

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def frames_for(self, cid: str, kind: str | None = None) -> list[dict]:
        return [
            env
            for to, env in self.sent
            if to == cid and (kind is None or env["t"] == kind)
        ]

    def kinds_for(self, cid: str) -> list[str]:
        return [env["t"] for env in self.frames_for(cid)]

    def clear(self) -> None:
        self.sent.clear()


def frame(kind: str, *args, binary: bool = False):
    return encode({"t": kind, "a": list(args)}, binary=binary)


def make_service(**overrides) -> tuple[RelayService, RecordingTransport]:
    overrides.setdefault("tick_interval_s", 0.0)
    cfg = RelayRuntimeConfig(**overrides)
    transport = RecordingTransport()
    return RelayService(cfg, transport=transport), transport


@pytest.fixture
def relay():
    return make_service()
