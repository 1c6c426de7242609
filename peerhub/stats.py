"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks counters for:
    - Frames and bytes in/out
    - Malformed frames
    - Connects/disconnects
    - Name registrations
    - Routed and dropped messages
    - Broadcasts and aggregator ticks
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = hub.log
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "frames_in": 0,
            "frames_bad": 0,
            "frames_out": 0,
            "connects": 0,
            "disconnects": 0,
            "names_accepted": 0,
            "names_rejected": 0,
            "chat_dropped_unnamed": 0,
            "routed": 0,
            "dropped_unknown_target": 0,
            "dropped_unknown_kind": 0,
            "broadcasts": 0,
            "ticks": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        conn_stats = self.hub.registry.get_stats()
        c = self.snapshot()
        cfg = self.hub.config

        lines: list[str] = []
        lines.append(f"peerhub {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={conn_stats['total']} "
            f"clients_named={conn_stats['named']} "
            f"clients_positioned={conn_stats['positioned']}"
        )
        lines.append(
            f"features: tick_interval_s={cfg.tick_interval_s} "
            f"require_name_for_chat={cfg.require_name_for_chat} "
            f"chat_echo_to_sender={cfg.chat_echo_to_sender} "
            f"ping_interval_s={cfg.ping_interval_s}"
        )
        lines.append(
            "io: frames_in={} frames_bad={} bytes_in={} frames_out={}".format(
                c.get("frames_in", 0),
                c.get("frames_bad", 0),
                c.get("bytes_in", 0),
                c.get("frames_out", 0),
            )
        )
        lines.append(
            "presence: connects={} disconnects={} broadcasts={} ticks={}".format(
                c.get("connects", 0),
                c.get("disconnects", 0),
                c.get("broadcasts", 0),
                c.get("ticks", 0),
            )
        )
        lines.append(
            "routing: routed={} dropped_unknown_target={} dropped_unknown_kind={} "
            "chat_dropped_unnamed={}".format(
                c.get("routed", 0),
                c.get("dropped_unknown_target", 0),
                c.get("dropped_unknown_kind", 0),
                c.get("chat_dropped_unnamed", 0),
            )
        )
        lines.append(
            "names: accepted={} rejected={}".format(
                c.get("names_accepted", 0),
                c.get("names_rejected", 0),
            )
        )

        return "\n".join(lines)
