"""Periodic republishing of per-peer shared state."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .constants import T_UPDATE

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import RelayService


class SharedStateAggregator:
    """
    Republishes the aggregate position snapshot to all peers on a fixed timer.

    Position updates only touch the registry; whatever is stored when a tick
    fires is what gets sent, so several updates between two ticks collapse to
    the latest one. Every tick sends the full snapshot, changed or not.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("peerhub.aggregator")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self, outgoing: Outgoing) -> int:
        """Queue one aggregate ``update`` per live connection.

        Must be called with the state lock held.
        """
        registry = self.hub.registry
        aggregate = registry.snapshot(include_position=True)
        count = self.hub.message_helper.queue_to_many(
            outgoing, registry.ids(), T_UPDATE, aggregate
        )
        self.hub.stats_manager.inc("ticks")
        return count

    def start(self) -> None:
        interval = float(self.hub.config.tick_interval_s)
        if interval <= 0:
            self.log.info("Aggregator disabled (tick_interval_s=%s)", interval)
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._tick_loop, name="peerhub-aggregator", daemon=True
        )
        self._thread.start()
        self.log.info("Aggregator running tick_interval_s=%s", interval)

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _tick_loop(self) -> None:
        interval = float(self.hub.config.tick_interval_s)
        while not self._stop.wait(interval):
            try:
                self.hub.run_tick()
            except Exception:
                self.log.exception("Aggregator tick failed")
