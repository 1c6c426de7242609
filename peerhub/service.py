from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from .aggregator import SharedStateAggregator
from .config import RelayRuntimeConfig
from .constants import T_ID
from .messages import MessageHelper, Outgoing
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .router import MessageRouter
from .stats import StatsManager


class RelayService:
    """
    Wires the connection registry, presence broadcaster, message router and
    shared state aggregator to a transport.

    Transport callbacks and the aggregator thread arrive concurrently. Each
    event runs under the registry's re-entrant lock, collects its outgoing
    frames and hands them to the transport before the lock is released, so
    every peer receives snapshots in the order the registry changed.
    ``transport.send`` only enqueues onto the peer's outbox; sockets are
    written by the per-peer writer threads.
    """

    def __init__(
        self,
        config: RelayRuntimeConfig,
        *,
        registry: ConnectionRegistry | None = None,
        transport: Any = None,
    ) -> None:
        self.config = config
        self.log = logging.getLogger("peerhub.relay")

        self.registry = (
            registry
            if registry is not None
            else ConnectionRegistry(name_max_chars=config.name_max_chars)
        )
        # All registry state is guarded by the registry's own lock.
        self._state_lock = self.registry.lock

        self._shutdown = threading.Event()
        self._stats_thread: threading.Thread | None = None

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)
        self.presence = PresenceBroadcaster(self)
        self.router = MessageRouter(self)
        self.aggregator = SharedStateAggregator(self)

        if transport is None:
            from .transport import WebSocketTransport

            transport = WebSocketTransport(self, config)
        self.transport = transport

    # Transport events

    def on_connect(self, channel: Any) -> str:
        outgoing: Outgoing = []
        with self._state_lock:
            cid = self.registry.on_connect()
            self.transport.bind(cid, channel)
            # The new peer learns its own id before any presence frame.
            self.message_helper.queue_event(outgoing, cid, T_ID, cid)
            conn = self.registry.get(cid)
            self.presence.broadcast_presence(outgoing, joined=conn)
            self._flush(outgoing)
        self.stats_manager.inc("connects")
        return cid

    def on_frame(self, cid: str, data: str | bytes) -> None:
        outgoing: Outgoing = []
        with self._state_lock:
            self.router.route_frame(cid, data, outgoing)
            if self.log.isEnabledFor(logging.DEBUG) and outgoing:
                self.log.debug("Sending %d frame(s) for conn_id=%s", len(outgoing), cid)
            self._flush(outgoing)

    def on_disconnect(self, cid: str) -> None:
        outgoing: Outgoing = []
        with self._state_lock:
            conn = self.registry.on_disconnect(cid)
            if conn is not None:
                self.presence.broadcast_presence(outgoing, left=conn)
                self._flush(outgoing)
            self.transport.unbind(cid)
        if conn is not None:
            self.stats_manager.inc("disconnects")

    def run_tick(self) -> int:
        outgoing: Outgoing = []
        with self._state_lock:
            count = self.aggregator.tick(outgoing)
            self._flush(outgoing)
        return count

    def _flush(self, outgoing: Outgoing) -> None:
        # Called with the state lock held; transport.send never blocks on a socket.
        for cid, env in outgoing:
            # Unbound ids are skipped by the transport.
            self.transport.send(cid, env)

    # Lifecycle

    def start(self) -> None:
        self.log.info("Starting relay")
        self.stats_manager.set_start_time()
        self.transport.start()
        self.aggregator.start()

        self.log.info(
            "Policy require_name_for_chat=%s chat_echo_to_sender=%s name_max_chars=%s "
            "max_frame_bytes=%s max_outbox_frames=%s",
            self.config.require_name_for_chat,
            self.config.chat_echo_to_sender,
            self.config.name_max_chars,
            self.config.max_frame_bytes,
            self.config.max_outbox_frames,
        )

        if self.config.stats_interval_s and self.config.stats_interval_s > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop, name="peerhub-stats", daemon=True
            )
            self._stats_thread.start()

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        self.start()
        while not self._shutdown.wait(0.25):
            pass
        self.stop()

    def stop(self) -> None:
        self._shutdown.set()
        self.aggregator.stop()
        self.transport.stop()

        with self._state_lock:
            cids = self.registry.clear_all()

        self.log.info("Relay stopped, dropped %s connection(s)", len(cids))
        self.log.info("%s", self.stats_manager.format_stats())

    def _stats_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.stats_interval_s)):
            self.log.info("%s", self.stats_manager.format_stats())
