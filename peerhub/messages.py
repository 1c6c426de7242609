"""Outgoing frame queueing utilities for the relay."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from .envelope import make_envelope

if TYPE_CHECKING:
    from .service import RelayService

Outgoing = list[tuple[str, dict]]


class MessageHelper:
    """
    Helper methods for queueing frames.

    Handlers never send directly: they append ``(conn_id, envelope)`` pairs to
    an outgoing list while the state lock is held, and the service flushes the
    list to the transport's per-peer outboxes before releasing the lock.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

    def queue_env(self, outgoing: Outgoing, cid: str, env: dict) -> None:
        """Add an envelope to the outgoing queue."""
        self.hub.stats_manager.inc("frames_out")
        outgoing.append((cid, env))

    def queue_event(self, outgoing: Outgoing, cid: str, kind: str, *args) -> None:
        """Build and queue a single event for one connection."""
        self.queue_env(outgoing, cid, make_envelope(kind, *args))

    def queue_to_many(
        self, outgoing: Outgoing, cids: Iterable[str], kind: str, *args
    ) -> int:
        """Queue the same event for several connections; returns recipient count."""
        env = make_envelope(kind, *args)
        count = 0
        for cid in cids:
            self.queue_env(outgoing, cid, env)
            count += 1
        return count
