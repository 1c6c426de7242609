"""Presence publishing for membership changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import T_CLIENT_CONNECTION, T_CLIENT_DISCONNECT, T_CLIENTS
from .registry import Connection, public

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import RelayService


class PresenceBroadcaster:
    """
    Publishes the full peer set to every live connection on connect/disconnect.

    The optional ``client-connection`` / ``client-disconnect`` companion event
    is always queued before the ``clients`` snapshot, so no peer sees a new
    member in a snapshot before hearing it joined, and a leaving member is only
    dropped from snapshots after its departure was announced.

    Must be called with the state lock held, after the registry mutation.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("peerhub.presence")

    def broadcast_presence(
        self,
        outgoing: Outgoing,
        *,
        joined: Connection | None = None,
        left: Connection | None = None,
    ) -> int:
        registry = self.hub.registry
        helper = self.hub.message_helper

        recipients = registry.ids()
        snapshot = registry.snapshot()

        if self.hub.config.announce_companions:
            if joined is not None:
                helper.queue_to_many(
                    outgoing, recipients, T_CLIENT_CONNECTION, public(joined)
                )
            if left is not None:
                helper.queue_to_many(
                    outgoing, recipients, T_CLIENT_DISCONNECT, public(left)
                )

        count = helper.queue_to_many(outgoing, recipients, T_CLIENTS, snapshot)
        self.hub.stats_manager.inc("broadcasts")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Presence broadcast peers=%s recipients=%s joined=%s left=%s",
                len(snapshot),
                count,
                joined.id if joined is not None else "-",
                left.id if left is not None else "-",
            )
        return count
