from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import decode
from .constants import (
    ADDRESSED_KINDS,
    ROUTE_EVENTS,
    ROUTE_KINDS,
    RK_CHAT,
    RK_POSITION,
    SIGNAL_EVENTS,
    T_MESSAGE,
    T_NAME,
    T_UPDATE,
)
from .envelope import envelope_args, validate_envelope
from .registry import Connection, public
from .util import parse_position

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import RelayService


class MessageRouter:
    """
    Handles frame dispatching and message relaying for the relay.

    This class is responsible for:
    - Decoding and validating incoming frames
    - Dispatching events by kind (name, message, update, signal, ...)
    - Relaying addressed payloads to exactly one live recipient
    - Fanning undirected content (chat) out to every live connection

    Payloads are never inspected. Every failure mode is a silent drop: the
    sender gets no error frame, only the absence of a response.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("peerhub.router")

    def route_frame(self, cid: str, data: str | bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for an incoming frame.

        This method should be called with the state lock held.
        """
        conn = self.hub.registry.get(cid)
        if conn is None:
            # Frame raced in after the session closed.
            return

        stats = self.hub.stats_manager
        stats.inc("frames_in")
        stats.inc("bytes_in", len(data))

        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            stats.inc("frames_bad")
            self.log.debug(
                "Bad frame conn_id=%s bytes=%s err=%s", cid, len(data), e
            )
            return

        kind = env["t"]
        args = envelope_args(env)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn_id=%s t=%s args=%s bytes=%s", cid, kind, len(args), len(data)
            )

        if kind == T_NAME:
            self._handle_name(conn, args, outgoing)
        elif kind == T_MESSAGE:
            self._handle_chat(conn, args, outgoing)
        elif kind == T_UPDATE:
            self._handle_update(conn, args, outgoing)
        elif kind in SIGNAL_EVENTS:
            self._handle_signal(conn, SIGNAL_EVENTS[kind], args, outgoing)
        else:
            stats.inc("dropped_unknown_kind")
            self.log.debug("Unknown event dropped conn_id=%s t=%r", cid, kind)

    def route(
        self,
        sender_id: str,
        target_id: Any,
        kind: str,
        payload: Any,
        outgoing: Outgoing,
    ) -> bool:
        """
        Relay ``payload`` from ``sender_id`` to ``target_id`` only.

        Returns False, without queueing anything, when the target is not live.
        Raises ValueError when ``kind`` is outside the closed route-kind set;
        that is a programming error in the caller, never a peer-triggered
        condition, since inbound events are mapped to kinds before routing.
        """
        if kind not in ROUTE_KINDS:
            raise ValueError(f"unknown route kind {kind!r}")

        target = self.hub.registry.get(target_id)
        if target is None:
            self.hub.stats_manager.inc("dropped_unknown_target")
            self.log.debug(
                "Dropped %s from=%s to unknown target=%r", kind, sender_id, target_id
            )
            return False

        event = ROUTE_EVENTS[kind]
        if kind in ADDRESSED_KINDS:
            self.hub.message_helper.queue_event(
                outgoing, target.id, event, target.id, payload, sender_id
            )
        else:
            self.hub.message_helper.queue_event(
                outgoing, target.id, event, payload, sender_id
            )
        self.hub.stats_manager.inc("routed")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Routed %s from=%s to=%s", kind, sender_id, target.id)
        return True

    def route_all(
        self,
        kind: str,
        payload: Any,
        outgoing: Outgoing,
        *,
        sender_id: str | None = None,
        include_sender: bool = True,
    ) -> int:
        """
        Relay ``payload`` to every live connection; returns recipient count.

        Raises ValueError for a ``kind`` outside the closed route-kind set.
        Only internal callers pass kinds, so this signals a programming error.
        """
        if kind not in ROUTE_KINDS:
            raise ValueError(f"unknown route kind {kind!r}")

        registry = self.hub.registry
        recipients = [
            cid
            for cid in registry.ids()
            if include_sender or sender_id is None or cid != sender_id
        ]

        sender: Any = sender_id
        if sender_id is not None:
            conn = registry.get(sender_id)
            if conn is not None:
                sender = public(conn)

        count = self.hub.message_helper.queue_to_many(
            outgoing, recipients, ROUTE_EVENTS[kind], payload, sender
        )
        self.hub.stats_manager.inc("routed", count)
        return count

    def _handle_name(self, conn: Connection, args: list, outgoing: Outgoing) -> None:
        requested = args[0] if args else None
        if not self.hub.registry.set_name(conn.id, requested):
            self.hub.stats_manager.inc("names_rejected")
            self.log.debug("Name rejected conn_id=%s name=%r", conn.id, requested)
            return

        self.hub.stats_manager.inc("names_accepted")
        self.log.info("Name accepted conn_id=%s name=%r", conn.id, conn.name)
        # Echo so the peer knows registration succeeded.
        self.hub.message_helper.queue_event(outgoing, conn.id, T_NAME, conn.name)

    def _handle_chat(self, conn: Connection, args: list, outgoing: Outgoing) -> None:
        if self.hub.config.require_name_for_chat and conn.name is None:
            self.hub.stats_manager.inc("chat_dropped_unnamed")
            self.log.debug("Chat from unnamed connection dropped conn_id=%s", conn.id)
            return

        payload = args[0] if args else None
        count = self.route_all(
            RK_CHAT,
            payload,
            outgoing,
            sender_id=conn.id,
            include_sender=self.hub.config.chat_echo_to_sender,
        )
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Chat forwarded conn_id=%s name=%r recipients=%s",
                conn.id,
                conn.name,
                count,
            )

    def _handle_update(self, conn: Connection, args: list, outgoing: Outgoing) -> None:
        if args and isinstance(args[0], str):
            # Directed form: update(target_id, {x, y})
            target_id = args[0]
            data = args[1] if len(args) > 1 else None
            if not self.hub.registry.contains(target_id):
                self.hub.stats_manager.inc("dropped_unknown_target")
                return
            pos = parse_position([data]) if isinstance(data, dict) else None
            if pos is not None:
                self.hub.registry.set_position(conn.id, *pos)
            self.route(conn.id, target_id, RK_POSITION, data, outgoing)
            return

        pos = parse_position(args)
        if pos is None:
            self.hub.stats_manager.inc("frames_bad")
            self.log.debug("Bad position update conn_id=%s", conn.id)
            return
        self.hub.registry.set_position(conn.id, *pos)

    def _handle_signal(
        self, conn: Connection, kind: str, args: list, outgoing: Outgoing
    ) -> None:
        if not args:
            self.hub.stats_manager.inc("frames_bad")
            return
        target_id = args[0]
        payload = args[1] if len(args) > 1 else None
        self.route(conn.id, target_id, kind, payload, outgoing)
