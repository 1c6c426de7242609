from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from .constants import NAME_MAX_CHARS, P_ID, P_NAME, P_X, P_Y, S_NAMED, S_UNREGISTERED
from .envelope import conn_id
from .util import normalize_name


@dataclass
class Connection:
    """State for one live transport session."""

    id: str
    name: str | None = None
    position: tuple[float | int, float | int] | None = None
    connected_at: float = field(default_factory=time.time)

    @property
    def state(self) -> str:
        return S_NAMED if self.name is not None else S_UNREGISTERED


def public(conn: Connection, *, include_position: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {P_ID: conn.id}
    if conn.name is not None:
        out[P_NAME] = conn.name
    if include_position and conn.position is not None:
        out[P_X], out[P_Y] = conn.position
    return out


class ConnectionRegistry:
    """
    Authoritative mapping of connection ids to per-connection state.

    This class is responsible for:
    - Allocating connection ids and creating Connection entries
    - Destroying entries on disconnect (idempotently)
    - Display name assignment with a uniqueness index
    - Storing the last reported position per connection
    - Producing full peer set snapshots

    Every operation takes ``lock``. The relay service holds the same re-entrant
    lock across a whole event so handlers observe a consistent registry.
    """

    def __init__(
        self,
        *,
        name_max_chars: int = NAME_MAX_CHARS,
        lock: threading.RLock | None = None,
        id_factory=conn_id,
    ) -> None:
        self.log = logging.getLogger("peerhub.registry")
        self.lock = lock if lock is not None else threading.RLock()
        self.name_max_chars = int(name_max_chars)
        self._id_factory = id_factory
        self._conns: dict[str, Connection] = {}
        self._index_by_name: dict[str, str] = {}  # name -> connection id

    def on_connect(self) -> str:
        with self.lock:
            cid = self._id_factory()
            while cid in self._conns:
                cid = self._id_factory()
            self._conns[cid] = Connection(id=cid)
        self.log.info("Connection registered conn_id=%s", cid)
        return cid

    def on_disconnect(self, cid: str) -> Connection | None:
        """
        Remove a connection.

        Returns the removed entry, or None if it was already gone. Duplicate
        disconnect signals are therefore harmless.
        """
        with self.lock:
            conn = self._conns.pop(cid, None)
            if conn is None:
                return None
            if conn.name is not None and self._index_by_name.get(conn.name) == cid:
                self._index_by_name.pop(conn.name, None)
        self.log.info("Connection removed conn_id=%s name=%r", cid, conn.name)
        return conn

    def set_name(self, cid: str, name: Any) -> bool:
        n = normalize_name(name, max_chars=self.name_max_chars)
        if n is None:
            return False

        # Check and claim under one lock acquisition so two connections racing
        # for the same name cannot both succeed.
        with self.lock:
            conn = self._conns.get(cid)
            if conn is None:
                return False
            holder = self._index_by_name.get(n)
            if holder is not None and holder != cid:
                return False
            if conn.name is not None and conn.name != n:
                self._index_by_name.pop(conn.name, None)
            conn.name = n
            self._index_by_name[n] = cid
        return True

    def set_position(self, cid: str, x: float | int, y: float | int) -> bool:
        with self.lock:
            conn = self._conns.get(cid)
            if conn is None:
                return False
            conn.position = (x, y)
        return True

    def get(self, cid: Any) -> Connection | None:
        if not isinstance(cid, str):
            return None
        with self.lock:
            return self._conns.get(cid)

    def contains(self, cid: Any) -> bool:
        return self.get(cid) is not None

    def get_by_name(self, name: str) -> Connection | None:
        with self.lock:
            cid = self._index_by_name.get(name)
            return self._conns.get(cid) if cid is not None else None

    def ids(self) -> list[str]:
        with self.lock:
            return list(self._conns.keys())

    def snapshot(self, *, include_position: bool = False) -> dict[str, dict[str, Any]]:
        """Full current peer set, in connection order."""
        with self.lock:
            return {
                cid: public(conn, include_position=include_position)
                for cid, conn in self._conns.items()
            }

    def clear_all(self) -> list[str]:
        with self.lock:
            cids = list(self._conns.keys())
            self._conns.clear()
            self._index_by_name.clear()
        return cids

    def get_stats(self) -> dict[str, Any]:
        with self.lock:
            total = len(self._conns)
            named = sum(1 for c in self._conns.values() if c.name is not None)
            positioned = sum(1 for c in self._conns.values() if c.position is not None)
        return {"total": total, "named": named, "positioned": positioned}

    def __len__(self) -> int:
        with self.lock:
            return len(self._conns)
