"""Websocket transport: framed duplex channels, static assets and TLS."""

from __future__ import annotations

import logging
import mimetypes
import queue
import ssl
import threading
import time
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING

from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from .codec import encode
from .util import expand_path

if TYPE_CHECKING:
    from .config import RelayRuntimeConfig
    from .service import RelayService


class PeerChannel:
    """
    Outbound side of one websocket connection.

    Frames are queued and written by a dedicated thread so that a slow peer
    only ever blocks its own writer. The queue is FIFO, which keeps frames to
    a given peer in the order they were routed.

    The outbox holds at most ``max_frames`` frames (0 means unbounded). A peer
    that stops reading loses its oldest queued frames first; later presence
    snapshots and aggregate ticks supersede the dropped ones.
    """

    def __init__(
        self,
        connection: ServerConnection,
        *,
        log: logging.Logger,
        max_frames: int = 0,
    ) -> None:
        self.connection = connection
        self.log = log
        # Reply with the framing the peer last used: JSON text until it sends binary.
        self.binary = False
        self.awaiting_pong: tuple[float, threading.Event] | None = None
        self.dropped = 0
        self._overflowing = False
        self._queue: queue.Queue[str | bytes | None] = queue.Queue(
            maxsize=max(0, int(max_frames))
        )
        self._thread: threading.Thread | None = None

    def start(self, name: str = "peerhub-send") -> None:
        self._thread = threading.Thread(target=self._write_loop, name=name, daemon=True)
        self._thread.start()

    def send(self, env: dict) -> bool:
        try:
            payload = encode(env, binary=self.binary)
        except (TypeError, ValueError) as e:
            # e.g. raw bytes relayed from a CBOR peer to a JSON peer
            self.log.warning("Unencodable frame dropped t=%s err=%s", env.get("t"), e)
            return False
        self._put(payload)
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def close_outbox(self) -> None:
        self._put(None)

    def close(self, code: int = 1000, reason: str = "") -> None:
        try:
            self.connection.close(code=code, reason=reason)
        except (ConnectionClosed, OSError):
            pass

    def _put(self, item: str | bytes | None) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                break
            except queue.Full:
                pass
            try:
                self._queue.get_nowait()
            except queue.Empty:
                continue
            self.dropped += 1
            if not self._overflowing:
                self._overflowing = True
                self.log.warning(
                    "Outbox full, dropping oldest frames remote=%s limit=%s",
                    self.connection.remote_address,
                    self._queue.maxsize,
                )

        if self._overflowing and self._queue.qsize() <= self._queue.maxsize // 2:
            self._overflowing = False
            self.log.info(
                "Outbox drained remote=%s dropped=%s",
                self.connection.remote_address,
                self.dropped,
            )

    def _write_loop(self) -> None:
        while True:
            payload = self._queue.get()
            if payload is None:
                return
            try:
                self.connection.send(payload)
            except ConnectionClosed:
                return
            except OSError as e:
                self.log.warning(
                    "Send failed remote=%s bytes=%s err=%s",
                    self.connection.remote_address,
                    len(payload),
                    e,
                )
                return


def build_ssl_context(cert_path: str, key_path: str) -> ssl.SSLContext:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        ctx.load_cert_chain(certfile=expand_path(cert_path), keyfile=expand_path(key_path))
    except (OSError, ssl.SSLError) as e:
        raise RuntimeError(f"failed to load TLS certificate/key: {e}") from e
    return ctx


class WebSocketTransport:
    """
    Threaded websocket server delivering connection events to the relay.

    Calls ``service.on_connect(channel)``, ``service.on_frame(cid, data)`` and
    ``service.on_disconnect(cid)``; the service calls back ``bind``,
    ``unbind`` and ``send``. Non-upgrade HTTP requests are answered from
    ``static_dir`` when one is configured.
    """

    def __init__(self, service: RelayService, config: RelayRuntimeConfig) -> None:
        self.service = service
        self.config = config
        self.log = logging.getLogger("peerhub.transport")

        self._lock = threading.Lock()
        self._peers: dict[str, PeerChannel] = {}
        self._shutdown = threading.Event()

        self._server: Server | None = None
        self._serve_thread: threading.Thread | None = None
        self._ping_thread: threading.Thread | None = None

        self._static_root: Path | None = None
        if config.static_dir:
            root = Path(expand_path(config.static_dir)).resolve()
            if not root.is_dir():
                raise ValueError(f"static_dir is not a directory: {root}")
            self._static_root = root

    # Service-facing primitives

    def bind(self, cid: str, channel: PeerChannel) -> None:
        with self._lock:
            self._peers[cid] = channel

    def unbind(self, cid: str) -> None:
        with self._lock:
            channel = self._peers.pop(cid, None)
        if channel is not None:
            channel.close_outbox()

    def send(self, cid: str, env: dict) -> bool:
        with self._lock:
            channel = self._peers.get(cid)
        if channel is None:
            return False
        return channel.send(env)

    def close(self, cid: str, code: int = 1000, reason: str = "") -> None:
        with self._lock:
            channel = self._peers.get(cid)
        if channel is not None:
            channel.close(code=code, reason=reason)

    # Server lifecycle

    @property
    def port(self) -> int | None:
        """Actually bound port (useful when configured with port 0)."""
        if self._server is None:
            return None
        return self._server.socket.getsockname()[1]

    def start(self) -> None:
        ssl_ctx = None
        if self.config.tls_cert and self.config.tls_key:
            ssl_ctx = build_ssl_context(self.config.tls_cert, self.config.tls_key)
        elif self.config.tls_cert or self.config.tls_key:
            raise ValueError("tls_cert and tls_key must be configured together")

        self._server = serve(
            self._handler,
            self.config.host,
            int(self.config.port),
            ssl=ssl_ctx,
            process_request=self._process_request,
            max_size=int(self.config.max_frame_bytes),
        )
        self._serve_thread = threading.Thread(
            target=self._server.serve_forever, name="peerhub-transport", daemon=True
        )
        self._serve_thread.start()

        self.log.info(
            "Listening on %s://%s:%s static_dir=%s",
            "wss" if ssl_ctx is not None else "ws",
            self.config.host,
            self.config.port,
            self._static_root or "-",
        )

        if self.config.ping_interval_s and self.config.ping_interval_s > 0:
            self._ping_thread = threading.Thread(
                target=self._ping_loop, name="peerhub-ping", daemon=True
            )
            self._ping_thread.start()

    def stop(self) -> None:
        self._shutdown.set()

        with self._lock:
            channels = list(self._peers.values())
            self._peers.clear()

        for channel in channels:
            channel.close_outbox()
            channel.close(code=1001, reason="server shutting down")

        if self._server is not None:
            self._server.shutdown()
            self._server = None

    # Connection handling

    def _handler(self, connection: ServerConnection) -> None:
        channel = PeerChannel(
            connection, log=self.log, max_frames=self.config.max_outbox_frames
        )
        channel.start(name=f"peerhub-send-{connection.id.hex[:8]}")
        cid = self.service.on_connect(channel)
        try:
            for message in connection:
                channel.binary = isinstance(message, bytes)
                self.service.on_frame(cid, message)
        except ConnectionClosed as e:
            self.log.debug("Connection closed abnormally conn_id=%s err=%s", cid, e)
        finally:
            self.service.on_disconnect(cid)

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        upgrade = request.headers.get("Upgrade", "")
        if upgrade.lower() == "websocket":
            return None

        if self._static_root is None:
            return connection.respond(
                HTTPStatus.UPGRADE_REQUIRED, "websocket connection required\n"
            )
        return self._static_response(connection, request.path)

    def _static_response(self, connection: ServerConnection, raw_path: str) -> Response:
        assert self._static_root is not None

        rel = raw_path.split("?", 1)[0].split("#", 1)[0].lstrip("/")
        target = (self._static_root / rel).resolve()
        if target.is_dir():
            target = target / "index.html"

        if not target.is_relative_to(self._static_root) or not target.is_file():
            return connection.respond(HTTPStatus.NOT_FOUND, "not found\n")

        try:
            body = target.read_bytes()
        except OSError as e:
            self.log.warning("Static read failed path=%s err=%s", target, e)
            return connection.respond(HTTPStatus.INTERNAL_SERVER_ERROR, "read error\n")

        ctype = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
        headers = Headers(
            [
                ("Content-Type", ctype),
                ("Content-Length", str(len(body))),
                ("Connection", "close"),
            ]
        )
        return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, body)

    def _ping_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self.config.ping_interval_s)
            timeout = float(self.config.ping_timeout_s)
            if self._shutdown.wait(interval):
                break

            now = time.monotonic()
            to_close: list[PeerChannel] = []

            with self._lock:
                channels = list(self._peers.values())

            for channel in channels:
                pending = channel.awaiting_pong
                if pending is not None:
                    sent_at, waiter = pending
                    if not waiter.is_set():
                        if timeout > 0 and (now - sent_at) > timeout:
                            to_close.append(channel)
                        continue
                    channel.awaiting_pong = None

                try:
                    channel.awaiting_pong = (now, channel.connection.ping())
                except ConnectionClosed:
                    continue

            for channel in to_close:
                self.log.info(
                    "Closing unresponsive peer remote=%s", channel.connection.remote_address
                )
                channel.close(code=1011, reason="ping timeout")
