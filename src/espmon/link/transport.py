from __future__ import annotations

import codecs
import logging
import threading
from typing import Callable, Optional, Protocol

import serial  # type: ignore[import]
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.sync import client as ws_client

from .config import LinkConfig, SerialSettings, SocketSettings
from .errors import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """
    A single device connection.

    `read()` returns the next text chunk, an empty string when nothing arrived
    within the read timeout, or None at end of stream. `framed` is False for
    message transports whose messages are already complete lines.
    """

    name: str
    framed: bool

    def open(self) -> None: ...

    def read(self) -> Optional[str]: ...

    def write(self, text: str) -> None: ...

    def close(self) -> None: ...


class SerialTransport:
    framed = True

    def __init__(self, settings: SerialSettings):
        self.settings = settings
        self.name = settings.port
        self._handle = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._write_lock = threading.Lock()

    def open(self) -> None:
        try:
            self._handle = serial.Serial(
                port=self.settings.port,
                baudrate=self.settings.baudrate,
                timeout=self.settings.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportError(f"Cannot open {self.settings.port}: {exc}") from exc
        self._decoder.reset()

    def read(self) -> Optional[str]:
        handle = self._handle
        if handle is None:
            return None
        try:
            data = handle.read(max(getattr(handle, "in_waiting", 0), 1))
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Read from {self.settings.port} failed: {exc}") from exc
        if not data:
            return ""
        return self._decoder.decode(data)

    def write(self, text: str) -> None:
        handle = self._handle
        if handle is None:
            raise TransportError(f"{self.settings.port} is not open")
        with self._write_lock:
            try:
                handle.write(text.encode("utf-8"))
                handle.flush()
            except (serial.SerialException, OSError) as exc:
                raise TransportError(f"Write to {self.settings.port} failed: {exc}") from exc

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (serial.SerialException, OSError) as exc:
            logger.debug("Error closing %s: %s", self.settings.port, exc)


class SocketTransport:
    framed = False

    def __init__(self, settings: SocketSettings):
        self.settings = settings
        self.name = settings.url
        self._conn = None

    def open(self) -> None:
        try:
            self._conn = ws_client.connect(self.settings.url, open_timeout=self.settings.open_timeout)
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"Cannot reach {self.settings.url}: {exc}") from exc

    def read(self) -> Optional[str]:
        conn = self._conn
        if conn is None:
            return None
        try:
            message = conn.recv(timeout=self.settings.recv_timeout)
        except TimeoutError:
            return ""
        except ConnectionClosedOK:
            return None
        except ConnectionClosed as exc:
            raise TransportError(f"Connection to {self.settings.url} lost: {exc}") from exc
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    def write(self, text: str) -> None:
        conn = self._conn
        if conn is None:
            raise TransportError(f"{self.settings.url} is not open")
        try:
            conn.send(text)
        except (ConnectionClosed, OSError) as exc:
            raise TransportError(f"Send to {self.settings.url} failed: {exc}") from exc

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()


TransportFactory = Callable[[], Transport]


def transport_factory(kind: str, config: LinkConfig) -> TransportFactory:
    if kind == "serial":
        return lambda: SerialTransport(config.serial)
    if kind == "socket":
        return lambda: SocketTransport(config.socket)
    raise ValueError(f"Unsupported transport '{kind}'")
