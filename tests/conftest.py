from __future__ import annotations

import queue
import time
from typing import Callable, List, Optional

import pytest

from espmon.link.errors import TransportError


class FakeTransport:
    """Scriptable in-memory transport; `None` queued means end of stream."""

    def __init__(
        self,
        name: str = "fake",
        framed: bool = True,
        fail_open: bool = False,
        responder: Optional[Callable[[str], Optional[str]]] = None,
        endless_line: Optional[str] = None,
    ):
        self.name = name
        self.framed = framed
        self.fail_open = fail_open
        self.responder = responder
        self.endless_line = endless_line
        self.written: List[str] = []
        self.opened = False
        self.closed = False
        self._chunks: "queue.Queue" = queue.Queue()

    def push(self, *chunks) -> None:
        for chunk in chunks:
            self._chunks.put(chunk)

    def open(self) -> None:
        if self.fail_open:
            raise TransportError("connection refused")
        self.opened = True

    def read(self) -> Optional[str]:
        if self.closed:
            return None
        if self.endless_line is not None:
            time.sleep(0.001)
            return self.endless_line
        try:
            item = self._chunks.get(timeout=0.01)
        except queue.Empty:
            return ""
        if isinstance(item, Exception):
            raise item
        return item

    def write(self, text: str) -> None:
        if self.closed:
            raise TransportError("closed")
        self.written.append(text)
        if self.responder is not None:
            reply = self.responder(text.strip())
            if reply is not None:
                self.push(reply)

    def close(self) -> None:
        self.closed = True


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class TimerRecorder:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()


@pytest.fixture
def transport_cls():
    return FakeTransport


@pytest.fixture
def eventually():
    return wait_until
