# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Cooperative interruption of worker threads.

A controlling thread (the operator console) asks a worker (the sampling
thread) to stop with `request()`. The worker only notices at `check()` or
`pause()` call sites, runs its registered safety handler, and raises
`Cancelled` to unwind its stack back to the cycle loop.

Handshake per client, flags guarded by the client lock (the handler itself
runs outside it):
- request(): mark active, reset `detected`; a non-urgent request waits on it.
- check():   run handler, mark detected, notify `detected`; a non-urgent
             request then parks the worker on `cleared` until clear().
- clear():   reset the flags and notify `cleared`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from sampling.exceptions import Cancelled

PAUSE_STEP = 0.05
PAUSE_OVERRUN = 0.1


@dataclass
class InterruptClient:
    thread_id: int
    name: str
    handler: Callable[[], None]
    active: bool = False
    urgent: bool = False
    detected: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self):
        self.on_detected = threading.Condition(self.lock)
        self.on_cleared = threading.Condition(self.lock)

    def reset(self) -> None:
        self.active = False
        self.urgent = False
        self.detected = False
        self.on_cleared.notify_all()
        self.on_detected.notify_all()


class Interrupt:
    """Registry of interruptible threads and the request/check handshake."""

    def __init__(self, logger=None):
        self.logger = logger
        self._clients: Dict[int, InterruptClient] = {}
        self._lock = threading.Lock()

    # -------------------------
    # Registration
    # -------------------------
    def register(self, thread_id: int, name: str, handler: Optional[Callable[[], None]] = None) -> None:
        with self._lock:
            self._clients[thread_id] = InterruptClient(thread_id, name, handler or (lambda: None))

    def register_current(self, name: str, handler: Optional[Callable[[], None]] = None) -> int:
        thread_id = threading.get_ident()
        self.register(thread_id, name, handler)
        return thread_id

    def _client(self, thread_id: int) -> Optional[InterruptClient]:
        with self._lock:
            return self._clients.get(thread_id)

    def name(self, thread_id: Optional[int] = None) -> str:
        client = self._client(threading.get_ident() if thread_id is None else thread_id)
        return client.name if client else "unknown"

    # -------------------------
    # Controller side
    # -------------------------
    def request(self, thread_id: int, urgent: bool = False) -> None:
        client = self._client(thread_id)
        if client is None:
            return
        with client.lock:
            if client.active:
                if urgent:
                    # aggressive shutdown overrides a soft stop
                    client.reset()
                return
            client.active = True
            client.urgent = urgent
            client.detected = False
            if self.logger:
                self.logger.debug("interrupt requested for %s%s", client.name, " (urgent)" if urgent else "")
            if not urgent:
                while client.active and not client.detected:
                    client.on_detected.wait()

    def clear(self, thread_id: int) -> None:
        client = self._client(thread_id)
        if client is None:
            return
        with client.lock:
            client.reset()

    def in_progress(self, thread_id: int) -> bool:
        client = self._client(thread_id)
        if client is None:
            return False
        with client.lock:
            return client.active

    # -------------------------
    # Worker side
    # -------------------------
    def check(self) -> None:
        """Raise Cancelled if the calling thread has a pending request."""
        client = self._client(threading.get_ident())
        if client is None:
            return
        with client.lock:
            if not client.active:
                return
        client.handler()
        with client.lock:
            # an urgent request or clear() during the handler already reset us
            if client.active:
                client.detected = True
                client.on_detected.notify_all()
                if client.urgent:
                    client.reset()
                else:
                    while client.active:
                        client.on_cleared.wait()
        raise Cancelled(client.name)

    def self_interrupt(self) -> None:
        """Park the calling thread as if interrupted, until clear()."""
        client = self._client(threading.get_ident())
        if client is None:
            return
        client.handler()
        with client.lock:
            if client.active and client.urgent:
                client.reset()
            else:
                client.active = True
                client.detected = True
                client.on_detected.notify_all()
                while client.active:
                    client.on_cleared.wait()
        raise Cancelled(client.name)

    def pause(self, seconds: float) -> None:
        """Sleep for `seconds`, checking for interruption every 50 ms."""
        end = time.monotonic() + max(0.0, seconds)
        while True:
            self.check()
            remaining = end - time.monotonic()
            if remaining <= 0:
                return
            step = min(PAUSE_STEP, remaining)
            t0 = time.monotonic()
            time.sleep(step)
            overrun = time.monotonic() - t0
            if overrun > PAUSE_OVERRUN and self.logger:
                self.logger.error("pause step took %.3f s", overrun)
