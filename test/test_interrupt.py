# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

import threading
import time

import pytest

from sampling.exceptions import Cancelled
from sampling.interrupt import Interrupt


class Worker:
    """Thread that registers itself and then runs `body` until cancelled."""

    def __init__(self, interrupt, body):
        self.interrupt = interrupt
        self.body = body
        self.handler_calls = 0
        self.cancelled = threading.Event()
        self.registered = threading.Event()
        self.finished = threading.Event()
        self.thread_id = None
        self.thread = threading.Thread(target=self.run, daemon=True)

    def handler(self):
        self.handler_calls += 1

    def run(self):
        self.thread_id = self.interrupt.register_current("worker", self.handler)
        self.registered.set()
        try:
            self.body(self.interrupt)
        except Cancelled:
            self.cancelled.set()
        self.finished.set()

    def start(self):
        self.thread.start()
        self.registered.wait(1.0)
        return self


def test_check_without_request_is_noop():
    interrupt = Interrupt()
    interrupt.register_current("main")
    interrupt.check()
    interrupt.pause(0.01)


def test_unregistered_thread_is_ignored():
    interrupt = Interrupt()
    interrupt.check()
    interrupt.request(12345)
    interrupt.clear(12345)
    assert interrupt.in_progress(12345) is False


def test_request_blocks_until_handler_ran():
    interrupt = Interrupt()
    worker = Worker(interrupt, lambda it: it.pause(10.0)).start()

    t0 = time.monotonic()
    interrupt.request(worker.thread_id)
    assert time.monotonic() - t0 < 1.0
    # the handler has run before request() returns
    assert worker.handler_calls == 1
    assert interrupt.in_progress(worker.thread_id)

    # worker stays parked until clear()
    time.sleep(0.2)
    assert not worker.finished.is_set()

    interrupt.clear(worker.thread_id)
    assert worker.finished.wait(1.0)
    assert worker.cancelled.is_set()
    assert not interrupt.in_progress(worker.thread_id)


def test_urgent_request_does_not_block():
    interrupt = Interrupt()
    release = threading.Event()

    def body(it):
        release.wait(2.0)
        it.check()

    worker = Worker(interrupt, body).start()
    t0 = time.monotonic()
    interrupt.request(worker.thread_id, urgent=True)
    assert time.monotonic() - t0 < 0.1
    assert worker.handler_calls == 0

    release.set()
    assert worker.finished.wait(1.0)
    assert worker.cancelled.is_set()
    assert worker.handler_calls == 1
    # urgent requests clear themselves once detected
    assert not interrupt.in_progress(worker.thread_id)


def test_urgent_request_releases_parked_worker():
    interrupt = Interrupt()
    worker = Worker(interrupt, lambda it: it.pause(10.0)).start()
    interrupt.request(worker.thread_id)
    assert not worker.finished.is_set()

    interrupt.request(worker.thread_id, urgent=True)
    assert worker.finished.wait(1.0)
    assert worker.cancelled.is_set()


def test_self_interrupt_parks_until_clear():
    interrupt = Interrupt()
    worker = Worker(interrupt, lambda it: it.self_interrupt()).start()
    deadline = time.monotonic() + 1.0
    while not interrupt.in_progress(worker.thread_id) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert interrupt.in_progress(worker.thread_id)
    assert worker.handler_calls == 1
    assert not worker.finished.is_set()

    interrupt.clear(worker.thread_id)
    assert worker.finished.wait(1.0)
    assert worker.cancelled.is_set()


def test_self_interrupt_folds_into_pending_urgent_request():
    interrupt = Interrupt()
    release = threading.Event()

    def body(it):
        release.wait(2.0)
        it.self_interrupt()

    worker = Worker(interrupt, body).start()
    interrupt.request(worker.thread_id, urgent=True)
    release.set()
    assert worker.finished.wait(1.0)
    assert worker.cancelled.is_set()
    assert not interrupt.in_progress(worker.thread_id)


def test_second_soft_request_returns_immediately():
    interrupt = Interrupt()
    worker = Worker(interrupt, lambda it: it.pause(10.0)).start()
    interrupt.request(worker.thread_id)
    t0 = time.monotonic()
    interrupt.request(worker.thread_id)
    assert time.monotonic() - t0 < 0.1
    assert worker.handler_calls == 1
    interrupt.clear(worker.thread_id)
    assert worker.finished.wait(1.0)


def test_request_after_urgent_override_waits_for_handler():
    interrupt = Interrupt()
    calls = []
    cancels = []
    in_handler = threading.Event()
    registered = threading.Event()
    stop = threading.Event()
    tid = []

    def handler():
        calls.append(time.monotonic())
        if len(calls) == 1:
            in_handler.set()
            time.sleep(0.3)

    def run():
        tid.append(interrupt.register_current("worker", handler))
        registered.set()
        while not stop.is_set():
            try:
                interrupt.pause(0.2)
            except Cancelled:
                cancels.append(1)

    worker = threading.Thread(target=run, daemon=True)
    worker.start()
    assert registered.wait(1.0)

    soft = threading.Thread(target=interrupt.request, args=(tid[0],), daemon=True)
    soft.start()
    assert in_handler.wait(1.0)
    # shutdown overrides the soft stop while its handler is still running
    interrupt.request(tid[0], urgent=True)
    soft.join(1.0)
    assert not soft.is_alive()

    deadline = time.monotonic() + 2.0
    while not cancels and time.monotonic() < deadline:
        time.sleep(0.01)
    assert cancels == [1]
    assert not interrupt.in_progress(tid[0])

    # a fresh soft stop must not return before the worker ran its handler again
    interrupt.request(tid[0])
    assert len(calls) == 2
    assert interrupt.in_progress(tid[0])

    stop.set()
    interrupt.clear(tid[0])
    worker.join(1.0)
    assert not worker.is_alive()


@pytest.mark.slow
def test_pause_runs_full_duration():
    interrupt = Interrupt()
    interrupt.register_current("main")
    t0 = time.monotonic()
    interrupt.pause(0.3)
    assert time.monotonic() - t0 >= 0.3


def test_cancelled_is_not_an_exception():
    assert not issubclass(Cancelled, Exception)
    with pytest.raises(Cancelled):
        try:
            raise Cancelled("worker")
        except Exception:
            pytest.fail("Cancelled caught as a fault")
