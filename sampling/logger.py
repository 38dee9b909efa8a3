# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

# sampling/logger.py
import csv, time, threading
from pathlib import Path
from datetime import datetime

TRACE, DEBUG, DETAILS, INFO, WARNING, ERROR, FATAL = range(7)
LEVEL_NAMES = ["trace", "debug", "details", "info", "warning", "error", "fatal"]


def level_from_name(name):
    try:
        return LEVEL_NAMES.index(name.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown log level '{name}'")


class RunLogger:
    """CSV run log with a fixed-width echo to stdout.

    `out_dir=None` keeps only the stdout echo (used by tests and tools).
    Messages below `echo_level` are not printed, below `file_level` not written.
    """

    def __init__(self, out_dir=None, run_name="collector", echo_level=DETAILS, file_level=DEBUG):
        self.echo_level = echo_level
        self.file_level = file_level
        self.datastore = None
        self.datastore_level = DEBUG
        self._lock = threading.Lock()
        self._t0 = time.time()
        self.path = None
        self._fh = None
        self._w = None
        if out_dir is not None:
            Path(out_dir).mkdir(parents=True, exist_ok=True)
            ts = datetime.now().strftime('%Y_%m_%d_%H-%M-%S')
            self.path = Path(out_dir) / f"{ts}_{run_name}.csv"
            self._fh = open(self.path, 'w', newline='', encoding='utf-8')
            self._w = csv.writer(self._fh)
            self._w.writerow(['Time_s', 'Level', 'Thread', 'Message'])

    def set_levels(self, levels):
        """Apply a 'console file datastore' level string, e.g. 'details debug info'."""
        words = levels.split()
        if len(words) > 0:
            self.echo_level = level_from_name(words[0])
        if len(words) > 1:
            self.file_level = level_from_name(words[1])
        if len(words) > 2:
            self.datastore_level = level_from_name(words[2])

    def write(self, level, msg, *args, forward=True):
        if args:
            msg = msg % args
        t = round(time.time() - self._t0, 2)
        thread = threading.current_thread().name
        with self._lock:
            if self._w is not None and level >= self.file_level:
                self._w.writerow([t, LEVEL_NAMES[level], thread, msg])
                self._fh.flush()
            if level >= self.echo_level:
                print(f"[{t:9.2f}] {LEVEL_NAMES[level]:8} | {thread:10} | {msg}")
        store = self.datastore
        if forward and store is not None and level >= self.datastore_level:
            store.save_debug(LEVEL_NAMES[level], msg)

    def trace(self, msg, *args):
        self.write(TRACE, msg, *args)

    def debug(self, msg, *args):
        self.write(DEBUG, msg, *args)

    def details(self, msg, *args):
        self.write(DETAILS, msg, *args)

    def info(self, msg, *args):
        self.write(INFO, msg, *args)

    def warning(self, msg, *args):
        self.write(WARNING, msg, *args)

    def error(self, msg, *args):
        self.write(ERROR, msg, *args)

    def fatal(self, msg, *args):
        self.write(FATAL, msg, *args)

    def border(self):
        self.write(INFO, "-" * 60)

    def close(self):
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
                self._w = None
