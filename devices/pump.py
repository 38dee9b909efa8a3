# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""Pump device interfaces for the collector.

Concrete pump drivers should live in `devices/pump_devices/`.
"""

from __future__ import annotations

import abc
import threading
import time

from devices.devices import Device


class Pump(Device, abc.ABC):
    """Abstract interface for a variable-rate peristaltic pump.

    Units:
    - rate: millilitres per minute (ml/min); negative rates run in reverse

    Rate bookkeeping lives here; subclasses implement `_drive()` to push the
    new rate to the hardware.
    """

    def __init__(self, name: str, pump_id: int, max_rate: float, *, logger=None, state=None):
        super().__init__(name)
        self.pump_id = pump_id
        self._max_rate = float(max_rate)
        self._current_rate = 0.0
        self._lock = threading.RLock()
        self.logger = logger
        self.state = state

    @abc.abstractmethod
    def _drive(self, rate: float) -> None:
        """Apply `rate` (already clamped) to the hardware."""

    # -------------------------
    # Device lifecycle (sync)
    # -------------------------
    def connect(self) -> None:
        if self.state is not None:
            stored = self.state.get_max_rate(self.name, self._max_rate)
            if stored > 0:
                self._max_rate = stored
        self._connected = True

    def stop(self) -> None:
        self.off()

    def close(self) -> None:
        self._connected = False

    # -------------------------
    # Pump interface
    # -------------------------
    def get_max_rate(self) -> float:
        return self._max_rate

    def set_max_rate(self, rate: float) -> None:
        with self._lock:
            if rate <= 0:
                self._error("max rate must be positive")
                return
            self._max_rate = float(rate)
            if self.state is not None:
                self.state.set_max_rate(self.name, self._max_rate)

    def get_current_rate(self) -> float:
        return self._current_rate

    def on(self, rate: float) -> None:
        with self._lock:
            if rate < -self._max_rate:
                rate = -self._max_rate
                self._warn("%s.on(): excessive pump rate changed to %.3f" % (self.name, rate))
            elif rate > self._max_rate:
                rate = self._max_rate
                self._warn("%s.on(): excessive pump rate changed to %.3f" % (self.name, rate))
            if self.logger:
                if rate != 0:
                    self.logger.debug("%s on at rate %.3f", self.name, rate)
                elif self._current_rate != 0:
                    self.logger.debug("%s off", self.name)
            self._current_rate = rate
            self._drive(rate)

    def off(self) -> None:
        self.on(0.0)

    def _warn(self, msg: str) -> None:
        if self.logger:
            self.logger.warning(msg)

    def _error(self, msg: str) -> None:
        if self.logger:
            self.logger.error(msg)


class SupplyPump(Pump, abc.ABC):
    """Pump drawing from a finite reservoir whose level (ml) is tracked.

    The level drops by rate/60 ml per second of pumping. A pump that runs
    dry (or is disabled) refuses positive rates until `set_level()` refills
    it.
    """

    def __init__(self, name: str, pump_id: int, max_rate: float = 5.0,
                 max_level: float = 750.0, min_level: float = 10.0, *, logger=None, state=None):
        super().__init__(name, pump_id, max_rate, logger=logger, state=state)
        self.max_level = max_level
        self.min_level = min_level
        self._level = 0.0
        self._enabled = True
        self._change_time = time.monotonic()

    def connect(self) -> None:
        super().connect()
        if self.state is not None:
            self._level = self.state.get_supply_level(self.name, self._level)

    def _adjust_level(self) -> None:
        now = time.monotonic()
        if self._current_rate != 0:
            vol = (self._current_rate / 60.0) * (now - self._change_time)
            self._level = max(0.0, self._level - vol)
            if self.state is not None:
                self.state.set_supply_level(self.name, self._level)
        self._change_time = now

    def get_level(self) -> float:
        with self._lock:
            self._adjust_level()
            return self._level

    def set_level(self, level: float) -> None:
        with self._lock:
            self._adjust_level()
            if level < 0 or level > self.max_level:
                self._warn("%s.set_level: value out of range, using limit values" % self.name)
            self._enabled = True
            self._level = min(max(0.0, level), self.max_level)
            if self.state is not None:
                self.state.set_supply_level(self.name, self._level)

    def available(self) -> float:
        """Volume (ml) that can still be drawn before hitting the minimum level."""
        return max(0.0, self.get_level() - self.min_level)

    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def on(self, rate: float) -> None:
        with self._lock:
            self._adjust_level()
            if rate > 0 and (not self._enabled or self._level < self.min_level):
                if not self._enabled:
                    self._error("%s has been disabled; add fluid to re-enable" % self.name)
                else:
                    self._error("empty supply reservoir for %s" % self.name)
                super().on(0.0)
                self.disable()
                return
            super().on(rate)
