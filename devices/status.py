# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Status sensors read through the microcontroller (battery, temperature,
pressure on both sides of the filter, leak detector, real time clock) and
the location sensor.

Raw sensor values are integers; `cook()` turns them into engineering units
with an (offset, scale) pair. Without an equipped board the readings are
simulated, with the filter pressure following the sample pump rate.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from devices.devices import Device

DEPTH_PER_PSI = 0.685


@dataclass
class SensorParams:
    offset: float
    scale: float


def cook(value: int, params: SensorParams) -> float:
    return max(0.0, value - params.offset) / max(1.0, params.scale)


def raw(value: float, params: SensorParams) -> int:
    return int(value * params.scale + params.offset)


class Status(Device):
    def __init__(self, name: str, *, link, sample_pump, config, state=None, logger=None):
        super().__init__(name)
        self.link = link
        self.sample_pump = sample_pump
        self.config = config
        self.state = state
        self.logger = logger
        self._lock = threading.Lock()

        self.vbat_params = SensorParams(0.0, 1024.0 / 16.2)
        self.temp_params = SensorParams(0.0, 1024.0 / 100.0)
        self.up_params = SensorParams(0.0, 1024.0 / 50.0)
        self.down_params = SensorParams(0.0, 1024.0 / 50.0)

        self._vbat = raw(12.0, self.vbat_params)
        self._temp = raw(25.0, self.temp_params)
        self._up = raw(0.1, self.up_params)
        self._down = raw(0.1, self.down_params)
        self._leak = False
        self._date_time = ""
        self._max_pressure = 0.0
        self._depth = 1.0
        self._calibration: List[Tuple[float, int, int]] = []

    # -------------------------
    # Device lifecycle (sync)
    # -------------------------
    def connect(self) -> None:
        if self.state is not None:
            self.up_params.offset = self.state.get_pressure_sensor("upstreamOffset", self.up_params.offset)
            self.up_params.scale = self.state.get_pressure_sensor("upstreamScale", self.up_params.scale)
            self.down_params.offset = self.state.get_pressure_sensor("downstreamOffset", self.down_params.offset)
            self.down_params.scale = self.state.get_pressure_sensor("downstreamScale", self.down_params.scale)
        self._connected = True

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self._connected = False

    # -------------------------
    # Polling
    # -------------------------
    def update(self) -> None:
        """Refresh the cached readings from the board."""
        with self._lock:
            self._temp = raw(25.0, self.temp_params)
            self._vbat = raw(12.0, self.vbat_params)
            max_rate = self.sample_pump.get_max_rate()
            f = self.sample_pump.get_current_rate() / max_rate if max_rate > 0 else 0.0
            f = max(0.05, f)
            self._up = raw(25 * f, self.up_params)
            self._down = raw(5 * f, self.down_params)
            self._leak = False
            self._date_time = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

            if not self.link.is_ready():
                self._track_max()
                return
            words = self.link.query("s").split()
            if len(words) < 5 or not self.link.is_equipped():
                self._track_max()
                return
            self._vbat, self._temp, self._up, self._down = (int(w) for w in words[:4])
            self._leak = words[4] == "1"
            if len(words) == 12:
                sec, minute, hour, _, day, month, year = words[5:12]
                self._date_time = f"20{year}-{month}-{day} {hour}:{minute}:{sec}"
            self._track_max()

    def _track_max(self) -> None:
        self._max_pressure = max(self._max_pressure, self._filter_pressure())

    def _filter_pressure(self) -> float:
        return cook(self._up, self.up_params) - cook(self._down, self.down_params)

    # -------------------------
    # Readings
    # -------------------------
    def voltage(self) -> float:
        with self._lock:
            return cook(self._vbat, self.vbat_params)

    def temperature(self) -> float:
        with self._lock:
            return cook(self._temp, self.temp_params)

    def upstream_pressure(self) -> float:
        with self._lock:
            return cook(self._up, self.up_params)

    def downstream_pressure(self) -> float:
        with self._lock:
            return cook(self._down, self.down_params)

    def filter_pressure(self) -> float:
        with self._lock:
            return self._filter_pressure()

    def max_filter_pressure(self) -> float:
        with self._lock:
            return self._max_pressure

    def clear_max_filter_pressure(self) -> None:
        with self._lock:
            self._max_pressure = 0.0

    def depth(self) -> float:
        with self._lock:
            return self._depth

    def record_depth(self) -> None:
        with self._lock:
            self._depth = DEPTH_PER_PSI * cook(self._down, self.down_params)

    def leak(self) -> bool:
        with self._lock:
            return self._leak

    def date_time_string(self) -> str:
        with self._lock:
            return self._date_time

    def low_battery(self) -> bool:
        return self.voltage() < 10.0

    def too_hot(self) -> bool:
        return self.temperature() > 60.0

    def over_pressure(self) -> bool:
        return self.filter_pressure() > self.config.max_pressure()

    def too_deep(self) -> bool:
        return self.depth() > self.config.max_depth()

    def set_pressure(self, value: Optional[float] = None) -> bool:
        """
        Calibrate the pressure sensors.

        With `value`, record the raw readings while `value` psi is applied to
        both sensors. Without it, derive the scales from the recorded point
        (zero offset); the applied pressure must have been at least 10 psi.
        """
        with self._lock:
            if value is not None:
                self._calibration = [(value, self._up, self._down)]
                return True
            if len(self._calibration) != 1:
                return False
            cooked, up, down = self._calibration[0]
            if cooked < 10:
                return False
            self.up_params = SensorParams(0.0, up / cooked)
            self.down_params = SensorParams(0.0, down / cooked)
            self._calibration = []
        if self.state is not None:
            self.state.set_pressure_sensor("upstreamOffset", self.up_params.offset)
            self.state.set_pressure_sensor("downstreamOffset", self.down_params.offset)
            self.state.set_pressure_sensor("upstreamScale", self.up_params.scale)
            self.state.set_pressure_sensor("downstreamScale", self.down_params.scale)
        return True


class LocationSensor(Device):
    """Position of the instrument; the configured location when no receiver is fitted."""

    def __init__(self, name: str, *, config):
        super().__init__(name)
        self.config = config
        self._recorded = (0.0, 0.0)

    def connect(self) -> None:
        self._connected = True

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self._connected = False

    def read(self) -> Tuple[float, float]:
        return self.config.location()

    def record_location(self) -> None:
        self._recorded = self.read()

    def get_recorded_location(self) -> Tuple[float, float]:
        return self._recorded
