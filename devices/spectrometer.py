# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""Spectrometer interface and the light-source control shared by all drivers.

Concrete drivers live in `devices/uv_detectors/` and implement `_open()`,
`_acquire()` and `_apply_int_time()`.
"""

from __future__ import annotations

import abc
import csv
import threading
from pathlib import Path
from typing import Optional

import numpy as np

# set headless backend before pyplot
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from devices.devices import Device

SPECTRUM_SIZE = 2048

# light configuration bits
DEUTERIUM = 0b100
TUNGSTEN = 0b010
SHUTTER = 0b001

MIN_INT_TIME = 5.0
MAX_INT_TIME = 500.0


def bits_string(bits: int, width: int = 3) -> str:
    return format(bits, f"0{width}b")


class Spectrometer(Device, abc.ABC):
    """
    Abstract spectrometer with the light sources driven through the link.

    The light configuration is 3 bits: deuterium, tungsten, shutter. Every
    acquisition opens the shutter early, waits, switches to the requested
    configuration, waits again for the lamps to settle and then reads.
    Integration time is in milliseconds and persisted in the collector state.
    """

    TOP_RANGE = (56000.0, 58000.0, 60000.0)  # lo, mid, hi
    LIGHT_CHECK_MARGIN = 200.0

    def __init__(self, name: str, *, link, interrupt, state=None, logger=None, settle_time: float = 2.0):
        super().__init__(name)
        self.link = link
        self.interrupt = interrupt
        self.state = state
        self.logger = logger
        self.settle_time = settle_time
        self._lock = threading.RLock()
        self.int_time = 100.0
        self.lights = 0
        self.spectrum = np.zeros(SPECTRUM_SIZE)
        self.wavelengths = 100.0 + 800.0 * np.arange(SPECTRUM_SIZE) / SPECTRUM_SIZE
        self.i440 = 400
        self.i580 = 600
        self.spect_max = 0.0
        self.spect_avg = 0.0
        self.serial_number = "none"

    @abc.abstractmethod
    def _open(self) -> None:
        """Open the hardware and load `self.wavelengths`."""

    @abc.abstractmethod
    def _acquire(self, lights: int) -> np.ndarray:
        """Return one averaged spectrum taken with the given light configuration."""

    @abc.abstractmethod
    def _apply_int_time(self, ms: float) -> None:
        """Push the integration time to the hardware."""

    # -------------------------
    # Device lifecycle (sync)
    # -------------------------
    def connect(self) -> None:
        with self._lock:
            self._set_lights(0)
            self._open()
            self.i440 = self._index_at(440.0)
            self.i580 = self._index_at(580.0)
            if self.state is not None:
                self.int_time = self.state.get_integration_time(self.int_time)
            self._apply_int_time(self.int_time)
            self._connected = True

    def stop(self) -> None:
        self.set_lights(0)

    def close(self) -> None:
        self._connected = False

    def _index_at(self, wavelength: float) -> int:
        """Largest index whose wavelength is <= `wavelength`."""
        return max(0, int(np.searchsorted(self.wavelengths, wavelength, side="right")) - 1)

    # -------------------------
    # Lights
    # -------------------------
    def set_lights(self, lights: int) -> None:
        with self._lock:
            if self.logger:
                self.logger.trace("%s set_lights(%s)", self.name, bits_string(lights))
            self._set_lights(lights)

    def _set_lights(self, lights: int) -> None:
        self.link.send("l" + bits_string(lights))
        self.lights = lights

    def get_lights(self) -> int:
        return self.lights

    # -------------------------
    # Acquisition
    # -------------------------
    def get_spectrum(self, lights: int) -> np.ndarray:
        if self.logger:
            self.logger.details("get_spectrum(%s)", bits_string(lights))
        return self._get_spectrum(lights)

    def _get_spectrum(self, lights: int) -> np.ndarray:
        # the lock is never held across a settle pause: a stop parks the
        # worker inside pause() and the console still needs the lamps
        if lights & SHUTTER:
            with self._lock:
                self._set_lights(SHUTTER)
        self.interrupt.pause(self.settle_time)
        with self._lock:
            self._set_lights(lights)
        self.interrupt.pause(self.settle_time)
        with self._lock:
            return self._read(lights)

    def _read(self, lights: int) -> np.ndarray:
        spectrum = np.asarray(self._acquire(lights), dtype=float)
        if spectrum.size != SPECTRUM_SIZE:
            raise RuntimeError(f"unexpected spectrum length: {spectrum.size}")
        self._set_lights(0)
        imax = int(np.argmax(spectrum))
        self.spect_max = float(spectrum[imax])
        self.spect_avg = float(spectrum.mean())
        if self.logger:
            self.logger.details(
                "spectrum: avg=%.0f, max=%.0f, maxWave=%.0f, i440=%.0f intTime=%.1f",
                self.spect_avg, self.spect_max, self.wavelengths[imax], spectrum[self.i440], self.int_time,
            )
        spectrum[0] = 0.0
        self.spectrum = spectrum
        return spectrum

    # -------------------------
    # Integration time
    # -------------------------
    def get_int_time(self) -> float:
        return self.int_time

    def set_int_time(self, ms: float) -> None:
        with self._lock:
            self._apply_int_time(ms)
            self.int_time = float(ms)
            if self.state is not None:
                self.state.set_integration_time(self.int_time)

    def adjust_int_time(self) -> bool:
        """
        Bring the spectrum peak into the top range of the detector.

        Halves the integration time while saturated and scales it up toward
        the middle of the range when too dim. Returns False if the lamps are
        too weak even at the maximum integration time.
        """
        lo, mid, hi = self.TOP_RANGE
        for _ in range(10):
            self.get_spectrum(DEUTERIUM | TUNGSTEN | SHUTTER)
            if self.spect_max > hi:
                self.set_int_time(max(MIN_INT_TIME, self.int_time / 2.0))
            elif self.spect_max < lo:
                if self.int_time >= MAX_INT_TIME:
                    return False
                self.set_int_time(min(MAX_INT_TIME, self.int_time * mid / max(1.0, self.spect_max)))
            else:
                break
        if self.logger:
            self.logger.trace("adjust_int_time returning (True, %.2f)", self.int_time)
        return True

    def check_lights(self) -> bool:
        """Verify each lamp lifts its band above the dark level."""
        if self.logger:
            self.logger.details("%s check_lights()", self.name)
        saved = self.lights
        dark = self._get_spectrum(DEUTERIUM | TUNGSTEN)
        dark440, dark580 = dark[self.i440], dark[self.i580]
        ok = True
        if self._get_spectrum(DEUTERIUM | SHUTTER)[self.i440] < dark440 + self.LIGHT_CHECK_MARGIN:
            if self.logger:
                self.logger.error("check_lights: deuterium light source failure")
            ok = False
        if self._get_spectrum(TUNGSTEN | SHUTTER)[self.i580] < dark580 + self.LIGHT_CHECK_MARGIN:
            if self.logger:
                self.logger.error("check_lights: tungsten light source failure")
            ok = False
        self.set_lights(saved)
        return ok

    # -------------------------
    # Snapshots
    # -------------------------
    def save_snapshot(self, path, title: Optional[str] = None):
        """
        Save the last spectrum to `<path>.csv` and `<path>.png`.
        Returns (csv_path, png_path).
        """
        base = Path(path)
        base.parent.mkdir(parents=True, exist_ok=True)
        csv_path = base.with_suffix(".csv")
        png_path = base.with_suffix(".png")

        with open(csv_path, "w", newline="") as fp:
            w = csv.writer(fp)
            w.writerow(["Wavelength (nm)", "Intensity"])
            for wl, inten in zip(self.wavelengths, self.spectrum):
                w.writerow([wl, inten])

        plt.figure()
        plt.plot(self.wavelengths, self.spectrum)
        plt.xlabel("Wavelength (nm)")
        plt.ylabel("Intensity")
        plt.title(title or f"Spectrum (int time {self.int_time:.1f} ms)")
        plt.grid(True)
        plt.tight_layout()
        plt.savefig(png_path, dpi=150)
        plt.close()
        return csv_path, png_path
