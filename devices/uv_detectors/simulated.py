# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional

import numpy as np

from devices.spectrometer import Spectrometer, SPECTRUM_SIZE, SHUTTER, DEUTERIUM, TUNGSTEN


class SimulatedSpectrometer(Spectrometer):
    """Stand-in used when no spectrometer is attached.

    Dark spectra are a flat ~2000 count floor. Lit spectra are a broad hump
    centred on 500 nm with a ripple, clipped to the detector range.
    """

    def __init__(self, name: str = "spectrometer", *, seed: Optional[int] = None, **kwargs):
        super().__init__(name, **kwargs)
        self._rng = np.random.default_rng(seed)
        self.serial_number = "simulated"

    def _open(self) -> None:
        self.wavelengths = 100.0 + 800.0 * np.arange(SPECTRUM_SIZE) / SPECTRUM_SIZE

    def _apply_int_time(self, ms: float) -> None:
        pass

    def _acquire(self, lights: int) -> np.ndarray:
        if not (lights & SHUTTER) or not (lights & (DEUTERIUM | TUNGSTEN)):
            return 2000.0 + self._rng.integers(0, 200, SPECTRUM_SIZE)
        i = np.arange(SPECTRUM_SIZE)
        spectrum = (45000.0 - 0.4 * (self.wavelengths - 500.0) ** 2
                    + 10000.0 * np.sin(12 * np.pi * i / SPECTRUM_SIZE)
                    + self._rng.integers(0, 2000, SPECTRUM_SIZE))
        return np.clip(spectrum, 0.0, 60000.0)
