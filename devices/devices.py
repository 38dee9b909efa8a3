# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Base class for collector hardware and the registry that owns it.

Everything except the spectrometer is reached through the microcontroller
link, so the registry keeps the controllers first and closes them last.
Interfaces live beside this module (`pump.py`, `valve.py`, `spectrometer.py`,
`status.py`); drivers live in the subfolders.
"""

from __future__ import annotations

import abc
from typing import Dict, Optional, List, Literal

Category = Literal["controllers", "pumps", "valves", "sensors", "spectrometers"]

# connect order; close_all() walks it backwards
CATEGORIES = ("controllers", "pumps", "valves", "sensors", "spectrometers")


class Device(abc.ABC):
    """One piece of collector hardware.

    Drivers flip `self._connected` in connect()/close(). stop() must be safe
    to call at any time and leave the hardware idle.
    """

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @abc.abstractmethod
    def connect(self) -> None:
        """Open the device and load any persisted settings."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the device."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Put the device in its idle state."""


class DeviceRegistry:
    """Named devices grouped by category.

        registry = DeviceRegistry()
        registry.register("pumps", "samplePump", pump)
        registry.require("pumps", "samplePump").on(2.0)
    """

    def __init__(self):
        self._devices: Dict[str, Dict[str, Device]] = {c: {} for c in CATEGORIES}

    def register(self, category: Category, name: str, device: Device) -> None:
        """Add `device` under `name`. KeyError if the name is taken."""
        if not isinstance(device, Device):
            raise TypeError("device must be an instance of Device")
        group = self._group(category)
        if name in group:
            raise KeyError(f"Device '{name}' already registered in '{category}'.")
        group[name] = device

    def unregister(self, category: Category, name: str) -> None:
        self._group(category).pop(name, None)

    def get(self, category: Category, name: str) -> Optional[Device]:
        return self._group(category).get(name)

    def require(self, category: Category, name: str) -> Device:
        dev = self.get(category, name)
        if dev is None:
            raise KeyError(f"No device '{name}' registered in '{category}'.")
        return dev

    def all_devices(self) -> List[Device]:
        return [dev for c in CATEGORIES for dev in self._devices[c].values()]

    def close_all(self) -> None:
        for dev in reversed(self.all_devices()):
            dev.close()

    def _group(self, category: str) -> Dict[str, Device]:
        try:
            return self._devices[category]
        except KeyError:
            raise KeyError(f"Unknown device category: {category}") from None
