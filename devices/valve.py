# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from devices.devices import Device
import abc
import threading


class Valve(Device, abc.ABC):
    """Abstract interface for two-branch valves (branch 0 or 1)."""

    def __init__(self, name: str, valve_id: int):
        super().__init__(name)
        self.valve_id = valve_id
        self._branch = 0
        self._lock = threading.Lock()

    @abc.abstractmethod
    def _move(self, branch: int) -> None:
        """Drive the valve hardware to `branch`."""

    def connect(self) -> None:
        self._connected = True

    def stop(self) -> None:
        """Valves hold position; nothing to stop."""
        pass

    def close(self) -> None:
        self._connected = False

    def select(self, branch: int) -> None:
        if branch not in (0, 1):
            raise ValueError("branch must be 0 or 1")
        with self._lock:
            self._move(branch)
            self._branch = branch

    def state(self) -> int:
        return self._branch

    def toggle(self) -> None:
        self.select((self._branch + 1) % 2)


class MixValves(Device):
    """The three valves that route flow through the two mixing coils."""

    def __init__(self, name: str, mix1: Valve, mid: Valve, mix2: Valve):
        super().__init__(name)
        self.mix1 = mix1
        self.mid = mid
        self.mix2 = mix2
        self._lock = threading.Lock()

    def connect(self) -> None:
        self._connected = True

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self._connected = False

    def select(self, use_coil1, use_coil2) -> None:
        use_coil1, use_coil2 = int(bool(use_coil1)), int(bool(use_coil2))
        with self._lock:
            self.mix1.select(use_coil1)
            self.mix2.select(use_coil2)
            self.mid.select(int(use_coil1 != use_coil2))

    def state(self):
        return self.mix1.state(), self.mix2.state()
