# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from __future__ import annotations

from devices.pump import Pump, SupplyPump


def speed_command(pump_id: int, rate: float, max_rate: float) -> str:
    """
    Encode a rate as the microcontroller `p<id><speed>` command.

    Pumps 1 and 2 are bidirectional: the signed range -2040..2040 is shifted
    by 2048. The reagent pumps (3, 4) only run forward over 0..4090.
    """
    frac = rate / max_rate if max_rate > 0 else 0.0
    if pump_id <= 2:
        speed = int(2040.0 * frac) + 2048
    else:
        speed = int(4090.0 * max(0.0, frac))
    return f"p{pump_id}{speed}"


class ArduinoPump(Pump):
    """Sample pump driven through the microcontroller link."""

    def __init__(self, name: str, pump_id: int, max_rate: float, *, link, logger=None, state=None):
        super().__init__(name, pump_id, max_rate, logger=logger, state=state)
        self.link = link

    def _drive(self, rate: float) -> None:
        self.link.send(speed_command(self.pump_id, rate, self._max_rate))


class ArduinoSupplyPump(SupplyPump):
    """Reference/reagent pump with reservoir tracking, driven through the link."""

    def __init__(self, name: str, pump_id: int, max_rate: float = 5.0,
                 max_level: float = 750.0, min_level: float = 10.0, *, link, logger=None, state=None):
        super().__init__(name, pump_id, max_rate, max_level, min_level, logger=logger, state=state)
        self.link = link

    def _drive(self, rate: float) -> None:
        self.link.send(speed_command(self.pump_id, rate, self._max_rate))
