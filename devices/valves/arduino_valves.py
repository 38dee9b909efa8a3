# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from __future__ import annotations

from devices.valve import Valve


class ArduinoValve(Valve):
    """
    Two-branch solenoid valve switched by the microcontroller.

    Sends `v<id><branch>` over the link. Hardware ids: filter valve 1,
    port valve 2, mixing valves 3 (mix1), 4 (mid) and 5 (mix2).
    """

    def __init__(self, name: str, valve_id: int, *, link, logger=None):
        super().__init__(name, valve_id)
        self.link = link
        self.logger = logger

    def _move(self, branch: int) -> None:
        if self.logger:
            self.logger.trace("%s select %d", self.name, branch)
        self.link.send(f"v{self.valve_id}{branch}")
