# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from __future__ import annotations

import threading
import time
from typing import Optional

import serial

from devices.devices import Device

SIMULATED = "simulated"


class ArduinoLink(Device):
    """
    Serial link to the microcontroller that drives pumps, valves, lights
    power and the status sensors.

    Lifecycle:
      - connect() opens the port (or probes /dev/ttyUSB0..9 when no port is
        given) and performs the `ehello` -> `hello` handshake
      - with port="simulated", or when no board answers, the link stays
        connected but not ready; commands are then dropped so the collector
        can run without hardware

    Notes:
      - commands are ASCII terminated by ".\\n"; replies are single lines
      - a trailing '.' or '+' on a reply is stripped
    """

    RETRIES = 3
    MAX_FAILURES = 20

    def __init__(
        self,
        name: str = "arduino",
        *,
        port: Optional[str] = None,
        baudrate: int = 115200,
        timeout: float = 1.0,
        logger=None,
    ):
        super().__init__(name)
        self._port = port
        self._baudrate = baudrate
        self._timeout = timeout
        self._ser: Optional[serial.Serial] = None
        self._lock = threading.Lock()
        self.logger = logger
        self._ready = False
        self._equipped = False
        self._failures = 0

    # -------------------------
    # Device lifecycle (sync)
    # -------------------------
    def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        if self._port == SIMULATED:
            self._log("arduino: running without hardware")
            return
        ports = [self._port] if self._port else [f"/dev/ttyUSB{i}" for i in range(10)]
        for port in ports:
            try:
                self._ser = serial.Serial(
                    port=port,
                    baudrate=self._baudrate,
                    parity=serial.PARITY_NONE,
                    stopbits=serial.STOPBITS_ONE,
                    bytesize=serial.EIGHTBITS,
                    timeout=self._timeout,
                )
                break
            except serial.SerialException:
                continue
        if self._ser is None:
            self._log("arduino: unable to open serial link")
            return
        # board resets when the port opens
        time.sleep(2)
        if self._command("ehello", force=True) != "hello":
            self._log("arduino: unable to communicate with arduino")
            return
        self._ready = True
        self._equipped = self._command("H") == "1"
        self._log("arduino: active and %s equipped" % ("is" if self._equipped else "not"))

    def stop(self) -> None:
        """No-op; actuators are stopped through their own devices."""
        pass

    def close(self) -> None:
        ser = self._ser
        self._ser = None
        self._ready = False
        if ser is not None:
            ser.close()
        self._connected = False

    # -------------------------
    # Link interface
    # -------------------------
    def is_ready(self) -> bool:
        return self._ready

    def is_equipped(self) -> bool:
        return self._equipped

    def is_simulated(self) -> bool:
        return self._port == SIMULATED

    def send(self, command: str) -> None:
        self._ensure_connected()
        self._command(command)

    def query(self, command: str) -> str:
        self._ensure_connected()
        return self._command(command)

    # -------------------------
    # Low-level I/O
    # -------------------------
    def _ensure_connected(self) -> None:
        if not self._connected:
            raise RuntimeError("ArduinoLink is not connected. Call connect() first.")

    def _command(self, command: str, force: bool = False) -> str:
        """Send one command and return its reply line ('' on no reply)."""
        if not (force or self._ready) or self._ser is None:
            return ""
        with self._lock:
            ser = self._ser
            ser.reset_input_buffer()
            for _ in range(self.RETRIES):
                try:
                    ser.write((command + ".\n").encode("ascii"))
                except serial.SerialException:
                    self._log("arduino: write failure, disabling")
                    self._ready = False
                    return ""
                line = ser.readline().decode("ascii", errors="replace").rstrip("\r\n")
                if line:
                    self._failures = 0
                    if line[-1] in ".+":
                        line = line[:-1]
                    return line
            self._failures += 1
            if self._failures > 2:
                self._log("arduino: no reply to command (%d, %s)" % (self._failures, command))
            if self._failures > self.MAX_FAILURES:
                if self.logger:
                    self.logger.fatal("lost contact with arduino")
                self._ready = False
            return ""

    def _log(self, msg: str) -> None:
        if self.logger:
            self.logger.debug(msg)


class PowerControl(Device):
    """Power to the pumps/valves (bit 1) and to the lights (bit 0)."""

    def __init__(self, name: str, link: ArduinoLink, logger=None):
        super().__init__(name)
        self.link = link
        self.logger = logger
        self._bits = 0

    def connect(self) -> None:
        self._connected = True

    def stop(self) -> None:
        self.off()

    def close(self) -> None:
        self._connected = False

    def get(self) -> int:
        return self._bits

    def set(self, bits: int) -> None:
        sbits = format(bits & 0b11, "02b")
        if self.logger:
            self.logger.trace("PowerControl(%s)", sbits)
        self._bits = bits & 0b11
        self.link.send("P" + sbits)

    def on(self) -> None:
        self.set(0b11)

    def off(self) -> None:
        self.set(0b00)
