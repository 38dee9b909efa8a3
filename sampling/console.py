# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

# sampling/console.py
"""
Operator console: one command per line from a text stream, one reply per command.

Manual hardware commands are refused while automated sampling is enabled.
"""

from __future__ import annotations

import json
import sys
import threading
from typing import Optional

import numpy as np

from devices.spectrometer import bits_string
from sampling.config import read_maintenance_log
from sampling.exceptions import Cancelled
from sampling.logger import LEVEL_NAMES, level_from_name
from sampling.operations import Operations


def parse_bits(text: str) -> int:
    """'101' -> 0b101"""
    if not text or any(c not in "01" for c in text):
        raise ValueError(f"invalid bit string '{text}'")
    return int(text, 2)


class ConsoleInterp:
    SPECTRUM_BIN = 147

    def __init__(self, ctx, interp, datastore, *, script_path, maint_log_path=None,
                 serial_number="none", stream_in=None, stream_out=None, operations: Optional[Operations] = None):
        self.ctx = ctx
        self.logger = ctx.logger
        self.interrupt = ctx.interrupt
        self.config = ctx.config
        self.interp = interp
        self.datastore = datastore
        self.script_path = script_path
        self.maint_log_path = maint_log_path
        self.serial_number = serial_number
        self.stream_in = stream_in if stream_in is not None else sys.stdin
        self.stream_out = stream_out if stream_out is not None else sys.stdout
        self.ops = operations or interp.ops
        self._out_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.thread_id: Optional[int] = None
        self.quit_flag = False
        self.zombie = False

    # -------------------------
    # Thread control
    # -------------------------
    def begin(self) -> None:
        self.logger.details("ConsoleInterp: starting thread")
        self._thread = threading.Thread(target=self.run, name="console", daemon=True)
        self._thread.start()

    def end(self) -> None:
        self.logger.details("ConsoleInterp: terminating thread")
        self.quit_flag = True
        if self.thread_id is not None:
            self.interrupt.request(self.thread_id, urgent=True)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    # -------------------------
    # Output
    # -------------------------
    def reply(self, text: str) -> None:
        with self._out_lock:
            self.stream_out.write(text + "\n")
            self.stream_out.flush()
        self.logger.debug("sending reply: %s", text)

    def log_message(self, text: str) -> None:
        """Unsolicited message for the operator (script `announce`)."""
        self.reply("log " + text)

    # -------------------------
    # Main loop
    # -------------------------
    def run(self) -> None:
        self.thread_id = self.interrupt.register_current("console interpreter", lambda: None)
        self.logger.debug("ConsoleInterp: starting")
        for line in iter(self.stream_in.readline, ""):
            if self.quit_flag:
                break
            words = line.split()
            if not words:
                continue
            if words[0] == "quit":
                self.logger.details("received quit command")
                self.reply("quitting on command")
                self.zombie = True
                break
            self.logger.debug("received command: %s", line.strip())
            try:
                self.do_command(words)
            except Cancelled:
                break
            except (ValueError, RuntimeError) as e:
                self.reply(f"error: {e}, try again")
        else:
            self.logger.details("ConsoleInterp: input closed")
        self.logger.debug("ConsoleInterp: exiting")

    def _refuse_if_sampling(self) -> bool:
        if self.interp.sampling_enabled():
            self.reply("cannot perform this operation while automated sampling is enabled")
            return True
        return False

    def _power_up(self) -> None:
        if self.ctx.power.get() != 0b11:
            self.ctx.power.on()

    # -------------------------
    # Command dispatch
    # -------------------------
    def do_command(self, words) -> None:
        cmd = words[0]
        if cmd.endswith("Pump"):
            return self._pump_control(words)
        if cmd.endswith("Supply"):
            return self._supply_control(words)
        if cmd.endswith("Valve") or cmd == "mixValves":
            return self._valve_control(words)

        if cmd == "start":
            if self._refuse_unless_stopped():
                return
            if self._reload_all():
                self.reply("starting script interpreter")
                self.interp.start()
        elif cmd == "resume":
            if self._refuse_unless_stopped():
                return
            if self._reload_all():
                self.reply("resuming script interpreter")
                self.interp.resume()
        elif cmd == "stop":
            if self.interp.sampling_enabled():
                self.reply("stopping script interpreter")
                self.interp.stop()
            else:
                self.reply("this operation only allowed when sampling is enabled")
        elif cmd == "reload":
            self._reload(words)
        elif cmd == "cycleNumber":
            self.reply(f"cycleNumber is {self.interp.get_cycle_number()}")
        elif cmd == "status":
            self.reply("status reply " + json.dumps(self.status_snapshot()))
        elif cmd == "snapshot":
            self._snapshot(words)
        elif cmd == "lights":
            self._lights(words)
        elif cmd == "spectrum":
            self._spectrum(words)
        elif cmd == "integrationTime":
            if len(words) == 1:
                self.reply(f"integration time is {self.ctx.spectrometer.get_int_time():.2f}")
            elif not self._refuse_if_sampling():
                ms = float(words[1])
                self.reply(f"setting integration time to {ms:.2f}")
                self.ctx.spectrometer.set_int_time(ms)
        elif cmd == "power":
            self._power(words)
        elif cmd == "pressure":
            self._pressure(words)
        elif cmd == "depth":
            self.reply(f"depth is {self.ctx.status.depth():.2f} meters")
        elif cmd in ("gps", "location"):
            lat, lon = self.ctx.location.get_recorded_location()
            self.reply(f"gps coordinates are {lat:.6f},{lon:.6f}")
        elif cmd == "logLevel":
            if len(words) == 1:
                self.reply("log level is " + LEVEL_NAMES[self.logger.echo_level])
            else:
                self.logger.echo_level = level_from_name(words[1])
                self.reply("setting log level to " + words[1])
        elif cmd == "optimizeConcentration":
            self._optimize_concentration(words)
        else:
            self.reply("unrecognized command: " + cmd)

    def _refuse_unless_stopped(self) -> bool:
        if self.interp.sampling_enabled():
            self.reply("this operation only allowed when sampling is disabled")
            return True
        return False

    # -------------------------
    # Script/config reloading
    # -------------------------
    def read_script(self) -> bool:
        line = self.interp.read_script(self.script_path)
        if line < 0:
            self.logger.warning("unable to open script file: %s", self.script_path)
            return False
        if line > 0:
            self.logger.error("syntax error in script file, line %d", line)
            return False
        return True

    def read_config(self) -> bool:
        if not self.config.read():
            return False
        self.logger.set_levels(self.config.log_level())
        return True

    def _reload_all(self) -> bool:
        if not self.read_script():
            self.reply("script error, try again")
            return False
        if not self.read_config():
            self.reply("error in config file, try again")
            return False
        return True

    def _reload(self, words) -> None:
        if len(words) < 2:
            self.reply("usage: reload (script|config|maintLog)")
            return
        if self.interp.sampling_enabled():
            self.reply("this operation not allowed while sampling in progress")
            return
        if words[1] == "script":
            if not self.read_script():
                self.reply("Error in script file, try again")
                return
            self.datastore.save_script_record(self.interp.get_script().text)
            self.logger.info("ConsoleInterp: reloaded and saved script")
            self.reply("Reloaded script file and saved to data file")
        elif words[1] == "config":
            if not self.read_config():
                self.reply("Error in config file, try again")
                return
            self.datastore.save_config_record()
            self.logger.info("ConsoleInterp: reloaded and saved config")
            self.reply("Reloaded config file and saved to data file")
        elif words[1] == "maintLog" and self.maint_log_path is not None:
            self.interp.maint_log = read_maintenance_log(self.maint_log_path, self.logger)
            self.reply("Reloaded maintenance file")
        else:
            self.reply("invalid reload target " + words[1])

    # -------------------------
    # Manual hardware control
    # -------------------------
    def _pump_control(self, words) -> None:
        pump = self.ctx.pump(words[0])
        if pump is None:
            self.reply("do not recognize command: " + words[0])
            return
        if len(words) == 1:
            self.reply(f"{pump.name} variables: {pump.get_current_rate():.2f}, {pump.get_max_rate():.2f}")
            return
        if self._refuse_if_sampling():
            return
        self._power_up()
        if words[1] == "on":
            if len(words) < 3:
                self.reply("missing pump rate argument")
                return
            pump.on(float(words[2]))
            self.reply(f"turning on {pump.name} at rate {pump.get_current_rate():.2f} ml/m")
        elif words[1] == "off":
            self.reply("turning off " + pump.name)
            pump.off()
        elif words[1] == "maxRate" and len(words) == 3:
            pump.set_max_rate(float(words[2]))
            self.reply(f"setting maxRate for {pump.name} to {pump.get_max_rate():.2f} ml/m")
        else:
            self.reply("unrecognized argument: " + words[1])

    def _valve_control(self, words) -> None:
        name = words[0]
        valve = self.ctx.valve(name)
        if valve is None:
            self.reply("do not recognize command: " + name)
            return
        if len(words) == 1:
            if name == "mixValves":
                m1, m2 = valve.state()
                self.reply(f"state is {m1}{m2}")
            else:
                self.reply(f"state is {valve.state()}")
            return
        if self._refuse_if_sampling():
            return
        self._power_up()
        x = parse_bits(words[1])
        self.reply(f"setting valve state ({name}) to {words[1]}")
        if name == "mixValves":
            valve.select(x >> 1, x & 1)
        else:
            valve.select(x)

    def _supply_control(self, words) -> None:
        pump = self.ctx.supply_pump(words[0].replace("Supply", "Pump"))
        if pump is None:
            self.reply("do not recognize command: " + words[0])
            return
        if len(words) == 1:
            self.reply(f"fluid level is {int(pump.get_level())} ml")
            return
        if self._refuse_if_sampling():
            return
        level = float(words[1])
        pump.set_level(level)
        self.reply(f"setting fluid level to {int(pump.get_level())} ml")

    def _lights(self, words) -> None:
        self._power_up()
        spect = self.ctx.spectrometer
        if len(words) == 1:
            self.reply("light status is " + bits_string(spect.get_lights()))
            return
        if self._refuse_if_sampling():
            return
        if len(words[1]) != 3:
            self.reply("usage: lights [ bbb ]")
            return
        spect.set_lights(parse_bits(words[1]))
        self.reply("light status is now " + words[1])

    def _spectrum(self, words) -> None:
        if self._refuse_if_sampling():
            return
        self._power_up()
        spect = self.ctx.spectrometer
        if len(words) == 1:
            lights = spect.get_lights()
        elif len(words[1]) != 3:
            self.reply("usage: spectrum [ bbb ]")
            return
        else:
            lights = parse_bits(words[1])
        spectrum = np.asarray(spect.get_spectrum(lights), dtype=float)
        # coarse bins of about 50 nm
        n = self.SPECTRUM_BIN
        padded = np.zeros(n * (len(spectrum) // n + 1))
        padded[:len(spectrum)] = spectrum
        bins = padded.reshape(-1, n).sum(axis=1) / n
        self.reply("[" + ", ".join(f"{b:.0f}" for b in bins) + "]")

    def _power(self, words) -> None:
        power = self.ctx.power
        if len(words) == 1:
            self.reply("power is " + bits_string(power.get(), 2))
        elif words[1] == "on":
            power.on()
        elif words[1] == "off":
            power.off()
        elif len(words[1]) == 2:
            self.reply("setting power to " + words[1])
            power.set(parse_bits(words[1]))
        else:
            self.reply("usage: power (on|off|bb)")

    def _pressure(self, words) -> None:
        status = self.ctx.status
        if len(words) == 1:
            self.reply(f"pressure: {status.upstream_pressure():.2f} {status.downstream_pressure():.2f} psi")
        elif words[1] == "set":
            value = float(words[2]) if len(words) > 2 else None
            if status.set_pressure(value):
                self.reply("updated pressure parameters")
            else:
                self.reply("not able to update pressure parameters")
        else:
            self.reply("usage: pressure [ set [ pvalue ] ]")

    def _optimize_concentration(self, words) -> None:
        if self._refuse_if_sampling():
            return
        # filter holds .35 ml, tubing .2-.4 ml
        filt_vol, filt_rate, unf_vol, unf_rate, unf_tot = 3.5, 1.0, 0.05, 1.0, 1.0
        if len(words) == 6:
            filt_vol, filt_rate, unf_vol, unf_rate, unf_tot = (float(w) for w in words[1:6])
        self._power_up()
        self.reply(f"optimizing concentration {filt_vol:4.2f} {filt_rate:4.2f} "
                   f"{unf_vol:5.3f} {unf_tot:4.2f} {unf_rate:4.2f} be patient")
        try:
            result = self.ops.optimize_concentration(filt_vol, filt_rate, unf_vol, unf_tot, unf_rate)
        finally:
            self.ops.idle_mode()
        self.log_message(result)

    # -------------------------
    # Snapshot
    # -------------------------
    def status_snapshot(self) -> dict:
        ctx = self.ctx
        m1, m2 = ctx.mix_valves.state()
        return {
            "dateTime": ctx.status.date_time_string(),
            "cycleNumber": self.interp.get_cycle_number(),
            "currentLine": self.interp.get_current_line(),
            "samplingEnabled": int(self.interp.sampling_enabled()),
            "hardwareConfig": self.config.hardware_config(),
            "samplePump": round(ctx.sample_pump.get_current_rate(), 2),
            "referencePump": round(ctx.reference_pump.get_current_rate(), 2),
            "reagent1Pump": round(ctx.reagent1_pump.get_current_rate(), 2),
            "reagent2Pump": round(ctx.reagent2_pump.get_current_rate(), 2),
            "referenceSupply": int(ctx.reference_pump.get_level()),
            "reagent1Supply": int(ctx.reagent1_pump.get_level()),
            "reagent2Supply": int(ctx.reagent2_pump.get_level()),
            "filterValve": ctx.filter_valve.state(),
            "mixValves": f"{m1}{m2}",
            "portValve": ctx.port_valve.state(),
            "lights": bits_string(ctx.spectrometer.get_lights()),
            "power": bits_string(ctx.power.get(), 2),
            "integrationTime": round(ctx.spectrometer.get_int_time(), 1),
            "filterPressure": round(ctx.status.filter_pressure(), 2),
            "maxPressure": round(ctx.status.max_filter_pressure(), 2),
            "temperature": round(ctx.status.temperature(), 1),
            "batteryVoltage": round(ctx.status.voltage(), 1),
            "depth": round(ctx.status.depth(), 2),
            "leak": int(ctx.status.leak()),
            "location": "%.6f,%.6f" % ctx.location.get_recorded_location(),
            "serialNumber": self.serial_number,
            "deploymentLabel": self.config.deployment_label(),
            "logLevel": LEVEL_NAMES[self.logger.echo_level],
        }

    def _snapshot(self, words) -> None:
        self.reply("snapshot reply " + json.dumps(self.status_snapshot()))
        if len(words) > 1:
            csv_path, png_path = self.ctx.spectrometer.save_snapshot(words[1])
            self.reply(f"saved last spectrum to {csv_path} and {png_path}")
