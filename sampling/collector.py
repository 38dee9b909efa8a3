# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

# sampling/collector.py
"""
Data collector entry point.

The root directory holds the operator files:

    config          Parameter,Value settings
    script          sampling script
    state           persisted collector state (written by the collector)
    maintLog        maintenance log text
    serialNumber    instrument serial number
    instruments.csv optional instrument table (arduino port, spectrometer driver)
"""

import argparse
import time
from pathlib import Path

from devices.controller_devices.arduino import SIMULATED
from devices.uv_detectors.ocean_optics import OceanOpticsSpectrometer
from devices.uv_detectors.simulated import SimulatedSpectrometer
from sampling.config import Config, load_instrument_config, read_maintenance_log
from sampling.console import ConsoleInterp
from sampling.context import build_context
from sampling.datastore import DataStore
from sampling.interpreter import ScriptInterp
from sampling.interrupt import Interrupt
from sampling.logger import RunLogger
from sampling.state import CollectorState

VERSION = "2.0.0"
MAIN_PERIOD = 0.05
LINK_ATTEMPTS = 10


class FailureMonitor:
    """
    Watches the status readings for low battery, overheating and leaks.

    A failure must persist for 3 consecutive polls. With ignoreFailures set it
    is only logged, with the gap between log messages doubling each time.
    """

    CONSECUTIVE_LIMIT = 3

    def __init__(self, status, config, logger, clock=time.monotonic):
        self.status = status
        self.config = config
        self.logger = logger
        self.clock = clock
        self.consecutive = 0
        self.count = 0
        self.log_delay = 1.0
        self.last_log = None

    def check(self) -> bool:
        """Returns True when the collector must shut down."""
        low_bat = self.status.low_battery()
        too_hot = self.status.too_hot()
        leak = self.status.leak()
        if not (low_bat or too_hot or leak):
            self.consecutive = 0
            return False
        self.count += 1
        self.consecutive = min(self.consecutive + 1, 10)
        if self.consecutive < self.CONSECUTIVE_LIMIT:
            return False

        if not self.config.ignore_failures():
            if low_bat:
                self.logger.fatal("Critical failure: low voltage")
            if too_hot:
                self.logger.fatal("Critical failure: excessive heat")
            if leak:
                self.logger.fatal("Critical failure: leak detected")
            return True

        now = self.clock()
        if self.last_log is None or now - self.last_log > self.log_delay:
            if low_bat:
                self.logger.error("Critical failure(%d): low voltage", self.count)
            if too_hot:
                self.logger.error("Critical failure(%d): too hot", self.count)
            if leak:
                self.logger.error("Critical failure(%d): leak detected", self.count)
            self.last_log = now
            self.log_delay *= 2
        return False


def select_hardware(instruments, default_port=SIMULATED):
    """
    Pick the arduino port and spectrometer driver from the instrument table.
    Returns (port, spectrometer_kind); kind is "Simulated" or "OceanOptics".
    """
    port, kind = default_port, "Simulated"
    if instruments is None:
        return port, kind
    for _, row in instruments.iterrows():
        instrument_type = row["InstrumentType"].strip()
        if instrument_type == "Arduino":
            port = row["Port"].strip() or None
        elif instrument_type == "Spectrometer":
            kind = row["OtherParams"].strip() or "Simulated"
    return port, kind


def read_serial_number(root: Path) -> str:
    try:
        return (root / "serialNumber").read_text().strip()
    except OSError:
        return "0"


def connect_hardware(ctx, interrupt, state, logger) -> None:
    """Connect every device; a spectrometer that fails to open is replaced by the simulator."""
    for attempt in range(LINK_ATTEMPTS):
        ctx.link.connect()
        if ctx.link.is_ready() or ctx.link.is_simulated():
            break
        ctx.link.close()
        time.sleep(1)
    if ctx.link.is_ready():
        logger.info("Arduino present and communicating%s",
                    "" if attempt == 0 else f" after {attempt} failed attempts")
        ctx.link.send("F0" if ctx.config.ignore_failures() else "F1")
        logger.info("Arduino control board is %s", "present" if ctx.link.is_equipped() else "missing")
    else:
        logger.info("No arduino detected, proceeding without it")

    try:
        ctx.spectrometer.connect()
    except (ImportError, RuntimeError) as e:
        logger.warning("no spectrometer detected (%s): proceeding with simulated device", e)
        sim = SimulatedSpectrometer("spectrometer", link=ctx.link, interrupt=interrupt,
                                    state=state, logger=logger)
        ctx.registry.unregister("spectrometers", ctx.spectrometer.name)
        ctx.registry.register("spectrometers", sim.name, sim)
        ctx.spectrometer = sim
        sim.connect()

    for dev in ctx.registry.all_devices():
        if not dev.connected:
            dev.connect()


def wrapup(ctx, console, interp, datastore, logger, crit_fail: bool) -> int:
    console.end()
    interp.end()
    console.join(1.0)
    interp.join(5.0)
    ctx.power.off()
    logger.info("collector terminating at %s: %s", ctx.status.date_time_string(),
                "critical failure" if crit_fail else "normal completion")
    logger.datastore = None
    datastore.close()
    if ctx.link.is_ready():
        ctx.link.send("S0")
    ctx.close_all()
    logger.close()
    return 1 if crit_fail else 0


def build_parser():
    ap = argparse.ArgumentParser(description="Water chemistry data collector")
    ap.add_argument("--root", default="/usr/local/physs", help="directory holding config, script and state")
    ap.add_argument("--data", default="/usr/local/physsData", help="directory for raw data files")
    ap.add_argument("--serial", default=None, help="serial number (default: <root>/serialNumber)")
    ap.add_argument("--port", default=None, help="arduino serial port, or 'simulated'")
    ap.add_argument("--log-dir", default=None, help="directory for the run log (default: <root>/logs)")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    root = Path(args.root)
    logger = RunLogger(args.log_dir or root / "logs", run_name="collector")

    serial_number = args.serial or read_serial_number(root)
    config = Config(root / "config", logger=logger)
    if not config.read():
        logger.fatal("collector: unable to read config file")
        return 1
    logger.set_levels(config.log_level())
    logger.info("read config file")

    state = CollectorState(root / "state", logger=logger)
    if not state.read():
        logger.warning("collector: no state file, starting from defaults")
    maint_log = read_maintenance_log(root / "maintLog", logger)

    instruments = None
    if (root / "instruments.csv").exists():
        instruments = load_instrument_config(root / "instruments.csv", logger)
    port, kind = select_hardware(instruments)
    if args.port is not None:
        port = args.port

    interrupt = Interrupt(logger)
    spectrometer = None
    if kind == "OceanOptics":
        spectrometer = OceanOpticsSpectrometer("spectrometer", link=None, interrupt=interrupt,
                                               state=state, logger=logger)
    ctx = build_context(config, logger, interrupt, state=state, port=port, spectrometer=spectrometer)
    if spectrometer is not None:
        spectrometer.link = ctx.link
    connect_hardware(ctx, interrupt, state, logger)

    datastore = DataStore(args.data, serial_number, state, ctx=ctx, logger=logger)
    datastore.init_state()
    logger.datastore = datastore
    logger.border()
    logger.info("Starting data collector on PHySS %s (ver.%s) at %s",
                serial_number, VERSION, ctx.status.date_time_string())

    interp = ScriptInterp(ctx, datastore, state, maint_log=maint_log)
    interp.init_state()
    console = ConsoleInterp(ctx, interp, datastore, script_path=root / "script",
                            maint_log_path=root / "maintLog", serial_number=serial_number)
    interp.console = console
    console.read_script()

    ctx.power.set(0b00)
    # pumps must come up stopped before power is applied
    interp.ops.idle_mode()
    console.begin()
    interp.begin()
    ctx.status.update()
    ctx.status.record_depth()
    ctx.location.record_location()

    auto_run = config.auto_run()
    deadline = time.monotonic() + 60.0 * auto_run if auto_run >= 0 else None
    monitor = FailureMonitor(ctx.status, config, logger)
    try:
        while True:
            t0 = time.monotonic()
            ctx.status.update()
            if deadline is not None and t0 > deadline:
                deadline = None
                if not interp.sampling_enabled():
                    if console.read_script() and console.read_config():
                        logger.info("collector: starting automated sampling")
                        interp.resume()
                    else:
                        logger.error("collector: script or config error, auto run skipped")
            if monitor.check():
                return wrapup(ctx, console, interp, datastore, logger, True)
            if console.zombie:
                logger.debug("main: detected console termination")
                return wrapup(ctx, console, interp, datastore, logger, False)
            if interp.zombie:
                logger.debug("main: detected sampling thread termination")
                return wrapup(ctx, console, interp, datastore, logger, False)
            elapsed = time.monotonic() - t0
            if elapsed < MAIN_PERIOD:
                time.sleep(MAIN_PERIOD - elapsed)
    except KeyboardInterrupt:
        logger.info("collector: interrupted from keyboard")
        return wrapup(ctx, console, interp, datastore, logger, False)


if __name__ == "__main__":
    raise SystemExit(main())
