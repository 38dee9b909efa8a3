# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
The sampling thread: runs the compiled script once per sample cycle.

The thread starts parked and only samples after the operator console calls
start() or resume(). stop() parks it again at the next safe point, with the
pumps and lights off. A cycle interrupted by a stop or a fault is repeated
from the top, since the cycle number only advances once the end-of-cycle
flush has completed.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Optional

from devices.spectrometer import DEUTERIUM, TUNGSTEN, SHUTTER
from sampling.exceptions import Cancelled, OverPressure, ScriptSyntaxError
from sampling.operations import Operations
from sampling.script import (
    CompiledScript, read_script_file,
    On, Announce, Repeat, RepeatEnd, Pause, ReferenceSample, UnfilteredSample,
    FilteredSample, FilteredSampleAdaptive, GetSpectrum, GetDark, CheckLights,
    Lights, OptimizeIntegrationTime, RecordDepth, RecordLocation,
)

ALL_LIGHTS = DEUTERIUM | TUNGSTEN | SHUTTER
DARK = DEUTERIUM | TUNGSTEN


class ScriptInterp:
    LIGHT_WARMUP = 2.0
    SPECTRUM_BUDGET = 2000
    MAX_PRESSURE_RETRIES = 10
    IDLE_STEP = 5.0

    def __init__(self, ctx, datastore, state, operations: Optional[Operations] = None,
                 console=None, maint_log: str = ""):
        self.ctx = ctx
        self.logger = ctx.logger
        self.interrupt = ctx.interrupt
        self.config = ctx.config
        self.datastore = datastore
        self.state = state
        self.ops = operations or Operations(ctx)
        self.console = console
        self.maint_log = maint_log

        self.script = CompiledScript()
        self._script_lock = threading.Lock()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self.thread_id: Optional[int] = None
        self.quit_flag = False
        self.zombie = False
        self.cycle_number = 1
        self.current_line = 0

    def init_state(self) -> None:
        self.cycle_number = self.state.get_cycle_number()

    # -------------------------
    # Script loading
    # -------------------------
    def read_script(self, path) -> int:
        """
        Compile the script at `path` and make it current.

        Returns -1 if the file cannot be opened, the failing line number on
        a syntax error and 0 on success. The current script is kept on error.
        """
        try:
            script = read_script_file(path, self.ctx.reference_pump.get_max_rate())
        except OSError:
            self.logger.error("cannot open script file: %s", path)
            return -1
        except ScriptSyntaxError as e:
            self.logger.error("script error in %s: %s", path, e)
            return e.line
        with self._script_lock:
            self.script = script
        self.logger.details("successfully parsed script %s", path)
        self.logger.trace("script listing\n%s", script.listing())
        return 0

    def get_script(self) -> CompiledScript:
        with self._script_lock:
            return self.script

    # -------------------------
    # Thread control (main thread)
    # -------------------------
    def begin(self) -> None:
        """Start the sampling thread; returns once it can accept requests."""
        self.logger.details("ScriptInterp: starting thread")
        self._thread = threading.Thread(target=self.run, name="sampling", daemon=True)
        self._thread.start()
        self._ready.wait()
        # the thread parks itself at startup; start()/resume() must come after that
        while self._thread.is_alive() and not self.interrupt.in_progress(self.thread_id):
            time.sleep(0.01)

    def end(self) -> None:
        self.logger.details("ScriptInterp: terminating thread")
        self.quit_flag = True
        if self.thread_id is not None:
            self.interrupt.request(self.thread_id, urgent=True)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------
    # Operator control (console thread)
    # -------------------------
    def stop(self) -> None:
        """Suspend sampling; returns once the sampling thread has stopped."""
        with self._lock:
            self.logger.details("ScriptInterp: suspending sample collection")
            if not self.interrupt.in_progress(self.thread_id):
                self.interrupt.request(self.thread_id)

    def resume(self) -> None:
        with self._lock:
            self.logger.details("ScriptInterp: resuming sample collection")
            self.interrupt.clear(self.thread_id)

    def start(self) -> None:
        """Begin a new deployment at cycle 1."""
        with self._lock:
            self.logger.details("ScriptInterp: starting sample collection")
            self.set_cycle_number(1)
            self.interrupt.clear(self.thread_id)

    def sampling_enabled(self) -> bool:
        return not self.interrupt.in_progress(self.thread_id)

    def get_cycle_number(self) -> int:
        return self.cycle_number

    def set_cycle_number(self, n: int) -> None:
        self.cycle_number = n
        self.state.set_cycle_number(n)

    def get_current_line(self) -> int:
        return self.current_line

    # -------------------------
    # Sampling thread
    # -------------------------
    def _handler(self) -> None:
        self.ops.idle_mode()
        self.ctx.power.off()

    def _suspend(self) -> None:
        try:
            self.interrupt.self_interrupt()
        except Cancelled:
            pass

    def run(self) -> None:
        self.thread_id = self.interrupt.register_current("script interpreter", self._handler)
        self._ready.set()
        # wait for the operator to start sampling
        self._suspend()

        failed_cycles = 0
        while not self.quit_flag:
            self.ctx.power.on()
            if self.datastore.get_spectrum_count() > self.SPECTRUM_BUDGET:
                self.set_cycle_number(1)
            script = self.get_script()
            if 0 < script.max_cycle_count < self.cycle_number:
                self.datastore.close()
                self.logger.info("ScriptInterp: completed automated sampling")
                self.ops.idle_mode()
                self._suspend()
                continue

            try:
                self._run_cycle()
                failed_cycles = 0
            except OverPressure as e:
                self.ops.idle_mode()
                if failed_cycles < self.MAX_PRESSURE_RETRIES:
                    failed_cycles += 1
                    self.logger.warning("over-pressure (%s), restarting cycle", e)
                    self.datastore.save_reset_record(f"over-pressure: {e}")
                    continue
                self.logger.info("ScriptInterp: too many failed cycles, suspending sampling")
                self.datastore.close()
                failed_cycles = 0
                self._suspend()
                continue
            except Cancelled:
                self.logger.debug("ScriptInterp: resuming sampling following interrupt")
                continue
            except Exception as e:
                self.logger.error("ScriptInterp: caught %r, suspending sampling", e)
                self.datastore.save_reset_record(f"fault: {e!r}")
                self._suspend()
                continue

            if script.inter_cycle_period == 0:
                continue
            if not self._sleep_between_cycles(script):
                break
        self.logger.info("ScriptInterp: quitting sample collection")

    def _port_for(self, cycle_number: int) -> int:
        return cycle_number & 1 if self.config.port_switching() else 0

    def _run_cycle(self) -> None:
        n = self.cycle_number
        self.ctx.port_valve.select(self._port_for(n))
        if n == 1:
            self.ops.purge_bubbles()
            self.datastore.save_deployment_record()
            self.datastore.save_config_record()
            self.datastore.save_script_record(self.get_script().text)
            self.datastore.save_maint_log_record(self.maint_log)
        self.sample_cycle(n)
        # flush with the next cycle's intake so it starts without reference fluid
        self.ctx.port_valve.select(self._port_for(n + 1))
        self.ops.flush()
        # advance only after the flush, so an interrupted flush repeats this cycle
        self.set_cycle_number(n + 1)

    def _sleep_between_cycles(self, script: CompiledScript) -> bool:
        """Idle until the next cycle is due. Returns False if the thread should exit."""
        self.ctx.power.off()
        self.datastore.close()
        delta = self.next_cycle_delay(script.inter_cycle_period)
        self.logger.details("ScriptInterp: going to sleep until next cycle (%d minutes)", delta)

        link = self.ctx.link
        if self.config.power_save() and link.is_ready():
            # the board cuts power after its own delay and wakes us in delta minutes
            link.send(f"S{delta}")
            self.zombie = True
            self._suspend()
            return False

        try:
            self.ops.idle_mode()
            wake = time.monotonic() + 60.0 * delta
            while True:
                remaining = wake - time.monotonic()
                if remaining <= 0:
                    break
                self.interrupt.pause(min(self.IDLE_STEP, remaining))
            self.logger.details("ScriptInterp: waking up")
        except Cancelled:
            self.logger.details("ScriptInterp: resuming after interrupted sleep")
        except Exception as e:
            self.logger.error("ScriptInterp: caught %r while sleeping, suspending sampling", e)
            self._suspend()
        return True

    def next_cycle_delay(self, period: int) -> int:
        """Minutes until the next multiple of `period` minutes after midnight."""
        stamp = self.ctx.status.date_time_string()
        try:
            now = datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            now = datetime.now(timezone.utc)
        minutes = 60 * now.hour + now.minute
        return period - (minutes % period)

    def _announce(self, text: str) -> None:
        if self.console is not None:
            self.console.log_message(text)
        else:
            self.logger.info("announce: %s", text)

    def sample_cycle(self, cycle_number: int) -> None:
        """One pass through the current script."""
        ctx = self.ctx
        script = self.get_script()
        script.reset_counters()

        self.logger.border()
        self.logger.info("starting cycle %2d at %s", cycle_number, ctx.status.date_time_string())
        ctx.status.clear_max_filter_pressure()
        ctx.status.record_depth()

        # cycle the lamps to warm them up
        for _ in range(2):
            ctx.spectrometer.set_lights(ALL_LIGHTS)
            self.interrupt.pause(self.LIGHT_WARMUP)
            ctx.spectrometer.set_lights(0)
            self.interrupt.pause(self.LIGHT_WARMUP)

        step = 0
        while step < len(script):
            instr = script[step]
            if instr.line > 0:
                self.current_line = instr.line
            next_step = step + 1

            if not self.sampling_enabled():
                self.datastore.close()
                self.logger.details("stopping sample cycle at line %d", self.current_line)
                self.interrupt.check()
                raise Cancelled("script interpreter")

            self.logger.trace("sample_cycle: %s", instr)
            if isinstance(instr, On):
                if instr.step % instr.period != cycle_number % instr.period:
                    next_step = instr.next_step
            elif isinstance(instr, Repeat):
                if instr.count == 0:
                    instr.count = 1
                elif instr.count < instr.limit:
                    instr.count += 1
                else:
                    instr.count = 0
                    next_step = instr.next_step
            elif isinstance(instr, RepeatEnd):
                next_step = instr.first_step
            elif isinstance(instr, Announce):
                self._announce(instr.text)
            elif isinstance(instr, Pause):
                if instr.seconds > 0:
                    self.interrupt.pause(instr.seconds)
            elif isinstance(instr, ReferenceSample):
                self.ops.reference_sample(instr.volume, instr.ref_rate, instr.sample_rate)
            elif isinstance(instr, UnfilteredSample):
                self.ops.unfiltered_sample(instr.volume, instr.rate, instr.reagent1_frac, instr.reagent2_frac)
            elif isinstance(instr, FilteredSample):
                self.ops.filtered_sample(instr.volume, instr.rate, instr.reagent1_frac, instr.reagent2_frac)
            elif isinstance(instr, FilteredSampleAdaptive):
                self.ops.filtered_sample_adaptive(instr.volume, instr.reagent1_frac, instr.reagent2_frac)
            elif isinstance(instr, GetDark):
                spectrum = ctx.spectrometer.get_spectrum(DARK)
                self.datastore.save_spectrum_record(spectrum, instr.label)
            elif isinstance(instr, GetSpectrum):
                spectrum = ctx.spectrometer.get_spectrum(ALL_LIGHTS)
                self.datastore.save_spectrum_record(spectrum, instr.label, instr.prereq1, instr.prereq2)
            elif isinstance(instr, CheckLights):
                if not ctx.spectrometer.check_lights():
                    self.logger.warning("light failure")
            elif isinstance(instr, Lights):
                ctx.spectrometer.set_lights(instr.config)
            elif isinstance(instr, OptimizeIntegrationTime):
                self.ops.optimize_integration_time(instr.volume, instr.ref_rate, instr.sample_rate)
            elif isinstance(instr, RecordDepth):
                ctx.status.record_depth()
            elif isinstance(instr, RecordLocation):
                ctx.location.record_location()
            step = next_step

        self.logger.info("ending cycle %2d at %s", cycle_number, ctx.status.date_time_string())
        self.current_line = 0
        self.logger.info("temp: %.0fC, battery: %.1fV, pressure: %.1fpsi, integ time: %.2fms",
                         ctx.status.temperature(), ctx.status.voltage(),
                         ctx.status.max_filter_pressure(), ctx.spectrometer.get_int_time())
        self.datastore.save_cycle_summary(cycle_number)
        self.logger.border()
