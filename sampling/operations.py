# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Fluid delivery operations used by sampling scripts.

Rates are ml/min and volumes ml, so pumping `volume` at `rate` takes
`60 * volume / rate` seconds. Every wait goes through `interrupt.pause()`,
so an operator stop lands within 50 ms. `OverPressure`, `EmptyReservoir`
and `Cancelled` are never caught here; the cycle loop is responsible for
putting the hardware back into a safe state.
"""

from __future__ import annotations

import time
from typing import Tuple

import numpy as np

from devices.spectrometer import DEUTERIUM, TUNGSTEN, SHUTTER
from sampling.exceptions import OverPressure, EmptyReservoir

PRESSURE_CHECK_INTERVAL = 0.5
ADAPTIVE_PERIOD = 5.0
ADJUST_STEP = 0.5
ADJUST_ITERATIONS = 5
FLUSH_RATE = 4.0


class Operations:
    def __init__(self, ctx):
        self.ctx = ctx
        self.config = ctx.config
        self.logger = ctx.logger
        self.interrupt = ctx.interrupt

    # -------------------------
    # Safe state
    # -------------------------
    def idle_mode(self) -> None:
        """Turn off all pumps and lights and leave the valves in their default state."""
        ctx = self.ctx
        self.logger.details("going to idle mode")
        ctx.sample_pump.off()
        ctx.reference_pump.off()
        ctx.filter_valve.select(0)
        ctx.port_valve.select(0)
        if self.config.two_reagents():
            ctx.reagent1_pump.off()
            ctx.reagent2_pump.off()
            ctx.mix_valves.select(0, 0)
        ctx.spectrometer.set_lights(0)

    def _stop_pumps(self) -> None:
        ctx = self.ctx
        ctx.sample_pump.off()
        if self.config.two_reagents():
            ctx.reagent1_pump.off()
            ctx.reagent2_pump.off()

    def _restore_valves(self) -> None:
        self.ctx.filter_valve.select(0)
        if self.config.two_reagents():
            self.ctx.mix_valves.select(0, 0)

    def _run_pumps(self, sp_rate: float, r1_rate: float, r2_rate: float) -> None:
        ctx = self.ctx
        ctx.sample_pump.on(sp_rate)
        if self.config.two_reagents():
            ctx.reagent1_pump.on(r1_rate)
            ctx.reagent2_pump.on(r2_rate)

    def _check_reagents(self, volume: float, r1_frac: float, r2_frac: float) -> None:
        ctx = self.ctx
        for pump, frac, label in ((ctx.reagent1_pump, r1_frac, "reagent 1"),
                                  (ctx.reagent2_pump, r2_frac, "reagent 2")):
            needed = frac * volume
            available = pump.available()
            if available < needed:
                self.logger.warning("running out of %s", label)
                raise EmptyReservoir(pump.name, needed, available)

    def _check_pressure(self) -> None:
        status = self.ctx.status
        if status.over_pressure():
            raise OverPressure(status.filter_pressure(), self.config.max_pressure())

    # -------------------------
    # Rates
    # -------------------------
    def compute_pump_rates(self, total_rate: float, r1_frac: float, r2_frac: float) -> Tuple[float, float, float]:
        """
        Split `total_rate` into (sample, reagent1, reagent2) rates.

        If any channel would exceed its maximum, all three are scaled down
        by the same factor so the mixing ratio is preserved. With the basic
        hardware the sample pump carries the whole flow.
        """
        ctx = self.ctx
        self.logger.trace("compute_pump_rates(%.2fml/m, %.3f, %.3f)", total_rate, r1_frac, r2_frac)
        if not self.config.two_reagents():
            return min(total_rate, ctx.sample_pump.get_max_rate()), 0.0, 0.0
        r1_rate = r1_frac * total_rate
        r2_rate = r2_frac * total_rate
        sp_rate = total_rate - (r1_rate + r2_rate)
        scale = max(sp_rate / ctx.sample_pump.get_max_rate(),
                    r1_rate / ctx.reagent1_pump.get_max_rate(),
                    r2_rate / ctx.reagent2_pump.get_max_rate())
        if scale > 1.0:
            sp_rate /= scale
            r1_rate /= scale
            r2_rate /= scale
        self.logger.trace("compute_pump_rates returns %.2fml/m, %.2fml/m, %.2fml/m", sp_rate, r1_rate, r2_rate)
        return sp_rate, r1_rate, r2_rate

    # -------------------------
    # Samples
    # -------------------------
    def reference_sample(self, volume: float, ref_rate: float, sample_rate: float) -> None:
        """
        Fill the waveguide with reference fluid.

        When the reference reservoir cannot supply `volume`, the reference
        pump is disabled for the rest of the deployment and filtered seawater
        is pumped instead.
        """
        ctx = self.ctx
        self.logger.details("reference_sample(%.2fml, %.2fml/m, %.2fml/m)", volume, ref_rate, sample_rate)
        if self.config.two_reagents():
            ctx.mix_valves.select(0, 0)
        if ctx.reference_pump.is_enabled() and ctx.reference_pump.available() >= volume:
            ctx.reference_pump.on(ref_rate)
            self.interrupt.pause(60 * (volume / ref_rate))
            ctx.reference_pump.off()
        else:
            self.logger.error("running out of reference fluid, switching to filtered seawater")
            self._seawater_reference(volume, sample_rate)

    def _seawater_reference(self, volume: float, sample_rate: float) -> None:
        ctx = self.ctx
        ctx.reference_pump.disable()
        ctx.filter_valve.select(1)
        ctx.sample_pump.on(sample_rate)
        self.interrupt.pause(60 * (volume / sample_rate))
        ctx.sample_pump.off()
        ctx.filter_valve.select(0)

    def unfiltered_sample(self, volume: float, total_rate: float, r1_frac: float, r2_frac: float) -> None:
        """Draw seawater past the filter, mixed with reagents. A negative rate reverses the sample pump."""
        ctx = self.ctx
        self.logger.details("unfiltered_sample(%.2fml, %.2fml/m, %.3f, %.3f)", volume, total_rate, r1_frac, r2_frac)
        self._check_reagents(volume, r1_frac, r2_frac)

        sp_rate, r1_rate, r2_rate = self.compute_pump_rates(abs(total_rate), r1_frac, r2_frac)
        effective = sp_rate + r1_rate + r2_rate
        if total_rate < 0:
            sp_rate = -sp_rate

        ctx.filter_valve.select(0)
        if self.config.two_reagents():
            ctx.mix_valves.select(r1_rate > 0, r2_rate > 0)
        self._run_pumps(sp_rate, r1_rate, r2_rate)

        self.interrupt.pause(60 * (volume / effective))

        self._stop_pumps()
        if self.config.two_reagents():
            ctx.mix_valves.select(0, 0)
        self.logger.trace("unfiltered_sample returning")

    def filtered_sample(self, volume: float, total_rate: float, r1_frac: float, r2_frac: float) -> None:
        """
        Draw seawater through the particulate filter, checking the filter
        pressure every 500 ms. On over-pressure the pumps are left running
        and OverPressure propagates to the caller.
        """
        ctx = self.ctx
        self.logger.details("filtered_sample(%.2fml, %.2fml/m, %.3f, %.3f)", volume, total_rate, r1_frac, r2_frac)
        sp_rate, r1_rate, r2_rate = self.compute_pump_rates(abs(total_rate), r1_frac, r2_frac)
        effective = sp_rate + r1_rate + r2_rate
        if total_rate < 0:
            sp_rate = -sp_rate

        ctx.filter_valve.select(1)
        if self.config.two_reagents():
            ctx.mix_valves.select(r1_frac > 0, r2_frac > 0)
        self._run_pumps(sp_rate, r1_rate, r2_rate)

        start = time.monotonic()
        finish = start + 60 * (volume / effective)
        self._check_pressure()
        last_check = start

        self.interrupt.check()
        now = time.monotonic()
        while now < finish:
            if now - last_check >= PRESSURE_CHECK_INTERVAL:
                self._check_pressure()
                last_check = now
            else:
                self.interrupt.pause(min(PRESSURE_CHECK_INTERVAL - (now - last_check), finish - now))
            now = time.monotonic()

        self._stop_pumps()
        self._restore_valves()
        self.logger.trace("filtered_sample returning")

    def filtered_sample_adaptive(self, total_volume: float, r1_frac: float, r2_frac: float) -> None:
        """
        Filtered sample with the combined rate steered toward half the
        pressure limit.

        Starts at a fifth of the maximum safe rate. Every 5 s the rate is
        re-tuned by `adjust_rates()` and the pumps run on until
        `total_volume` has gone through.
        """
        ctx = self.ctx
        self.logger.details("filtered_sample_adaptive(%.1f ml, %.3f, %.3f)", total_volume, r1_frac, r2_frac)
        self._check_reagents(total_volume, r1_frac, r2_frac)

        sp_frac = 1.0 - (r1_frac + r2_frac)
        max_rate = ctx.sample_pump.get_max_rate()
        if self.config.two_reagents():
            max_rate = min(max_rate, ctx.reagent1_pump.get_max_rate(), ctx.reagent2_pump.get_max_rate())
        min_rate = max_rate / 100
        target = self.config.max_pressure() / 2.0

        ctx.filter_valve.select(1)
        if self.config.two_reagents():
            ctx.mix_valves.select(r1_frac > 0, r2_frac > 0)

        # start low to reduce the chance of over-pressure
        rate = max_rate / 5
        pumped = 0.0
        while pumped < total_volume:
            self.logger.debug("pumped %.2f out of %.2f", pumped, total_volume)
            self._run_pumps(rate * sp_frac, rate * r1_frac, rate * r2_frac)
            self.logger.debug("pump rate %.2f, pressure: %.1f", rate, ctx.status.filter_pressure())
            self._check_pressure()

            rate, squirt = self.adjust_rates(rate, min_rate, max_rate, r1_frac, r2_frac, target)
            self.interrupt.pause(ADAPTIVE_PERIOD)
            pumped += squirt + ADAPTIVE_PERIOD * rate / 60.0

        self._stop_pumps()
        self._restore_valves()
        self.logger.trace("filtered_sample_adaptive returning")

    def adjust_rates(self, rate: float, min_rate: float, max_rate: float,
                     r1_frac: float, r2_frac: float, target: float) -> Tuple[float, float]:
        """
        Proportional correction of the combined rate toward `target` psi.

        At most 5 steps of 0.5 s. Returns (new rate, volume pumped in ml).
        """
        self.logger.trace("adjust_rates(%.2fml/m, %.2fml/m, %.2fml/m, %.3f, %.3f, %.1fpsi)",
                          rate, min_rate, max_rate, r1_frac, r2_frac, target)
        sp_rate, r1_rate, r2_rate = self.compute_pump_rates(rate, r1_frac, r2_frac)
        pumped = 0.0
        for _ in range(ADJUST_ITERATIONS):
            self._check_pressure()
            pressure = self.ctx.status.filter_pressure()
            correction = rate * (target - pressure) / target
            if abs(correction) < 1e-4 or (correction > 0 and rate >= max_rate):
                break
            new_rate = min(max(rate + correction, min_rate), max_rate)
            if new_rate != rate:
                sp_rate, r1_rate, r2_rate = self.compute_pump_rates(new_rate, r1_frac, r2_frac)
                self._run_pumps(sp_rate, r1_rate, r2_rate)
                rate = new_rate
            self.interrupt.pause(ADJUST_STEP)
            pumped += ADJUST_STEP * (sp_rate + r1_rate + r2_rate) / 60.0
        return rate, pumped

    # -------------------------
    # Integration time
    # -------------------------
    def optimize_integration_time(self, volume: float, ref_rate: float, sample_rate: float) -> bool:
        """
        Adjust the spectrometer integration time, refreshing the waveguide
        between attempts. Reference fluid is used for the first three
        refills when available, filtered seawater after that.
        """
        ctx = self.ctx
        valid = ctx.spectrometer.adjust_int_time()
        for i in range(5):
            if valid:
                break
            if i < 3 and ctx.reference_pump.is_enabled() and ctx.reference_pump.available() >= volume:
                ctx.reference_pump.on(ref_rate)
                self.interrupt.pause(60 * (volume / ref_rate))
                ctx.reference_pump.off()
            else:
                if i == 3:
                    self.logger.warning("optimize_integration_time: no valid time using reference fluid, "
                                        "disabling reference pump")
                self._seawater_reference(volume, sample_rate)
            valid = ctx.spectrometer.adjust_int_time()
        if valid:
            self.logger.details("optimize_integration_time returning, integration time=%.2f",
                                ctx.spectrometer.get_int_time())
        else:
            self.logger.details("optimize_integration_time returning, no valid integration time")
        return valid

    # -------------------------
    # Fixed choreographies
    # -------------------------
    def flush(self) -> None:
        """Flush the mixing coils, filter and waveguide; leave reference fluid in the waveguide."""
        ctx = self.ctx
        ctx.filter_valve.select(0)
        if self.config.two_reagents():
            self.logger.details("flushing mixing coils")
            ctx.sample_pump.on(FLUSH_RATE)
            ctx.mix_valves.select(1, 0)
            self.interrupt.pause(10.0)
            ctx.mix_valves.select(1, 1)
            self.interrupt.pause(5.0)
            ctx.mix_valves.select(0, 1)
            self.interrupt.pause(10.0)

        self.logger.details("flushing filter and waveguide")
        if self.config.two_reagents():
            ctx.mix_valves.select(0, 0)
        ctx.sample_pump.on(FLUSH_RATE)
        self.interrupt.pause(30.0)
        ctx.sample_pump.off()

        if ctx.reference_pump.is_enabled():
            ctx.reference_pump.on(FLUSH_RATE)
            self.interrupt.pause(15.0)
            ctx.reference_pump.off()

    def purge_bubbles(self) -> None:
        """Clear air from the supply tubing, then flush. Port valve is set by the caller."""
        ctx = self.ctx
        if self.config.two_reagents():
            ctx.reagent1_pump.off()
            ctx.reagent2_pump.off()
            ctx.mix_valves.select(0, 0)
        ctx.sample_pump.off()
        ctx.reference_pump.off()
        ctx.filter_valve.select(0)

        self.logger.details("purging air bubbles")
        if ctx.reference_pump.is_enabled():
            ctx.reference_pump.on(FLUSH_RATE)
            self.interrupt.pause(10.0)
            ctx.reference_pump.off()
        if self.config.two_reagents():
            ctx.mix_valves.select(1, 0)
            ctx.reagent1_pump.on(FLUSH_RATE)
            self.interrupt.pause(10.0)
            ctx.reagent1_pump.off()
            ctx.mix_valves.select(0, 1)
            ctx.reagent2_pump.on(FLUSH_RATE)
            self.interrupt.pause(10.0)
            ctx.reagent2_pump.off()
        self.flush()

    # -------------------------
    # Diagnostics
    # -------------------------
    def _band_average(self, spectrum) -> float:
        wl = self.ctx.spectrometer.wavelengths
        band = (wl >= 500) & (wl < 600)
        return float(np.mean(np.asarray(spectrum)[band])) if band.any() else 0.0

    def optimize_concentration(self, filt_vol: float, filt_rate: float,
                               unf_vol: float, unf_tot: float, unf_rate: float) -> str:
        """
        Mean 500-600 nm intensity for a filtered baseline followed by
        successive unfiltered draws of `unf_vol` up to `unf_tot`.
        """
        ctx = self.ctx
        lit = DEUTERIUM | TUNGSTEN | SHUTTER
        ctx.filter_valve.select(1)
        ctx.sample_pump.on(filt_rate)
        self.interrupt.pause(60 * filt_vol / filt_rate)
        ctx.sample_pump.off()
        out = ["%7.1f" % self._band_average(ctx.spectrometer.get_spectrum(lit))]

        ctx.filter_valve.select(0)
        vol = 0.0
        while vol <= unf_tot:
            ctx.sample_pump.on(unf_rate)
            self.interrupt.pause(60 * unf_vol / unf_rate)
            ctx.sample_pump.off()
            out.append("%7.1f" % self._band_average(ctx.spectrometer.get_spectrum(lit)))
            vol += unf_vol
        return " ".join(out)
