# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

import time

import pytest

from sampling.exceptions import OverPressure, EmptyReservoir
from sampling import operations
from sampling.operations import Operations


@pytest.fixture
def ops(ctx):
    return Operations(ctx)


@pytest.fixture
def ops2(ctx2):
    return Operations(ctx2)


def test_compute_pump_rates_basic_uses_sample_pump_only(ops, ctx):
    assert ops.compute_pump_rates(3.0, 0.2, 0.1) == (3.0, 0.0, 0.0)
    sp, r1, r2 = ops.compute_pump_rates(50.0, 0.0, 0.0)
    assert sp == ctx.sample_pump.get_max_rate()
    assert r1 == r2 == 0.0


def test_compute_pump_rates_split(ops2):
    sp, r1, r2 = ops2.compute_pump_rates(2.0, 0.25, 0.25)
    assert sp == pytest.approx(1.0)
    assert r1 == pytest.approx(0.5)
    assert r2 == pytest.approx(0.5)


def test_compute_pump_rates_scales_to_preserve_ratio(ops2, ctx2):
    ctx2.reagent1_pump.set_max_rate(1.0)
    sp, r1, r2 = ops2.compute_pump_rates(8.0, 0.5, 0.0)
    assert r1 == pytest.approx(1.0)
    assert sp == pytest.approx(1.0)
    assert r2 == 0.0


def test_idle_mode(ops2, ctx2):
    ctx2.sample_pump.on(2.0)
    ctx2.filter_valve.select(1)
    ctx2.mix_valves.select(1, 1)
    ctx2.spectrometer.set_lights(0b111)
    ops2.idle_mode()
    assert ctx2.sample_pump.get_current_rate() == 0.0
    assert ctx2.filter_valve.state() == 0
    assert ctx2.mix_valves.state() == (0, 0)
    assert ctx2.spectrometer.get_lights() == 0


def test_reference_sample_uses_reference_pump(ops, ctx):
    ctx.reference_pump.set_level(100.0)
    t0 = time.monotonic()
    ops.reference_sample(0.01, 5.0, 2.0)
    assert time.monotonic() - t0 >= 0.1
    assert ctx.reference_pump.is_enabled()
    assert ctx.reference_pump.get_current_rate() == 0.0


def test_reference_sample_falls_back_to_seawater(ops, ctx):
    # less than the requested 4 ml above the minimum level
    ctx.reference_pump.set_level(ctx.reference_pump.min_level + 2.0)
    ops.reference_sample(4, 2400.0, 2400.0)
    assert not ctx.reference_pump.is_enabled()
    assert ctx.sample_pump.get_current_rate() == 0.0
    assert ctx.filter_valve.state() == 0


def test_reference_pump_stays_disabled_for_the_run(ops, ctx):
    ctx.reference_pump.set_level(ctx.reference_pump.min_level)
    ops.reference_sample(4, 2400.0, 2400.0)
    assert not ctx.reference_pump.is_enabled()
    ctx.reference_pump.on(1.0)
    assert ctx.reference_pump.get_current_rate() == 0.0


def test_unfiltered_sample_checks_reagents(ops2, ctx2):
    ctx2.reagent1_pump.set_level(ctx2.reagent1_pump.min_level + 0.5)
    ctx2.reagent2_pump.set_level(500.0)
    with pytest.raises(EmptyReservoir) as info:
        ops2.unfiltered_sample(10.0, 2.0, 0.1, 0.0)
    assert info.value.name == "reagent1Pump"
    assert ctx2.sample_pump.get_current_rate() == 0.0


def test_unfiltered_sample_runs_and_stops(ops2, ctx2):
    ctx2.reagent1_pump.set_level(500.0)
    ctx2.reagent2_pump.set_level(500.0)
    ops2.unfiltered_sample(0.005, 3.0, 0.1, 0.1)
    assert ctx2.sample_pump.get_current_rate() == 0.0
    assert ctx2.reagent1_pump.get_current_rate() == 0.0
    assert ctx2.mix_valves.state() == (0, 0)


def test_filtered_sample_completes_below_limit(ops, ctx, fake_status):
    fake_status.pressure = 5.0
    ops.filtered_sample(0.01, 3.0, 0.0, 0.0)
    assert ctx.sample_pump.get_current_rate() == 0.0
    assert ctx.filter_valve.state() == 0


def test_filtered_sample_raises_over_pressure(ops, ctx, fake_status):
    fake_status.pressure = ctx.config.max_pressure() + 1.0
    with pytest.raises(OverPressure) as info:
        ops.filtered_sample(10.0, 2.0, 0.0, 0.0)
    assert info.value.limit == ctx.config.max_pressure()


def test_filtered_sample_raises_on_later_poll(ctx, fake_status):
    ops = Operations(ctx)
    limit = ctx.config.max_pressure()
    calls = []

    def rising():
        calls.append(1)
        return limit + 1.0 if len(calls) > 2 else 1.0

    fake_status.over_pressure = lambda: rising() > limit
    t0 = time.monotonic()
    with pytest.raises(OverPressure):
        ops.filtered_sample(10.0, 2.0, 0.0, 0.0)
    # third poll happens about a second in
    assert time.monotonic() - t0 < 3.0
    assert len(calls) == 3


def test_adjust_rates_moves_toward_target(ops, ctx, fake_status):
    target = ctx.config.max_pressure() / 2.0
    fake_status.pressure = target / 2.0
    rate, pumped = ops.adjust_rates(1.0, 0.05, 5.0, 0.0, 0.0, target)
    assert rate > 1.0
    assert rate <= 5.0
    assert pumped > 0.0


def test_adjust_rates_over_pressure(ops, ctx, fake_status):
    fake_status.pressure = ctx.config.max_pressure() + 1.0
    with pytest.raises(OverPressure):
        ops.adjust_rates(1.0, 0.05, 5.0, 0.0, 0.0, 10.0)


def test_adjust_rates_stops_on_small_correction(ops, ctx, fake_status):
    target = 10.0
    fake_status.pressure = target
    t0 = time.monotonic()
    rate, pumped = ops.adjust_rates(2.0, 0.05, 5.0, 0.0, 0.0, target)
    assert rate == 2.0
    assert pumped == 0.0
    assert time.monotonic() - t0 < 0.4


@pytest.fixture
def fast_adaptive(monkeypatch):
    monkeypatch.setattr(operations, "ADAPTIVE_PERIOD", 0.05)
    monkeypatch.setattr(operations, "ADJUST_STEP", 0.01)


def test_filtered_sample_adaptive_stops_at_total_volume(ops, ctx, fake_status, fast_adaptive):
    # on target: every adjust_rates call returns at once with nothing pumped
    fake_status.pressure = ctx.config.max_pressure() / 2.0
    rate = ctx.sample_pump.get_max_rate() / 5
    per_period = 0.05 * rate / 60.0
    calls = []
    adjust = ops.adjust_rates

    def counting(*args):
        calls.append(args[0])
        return adjust(*args)

    ops.adjust_rates = counting
    ops.filtered_sample_adaptive(5.5 * per_period, 0.0, 0.0)
    assert len(calls) == 6
    assert calls[0] == pytest.approx(rate)
    assert ctx.sample_pump.get_current_rate() == 0.0
    assert ctx.filter_valve.state() == 0


def test_filtered_sample_adaptive_over_pressure_between_periods(ops, ctx, fake_status, fast_adaptive):
    limit = ctx.config.max_pressure()
    fake_status.pressure = limit / 2.0
    calls = []

    def spike(rate, *args):
        calls.append(rate)
        fake_status.pressure = limit + 1.0
        return rate, 0.0

    ops.adjust_rates = spike
    with pytest.raises(OverPressure):
        ops.filtered_sample_adaptive(10.0, 0.0, 0.0)
    assert len(calls) == 1
    # pumps are left for the interpreter's idle mode
    assert ctx.sample_pump.get_current_rate() > 0.0
    assert ctx.filter_valve.state() == 1


def test_optimize_concentration_reports_levels(ops, ctx, fake_status):
    out = ops.optimize_concentration(0.01, 6.0, 0.01, 0.025, 6.0)
    values = [float(v) for v in out.split()]
    assert len(values) == 4
    assert ctx.sample_pump.get_current_rate() == 0.0
