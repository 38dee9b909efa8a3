# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

import threading
import time

import pytest

from devices.devices import Device, DeviceRegistry
from devices.controller_devices.arduino import ArduinoLink, PowerControl, SIMULATED
from devices.pump_devices.arduino_pumps import ArduinoPump, ArduinoSupplyPump, speed_command
from devices.spectrometer import DEUTERIUM, TUNGSTEN, SHUTTER
from devices.valve import MixValves
from devices.valves.arduino_valves import ArduinoValve
from sampling.exceptions import Cancelled


class RecordingLink:
    def __init__(self):
        self.sent = []

    def send(self, command):
        self.sent.append(command)


class Dummy(Device):
    def __init__(self, name, closed):
        super().__init__(name)
        self.closed = closed

    def connect(self):
        self._connected = True

    def close(self):
        self.closed.append(self.name)

    def stop(self):
        pass


def test_registry_register_and_lookup():
    reg = DeviceRegistry()
    dev = Dummy("p", [])
    reg.register("pumps", "p", dev)
    assert reg.get("pumps", "p") is dev
    assert reg.require("pumps", "p") is dev
    assert reg.get("valves", "p") is None
    with pytest.raises(KeyError):
        reg.register("pumps", "p", dev)
    with pytest.raises(KeyError):
        reg.require("valves", "p")
    with pytest.raises(TypeError):
        reg.register("pumps", "q", object())
    with pytest.raises(KeyError):
        reg.get("lasers", "p")


def test_registry_closes_dependents_first():
    closed = []
    reg = DeviceRegistry()
    reg.register("controllers", "link", Dummy("link", closed))
    reg.register("pumps", "pump", Dummy("pump", closed))
    reg.register("spectrometers", "spect", Dummy("spect", closed))
    reg.close_all()
    assert closed == ["spect", "pump", "link"]


@pytest.mark.parametrize("pump_id,rate,expected", [
    (1, 0.0, "p12048"),
    (1, 5.0, "p14088"),
    (1, -5.0, "p18"),
    (2, 2.5, "p23068"),
    (3, 5.0, "p34090"),
    (4, -1.0, "p40"),
])
def test_speed_command(pump_id, rate, expected):
    assert speed_command(pump_id, rate, 5.0) == expected


def test_pump_clamps_rate(logger):
    link = RecordingLink()
    pump = ArduinoPump("samplePump", 1, 4.0, link=link, logger=logger)
    pump.connect()
    pump.on(10.0)
    assert pump.get_current_rate() == 4.0
    pump.on(-10.0)
    assert pump.get_current_rate() == -4.0
    pump.off()
    assert link.sent == ["p14088", "p18", "p12048"]


def test_max_rate_is_persisted(logger, state):
    pump = ArduinoPump("samplePump", 1, 4.0, link=RecordingLink(), logger=logger, state=state)
    pump.connect()
    pump.set_max_rate(3.0)
    pump.set_max_rate(-1.0)
    assert pump.get_max_rate() == 3.0
    assert state.get_max_rate("samplePump", 0.0) == 3.0


def test_zero_max_rate_is_rejected(logger, state):
    pump = ArduinoPump("reagent1Pump", 3, 4.0, link=RecordingLink(), logger=logger, state=state)
    pump.connect()
    pump.set_max_rate(0.0)
    assert pump.get_max_rate() == 4.0
    assert state.get_max_rate("reagent1Pump", 4.0) == 4.0


def test_supply_level_drops_while_pumping(logger):
    pump = ArduinoSupplyPump("referencePump", 2, 600.0, link=RecordingLink(), logger=logger)
    pump.connect()
    pump.set_level(100.0)
    pump.on(600.0)
    time.sleep(0.2)
    pump.off()
    level = pump.get_level()
    assert 95.0 < level <= 98.0
    assert pump.available() == pytest.approx(level - pump.min_level)


def test_empty_supply_disables_pump(logger):
    link = RecordingLink()
    pump = ArduinoSupplyPump("reagent1Pump", 3, link=link, logger=logger)
    pump.connect()
    pump.set_level(pump.min_level - 1.0)
    pump.on(1.0)
    assert pump.get_current_rate() == 0.0
    assert not pump.is_enabled()
    # reverse is still allowed
    pump.on(-1.0)
    assert pump.get_current_rate() == -1.0
    pump.set_level(500.0)
    assert pump.is_enabled()
    pump.on(1.0)
    assert pump.get_current_rate() == 1.0


def test_set_level_is_limited(logger):
    pump = ArduinoSupplyPump("reagent2Pump", 4, link=RecordingLink(), logger=logger)
    pump.set_level(1000.0)
    assert pump.get_level() == pump.max_level
    pump.set_level(-5.0)
    assert pump.get_level() == 0.0


def test_valve_select():
    link = RecordingLink()
    valve = ArduinoValve("filterValve", 1, link=link)
    valve.select(1)
    valve.toggle()
    assert valve.state() == 0
    assert link.sent == ["v11", "v10"]
    with pytest.raises(ValueError):
        valve.select(2)


@pytest.mark.parametrize("coil1,coil2,mid", [(0, 0, 0), (1, 0, 1), (0, 1, 1), (1, 1, 0)])
def test_mix_valves_mid_follows_coils(coil1, coil2, mid):
    link = RecordingLink()
    valves = [ArduinoValve(n, i, link=link) for n, i in (("mix1Valve", 3), ("midValve", 4), ("mix2Valve", 5))]
    mix = MixValves("mixValves", *valves)
    mix.select(coil1, coil2)
    assert mix.state() == (coil1, coil2)
    assert valves[1].state() == mid


def test_simulated_link_drops_commands(logger):
    link = ArduinoLink(port=SIMULATED, logger=logger)
    with pytest.raises(RuntimeError):
        link.send("l000")
    link.connect()
    assert link.connected
    assert not link.is_ready()
    assert link.is_simulated()
    assert link.query("s") == ""
    power = PowerControl("power", link)
    power.on()
    assert power.get() == 0b11
    link.close()
    assert not link.connected


def test_spectrometer_lights_and_spectrum(ctx):
    spect = ctx.spectrometer
    spect.set_lights(TUNGSTEN | SHUTTER)
    assert spect.get_lights() == 0b011
    dark = spect.get_spectrum(DEUTERIUM | TUNGSTEN)
    assert dark.shape == (2048,)
    assert dark[0] == 0.0
    # lights are off after every acquisition
    assert spect.get_lights() == 0
    lit = spect.get_spectrum(DEUTERIUM | TUNGSTEN | SHUTTER)
    assert lit[spect.i440] > dark[spect.i440]


def test_spectrometer_check_lights(ctx):
    spect = ctx.spectrometer
    spect.set_lights(SHUTTER)
    assert spect.check_lights()
    assert spect.get_lights() == SHUTTER


def test_lamps_usable_while_acquisition_is_parked(ctx):
    spect = ctx.spectrometer
    spect.settle_time = 3.0
    interrupt = ctx.interrupt
    tid = []
    cancelled = []
    registered = threading.Event()

    def acquire():
        tid.append(interrupt.register_current("worker"))
        registered.set()
        try:
            spect.get_spectrum(DEUTERIUM | TUNGSTEN | SHUTTER)
        except Cancelled:
            cancelled.append(1)

    worker = threading.Thread(target=acquire, daemon=True)
    worker.start()
    assert registered.wait(1.0)
    time.sleep(0.2)
    # worker parks inside the settle pause
    interrupt.request(tid[0])

    manual = threading.Thread(target=spect.set_lights, args=(TUNGSTEN,), daemon=True)
    manual.start()
    manual.join(2.0)
    assert not manual.is_alive()
    assert spect.get_lights() == TUNGSTEN

    interrupt.clear(tid[0])
    worker.join(2.0)
    assert cancelled == [1]


def test_check_lights_releases_lamps_while_parked(ctx):
    spect = ctx.spectrometer
    spect.settle_time = 3.0
    interrupt = ctx.interrupt
    tid = []
    registered = threading.Event()

    def run():
        tid.append(interrupt.register_current("worker"))
        registered.set()
        try:
            spect.check_lights()
        except Cancelled:
            pass

    worker = threading.Thread(target=run, daemon=True)
    worker.start()
    assert registered.wait(1.0)
    time.sleep(0.2)
    interrupt.request(tid[0])

    manual = threading.Thread(target=spect.set_int_time, args=(50.0,), daemon=True)
    manual.start()
    manual.join(2.0)
    assert not manual.is_alive()
    assert spect.get_int_time() == 50.0

    interrupt.clear(tid[0])
    worker.join(2.0)
    assert not worker.is_alive()


def test_integration_time_is_persisted(ctx, state):
    ctx.spectrometer.set_int_time(42.0)
    assert state.get_integration_time(0.0) == 42.0


def test_adjust_int_time_stays_in_range(ctx):
    spect = ctx.spectrometer
    spect.adjust_int_time()
    assert 5.0 <= spect.get_int_time() <= 500.0


def test_save_snapshot(ctx, tmp_path):
    spect = ctx.spectrometer
    spect.get_spectrum(DEUTERIUM | TUNGSTEN | SHUTTER)
    csv_path, png_path = spect.save_snapshot(tmp_path / "snaps" / "last")
    assert csv_path.exists() and png_path.exists()
    lines = csv_path.read_text().splitlines()
    assert lines[0] == "Wavelength (nm),Intensity"
    assert len(lines) == 2049


def test_status_simulated_pressure_follows_sample_pump(ctx):
    status = ctx.status
    ctx.sample_pump.on(ctx.sample_pump.get_max_rate())
    status.update()
    assert status.filter_pressure() == pytest.approx(20.0, abs=0.2)
    ctx.sample_pump.off()
    status.update()
    assert status.filter_pressure() < 2.0
    assert status.max_filter_pressure() == pytest.approx(20.0, abs=0.2)
    status.clear_max_filter_pressure()
    assert status.max_filter_pressure() == 0.0
    assert status.date_time_string()
    assert not status.leak()
    assert not status.over_pressure()


def test_status_pressure_calibration(ctx, state):
    status = ctx.status
    assert not status.set_pressure()
    status.update()
    assert status.set_pressure(5.0)
    assert not status.set_pressure()
    assert status.set_pressure(20.0)
    assert status.set_pressure()
    assert state.get_pressure_sensor("upstreamOffset", -1.0) == 0.0


def test_location_sensor_records_config_location(ctx):
    ctx.config.parse('Parameter,Value\nlocation,"10.5,-20.25"\n')
    assert ctx.location.get_recorded_location() == (0.0, 0.0)
    ctx.location.record_location()
    assert ctx.location.get_recorded_location() == (10.5, -20.25)
