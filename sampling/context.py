# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from devices.devices import DeviceRegistry
from devices.controller_devices.arduino import ArduinoLink, PowerControl, SIMULATED
from devices.pump import Pump, SupplyPump
from devices.pump_devices.arduino_pumps import ArduinoPump, ArduinoSupplyPump
from devices.spectrometer import Spectrometer
from devices.status import Status, LocationSensor
from devices.valve import Valve, MixValves
from devices.valves.arduino_valves import ArduinoValve
from devices.uv_detectors.simulated import SimulatedSpectrometer
from sampling.config import Config
from sampling.interrupt import Interrupt
from sampling.logger import RunLogger


@dataclass
class ActuatorContext:
    """The hardware seen by the sampling core, passed explicitly to each user."""

    config: Config
    logger: RunLogger
    interrupt: Interrupt
    link: ArduinoLink
    sample_pump: Pump
    reference_pump: SupplyPump
    reagent1_pump: SupplyPump
    reagent2_pump: SupplyPump
    filter_valve: Valve
    port_valve: Valve
    mix_valves: MixValves
    power: PowerControl
    status: Status
    location: LocationSensor
    spectrometer: Spectrometer
    registry: DeviceRegistry = field(default_factory=DeviceRegistry)

    def pumps(self):
        return [self.sample_pump, self.reference_pump, self.reagent1_pump, self.reagent2_pump]

    def pump(self, name: str) -> Optional[Pump]:
        return self.registry.get("pumps", name)

    def supply_pump(self, name: str) -> Optional[SupplyPump]:
        dev = self.registry.get("pumps", name)
        return dev if isinstance(dev, SupplyPump) else None

    def valve(self, name: str) -> Optional[Valve]:
        return self.registry.get("valves", name)

    def connect_all(self) -> None:
        for dev in self.registry.all_devices():
            dev.connect()

    def close_all(self) -> None:
        self.registry.close_all()


def build_context(config: Config, logger: RunLogger, interrupt: Interrupt, *, state=None,
                  port: Optional[str] = SIMULATED, spectrometer: Optional[Spectrometer] = None) -> ActuatorContext:
    """
    Create the standard collector hardware set and register it.

    Hardware ids: sample pump 1, reference 2, reagent1 3, reagent2 4;
    filter valve 1, port valve 2, mixing valves 3-5.
    """
    link = ArduinoLink("arduino", port=port, logger=logger)
    sample = ArduinoPump("samplePump", 1, 5.0, link=link, logger=logger, state=state)
    reference = ArduinoSupplyPump("referencePump", 2, link=link, logger=logger, state=state)
    reagent1 = ArduinoSupplyPump("reagent1Pump", 3, link=link, logger=logger, state=state)
    reagent2 = ArduinoSupplyPump("reagent2Pump", 4, link=link, logger=logger, state=state)
    filter_valve = ArduinoValve("filterValve", 1, link=link, logger=logger)
    port_valve = ArduinoValve("portValve", 2, link=link, logger=logger)
    mix1 = ArduinoValve("mix1Valve", 3, link=link, logger=logger)
    mid = ArduinoValve("midValve", 4, link=link, logger=logger)
    mix2 = ArduinoValve("mix2Valve", 5, link=link, logger=logger)
    mix = MixValves("mixValves", mix1, mid, mix2)
    power = PowerControl("power", link, logger=logger)
    status = Status("status", link=link, sample_pump=sample, config=config, state=state, logger=logger)
    location = LocationSensor("location", config=config)
    if spectrometer is None:
        spectrometer = SimulatedSpectrometer("spectrometer", link=link, interrupt=interrupt,
                                             state=state, logger=logger)

    registry = DeviceRegistry()
    registry.register("controllers", link.name, link)
    registry.register("controllers", power.name, power)
    for p in (sample, reference, reagent1, reagent2):
        registry.register("pumps", p.name, p)
    for v in (filter_valve, port_valve, mix1, mid, mix2):
        registry.register("valves", v.name, v)
    registry.register("valves", mix.name, mix)
    registry.register("sensors", status.name, status)
    registry.register("sensors", location.name, location)
    registry.register("spectrometers", spectrometer.name, spectrometer)

    return ActuatorContext(
        config=config, logger=logger, interrupt=interrupt, link=link,
        sample_pump=sample, reference_pump=reference, reagent1_pump=reagent1, reagent2_pump=reagent2,
        filter_valve=filter_valve, port_valve=port_valve, mix_valves=mix, power=power,
        status=status, location=location, spectrometer=spectrometer, registry=registry,
    )
