# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

import pytest

from sampling.config import Config
from sampling.context import build_context
from sampling.datastore import DataStore
from sampling.interrupt import Interrupt
from sampling.logger import RunLogger, WARNING
from sampling.state import CollectorState


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks test as slow running test")
    config.addinivalue_line(
        "markers", "hardware: marks test that require physical hardware"
    )


class FakeStatus:
    """Status stand-in with a settable filter pressure."""

    def __init__(self, config, pressure=0.0):
        self.config = config
        self.pressure = pressure
        self.depth_records = 0

    def filter_pressure(self):
        return self.pressure

    def over_pressure(self):
        return self.pressure > self.config.max_pressure()

    def max_filter_pressure(self):
        return self.pressure

    def clear_max_filter_pressure(self):
        pass

    def record_depth(self):
        self.depth_records += 1

    def date_time_string(self):
        return "2025-06-01 12:00:00"

    def temperature(self):
        return 20.0

    def voltage(self):
        return 12.0

    def depth(self):
        return 3.0


@pytest.fixture
def logger():
    return RunLogger(echo_level=WARNING)


@pytest.fixture
def state(tmp_path, logger):
    s = CollectorState(tmp_path / "state", logger=logger)
    s.read()
    return s


@pytest.fixture
def config(logger):
    return Config(logger=logger)


@pytest.fixture
def two_reagent_config(logger):
    c = Config(logger=logger)
    c.parse("Parameter,Value\nhardwareConfig,TWO_REAGENTS\n")
    return c


def make_context(config, logger, state):
    interrupt = Interrupt(logger)
    ctx = build_context(config, logger, interrupt, state=state)
    ctx.spectrometer.settle_time = 0.0
    ctx.connect_all()
    return ctx


@pytest.fixture
def ctx(config, logger, state):
    c = make_context(config, logger, state)
    yield c
    c.close_all()


@pytest.fixture
def ctx2(two_reagent_config, logger, state):
    c = make_context(two_reagent_config, logger, state)
    yield c
    c.close_all()


@pytest.fixture
def datastore(tmp_path, ctx, state, logger):
    ds = DataStore(tmp_path / "data", "42", state, ctx=ctx, logger=logger)
    ds.init_state()
    yield ds
    ds.close()


@pytest.fixture
def fake_status(ctx):
    s = FakeStatus(ctx.config)
    ctx.status = s
    return s
