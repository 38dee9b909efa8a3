# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

import io
import json
import sys

import pandas as pd
import pytest

from devices.controller_devices.arduino import SIMULATED
from devices.uv_detectors.simulated import SimulatedSpectrometer
from sampling.collector import (
    FailureMonitor, select_hardware, read_serial_number, connect_hardware, build_parser, main,
)
from sampling.config import Config
from sampling.context import build_context
from sampling.interrupt import Interrupt


class AlarmStatus:
    def __init__(self):
        self.low = False
        self.hot = False
        self.wet = False

    def low_battery(self):
        return self.low

    def too_hot(self):
        return self.hot

    def leak(self):
        return self.wet


class ListLogger:
    def __init__(self):
        self.lines = []

    def fatal(self, msg, *args):
        self.lines.append(("fatal", msg % args))

    def error(self, msg, *args):
        self.lines.append(("error", msg % args))


def strict_config():
    c = Config()
    c.parse("Parameter,Value\nignoreFailures,0\n")
    return c


def test_failure_must_persist_three_polls():
    status, log = AlarmStatus(), ListLogger()
    monitor = FailureMonitor(status, strict_config(), log)
    status.wet = True
    assert not monitor.check()
    assert not monitor.check()
    status.wet = False
    assert not monitor.check()
    status.wet = True
    assert not monitor.check()
    assert not monitor.check()
    assert monitor.check()
    assert log.lines == [("fatal", "Critical failure: leak detected")]


def test_ignored_failures_are_logged_with_backoff():
    status, log = AlarmStatus(), ListLogger()
    now = [0.0]
    monitor = FailureMonitor(status, Config(), log, clock=lambda: now[0])
    status.low = True
    for _ in range(3):
        assert not monitor.check()
    assert log.lines == [("error", "Critical failure(3): low voltage")]
    # within the 2 s backoff
    now[0] = 1.5
    monitor.check()
    assert len(log.lines) == 1
    now[0] = 2.5
    monitor.check()
    assert len(log.lines) == 2
    assert monitor.log_delay == 4.0


def test_select_hardware():
    assert select_hardware(None) == (SIMULATED, "Simulated")
    table = pd.DataFrame({
        "InstrumentType": ["Arduino", "Spectrometer"],
        "DeviceNumber": ["1", "1"],
        "Port": ["/dev/ttyACM0", ""],
        "OtherParams": ["", "OceanOptics"],
    })
    assert select_hardware(table) == ("/dev/ttyACM0", "OceanOptics")
    table.loc[0, "Port"] = ""
    assert select_hardware(table) == (None, "OceanOptics")


def test_read_serial_number(tmp_path):
    assert read_serial_number(tmp_path) == "0"
    (tmp_path / "serialNumber").write_text("17\n")
    assert read_serial_number(tmp_path) == "17"


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.root == "/usr/local/physs"
    assert args.data == "/usr/local/physsData"
    assert args.port is None


class BrokenSpectrometer(SimulatedSpectrometer):
    def _open(self):
        raise RuntimeError("no device found")


def test_connect_hardware_falls_back_to_simulated_spectrometer(config, logger, state):
    interrupt = Interrupt(logger)
    broken = BrokenSpectrometer("spectrometer", link=None, interrupt=interrupt, state=state, logger=logger)
    ctx = build_context(config, logger, interrupt, state=state, spectrometer=broken)
    broken.link = ctx.link
    connect_hardware(ctx, interrupt, state, logger)
    assert ctx.spectrometer is not broken
    assert isinstance(ctx.spectrometer, SimulatedSpectrometer)
    assert ctx.registry.get("spectrometers", "spectrometer") is ctx.spectrometer
    assert all(dev.connected for dev in ctx.registry.all_devices())
    ctx.close_all()


@pytest.mark.slow
def test_main_runs_until_quit(tmp_path, monkeypatch):
    root = tmp_path / "root"
    root.mkdir()
    (root / "config").write_text("Parameter,Value\nlogLevel,warning debug info\n")
    (root / "script").write_text("run 1 0\nannounce hi\n")
    (root / "serialNumber").write_text("7\n")
    out = io.StringIO()
    monkeypatch.setattr(sys, "stdin", io.StringIO("status\nquit\n"))
    monkeypatch.setattr(sys, "stdout", out)
    rc = main(["--root", str(root), "--data", str(tmp_path / "data"),
               "--port", SIMULATED, "--log-dir", str(tmp_path / "logs")])
    assert rc == 0
    replies = [line for line in out.getvalue().splitlines() if line.startswith("status reply")]
    assert json.loads(replies[0][len("status reply "):])["serialNumber"] == "7"
    assert list((tmp_path / "logs").glob("*_collector.csv"))


def test_main_without_config(tmp_path):
    assert main(["--root", str(tmp_path), "--port", SIMULATED, "--log-dir", str(tmp_path / "logs")]) == 1
