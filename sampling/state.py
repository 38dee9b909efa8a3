# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Collector state that must survive a restart: the cycle number, pump and
sensor calibration, reservoir levels, integration time and the data store
indices. Kept in memory and rewritten to a `Parameter,Value` CSV on every
change.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from sampling.exceptions import ConfigError

INT_KEYS = ("cycleNumber", "currentIndex", "deploymentIndex", "spectrumCount")


def encode_record_map(record_map: Dict[str, int]) -> str:
    return " ".join(f"{label}.{index}" for label, index in record_map.items())


def decode_record_map(text: str) -> Dict[str, int]:
    out = {}
    for item in str(text).split():
        label, _, index = item.rpartition(".")
        if label and index.isdigit():
            out[label] = int(index)
    return out


class CollectorState:
    def __init__(self, state_file=None, logger=None):
        self.state_file = Path(state_file) if state_file else None
        self.logger = logger
        self._lock = threading.Lock()
        self._done_reading = False
        self._values: Dict[str, object] = {
            "cycleNumber": 0,
            "currentIndex": 1,
            "deploymentIndex": 0,
            "spectrumCount": 0,
            "integrationTime": -1.0,
        }
        self._record_map: Dict[str, int] = {}

    def read(self) -> bool:
        """Load the state file. Returns False if it does not exist."""
        if self.state_file is None or not self.state_file.exists():
            with self._lock:
                self._done_reading = True
            return False
        df = pd.read_csv(self.state_file, comment="#", dtype=str, keep_default_na=False)
        if list(df.columns[:2]) != ["Parameter", "Value"]:
            raise ConfigError(f"state file {self.state_file} must have a 'Parameter,Value' header")
        with self._lock:
            for _, row in df.iterrows():
                key, value = row["Parameter"].strip(), row["Value"].strip()
                if key == "recordMap":
                    self._record_map = decode_record_map(value)
                elif key in INT_KEYS:
                    self._values[key] = int(value)
                elif key:
                    self._values[key] = float(value)
            self._done_reading = True
        return True

    def write(self) -> None:
        if self.state_file is None:
            return
        with self._lock:
            rows = [(k, v) for k, v in self._values.items()]
            rows.append(("recordMap", encode_record_map(self._record_map)))
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_file.with_suffix(".tmp")
        pd.DataFrame(rows, columns=["Parameter", "Value"]).to_csv(tmp, index=False)
        tmp.replace(self.state_file)

    def _get(self, key: str, default=None):
        with self._lock:
            if not self._done_reading:
                raise RuntimeError("CollectorState read before read() was called")
            return self._values.get(key, default)

    def _set(self, key: str, value) -> None:
        with self._lock:
            self._values[key] = value
        self.write()

    # -------------------------
    # Typed accessors
    # -------------------------
    def get_cycle_number(self) -> int:
        return int(self._get("cycleNumber"))

    def set_cycle_number(self, n: int) -> None:
        self._set("cycleNumber", int(n))

    def get_max_rate(self, pump_name: str, default: float) -> float:
        value = self._get(f"{pump_name}MaxRate")
        return float(value) if value and value > 0 else default

    def set_max_rate(self, pump_name: str, rate: float) -> None:
        self._set(f"{pump_name}MaxRate", float(rate))

    def get_supply_level(self, pump_name: str, default: float) -> float:
        value = self._get(f"{pump_name}SupplyLevel")
        return float(value) if value is not None and value >= 0 else default

    def set_supply_level(self, pump_name: str, level: float) -> None:
        self._set(f"{pump_name}SupplyLevel", float(level))

    def get_pressure_sensor(self, key: str, default: float) -> float:
        value = self._get(f"pressureSensor{key[0].upper()}{key[1:]}")
        return float(value) if value is not None else default

    def set_pressure_sensor(self, key: str, value: float) -> None:
        self._set(f"pressureSensor{key[0].upper()}{key[1:]}", float(value))

    def get_integration_time(self, default: float) -> float:
        value = self._get("integrationTime")
        return float(value) if value is not None and value > 0 else default

    def set_integration_time(self, ms: float) -> None:
        self._set("integrationTime", float(ms))

    def get_datastore_state(self):
        with self._lock:
            if not self._done_reading:
                raise RuntimeError("CollectorState read before read() was called")
            return (int(self._values["currentIndex"]), int(self._values["deploymentIndex"]),
                    int(self._values["spectrumCount"]), dict(self._record_map))

    def set_datastore_state(self, current_index: int, deployment_index: int,
                            spectrum_count: int, record_map: Optional[Dict[str, int]] = None) -> None:
        with self._lock:
            self._values["currentIndex"] = int(current_index)
            self._values["deploymentIndex"] = int(deployment_index)
            self._values["spectrumCount"] = int(spectrum_count)
            self._record_map = dict(record_map or {})
        self.write()
