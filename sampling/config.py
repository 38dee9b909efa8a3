# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Collector configuration.

The config file is a two column CSV (`Parameter,Value`), e.g.

    Parameter,Value
    hardwareConfig,TWO_REAGENTS
    maxFilterPressure,20
    location,"27.33,-82.58"
    logLevel,details info debug

Unknown parameters and bad values are logged and skipped. The raw text is
kept for the data store's config record.
"""

from __future__ import annotations

import io
import threading
from pathlib import Path
from typing import Tuple

import pandas as pd

from sampling.exceptions import ConfigError

BASIC = "BASIC"
TWO_REAGENTS = "TWO_REAGENTS"

DEFAULTS = {
    "hardwareConfig": BASIC,
    "waveguideLength": 0.28,
    "maxFilterPressure": 25.0,
    "maxDepth": 20.0,
    "location": (0.0, 0.0),
    "deploymentLabel": "no label",
    "autoRun": -1,
    "powerSave": False,
    "portSwitching": True,
    "ignoreFailures": True,
    "logLevel": "details info debug",
}

INSTRUMENT_COLUMNS = ["InstrumentType", "DeviceNumber", "Name", "Port", "OtherParams"]


def parse_location(text: str) -> Tuple[float, float]:
    parts = [p.strip() for p in str(text).split(",")]
    if len(parts) != 2:
        raise ValueError(f"location must be 'lat,lon', got '{text}'")
    return float(parts[0]), float(parts[1])


def _flag(text: str) -> bool:
    return str(text).strip() == "1"


PARSERS = {
    "hardwareConfig": str,
    "waveguideLength": float,
    "maxFilterPressure": float,
    "maxDepth": float,
    "location": parse_location,
    "gpsCoordinates": parse_location,
    "deploymentLabel": str,
    "autoRun": int,
    "powerSave": _flag,
    "portSwitching": _flag,
    "ignoreFailures": _flag,
    "logLevel": str,
}


class Config:
    def __init__(self, config_file=None, logger=None):
        self.config_file = Path(config_file) if config_file else None
        self.logger = logger
        self._values = dict(DEFAULTS)
        self._config_string = ""
        self._lock = threading.Lock()

    def read(self) -> bool:
        """(Re)read the config file. Returns False if it cannot be opened."""
        if self.config_file is None:
            return False
        try:
            text = self.config_file.read_text()
        except OSError:
            if self.logger:
                self.logger.error("cannot open config file %s", self.config_file)
            return False
        errors = self.parse(text)
        # report after the lock is released
        for err in errors:
            if self.logger:
                self.logger.error(err)
        return True

    def parse(self, text: str):
        """Load settings from config text; returns a list of error messages."""
        df = pd.read_csv(io.StringIO(text), comment="#", dtype=str, skipinitialspace=True,
                         keep_default_na=False)
        if list(df.columns[:2]) != ["Parameter", "Value"]:
            raise ConfigError("config file must have a 'Parameter,Value' header")
        errors = []
        values = dict(DEFAULTS)
        for _, row in df.iterrows():
            key = row["Parameter"].strip()
            if not key:
                continue
            parser = PARSERS.get(key)
            if parser is None:
                errors.append(f"invalid line in config file: {key},{row['Value']}")
                continue
            try:
                value = parser(row["Value"].strip())
            except ValueError:
                errors.append(f"invalid value for {key}: {row['Value']}")
                continue
            if key == "hardwareConfig" and value not in (BASIC, TWO_REAGENTS):
                errors.append(f"invalid hardwareConfig: {value}")
                continue
            values["location" if key == "gpsCoordinates" else key] = value
        with self._lock:
            self._values = values
            self._config_string = text
        return errors

    def get(self, key: str):
        with self._lock:
            return self._values[key]

    def config_string(self) -> str:
        with self._lock:
            return self._config_string

    def hardware_config(self) -> str:
        return self.get("hardwareConfig")

    def two_reagents(self) -> bool:
        return self.get("hardwareConfig") == TWO_REAGENTS

    def waveguide_length(self) -> float:
        return self.get("waveguideLength")

    def max_pressure(self) -> float:
        return self.get("maxFilterPressure")

    def max_depth(self) -> float:
        return self.get("maxDepth")

    def location(self) -> Tuple[float, float]:
        return self.get("location")

    def deployment_label(self) -> str:
        return self.get("deploymentLabel")

    def auto_run(self) -> int:
        return self.get("autoRun")

    def power_save(self) -> bool:
        return self.get("powerSave")

    def port_switching(self) -> bool:
        return self.get("portSwitching")

    def ignore_failures(self) -> bool:
        return self.get("ignoreFailures")

    def log_level(self) -> str:
        return self.get("logLevel")


def load_instrument_config(config_file, logger=None):
    """Read the instrument table into a DataFrame (None if unreadable)."""
    try:
        config_df = pd.read_csv(config_file, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError) as e:
        if logger:
            logger.error("error loading instrument configuration: %s", e)
        return None
    missing = [c for c in INSTRUMENT_COLUMNS[:2] if c not in config_df.columns]
    if missing:
        raise ConfigError(f"instrument configuration missing columns: {missing}")
    for col in INSTRUMENT_COLUMNS:
        if col not in config_df.columns:
            config_df[col] = ""
    if logger:
        logger.debug("loaded instrument configuration from %s", config_file)
    return config_df


def read_maintenance_log(path, logger=None) -> str:
    try:
        return Path(path).read_text()
    except OSError:
        if logger:
            logger.warning("no maintenance log at %s", path)
        return ""
