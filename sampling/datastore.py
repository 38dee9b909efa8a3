# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""
Data records written for shore-side analysis.

One JSON object per line in `<datapath>/sn<serial>/raw/new<deploymentIndex>`.
Every record carries `serialNumber`, `index`, `recordType` and `dateTime`.
A deployment record starts a new file; spectrum records refer back to
earlier spectra (e.g. the dark and reference taken for the same sample)
through the index of the most recent record with the given label.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from sampling.logger import ERROR


class DataStore:
    def __init__(self, datapath, serial_number: str, state, ctx=None, logger=None):
        self.datapath = Path(datapath)
        self.serial_number = serial_number
        self.state = state
        self.ctx = ctx
        self.logger = logger
        self._lock = threading.Lock()
        self._fh = None
        self.current_index = 0
        self.deployment_index = 0
        self.spectrum_count = 0
        self.record_map: Dict[str, int] = {}
        self._index_ready = False

    def init_state(self) -> None:
        (self.current_index, self.deployment_index,
         self.spectrum_count, self.record_map) = self.state.get_datastore_state()
        self._index_ready = True

    def file_path(self, deployment_index: Optional[int] = None) -> Path:
        idx = self.deployment_index if deployment_index is None else deployment_index
        return self.datapath / f"sn{self.serial_number}" / "raw" / f"new{idx:010d}"

    # -------------------------
    # File handling
    # -------------------------
    def open(self) -> bool:
        with self._lock:
            return self._open()

    def _open(self) -> bool:
        if self._fh is not None:
            return True
        path = self.file_path()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(path, "a", encoding="utf-8")
        except OSError as e:
            self._report("cannot open data file %s: %s", path, e)
            return False
        return True

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None

    def is_open(self) -> bool:
        return self._fh is not None

    def _report(self, msg, *args) -> None:
        # not forwarded back here as a debug record
        if self.logger:
            self.logger.write(ERROR, "DataStore: " + msg, *args, forward=False)

    def _date_time(self) -> str:
        if self.ctx is not None:
            return self.ctx.status.date_time_string()
        return ""

    def _emit(self, record_type: str, fields: dict, spectrum: bool = False) -> bool:
        """Append one record and advance the index; caller holds the lock."""
        if not self._index_ready or not self._open():
            return False
        record = {
            "serialNumber": self.serial_number,
            "index": self.current_index,
            "recordType": record_type,
            "dateTime": self._date_time(),
        }
        if record_type != "deployment":
            record["deploymentIndex"] = self.deployment_index
        record.update(fields)
        self._fh.write(json.dumps(record) + "\n")
        self._fh.flush()
        self.current_index += 1
        if spectrum:
            self.spectrum_count += 1
        self.state.set_datastore_state(self.current_index, self.deployment_index,
                                       self.spectrum_count, self.record_map)
        return True

    # -------------------------
    # Records
    # -------------------------
    def save_deployment_record(self) -> bool:
        ctx = self.ctx
        with self._lock:
            if not self._index_ready:
                return False
            if self.current_index < 1:
                self._report("invalid current record index %d", self.current_index)
                return False
            self.deployment_index = self.current_index
            self.record_map = {"dark": 1}
            self.spectrum_count = 0
            if self._fh is not None:
                self._fh.close()
                self._fh = None
            return self._emit("deployment", {
                "label": ctx.config.deployment_label(),
                "spectSerialNumber": str(ctx.spectrometer.serial_number),
                "waveguideLength": round(ctx.config.waveguide_length(), 4),
                "wavelengths": [round(float(w), 2) for w in ctx.spectrometer.wavelengths],
            })

    def save_config_record(self) -> bool:
        with self._lock:
            return self._emit("config", {"configString": self.ctx.config.config_string()})

    def save_script_record(self, script_string: str) -> bool:
        with self._lock:
            return self._emit("script", {"scriptString": script_string})

    def save_maint_log_record(self, maint_log: str) -> bool:
        with self._lock:
            return self._emit("maintLog", {"maintLog": maint_log})

    def save_reset_record(self, reason: str) -> bool:
        with self._lock:
            return self._emit("reset", {"reason": reason})

    def save_debug(self, level: str, message: str) -> bool:
        with self._lock:
            if self._fh is None:
                return False
            return self._emit("debug", {"level": level, "message": message})

    def save_spectrum_record(self, spectrum, label: str, prereq1: str = "", prereq2: str = "") -> bool:
        with self._lock:
            if not self._index_ready:
                return False
            if self.deployment_index == 0:
                self._report("must save deployment record before spectra")
                return False
            self.record_map[label] = self.current_index
            indices = []
            for prereq in (prereq1, prereq2):
                if not prereq:
                    indices.append(0)
                elif prereq in self.record_map:
                    indices.append(self.record_map[prereq])
                else:
                    self._report("prereq label (%s) in record %d does not match any prior spectrum label",
                                 prereq, self.current_index)
                    indices.append(0)
            return self._emit("spectrum", {
                "prereq1index": indices[0],
                "prereq2index": indices[1],
                "label": label,
                "spectrum": [round(float(v), 2) for v in spectrum],
            }, spectrum=True)

    def save_cycle_summary(self, cycle_number: int) -> bool:
        ctx = self.ctx
        fields = {
            "cycleNumber": cycle_number,
            "temp": round(ctx.status.temperature(), 1),
            "battery": round(ctx.status.voltage(), 2),
            "pressure": round(ctx.status.max_filter_pressure(), 2),
            "depth": round(ctx.status.depth(), 2),
            "location": "%.6f,%.6f" % ctx.location.get_recorded_location(),
            "integrationTime": round(ctx.spectrometer.get_int_time(), 2),
            "referenceLevel": round(ctx.reference_pump.get_level(), 1),
        }
        if ctx.config.two_reagents():
            fields["reagent1Level"] = round(ctx.reagent1_pump.get_level(), 1)
            fields["reagent2Level"] = round(ctx.reagent2_pump.get_level(), 1)
        with self._lock:
            return self._emit("cycleSummary", fields)

    def get_spectrum_count(self) -> int:
        return self.spectrum_count
