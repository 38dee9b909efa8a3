# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

from pathlib import Path
import sys
import numpy as np

from devices.spectrometer import Spectrometer

# Candidate SDK paths; the vendor installs the Python bindings outside site-packages
SDK_CANDIDATES = [
    Path(r"C:\Program Files\Ocean Optics\OceanDirect SDK\Python"),
    Path(r"C:\Program Files (x86)\Ocean Optics\OceanDirect SDK\Python"),
    Path("/opt/OceanDirect/Python"),
]


def load_ocean_direct():
    """Import the OceanDirect API, adding the SDK folder to sys.path if needed."""
    for p in SDK_CANDIDATES:
        if p.exists() and str(p) not in sys.path:
            sys.path.append(str(p))
            break
    from oceandirect.OceanDirectAPI import OceanDirectAPI, OceanDirectError
    return OceanDirectAPI, OceanDirectError


#Object for Ocean Optics spectrometers attached over USB
class OceanOpticsSpectrometer(Spectrometer):

    def __init__(self, name="spectrometer", num_scans=10, **kwargs):
        '''
        Spectrometer driver built on the OceanDirect SDK
        Reference: (https://www.oceanoptics.com/software/oceandirect/)
        Number of scans averaged by the device for each spectrum:param num_scans:
        '''
        super().__init__(name, **kwargs)
        self.num_scans = int(num_scans)
        if self.num_scans <= 0:
            raise ValueError("num_scans must be positive")
        self.od = None
        self.device = None
        self.model = None
        self._error_type = Exception

    # Initialize and open the device
    def _open(self):
        OceanDirectAPI, OceanDirectError = load_ocean_direct()
        self._error_type = OceanDirectError
        od = OceanDirectAPI()
        # Finds the USB devices, if 0, no spectrometers were found
        if od.find_usb_devices() == 0:
            raise RuntimeError("No spectrometer devices found")
        self.od = od
        self.device = od.open_device(od.get_device_ids()[0])
        self.device.set_scans_to_average(self.num_scans)
        self.device.set_nonlinearity_correction_usage(True)
        self.serial_number = self.device.get_serial_number()
        self.model = self.device.get_model()
        self.wavelengths = np.array(self.device.get_wavelengths(), dtype=float)
        if self.logger:
            self.logger.debug("spectrometer %s serial %s", self.model, self.serial_number)

    # Integration time is given in ms, the SDK takes microseconds
    def _apply_int_time(self, ms):
        self.ensure_init()
        self.device.set_integration_time(int(1000 * ms))

    def _acquire(self, lights):
        self.ensure_init()
        self.interrupt.check()
        try:
            spectrum = np.array(self.device.get_formatted_spectrum(), dtype=float)
        except self._error_type as e:
            raise RuntimeError(f"Error acquiring spectrum: {e}") from e
        # ignore spurious values
        spectrum[:2] = 0.0
        return spectrum

    def close(self):
        if self.device is not None:
            self.device.close_device()
            self.device = None
        self._connected = False

    def ensure_init(self):
        if self.device is None:
            raise RuntimeError(
                "Spectrometer not initialized; call `connect()` first"
            )
