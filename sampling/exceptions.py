# ------------------------------------------------------------------------------
# Software: PHYSS_COLLECTOR
# Copyright: (C) 2025 by Professor Andrew Zahrt
# This software is the intellectual property of Professor Andrew Zahrt
# Contributions by graduate students Scott Laverty are acknowledged.
# All rights reserved.
# ------------------------------------------------------------------------------

"""Exception types shared by the sampling core."""


class Cancelled(BaseException):
    """Raised in the sampling thread when an operator request interrupts it.

    Derives from BaseException so `except Exception` fault handlers never
    treat a routine stop as a failure.
    """


class SamplingFault(Exception):
    """Base for recoverable faults raised by delivery operations."""


class OverPressure(SamplingFault):
    def __init__(self, pressure, limit):
        super().__init__(f"filter pressure {pressure:.2f} psi exceeds {limit:.2f} psi")
        self.pressure = pressure
        self.limit = limit


class EmptyReservoir(SamplingFault):
    def __init__(self, name, needed, available):
        super().__init__(f"{name} needs {needed:.2f} ml but only {available:.2f} ml available")
        self.name = name
        self.needed = needed
        self.available = available


class ScriptSyntaxError(ValueError):
    """Compile error in a sampling script; `line` is 1-based."""

    def __init__(self, line, message):
        super().__init__(f"line {line}: {message}")
        self.line = line
        self.message = message


class ConfigError(ValueError):
    pass
