from dataclasses import dataclass

import numpy as np
import pandas as pd

from .dsp_utils import SignalProcessor
from .errors import AxisMismatch
from .units import Q, PhysicalQuantity, unit_symbol


def _strictly_increasing(values):
    return bool(np.all(np.diff(np.asarray(values, dtype=float)) > 0))


@dataclass(frozen=True, eq=False)
class FrequencySeries:
    """(frequency, value) pairs on a strictly increasing frequency axis."""

    frequency: PhysicalQuantity
    values: PhysicalQuantity
    label: str = ""

    def __post_init__(self):
        frequency = self.frequency
        if not isinstance(frequency, PhysicalQuantity):
            frequency = Q(frequency, "Hz")
        frequency = frequency.to("Hz")
        if np.ndim(frequency.value) != 1:
            raise AxisMismatch("frequency axis must be one-dimensional")
        if not _strictly_increasing(frequency.value):
            raise AxisMismatch(f"frequency axis of {self.label or 'series'} is not strictly increasing")
        if np.shape(self.values.value) != np.shape(frequency.value):
            raise AxisMismatch(
                f"{len(frequency)} frequencies but {np.size(self.values.value)} values in {self.label or 'series'}"
            )
        object.__setattr__(self, "frequency", frequency)

    def __len__(self):
        return len(self.frequency)

    def to(self, unit):
        return FrequencySeries(self.frequency, self.values.to(unit), self.label)

    def smoothed(self, half_width, degree):
        """Savitzky-Golay smoothed copy; loses `half_width` samples at each end."""
        values = SignalProcessor.smooth_trace(self.values, half_width, degree)
        n = len(self)
        return FrequencySeries(self.frequency[half_width:n - half_width], values, self.label)

    def rolling_mean(self, window):
        """Trailing moving average; each mean is attached to its window's last frequency."""
        values = SignalProcessor.moving_average(self.values, window)
        return FrequencySeries(self.frequency[window - 1:], values, self.label)

    def to_frame(self, frequency_unit="Hz", value_unit=None):
        value_unit = value_unit or self.values.unit
        values = self.values.to(value_unit)
        return pd.DataFrame({
            f"frequency [{frequency_unit}]": self.frequency.magnitude(frequency_unit),
            f"{self.label or 'value'} [{unit_symbol(values.unit)}]": values.value,
            f"{self.label or 'value'} error [{unit_symbol(values.unit)}]": values.uncertainty,
        })


@dataclass(frozen=True, eq=False)
class MeasurementTrace:
    """
    Raw instrument export: frequency [Hz] against a logged reading.

    `kind` names the reading: "dBm" (power), "dB" (gain) or a unit
    expression for an already-reduced density such as "V/sqrt(Hz)".
    Frequencies keep their source order; reduction validates them.
    """

    frequency: np.ndarray
    values: np.ndarray
    kind: str = "dBm"
    source: str = ""

    def __post_init__(self):
        frequency = np.array(self.frequency, dtype=float)
        values = np.array(self.values, dtype=float)
        if frequency.ndim != 1 or values.ndim != 1:
            raise AxisMismatch("trace columns must be one-dimensional")
        if len(frequency) != len(values):
            raise AxisMismatch(f"{len(frequency)} frequencies but {len(values)} readings in {self.source or 'trace'}")
        frequency.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, "frequency", frequency)
        object.__setattr__(self, "values", values)

    def __len__(self):
        return len(self.frequency)

    @property
    def is_increasing(self):
        return _strictly_increasing(self.frequency)

    def frequency_axis(self):
        if not self.is_increasing:
            raise AxisMismatch(f"frequency column of {self.source or 'trace'} is not strictly increasing")
        return Q(self.frequency, "Hz")
