import numpy as np
from scipy import signal

from .errors import ConfigurationError, DomainError, NonPhysicalParameter
from .units import Q, PhysicalQuantity


class SignalProcessor:
    """
    Static utility class for instrument-level conversions and smoothing
    of frequency-domain traces.
    """

    @staticmethod
    def dBm_to_voltage_peak_to_peak(dBm, impedance=Q(50, "Ω")):
        """
        Converts a logged power (dBm, re 1 mW) into peak-to-peak volts.

        Logic:
            P = 10^((dBm - 30) / 10)  [W]
            V_rms = sqrt(P * Z)
            V_pp = 2 * sqrt(2) * V_rms   (sinusoid into a real impedance Z)
        """
        if not isinstance(impedance, PhysicalQuantity):
            impedance = Q(impedance, "Ω")
        if np.any(np.asarray(impedance.value) <= 0):
            raise NonPhysicalParameter(f"system impedance must be positive, got {impedance}")
        power = Q(np.power(10.0, (np.asarray(dBm, dtype=float) - 30) / 10), "W")
        v_rms = (power * impedance).sqrt()
        return (v_rms * 2 * np.sqrt(2)).to("V")

    @staticmethod
    def dB_to_voltage_ratio(dB):
        """Logarithmic voltage gain -> linear ratio: 10^(dB/20)"""
        return np.power(10.0, np.asarray(dB, dtype=float) / 20)

    @staticmethod
    def voltage_ratio_to_dB(ratio):
        """Linear voltage ratio -> dB: 20*log10(ratio)"""
        ratio = np.asarray(ratio, dtype=float)
        if np.any(ratio <= 0):
            raise DomainError("voltage ratio must be positive to express in dB")
        return 20 * np.log10(ratio)

    # dBV naming used on the amplifier datasheets
    dBV_to_gain = dB_to_voltage_ratio
    gain_to_dBV = voltage_ratio_to_dB

    @staticmethod
    def log_range(start, stop, num):
        """
        `num` points spaced evenly on a log scale from `start` to `stop`.

        Accepts plain numbers or PhysicalQuantity endpoints (the result then
        carries the unit of `start`).
        """
        if isinstance(start, PhysicalQuantity):
            unit = start.unit
            return Q(SignalProcessor.log_range(start.value, stop.to(unit).value, num), unit)
        if start <= 0 or stop <= 0:
            raise DomainError("log_range endpoints must be positive")
        return np.logspace(np.log10(start), np.log10(stop), int(num))

    @staticmethod
    def smooth_trace(values, half_width, polynomial_degree):
        """
        Savitzky-Golay smoothing with symmetric truncation.

        A window of 2*half_width + 1 samples is fitted with a polynomial of
        `polynomial_degree`.  Only fully-supported centre points are kept,
        so the result is 2*half_width samples shorter than the input and
        output[k] corresponds to input[k + half_width].

        PhysicalQuantity inputs keep their unit; uncertainties are carried
        through the filter as independent errors: u = sqrt(sum(c_i^2 u_i^2)).
        """
        window = 2 * int(half_width) + 1
        if half_width < 0:
            raise ConfigurationError("half_width must not be negative")
        if not 0 <= polynomial_degree < window:
            raise ConfigurationError(
                f"polynomial degree {polynomial_degree} must be below the window length {window}"
            )

        quantity = values if isinstance(values, PhysicalQuantity) else None
        data = np.asarray(quantity.value if quantity is not None else values, dtype=float)
        if data.ndim != 1:
            raise ConfigurationError("smooth_trace expects a 1D sequence")
        n = len(data)
        if n < window:
            raise ConfigurationError(f"need at least {window} samples to smooth, got {n}")

        smoothed = signal.savgol_filter(data, window, polynomial_degree, mode="interp")
        smoothed = smoothed[half_width:n - half_width]
        if quantity is None:
            return smoothed

        coeffs = signal.savgol_coeffs(window, polynomial_degree)
        variance = np.convolve(np.asarray(quantity.uncertainty) ** 2, coeffs ** 2, mode="valid")
        return PhysicalQuantity(smoothed, quantity.unit, np.sqrt(variance))

    @staticmethod
    def moving_average(values, window):
        """
        Rolling mean over `window` samples.

        Output is window - 1 samples shorter than the input; output[k] is
        the mean of input[k : k + window] (trailing-edge aligned).
        """
        window = int(window)
        quantity = values if isinstance(values, PhysicalQuantity) else None
        data = np.asarray(quantity.value if quantity is not None else values, dtype=float)
        if data.ndim != 1:
            raise ConfigurationError("moving_average expects a 1D sequence")
        if not 1 <= window <= len(data):
            raise ConfigurationError(f"window must be between 1 and {len(data)}, got {window}")

        kernel = np.ones(window) / window
        averaged = np.convolve(data, kernel, mode="valid")
        if quantity is None:
            return averaged

        variance = np.convolve(np.asarray(quantity.uncertainty) ** 2, np.ones(window), mode="valid")
        return PhysicalQuantity(averaged, quantity.unit, np.sqrt(variance) / window)
