"""
Reduction of instrument exports into physical sensor curves.

The sensor field cannot be measured directly, so a driver loop of radius r
at distance z is driven through a shunt resistor R_shunt.  The on-axis
Biot-Savart field per shunt volt gives the conversion

    alpha = 2 R_shunt (z^2 + r^2)^(3/2) / (mu_0 r^2)    [V/T]

and the measured transfer function is V_s / B_0 = alpha * V_s / V_shunt.
"""
import logging
from dataclasses import dataclass

import numpy as np

from .dsp_utils import SignalProcessor
from .errors import AxisMismatch, ConfigurationError, NonPhysicalParameter
from .physics import MU_0
from .series import FrequencySeries, MeasurementTrace
from .units import Q, PhysicalQuantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationCheck:
    """Agreement between two independently calibrated transfer functions."""
    median_ratio: float
    worst_ratio: float
    tolerance: float

    @property
    def consistent(self):
        return abs(self.median_ratio - 1) <= self.tolerance


def _frequency_of(trace):
    if isinstance(trace, FrequencySeries):
        return trace.frequency
    return trace.frequency_axis()


def _check_same_axis(a, b, rtol=1e-9):
    """Both traces must share one strictly increasing frequency axis."""
    fa = _frequency_of(a)
    fb = _frequency_of(b).to(fa.unit)
    if len(fa) != len(fb):
        raise AxisMismatch(f"frequency axes differ in length: {len(fa)} vs {len(fb)}")
    if not np.allclose(fa.value, fb.value, rtol=rtol, atol=0):
        worst = int(np.argmax(np.abs(fa.value - fb.value)))
        raise AxisMismatch(
            f"frequency axes disagree at sample {worst}: {fa.value[worst]:.6g} vs {fb.value[worst]:.6g} Hz"
        )
    return fa


class MeasurementReduction:
    """Stateless transforms from raw traces to TF / NEMI curves."""

    @staticmethod
    def calibration_constant(shunt_resistance, distance, loop_radius):
        """Shunt volts -> field conversion alpha [V/nT] (see module docstring)."""
        if shunt_resistance.value <= 0:
            raise NonPhysicalParameter(f"shunt resistance must be positive, got {shunt_resistance}")
        if loop_radius.value <= 0:
            raise NonPhysicalParameter(f"driver loop radius must be positive, got {loop_radius}")
        geometry = (distance ** 2 + loop_radius ** 2) ** 1.5
        return (2 * shunt_resistance * geometry / (MU_0 * loop_radius ** 2)).to("V/nT")

    @staticmethod
    def voltage_trace(trace, impedance=Q(50, "Ω")):
        """dBm trace -> peak-to-peak voltage series."""
        frequency = trace.frequency_axis()
        volts = SignalProcessor.dBm_to_voltage_peak_to_peak(trace.values, impedance)
        return FrequencySeries(frequency, volts, trace.source or "Vpp")

    @staticmethod
    def transfer_function_from_traces(output_trace, input_trace, calibration_constant,
                                      impedance=Q(50, "Ω"), rtol=1e-9):
        """
        TF = alpha * V_out / V_shunt, both voltages converted from dBm.
        Traces must share an identical frequency axis.
        """
        frequency = _check_same_axis(output_trace, input_trace, rtol)
        v_out = SignalProcessor.dBm_to_voltage_peak_to_peak(output_trace.values, impedance)
        v_in = SignalProcessor.dBm_to_voltage_peak_to_peak(input_trace.values, impedance)
        tf = (v_out * calibration_constant / v_in).to("V/nT")
        return FrequencySeries(frequency, tf, "TF")

    @staticmethod
    def transfer_function_from_gain(gain_trace, calibration_constant):
        """TF from a logged gain V_out/V_shunt in dB: 10^(dB/20) * alpha."""
        frequency = gain_trace.frequency_axis()
        ratio = Q(SignalProcessor.dB_to_voltage_ratio(gain_trace.values))
        return FrequencySeries(frequency, (ratio * calibration_constant).to("V/nT"), "TF_gain")

    @staticmethod
    def transfer_function_from_driver_gain(gain_trace, driver_gain):
        """TF from a logged gain against a driver of known field per volt [nT/V]."""
        frequency = gain_trace.frequency_axis()
        if driver_gain.value <= 0:
            raise NonPhysicalParameter(f"driver gain must be positive, got {driver_gain}")
        ratio = Q(SignalProcessor.dB_to_voltage_ratio(gain_trace.values))
        return FrequencySeries(frequency, (ratio / driver_gain).to("V/nT"), "TF_driver")

    @staticmethod
    def noise_density_trace(trace):
        """Wrap an export that already holds a noise density (e.g. V/sqrt(Hz))."""
        unit = trace.kind if trace.kind not in ("dBm", "dB") else "V/sqrt(Hz)"
        return FrequencySeries(trace.frequency_axis(), Q(trace.values, unit), trace.source or "noise")

    @staticmethod
    def noise_equivalent_field(noise, transfer_function, frequency=None, impedance=Q(50, "Ω"), rtol=1e-9):
        """
        NEMI(f) = V_noise(f) / TF(f) / sqrt(f)   [nT/sqrt(Hz)]

        `noise` is a dBm MeasurementTrace (converted to peak-to-peak volts)
        or a voltage FrequencySeries.  The sqrt(f) normalisation follows the
        bench convention the noise exports were recorded with.
        """
        axis = _check_same_axis(noise, transfer_function, rtol)
        if frequency is not None:
            if not isinstance(frequency, PhysicalQuantity):
                frequency = Q(frequency, "Hz")
            if len(frequency) != len(axis) or not np.allclose(
                    frequency.to("Hz").value, axis.value, rtol=rtol, atol=0):
                raise AxisMismatch("frequency axis does not match the traces")
        if isinstance(noise, MeasurementTrace):
            if noise.kind != "dBm":
                raise ConfigurationError(f"noise export must be logged in dBm, got {noise.kind!r}")
            v_noise = SignalProcessor.dBm_to_voltage_peak_to_peak(noise.values, impedance)
        else:
            v_noise = noise.values
        nemi = (v_noise / transfer_function.values / axis.sqrt()).to("nT/sqrt(Hz)")
        return FrequencySeries(axis, nemi, "NEMI")

    @staticmethod
    def cross_check_calibration(transfer_function, reference, tolerance=0.5, rtol=1e-9):
        """
        Compare a Biot-Savart calibrated TF against one from an independent
        reference path on the same axis.  Logs a warning when the median
        ratio is further than `tolerance` from 1.
        """
        _check_same_axis(transfer_function, reference, rtol)
        ratio = (transfer_function.values / reference.values).to("1").value
        median = float(np.median(ratio))
        worst = float(ratio[np.argmax(np.abs(np.log(np.abs(ratio))))])
        check = CalibrationCheck(median_ratio=median, worst_ratio=worst, tolerance=tolerance)
        if not check.consistent:
            logger.warning(
                "Calibration cross-check failed: median TF ratio %.3g (tolerance %.2g)", median, tolerance
            )
        return check
