import logging
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import CalibrationSetup, SensorConfig
from .noise import NoiseModel
from .physics import DerivedSensorProperties, TransferFunctionModel
from .reduction import MeasurementReduction
from .series import MeasurementTrace

logger = logging.getLogger(__name__)

# colour-blind friendly palette
PALETTE = {
    "red": "#B30007",
    "green": "#009E73",
    "blue": "#0072B2",
    "purple": "#9164C2",
    "orange": "#E69F00",
    "light_blue": "#56B4E9",
    "pink": "#CC79A7",
    "reddish_orange": "#D55E00",
}

_FREQUENCY_SCALE = {"ghz": 1e9, "mhz": 1e6, "khz": 1e3}


class HFLoopAnalyzer:
    """
    Main controller class.
    Instantiate this once per sensor design, then reduce any number of
    measurement sets against it.
    """

    def __init__(self, config=None, calibration=None, awg_table=None):
        self.config = config or SensorConfig.default()
        self.calibration = calibration or CalibrationSetup()
        self.properties = DerivedSensorProperties.from_config(self.config, awg_table)
        self.transfer = TransferFunctionModel(self.config, self.properties)
        self.noise = NoiseModel(self.config, self.properties)

    # ---- ingestion --------------------------------------------------
    def load_trace(self, filepath, column=1, kind="dBm"):
        """
        Reads an instrument CSV export into a MeasurementTrace.
        Column 0 is frequency; `column` selects the reading.
        Cleans common export quirks (units row, trailing comma/Unnamed cols,
        frequency logged in kHz/MHz/GHz).
        """
        try:
            df = pd.read_csv(filepath)
        except Exception as e:
            raise ValueError(f"Failed to parse CSV {filepath}: {e}")

        # Drop empty/extra columns caused by trailing commas (e.g. "Unnamed: 3")
        df = df.loc[:, ~df.columns.astype(str).str.contains(r"^Unnamed")]
        df.columns = [str(c).strip().rstrip(",") for c in df.columns]
        if df.shape[1] <= column:
            raise ValueError(f"{os.path.basename(filepath)} has no column {column}")

        # Frequency unit from the header or from a units row
        scale = 1.0
        headers = [str(df.columns[0]).lower()]
        if not df.empty:
            headers.append(str(df.iloc[0, 0]).lower())
        for header in headers:
            for token, factor in _FREQUENCY_SCALE.items():
                if token in header:
                    scale = factor
                    break
            if scale != 1.0:
                break
        if scale != 1.0:
            logger.info("Detected frequency scale %g in %s; converting to Hz.", scale, os.path.basename(filepath))

        if not df.empty:
            first_row = df.iloc[0].astype(str).tolist()
            if any(x for x in first_row if "(" in x or ")" in x or "[" in x):
                df = df.iloc[1:].reset_index(drop=True)

        df = df.iloc[:, [0, column]].apply(pd.to_numeric, errors="coerce").dropna()
        return MeasurementTrace(
            frequency=df.iloc[:, 0].to_numpy() * scale,
            values=df.iloc[:, 1].to_numpy(),
            kind=kind,
            source=os.path.splitext(os.path.basename(filepath))[0],
        )

    # ---- model ------------------------------------------------------
    def model_transfer_function(self, frequency):
        """{"TF", "TF2"} FrequencySeries over `frequency` [Hz]."""
        return self.transfer.curves(frequency)

    def model_noise(self, frequency):
        """{"v_b1" .. "v_b4", "v_b"} FrequencySeries over `frequency` [Hz]."""
        return self.noise.curves(frequency)

    @property
    def calibration_constant(self):
        cal = self.calibration
        return MeasurementReduction.calibration_constant(
            cal.shunt_resistance, cal.driver_distance, self.config.loop_radius
        )

    # ---- measurements -----------------------------------------------
    def analyze_measurements(self, loop_current, gain, noise=None, reference_gain=None, driver_gain_trace=None):
        """
        Executes the reduction pipeline on one measurement set.

        Flow:
            1. alpha from the driver-loop geometry (Biot-Savart).
            2. TF = alpha * V_out / V_shunt from the dBm exports.
            3. NEMI = V_noise / TF / sqrt(f) if a noise export is given.
            4. Optional reference TFs from logged gains (dB), and a
               cross-check of alpha against the independent driver path.
            5. Moving-average and Savitzky-Golay versions of every curve.
        """
        cal = self.calibration
        alpha = self.calibration_constant
        result = {"alpha": alpha}

        tf = MeasurementReduction.transfer_function_from_traces(
            gain, loop_current, alpha, impedance=cal.system_impedance
        )
        result["TF"] = tf
        if noise is not None:
            result["NEMI"] = MeasurementReduction.noise_equivalent_field(
                noise, tf, impedance=cal.system_impedance
            )
        if reference_gain is not None:
            result["TF_gain"] = MeasurementReduction.transfer_function_from_gain(reference_gain, alpha)
        if driver_gain_trace is not None:
            result["TF_driver"] = MeasurementReduction.transfer_function_from_driver_gain(
                driver_gain_trace, cal.driver_gain
            )
            if reference_gain is not None:
                result["check"] = MeasurementReduction.cross_check_calibration(
                    result["TF_gain"], result["TF_driver"]
                )

        for key in [k for k in ("TF", "NEMI", "TF_gain", "TF_driver") if k in result]:
            series = result[key]
            result[f"{key}_avg"] = series.rolling_mean(cal.moving_average)
            if len(series) >= 2 * cal.smoothing_half_width + 1:
                result[f"{key}_smooth"] = series.smoothed(cal.smoothing_half_width, cal.smoothing_degree)
        return result

    # ---- rendering --------------------------------------------------
    def save_model_plots(self, tf_curves, noise_curves, filename="model", output_dir="output"):
        """Plots the modelled transfer functions and noise contributors."""
        os.makedirs(output_dir, exist_ok=True)
        plt.figure(figsize=(15, 6))

        # Plot 1: transfer functions
        plt.subplot(1, 2, 1)
        for (name, series), color in zip(tf_curves.items(), (PALETTE["orange"], PALETTE["blue"])):
            f = series.frequency.magnitude("MHz")
            plt.loglog(f, series.values.magnitude("V/nT"), color=color, label=name)
        plt.title(f"Simulated Transfer Function: {filename}")
        plt.xlabel("Frequency [MHz]")
        plt.ylabel("V/nT")
        plt.legend()
        plt.grid(True, which="both", alpha=0.35)

        # Plot 2: noise contributors with 1-sigma ribbons
        plt.subplot(1, 2, 2)
        labels = {
            "v_b1": "v_b1, noise from toroids",
            "v_b2": "v_b2, noise from biasing circuit",
            "v_b3": "v_b3, noise from amplifier current",
            "v_b4": "v_b4, noise from amplifier voltage",
            "v_b": "v_b, total noise",
        }
        colors = (PALETTE["blue"], PALETTE["orange"], PALETTE["green"], PALETTE["purple"], PALETTE["red"])
        for (name, series), color in zip(noise_curves.items(), colors):
            f = series.frequency.magnitude("MHz")
            y = series.values.magnitude("V/sqrt(Hz)")
            dy = series.values.error("V/sqrt(Hz)")
            plt.plot(f, y, color=color, linewidth=2, label=labels.get(name, name))
            plt.fill_between(f, np.clip(y - dy, 1e-30, None), y + dy, color=color, alpha=0.2)
        plt.xscale("log")
        plt.yscale("log")
        plt.title("System Noise Contributors")
        plt.xlabel("Frequency [MHz]")
        plt.ylabel("Voltage Noise [V/sqrt(Hz)]")
        plt.legend(loc="lower left", fontsize=8)
        plt.grid(True, which="both", alpha=0.35)

        plt.tight_layout()
        plot_path = os.path.join(output_dir, f"{filename}_model.png")
        plt.savefig(plot_path)
        plt.close()
        return plot_path

    def save_measurement_plots(self, result, filename, output_dir="output"):
        """Measured TF and NEMI: raw points plus the moving-average curve."""
        os.makedirs(output_dir, exist_ok=True)
        panels = [("TF", "V/nT", "Transfer Function")]
        if "NEMI" in result:
            panels.append(("NEMI", "nT/sqrt(Hz)", "Noise Floor"))
        plt.figure(figsize=(7.5 * len(panels), 5))

        for i, (key, unit, title) in enumerate(panels, start=1):
            plt.subplot(1, len(panels), i)
            series = [(key, PALETTE["orange"])]
            series += [(k, c) for k, c in (("TF_gain", PALETTE["blue"]), ("TF_driver", PALETTE["green"]))
                       if key == "TF" and k in result]
            for name, color in series:
                raw = result[name]
                plt.scatter(raw.frequency.magnitude("MHz"), raw.values.magnitude(unit), s=1, color=color)
                avg = result.get(f"{name}_avg")
                if avg is not None:
                    plt.plot(avg.frequency.magnitude("MHz"), avg.values.magnitude(unit), color=color, label=name)
            plt.xscale("log")
            plt.yscale("log")
            plt.title(f"{title}: {filename}")
            plt.xlabel("Frequency [MHz]")
            plt.ylabel(unit)
            plt.legend()
            plt.grid(True, which="both", alpha=0.35)

        plt.tight_layout()
        plot_path = os.path.join(output_dir, f"{filename}_measured.png")
        plt.savefig(plot_path)
        plt.close()
        return plot_path
