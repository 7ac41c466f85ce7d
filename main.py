import argparse
import glob
import logging
import os

import pandas as pd

from hfloop.analyzer import HFLoopAnalyzer
from hfloop.config import CalibrationSetup, SensorConfig
from hfloop.dsp_utils import SignalProcessor
from hfloop.errors import HFLoopError
from hfloop.units import Q

# filename keywords (all must appear) -> (role, logged kind); first match wins
ROLE_KEYWORDS = [
    (("driver",), ("driver_gain_trace", "dB")),
    (("cnrs", "gain"), ("reference_gain", "dB")),
    (("reference",), ("reference_gain", "dB")),
    (("current",), ("loop_current", "dBm")),
    (("shunt",), ("loop_current", "dBm")),
    (("noise",), ("noise", "dBm")),
    (("gain",), ("gain", "dBm")),
]


def _classify(file_path):
    name = os.path.basename(file_path).lower()
    for keywords, role in ROLE_KEYWORDS:
        if all(k in name for k in keywords):
            return role
    return None


def _save_batch_summary(results, output_dir="output"):
    """
    Saves one row of headline numbers per measurement set.
    """
    if not results:
        return None

    os.makedirs(output_dir, exist_ok=True)
    summary_df = pd.DataFrame(results).sort_values(by="condition")
    summary_csv_path = os.path.join(output_dir, "batch_summary.csv")
    summary_df.to_csv(summary_csv_path, index=False)
    return summary_csv_path


def _print_design(analyzer):
    props = analyzer.properties
    print("Sensor design:")
    print(f"  Max turns/toroid:   {props.max_turns:.4g}")
    print(f"  Wire length:        {props.wire_length:.4g}")
    print(f"  Winding resistance: {props.winding_resistance:.4g}")
    print(f"  Winding mass:       {props.winding_mass:.4g}")
    print(f"  Toroid inductance:  {props.toroid_inductance:.4g}")
    print(f"  Flux/current:       {props.flux_per_current:.4g}")
    print(f"  Resonant frequency: {props.resonant_frequency:.4g}")
    print(f"  e_bt:               {analyzer.noise.e_bt:.4g}")
    print(f"  e_bR:               {analyzer.noise.e_bR:.4g}")
    print(f"  Calibration alpha:  {analyzer.calibration_constant:.4g}")
    print("-" * 30 + "\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="HF loop magnetometer model and calibration reduction")
    parser.add_argument("--config", help="JSON file of sensor parameters (front-end units)")
    parser.add_argument("--calibration", help="JSON file of bench calibration parameters")
    parser.add_argument("--data", default="data", help="folder of measurement sets, one sub-folder per set")
    parser.add_argument("--output", default="output")
    parser.add_argument("--f-min", type=float, default=0.05, help="model sweep start [MHz]")
    parser.add_argument("--f-max", type=float, default=20.0, help="model sweep stop [MHz]")
    parser.add_argument("--points", type=int, default=200)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="  [%(levelname)s] %(message)s")

    # 1. Initialize Configuration
    config = SensorConfig.from_json(args.config) if args.config else SensorConfig.default()
    calibration = CalibrationSetup.from_json(args.calibration) if args.calibration else CalibrationSetup()

    # 2. Initialize the Analyzer
    analyzer = HFLoopAnalyzer(config, calibration)
    _print_design(analyzer)

    # 3. Model curves
    frequency = SignalProcessor.log_range(Q(args.f_min, "MHz"), Q(args.f_max, "MHz"), args.points).to("Hz")
    tf_curves = analyzer.model_transfer_function(frequency)
    noise_curves = analyzer.model_noise(frequency)
    model_path = analyzer.save_model_plots(tf_curves, noise_curves, output_dir=args.output)
    model_df = pd.concat(
        [tf_curves["TF"].to_frame("MHz"), tf_curves["TF2"].to_frame("MHz").iloc[:, 1:]]
        + [s.to_frame("MHz").iloc[:, 1:] for s in noise_curves.values()],
        axis=1,
    )
    model_df.to_csv(os.path.join(args.output, "model_curves.csv"), index=False)
    print(f"Result saved: {model_path}")

    # 4. Locate measurement sets
    data_files = glob.glob(os.path.join(args.data, "**", "*.csv"), recursive=True)
    if not data_files:
        print(f"No CSV files found in '{args.data}/' folder. Only the model was evaluated.")
        return

    grouped_files = {}
    for file_path in sorted(data_files):
        rel_dir = os.path.relpath(os.path.dirname(file_path), args.data)
        grouped_files.setdefault(rel_dir, []).append(file_path)

    print(f"Found {len(data_files)} files in {len(grouped_files)} measurement sets.\n")
    batch_results = []

    # 5. Reduce each measurement set
    for condition, condition_files in sorted(grouped_files.items()):
        print(f"--- Analyzing measurement set: {condition} ({len(condition_files)} files) ---")

        traces = {}
        for file_path in condition_files:
            role = _classify(file_path)
            if role is None:
                print(f"  [Notice] Cannot tell what {os.path.basename(file_path)} holds. Ignoring it.")
                continue
            key, kind = role
            if key in traces:
                print(f"  [Notice] Already have {key} from {traces[key].source}. "
                      f"Ignoring {os.path.basename(file_path)}.")
                continue
            try:
                traces[key] = analyzer.load_trace(file_path, kind=kind)
            except ValueError as e:
                print(f"  [Skip] {os.path.basename(file_path)}: {e}")

        if "loop_current" not in traces or "gain" not in traces:
            print("  [Skip] Need both a loop current and a gain export.\n")
            continue

        try:
            result = analyzer.analyze_measurements(**traces)
        except HFLoopError as e:
            print(f"  [Skip] {condition}: {e}\n")
            continue

        output_name = condition.replace(os.sep, "__")
        plot_path = analyzer.save_measurement_plots(result, output_name, output_dir=args.output)
        tf = result["TF"].values.magnitude("V/nT")
        row = {
            "condition": condition,
            "points": len(result["TF"]),
            "alpha_v_per_nt": float(result["alpha"].magnitude("V/nT")),
            "tf_peak_v_per_nt": float(tf.max()),
            "tf_peak_mhz": float(result["TF"].frequency.magnitude("MHz")[tf.argmax()]),
        }

        print(f"Results for measurement set {condition}:")
        print(f"  Calibration alpha: {result['alpha']:.4g}")
        print(f"  Peak TF:           {row['tf_peak_v_per_nt']:.4g} V/nT at {row['tf_peak_mhz']:.3g} MHz")
        if "NEMI" in result:
            nemi = result["NEMI"].values.magnitude("nT/sqrt(Hz)")
            row["nemi_min_nt_per_rthz"] = float(nemi.min())
            print(f"  Min NEMI:          {row['nemi_min_nt_per_rthz']:.4g} nT/sqrt(Hz)")
        if "check" in result:
            row["calibration_ratio"] = result["check"].median_ratio
            row["calibration_consistent"] = result["check"].consistent
            print(f"  Cal. cross-check:  median ratio {result['check'].median_ratio:.3g}")
        print(f"Result saved: {plot_path}")
        print("-" * 30 + "\n")
        batch_results.append(row)

    summary_path = _save_batch_summary(batch_results, output_dir=args.output)
    if summary_path:
        print("Saved batch summary:")
        print(f"  {summary_path}")


if __name__ == "__main__":
    main()
