import json
import os

import numpy as np
import pandas as pd
import pytest

import main
from hfloop.analyzer import HFLoopAnalyzer
from hfloop.catalog import ToroidType
from hfloop.config import CalibrationSetup, SensorConfig
from hfloop.errors import AxisMismatch, ConfigurationError, NonPhysicalParameter, UnknownKey
from hfloop.units import Q

FREQ_MHZ = np.logspace(-1, 1, 40)


def _write_export(path, freq_mhz, readings, unit="dBm"):
    """Instrument-style CSV: MHz axis, a units row and a trailing comma."""
    lines = ["Frequency (MHz),Reading,", f"(MHz),({unit}),"]
    lines += [f"{f:.10g},{r:.6f}," for f, r in zip(freq_mhz, readings)]
    path.write_text("\n".join(lines) + "\n")
    return str(path)


@pytest.fixture
def measurement_set(tmp_path):
    current = np.full(len(FREQ_MHZ), -30.0)
    gain = current + 20.0
    noise = np.full(len(FREQ_MHZ), -110.0)
    return {
        "loop_current": _write_export(tmp_path / "loop_current.csv", FREQ_MHZ, current),
        "gain": _write_export(tmp_path / "gain.csv", FREQ_MHZ, gain),
        "noise": _write_export(tmp_path / "noise.csv", FREQ_MHZ, noise),
    }


def test_load_trace_cleans_instrument_export(measurement_set):
    analyzer = HFLoopAnalyzer()

    trace = analyzer.load_trace(measurement_set["gain"])

    assert len(trace) == len(FREQ_MHZ)
    assert np.allclose(trace.frequency, FREQ_MHZ * 1e6)
    assert np.allclose(trace.values, -10.0)
    assert trace.kind == "dBm"
    assert trace.source == "gain"


def test_load_trace_without_reading_column(tmp_path):
    path = tmp_path / "one_column.csv"
    path.write_text("Frequency (Hz)\n1\n2\n")

    with pytest.raises(ValueError):
        HFLoopAnalyzer().load_trace(str(path))


def test_measurement_pipeline_end_to_end(measurement_set):
    analyzer = HFLoopAnalyzer()
    traces = {k: analyzer.load_trace(v) for k, v in measurement_set.items()}

    result = analyzer.analyze_measurements(**traces)

    alpha = result["alpha"].magnitude("V/nT")
    assert np.isclose(alpha, 1.737970e-4, rtol=1e-3)
    assert np.allclose(result["TF"].values.magnitude("V/nT"), 10 * alpha)

    v_noise = 2 * np.sqrt(2) * np.sqrt(1e-14 * 50)
    expected_nemi = v_noise / (10 * alpha) / np.sqrt(FREQ_MHZ * 1e6)
    assert np.allclose(result["NEMI"].values.magnitude("nT/sqrt(Hz)"), expected_nemi)

    assert len(result["TF_avg"]) == len(FREQ_MHZ) - 3
    assert len(result["TF_smooth"]) == len(FREQ_MHZ) - 10
    assert "check" not in result


def test_reference_gains_feed_the_cross_check(tmp_path, measurement_set):
    analyzer = HFLoopAnalyzer()
    alpha = analyzer.calibration_constant.magnitude("V/nT")
    # reference path sees the same sensor: 10 * alpha V/nT
    driver_dB = 20 * np.log10(10 * alpha * 216)
    driver = _write_export(tmp_path / "driver_gain.csv", FREQ_MHZ, np.full(len(FREQ_MHZ), driver_dB), "dB")
    reference = _write_export(tmp_path / "reference_gain.csv", FREQ_MHZ, np.full(len(FREQ_MHZ), 20.0), "dB")

    result = analyzer.analyze_measurements(
        loop_current=analyzer.load_trace(measurement_set["loop_current"]),
        gain=analyzer.load_trace(measurement_set["gain"]),
        reference_gain=analyzer.load_trace(reference, kind="dB"),
        driver_gain_trace=analyzer.load_trace(driver, kind="dB"),
    )

    assert np.allclose(result["TF_gain"].values.value, result["TF_driver"].values.value, rtol=1e-4)
    assert result["check"].consistent


def test_mismatched_exports_are_not_combined(tmp_path, measurement_set):
    analyzer = HFLoopAnalyzer()
    shifted = _write_export(tmp_path / "shifted.csv", FREQ_MHZ * 1.01, np.full(len(FREQ_MHZ), -10.0))

    with pytest.raises(AxisMismatch):
        analyzer.analyze_measurements(
            loop_current=analyzer.load_trace(measurement_set["loop_current"]),
            gain=analyzer.load_trace(shifted),
        )


def test_plots_are_written(tmp_path, measurement_set):
    analyzer = HFLoopAnalyzer()
    frequency = Q(np.logspace(4, 7, 30), "Hz")

    model_path = analyzer.save_model_plots(
        analyzer.model_transfer_function(frequency), analyzer.model_noise(frequency), output_dir=str(tmp_path)
    )
    traces = {k: analyzer.load_trace(v) for k, v in measurement_set.items()}
    measured_path = analyzer.save_measurement_plots(
        analyzer.analyze_measurements(**traces), "bench", output_dir=str(tmp_path)
    )

    assert os.path.exists(model_path)
    assert os.path.exists(measured_path)


def test_config_from_front_end_mapping():
    cfg = SensorConfig.from_mapping({"N_turns": 40, "toroid_type": "TN13/7.5/5-4A11", "C_jfet": 10})

    assert cfg.turns == 40
    assert cfg.toroid is ToroidType.TN13_4A11
    assert np.isclose(cfg.jfet_capacitance.magnitude("pF"), 10)
    assert np.isclose(cfg.input_capacitance.magnitude("pF"), 5)
    assert cfg.gauge == SensorConfig.default().gauge


def test_config_from_json(tmp_path):
    path = tmp_path / "sensor.json"
    path.write_text(json.dumps({"R_cr": 2.2, "amplifier_gain_dB": 20}))

    cfg = SensorConfig.from_json(str(path))

    assert np.isclose(cfg.feedback_resistance.magnitude("Ω"), 2200)
    assert np.isclose(cfg.amplifier_gain, 10)


def test_invalid_configs_fail_at_construction():
    with pytest.raises(ConfigurationError):
        SensorConfig.from_mapping({"N_turn": 40})
    with pytest.raises(NonPhysicalParameter):
        SensorConfig.from_mapping({"r_b": 0})
    with pytest.raises(NonPhysicalParameter):
        SensorConfig.from_mapping({"margin": 0.9})
    with pytest.raises(UnknownKey):
        SensorConfig.from_mapping({"toroid_type": "TN99"})
    with pytest.raises(ConfigurationError):
        SensorConfig.default().replace(loop_radius=Q(106, "Hz"))


def test_replace_leaves_original_untouched():
    cfg = SensorConfig.default()

    changed = cfg.replace(turns=30)

    assert cfg.turns == 50
    assert changed.turns == 30


def test_calibration_setup_from_mapping():
    cal = CalibrationSetup.from_mapping({"R_shunt": 2, "z_distance": 20, "moving_avg": 8})

    assert np.isclose(cal.shunt_resistance.magnitude("Ω"), 2)
    assert np.isclose(cal.driver_distance.magnitude("m"), 0.02)
    assert cal.moving_average == 8
    with pytest.raises(ConfigurationError):
        CalibrationSetup.from_mapping({"shunt": 1})


def test_batch_driver_writes_model_and_summary(tmp_path):
    data = tmp_path / "data" / "loop_a"
    data.mkdir(parents=True)
    _write_export(data / "loop_current.csv", FREQ_MHZ, np.full(len(FREQ_MHZ), -30.0))
    _write_export(data / "gain.csv", FREQ_MHZ, np.full(len(FREQ_MHZ), -10.0))
    _write_export(data / "noise.csv", FREQ_MHZ, np.full(len(FREQ_MHZ), -110.0))
    output = tmp_path / "output"

    main.main(["--data", str(tmp_path / "data"), "--output", str(output), "--points", "25"])

    assert (output / "model_model.png").exists()
    assert len(pd.read_csv(output / "model_curves.csv")) == 25
    summary = pd.read_csv(output / "batch_summary.csv")
    assert list(summary["condition"]) == ["loop_a"]
    assert np.isclose(summary["tf_peak_v_per_nt"][0], 10 * summary["alpha_v_per_nt"][0])
    assert (output / "loop_a_measured.png").exists()


@pytest.mark.parametrize("name, role", [
    ("Loop current measurement EElab.csv", ("loop_current", "dBm")),
    ("TM7 EElab Gain shield can.csv", ("gain", "dBm")),
    ("TM7 EElab noise shield can.csv", ("noise", "dBm")),
    ("TM7_CNRS_TF_gain.csv", ("reference_gain", "dB")),
    ("TM7_CNRS_driver_TF_gain.csv", ("driver_gain_trace", "dB")),
    ("notes.csv", None),
])
def test_bench_exports_are_classified_by_name(name, role):
    assert main._classify(os.path.join("data", "TM7", name)) == role


def test_batch_driver_uses_cnrs_gains_for_the_cross_check(tmp_path):
    data = tmp_path / "data" / "TM7"
    data.mkdir(parents=True)
    n = len(FREQ_MHZ)
    alpha = HFLoopAnalyzer().calibration_constant.magnitude("V/nT")
    _write_export(data / "Loop current measurement EElab.csv", FREQ_MHZ, np.full(n, -30.0))
    _write_export(data / "TM7 EElab Gain shield can.csv", FREQ_MHZ, np.full(n, -10.0))
    _write_export(data / "TM7 EElab noise shield can.csv", FREQ_MHZ, np.full(n, -110.0))
    _write_export(data / "TM7_CNRS_TF_gain.csv", FREQ_MHZ, np.full(n, 20.0), "dB")
    _write_export(data / "TM7_CNRS_driver_TF_gain.csv", FREQ_MHZ,
                  np.full(n, 20 * np.log10(10 * alpha * 216)), "dB")
    output = tmp_path / "output"

    main.main(["--data", str(tmp_path / "data"), "--output", str(output), "--points", "10"])

    summary = pd.read_csv(output / "batch_summary.csv")
    assert np.isclose(summary["tf_peak_v_per_nt"][0], 10 * alpha, rtol=1e-6)
    assert np.isclose(summary["calibration_ratio"][0], 1.0, rtol=1e-4)
    assert bool(summary["calibration_consistent"][0])


def test_batch_driver_keeps_the_first_export_of_a_role(tmp_path, capsys):
    data = tmp_path / "data" / "loop_a"
    data.mkdir(parents=True)
    n = len(FREQ_MHZ)
    _write_export(data / "loop_current.csv", FREQ_MHZ, np.full(n, -30.0))
    _write_export(data / "a_gain.csv", FREQ_MHZ, np.full(n, -10.0))
    _write_export(data / "b_gain.csv", FREQ_MHZ, np.full(n, -20.0))
    output = tmp_path / "output"

    main.main(["--data", str(tmp_path / "data"), "--output", str(output), "--points", "10"])

    assert "[Notice] Already have gain from a_gain. Ignoring b_gain.csv." in capsys.readouterr().out
    summary = pd.read_csv(output / "batch_summary.csv")
    assert np.isclose(summary["tf_peak_v_per_nt"][0], 10 * summary["alpha_v_per_nt"][0])
