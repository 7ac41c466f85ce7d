import json
from dataclasses import dataclass, field, fields, replace
from enum import Enum

from .catalog import ToroidType, WireMaterial, toroid_type, wire_material
from .dsp_utils import SignalProcessor
from .errors import ConfigurationError, NonPhysicalParameter
from .units import Q, PhysicalQuantity, unit_symbol

# front-end field -> (SensorConfig attribute, unit the number is given in)
_SENSOR_FIELDS = {
    "T": ("temperature", "K"),
    "S": ("loop_surface", "mm^2"),
    "r_loop": ("loop_radius", "mm"),
    "t_loop": ("loop_thickness", "mm"),
    "r_b": ("loop_resistance", "Ω"),
    "L_0": ("loop_inductance", "nH"),
    "C_jfet": ("jfet_capacitance", "pF"),
    "e_ba": ("voltage_noise", "nV/sqrt(Hz)"),
    "i_ba": ("current_noise", "pA/sqrt(Hz)"),
    "R_in": ("input_resistance", "kΩ"),
    "R_cr": ("feedback_resistance", "kΩ"),
}
_PLAIN_FIELDS = {
    "toroid_type": "toroid",
    "num_toroids": "toroid_count",
    "wire_type": "wire",
    "gauge": "gauge",
    "num_jfets": "jfet_count",
    "N_turns": "turns",
    "margin": "margin",
    "amplifier_gain_dB": "amplifier_gain_db",
}


def _require_unit(name, q, unit):
    if not isinstance(q, PhysicalQuantity):
        raise ConfigurationError(f"{name} must be a PhysicalQuantity in {unit}, got {q!r}")
    if not q.commensurable(unit):
        raise ConfigurationError(f"{name} must be in {unit}, got {unit_symbol(q.unit)}")


def _require_positive(name, q):
    if q.value <= 0:
        raise NonPhysicalParameter(f"{name} must be positive, got {q}")


@dataclass(frozen=True)
class SensorConfig:
    """
    Design parameters of the loop + toroid + amplifier + feedback chain.

    Every derived quantity is a pure function of one of these; change a
    parameter with `replace()` to get a new config.
    """
    # Environment
    temperature: PhysicalQuantity          # T [K]
    # Primary loop
    loop_surface: PhysicalQuantity         # S [mm^2]
    loop_radius: PhysicalQuantity          # r_loop [mm]
    loop_thickness: PhysicalQuantity       # t_loop [mm]
    loop_resistance: PhysicalQuantity      # r_b [Ω]
    loop_inductance: PhysicalQuantity      # L_0 [nH]
    # Toroids and winding
    toroid: ToroidType
    toroid_count: int
    wire: WireMaterial
    gauge: int                             # AWG
    turns: int                             # N, turns per toroid
    margin: float                          # wire length allowance (>= 1)
    # Amplifier
    amplifier_gain_db: float               # H_a [dB]
    jfet_capacitance: PhysicalQuantity     # C_jfet [pF], per JFET
    jfet_count: int
    voltage_noise: PhysicalQuantity        # e_ba [nV/sqrt(Hz)]
    current_noise: PhysicalQuantity        # i_ba [pA/sqrt(Hz)]
    # Biasing and feedback
    input_resistance: PhysicalQuantity     # R_in [kΩ]
    feedback_resistance: PhysicalQuantity  # R_cr [kΩ]

    def __post_init__(self):
        object.__setattr__(self, "toroid", toroid_type(self.toroid))
        object.__setattr__(self, "wire", wire_material(self.wire))

        _require_unit("temperature", self.temperature, "K")
        _require_unit("loop_surface", self.loop_surface, "m^2")
        for name in ("loop_radius", "loop_thickness"):
            _require_unit(name, getattr(self, name), "m")
        for name in ("loop_resistance", "input_resistance", "feedback_resistance"):
            _require_unit(name, getattr(self, name), "Ω")
        _require_unit("loop_inductance", self.loop_inductance, "H")
        _require_unit("jfet_capacitance", self.jfet_capacitance, "F")
        _require_unit("voltage_noise", self.voltage_noise, "V/sqrt(Hz)")
        _require_unit("current_noise", self.current_noise, "A/sqrt(Hz)")

        for name in ("temperature", "loop_surface", "loop_radius", "loop_resistance",
                     "input_resistance", "feedback_resistance", "jfet_capacitance"):
            _require_positive(name, getattr(self, name))
        for name in ("loop_thickness", "loop_inductance", "voltage_noise", "current_noise"):
            if getattr(self, name).value < 0:
                raise NonPhysicalParameter(f"{name} must not be negative")
        for name in ("toroid_count", "turns", "jfet_count"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise NonPhysicalParameter(f"{name} must be a positive integer, got {value!r}")
        if self.margin < 1:
            raise NonPhysicalParameter(f"margin must be >= 1, got {self.margin}")

    @classmethod
    def default(cls):
        """Reference design: 4x TN10/6/4-4A11, 50 turns of AWG 30 copper."""
        return cls(
            temperature=Q(300, "K"),
            loop_surface=Q(11000, "mm^2"),
            loop_radius=Q(106, "mm"),
            loop_thickness=Q(1, "mm"),
            loop_resistance=Q(2, "Ω"),
            loop_inductance=Q(400, "nH"),
            toroid=ToroidType.TN10_4A11,
            toroid_count=4,
            wire=WireMaterial.COPPER,
            gauge=30,
            turns=50,
            margin=1.15,
            amplifier_gain_db=40.0,
            jfet_capacitance=Q(20, "pF"),
            jfet_count=2,
            voltage_noise=Q(1, "nV/sqrt(Hz)"),
            current_noise=Q(1, "pA/sqrt(Hz)"),
            input_resistance=Q(100, "kΩ"),
            feedback_resistance=Q(1.2, "kΩ"),
        )

    @classmethod
    def from_mapping(cls, mapping):
        """
        Build a config from plain numbers in front-end units
        (T [K], S [mm^2], r_loop [mm], L_0 [nH], C_jfet [pF], R_in [kΩ] ...).
        Keys that are not given keep their default value.
        """
        unknown = set(mapping) - set(_SENSOR_FIELDS) - set(_PLAIN_FIELDS)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {sorted(unknown)}")

        changes = {}
        for key, (attr, unit) in _SENSOR_FIELDS.items():
            if key in mapping:
                changes[attr] = Q(float(mapping[key]), unit)
        for key, attr in _PLAIN_FIELDS.items():
            if key in mapping:
                changes[attr] = mapping[key]
        return cls.default().replace(**changes)

    @classmethod
    def from_json(cls, filepath):
        with open(filepath) as f:
            return cls.from_mapping(json.load(f))

    def replace(self, **changes):
        return replace(self, **changes)

    @property
    def input_capacitance(self):
        """C_in: JFET input capacitance shared across the parallel JFETs."""
        return self.jfet_capacitance / self.jfet_count

    @property
    def amplifier_gain(self):
        """H_a as a linear voltage ratio."""
        return float(SignalProcessor.dBV_to_gain(self.amplifier_gain_db))

    @property
    def feedback_admittance(self):
        """Y_cr = 1/R_cr."""
        return (1 / self.feedback_resistance).to("1/kΩ")

    def summary(self):
        """Flat, printable view of the parameters."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, PhysicalQuantity):
                value = str(value)
            out[f.name] = value
        return out


@dataclass(frozen=True)
class CalibrationSetup:
    """Bench parameters for turning instrument exports into physical units."""
    system_impedance: PhysicalQuantity = field(default_factory=lambda: Q(50, "Ω"))
    shunt_resistance: PhysicalQuantity = field(default_factory=lambda: Q(1, "Ω"))
    driver_distance: PhysicalQuantity = field(default_factory=lambda: Q(15, "mm"))  # z, driver loop to sensor loop
    driver_gain: PhysicalQuantity = field(default_factory=lambda: Q(216, "nT/V"))  # independently calibrated driver
    moving_average: int = 4
    smoothing_half_width: int = 5
    smoothing_degree: int = 2

    def __post_init__(self):
        _require_unit("system_impedance", self.system_impedance, "Ω")
        _require_unit("shunt_resistance", self.shunt_resistance, "Ω")
        _require_unit("driver_distance", self.driver_distance, "m")
        _require_unit("driver_gain", self.driver_gain, "T/V")
        for name in ("system_impedance", "shunt_resistance", "driver_gain"):
            _require_positive(name, getattr(self, name))
        if self.driver_distance.value < 0:
            raise NonPhysicalParameter("driver_distance must not be negative")
        if self.moving_average < 1:
            raise NonPhysicalParameter("moving_average window must be >= 1")
        if self.smoothing_degree >= 2 * self.smoothing_half_width + 1:
            raise ConfigurationError("smoothing_degree must be below the window length")

    @classmethod
    def from_mapping(cls, mapping):
        units = {
            "impedance_Ohm": ("system_impedance", "Ω"),
            "R_shunt": ("shunt_resistance", "Ω"),
            "z_distance": ("driver_distance", "mm"),
            "driver_gain": ("driver_gain", "nT/V"),
        }
        plain = {
            "moving_avg": "moving_average",
            "smoothing_half_width": "smoothing_half_width",
            "smoothing_degree": "smoothing_degree",
        }
        unknown = set(mapping) - set(units) - set(plain)
        if unknown:
            raise ConfigurationError(f"unknown calibration keys: {sorted(unknown)}")
        kwargs = {attr: Q(float(mapping[key]), unit) for key, (attr, unit) in units.items() if key in mapping}
        kwargs.update({attr: int(mapping[key]) for key, attr in plain.items() if key in mapping})
        return cls(**kwargs)

    @classmethod
    def from_json(cls, filepath):
        with open(filepath) as f:
            return cls.from_mapping(json.load(f))
