import logging
from dataclasses import dataclass

import numpy as np
from scipy import constants

from .catalog import default_awg_table, get_toroid, get_wire
from .errors import DomainError
from .series import FrequencySeries
from .units import Q, PhysicalQuantity

logger = logging.getLogger(__name__)

BOLTZMANN = Q(constants.k, "J/K")
MU_0 = Q(constants.mu_0, "H/m")


class SensorPhysics:
    """
    Closed-form design formulas for the wound-toroid loop sensor.
    Every argument and result is a PhysicalQuantity.
    """

    @staticmethod
    def max_turns_per_toroid(inner_diameter, total_diameter):
        """
        Turns that fit side by side around the inner circumference.

        Formula: N_max = pi * ID / d_total

        Single-layer packing estimate; callers round down when they need
        an integer bound.
        """
        return (np.pi * inner_diameter / total_diameter).to("1")

    @staticmethod
    def turn_length(toroid):
        """
        Wire used by one turn around a chamfered rectangular cross-section.

        Formula: l_t = 2 * [(OD - ID - 2c) + (H - 2c) + pi * c]
        """
        c = toroid.chamfer
        radial = toroid.outer_diameter - toroid.inner_diameter - 2 * c
        axial = toroid.height - 2 * c
        return (2 * (radial + axial + np.pi * c)).to("mm")

    @staticmethod
    def wire_length(margin, toroid, turns, toroid_count):
        """Total wire for all toroids, with `margin` (>= 1) for leads and slack."""
        return (margin * toroid_count * turns * SensorPhysics.turn_length(toroid)).to("m")

    @staticmethod
    def wire_cross_section(conductor_diameter):
        return (np.pi * (conductor_diameter / 2) ** 2).to("mm^2")

    @staticmethod
    def winding_resistance(wire_length, resistivity, conductor_diameter):
        """
        Formula: r_s = rho * L / S_w, with S_w from the bare conductor diameter.
        """
        section = SensorPhysics.wire_cross_section(conductor_diameter)
        return (resistivity * wire_length / section).to("Ω")

    @staticmethod
    def winding_mass(wire_length, conductor_diameter, total_diameter, conductor_density, insulation_density):
        """Conductor plus enamel mass of the whole winding."""
        conductor = SensorPhysics.wire_cross_section(conductor_diameter)
        insulation = SensorPhysics.wire_cross_section(total_diameter) - conductor
        return ((conductor * conductor_density + insulation * insulation_density) * wire_length).to("g")

    @staticmethod
    def insulation_thickness(conductor_diameter, total_diameter):
        return (total_diameter - conductor_diameter).to("mm")

    @staticmethod
    def toroid_inductance(specific_inductance, turns):
        """Formula: L = A_l * N^2"""
        return (specific_inductance * turns ** 2).to("mH")

    @staticmethod
    def flux_per_current(outer_diameter, inner_diameter, permeability):
        """Flux linked per ampere in one toroid, in nT*m^3/A."""
        span = outer_diameter - inner_diameter
        total = outer_diameter + inner_diameter
        return (np.pi * span ** 2 * np.pi * total * permeability / (2 * np.pi * total / 2)).to("nT*m^3/A")

    @staticmethod
    def resonant_frequency(specific_inductance, turns, input_capacitance):
        """
        Formula: f_r = 1 / (2 * pi * sqrt(A_l * N^2 * C_in))

        This is the inverse of turns_from_frequency and gives ~1.7 MHz for the
        reference design. It departs on purpose from the ~67 MHz quoted in the
        design notebook, which evaluated 2 * pi / sqrt(A_l * N^2 * C_in).

        Raises DomainError for C_in <= 0.
        """
        if np.any(np.asarray(input_capacitance.value) <= 0):
            raise DomainError(f"input capacitance must be positive, got {input_capacitance}")
        lc = specific_inductance * turns ** 2 * input_capacitance
        return (1 / (2 * np.pi * lc.sqrt())).to("MHz")

    @staticmethod
    def turns_from_frequency(f_lo, f_hi, toroid_count, specific_inductance, jfet_capacitance, jfet_count):
        """
        Turns per toroid that centre the resonance on F0 = sqrt(f_lo * f_hi).

        Formula: N = 1 / (2 * pi * F0 * sqrt(n_toroids * A_l * C_jfet / n_jfet))
        """
        if f_lo.value <= 0 or f_hi.value <= 0:
            raise DomainError("frequency band edges must be positive")
        if jfet_capacitance.value <= 0:
            raise DomainError(f"JFET capacitance must be positive, got {jfet_capacitance}")
        f0 = (f_lo * f_hi).sqrt()
        return (1 / (2 * np.pi * f0 * (toroid_count * specific_inductance * jfet_capacitance / jfet_count).sqrt())).to("1")

    @staticmethod
    def johnson_noise(temperature, resistance):
        """Johnson-Nyquist voltage density: e = sqrt(4 k T R)"""
        return (4 * BOLTZMANN * temperature * resistance).sqrt().to("nV/sqrt(Hz)")

    @staticmethod
    def loop_area(radius):
        return (np.pi * radius ** 2).to("mm^2")


@dataclass(frozen=True, eq=False)
class DerivedSensorProperties:
    """Quantities computed once from a SensorConfig for one analysis."""

    conductor_diameter: PhysicalQuantity
    total_diameter: PhysicalQuantity
    insulation_thickness: PhysicalQuantity
    max_turns: PhysicalQuantity
    turn_length: PhysicalQuantity
    wire_length: PhysicalQuantity
    wire_cross_section: PhysicalQuantity
    winding_resistance: PhysicalQuantity
    winding_mass: PhysicalQuantity
    toroid_inductance: PhysicalQuantity
    flux_per_current: PhysicalQuantity
    resonant_frequency: PhysicalQuantity
    loop_area: PhysicalQuantity

    @classmethod
    def from_config(cls, config, awg_table=None):
        awg_table = default_awg_table() if awg_table is None else awg_table
        awg = awg_table.lookup(config.gauge)
        toroid = get_toroid(config.toroid)
        wire = get_wire(config.wire)

        max_turns = SensorPhysics.max_turns_per_toroid(toroid.inner_diameter, awg.total_diameter)
        logger.info("Max number of turns %s can support is %s turns.", toroid.name.value, max_turns)
        if config.turns > max_turns.value:
            logger.warning(
                "%d turns exceed the single-layer estimate of %.1f for %s; winding needs more than one layer.",
                config.turns, max_turns.value, toroid.name.value,
            )

        wire_length = SensorPhysics.wire_length(config.margin, toroid, config.turns, config.toroid_count)
        logger.info(
            "%d turns will use %s of %d AWG wire w/ %d%% margin.",
            config.turns, wire_length, config.gauge, round(100 * (config.margin - 1)),
        )
        winding_resistance = SensorPhysics.winding_resistance(wire_length, wire.resistivity, awg.conductor_diameter)
        logger.info("Total winding resistance: %s", winding_resistance)

        toroid_inductance = SensorPhysics.toroid_inductance(toroid.specific_inductance, config.turns)
        logger.info("Toroid inductance: %s", toroid_inductance)

        flux = SensorPhysics.flux_per_current(toroid.outer_diameter, toroid.inner_diameter, toroid.permeability)
        logger.info("flux/I in toroid: %s", flux)

        resonance = SensorPhysics.resonant_frequency(
            toroid.specific_inductance, config.turns, config.input_capacitance
        )
        logger.info("Resonant frequency will be centered at %s.", resonance)

        return cls(
            conductor_diameter=awg.conductor_diameter,
            total_diameter=awg.total_diameter,
            insulation_thickness=SensorPhysics.insulation_thickness(awg.conductor_diameter, awg.total_diameter),
            max_turns=max_turns,
            turn_length=SensorPhysics.turn_length(toroid),
            wire_length=wire_length,
            wire_cross_section=SensorPhysics.wire_cross_section(awg.conductor_diameter),
            winding_resistance=winding_resistance,
            winding_mass=SensorPhysics.winding_mass(
                wire_length, awg.conductor_diameter, awg.total_diameter,
                wire.conductor_density, wire.insulation_density,
            ),
            toroid_inductance=toroid_inductance,
            flux_per_current=flux,
            resonant_frequency=resonance,
            loop_area=SensorPhysics.loop_area(config.loop_radius),
        )


def angular(frequency):
    """omega = 2 * pi * f, in rad/s."""
    return (2 * np.pi * frequency).to("rad/s")


class TransferFunctionModel:
    """
    Output voltage per unit input field of the loop -> toroid -> amplifier
    chain closed by the feedback resistor:

        V_s / B_0 = M H / (1 - H Y_cr)

    Each complex stage of the form iA / (B + iC) is reduced to its real
    part AC / (B^2 + C^2).
    """

    def __init__(self, config, properties):
        self.config = config
        self.properties = properties
        toroid = get_toroid(config.toroid)
        self.specific_inductance = toroid.specific_inductance
        self.loop_inductance = config.loop_inductance + toroid.specific_inductance

    @staticmethod
    def find_real(A, B, C):
        """re[iA / (B + iC)] = AC / (B^2 + C^2)"""
        return A * C / (B ** 2 + C ** 2)

    @staticmethod
    def _omega(omega):
        omega = omega.to("rad/s")
        if np.any(np.asarray(omega.value) < 0):
            raise DomainError("angular frequency must not be negative")
        return omega

    def M(self, omega):
        """Loop current per unit field, i_b / B_0 [A/T]."""
        cfg = self.config
        omega = self._omega(omega)
        return self.find_real(
            cfg.loop_surface * omega,
            cfg.loop_resistance,
            self.loop_inductance * omega,
        ).to("A/T")

    def H(self, omega):
        """Toroid + amplifier transimpedance, V_s / i [kΩ]."""
        cfg = self.config
        omega = self._omega(omega)
        n, N, a_l = cfg.toroid_count, cfg.turns, self.specific_inductance
        c_in, r_in, r_s = cfg.input_capacitance, cfg.input_resistance, self.properties.winding_resistance
        return self.find_real(
            -n * a_l * N * cfg.amplifier_gain * omega,
            1 + r_s / r_in - n * a_l * N ** 2 * c_in * omega ** 2,
            (n * a_l * N ** 2 / r_in + r_s * c_in) * omega,
        ).to("kΩ")

    @property
    def Y_cr(self):
        return self.config.feedback_admittance

    def TF(self, omega):
        """Full closed-loop transfer function |M H / (1 - H Y_cr)| [V/nT]."""
        h = self.H(omega)
        return abs(self.M(omega) * h / (1 - h * self.Y_cr)).to("V/nT")

    def TF2(self, omega):
        """High loop-gain limit (|H Y_cr| >> 1): M / Y_cr [V/nT]."""
        cfg = self.config
        omega = self._omega(omega)
        return self.find_real(
            cfg.loop_surface * cfg.feedback_resistance * omega,
            cfg.loop_resistance,
            self.loop_inductance * omega,
        ).to("V/nT")

    def curves(self, frequency):
        """TF and TF2 over a frequency axis [Hz], as FrequencySeries."""
        omega = angular(frequency)
        out = {}
        for name, fn in (("TF", self.TF), ("TF2", self.TF2)):
            values = fn(omega)
            if not values.is_finite():
                raise DomainError(f"{name} is not finite over the requested sweep")
            out[name] = FrequencySeries(frequency, values, name)
        return out
