import logging

import numpy as np

from .catalog import get_toroid
from .errors import DomainError
from .physics import SensorPhysics
from .series import FrequencySeries
from .units import PhysicalQuantity

logger = logging.getLogger(__name__)


class NoiseModel:
    """
    Output voltage noise density of the sensor with no input field.

    Four independent contributors, combined in quadrature:
        v_b1  thermal noise of the wound toroids, shaped by the input network
        v_b2  thermal noise of the biasing resistor R_in
        v_b3  amplifier current noise through R_in || A(f)
        v_b4  amplifier voltage noise e_ba (flat)
    with A(f) = 2 pi f A_l N^2.

    Only defined for f > 0; any f <= 0 in a request raises DomainError.
    """

    UNIT = "nV/sqrt(Hz)"

    def __init__(self, config, properties):
        self.config = config
        self.properties = properties
        self.specific_inductance = get_toroid(config.toroid).specific_inductance
        self.e_bt = SensorPhysics.johnson_noise(config.temperature, properties.winding_resistance)
        logger.info("Johnson-Nyquist noise of wound toroid e_bt: %s", self.e_bt)
        self.e_bR = SensorPhysics.johnson_noise(config.temperature, config.input_resistance)
        logger.info("Johnson-Nyquist noise of biasing circuit e_bR: %s", self.e_bR)

    @staticmethod
    def _frequency(f):
        f = f.to("Hz")
        if np.any(np.asarray(f.value) <= 0):
            raise DomainError("noise densities are only defined for f > 0")
        return f

    def A(self, f):
        """Winding reactance 2 pi f A_l N^2 [Ω]."""
        f = self._frequency(f)
        return (2 * np.pi * f * self.specific_inductance * self.config.turns ** 2).to("Ω")

    def v_b1(self, f):
        f = self._frequency(f)
        cfg = self.config
        shaping = (
            1
            + self.A(f) / cfg.input_resistance
            - (2 * np.pi * f) ** 2 * cfg.input_capacitance * self.specific_inductance * cfg.turns ** 2
        )
        # magnitude: the shaping term changes sign above the input-network resonance
        return abs(self.e_bt / shaping).to(self.UNIT)

    def v_b2(self, f):
        return (self.e_bR / (1 + self.config.input_resistance / self.A(f))).to(self.UNIT)

    def v_b3(self, f):
        return (self.config.current_noise / (1 / self.config.input_resistance + 1 / self.A(f))).to(self.UNIT)

    def v_b4(self, f):
        f = self._frequency(f)
        e_ba = self.config.voltage_noise.to(self.UNIT)
        if np.ndim(f.value) == 0:
            return e_ba
        ones = np.ones(np.shape(f.value))
        return PhysicalQuantity(e_ba.value * ones, e_ba.unit, e_ba.uncertainty * ones)

    def v_b(self, f):
        """Total: sqrt(v_b1^2 + v_b2^2 + v_b3^2 + v_b4^2)"""
        total = self.v_b1(f) ** 2 + self.v_b2(f) ** 2 + self.v_b3(f) ** 2 + self.v_b4(f) ** 2
        return total.sqrt().to(self.UNIT)

    def contributors(self, f):
        return {
            "v_b1": self.v_b1(f),
            "v_b2": self.v_b2(f),
            "v_b3": self.v_b3(f),
            "v_b4": self.v_b4(f),
            "v_b": self.v_b(f),
        }

    def curves(self, frequency):
        """All contributors over a frequency axis [Hz], as FrequencySeries."""
        out = {}
        for name, values in self.contributors(frequency).items():
            if not values.is_finite():
                raise DomainError(f"{name} is not finite over the requested sweep")
            out[name] = FrequencySeries(frequency, values, name)
        return out
