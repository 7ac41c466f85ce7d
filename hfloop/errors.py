class HFLoopError(Exception):
    """Base class for every failure raised by the sensor model."""


class ConfigurationError(HFLoopError, ValueError):
    """A design or measurement parameter is unusable."""


class UnitMismatch(ConfigurationError):
    """Two quantities do not share a physical dimension."""


class UnknownUnit(ConfigurationError):
    """A unit expression could not be parsed."""


class NonPhysicalParameter(ConfigurationError):
    """Zero/negative resistance, capacitance, temperature, count etc."""


class LookupMiss(HFLoopError, LookupError):
    """A key is absent from a lookup table."""

    def __init__(self, key, message=None):
        self.key = key
        super().__init__(message or f"{key!r} not found")


class UnknownKey(ConfigurationError, LookupMiss):
    """Unrecognised toroid or wire catalog name."""


class GaugeNotFound(LookupMiss):
    """AWG gauge absent from the wire table."""


class DomainError(HFLoopError, ValueError):
    """A model function was evaluated outside the range where it is defined."""


class AxisMismatch(HFLoopError, ValueError):
    """Frequency axes of combined traces disagree, or are not increasing."""
