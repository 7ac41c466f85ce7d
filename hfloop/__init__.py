"""Design model and calibration reduction for a high-frequency loop magnetometer."""

__version__ = "0.1.0"
