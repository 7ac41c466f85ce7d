"""
Static component catalogs: toroid cores, winding wire materials and AWG sizes.

Toroid and wire entries are keyed by closed enumerations; every member must
have a table entry (checked at import).  The AWG table is read from a CSV
lookup file once per process and shared read-only.
"""
import logging
import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

import pandas as pd

from .errors import GaugeNotFound, UnknownKey
from .units import Q, PhysicalQuantity

logger = logging.getLogger(__name__)

DEFAULT_AWG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "lookup", "awg.csv")


class ToroidType(str, Enum):
    TN10_4A11 = "TN10/6/4-4A11"
    TN13_4A11 = "TN13/7.5/5-4A11"
    TX10_4C65 = "TX10/6/4-4C65"


class WireMaterial(str, Enum):
    COPPER = "Cu"
    ALUMINUM = "Al"
    HTCCA = "HTCCA"


@dataclass(frozen=True)
class ToroidSpec:
    name: ToroidType
    outer_diameter: PhysicalQuantity
    inner_diameter: PhysicalQuantity
    height: PhysicalQuantity
    chamfer: PhysicalQuantity
    specific_inductance: PhysicalQuantity   # A_l, inductance per turn^2
    permeability: PhysicalQuantity          # initial permeability mu_i


@dataclass(frozen=True)
class WireSpec:
    name: WireMaterial
    resistivity: PhysicalQuantity
    conductor_density: PhysicalQuantity
    insulation_density: PhysicalQuantity
    permittivity: PhysicalQuantity          # eps_r of the insulator


@dataclass(frozen=True)
class AwgEntry:
    gauge: int
    conductor_diameter: PhysicalQuantity    # d_w, with tolerance
    total_diameter: PhysicalQuantity        # d_total, insulated

    @property
    def insulation_thickness(self):
        return self.total_diameter - self.conductor_diameter


# mu_i is the relative initial permeability; it keeps the H/m tag of the
# datasheet tables, so flux_per_current is a figure of merit, not SI flux.
def _toroid(name, od, id_, h, a_l, mu_i, tol=0.3):
    return ToroidSpec(
        name=name,
        outer_diameter=Q(od, "mm", tol),
        inner_diameter=Q(id_, "mm", tol),
        height=Q(h, "mm", tol),
        chamfer=Q(0.1, "mm"),
        specific_inductance=Q(a_l, "nH", 0.25 * a_l),
        permeability=Q(mu_i, "H/m", 0.2 * mu_i),
    )


# Ferroxcube TN/TX datasheets
TOROIDS = {
    ToroidType.TN13_4A11: _toroid(ToroidType.TN13_4A11, 13.0, 6.8, 5.4, 358.0, 700.0, tol=0.35),
    ToroidType.TN10_4A11: _toroid(ToroidType.TN10_4A11, 10.6, 5.2, 4.4, 348.0, 700.0),
    ToroidType.TX10_4C65: _toroid(ToroidType.TX10_4C65, 10.6, 5.2, 4.4, 52.0, 125.0),
}


def _wire(name, rho_nohm_m, density):
    # insulation density is valid for P155, PN155, P180 and E180 enamels
    return WireSpec(
        name=name,
        resistivity=Q(rho_nohm_m, "nΩ*m"),
        conductor_density=Q(density, "kg/m^3"),
        insulation_density=Q(1200.0, "kg/m^3"),
        permittivity=Q(3.0, "F/m"),  # relative permittivity of the enamel, tagged F/m as tabulated
    )


WIRES = {
    WireMaterial.COPPER: _wire(WireMaterial.COPPER, 17.1, 8930.0),
    WireMaterial.ALUMINUM: _wire(WireMaterial.ALUMINUM, 27.9, 2700.0),
    WireMaterial.HTCCA: _wire(WireMaterial.HTCCA, 27.8, 3630.0),
}


def _check_complete(table, keys, what):
    missing = set(keys) - set(table)
    if missing:
        raise RuntimeError(f"{what} catalog has no entry for {sorted(k.value for k in missing)}")


_check_complete(TOROIDS, ToroidType, "toroid")
_check_complete(WIRES, WireMaterial, "wire")


def toroid_type(name):
    """Validate a toroid key (enum member or catalog string)."""
    try:
        return ToroidType(name)
    except ValueError:
        valid = ", ".join(t.value for t in ToroidType)
        raise UnknownKey(name, f"unknown toroid {name!r}; expected one of: {valid}") from None


def wire_material(name):
    """Validate a wire key (enum member or catalog string)."""
    try:
        return WireMaterial(name)
    except ValueError:
        valid = ", ".join(w.value for w in WireMaterial)
        raise UnknownKey(name, f"unknown wire material {name!r}; expected one of: {valid}") from None


def get_toroid(name):
    return TOROIDS[toroid_type(name)]


def get_wire(name):
    return WIRES[wire_material(name)]


def _gauge_key(gauge):
    try:
        as_float = float(gauge)
    except (TypeError, ValueError):
        return None
    return int(as_float) if as_float.is_integer() else None


class AwgTable:
    """
    Gauge -> conductor/total diameter lookup backed by a CSV file.

    Columns: awg, conductor diameter, conductor error, total diameter (mm).
    Coverage may be sparse; missing gauges are a normal lookup miss.
    """

    COLUMNS = ("awg", "conductor diameter", "conductor error", "total diameter")

    def __init__(self, entries=None):
        self._entries = dict(entries or {})

    @classmethod
    def from_csv(cls, filepath=DEFAULT_AWG_PATH):
        if not os.path.exists(filepath):
            logger.warning("No AWG table at %s; every gauge lookup will miss.", filepath)
            return cls()

        df = pd.read_csv(filepath)
        df.columns = [str(c).strip().lower() for c in df.columns]
        missing = [c for c in cls.COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"AWG table {filepath} lacks columns: {missing}")
        df = df[list(cls.COLUMNS)].apply(pd.to_numeric, errors="coerce").dropna()

        entries = {}
        for row in df.itertuples(index=False):
            gauge = int(row[0])
            entries[gauge] = AwgEntry(
                gauge=gauge,
                conductor_diameter=Q(row[1], "mm", row[2]),
                total_diameter=Q(row[3], "mm"),
            )
        logger.info("Loaded %d AWG sizes from %s", len(entries), filepath)
        return cls(entries)

    @property
    def gauges(self):
        return sorted(self._entries)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, gauge):
        return _gauge_key(gauge) in self._entries

    def get(self, gauge):
        """Entry for `gauge`, or None when the table has no such size."""
        entry = self._entries.get(_gauge_key(gauge))
        if entry is None:
            logger.warning("Not a valid gauge: %r", gauge)
        return entry

    def lookup(self, gauge):
        entry = self._entries.get(_gauge_key(gauge))
        if entry is None:
            raise GaugeNotFound(gauge, f"AWG {gauge!r} not in table")
        return entry


@lru_cache(maxsize=None)
def default_awg_table():
    return AwgTable.from_csv(DEFAULT_AWG_PATH)


def get_awg(gauge, table=None):
    """AWG entry for `gauge` from `table` (default: bundled table)."""
    table = default_awg_table() if table is None else table
    return table.lookup(gauge)
