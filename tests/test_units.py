import numpy as np
import pytest

from hfloop.errors import DomainError, NonPhysicalParameter, UnitMismatch, UnknownUnit
from hfloop.units import Q, parse_unit


def test_prefixed_units_convert_by_scale():
    assert np.isclose(Q(348, "nH").to("mH").value, 3.48e-4)
    assert np.isclose(Q(1, "kΩ").to("ohm").value, 1000.0)
    assert np.isclose(Q(1, "nV/sqrt(Hz)").to("V/sqrt(Hz)").value, 1e-9)
    assert np.isclose(Q(8930, "kg/m^3").to("g/mm^3").value, 8.93e-3)


def test_unit_expressions_with_powers_and_roots():
    assert parse_unit("m^2") == parse_unit("m**2")
    assert Q(1, "m**2").commensurable("mm^2")
    assert Q(1, "V/sqrt(Hz)").commensurable("nV/Hz**0.5")
    assert Q(1, "µV").commensurable("μV")


def test_derived_units_reduce_to_base_dimensions():
    assert (Q(1, "mm") * Q(1, "kHz")).commensurable("m/s")
    assert np.isclose((Q(1, "mm") * Q(1, "kHz")).to("m/s").value, 1.0)
    assert (Q(2, "Ω") * Q(3, "A")).commensurable("V")


def test_unknown_unit_is_rejected():
    with pytest.raises(UnknownUnit):
        Q(1, "quux")


def test_adding_different_dimensions_fails():
    with pytest.raises(UnitMismatch):
        Q(1, "m") + Q(1, "s")
    with pytest.raises(UnitMismatch):
        Q(1, "m").to("Hz")


def test_addition_converts_into_left_unit_and_adds_errors_in_quadrature():
    total = Q(1, "m") + Q(50, "cm")
    assert total.unit == parse_unit("m")
    assert np.isclose(total.value, 1.5)

    total = Q(10, "m", 3) + Q(5, "m", 4)
    assert np.isclose(total.value, 15)
    assert np.isclose(total.uncertainty, 5)

    diff = Q(10, "m", 3) - Q(5, "m", 4)
    assert np.isclose(diff.value, 5)
    assert np.isclose(diff.uncertainty, 5)


def test_product_adds_relative_errors_in_quadrature():
    power = Q(10, "V", 1) * Q(2, "A", 0.2)
    assert np.isclose(power.to("W").value, 20)
    assert np.isclose(power.relative_uncertainty, np.sqrt(0.1 ** 2 + 0.1 ** 2))

    ratio = Q(10, "V", 1) / Q(2, "A", 0.2)
    assert np.isclose(ratio.to("Ω").value, 5)
    assert np.isclose(ratio.uncertainty, 5 * np.sqrt(0.02))


def test_zero_valued_factor_contributes_no_relative_error():
    product = Q(3, "V", 0.3) * Q(0, "A", 0.1)
    assert product.value == 0
    assert product.uncertainty == 0
    assert product.is_finite()


def test_division_by_exact_zero_is_a_domain_error():
    with pytest.raises(DomainError):
        Q(1, "V") / Q(0, "A")
    with pytest.raises(DomainError):
        Q(1, "V") / Q([1.0, 0.0], "A")


def test_power_scales_relative_error():
    root = Q(4, "m^2", 0.4).sqrt()
    assert np.isclose(root.to("m").value, 2)
    assert np.isclose(root.to("m").uncertainty, 0.1)

    cube = Q(2, "mm", 0.02) ** 3
    assert np.isclose(cube.relative_uncertainty, 0.03)


def test_invalid_powers_are_domain_errors():
    with pytest.raises(DomainError):
        Q(-4, "m^2").sqrt()
    with pytest.raises(DomainError):
        Q(0, "m") ** -1


def test_negative_uncertainty_is_non_physical():
    with pytest.raises(NonPhysicalParameter):
        Q(1, "m", -0.1)


def test_dimensionless_float_conversion():
    assert float(Q(2, "1")) == 2.0
    assert np.isclose(float(Q(1, "Ω") / Q(1, "kΩ")), 1e-3)
    with pytest.raises(UnitMismatch):
        float(Q(2, "m"))


def test_array_quantities_slice_and_stack():
    lengths = Q([1.0, 2.0, 3.0], "mm", [0.1, 0.1, 0.2])
    tail = lengths[1:]
    assert len(tail) == 2
    assert np.allclose(tail.uncertainty, [0.1, 0.2])

    stacked = Q.stack([Q(1, "m"), Q(20, "cm")], unit="cm")
    assert np.allclose(stacked.value, [100, 20])

    with pytest.raises(ValueError):
        lengths.value[0] = 5.0


def test_comparisons_use_nominal_values_across_units():
    assert Q(1, "km") > Q(999, "m")
    assert Q(1, "mm") < Q(1, "m")
    with pytest.raises(UnitMismatch):
        Q(1, "m") < Q(1, "s")


def test_formatting_shows_value_error_and_unit():
    assert format(Q(1.5, "mm", 0.3)) == "1.5 ± 0.3 mm"
    assert format(Q(2, "K")) == "2 K"


def test_equality_converts_units_before_comparing():
    assert Q(1, "km") == Q(1000, "m")
    assert Q(1, "kΩ") != Q(1, "Ω")
    assert not (Q(1, "km") != Q(1000, "m"))


def test_equality_across_dimensions_is_false_not_an_error():
    assert not (Q(1, "m") == Q(1, "s"))
    assert Q(1, "m") != Q(1, "s")


def test_quantities_are_not_hashable():
    with pytest.raises(TypeError):
        hash(Q(1, "m"))
