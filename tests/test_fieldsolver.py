"""AnalyticField: charge solve, field queries, status codes and caching."""

from __future__ import annotations

import math

import pytest

import capacitance_cache
import point_charges
from cell import CellType
from fieldsolver import AnalyticField
from numerics import FOUR_PI_EPSILON_0
from point_charges import slab_sum


WIRE_D = 0.01


def _coax(v_wire: float = 1000.0, v_tube: float = 0.0, radius: float = 1.0) -> AnalyticField:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, v_wire, "s")
    field.add_tube(radius, v_tube, label="c")
    return field


def _wires_over_plane() -> AnalyticField:
    field = AnalyticField()
    field.add_plane_y(0.0, 0.0, "p")
    field.add_wire(-0.5, 1.0, WIRE_D, 1000.0, "s")
    field.add_wire(0.5, 1.0, WIRE_D, 500.0, "t")
    return field


def _surface(x: float, y: float) -> tuple:
    # Just outside the wire surface
    return x, y + 0.5 * WIRE_D * 1.001


def test_coaxial_potential_and_field() -> None:
    field = _coax(1000.0, 100.0)
    assert field.prepare()
    assert field.get_cell_type() == CellType.D10

    rho = 0.5
    log_ratio = math.log(1.0 / (0.5 * WIRE_D))
    ex, ey, ez, v, status = field.electric_field(rho, 0.0, 0.0, potential=True)
    assert status == 0
    assert v == pytest.approx(100.0 + 900.0 * math.log(1.0 / rho) / log_ratio, rel=1e-9)
    assert ex == pytest.approx(900.0 / log_ratio / rho, rel=1e-9)
    assert ey == pytest.approx(0.0, abs=1e-9)
    assert ez == 0.0


def test_electric_field_without_potential_returns_status() -> None:
    field = _coax()
    result = field.electric_field(0.3, 0.4, 0.0)
    assert len(result) == 4
    assert result[3] == 0


def test_wire_surface_potential_matches_voltage() -> None:
    field = _wires_over_plane()
    for x, v_wire in ((-0.5, 1000.0), (0.5, 500.0)):
        xs, ys = _surface(x, 1.0)
        _, _, _, v, status = field.electric_field(xs, ys, 0.0, potential=True)
        assert status == 0
        assert v == pytest.approx(v_wire, abs=0.01 * v_wire)


def test_periodic_wire_surface_potential() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    field.add_plane_y(-1.0, 0.0)
    field.set_periodicity_x(1.0)
    assert field.get_cell_type() == CellType.B1X
    _, _, _, v, _ = field.electric_field(*_surface(0.0, 0.0), 0.0, potential=True)
    assert v == pytest.approx(1000.0, abs=10.0)


def test_charge_neutrality_without_planes() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    field.add_wire(1.0, 0.0, WIRE_D, 0.0)
    field.add_wire(0.0, 1.0, WIRE_D, 500.0)
    charges = field.get_wire_charges()
    assert charges is not None
    assert abs(sum(charges)) < 1e-9 * max(abs(e) for e in charges)


def test_periodicity_invariance() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    field.add_plane_y(-1.0, 0.0)
    field.set_periodicity_x(1.0)
    base = field.electric_field(0.3, 0.4, 0.0, potential=True)
    for shift in (3.0, -2.0):
        moved = field.electric_field(0.3 + shift, 0.4, 0.0, potential=True)
        assert moved[4] == base[4] == 0
        for a, b in zip(moved[:4], base[:4]):
            assert a == pytest.approx(b, rel=1e-9, abs=1e-9)


def test_overlapping_wire_is_dropped_and_cell_prepared() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, 0.1, 1000.0)
    field.add_wire(0.05, 0.0, 0.1, 1000.0)
    field.add_plane_y(-1.0, 0.0)
    assert field.prepare()
    dropped = field.get_dropped_wires()
    assert len(dropped) == 1
    assert dropped[0][0].x == 0.05
    assert field.get_number_of_wires() == 2


def test_identical_potentials_cannot_be_prepared() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 100.0)
    field.add_wire(1.0, 0.0, WIRE_D, 100.0)
    assert not field.prepare()
    assert field.electric_field(0.5, 0.5, 0.0) == (0.0, 0.0, 0.0, -11)
    assert field.get_voltage_range() is None
    assert field.get_bounding_box() is None
    assert field.get_cell_type() is None
    assert field.weighting_potential(0.5, 0.5, 0.0, "s") == 0.0
    assert field.is_wire_crossed(-1.0, 0.0, 0.0, 2.0, 0.0, 0.0)[0] is False


def test_status_codes() -> None:
    field = _wires_over_plane()
    _, _, _, v, status = field.electric_field(0.0, -0.5, 0.0, potential=True)
    assert status == -4
    assert v == 0.0
    _, _, _, v, status = field.electric_field(0.5, 1.001, 0.0, potential=True)
    assert status == 2
    assert v == 500.0
    assert field.electric_field(-0.5, 1.0, 0.0)[3] == 1


def test_voltage_range_and_bounding_box() -> None:
    field = _coax(1000.0, 100.0, radius=2.0)
    assert field.get_voltage_range() == (100.0, 1000.0)
    xmin, ymin, zmin, xmax, ymax, zmax = field.get_bounding_box()
    assert xmin == pytest.approx(-2.2)
    assert xmax == pytest.approx(2.2)
    assert (zmin, zmax) == (-50.0, 50.0)


def test_point_charge_adds_to_field_without_resolve() -> None:
    field = AnalyticField()
    field.add_plane_y(0.0, 0.0)
    field.add_wire(2.0, 1.0, WIRE_D, 1000.0)
    _, _, ez0, v0, _ = field.electric_field(0.0, 1.0, 1.0, potential=True)
    solves = field.get_stats()["charge_solves"]

    field.add_charge(0.0, 1.0, 0.0, 1.0)
    _, _, ez1, v1, _ = field.electric_field(0.0, 1.0, 1.0, potential=True)
    e = 1.0 / FOUR_PI_EPSILON_0
    # Direct charge at distance 1, mirror image in the plane at distance sqrt(5)
    assert v1 - v0 == pytest.approx(e * (1.0 - 1.0 / math.sqrt(5.0)), rel=1e-9)
    assert ez1 - ez0 == pytest.approx(e * (1.0 - 1.0 / 5.0 ** 1.5), rel=1e-9)
    assert field.get_stats()["charge_solves"] == solves


def test_point_charge_between_planes_vanishes_on_the_planes() -> None:
    field = AnalyticField()
    field.add_plane_x(-0.5, 0.0)
    field.add_plane_x(0.5, 0.0)
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    assert field.get_cell_type() == CellType.B2X
    v_plane = field.electric_field(0.5, 3.0, 0.0, potential=True)[3]
    v_mid = field.electric_field(0.0, 3.0, 0.0, potential=True)[3]

    field.add_charge(0.0, 0.0, 0.0, 1.0)
    assert field.electric_field(0.5, 3.0, 0.0, potential=True)[3] == pytest.approx(v_plane, abs=1e-10)
    assert field.electric_field(0.0, 3.0, 0.0, potential=True)[3] > v_mid


def test_wire_crossing_and_trap_radius() -> None:
    field = AnalyticField()
    field.add_plane_y(-1.0, 0.0)
    field.add_wire(0.0, 0.0, 0.1, 1000.0)

    crossed, xc, yc, zc = field.is_wire_crossed(-1.0, 0.0, 0.0, 1.0, 0.0, 2.0)
    assert crossed
    assert xc == pytest.approx(-0.05)
    assert yc == pytest.approx(0.0)
    assert zc == pytest.approx(0.95)
    assert not field.is_wire_crossed(-1.0, 0.5, 0.0, 1.0, 0.5, 0.0)[0]

    trapped, xw, yw, rw = field.is_in_trap_radius(-1.0, 0.1, 0.05, 0.0)
    assert trapped
    assert (xw, yw, rw) == (0.0, 0.0, 0.05)
    assert not field.is_in_trap_radius(1.0, 0.1, 0.05, 0.0)[0]
    assert not field.is_in_trap_radius(-1.0, 0.5, 0.5, 0.0)[0]


def test_registry_changes_invalidate_the_right_cache() -> None:
    field = _coax()
    field.electric_field(0.5, 0.0, 0.0)
    field.electric_field(0.6, 0.0, 0.0)
    assert field.get_stats()["charge_solves"] == 1

    field.add_readout("s")
    field.electric_field(0.5, 0.0, 0.0)
    assert field.get_stats()["charge_solves"] == 1
    field.weighting_potential(0.5, 0.0, 0.0, "s")
    field.weighting_potential(0.6, 0.0, 0.0, "s")
    assert field.get_stats()["signal_solves"] == 1

    field.add_wire(0.5, 0.0, WIRE_D, 0.0)
    field.electric_field(0.3, 0.0, 0.0)
    field.weighting_potential(0.3, 0.0, 0.0, "s")
    stats = field.get_stats()
    assert stats["charge_solves"] == 2
    assert stats["signal_solves"] == 2


def test_failed_add_does_not_invalidate() -> None:
    field = _coax()
    field.prepare()
    assert not field.add_wire(0.5, 0.0, -1.0, 0.0)
    field.prepare()
    assert field.get_stats()["charge_solves"] == 1


def test_capacitance_matrix_reused_for_new_voltages() -> None:
    capacitance_cache.clear_cache()
    first = _coax(1000.0)
    second = _coax(2000.0)
    q1 = first.get_wire_charges()
    assert capacitance_cache.get_cache_stats()["cached_matrices"] == 1
    q2 = second.get_wire_charges()
    assert capacitance_cache.get_cache_stats()["cached_matrices"] == 1
    assert q2[0] == pytest.approx(2.0 * q1[0], rel=1e-12)


def test_registry_is_not_modified_by_preparation() -> None:
    field = AnalyticField()
    field.add_wire(2.3, 0.0, WIRE_D, 1000.0)
    field.add_plane_y(-1.0, 0.0)
    field.set_periodicity_x(1.0)
    assert field.prepare()
    assert field.get_wire(0).x == 2.3
    assert field.get_wire(0).e == 0.0


def _charge_shift(field: AnalyticField, charge: tuple, points: list) -> list:
    # Potential added by one point charge at each point
    before = [field.electric_field(*p, potential=True)[3] for p in points]
    field.add_charge(*charge, 1.0)
    after = [field.electric_field(*p, potential=True)[3] for p in points]
    return [b - a for a, b in zip(before, after)]


def test_point_charge_near_source_between_x_planes() -> None:
    field = AnalyticField()
    field.add_plane_x(-0.5, 0.0)
    field.add_plane_x(0.5, 0.0)
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    # Both points closer to the charge than twice the plane separation
    dv_plane, dv_near = _charge_shift(field, (0.1, 0.3, 0.0), [(0.5, 0.5, 0.2), (0.1, 0.5, 0.0)])
    assert dv_near > 1.0 / FOUR_PI_EPSILON_0
    assert abs(dv_plane) < 1e-4 * dv_near


def test_point_charge_between_y_planes() -> None:
    field = AnalyticField()
    field.add_plane_y(-0.5, 0.0)
    field.add_plane_y(0.5, 0.0)
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0)
    assert field.get_cell_type() == CellType.B2Y
    points = [(3.3, 0.5, 0.0), (0.4, 0.5, 0.1), (0.3, -0.5, 0.2), (0.3, 0.1, 0.5)]
    far_plane, near_plane, low_plane, near = _charge_shift(field, (0.3, 0.1, 0.0), points)
    assert near > 0.0
    assert far_plane == pytest.approx(0.0, abs=1e-10)
    assert abs(near_plane) < 1e-4 * near
    assert abs(low_plane) < 1e-4 * near


@pytest.mark.parametrize("da, dam", [(0.3, 0.9), (0.0, 1.0), (0.1, 0.9)])
def test_slab_series_agree_at_crossover(da: float, dam: float) -> None:
    # rho = 2 s separates the Bessel series from the mirror sum
    inner = slab_sum(da, dam, 1.2 * (1.0 - 1e-9), 1.6 * (1.0 - 1e-9), 1.0, 10, 100)
    outer = slab_sum(da, dam, 1.2 * (1.0 + 1e-9), 1.6 * (1.0 + 1e-9), 1.0, 10, 100)
    assert inner[0] == pytest.approx(outer[0], rel=1e-2)
    for a, b in zip(inner[1:], outer[1:]):
        assert a == pytest.approx(b, rel=1e-2, abs=1e-4)


def test_point_charge_in_tube_vanishes_on_tube() -> None:
    field = _coax()
    assert field.get_cell_type() == CellType.D10
    points = [(-1.0, 0.0, 0.0), (0.0, 1.0, 0.2), (0.5, 0.0, 0.3)]
    back, side, near = _charge_shift(field, (0.5, 0.0, 0.0), points)
    assert near > 0.0
    assert abs(back) < 1e-3 * near
    assert abs(side) < 1e-3 * near


def test_point_charge_in_tube_needs_central_wire(monkeypatch, capsys) -> None:
    monkeypatch.setattr(point_charges, "_warned_d10_no_wire", False)
    field = AnalyticField()
    field.add_wire(0.3, 0.0, WIRE_D, 1000.0)
    field.add_tube(1.0, 0.0)
    point = (-0.5, 0.2, 0.0)
    assert _charge_shift(field, (0.0, 0.5, 0.0), [point]) == [0.0]
    assert "no central wire" in capsys.readouterr().out


def test_clear_charges_keeps_configured_series_lengths() -> None:
    field = AnalyticField(config={"n_term_bessel": 4, "n_term_poly": 20})
    field.add_charge(0.0, 0.5, 0.0, 1.0)
    field.geometry.n_term_bessel = 7
    field.clear_charges()
    assert (field.geometry.n_term_bessel, field.geometry.n_term_poly) == (4, 20)
