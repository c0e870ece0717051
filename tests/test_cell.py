"""Cell check (folding, ordering, wire drops) and cell type classification."""

from __future__ import annotations

import math
from typing import Callable

import pytest

from cell import CellType, check_cell, classify_cell, in_tube, set_default_gaps
from geometry import CellGeometry, X_HIGH, X_LOW, Y_HIGH, Y_LOW


def _wire(geometry: CellGeometry, x: float, y: float, v: float = 100.0, d: float = 0.01) -> None:
    assert geometry.add_wire(x, y, d, v)


def _a00() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0, 100.0)
    _wire(g, 1.0, 0.0, 0.0)
    return g


def _b1x() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_y(-1.0, 0.0)
    g.set_periodicity_x(1.0)
    return g


def _b1y() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_x(-1.0, 0.0)
    g.set_periodicity_y(1.0)
    return g


def _b2x_two_planes() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_x(-0.5, 0.0)
    g.add_plane_x(0.7, 0.0)
    return g


def _b2y_periodic() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_y(-0.4, 0.0)
    g.set_periodicity_y(1.0)
    return g


def _c10() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0, 100.0)
    _wire(g, 0.5, 0.5, 0.0)
    g.set_periodicity_x(1.0)
    g.set_periodicity_y(1.0)
    return g


def _c2x() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_x(-0.4, 0.0)
    g.set_periodicity_x(1.0)
    g.set_periodicity_y(1.0)
    return g


def _c2y() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_y(-0.4, 0.0)
    g.set_periodicity_x(1.0)
    g.set_periodicity_y(1.0)
    return g


def _c30() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_plane_x(-0.5, 0.0)
    g.add_plane_x(0.5, 0.0)
    g.add_plane_y(-0.5, 0.0)
    g.add_plane_y(0.5, 0.0)
    return g


def _d10() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_tube(1.0, 0.0)
    return g


def _d20() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.5, 0.0)
    g.add_tube(1.0, 0.0)
    g.set_periodicity_y(math.pi / 2.0)
    return g


def _d30() -> CellGeometry:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_tube(1.0, 0.0, n_edges=4)
    return g


@pytest.mark.parametrize(
    "build, expected",
    [
        (_a00, CellType.A00),
        (_b1x, CellType.B1X),
        (_b1y, CellType.B1Y),
        (_b2x_two_planes, CellType.B2X),
        (_b2y_periodic, CellType.B2Y),
        (_c10, CellType.C10),
        (_c2x, CellType.C2X),
        (_c2y, CellType.C2Y),
        (_c30, CellType.C30),
        (_d10, CellType.D10),
        (_d20, CellType.D20),
        (_d30, CellType.D30),
    ],
)
def test_classification(build: Callable[[], CellGeometry], expected: CellType) -> None:
    state, drops = check_cell(build())
    assert state is not None
    assert drops == []
    assert classify_cell(state)
    assert state.cell_type == expected


def test_plane_separation_becomes_period() -> None:
    state, _ = check_cell(_b2x_two_planes())
    classify_cell(state)
    assert state.sx == pytest.approx(1.2)


def test_angular_period_sets_sector_count() -> None:
    state, _ = check_cell(_d20())
    classify_cell(state)
    assert state.mtube == 4


def test_polygonal_tube_with_angular_period_is_rejected() -> None:
    g = _d30()
    g.set_periodicity_y(math.pi / 2.0)
    state, _ = check_cell(g)
    assert state is not None
    assert not classify_cell(state)
    assert state.cell_type == CellType.D40


def test_unsupported_polygon_falls_back_to_round_tube() -> None:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    g.add_tube(1.0, 0.0, n_edges=12)
    state, _ = check_cell(g)
    assert classify_cell(state)
    assert state.cell_type == CellType.D10


def test_wire_outside_plane_is_dropped() -> None:
    g = CellGeometry()
    g.add_plane_x(0.0, 0.0)
    _wire(g, 0.5, 0.0)
    _wire(g, -0.5, 0.0)
    state, drops = check_cell(g)
    assert state is not None
    assert state.n_wires == 1
    assert [reason for _, reason in drops] == ["located outside the planes"]
    assert drops[0][0].x == -0.5


def test_wire_outside_tube_is_dropped() -> None:
    g = CellGeometry()
    g.add_tube(1.0, 0.0)
    _wire(g, 0.0, 0.0)
    _wire(g, 2.0, 0.0)
    state, drops = check_cell(g)
    assert state.n_wires == 1
    assert [reason for _, reason in drops] == ["located outside the tube"]


def test_wire_thicker_than_period_is_dropped() -> None:
    g = CellGeometry()
    g.add_plane_y(-1.0, 0.0)
    g.set_periodicity_x(0.1)
    _wire(g, 0.0, 0.0, d=0.2)
    _wire(g, 0.03, 0.0)
    state, drops = check_cell(g)
    assert state.n_wires == 1
    assert [reason for _, reason in drops] == ["diameter exceeds 1 period"]


def test_overlapping_wire_is_dropped() -> None:
    g = CellGeometry()
    _wire(g, 0.0, 0.0, 100.0, d=0.1)
    _wire(g, 0.05, 0.0, 100.0, d=0.1)
    _wire(g, 1.0, 0.0, 0.0, d=0.1)
    state, drops = check_cell(g)
    assert state is not None
    assert state.n_wires == 2
    assert len(drops) == 1
    assert drops[0][0].x == 0.05
    assert drops[0][1] == "overlaps another wire"


def test_overlap_through_periodic_image() -> None:
    g = CellGeometry()
    g.add_plane_y(-1.0, 0.0)
    g.set_periodicity_x(1.0)
    _wire(g, 0.48, 0.0, d=0.1)
    _wire(g, -0.48, 0.0, d=0.1)
    state, drops = check_cell(g)
    assert state.n_wires == 1
    assert drops[0][1] == "overlaps another wire"


def test_wires_are_folded_without_touching_registry() -> None:
    g = CellGeometry()
    g.add_plane_y(-1.0, 0.0)
    g.set_periodicity_x(1.0)
    _wire(g, 2.3, 0.0)
    state, _ = check_cell(g)
    assert state.wires[0].x == pytest.approx(0.3)
    assert g.get_wire(0).x == 2.3


def test_planes_are_ordered() -> None:
    g = CellGeometry()
    g.add_plane_x(1.0, 0.0)
    g.add_plane_x(-1.0, 0.0)
    _wire(g, 0.0, 0.0)
    state, _ = check_cell(g)
    assert state.coplan(X_LOW) == -1.0
    assert state.coplan(X_HIGH) == 1.0


def test_single_plane_above_wires_moves_to_upper_slot() -> None:
    g = CellGeometry()
    g.add_plane_y(1.0, 0.0)
    _wire(g, 0.0, 0.0)
    state, _ = check_cell(g)
    assert not state.has_plane(Y_LOW)
    assert state.coplan(Y_HIGH) == 1.0


def test_conflicting_crossing_planes() -> None:
    g = CellGeometry()
    g.add_plane_x(-1.0, 0.0)
    g.add_plane_y(-1.0, 50.0)
    _wire(g, 0.0, 0.0)
    state, _ = check_cell(g)
    assert not state.has_plane(Y_LOW)
    assert not state.has_plane(Y_HIGH)


def test_identical_potentials_reject_cell() -> None:
    g = CellGeometry()
    _wire(g, 0.0, 0.0, 100.0)
    _wire(g, 1.0, 0.0, 100.0)
    state, _ = check_cell(g)
    assert state is None


def test_single_element_rejects_cell() -> None:
    g = CellGeometry()
    _wire(g, 0.0, 0.0)
    state, _ = check_cell(g)
    assert state is None


def test_bounding_box_and_voltage_range() -> None:
    state, _ = check_cell(_d10())
    assert state.xmin == pytest.approx(-1.1)
    assert state.ymax == pytest.approx(1.1)
    assert (state.vmin, state.vmax) == (0.0, 100.0)
    assert state.zmax == pytest.approx(50.0)


def test_default_gaps() -> None:
    g = CellGeometry()
    g.add_plane_y(0.0, 0.0)
    g.add_plane_y(0.8, 100.0)
    g.add_strip_on_plane_y("z", 0.0, -0.1, 0.1)
    g.add_pixel_on_plane_y(0.8, -0.1, 0.1, -0.1, 0.1, gap=0.3)
    state, _ = check_cell(g)
    assert set_default_gaps(state)
    assert state.planes[Y_LOW].strips2[0].gap == pytest.approx(0.8)
    assert state.planes[Y_HIGH].pixels[0].gap == pytest.approx(0.3)


def test_default_gap_from_nearest_wire() -> None:
    g = CellGeometry()
    g.add_plane_y(0.0, 0.0)
    _wire(g, 0.0, 0.4)
    _wire(g, 0.5, 0.25)
    g.add_strip_on_plane_y("x", 0.0, -0.1, 0.1)
    state, _ = check_cell(g)
    assert set_default_gaps(state)
    assert state.planes[Y_LOW].strips1[0].gap == pytest.approx(0.25)


def test_in_tube() -> None:
    assert in_tube(0.5, 0.5, 1.0, 0)
    assert not in_tube(0.8, 0.8, 1.0, 0)
    # Square with a corner on the x axis: the edge midpoint is at 1/sqrt(2)
    assert in_tube(0.95, 0.0, 1.0, 4)
    assert not in_tube(0.6, 0.6, 1.0, 4)
    assert in_tube(0.3, 0.3, 1.0, 4)


@pytest.mark.parametrize("x_in, x_out", [(0.5, 0.5), (-0.5, -0.5), (0.7, -0.3), (1.5, -0.5)])
def test_wires_on_the_period_edge_stay_in_place(x_in: float, x_out: float) -> None:
    g = CellGeometry()
    g.add_plane_y(-1.0, 0.0)
    g.set_periodicity_x(1.0)
    _wire(g, x_in, 0.0)
    state, drops = check_cell(g)
    assert drops == []
    assert state.wires[0].x == pytest.approx(x_out)
