"""Weighting fields of wires, planes, the tube, strips and pixels."""

from __future__ import annotations

import math

import pytest

from cell import CellType
from fieldsolver import AnalyticField
from weighting import pixel_series, strip_potential


WIRE_D = 0.01


def _surface(x: float, y: float) -> tuple:
    return x, y + 0.5 * WIRE_D * 1.001


def _wires_over_plane() -> AnalyticField:
    field = AnalyticField()
    field.add_plane_y(0.0, 0.0, "p")
    field.add_wire(-0.5, 1.0, WIRE_D, 1000.0, "s")
    field.add_wire(0.5, 1.0, WIRE_D, 500.0, "t")
    for label in ("s", "t", "p"):
        field.add_readout(label)
    return field


def _periodic_row(n_fourier: int) -> AnalyticField:
    field = AnalyticField(config={"n_fourier": n_fourier})
    field.add_plane_y(-1.0, 0.0)
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    field.add_wire(0.5, 0.0, WIRE_D, 1000.0, "t")
    field.set_periodicity_x(1.0)
    field.add_readout("s")
    return field


def test_wire_weighting_potential_is_one_on_own_wire() -> None:
    field = _wires_over_plane()
    assert field.weighting_potential(*_surface(-0.5, 1.0), 0.0, "s") == pytest.approx(1.0, abs=1e-2)
    assert field.weighting_potential(*_surface(0.5, 1.0), 0.0, "s") == pytest.approx(0.0, abs=1e-2)
    assert field.weighting_potential(*_surface(0.5, 1.0), 0.0, "t") == pytest.approx(1.0, abs=1e-2)


def test_plane_weighting_potential() -> None:
    field = _wires_over_plane()
    assert field.weighting_potential(0.2, 0.0, 0.0, "p") == pytest.approx(1.0, abs=1e-12)
    assert field.weighting_potential(*_surface(-0.5, 1.0), 0.0, "p") == pytest.approx(0.0, abs=1e-2)


def test_weighting_potentials_add_up_to_one() -> None:
    field = _wires_over_plane()
    total = sum(field.weighting_potential(0.2, 0.5, 0.0, label) for label in ("s", "t", "p"))
    assert total == pytest.approx(1.0, abs=1e-9)
    ex, ey, ez = (sum(c) for c in zip(*(field.weighting_field(0.2, 0.5, 0.0, label)
                                        for label in ("s", "t", "p"))))
    assert ex == pytest.approx(0.0, abs=1e-9)
    assert ey == pytest.approx(0.0, abs=1e-9)
    assert ez == 0.0


def test_unknown_label_gives_zero() -> None:
    field = _wires_over_plane()
    assert field.weighting_field(0.2, 0.5, 0.0, "nothing") == (0.0, 0.0, 0.0)
    assert field.weighting_potential(0.2, 0.5, 0.0, "nothing") == 0.0


def test_readout_added_after_first_query() -> None:
    field = _periodic_row(1)
    assert field.weighting_potential(*_surface(0.5, 0.0), 0.0, "t") == 0.0
    field.add_readout("t")
    assert field.weighting_potential(*_surface(0.5, 0.0), 0.0, "t") == pytest.approx(1.0, abs=1e-2)


def test_tube_weighting_potential() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    field.add_tube(1.0, 0.0, label="c")
    field.add_readout("s")
    field.add_readout("c")
    rho = 0.5
    ws = field.weighting_potential(rho, 0.0, 0.0, "s")
    wc = field.weighting_potential(rho, 0.0, 0.0, "c")
    assert ws == pytest.approx(math.log(1.0 / rho) / math.log(1.0 / (0.5 * WIRE_D)), rel=1e-9)
    assert ws + wc == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize("n_fourier", [4, 1])
def test_periodic_wire_weighting(n_fourier: int) -> None:
    field = _periodic_row(n_fourier)
    assert field.weighting_potential(*_surface(0.0, 0.0), 0.0, "s") == pytest.approx(1.0, abs=1e-2)
    assert field.weighting_potential(*_surface(0.5, 0.0), 0.0, "s") == pytest.approx(0.0, abs=1e-2)
    _, signals = field.signal_cache.ensure_solved()
    assert len(signals.layers) == n_fourier


def test_non_power_of_two_layers_are_not_replicated() -> None:
    field = _periodic_row(3)
    _, signals = field.signal_cache.ensure_solved()
    assert not signals.fperx
    assert list(signals.layers) == [(0, 0)]


def test_natural_type_without_weighting_potentials() -> None:
    field = _periodic_row(0)
    assert not field.prepare(signals=True)
    assert field.prepare()


def test_strip_potential_limits() -> None:
    assert strip_potential(0.0, 1e-9, 0.5, 1.0, True)[2] == pytest.approx(1.0, abs=1e-6)
    assert strip_potential(2.0, 1e-9, 0.5, 1.0, True)[2] == pytest.approx(0.0, abs=1e-6)
    assert strip_potential(0.0, 0.0, 0.5, 1.0, True) == (0.0, 0.0, 0.0)
    assert strip_potential(0.0, 1.5, 0.5, 1.0, True) == (0.0, 0.0, 0.0)
    _, _, v = strip_potential(0.0, 0.5, 0.5, 1.0, False)
    assert v == 0.0


def test_strip_tiling_gives_parallel_plate_potential() -> None:
    field = AnalyticField()
    field.add_plane_y(0.0, 0.0)
    field.add_plane_y(1.0, 1000.0)
    edges = [-10.0 + 0.5 * i for i in range(41)]
    for smin, smax in zip(edges[:-1], edges[1:]):
        assert field.add_strip_on_plane_y("z", 0.0, smin, smax, "s")
    field.add_readout("s")
    for x, y in ((0.3, 0.4), (-1.1, 0.8), (0.0, 0.1)):
        assert field.weighting_potential(x, y, 0.0, "s") == pytest.approx(1.0 - y, abs=1e-6)
        ex, ey, ez = field.weighting_field(x, y, 0.0, "s")
        assert ex == pytest.approx(0.0, abs=1e-6)
        assert ey == pytest.approx(1.0, abs=1e-6)


def test_pixel_series() -> None:
    assert pixel_series(0.0, 0.0, 0.5, 100.0, 100.0, 1.0, 1e-5)[3] == pytest.approx(0.5, abs=2e-2)
    assert pixel_series(300.0, 0.0, 0.5, 100.0, 100.0, 1.0, 1e-5)[3] == pytest.approx(0.0, abs=1e-3)


def test_pixel_weighting_potential() -> None:
    field = AnalyticField()
    field.add_plane_y(0.0, 0.0)
    field.add_plane_y(1.0, 1000.0)
    field.add_pixel_on_plane_y(0.0, -50.0, 50.0, -50.0, 50.0, "p")
    field.add_readout("p")
    assert field.weighting_potential(0.0, 0.5, 0.0, "p") == pytest.approx(0.5, abs=2e-2)
    assert field.weighting_potential(0.0, -0.5, 0.0, "p") == 0.0


def _doubly_periodic(kind: CellType) -> AnalyticField:
    # Natural periodicity of the cell, no Fourier copies
    field = AnalyticField(config={"n_fourier": 0})
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    if kind == CellType.C2X:
        field.add_plane_x(-0.4, 0.0)
        field.add_wire(0.3, 0.25, WIRE_D, 0.0, "t")
    elif kind == CellType.C2Y:
        field.add_plane_y(-0.4, 0.0)
        field.add_wire(0.25, 0.3, WIRE_D, 0.0, "t")
    else:
        for coord in (-0.5, 0.5):
            field.add_plane_x(coord, 0.0)
            field.add_plane_y(coord, 0.0)
        field.add_wire(0.25, 0.2, WIRE_D, 0.0, "t")
    if kind != CellType.C30:
        field.set_periodicity_x(1.0)
        field.set_periodicity_y(1.0)
    field.add_readout("s")
    field.add_readout("t")
    return field


@pytest.mark.parametrize("kind", [CellType.C2X, CellType.C2Y, CellType.C30])
def test_doubly_periodic_wire_weighting(kind: CellType) -> None:
    field = _doubly_periodic(kind)
    assert field.get_cell_type() == kind
    wire_t = field.get_wire(1)
    assert field.weighting_potential(*_surface(0.0, 0.0), 0.0, "s") == pytest.approx(1.0, abs=1e-2)
    assert field.weighting_potential(*_surface(wire_t.x, wire_t.y), 0.0, "s") == pytest.approx(0.0, abs=1e-2)
    assert field.weighting_potential(*_surface(wire_t.x, wire_t.y), 0.0, "t") == pytest.approx(1.0, abs=1e-2)


def test_polygonal_tube_weighting_at_edge_midpoint() -> None:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    field.add_tube(1.0, 0.0, n_edges=6, label="c")
    field.add_readout("s")
    field.add_readout("c")
    assert field.get_cell_type() == CellType.D30

    # Corners on the axes of the polygon, edge midpoints at pi / 6
    r = 0.999 * math.cos(math.pi / 6.0)
    x, y = r * math.cos(math.pi / 6.0), r * math.sin(math.pi / 6.0)
    assert field.weighting_potential(x, y, 0.0, "c") == pytest.approx(1.0, abs=2e-2)
    assert field.weighting_potential(x, y, 0.0, "s") == pytest.approx(0.0, abs=2e-2)
    assert field.weighting_potential(*_surface(0.0, 0.0), 0.0, "s") == pytest.approx(1.0, abs=1e-2)
    total = sum(field.weighting_potential(0.3, -0.2, 0.0, label) for label in ("s", "c"))
    assert total == pytest.approx(1.0, abs=1e-9)


def _single_wire_row() -> AnalyticField:
    field = AnalyticField()
    field.add_plane_y(-1.0, 0.0)
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    field.set_periodicity_x(1.0)
    return field


def _wire_lattice() -> AnalyticField:
    field = AnalyticField()
    field.add_wire(0.0, 0.0, WIRE_D, 1000.0, "s")
    field.add_wire(0.5, 0.5, WIRE_D, 0.0, "t")
    field.set_periodicity_x(1.0)
    field.set_periodicity_y(1.0)
    return field


@pytest.mark.parametrize("build, kind", [(_single_wire_row, CellType.B1X), (_wire_lattice, CellType.C10)])
def test_fourier_copies_converge(build, kind: CellType) -> None:
    field = build()
    field.add_readout("s")
    assert field.get_cell_type() == kind
    for n_fourier, tolerance in ((4, 1e-2), (8, 2e-3)):
        field.set_number_of_fourier_layers(n_fourier)
        w = field.weighting_potential(*_surface(0.0, 0.0), 0.0, "s")
        assert w == pytest.approx(1.0, abs=tolerance)


def test_strip_potential_integrates_to_strip_width() -> None:
    # Over the whole plane, V and Ey of one strip average those of the uniform gap
    half_width, gap, height, step = 0.5, 1.0, 0.3, 0.005
    xs = [-15.0 + step * i for i in range(int(30.0 / step) + 1)]
    values = [strip_potential(x, height, half_width, gap, True) for x in xs]
    v_integral = step * sum(v for _, _, v in values)
    ey_integral = step * sum(ey for _, ey, _ in values)
    assert v_integral == pytest.approx(2.0 * half_width * (1.0 - height / gap), rel=1e-4)
    assert ey_integral == pytest.approx(2.0 * half_width / gap, rel=1e-4)


def test_crossing_planes_in_one_group() -> None:
    field = AnalyticField()
    field.add_plane_x(0.0, 0.0, "g")
    field.add_plane_y(0.0, 0.0, "g")
    field.add_wire(0.5, 0.5, WIRE_D, 1000.0, "s")
    field.add_readout("g")
    field.add_readout("s")
    assert field.get_cell_type() == CellType.A00
    assert field.weighting_potential(0.0, 0.3, 0.0, "g") == pytest.approx(1.0, abs=1e-9)
    assert field.weighting_potential(0.3, 0.0, 0.0, "g") == pytest.approx(1.0, abs=1e-9)
    total = sum(field.weighting_potential(1.0, 1.2, 0.0, label) for label in ("g", "s"))
    assert total == pytest.approx(1.0, abs=1e-9)
