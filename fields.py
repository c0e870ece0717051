"""
Direct electrostatic field of a prepared cell.

evaluate_field() folds the point into the basic cell, checks whether it is
behind a plane, outside the tube or inside a wire, and then calls the
closed-form routine of the cell type. The routines return (ex, ey, v) of a
set of line charges placed on the wires of the cell: by default the solved
wire charges, or any other charge vector q with the wires displaced by
(dx, dy), which is how the weighting field reuses them. The reference
potential v0, the linear background of the planes and the 3D point charges
are added by evaluate_field().

The routines use units where a line charge e produces -e log r, so the
charges solved in charges.py can be used directly.
"""

import math
import numpy as np
from typing import List, Optional, Tuple

from cell import CellState, CellType, fold_point, in_tube
from charges import e2_sum, nearest_plane_coordinates, ph2, series_sum
from conformal_map import conformal_map
from geometry import PointCharge, X_LOW, X_HIGH, Y_LOW, Y_HIGH
from numerics import ASYMPTOTIC_LIMIT, CLOG2, HALF_PI, SMALL, TWO_PI, nint
from point_charges import field_3d


# Status codes of evaluate_field
STATUS_OK = 0
STATUS_OUTSIDE = -4
STATUS_UNKNOWN_TYPE = -10
STATUS_NOT_PREPARED = -11

Field2D = Tuple[float, float, float]


def _sources(state: CellState, q, dx: float, dy: float):
    #Line charge positions and strengths
    e = state.ew if q is None else np.asarray(q, dtype=np.float64)
    return state.xw + dx, state.yw + dy, e


def _safe_sinh2(u):
    return np.sinh(np.clip(u, -ASYMPTOTIC_LIMIT, ASYMPTOTIC_LIMIT)) ** 2


def field_a00(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    #Free wires with at most one plane per direction, potential -e log r
    xw, yw, e = _sources(state, q, dx, dy)
    xx = x - xw
    yy = y - yw
    r2 = xx * xx + yy * yy
    ok = r2 > 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        exh = xx / r2
        eyh = yy / r2
        xxmirr = xw + (x - 2.0 * state.coplax)
        yymirr = yw + (y - 2.0 * state.coplay)
        if state.ynplax:
            r2plan = xxmirr * xxmirr + yy * yy
            ok &= r2plan > 0.0
            exh = exh - xxmirr / r2plan
            eyh = eyh - yy / r2plan
            r2 = r2 / r2plan
        if state.ynplay:
            r2plan = xx * xx + yymirr * yymirr
            ok &= r2plan > 0.0
            exh = exh - xx / r2plan
            eyh = eyh - yymirr / r2plan
            r2 = r2 / r2plan
        if state.ynplax and state.ynplay:
            r2plan = xxmirr * xxmirr + yymirr * yymirr
            ok &= r2plan > 0.0
            exh = exh + xxmirr / r2plan
            eyh = eyh + yymirr / r2plan
            r2 = r2 * r2plan
        e = np.where(ok, e, 0.0)
        volt = 0.0
        if opt:
            volt = -0.5 * float(np.sum(e * np.log(np.where(ok, r2, 1.0))))
    return (float(np.sum(e * np.where(ok, exh, 0.0))),
            float(np.sum(e * np.where(ok, eyh, 0.0))), volt)


def _cot(z):
    #i (exp(2iz) + 1) / (exp(2iz) - 1)
    ez = np.exp(2j * z)
    return 1j * (ez + 1.0) / (ez - 1.0)


def _coth(z):
    ez = np.exp(2.0 * z)
    return (ez + 1.0) / (ez - 1.0)


def field_b1x(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Row of wires periodic in x; potential Re log sin(pi/sx (z - z0))."""
    xw, yw, e = _sources(state, q, dx, dy)
    k = math.pi / state.sx
    xx = k * (x - xw)
    yy = k * (y - yw)
    near = np.abs(yy) <= ASYMPTOTIC_LIMIT
    zz = xx + 1j * np.where(near, yy, 0.0)
    ecompl = np.where(near, _cot(zz), np.where(yy > 0.0, -1j, 1j))
    r2 = np.zeros_like(xx)
    if opt:
        with np.errstate(divide="ignore"):
            r2 = np.where(near, -0.5 * np.log(_safe_sinh2(yy) + np.sin(xx) ** 2),
                          -np.abs(yy) + CLOG2)
    if state.ynplay:
        yymirr = k * (y + yw - 2.0 * state.coplay)
        mnear = np.abs(yymirr) <= ASYMPTOTIC_LIMIT
        zzmirr = xx + 1j * np.where(mnear, yymirr, 0.0)
        ecompl = ecompl + np.where(mnear, -_cot(zzmirr), np.where(yymirr > 0.0, 1j, -1j))
        if opt:
            with np.errstate(divide="ignore"):
                r2 = r2 + np.where(mnear, 0.5 * np.log(_safe_sinh2(yymirr) + np.sin(xx) ** 2),
                                   np.abs(yymirr) - CLOG2)
    ex = k * float(np.sum(e * ecompl.real))
    ey = -k * float(np.sum(e * ecompl.imag))
    volt = float(np.sum(e * r2)) if opt else 0.0
    return ex, ey, volt


def field_b1y(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Row of wires periodic in y; potential Re log sinh(pi/sy (z - z0))."""
    xw, yw, e = _sources(state, q, dx, dy)
    k = math.pi / state.sy
    xx = k * (x - xw)
    yy = k * (y - yw)
    near = np.abs(xx) <= ASYMPTOTIC_LIMIT
    zz = np.where(near, xx, 0.0) + 1j * yy
    ecompl = np.where(near, _coth(zz), np.where(xx > 0.0, 1.0 + 0j, -1.0 + 0j))
    r2 = np.zeros_like(xx)
    if opt:
        with np.errstate(divide="ignore"):
            r2 = np.where(near, -0.5 * np.log(_safe_sinh2(xx) + np.sin(yy) ** 2),
                          -np.abs(xx) + CLOG2)
    if state.ynplax:
        xxmirr = k * (x + xw - 2.0 * state.coplax)
        mnear = np.abs(xxmirr) <= ASYMPTOTIC_LIMIT
        zzmirr = np.where(mnear, xxmirr, 0.0) + 1j * yy
        ecompl = ecompl - np.where(mnear, _coth(zzmirr), np.where(xxmirr > 0.0, 1.0, -1.0))
        if opt:
            with np.errstate(divide="ignore"):
                r2 = r2 + np.where(mnear, 0.5 * np.log(_safe_sinh2(xxmirr) + np.sin(yy) ** 2),
                                   np.abs(xxmirr) - CLOG2)
    ex = k * float(np.sum(e * ecompl.real))
    ey = -k * float(np.sum(e * ecompl.imag))
    volt = float(np.sum(e * r2)) if opt else 0.0
    return ex, ey, volt


def _sin2_ratio(u, a, b):
    #(sinh^2 u + sin^2 a) / (sinh^2 u + sin^2 b)
    sh2 = _safe_sinh2(u)
    return (sh2 + np.sin(a) ** 2) / (sh2 + np.sin(b) ** 2)


def field_b2x(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """
    Row of alternating charges: wires between two x planes, or one x plane
    with x periodicity. Mirror image in an optional y plane.
    """
    xw, yw, e = _sources(state, q, dx, dy)
    h = HALF_PI / state.sx
    xx = h * (x - xw)
    yy = h * (y - yw)
    xxneg = h * (x + xw - 2.0 * state.coplax)
    near = np.abs(yy) <= ASYMPTOTIC_LIMIT
    yc = np.where(near, yy, 0.0)
    ecompl = np.where(near, -state.b2sin / (np.sin(xx + 1j * yc) * np.sin(xxneg + 1j * yc)), 0j)
    r2 = np.where(near, _sin2_ratio(yc, xx, xxneg), 1.0) if opt else None
    if state.ynplay:
        yymirr = h * (y + yw - 2.0 * state.coplay)
        mnear = np.abs(yymirr) <= ASYMPTOTIC_LIMIT
        ym = np.where(mnear, yymirr, 0.0)
        ecompl = ecompl + np.where(
            mnear, state.b2sin / (np.sin(xx + 1j * ym) * np.sin(xxneg + 1j * ym)), 0j)
        if opt:
            r2 = np.where(mnear, r2 / _sin2_ratio(ym, xx, xxneg), r2)
    ex = h * float(np.sum(e * ecompl.real))
    ey = -h * float(np.sum(e * ecompl.imag))
    volt = -0.5 * float(np.sum(e * np.log(r2))) if opt else 0.0
    return ex, ey, volt


def field_b2y(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    #Mirror of field_b2x for y planes / y periodicity
    xw, yw, e = _sources(state, q, dx, dy)
    h = HALF_PI / state.sy
    xx = h * (x - xw)
    yy = h * (y - yw)
    yyneg = h * (y + yw - 2.0 * state.coplay)
    near = np.abs(xx) <= ASYMPTOTIC_LIMIT
    xc = np.where(near, xx, 0.0)
    zz = xc + 1j * yy
    zzneg = xc + 1j * yyneg
    ecompl = np.where(near, 1j * state.b2sin / (np.sin(1j * zz) * np.sin(1j * zzneg)), 0j)
    r2 = np.where(near, _sin2_ratio(xc, yy, yyneg), 1.0) if opt else None
    if state.ynplax:
        xxmirr = h * (x + xw - 2.0 * state.coplax)
        mnear = np.abs(xxmirr) <= ASYMPTOTIC_LIMIT
        xm = np.where(mnear, xxmirr, 0.0)
        ecompl = ecompl - np.where(
            mnear, 1j * state.b2sin / (np.sin(1j * (xm + 1j * yy)) * np.sin(1j * (xm + 1j * yyneg))),
            0j)
        if opt:
            r2 = np.where(mnear, r2 / _sin2_ratio(xm, yy, yyneg), r2)
    ex = h * float(np.sum(e * ecompl.real))
    ey = -h * float(np.sum(e * ecompl.imag))
    volt = -0.5 * float(np.sum(e * np.log(r2))) if opt else 0.0
    return ex, ey, volt


def field_c10(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Doubly periodic wire array without planes."""
    xw, yw, e = _sources(state, q, dx, dy)
    volt = 0.0
    if opt:
        volt = state.c1 * (x if state.mode == 0 else y)
        volt += float(np.sum(e * ph2(state, x - xw, y - yw)))
    ex, ey = e2_sum(state, x, y, e, dx, dy)
    if state.mode == 0:
        ex -= state.c1
    else:
        ey -= state.c1
    return ex, ey, volt


def field_c2x(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    #Doubly periodic array with x planes: direct sum minus the x mirror
    xw, yw, e = _sources(state, q, dx, dy)
    zm = state.zmult
    cx = nearest_plane_coordinates(state.coplax, state.sx, xw)
    wsum1, v1 = series_sum(state, zm * ((x - xw) + 1j * (y - yw)), e, opt)
    wsum2, v2 = series_sum(state, zm * ((2.0 * cx - x - xw) + 1j * (y - yw)), e, opt)
    volt = v1 - v2
    norm = TWO_PI / (state.sx * state.sy)
    if opt and state.mode == 0:
        volt -= norm * float(np.sum(e * (x - cx) * (xw - cx)))
    ex = (zm * (wsum1 + wsum2)).real
    ey = -(zm * (wsum1 - wsum2)).imag
    if state.mode == 0:
        ex += norm * float(np.sum(e * (xw - cx)))
    return ex, ey, volt


def field_c2y(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    #Doubly periodic array with y planes: direct sum minus the y mirror
    xw, yw, e = _sources(state, q, dx, dy)
    zm = state.zmult
    cy = nearest_plane_coordinates(state.coplay, state.sy, yw)
    wsum1, v1 = series_sum(state, zm * ((x - xw) + 1j * (y - yw)), e, opt)
    wsum2, v2 = series_sum(state, zm * ((x - xw) + 1j * (2.0 * cy - y - yw)), e, opt)
    volt = v1 - v2
    norm = TWO_PI / (state.sx * state.sy)
    if opt and state.mode == 1:
        volt -= norm * float(np.sum(e * (y - cy) * (yw - cy)))
    ex = (zm * (wsum1 - wsum2)).real
    ey = -(zm * (wsum1 + wsum2)).imag
    if state.mode == 1:
        ey += norm * float(np.sum(e * (yw - cy)))
    return ex, ey, volt


def field_c30(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    #Doubly periodic array with x and y planes: four image families
    xw, yw, e = _sources(state, q, dx, dy)
    zm = state.zmult
    cx = nearest_plane_coordinates(state.coplax, state.sx, xw)
    cy = nearest_plane_coordinates(state.coplay, state.sy, yw)
    ddx, ddy = x - xw, y - yw
    mx, my = 2.0 * cx - x - xw, 2.0 * cy - y - yw
    wsum1, v1 = series_sum(state, zm * (ddx + 1j * ddy), e, opt)
    wsum2, v2 = series_sum(state, zm * (mx + 1j * ddy), e, opt)
    wsum3, v3 = series_sum(state, zm * (ddx + 1j * my), e, opt)
    wsum4, v4 = series_sum(state, zm * (mx + 1j * my), e, opt)
    volt = v1 - v2 - v3 + v4
    ex = (zm * (wsum1 + wsum2 - wsum3 - wsum4)).real
    ey = -(zm * (wsum1 - wsum2 + wsum3 - wsum4)).imag
    return ex, ey, volt


def field_d10(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Wires inside a round tube."""
    xw, yw, e = _sources(state, q, dx, dy)
    r = state.cotube
    r2 = r * r
    zpos = complex(x, y)
    zi = xw + 1j * yw
    volt = 0.0
    if opt:
        volt = -float(np.sum(e * np.log(np.abs(r * (zpos - zi) / (r2 - zpos * np.conj(zi))))))
    wi = 1.0 / np.conj(zpos - zi) + zi / (r2 - np.conj(zpos) * zi)
    return float(np.sum(e * wi.real)), float(np.sum(e * wi.imag)), volt


def field_d20(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Wires inside a round tube with angular periodicity 2 pi / mtube."""
    xw, yw, e = _sources(state, q, dx, dy)
    r = state.cotube
    r2 = r * r
    m = state.mtube
    zpos = complex(x, y)
    zi = xw + 1j * yw
    zcon = zpos.conjugate()
    # Wires on the axis only see their own image in the tube
    off_axis = np.abs(zi) > 0.5 * state.dw
    zim = zi ** m
    volt = 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        wi = np.where(off_axis,
                      m * zcon ** (m - 1) * (1.0 / np.conj(zpos ** m - zim) +
                                             zim / (r ** (2 * m) - (zcon * zi) ** m)),
                      1.0 / np.conj(zpos - zi) + zi / (r2 - zcon * zi))
        if opt:
            ratio = np.where(off_axis,
                             (zpos ** m - zim) / r ** m / (1.0 - (zpos * np.conj(zi) / r2) ** m),
                             (zpos - zi) / r / (1.0 - zpos * np.conj(zi) / r2))
            volt = -float(np.sum(e * np.log(np.abs(ratio))))
    return float(np.sum(e * wi.real)), float(np.sum(e * wi.imag)), volt


def field_d30(state: CellState, x: float, y: float, opt: bool,
              q=None, dx: float = 0.0, dy: float = 0.0) -> Field2D:
    """Wires inside a polygonal tube, via the conformal map onto the unit disk."""
    _, _, e = _sources(state, q, dx, dy)
    r = state.cotube
    wpos, wdpos = conformal_map(complex(x, y) / r, state.ntube)
    wmap = state.wmap
    volt = 0.0
    if opt:
        volt = -float(np.sum(e * np.log(np.abs((wpos - wmap) / (1.0 - wpos * np.conj(wmap))))))
    whelp = wdpos * (1.0 - np.abs(wmap) ** 2) / ((wpos - wmap) * (1.0 - np.conj(wmap) * wpos))
    ex = float(np.sum(e * whelp.real)) / r
    ey = -float(np.sum(e * whelp.imag)) / r
    return ex, ey, volt


_FIELD_FUNCTIONS = {
    CellType.A00: field_a00,
    CellType.B1X: field_b1x,
    CellType.B1Y: field_b1y,
    CellType.B2X: field_b2x,
    CellType.B2Y: field_b2y,
    CellType.C10: field_c10,
    CellType.C2X: field_c2x,
    CellType.C2Y: field_c2y,
    CellType.C30: field_c30,
    CellType.D10: field_d10,
    CellType.D20: field_d20,
    CellType.D30: field_d30,
}


def _boundary_status(state: CellState, x: float, y: float) -> Optional[float]:
    #Potential of the electrode the point is behind, None if inside the cell
    if state.tube is not None:
        if not in_tube(x, y, state.cotube, state.ntube):
            return state.vttube
        return None
    if state.has_plane(X_LOW) and x < state.coplan(X_LOW):
        return state.vtplan(X_LOW)
    if state.has_plane(X_HIGH) and x > state.coplan(X_HIGH):
        return state.vtplan(X_HIGH)
    if state.has_plane(Y_LOW) and y < state.coplan(Y_LOW):
        return state.vtplan(Y_LOW)
    if state.has_plane(Y_HIGH) and y > state.coplan(Y_HIGH):
        return state.vtplan(Y_HIGH)
    return None


def _inside_wire(state: CellState, x: float, y: float) -> int:
    #Index of the wire containing (x, y), -1 if none
    dx = x - state.xw
    dy = y - state.yw
    if state.perx:
        dx = dx - state.sx * np.sign(dx) * np.floor(np.abs(dx / state.sx) + 0.5)
    if state.pery and state.tube is None:
        dy = dy - state.sy * np.sign(dy) * np.floor(np.abs(dy / state.sy) + 0.5)
    inside = np.nonzero(dx * dx + dy * dy < 0.25 * state.dw * state.dw)[0]
    return int(inside[-1]) if inside.size else -1


def evaluate_field(state: CellState, x: float, y: float, z: float, opt: bool,
                   charges: Optional[List[PointCharge]] = None):
    """
    Electric field and (if opt) potential at (x, y, z).

    Args:
        state: prepared cell with solved charges
        x, y, z: query point [cm]
        opt: also compute the potential
        charges: 3D point charges to add (defaults to those of the state)

    Returns:
        (ex, ey, ez, v, status). status is 0 for a normal point, i + 1 if
        the point is inside wire i (v = wire potential, field 0), -4 if it
        is behind a plane or outside the tube (v = that electrode's
        potential), -10 for an unknown cell type.
    """
    xpos, ypos, arot = fold_point(state, x, y)

    volt = _boundary_status(state, xpos, ypos)
    if volt is not None:
        return 0.0, 0.0, 0.0, volt, STATUS_OUTSIDE

    i = _inside_wire(state, xpos, ypos)
    if i >= 0:
        return 0.0, 0.0, 0.0, state.wires[i].v, i + 1

    func = _FIELD_FUNCTIONS.get(state.cell_type)
    if func is None:
        print(f"[fields] Unknown cell type ({state.cell_type}).")
        return 0.0, 0.0, 0.0, 0.0, STATUS_UNKNOWN_TYPE

    ex = ey = volt = 0.0
    if state.n_wires > 0:
        ex, ey, volt = func(state, xpos, ypos, opt)
    volt += state.v0

    if arot != 0.0:
        c, s = math.cos(arot), math.sin(arot)
        ex, ey = c * ex - s * ey, s * ex + c * ey

    # Background field of the planes
    ex -= state.corvta
    ey -= state.corvtb
    volt += state.corvta * xpos + state.corvtb * ypos + state.corvtc

    ez = 0.0
    charges = state.charges if charges is None else charges
    if charges:
        ex3d, ey3d, ez3d, v3d = field_3d(state, charges, x, y, z)
        ex += ex3d
        ey += ey3d
        ez += ez3d
        volt += v3d

    return ex, ey, ez, volt, STATUS_OK


def is_wire_crossed(state: CellState, x0: float, y0: float, z0: float,
                    x1: float, y1: float, z1: float):
    """
    Check whether the straight step (x0, y0, z0) -> (x1, y1, z1) passes
    through a wire.

    Returns:
        (crossed, xc, yc, zc): the entry point into the first wire found,
        or the start point if no wire is crossed.
    """
    if state.n_wires == 0:
        return False, x0, y0, z0
    dx, dy = x1 - x0, y1 - y0
    d2 = dx * dx + dy * dy
    if d2 < SMALL:
        return False, x0, y0, z0
    if (state.perx and abs(dx) >= state.sx) or (state.pery and abs(dy) >= state.sy):
        print("[fields] is_wire_crossed: Particle crossed more than one period.")
        return False, x0, y0, z0

    xm, ym = 0.5 * (x0 + x1), 0.5 * (y0 + y1)
    for wire in reversed(state.wires):
        xw, yw = wire.x, wire.y
        if state.perx:
            xw += state.sx * nint((xm - xw) / state.sx)
        if state.pery and state.tube is None:
            yw += state.sy * nint((ym - yw) / state.sy)
        # Projections of the wire onto the step, from both ends
        xin0 = dx * (xw - x0) + dy * (yw - y0)
        if xin0 < 0.0:
            continue
        xin1 = -(dx * (xw - x1) + dy * (yw - y1))
        if xin1 < 0.0:
            continue
        dw02 = (xw - x0) ** 2 + (yw - y0) ** 2
        dw12 = (xw - x1) ** 2 + (yw - y1) ** 2
        if xin1 * xin1 * dw02 > xin0 * xin0 * dw12:
            dmin2 = dw02 - xin0 * xin0 / d2
        else:
            dmin2 = dw12 - xin1 * xin1 / d2
        r2 = 0.25 * wire.d * wire.d
        if dmin2 < r2:
            p = -xin0 / d2
            q = (dw02 - r2) / d2
            root = math.sqrt(max(p * p - q, 0.0))
            t = min(-p + root, -p - root)
            return True, x0 + t * dx, y0 + t * dy, z0 + t * (z1 - z0)
    return False, x0, y0, z0


def is_in_trap_radius(state: CellState, q: float, x: float, y: float, z: float,
                      debug: bool = False):
    """
    Check whether (x, y) lies within the trap radius (ntrap wire radii) of
    a wire whose charge attracts a particle of charge sign q.

    Returns:
        (trapped, xw, yw, rw): position of the wire copy nearest to the
        point and the wire radius, or (False, x, y, 0).
    """
    x0, y0, arot = fold_point(state, x, y)
    for i, wire in enumerate(state.wires):
        if q * wire.e > 0.0:
            continue
        dxw0 = wire.x - x0
        dyw0 = wire.y - y0
        r_trap = 0.5 * wire.d * wire.ntrap
        if dxw0 * dxw0 + dyw0 * dyw0 < r_trap * r_trap:
            if arot != 0.0:
                c, s = math.cos(arot), math.sin(arot)
                xw, yw = c * wire.x - s * wire.y, s * wire.x + c * wire.y
            else:
                xw, yw = wire.x + (x - x0), wire.y + (y - y0)
            if debug:
                print(f"[fields] ({x:g}, {y:g}, {z:g}) within trap radius of wire {i}.")
            return True, xw, yw, 0.5 * wire.d
    return False, x, y, 0.0
