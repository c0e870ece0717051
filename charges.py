"""
Wire charges of a classified cell.

Each cell type has its own capacitance matrix a[i][j], the potential at
wire i due to a unit charge on wire j (in units where the potential of a
line charge e is -e log r). The matrix is inverted and applied to the wire
potentials after subtracting the linear background from the planes. Cells
without planes and without a tube are bordered with a row and column of
ones so that the charges sum to zero; the Lagrange multiplier is the
reference potential v0.
"""

import math
import numpy as np
from typing import Optional, Tuple

import capacitance_cache
from cell import CellState, CellType
from conformal_map import conformal_map, kappa, supported_edges
from geometry import X_LOW, X_HIGH, Y_LOW, Y_HIGH
from numerics import (ASYMPTOTIC_LIMIT, ASYMPTOTIC_LIMIT_C, CLOG2, HALF_PI, TWO_PI,
                      invert_matrix)


def setup_background(state: CellState):
    """
    Set the plane lookup variables (ynplax, coplax, ...) and the linear
    background potential corvta*x + corvtb*y + corvtc.
    """
    p = state.planes
    state.ynplax = p[X_LOW] is not None or p[X_HIGH] is not None
    if state.ynplax:
        state.coplax = state.coplan(X_LOW) if p[X_LOW] is not None else state.coplan(X_HIGH)
    state.ynplay = p[Y_LOW] is not None or p[Y_HIGH] is not None
    if state.ynplay:
        state.coplay = state.coplan(Y_LOW) if p[Y_LOW] is not None else state.coplan(Y_HIGH)

    state.corvta = state.corvtb = state.corvtc = 0.0
    both_x = p[X_LOW] is not None and p[X_HIGH] is not None
    both_y = p[Y_LOW] is not None and p[Y_HIGH] is not None
    if state.tube is not None:
        state.corvtc = state.vttube
    elif both_x and not state.ynplay:
        c0, c1 = state.coplan(X_LOW), state.coplan(X_HIGH)
        v0, v1 = state.vtplan(X_LOW), state.vtplan(X_HIGH)
        state.corvta = (v0 - v1) / (c0 - c1)
        state.corvtc = (v1 * c0 - v0 * c1) / (c0 - c1)
    elif both_y and not state.ynplax:
        c2, c3 = state.coplan(Y_LOW), state.coplan(Y_HIGH)
        v2, v3 = state.vtplan(Y_LOW), state.vtplan(Y_HIGH)
        state.corvtb = (v2 - v3) / (c2 - c3)
        state.corvtc = (v3 * c2 - v2 * c3) / (c2 - c3)
    else:
        for slot in (X_LOW, X_HIGH, Y_LOW, Y_HIGH):
            if p[slot] is not None:
                state.corvtc = state.vtplan(slot)


# ----------------------------------------------------------------------
# Doubly periodic series (C family)
# ----------------------------------------------------------------------

def _set_series(state: CellState, mode: int, p: float, zmult: complex):
    state.mode = mode
    state.zmult = zmult
    state.p1 = p * p
    state.p2 = p ** 6 if state.p1 > 1e-10 else 0.0


def _series_parameters(state: CellState):
    #Expansion mode, zmult and the nome powers p1 = p^2, p2 = p^6 per C type
    sx, sy = state.sx, state.sy
    ctype = state.cell_type
    if ctype == CellType.C10:
        if sx <= sy:
            _set_series(state, 1, math.exp(-math.pi * sy / sx) if sy / sx < 8 else 0.0,
                        complex(math.pi / sx, 0.0))
        else:
            _set_series(state, 0, math.exp(-math.pi * sx / sy) if sx / sy < 8 else 0.0,
                        complex(0.0, math.pi / sy))
    elif ctype == CellType.C2X:
        if 2.0 * sx <= sy:
            _set_series(state, 1, math.exp(-HALF_PI * sy / sx) if sy / sx < 25 else 0.0,
                        complex(HALF_PI / sx, 0.0))
        else:
            _set_series(state, 0, math.exp(-TWO_PI * sx / sy) if sx / sy < 6 else 0.0,
                        complex(0.0, math.pi / sy))
    elif ctype == CellType.C2Y:
        if sx <= 2.0 * sy:
            _set_series(state, 1, math.exp(-TWO_PI * sy / sx) if sy / sx <= 6 else 0.0,
                        complex(math.pi / sx, 0.0))
        else:
            _set_series(state, 0, math.exp(-HALF_PI * sx / sy) if sx / sy <= 25 else 0.0,
                        complex(0.0, HALF_PI / sy))
    elif ctype == CellType.C30:
        if sx <= sy:
            _set_series(state, 1, math.exp(-math.pi * sy / sx) if sy / sx <= 13 else 0.0,
                        complex(HALF_PI / sx, 0.0))
        else:
            _set_series(state, 0, math.exp(-math.pi * sx / sy) if sx / sy <= 13 else 0.0,
                        complex(0.0, HALF_PI / sy))


def ph2(state: CellState, x, y):
    """
    Logarithmic part of the potential of a doubly periodic wire array,
    -log|sin(zeta) - p1 sin(3 zeta) + p2 sin(5 zeta)| with zeta = zmult (x + iy).
    Accepts scalars or arrays.
    """
    zeta = state.zmult * (np.asarray(x, dtype=np.float64) + 1j * np.asarray(y, dtype=np.float64))
    far = np.abs(zeta.imag) >= 10.0
    zeta_near = np.where(far, 0.0, zeta)
    zsin = np.sin(zeta_near)
    zcof = 4.0 * zsin * zsin - 2.0
    zu = -state.p1 - zcof * state.p2
    zunew = 1.0 - zcof * zu - state.p2
    zterm = (zunew + zu) * zsin
    with np.errstate(divide="ignore"):
        near = -np.log(np.abs(zterm))
    result = np.where(far, -np.abs(zeta.imag) + CLOG2, near)
    if result.ndim == 0:
        return float(result)
    return result


def ph2_lim(state: CellState, radius):
    #ph2 on the surface of a wire of small radius
    return -np.log(abs(state.zmult) * radius * (1.0 - 3.0 * state.p1 + 5.0 * state.p2))


def series_terms(state: CellState, zeta):
    """
    Clenshaw sums of the C family for an array of zeta values.

    Returns:
        (zterm1, zterm2): sin(z) - p1 sin(3z) + p2 sin(5z) and
        cos(z) - 3 p1 cos(3z) + 5 p2 cos(5z)
    """
    zsin = np.sin(zeta)
    zcof = 4.0 * zsin * zsin - 2.0
    zu = -state.p1 - zcof * state.p2
    zunew = 1.0 - zcof * zu - state.p2
    zterm1 = (zunew + zu) * zsin
    zu = -3.0 * state.p1 - zcof * 5.0 * state.p2
    zunew = 1.0 - zcof * zu - 5.0 * state.p2
    zterm2 = (zunew - zu) * np.cos(zeta)
    return zterm1, zterm2


def series_sum(state: CellState, zeta, q, potential: bool = False) -> Tuple[complex, float]:
    """
    Sum q * zterm2/zterm1 over the wires for the field, and
    -q log|zterm1| for the potential. Arguments with |Im zeta| > 15 use the
    asymptotic forms -/+ i and |Im zeta| - log 2.
    """
    zeta = np.asarray(zeta, dtype=np.complex128)
    q = np.asarray(q, dtype=np.float64)
    im = zeta.imag
    above = im > ASYMPTOTIC_LIMIT_C
    below = im < -ASYMPTOTIC_LIMIT_C
    far = above | below
    zeta_near = np.where(far, 0.0, zeta)
    zterm1, zterm2 = series_terms(state, zeta_near)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(far, 0.0, zterm2 / np.where(far, 1.0, zterm1))
    ratio = np.where(above, -1j, ratio)
    ratio = np.where(below, 1j, ratio)
    wsum = complex(np.sum(q * ratio))
    volt = 0.0
    if potential:
        with np.errstate(divide="ignore"):
            logs = np.where(far, np.abs(im) - CLOG2, np.log(np.abs(np.where(far, 1.0, zterm1))))
        volt = -float(np.sum(q * logs))
    return wsum, volt


def e2_sum(state: CellState, x: float, y: float, q=None,
           dx: float = 0.0, dy: float = 0.0) -> Tuple[float, float]:
    """
    Field at (x, y) of a doubly periodic array of line charges q (default:
    the wire charges) on the wires of the cell displaced by (dx, dy).
    """
    e = state.ew if q is None else q
    zeta = state.zmult * ((x - state.xw - dx) + 1j * (y - state.yw - dy))
    wsum, _ = series_sum(state, zeta, e)
    return -(-state.zmult * wsum).real, (-state.zmult * wsum).imag


def nearest_plane_coordinates(coplan: float, period: float, coords: np.ndarray) -> np.ndarray:
    #Copy of the plane closest to each wire, coplan - s*nint((coplan - c)/s)
    t = (coplan - coords) / period
    return coplan - period * np.sign(t) * np.floor(np.abs(t) + 0.5)


# ----------------------------------------------------------------------
# Capacitance matrices
# ----------------------------------------------------------------------

def _pair_differences(state: CellState):
    xw, yw = state.xw, state.yw
    return xw[:, None] - xw[None, :], yw[:, None] - yw[None, :]


def _log_offdiagonal(r2: np.ndarray, diag: np.ndarray) -> np.ndarray:
    np.fill_diagonal(r2, 1.0)
    a = -0.5 * np.log(r2)
    np.fill_diagonal(a, diag)
    return a


def _matrix_a00(state: CellState) -> np.ndarray:
    xw, yw, dw = state.xw, state.yw, state.dw
    dx, dy = _pair_differences(state)
    cx, cy = state.coplax, state.coplay

    diag = 0.25 * dw * dw
    if state.ynplax:
        diag = diag / (4.0 * (xw - cx) ** 2)
    if state.ynplay:
        diag = diag / (4.0 * (yw - cy) ** 2)
    if state.ynplax and state.ynplay:
        diag = diag * 4.0 * ((xw - cx) ** 2 + (yw - cy) ** 2)

    r2 = dx * dx + dy * dy
    xmirr = xw[:, None] + xw[None, :] - 2.0 * cx
    ymirr = yw[:, None] + yw[None, :] - 2.0 * cy
    if state.ynplax:
        r2 = r2 / (xmirr ** 2 + dy ** 2)
    if state.ynplay:
        r2 = r2 / (dx ** 2 + ymirr ** 2)
    if state.ynplax and state.ynplay:
        r2 = r2 * (xmirr ** 2 + ymirr ** 2)
    return _log_offdiagonal(r2, -0.5 * np.log(diag))


def _log_sinh_sin(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    #0.5 log(sinh^2 u + sin^2 v), asymptotically |u| - log 2
    far = np.abs(u) > ASYMPTOTIC_LIMIT
    uc = np.clip(u, -ASYMPTOTIC_LIMIT, ASYMPTOTIC_LIMIT)
    with np.errstate(divide="ignore"):
        near = 0.5 * np.log(np.sinh(uc) ** 2 + np.sin(v) ** 2)
    return np.where(far, np.abs(u) - CLOG2, near)


def _matrix_b1(state: CellState, along_x: bool) -> np.ndarray:
    #Row of wires periodic in x (B1X) or y (B1Y), optional mirror plane
    period = state.sx if along_x else state.sy
    k = math.pi / period
    dx, dy = _pair_differences(state)
    if along_x:
        u, v = k * dy, k * dx
        has_mirror, own, c = state.ynplay, state.yw, state.coplay
    else:
        u, v = k * dx, k * dy
        has_mirror, own, c = state.ynplax, state.xw, state.coplax

    diag = -np.log(0.5 * state.dw * k)
    if has_mirror:
        uu = k * 2.0 * (own - c)
        uc = np.clip(uu, -ASYMPTOTIC_LIMIT, ASYMPTOTIC_LIMIT)
        with np.errstate(divide="ignore"):
            diag = diag + np.where(np.abs(uu) > ASYMPTOTIC_LIMIT, np.abs(uu) - CLOG2,
                                   np.log(np.abs(np.sinh(uc))))

    a = -_log_sinh_sin(u, v)
    if has_mirror:
        umirr = k * (own[:, None] + own[None, :] - 2.0 * c)
        a = a + _log_sinh_sin(umirr, v)
    np.fill_diagonal(a, diag)
    return a


def _matrix_b2(state: CellState, along_x: bool) -> np.ndarray:
    #Row of alternating charges between two planes (or one plane and a period)
    if along_x:
        period, c0, own, other = state.sx, state.coplax, state.xw, state.yw
        has_mirror, cm = state.ynplay, state.coplay
    else:
        period, c0, own, other = state.sy, state.coplay, state.yw, state.xw
        has_mirror, cm = state.ynplax, state.coplax
    k = math.pi / period

    # Diagonal
    ss = k * (own - c0)
    diag = (0.25 * state.dw * k) / np.sin(ss)
    if has_mirror:
        mirr = k * (other - cm)
        ok = np.abs(mirr) <= ASYMPTOTIC_LIMIT
        mc = np.where(ok, mirr, 1.0)
        sh = np.sinh(mc)
        diag = np.where(ok, diag * np.sqrt(sh * sh + np.sin(ss) ** 2) / sh, diag)
    diag = -np.log(np.abs(diag))

    # Off-diagonal
    h = HALF_PI / period
    d_own = h * (own[:, None] - own[None, :])
    d_oth = h * (other[:, None] - other[None, :])
    neg = h * (own[:, None] + own[None, :] - 2.0 * c0)
    near = np.abs(d_oth) <= ASYMPTOTIC_LIMIT
    sh2 = np.sinh(np.where(near, d_oth, 0.0)) ** 2
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(near, (sh2 + np.sin(d_own) ** 2) / (sh2 + np.sin(neg) ** 2), 1.0)
        if has_mirror:
            mirr = h * (other[:, None] + other[None, :] - 2.0 * cm)
            mnear = np.abs(mirr) <= ASYMPTOTIC_LIMIT
            msh2 = np.sinh(np.where(mnear, mirr, 0.0)) ** 2
            ratio = np.where(mnear, ratio * (msh2 + np.sin(neg) ** 2) / (msh2 + np.sin(d_own) ** 2),
                             ratio)
    state.b2sin = np.sin(k * (c0 - own))
    return _log_offdiagonal(ratio, diag)


def _matrix_c10(state: CellState) -> np.ndarray:
    dx, dy = _pair_differences(state)
    xy = state.xw if state.mode == 0 else state.yw
    temp = np.outer(xy, xy) * TWO_PI / (state.sx * state.sy)
    with np.errstate(divide="ignore"):
        a = ph2(state, dx, dy) - temp
    np.fill_diagonal(a, ph2_lim(state, 0.5 * state.dw) - np.diag(temp))
    return a


def _matrix_c2x(state: CellState) -> np.ndarray:
    xw, dw = state.xw, state.dw
    dx, dy = _pair_differences(state)
    cx = nearest_plane_coordinates(state.coplax, state.sx, xw)
    temp = np.zeros_like(dx)
    if state.mode == 0:
        temp = (xw - cx)[:, None] * (xw[None, :] - cx[:, None]) * TWO_PI / (state.sx * state.sy)
    a = (ph2(state, dx, dy) - ph2(state, xw[:, None] + xw[None, :] - 2.0 * cx[:, None], dy)
         - temp)
    diag = ph2_lim(state, 0.5 * dw) - ph2(state, 2.0 * (xw - cx), np.zeros_like(xw)) - np.diag(temp)
    np.fill_diagonal(a, diag)
    return a


def _matrix_c2y(state: CellState) -> np.ndarray:
    yw, dw = state.yw, state.dw
    dx, dy = _pair_differences(state)
    cy = nearest_plane_coordinates(state.coplay, state.sy, yw)
    temp = np.zeros_like(dx)
    if state.mode == 1:
        temp = (yw - cy)[:, None] * (yw[None, :] - cy[:, None]) * TWO_PI / (state.sx * state.sy)
    a = (ph2(state, dx, dy) - ph2(state, dx, yw[:, None] + yw[None, :] - 2.0 * cy[:, None])
         - temp)
    diag = ph2_lim(state, 0.5 * dw) - ph2(state, np.zeros_like(yw), 2.0 * (yw - cy)) - np.diag(temp)
    np.fill_diagonal(a, diag)
    return a


def _matrix_c30(state: CellState) -> np.ndarray:
    xw, yw, dw = state.xw, state.yw, state.dw
    dx, dy = _pair_differences(state)
    cx = nearest_plane_coordinates(state.coplax, state.sx, xw)
    cy = nearest_plane_coordinates(state.coplay, state.sy, yw)
    xm = xw[:, None] + xw[None, :] - 2.0 * cx[:, None]
    ym = yw[:, None] + yw[None, :] - 2.0 * cy[:, None]
    a = ph2(state, dx, dy) - ph2(state, dx, ym) - ph2(state, xm, dy) + ph2(state, xm, ym)
    zero = np.zeros_like(xw)
    diag = (ph2_lim(state, 0.5 * dw) - ph2(state, zero, 2.0 * (yw - cy))
            - ph2(state, 2.0 * (xw - cx), zero) + ph2(state, 2.0 * (xw - cx), 2.0 * (yw - cy)))
    np.fill_diagonal(a, diag)
    return a


def _matrix_d10(state: CellState) -> np.ndarray:
    r = state.cotube
    r2 = r * r
    z = state.xw + 1j * state.yw
    diag = -np.log(0.5 * state.dw * r / (r2 - np.abs(z) ** 2))
    num = r * (z[:, None] - z[None, :])
    den = r2 - np.conj(z)[:, None] * z[None, :]
    ratio = np.abs(num / den)
    np.fill_diagonal(ratio, 1.0)
    a = -np.log(ratio)
    np.fill_diagonal(a, diag)
    return a


def _matrix_d20(state: CellState) -> np.ndarray:
    # Not symmetric: column i holds the potentials induced by wire i
    n = state.n_wires
    r = state.cotube
    r2 = r * r
    m = state.mtube
    a = np.zeros((n, n))
    for i in range(n):
        zi = complex(state.xw[i], state.yw[i])
        di = state.dw[i]
        central = abs(zi) < 0.5 * di
        for j in range(n):
            if i == j:
                if central:
                    a[i, i] = -math.log(0.5 * di / (r - abs(zi) ** 2 / r))
                else:
                    a[i, i] = -math.log(abs(0.5 * di * m * zi ** (m - 1) /
                                            (r ** m * (1.0 - (abs(zi) / r) ** (2 * m)))))
                continue
            zj = complex(state.xw[j], state.yw[j])
            if central:
                a[j, i] = -math.log(abs((zi - zj) / r / (1.0 - zi.conjugate() * zj / r2)))
            else:
                a[j, i] = -math.log(abs((zj ** m - zi ** m) / r ** m /
                                        (1.0 - (zj * zi.conjugate() / r2) ** m)))
    return a


def _matrix_d30(state: CellState) -> np.ndarray:
    n = state.n_wires
    r = state.cotube
    state.ntube = supported_edges(state.ntube)
    state.kappa = kappa(state.ntube)
    wmap = np.zeros(n, dtype=np.complex128)
    a = np.zeros((n, n))
    for i in range(n):
        wmap[i], wd = conformal_map(complex(state.xw[i], state.yw[i]) / r, state.ntube)
        a[i, i] = -math.log(abs((0.5 * state.dw[i] / r) * wd / (1.0 - abs(wmap[i]) ** 2)))
        for j in range(i):
            a[i, j] = -math.log(abs((wmap[i] - wmap[j]) / (1.0 - wmap[i].conjugate() * wmap[j])))
            a[j, i] = a[i, j]
    state.wmap = wmap
    return a


_MATRIX_BUILDERS = {
    CellType.A00: _matrix_a00,
    CellType.B1X: lambda s: _matrix_b1(s, True),
    CellType.B1Y: lambda s: _matrix_b1(s, False),
    CellType.B2X: lambda s: _matrix_b2(s, True),
    CellType.B2Y: lambda s: _matrix_b2(s, False),
    CellType.C10: _matrix_c10,
    CellType.C2X: _matrix_c2x,
    CellType.C2Y: _matrix_c2y,
    CellType.C30: _matrix_c30,
    CellType.D10: _matrix_d10,
    CellType.D20: _matrix_d20,
    CellType.D30: _matrix_d30,
}


def build_matrix(state: CellState, cell_type: Optional[CellType] = None) -> np.ndarray:
    """
    Capacitance matrix of the wires for the cell type of `state` (or for
    `cell_type`, used by the signal matrices). Also sets the type-specific
    auxiliary quantities (series parameters, b2sin, wmap).

    Raises:
        ValueError: if the cell type has no matrix builder
    """
    cell_type = cell_type or state.cell_type
    builder = _MATRIX_BUILDERS.get(cell_type)
    if builder is None:
        raise ValueError(f"No capacitance matrix for cell type {cell_type}")
    _series_parameters(state)
    return builder(state)


def _is_bordered(state: CellState) -> bool:
    return state.tube is None and all(p is None for p in state.planes)


def _dump_matrix(inverse: np.ndarray):
    print("[charges] Dump of the capacitance matrix after inversion:")
    n = inverse.shape[0]
    for i in range(0, n, 10):
        for j in range(0, n, 10):
            print(f"    (Block {i // 10}, {j // 10})")
            block = inverse[i:i + 10, j:j + 10]
            for row in block:
                print("    " + " ".join(f"{v:11.4e}" for v in row))
    print("[charges] End of the inverted capacitance matrix.")


def solve_charges(state: CellState, matrix: np.ndarray, debug: bool = False,
                  check: bool = False, use_cache: bool = True) -> bool:
    """
    Invert the capacitance matrix and compute the wire charges.

    The right-hand side is the wire potential minus the background
    corvta*x + corvtb*y + corvtc. Without planes and tube the system is
    bordered (sum of charges = 0) and v0 is the multiplier; otherwise v0 = 0.

    Returns:
        True on success; False if the inversion fails or the bordered
        inverse has a zero corner element.
    """
    n = state.n_wires
    rhs = state.vw - (state.corvta * state.xw + state.corvtb * state.yw + state.corvtc)
    bordered = _is_bordered(state)

    cached = capacitance_cache.get_cached_inverse(state) if use_cache else None
    if cached is not None:
        inverse, bordered = cached
    else:
        if bordered:
            full = np.ones((n + 1, n + 1))
            full[:n, :n] = matrix
            full[n, n] = 0.0
        else:
            full = matrix
        inverse, ok = invert_matrix(full)
        if not ok:
            print("[charges] Matrix inversion failed.")
            return False
        if use_cache:
            capacitance_cache.cache_inverse(state, inverse, bordered)

    if bordered:
        solution = inverse @ np.append(rhs, 0.0)
        corner = inverse[n, n]
        if corner == 0.0:
            print("[charges] True inverse of the capacitance matrix could not be calculated.")
            print("[charges] Failure to solve the capacitance equations. No charges are available.")
            return False
        true_inverse = inverse[:n, :n] - np.outer(inverse[:n, n], inverse[n, :n]) / corner
        charges = solution[:n]
        state.v0 = float(solution[n])
    else:
        true_inverse = inverse
        charges = inverse @ rhs
        state.v0 = 0.0

    if not np.all(np.isfinite(charges)):
        print("[charges] Failure to solve the capacitance equations. No charges are available.")
        return False

    for wire, e in zip(state.wires, charges):
        wire.e = float(e)
    state.ew = np.array(charges, dtype=np.float64)

    if debug:
        _dump_matrix(true_inverse)

    if check:
        reconstructed = true_inverse @ (rhs - state.v0)
        print("[charges] Quality check of the charge calculation.")
        print("    Wire       E as obtained        E reconstructed")
        for i in range(n):
            print(f"    {i:4d}   {charges[i]:18.10e}   {reconstructed[i]:18.10e}")

    _set_constant_term(state)
    return True


def _set_constant_term(state: CellState):
    #Non-logarithmic term c1 of the doubly periodic potentials
    state.c1 = 0.0
    norm = TWO_PI / (state.sx * state.sy)
    if state.cell_type == CellType.C10:
        xy = state.xw if state.mode == 0 else state.yw
        state.c1 = -float(np.sum(state.ew * xy)) * norm
    elif state.cell_type == CellType.C2X and state.mode == 0:
        cx = nearest_plane_coordinates(state.coplax, state.sx, state.xw)
        state.c1 = -float(np.sum(state.ew * (state.xw - cx))) * norm
    elif state.cell_type == CellType.C2Y and state.mode == 1:
        cy = nearest_plane_coordinates(state.coplay, state.sy, state.yw)
        state.c1 = -float(np.sum(state.ew * (state.yw - cy))) * norm


def setup_charges(state: CellState, debug: bool = False, check: bool = False) -> bool:
    """
    Background, matrix and charges for a classified cell. A cell without
    wires only needs the background.
    """
    setup_background(state)
    if state.n_wires == 0:
        _series_parameters(state)
        return True
    matrix = build_matrix(state)
    if debug:
        print(f"[charges] Cell type {state.cell_type.value}, {state.n_wires} wires, "
              f"mode {state.mode}, zmult {state.zmult}, p1 {state.p1:.4e}, p2 {state.p2:.4e}")
    if not solve_charges(state, matrix, debug=debug, check=check):
        print("[charges] Preparing the cell for field calculations did not succeed.")
        return False
    return True
