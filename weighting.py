"""
Weighting fields of readout groups.

The weighting field of a group is the field obtained with the electrodes
of the group at 1 V and every other electrode at 0 V. For wires it is
produced by line charges from the inverted signal matrices, for planes and
the tube by the plane charges plus a linear bias field, and strips and
pixels have their own closed forms for a parallel-plate gap.

Periodic cells are handled by replicating the wires n_fourier times along
the periodic directions (signal "layers"). The layers form a block
circulant matrix which is diagonalised with numpy.fft, inverted layer by
layer and transformed back.
"""

import math
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from numba import jit

import fields
from cell import CellState, CellType
from charges import build_matrix, setup_background
from geometry import X_LOW, X_HIGH, Y_LOW, Y_HIGH, TUBE_SLOT
from numerics import ASYMPTOTIC_LIMIT, HALF_PI, TWO_PI, invert_matrix, nint


# Cell type whose potentials are used for the weighting field when the
# natural periodicity is replaced by n_fourier explicit copies
FOURIER_TYPES = {
    CellType.A00: CellType.A00,
    CellType.B1X: CellType.A00,
    CellType.B1Y: CellType.A00,
    CellType.C10: CellType.A00,
    CellType.B2X: CellType.B2X,
    CellType.C2X: CellType.B2X,
    CellType.B2Y: CellType.B2Y,
    CellType.C2Y: CellType.B2Y,
    CellType.C30: CellType.C30,
    CellType.D10: CellType.D10,
    CellType.D30: CellType.D30,
}

# Cell types with a weighting routine of their own (n_fourier = 0)
NATURAL_TYPES = (CellType.A00, CellType.B2X, CellType.B2Y, CellType.C2X,
                 CellType.C2Y, CellType.C30, CellType.D10, CellType.D30)


@dataclass
class SignalState:
    """Prepared weighting-field data of a cell."""
    ftype: CellType                     # cell type of the weighting potentials
    readouts: List[str]
    n_fourier: int = 1
    fperx: bool = False                 # wire copies along x
    fpery: bool = False                 # wire copies along y
    mx_range: Tuple[int, int] = (0, 0)  # inclusive layer ranges
    my_range: Tuple[int, int] = (0, 0)
    # Inverted signal matrix per layer (mx, my); row i: charges for wire i at 1 V
    layers: Dict[Tuple[int, int], np.ndarray] = field(default_factory=dict)
    # Wire charges induced by planes 0-3 and the tube (slot 4) at 1 V
    qplane: np.ndarray = field(default_factory=lambda: np.zeros((5, 0)))
    ewxcor: np.ndarray = field(default_factory=lambda: np.zeros(5))
    ewycor: np.ndarray = field(default_factory=lambda: np.zeros(5))
    pixel_max_error: float = 1e-5

    def readout_index(self, label: str) -> int:
        try:
            return self.readouts.index(label)
        except ValueError:
            return -1


# ----------------------------------------------------------------------
# Signal matrices
# ----------------------------------------------------------------------

def _layer_a00(state: CellState, dx: float, dy: float) -> np.ndarray:
    #Potential at wire i of wire j displaced by (dx, dy), with the plane images
    xw, yw = state.xw, state.yw
    rx = xw[:, None] - xw[None, :] - dx
    ry = yw[:, None] - yw[None, :] - dy
    r2 = rx * rx + ry * ry
    mx = xw[:, None] + xw[None, :] + dx - 2.0 * state.coplax
    my = yw[:, None] + yw[None, :] + dy - 2.0 * state.coplay
    if state.ynplax:
        r2 = r2 / (mx * mx + ry * ry)
    if state.ynplay:
        r2 = r2 / (rx * rx + my * my)
    if state.ynplax and state.ynplay:
        r2 = r2 * (mx * mx + my * my)
    return -0.5 * np.log(r2)


def _layer_b2(state: CellState, shift: float, along_x: bool) -> np.ndarray:
    #B2X (B2Y) signal layer with the wires displaced by shift along y (x)
    if along_x:
        period, c0, own, other = state.sx, state.coplax, state.xw, state.yw
        has_mirror, cm = state.ynplay, state.coplay
    else:
        period, c0, own, other = state.sy, state.coplay, state.yw, state.xw
        has_mirror, cm = state.ynplax, state.coplax
    h = HALF_PI / period
    d_own = h * (own[:, None] - own[None, :])
    d_oth = h * (other[:, None] - other[None, :] - shift)
    neg = h * (own[:, None] + own[None, :] - 2.0 * c0)
    near = np.abs(d_oth) <= ASYMPTOTIC_LIMIT
    sh2 = np.sinh(np.where(near, d_oth, 0.0)) ** 2
    ratio = np.where(near, (sh2 + np.sin(d_own) ** 2) / (sh2 + np.sin(neg) ** 2), 1.0)
    if has_mirror:
        mirr = h * (other[:, None] + other[None, :] + shift - 2.0 * cm)
        mnear = np.abs(mirr) <= ASYMPTOTIC_LIMIT
        msh2 = np.sinh(np.where(mnear, mirr, 0.0)) ** 2
        ratio = np.where(mnear, ratio * (msh2 + np.sin(neg) ** 2) / (msh2 + np.sin(d_own) ** 2),
                         ratio)
    return -0.5 * np.log(ratio)


def signal_layer(state: CellState, ftype: CellType, mx: int, my: int) -> np.ndarray:
    """
    Signal matrix of layer (mx, my): potentials at the wires of the basic
    cell due to unit charges on the wires of the copy displaced by
    (mx sx, my sy). Layer (0, 0) is the capacitance matrix of ftype.
    """
    if mx == 0 and my == 0:
        return build_matrix(state, ftype)
    dx, dy = mx * state.sx, my * state.sy
    if ftype == CellType.A00:
        return _layer_a00(state, dx, dy)
    if ftype == CellType.B2X:
        return _layer_b2(state, dy, True)
    if ftype == CellType.B2Y:
        return _layer_b2(state, dx, False)
    raise ValueError(f"No displaced signal layers for cell type {ftype}")


def _dump_layer(title: str, matrix: np.ndarray):
    print(f"[weighting] {title}")
    n = matrix.shape[0]
    for i in range(0, n, 10):
        for j in range(0, n, 10):
            block = matrix[i:i + 10, j:j + 10]
            print(f"    (Re-Block {i // 10}, {j // 10})")
            for row in block.real:
                print("    " + " ".join(f"{v:11.4e}" for v in row))
            if np.iscomplexobj(block):
                print(f"    (Im-Block {i // 10}, {j // 10})")
                for row in block.imag:
                    print("    " + " ".join(f"{v:11.4e}" for v in row))


def _layer_range(periodic: bool, n_fourier: int) -> Tuple[int, int]:
    if not periodic:
        return 0, 0
    return min(0, 1 - n_fourier // 2), n_fourier // 2


def setup_wire_signals(state: CellState, signals: SignalState, debug: bool = False) -> bool:
    """
    Fill, Fourier transform, invert and transform back the signal layers.
    Returns False if a layer cannot be inverted.
    """
    n = state.n_wires
    mxs = range(signals.mx_range[0], signals.mx_range[1] + 1)
    mys = range(signals.my_range[0], signals.my_range[1] + 1)
    nx, ny = len(mxs), len(mys)

    # Layer (0, 0) first, it sets b2sin / wmap / series parameters
    stack = np.zeros((nx, ny, n, n), dtype=np.complex128)
    stack[0, 0] = signal_layer(state, signals.ftype, 0, 0)
    for mx in mxs:
        for my in mys:
            if mx == 0 and my == 0:
                continue
            stack[mx % nx, my % ny] = signal_layer(state, signals.ftype, mx, my)
            if debug:
                print(f"[weighting] Signal matrix MX = {mx}, MY = {my} has been calculated.")
    if debug:
        for mx in mxs:
            for my in mys:
                _dump_layer(f"Signal matrix ({mx}, {my}) before inversion:", stack[mx % nx, my % ny])

    axes = tuple(ax for ax, size in ((0, nx), (1, ny)) if size > 1)
    count = nx * ny
    if axes:
        stack = np.fft.ifftn(stack, axes=axes) * count

    for kx in range(nx):
        for ky in range(ny):
            inverse, ok = invert_matrix(stack[kx, ky])
            if not ok:
                print(f"[weighting] Inversion of signal matrix ({kx}, {ky}) failed. "
                      "Preparation of weighting fields is abandoned.")
                return False
            stack[kx, ky] = inverse

    if axes:
        stack = np.fft.fftn(stack, axes=axes) / count

    signals.layers = {}
    for mx in mxs:
        for my in mys:
            signals.layers[(mx, my)] = stack[mx % nx, my % ny].real.copy()
            if debug:
                _dump_layer(f"Signal matrix ({mx}, {my}) after inversion:", signals.layers[(mx, my)])
    return True


def _plane_bias_potentials(state: CellState, slot: int) -> np.ndarray:
    #Minus the bias potential of plane `slot` at 1 V, at every wire
    if slot == TUBE_SLOT:
        return -np.ones(state.n_wires)
    if slot in (X_LOW, X_HIGH):
        own, period, periodic, low, high = state.xw, state.sx, state.perx, X_LOW, X_HIGH
    else:
        own, period, periodic, low, high = state.yw, state.sy, state.pery, Y_LOW, Y_HIGH
    other = high if slot == low else low
    if state.has_plane(other):
        return -(state.coplan(other) - own) / (state.coplan(other) - state.coplan(slot))
    if periodic:
        if slot == low:
            return -(state.coplan(slot) + period - own) / period
        return -(own - state.coplan(slot) + period) / period
    return -np.ones(state.n_wires)


def setup_plane_signals(state: CellState, signals: SignalState, debug: bool = False):
    """Wire charges induced by each plane (and the tube) at 1 V, and the bias fields."""
    n = state.n_wires
    signals.qplane = np.zeros((5, n))
    if n > 0 and signals.layers:
        gsum = sum(signals.layers.values())
        for slot in (X_LOW, X_HIGH, Y_LOW, Y_HIGH):
            if state.has_plane(slot):
                signals.qplane[slot] = gsum @ _plane_bias_potentials(state, slot)
        if state.tube is not None:
            signals.qplane[TUBE_SLOT] = gsum @ _plane_bias_potentials(state, TUBE_SLOT)

    ewx = np.zeros(5)
    ewy = np.zeros(5)
    p = [state.has_plane(i) for i in range(4)]
    if p[X_LOW] and p[X_HIGH]:
        ewx[X_LOW] = 1.0 / (state.coplan(X_HIGH) - state.coplan(X_LOW))
        ewx[X_HIGH] = 1.0 / (state.coplan(X_LOW) - state.coplan(X_HIGH))
    elif p[X_LOW] and state.perx:
        ewx[X_LOW] = 1.0 / state.sx
    elif p[X_HIGH] and state.perx:
        ewx[X_HIGH] = -1.0 / state.sx
    if p[Y_LOW] and p[Y_HIGH]:
        ewy[Y_LOW] = 1.0 / (state.coplan(Y_HIGH) - state.coplan(Y_LOW))
        ewy[Y_HIGH] = 1.0 / (state.coplan(Y_LOW) - state.coplan(Y_HIGH))
    elif p[Y_LOW] and state.pery:
        ewy[Y_LOW] = 1.0 / state.sy
    elif p[Y_HIGH] and state.pery:
        ewy[Y_HIGH] = -1.0 / state.sy
    signals.ewxcor, signals.ewycor = ewx, ewy
    for slot in range(4):
        if state.planes[slot] is not None:
            state.planes[slot].ewxcor = ewx[slot]
            state.planes[slot].ewycor = ewy[slot]

    if debug:
        print("[weighting] Charges for currents induced in the planes:")
        print("    Wire        x-Plane 1        x-Plane 2        y-Plane 1        y-Plane 2             Tube")
        for i in range(n):
            print(f"    {i:4d} " + " ".join(f"{signals.qplane[s, i]:16.8e}" for s in range(5)))
        print("[weighting] Bias fields:")
        print("    Plane    x-Bias [1/cm]    y-Bias [1/cm]")
        for slot in range(4):
            print(f"    {slot:5d} {ewx[slot]:16.8e} {ewy[slot]:16.8e}")


def _assign_readouts(state: CellState, readouts: List[str]):
    #Readout group index of every electrode, -1 if it is not read out
    def index(label):
        return readouts.index(label) if label in readouts else -1

    for wire in state.wires:
        wire.ind = index(wire.label)
    for plane in state.planes:
        if plane is None:
            continue
        plane.ind = index(plane.label)
        for item in plane.strips1 + plane.strips2 + plane.pixels:
            item.ind = index(item.label)
    if state.tube is not None:
        state.tube.ind = index(state.tube.label)


def _merge_crossing_planes(state: CellState, signals: SignalState):
    #x and y planes of one readout group touch; their unit bias must only be counted once
    for slot in (Y_LOW, Y_HIGH):
        plane = state.planes[slot]
        if plane is None or plane.ind < 0:
            continue
        crossing = [s for s in (X_LOW, X_HIGH)
                    if state.planes[s] is not None and state.planes[s].ind == plane.ind]
        if not crossing:
            continue
        label = signals.readouts[plane.ind]
        if all(signals.ewxcor[s] == 0.0 and signals.ewycor[s] == 0.0 for s in crossing + [slot]):
            plane.ind = -1
            print(f"[weighting] The x and y planes of readout group '{label}' touch; "
                  "they are treated as one electrode.")
        else:
            print(f"[weighting] Warning: readout group '{label}' holds crossing x and y planes "
                  "with a bias field; its weighting potential on the planes is not exact.")


def prepare_signals(state: CellState, readouts: List[str], n_fourier: int = 1,
                    pixel_max_error: float = 1e-5, debug: bool = False) -> Optional[SignalState]:
    """
    Prepare the weighting fields of a classified cell.

    Args:
        state: classified cell (its charges need not be solved)
        readouts: readout group labels
        n_fourier: number of wire copies along the periodic directions
            (power of two); 0 uses the natural periodicity of the cell
        pixel_max_error: truncation tolerance of the pixel series
        debug: dump the signal matrices and plane charges

    Returns:
        SignalState, or None if the cell type has no weighting potentials
        or a matrix inversion fails.
    """
    if not readouts:
        print("[weighting] There are no readout groups defined. "
              "Calculation of weighting fields makes no sense.")
        return None
    if n_fourier < 0:
        print(f"[weighting] Invalid number of Fourier layers ({n_fourier}).")
        return None

    ctype = state.cell_type
    if n_fourier == 0:
        ftype = ctype if ctype in NATURAL_TYPES else None
    else:
        ftype = FOURIER_TYPES.get(ctype)
    if ftype is None:
        print(f"[weighting] No potentials available to handle cell type {ctype.value}.")
        return None

    signals = SignalState(ftype=ftype, readouts=list(readouts), n_fourier=n_fourier,
                          pixel_max_error=pixel_max_error)
    if n_fourier > 1:
        if n_fourier & (n_fourier - 1):
            print(f"[weighting] Warning: number of Fourier layers {n_fourier} is not a power of 2; "
                  "the wires are not replicated.")
        else:
            signals.fperx = ctype in (CellType.B1X, CellType.C10, CellType.C2Y)
            signals.fpery = ctype in (CellType.B1Y, CellType.C10, CellType.C2X)
    signals.mx_range = _layer_range(signals.fperx, n_fourier)
    signals.my_range = _layer_range(signals.fpery, n_fourier)

    if debug:
        print(f"[weighting] Cell type: {ctype.value}, Fourier cell type: {ftype.value}, "
              f"x copies: {signals.fperx}, y copies: {signals.fpery}, layers: {n_fourier}")

    setup_background(state)
    if state.n_wires > 0 and not setup_wire_signals(state, signals, debug):
        print("[weighting] Preparing wire signal capacitance matrices failed.")
        return None
    setup_plane_signals(state, signals, debug)
    _assign_readouts(state, signals.readouts)
    _merge_crossing_planes(state, signals)
    return signals


# ----------------------------------------------------------------------
# Strips and pixels
# ----------------------------------------------------------------------

def strip_potential(xw: float, yw: float, w: float, g: float, opt: bool):
    """
    Weighting field of a strip of half width w, in local coordinates: xw
    along the plane from the strip centre, yw from the plane towards the
    opposite electrode at distance g.

    Returns:
        (ewx, ewy, v), zero outside 0 < yw <= g and at the poles
    """
    if yw <= 0.0 or yw > g:
        return 0.0, 0.0, 0.0
    s = math.sin(math.pi * yw / g)
    c = math.cos(math.pi * yw / g)
    e1 = math.exp(math.pi * (w - xw) / g)
    e2 = math.exp(-math.pi * (w + xw) / g)
    if c == e1 or c == e2 or s == 0.0:
        return 0.0, 0.0, 0.0
    ce12 = (c - e1) ** 2
    ce22 = (c - e2) ** 2
    v = 0.0
    if opt:
        v = (math.atan((c - e2) / s) - math.atan((c - e1) / s)) / math.pi
    ewx = (s / g) * (e1 / (ce12 + s * s) - e2 / (ce22 + s * s))
    ewy = ((c / (c - e2) + s * s / ce22) / (1.0 + s * s / ce22) -
           (c / (c - e1) + s * s / ce12) / (1.0 + s * s / ce12)) / g
    return ewx, ewy, v


def _strip_frame(state: CellState, slot: int, along: float, across: float, centre: float):
    #Local strip coordinates: along = in-plane coordinate, across = x or y
    c = state.coplan(slot)
    if slot == X_LOW:
        return centre - along, across - c
    if slot == X_HIGH:
        return along - centre, c - across
    if slot == Y_LOW:
        return along - centre, across - c
    return centre - along, c - across


def strip_z_field(state: CellState, slot: int, strip, x: float, y: float, opt: bool):
    """Strip running along z, bounded along the in-plane axis."""
    centre = 0.5 * (strip.smin + strip.smax)
    if slot in (X_LOW, X_HIGH):
        xw, yw = _strip_frame(state, slot, y, x, centre)
    else:
        xw, yw = _strip_frame(state, slot, x, y, centre)
    ewx, ewy, v = strip_potential(xw, yw, 0.5 * abs(strip.smax - strip.smin), strip.gap, opt)
    if slot == X_LOW:
        return ewy, -ewx, 0.0, v
    if slot == X_HIGH:
        return -ewy, ewx, 0.0, v
    if slot == Y_LOW:
        return ewx, ewy, 0.0, v
    return -ewx, -ewy, 0.0, v


def strip_xy_field(state: CellState, slot: int, strip, x: float, y: float, z: float, opt: bool):
    """Strip running along the in-plane axis, bounded in z."""
    centre = 0.5 * (strip.smin + strip.smax)
    across = x if slot in (X_LOW, X_HIGH) else y
    xw, yw = _strip_frame(state, slot, z, across, centre)
    ewx, ewy, v = strip_potential(xw, yw, 0.5 * abs(strip.smax - strip.smin), strip.gap, opt)
    if slot == X_LOW:
        return ewy, 0.0, -ewx, v
    if slot == X_HIGH:
        return -ewy, 0.0, ewx, v
    if slot == Y_LOW:
        return 0.0, ewy, ewx, v
    return 0.0, -ewy, -ewx, v


@jit(nopython=True, fastmath=True, cache=True)
def _pixel_corners(x1, x2, y1, y2, u):
    #Field (-grad f) and potential of one image term at distance u from the pad plane
    x1s, x2s, y1s, y2s, us = x1 * x1, x2 * x2, y1 * y1, y2 * y2, u * u
    r11 = math.sqrt(x1s + y1s + us)
    r12 = math.sqrt(x1s + y2s + us)
    r21 = math.sqrt(x2s + y1s + us)
    r22 = math.sqrt(x2s + y2s + us)
    fx = (u * y1 / ((us + x2s) * r21) - u * y1 / ((us + x1s) * r11) +
          u * y2 / ((us + x1s) * r12) - u * y2 / ((us + x2s) * r22))
    fy = (u * x1 / ((us + y2s) * r12) - u * x1 / ((us + y1s) * r11) +
          u * x2 / ((us + y1s) * r21) - u * x2 / ((us + y2s) * r22))
    fz = (x1 * y1 * (x1s + y1s + 2.0 * us) / ((x1s + us) * (y1s + us) * r11) +
          x2 * y2 * (x2s + y2s + 2.0 * us) / ((x2s + us) * (y2s + us) * r22) -
          x1 * y2 * (x1s + y2s + 2.0 * us) / ((x1s + us) * (y2s + us) * r12) -
          x2 * y1 * (x2s + y1s + 2.0 * us) / ((x2s + us) * (y1s + us) * r21))
    v = (math.atan(x1 * y1 / (u * r11)) + math.atan(x2 * y2 / (u * r22)) -
         math.atan(x1 * y2 / (u * r12)) - math.atan(x2 * y1 / (u * r21)))
    return fx, fy, fz, v


@jit(nopython=True, fastmath=True, cache=True)
def pixel_series(x, y, z, wx, wy, d, max_error):
    """
    Weighting field of a wx * wy pad in a plane condenser of gap d, at
    (x, y) from the pad centre and height z above the pad. The image
    series is truncated when its remainder drops below max_error.

    Returns:
        (ex, ey, ez, v)
    """
    x1 = x - 0.5 * wx
    x2 = x + 0.5 * wx
    y1 = y - 0.5 * wy
    y2 = y + 0.5 * wy
    d3 = d * d * d
    nz = int(math.ceil(math.sqrt(wx * wy / (8.0 * math.pi * d3 * max_error))))
    nx = int(math.ceil(math.sqrt(wy * z / (4.0 * math.pi * d3 * max_error))))
    ny = int(math.ceil(math.sqrt(wx * z / (4.0 * math.pi * d3 * max_error))))
    nn = max(nx, ny, nz)

    ex = 0.0
    ey = 0.0
    ez = 0.0
    v = 0.0
    for i in range(1, nn + 1):
        u1 = 2.0 * i * d - z
        u2 = 2.0 * i * d + z
        fx1, fy1, fz1, v1 = _pixel_corners(x1, x2, y1, y2, u1)
        fx2, fy2, fz2, v2 = _pixel_corners(x1, x2, y1, y2, u2)
        if i <= nx:
            ex += fx2 - fx1
        if i <= ny:
            ey += fy2 - fy1
        if i <= nz:
            ez += fz1 + fz2
        v += v2 - v1

    fx0, fy0, fz0, v0 = _pixel_corners(x1, x2, y1, y2, z)
    ex = (ex + fx0) / TWO_PI
    ey = (ey + fy0) / TWO_PI
    ez = (ez + fz0) / TWO_PI
    v = (v + v0) / TWO_PI
    return ex, ey, ez, v


def pixel_field(state: CellState, slot: int, pixel, x: float, y: float, z: float,
                max_error: float, opt: bool):
    """Weighting field of a pixel, zero outside 0 < height <= gap."""
    d = pixel.gap
    ps = 0.5 * (pixel.smin + pixel.smax)
    pz = 0.5 * (pixel.zmin + pixel.zmax)
    wx = pixel.smax - pixel.smin
    wy = pixel.zmax - pixel.zmin
    c = state.coplan(slot)
    if slot == X_LOW:
        lx, ly, lz = y - ps, z - pz, x - c
    elif slot == X_HIGH:
        lx, ly, lz = y - ps, pz - z, c - x
    elif slot == Y_LOW:
        lx, ly, lz = x - ps, pz - z, y - c
    else:
        lx, ly, lz = x - ps, z - pz, c - y
    if lz <= 0.0 or lz > d:
        return 0.0, 0.0, 0.0, 0.0

    fx, fy, fz, v = pixel_series(lx, ly, lz, wx, wy, d, max_error)
    if not opt:
        v = 0.0
    if slot == X_LOW:
        return fz, fx, fy, v
    if slot == X_HIGH:
        return -fz, fx, -fy, v
    if slot == Y_LOW:
        return fx, fz, -fy, v
    return fx, -fz, fy, v


# ----------------------------------------------------------------------
# Weighting field
# ----------------------------------------------------------------------

_WEIGHTING_FUNCTIONS = {
    CellType.A00: fields.field_a00,
    CellType.B2X: fields.field_b2x,
    CellType.B2Y: fields.field_b2y,
    CellType.C2X: fields.field_c2x,
    CellType.C2Y: fields.field_c2y,
    CellType.C30: fields.field_c30,
    CellType.D10: fields.field_d10,
    CellType.D30: fields.field_d30,
}


def _folded(coord: float, period: float, periodic: bool, low: Optional[float], high: Optional[float]):
    if not periodic:
        return coord
    coord -= period * nint(coord / period)
    if low is not None and coord <= low:
        coord += period
    if high is not None and coord >= high:
        coord -= period
    return coord


def _plane_coord(state: CellState, slot: int) -> Optional[float]:
    return state.coplan(slot) if state.has_plane(slot) else None


def _plane_bias(state: CellState, signals: SignalState, slot: int, x: float, y: float, opt: bool):
    #Linear field of a plane (or tube) read out at 1 V
    ex, ey = signals.ewxcor[slot], signals.ewycor[slot]
    if not opt:
        return ex, ey, 0.0
    if slot in (X_LOW, X_HIGH):
        xx = _folded(x, state.sx, state.perx, _plane_coord(state, X_LOW), _plane_coord(state, X_HIGH))
        return ex, ey, 1.0 - ex * (xx - state.coplan(slot))
    if slot in (Y_LOW, Y_HIGH):
        yy = _folded(y, state.sy, state.pery, _plane_coord(state, Y_LOW), _plane_coord(state, Y_HIGH))
        return ex, ey, 1.0 - ey * (yy - state.coplan(slot))
    return ex, ey, 1.0


def weighting_field(state: CellState, signals: SignalState, x: float, y: float, z: float,
                    label: str, opt: bool):
    """
    Weighting field and (if opt) potential of the readout group `label`.

    Returns:
        (ex, ey, ez, v); all zero if the label is not a readout group.
    """
    isw = signals.readout_index(label)
    if isw < 0:
        return 0.0, 0.0, 0.0, 0.0

    exsum = eysum = ezsum = vsum = 0.0
    func = _WEIGHTING_FUNCTIONS[signals.ftype]
    group = [i for i, wire in enumerate(state.wires) if wire.ind == isw]
    slots = [slot for slot in range(4)
             if state.planes[slot] is not None and state.planes[slot].ind == isw]
    if state.tube is not None and state.tube.ind == isw:
        slots.append(TUBE_SLOT)

    if state.n_wires > 0:
        for (mx, my), layer in signals.layers.items():
            dx, dy = mx * state.sx, my * state.sy
            sources = [layer[group].sum(axis=0)] if group else []
            sources += [signals.qplane[slot] for slot in slots]
            for q in sources:
                ex, ey, v = func(state, x, y, opt, q, dx, dy)
                exsum += ex
                eysum += ey
                vsum += v

    for slot in slots:
        ex, ey, v = _plane_bias(state, signals, slot, x, y, opt)
        exsum += ex
        eysum += ey
        vsum += v

    for slot in range(4):
        plane = state.planes[slot]
        if plane is None:
            continue
        for strip in plane.strips1:
            if strip.ind == isw:
                ex, ey, ez, v = strip_xy_field(state, slot, strip, x, y, z, opt)
                exsum, eysum, ezsum, vsum = exsum + ex, eysum + ey, ezsum + ez, vsum + v
        for strip in plane.strips2:
            if strip.ind == isw:
                ex, ey, ez, v = strip_z_field(state, slot, strip, x, y, opt)
                exsum, eysum, vsum = exsum + ex, eysum + ey, vsum + v
        for pixel in plane.pixels:
            if pixel.ind == isw:
                ex, ey, ez, v = pixel_field(state, slot, pixel, x, y, z,
                                            signals.pixel_max_error, opt)
                exsum, eysum, ezsum, vsum = exsum + ex, eysum + ey, ezsum + ez, vsum + v

    return exsum, eysum, ezsum, (vsum if opt else 0.0)
