"""
Cell check and classification.

check_cell() turns a copy of the geometry registry into a CellState: planes
are folded and ordered, wires are folded into the basic period, and wires
that sit outside the planes or the tube, exceed a period or overlap an
earlier wire are dropped. The drops are returned as (wire, reason) pairs.
classify_cell() then assigns the cell type and set_default_gaps() fills in
the anode-cathode gaps of strips and pixels.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from geometry import CellGeometry, Plane, PointCharge, Tube, Wire, X_LOW, X_HIGH, Y_LOW, Y_HIGH
from numerics import SMALL, TWO_PI, nint


class CellType(Enum):
    """Symmetry class of the cell"""
    A00 = "A00"     # no periodicity, at most one plane per axis
    B1X = "B1X"     # x periodic, no x planes
    B1Y = "B1Y"     # y periodic, no y planes
    B2X = "B2X"     # x periodic with one x plane, or two x planes
    B2Y = "B2Y"     # y periodic with one y plane, or two y planes
    C10 = "C10"     # doubly periodic, no planes
    C2X = "C2X"     # doubly periodic with x planes
    C2Y = "C2Y"     # doubly periodic with y planes
    C30 = "C30"     # doubly periodic with x and y planes
    D10 = "D10"     # round tube
    D20 = "D20"     # round tube with angular periodicity
    D30 = "D30"     # polygonal tube
    D40 = "D40"     # polygonal tube with angular periodicity


# Dropped wire and the reason it was dropped
Drop = Tuple[Wire, str]


@dataclass
class CellState:
    """Prepared cell: the checked geometry plus everything the solver derives from it"""
    wires: List[Wire]
    planes: List[Optional[Plane]]
    tube: Optional[Tube]
    sx: float
    sy: float
    perx: bool
    pery: bool
    charges: List[PointCharge] = field(default_factory=list)
    n_term_bessel: int = 10
    n_term_poly: int = 100
    cell_type: Optional[CellType] = None

    # Planes seen by the image-charge formulas
    ynplax: bool = False
    ynplay: bool = False
    coplax: float = 1.0
    coplay: float = 1.0

    # Linear background potential V = corvta x + corvtb y + corvtc
    corvta: float = 0.0
    corvtb: float = 0.0
    corvtc: float = 0.0
    v0: float = 0.0            # reference potential

    # Doubly periodic series parameters
    mode: int = 0
    zmult: complex = 0j
    p1: float = 0.0
    p2: float = 0.0
    c1: float = 0.0

    # Tube
    ntube: int = 0
    mtube: int = 1
    kappa: float = 0.0
    wmap: Optional[np.ndarray] = None
    b2sin: Optional[np.ndarray] = None

    # Bounding box and voltage range
    xmin: float = 0.0
    xmax: float = 0.0
    ymin: float = 0.0
    ymax: float = 0.0
    zmin: float = 0.0
    zmax: float = 0.0
    vmin: float = 0.0
    vmax: float = 0.0

    # Wire arrays for the vectorised evaluators
    xw: np.ndarray = field(default_factory=lambda: np.zeros(0))
    yw: np.ndarray = field(default_factory=lambda: np.zeros(0))
    dw: np.ndarray = field(default_factory=lambda: np.zeros(0))
    vw: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ew: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def n_wires(self) -> int:
        return len(self.wires)

    def has_plane(self, i: int) -> bool:
        return self.planes[i] is not None

    def coplan(self, i: int) -> float:
        return self.planes[i].coord

    def vtplan(self, i: int) -> float:
        return self.planes[i].v

    @property
    def cotube(self) -> float:
        return self.tube.radius

    @property
    def vttube(self) -> float:
        return self.tube.v

    def update_arrays(self):
        #Refresh the wire arrays after the wire list or the charges changed
        self.xw = np.array([w.x for w in self.wires], dtype=np.float64)
        self.yw = np.array([w.y for w in self.wires], dtype=np.float64)
        self.dw = np.array([w.d for w in self.wires], dtype=np.float64)
        self.vw = np.array([w.v for w in self.wires], dtype=np.float64)
        self.ew = np.array([w.e for w in self.wires], dtype=np.float64)


def in_tube(x0: float, y0: float, a: float, n: int) -> bool:
    """
    Check whether (x0, y0) lies inside a round (n = 0) or polygonal tube of
    radius a centred on the origin.
    """
    if x0 == 0.0 and y0 == 0.0:
        return True
    if n == 0:
        return x0 * x0 + y0 * y0 <= a * a
    if n < 0 or n == 1 or n == 2:
        print(f"[cell] in_tube: Invalid number of edges (n = {n}).")
        return False
    phi = math.atan2(y0, x0)
    if phi < 0.0:
        phi += TWO_PI
    phi -= TWO_PI * int(0.5 * n * phi / math.pi) / n
    return (x0 * x0 + y0 * y0) * math.cos(math.pi / n - phi) ** 2 <= a * a * math.cos(math.pi / n) ** 2


def polar_fold(x: float, y: float, sy: float) -> Tuple[float, float, float]:
    #Rotate (x, y) into the basic angular period; returns (x, y, rotation applied)
    phi = math.atan2(y, x)
    arot = sy * nint(phi / sy)
    if arot == 0.0:
        return x, y, 0.0
    c, s = math.cos(arot), math.sin(arot)
    return c * x + s * y, -s * x + c * y, arot


def fold_point(state: CellState, x: float, y: float) -> Tuple[float, float, float]:
    """
    Move a point into the basic cell and onto the wire side of single
    planes. Returns (x, y, arot), arot being the angle of the polar fold.
    """
    arot = 0.0
    if state.perx:
        x -= state.sx * nint(x / state.sx)
    if state.tube is not None and state.pery:
        x, y, arot = polar_fold(x, y, state.sy)
    elif state.pery:
        y -= state.sy * nint(y / state.sy)

    if state.perx and state.has_plane(X_LOW) and x <= state.coplan(X_LOW):
        x += state.sx
    if state.perx and state.has_plane(X_HIGH) and x >= state.coplan(X_HIGH):
        x -= state.sx
    if state.pery and state.has_plane(Y_LOW) and y <= state.coplan(Y_LOW):
        y += state.sy
    if state.pery and state.has_plane(Y_HIGH) and y >= state.coplan(Y_HIGH):
        y -= state.sy
    return x, y, arot


def _fold_plane_pair(state: CellState, low: int, high: int, period: float, axis: str) -> bool:
    #Fold a pair of planes into the basic period; returns False if the periodicity must go
    p_low, p_high = state.planes[low], state.planes[high]
    conew1 = p_low.coord - period * nint(p_low.coord / period) if p_low else 0.0
    conew2 = p_high.coord - period * nint(p_high.coord / period) if p_high else 0.0
    if p_low and p_high and abs(conew1 - conew2) < SMALL:
        if conew1 > 0.0:
            conew1 -= period
        else:
            conew2 += period
    if (p_low and conew1 != p_low.coord) or (p_high and conew2 != p_high.coord):
        print(f"[cell] The planes in {axis} are moved to the basic period. "
              "This should not affect the results.")
    if p_low:
        p_low.coord = conew1
    if p_high:
        p_high.coord = conew2

    keep = True
    if p_low and p_high and abs(abs(p_high.coord - p_low.coord) - period) > SMALL:
        print(f"[cell] The separation of the {axis} planes does not match the period. "
              "The periodicity is cancelled.")
        keep = False
    if p_low and p_high and p_low.v != p_high.v:
        print(f"[cell] The voltages of the two {axis} planes differ. "
              "The periodicity is cancelled.")
        keep = False
    return keep


def _keep_side(state: CellState, low: int, high: int, counts: List[int], n_wires: int):
    #Decide which side of single planes holds the wires, renumber the slots accordingly
    half = n_wires // 2
    below_low, below_high = counts
    flag_low = flag_high = 0
    if state.has_plane(low) and state.has_plane(high):
        if below_low > half:
            state.planes[high] = None
            flag_low = -1
        else:
            flag_low = +1
        if below_high < half:
            state.planes[low] = None
            flag_high = +1
        else:
            flag_high = -1
    if state.has_plane(low) and not state.has_plane(high):
        flag_low = -1 if below_low > half else +1
    if state.has_plane(high) and not state.has_plane(low):
        flag_high = +1 if below_high < half else -1

    if flag_low == -1:
        state.planes[high] = state.planes[low]
        state.planes[low] = None
    if flag_high == +1:
        state.planes[low] = state.planes[high]
        state.planes[high] = None


def _basic_shift(coord: float, period: float) -> int:
    #Periods to subtract; wires on either edge of [-period/2, period/2] stay put
    if abs(coord) <= 0.5 * period:
        return 0
    return nint(coord / period)


def _wire_position(wire: Wire) -> str:
    return f"{wire.label}-wire at ({wire.x:g}, {wire.y:g})"


def check_cell(geometry: CellGeometry, debug: bool = False) -> Tuple[Optional[CellState], List[Drop]]:
    """
    Check and normalise a copy of the geometry.

    Returns:
        (state, drops). state is None if the cell is unusable (fewer than
        two elements, or all potentials equal); drops lists every removed
        wire with the reason.
    """
    src = geometry.snapshot()
    state = CellState(wires=src.wires, planes=src.planes, tube=src.tube,
                      sx=src.sx, sy=src.sy, perx=src.perx, pery=src.pery,
                      charges=src.charges, n_term_bessel=src.n_term_bessel,
                      n_term_poly=src.n_term_poly)
    drops: List[Drop] = []

    # Planes: fold into the basic period, cancel periodicities that cannot hold
    if state.perx and not _fold_plane_pair(state, X_LOW, X_HIGH, state.sx, "x"):
        state.perx = False
    if state.pery and state.tube is None and not _fold_plane_pair(state, Y_LOW, Y_HIGH, state.sy, "y"):
        state.pery = False

    # Crossing planes must share their potential
    for i in (X_LOW, X_HIGH):
        for j in (Y_LOW, Y_HIGH):
            if state.has_plane(i) and state.has_plane(j) and state.vtplan(i) != state.vtplan(j):
                print("[cell] Conflicting potential of 2 crossing planes. One y plane is removed.")
                state.planes[j] = None

    # Order the plane pairs
    for i in (X_LOW, Y_LOW):
        if state.has_plane(i) and state.has_plane(i + 1):
            if abs(state.coplan(i) - state.coplan(i + 1)) < SMALL:
                print("[cell] Two planes are on top of each other. One of them is removed.")
                state.planes[i + 1] = None
            elif state.coplan(i) > state.coplan(i + 1):
                if debug:
                    print(f"[cell] Planes {i} and {i + 1} are interchanged.")
                state.planes[i], state.planes[i + 1] = state.planes[i + 1], state.planes[i]

    # Wires: move to the basic period
    if state.perx:
        for wire in state.wires:
            shift = _basic_shift(wire.x, state.sx)
            if shift != 0:
                print(f"[cell] The {_wire_position(wire)} is moved to the basic x period. "
                      "This should not affect the results.")
                wire.x -= state.sx * shift
    if state.tube is not None and state.pery:
        for wire in state.wires:
            x, y, arot = polar_fold(wire.x, wire.y, state.sy)
            if arot != 0.0:
                print(f"[cell] The {_wire_position(wire)} is moved to the basic phi period. "
                      "This should not affect the results.")
                wire.x, wire.y = x, y
    elif state.pery:
        for wire in state.wires:
            shift = _basic_shift(wire.y, state.sy)
            if shift != 0:
                print(f"[cell] The {_wire_position(wire)} is moved to the basic y period. "
                      "This should not affect the results.")
                wire.y -= state.sy * shift

    # Keep the wires between P0 and P1, P2 and P3
    n_wires = len(state.wires)
    counts = [0, 0, 0, 0]
    for wire in state.wires:
        for slot, coord in ((X_LOW, wire.x), (X_HIGH, wire.x), (Y_LOW, wire.y), (Y_HIGH, wire.y)):
            if state.has_plane(slot) and coord <= state.coplan(slot):
                counts[slot] += 1
    _keep_side(state, X_LOW, X_HIGH, counts[0:2], n_wires)
    _keep_side(state, Y_LOW, Y_HIGH, counts[2:4], n_wires)

    # Wires outside the planes or the tube, or too thick for the period
    reasons: List[Optional[str]] = [None] * n_wires
    for i, wire in enumerate(state.wires):
        r = 0.5 * wire.d
        wrong = ((state.has_plane(X_LOW) and wire.x - r <= state.coplan(X_LOW)) or
                 (state.has_plane(X_HIGH) and wire.x + r >= state.coplan(X_HIGH)) or
                 (state.has_plane(Y_LOW) and wire.y - r <= state.coplan(Y_LOW)) or
                 (state.has_plane(Y_HIGH) and wire.y + r >= state.coplan(Y_HIGH)))
        if state.tube is not None:
            if not in_tube(wire.x, wire.y, state.cotube, state.tube.n_edges):
                reasons[i] = "located outside the tube"
        elif wrong:
            reasons[i] = "located outside the planes"
        elif (state.perx and wire.d >= state.sx) or (state.pery and wire.d >= state.sy):
            reasons[i] = "diameter exceeds 1 period"
        if reasons[i]:
            print(f"[cell] The {_wire_position(wire)}: {reasons[i]}. This wire is removed.")

    # Wire spacing, periodic images included
    for i, wi in enumerate(state.wires):
        if reasons[i]:
            continue
        for j in range(i + 1, n_wires):
            if reasons[j]:
                continue
            wj = state.wires[j]
            if state.tube is not None:
                if state.pery:
                    xi, yi, _ = polar_fold(wi.x, wi.y, state.sy)
                    xj, yj, _ = polar_fold(wj.x, wj.y, state.sy)
                    xsepar, ysepar = xi - xj, yi - yj
                else:
                    xsepar, ysepar = wi.x - wj.x, wi.y - wj.y
            else:
                xsepar = abs(wi.x - wj.x)
                if state.perx:
                    xsepar -= state.sx * nint(xsepar / state.sx)
                ysepar = abs(wi.y - wj.y)
                if state.pery:
                    ysepar -= state.sy * nint(ysepar / state.sy)
            if xsepar ** 2 + ysepar ** 2 < 0.25 * (wi.d + wj.d) ** 2:
                print(f"[cell] The {_wire_position(wi)} and the {_wire_position(wj)} "
                      "overlap at least partially. The latter wire is removed.")
                reasons[j] = "overlaps another wire"

    kept = []
    for wire, reason in zip(state.wires, reasons):
        if reason:
            drops.append((wire, reason))
        else:
            kept.append(wire)
    state.wires = kept

    n_elements = len(state.wires) + sum(1 for p in state.planes if p is not None)
    if state.tube is not None:
        n_elements += 1
    if n_elements < 2:
        print("[cell] At least 2 elements are necessary. Cell rejected.")
        return None, drops

    if not _set_dimensions(state):
        return None, drops

    state.update_arrays()
    return state, drops


def _set_dimensions(state: CellState) -> bool:
    #Bounding box and voltage range; False if all potentials are the same
    xs, ys, zs, vs = [], [], [], []
    for wire in state.wires:
        xs += [wire.x - 0.5 * wire.d, wire.x + 0.5 * wire.d]
        ys += [wire.y - 0.5 * wire.d, wire.y + 0.5 * wire.d]
        zs += [-0.5 * wire.u, 0.5 * wire.u]
        vs.append(wire.v)
    for i in (X_LOW, X_HIGH):
        if state.has_plane(i):
            xs.append(state.coplan(i))
            vs.append(state.vtplan(i))
    for i in (Y_LOW, Y_HIGH):
        if state.has_plane(i):
            ys.append(state.coplan(i))
            vs.append(state.vtplan(i))
    if state.tube is not None:
        xs = [-1.1 * state.cotube, 1.1 * state.cotube]
        ys = [-1.1 * state.cotube, 1.1 * state.cotube]
        vs.append(state.vttube)

    setx, sety = bool(xs), bool(ys)
    xmin, xmax = (min(xs), max(xs)) if setx else (0.0, 0.0)
    ymin, ymax = (min(ys), max(ys)) if sety else (0.0, 0.0)
    if state.perx and state.sx > xmax - xmin:
        xmin, xmax, setx = -0.5 * state.sx, 0.5 * state.sx, True
    if state.pery and state.tube is None and state.sy > ymax - ymin:
        ymin, ymax, sety = -0.5 * state.sy, 0.5 * state.sy, True

    # Fill in missing dimensions
    if setx and xmin != xmax and (ymin == ymax or not sety):
        ymin -= 0.5 * abs(xmax - xmin)
        ymax += 0.5 * abs(xmax - xmin)
        sety = True
    if sety and ymin != ymax and (xmin == xmax or not setx):
        xmin -= 0.5 * abs(ymax - ymin)
        xmax += 0.5 * abs(ymax - ymin)
        setx = True
    if zs:
        zmin, zmax = min(zs), max(zs)
    else:
        zmax = 0.25 * (abs(xmax - xmin) + abs(ymax - ymin))
        zmin = -zmax
    if not (setx and sety):
        print("[cell] Warning: Unable to establish default dimensions in all directions.")

    state.xmin, state.xmax = xmin, xmax
    state.ymin, state.ymax = ymin, ymax
    state.zmin, state.zmax = zmin, zmax
    if not vs or min(vs) == max(vs):
        print("[cell] All potentials in the cell are the same. There is no point in going on.")
        return False
    state.vmin, state.vmax = min(vs), max(vs)
    return True


def classify_cell(state: CellState) -> bool:
    """
    Assign the cell type. Tubes are handled first, then the simplest
    plane/periodicity combination that matches. May replace sx or sy by the
    separation of a plane pair. Returns False for unsupported cells.
    """
    p0, p1, p2, p3 = (state.has_plane(i) for i in range(4))
    perx, pery = state.perx, state.pery

    if state.tube is not None:
        n = state.tube.n_edges
        if n != 0 and not 3 <= n <= 8:
            print(f"[cell] Potentials for a tube with {n} edges are not available. "
                  "Using a round tube instead.")
            n = 0
        state.ntube = n
        if n == 0 and pery:
            state.cell_type = CellType.D20
            state.mtube = max(1, nint(TWO_PI / state.sy))
            if abs(state.mtube * state.sy - TWO_PI) > SMALL:
                print(f"[cell] Warning: the angular period {state.sy:g} does not divide 2 pi; "
                      f"using {state.mtube} sectors.")
        elif n == 0:
            state.cell_type = CellType.D10
        elif pery:
            state.cell_type = CellType.D40
            print("[cell] Polygonal tubes with angular periodicity (D40) are not supported.")
            return False
        else:
            state.cell_type = CellType.D30
        return True

    if not (perx or pery) and not (p0 and p1) and not (p2 and p3):
        state.cell_type = CellType.A00
        return True
    if perx and not pery and not (p0 or p1) and not (p2 and p3):
        state.cell_type = CellType.B1X
        return True
    if pery and not perx and not (p0 and p1) and not (p2 or p3):
        state.cell_type = CellType.B1Y
        return True
    if perx and not pery and not (p2 and p3):
        state.cell_type = CellType.B2X
        return True
    if not (perx or pery) and not (p2 and p3) and (p0 and p1):
        state.sx = abs(state.coplan(X_HIGH) - state.coplan(X_LOW))
        state.cell_type = CellType.B2X
        return True
    if pery and not perx and not (p0 and p1):
        state.cell_type = CellType.B2Y
        return True
    if not (perx or pery) and not (p0 and p1) and (p2 and p3):
        state.sy = abs(state.coplan(Y_HIGH) - state.coplan(Y_LOW))
        state.cell_type = CellType.B2Y
        return True
    if not (p0 or p1 or p2 or p3) and perx and pery:
        state.cell_type = CellType.C10
        return True
    if not ((p2 and pery) or (p2 and p3)):
        if p0 and p1:
            state.sx = abs(state.coplan(X_HIGH) - state.coplan(X_LOW))
            state.cell_type = CellType.C2X
            return True
        if perx and p0:
            state.cell_type = CellType.C2X
            return True
    if not ((p0 and perx) or (p0 and p1)):
        if p2 and p3:
            state.sy = abs(state.coplan(Y_HIGH) - state.coplan(Y_LOW))
            state.cell_type = CellType.C2Y
            return True
        if pery and p2:
            state.cell_type = CellType.C2Y
            return True
    if perx and pery:
        state.cell_type = CellType.C30
        return True
    if perx:
        state.sy = abs(state.coplan(Y_HIGH) - state.coplan(Y_LOW))
        state.cell_type = CellType.C30
        return True
    if pery:
        state.sx = abs(state.coplan(X_HIGH) - state.coplan(X_LOW))
        state.cell_type = CellType.C30
        return True
    if p0 and p1 and p2 and p3:
        state.sx = abs(state.coplan(X_HIGH) - state.coplan(X_LOW))
        state.sy = abs(state.coplan(Y_HIGH) - state.coplan(Y_LOW))
        state.cell_type = CellType.C30
        return True

    print("[cell] Cell type not recognised.")
    return False


def _default_gap(state: CellState, slot: int) -> float:
    opposite = {X_LOW: X_HIGH, X_HIGH: X_LOW, Y_LOW: Y_HIGH, Y_HIGH: Y_LOW}[slot]
    if state.has_plane(opposite):
        return abs(state.coplan(opposite) - state.coplan(slot))
    if not state.wires:
        return -1.0
    c = state.coplan(slot)
    if slot == X_LOW:
        return min(w.x - c for w in state.wires)
    if slot == X_HIGH:
        return min(c - w.x for w in state.wires)
    if slot == Y_LOW:
        return min(w.y - c for w in state.wires)
    return min(c - w.y for w in state.wires)


def set_default_gaps(state: CellState) -> bool:
    #Fill in the anode-cathode gap of strips and pixels that have none
    for slot in (X_LOW, X_HIGH, Y_LOW, Y_HIGH):
        plane = state.planes[slot]
        if plane is None:
            continue
        gap = _default_gap(state, slot)
        for kind, items in (("strip", plane.strips1), ("strip", plane.strips2), ("pixel", plane.pixels)):
            for j, item in enumerate(items):
                if item.gap < 0.0:
                    item.gap = gap
                if item.gap < 0.0:
                    print(f"[cell] Not able to set a default anode-cathode gap for {kind} {j} "
                          f"of plane {slot}.")
                    return False
    return True
