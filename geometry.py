"""
Geometry registry of an analytic wire-chamber cell.

Holds the wires, planes, tube, strips, pixels, periodicities, 3D point
charges and readout groups as entered by the user. Invalid input is
rejected with a diagnostic and the registry is left unchanged; nothing in
here raises for bad geometry. Preparation (cell.py) works on a copy, so
the registry always reflects what was entered.
"""

import copy
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from numerics import SMALL, FOUR_PI_EPSILON_0


# Plane slots
X_LOW, X_HIGH, Y_LOW, Y_HIGH = 0, 1, 2, 3
# Pseudo-slot used for the tube when it acts as a readout electrode
TUBE_SLOT = 4


@dataclass
class Wire:
    """Thin wire parallel to z"""
    x: float                    # cm
    y: float                    # cm
    d: float                    # diameter [cm]
    v: float                    # potential [V]
    u: float = 100.0            # length [cm]
    label: str = ""             # readout group tag
    tension: float = 50.0       # g
    density: float = 19.3       # g/cm3
    ntrap: int = 5              # trap radius in units of the wire radius
    e: float = 0.0              # charge in reduced units, set by the solver
    ind: int = -1               # readout group index, set by the signal setup


@dataclass
class Strip:
    #Strip on a plane: [smin, smax] across the strip axis
    smin: float
    smax: float
    gap: float = -1.0           # anode-cathode distance, < 0 until defaulted
    label: str = ""
    ind: int = -1


@dataclass
class Pixel:
    #Pixel on a plane: [smin, smax] in the in-plane axis, [zmin, zmax] in z
    smin: float
    smax: float
    zmin: float
    zmax: float
    gap: float = -1.0
    label: str = ""
    ind: int = -1


@dataclass
class Plane:
    """Equipotential plane at constant x (slots 0, 1) or y (slots 2, 3)"""
    coord: float                # cm
    v: float                    # potential [V]
    label: str = "?"
    ind: int = -1
    ewxcor: float = 0.0         # weighting field background, x
    ewycor: float = 0.0         # weighting field background, y
    strips1: List[Strip] = field(default_factory=list)  # along the in-plane axis, bounded in z
    strips2: List[Strip] = field(default_factory=list)  # along z, bounded in the in-plane axis
    pixels: List[Pixel] = field(default_factory=list)


@dataclass
class Tube:
    #Round (n_edges = 0) or polygonal tube centred on the origin
    radius: float               # cm
    v: float                    # potential [V]
    n_edges: int = 0
    label: str = ""
    ind: int = -1


@dataclass
class PointCharge:
    x: float
    y: float
    z: float
    e: float                    # q / (4 pi eps0) [V cm]


class CellGeometry:
    """
    Registry of everything that makes up the cell.

    Subscribers registered with subscribe() are called with
    (charges_changed: bool) after each successful structural change, so
    derived state can be invalidated.
    """

    DEFAULT_N_TERM_BESSEL = 10
    DEFAULT_N_TERM_POLY = 100

    def __init__(self):
        self.wires: List[Wire] = []
        self.planes: List[Optional[Plane]] = [None, None, None, None]
        self.tube: Optional[Tube] = None
        self.sx = 1.0
        self.sy = 1.0
        self.perx = False
        self.pery = False
        self.charges: List[PointCharge] = []
        self.default_n_term_bessel = self.DEFAULT_N_TERM_BESSEL
        self.default_n_term_poly = self.DEFAULT_N_TERM_POLY
        self.n_term_bessel = self.default_n_term_bessel
        self.n_term_poly = self.default_n_term_poly
        self.readouts: List[str] = []
        self._subscribers: List[Callable[[bool], None]] = []

    def subscribe(self, callback: Callable[[bool], None]):
        self._subscribers.append(callback)

    def _changed(self, charges: bool = True):
        for callback in self._subscribers:
            callback(charges)

    def snapshot(self) -> "CellGeometry":
        #Deep copy without subscribers, used as the starting point of a preparation
        clone = copy.copy(self)
        clone.wires = copy.deepcopy(self.wires)
        clone.planes = copy.deepcopy(self.planes)
        clone.tube = copy.deepcopy(self.tube)
        clone.charges = list(self.charges)
        clone.readouts = list(self.readouts)
        clone._subscribers = []
        return clone

    # ------------------------------------------------------------------
    # Wires, tube, planes
    # ------------------------------------------------------------------

    def add_wire(self, x: float, y: float, diameter: float, voltage: float,
                 label: str = "", length: float = 100.0, tension: float = 50.0,
                 density: float = 19.3, ntrap: int = 5) -> bool:
        """
        Add a wire.

        Args:
            x, y: wire position [cm]
            diameter: wire diameter [cm]
            voltage: wire potential [V]
            label: readout group tag
            length: wire length [cm], used for the bounding box
            tension: stretching tension [g]
            density: material density [g/cm3]
            ntrap: trap radius in units of the wire radius

        Returns:
            True if the wire was added.
        """
        if diameter <= 0.0:
            print("[geometry] add_wire: Unphysical wire diameter.")
            return False
        if tension <= 0.0:
            print("[geometry] add_wire: Unphysical wire tension.")
            return False
        if density <= 0.0:
            print("[geometry] add_wire: Unphysical wire density.")
            return False
        if length <= 0.0:
            print("[geometry] add_wire: Unphysical wire length.")
            return False
        if ntrap <= 0:
            print("[geometry] add_wire: Number of trap radii must be > 0.")
            return False

        self.wires.append(Wire(x=float(x), y=float(y), d=float(diameter), v=float(voltage),
                               u=float(length), label=label, tension=float(tension),
                               density=float(density), ntrap=int(ntrap)))
        self._changed()
        return True

    def add_tube(self, radius: float, voltage: float, n_edges: int = 0, label: str = "") -> bool:
        """
        Add a tube centred on the origin. n_edges = 0 gives a round tube,
        3 or more a regular polygon with a corner on the positive x axis.
        """
        if radius <= 0.0:
            print("[geometry] add_tube: Unphysical tube dimension.")
            return False
        if n_edges < 3 and n_edges != 0:
            print(f"[geometry] add_tube: Unphysical number of tube edges ({n_edges}).")
            return False
        if self.tube is not None:
            print("[geometry] add_tube: Warning: Existing tube settings will be overwritten.")
        self.tube = Tube(radius=float(radius), v=float(voltage), n_edges=int(n_edges), label=label)
        self._changed()
        return True

    def _add_plane(self, slots, coord, voltage, label, axis) -> bool:
        low, high = slots
        if self.planes[low] is not None and self.planes[high] is not None:
            print(f"[geometry] add_plane_{axis}: There are already two {axis} planes defined.")
            return False
        slot = high if self.planes[low] is not None else low
        self.planes[slot] = Plane(coord=float(coord), v=float(voltage), label=label)
        self._changed()
        return True

    def add_plane_x(self, x: float, voltage: float, label: str = "") -> bool:
        return self._add_plane((X_LOW, X_HIGH), x, voltage, label, "x")

    def add_plane_y(self, y: float, voltage: float, label: str = "") -> bool:
        return self._add_plane((Y_LOW, Y_HIGH), y, voltage, label, "y")

    def _nearest_plane(self, slots, coord) -> int:
        low, high = slots
        if self.planes[low] is None:
            return high
        if self.planes[high] is not None:
            if abs(self.planes[high].coord - coord) < abs(self.planes[low].coord - coord):
                return high
        return low

    # ------------------------------------------------------------------
    # Strips and pixels
    # ------------------------------------------------------------------

    def _add_strip(self, axis, allowed, direction, coord, smin, smax, label, gap) -> bool:
        slots = (X_LOW, X_HIGH) if axis == "x" else (Y_LOW, Y_HIGH)
        name = f"add_strip_on_plane_{axis}"
        if self.planes[slots[0]] is None and self.planes[slots[1]] is None:
            print(f"[geometry] {name}: There are no planes at constant {axis} defined.")
            return False
        direction = str(direction).lower()
        if direction not in allowed:
            print(f"[geometry] {name}: Invalid direction ({direction}). "
                  f"Only strips in {allowed[0]} or {allowed[1]} direction are possible.")
            return False
        if abs(smax - smin) < SMALL:
            print(f"[geometry] {name}: Strip width must be greater than zero.")
            return False

        strip = Strip(smin=float(min(smin, smax)), smax=float(max(smin, smax)),
                      gap=float(gap) if gap > SMALL else -1.0, label=label)
        plane = self.planes[self._nearest_plane(slots, coord)]
        if direction == "z":
            plane.strips2.append(strip)
        else:
            plane.strips1.append(strip)
        self._changed(charges=False)
        return True

    def add_strip_on_plane_x(self, direction: str, x: float, smin: float, smax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        """
        Add a strip to the x plane nearest to x.

        Args:
            direction: strip axis, "y" (bounded in z) or "z" (bounded in y)
            x: coordinate used to pick the plane
            smin, smax: strip edges across its axis [cm]
            label: readout group tag
            gap: anode-cathode distance; <= 0 picks a default at preparation
        """
        return self._add_strip("x", ("y", "z"), direction, x, smin, smax, label, gap)

    def add_strip_on_plane_y(self, direction: str, y: float, smin: float, smax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        #Same as add_strip_on_plane_x for planes at constant y, direction "x" or "z"
        return self._add_strip("y", ("x", "z"), direction, y, smin, smax, label, gap)

    def _add_pixel(self, axis, coord, smin, smax, zmin, zmax, label, gap) -> bool:
        slots = (X_LOW, X_HIGH) if axis == "x" else (Y_LOW, Y_HIGH)
        name = f"add_pixel_on_plane_{axis}"
        if self.planes[slots[0]] is None and self.planes[slots[1]] is None:
            print(f"[geometry] {name}: There are no planes at constant {axis} defined.")
            return False
        if abs(smax - smin) < SMALL or abs(zmax - zmin) < SMALL:
            print(f"[geometry] {name}: Pixel width must be greater than zero.")
            return False
        pixel = Pixel(smin=float(min(smin, smax)), smax=float(max(smin, smax)),
                      zmin=float(min(zmin, zmax)), zmax=float(max(zmin, zmax)),
                      gap=float(gap) if gap > SMALL else -1.0, label=label)
        self.planes[self._nearest_plane(slots, coord)].pixels.append(pixel)
        self._changed(charges=False)
        return True

    def add_pixel_on_plane_x(self, x: float, ymin: float, ymax: float, zmin: float, zmax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self._add_pixel("x", x, ymin, ymax, zmin, zmax, label, gap)

    def add_pixel_on_plane_y(self, y: float, xmin: float, xmax: float, zmin: float, zmax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self._add_pixel("y", y, xmin, xmax, zmin, zmax, label, gap)

    # ------------------------------------------------------------------
    # Periodicities
    # ------------------------------------------------------------------

    def set_periodicity_x(self, s: float) -> bool:
        if s < SMALL:
            print("[geometry] set_periodicity_x: Periodic length must be greater than zero.")
            return False
        self.sx = float(s)
        self.perx = True
        self._changed()
        return True

    def set_periodicity_y(self, s: float) -> bool:
        """
        Set the y period. In a tube this is the angular period in radians.
        """
        if s < SMALL:
            print("[geometry] set_periodicity_y: Periodic length must be greater than zero.")
            return False
        self.sy = float(s)
        self.pery = True
        self._changed()
        return True

    def get_periodicity_x(self):
        #Returns (is_periodic, length)
        return (True, self.sx) if self.perx else (False, 0.0)

    def get_periodicity_y(self):
        return (True, self.sy) if self.pery else (False, 0.0)

    # ------------------------------------------------------------------
    # 3D point charges
    # ------------------------------------------------------------------

    def add_charge(self, x: float, y: float, z: float, q: float) -> bool:
        #Point charge q in fC; only used for the 3D correction of the field
        self.charges.append(PointCharge(x=float(x), y=float(y), z=float(z),
                                        e=float(q) / FOUR_PI_EPSILON_0))
        return True

    def set_series_lengths(self, n_bessel: int, n_poly: int):
        #Series lengths of the 3D correction, restored by clear_charges()
        self.default_n_term_bessel = self.n_term_bessel = int(n_bessel)
        self.default_n_term_poly = self.n_term_poly = int(n_poly)

    def clear_charges(self):
        self.charges = []
        self.n_term_bessel = self.default_n_term_bessel
        self.n_term_poly = self.default_n_term_poly

    def print_charges(self):
        print("[geometry] Three dimensional charges:")
        if not self.charges:
            print("  No charges present.")
            return
        print("      x [cm]      y [cm]      z [cm]      charge [fC]")
        for charge in self.charges:
            print(f"  {charge.x:10.4f}  {charge.y:10.4f}  {charge.z:10.4f}  "
                  f"{charge.e * FOUR_PI_EPSILON_0:13.5g}")

    # ------------------------------------------------------------------
    # Readout groups
    # ------------------------------------------------------------------

    def add_readout(self, label: str) -> bool:
        if label in self.readouts:
            print(f"[geometry] add_readout: Readout group {label} already exists.")
            return False
        self.readouts.append(label)

        n_wires = sum(1 for w in self.wires if w.label == label)
        n_planes = n_strips = n_pixels = 0
        for plane in self.planes:
            if plane is None:
                continue
            if plane.label == label:
                n_planes += 1
            n_strips += sum(1 for s in plane.strips1 + plane.strips2 if s.label == label)
            n_pixels += sum(1 for p in plane.pixels if p.label == label)
        if self.tube is not None and self.tube.label == label:
            n_planes += 1

        if n_wires == 0 and n_planes == 0 and n_strips == 0 and n_pixels == 0:
            print(f"[geometry] add_readout: Warning: at present there are no wires, planes or strips "
                  f"associated to readout group {label}.")
        else:
            parts = []
            for count, noun in ((n_wires, "wire"), (n_planes, "plane"),
                                (n_strips, "strip"), (n_pixels, "pixel")):
                if count:
                    parts.append(f"{count} {noun}{'s' if count > 1 else ''}")
            print(f"[geometry] Readout group {label} comprises: {', '.join(parts)}")
        self._changed(charges=False)
        return True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_number_of_wires(self) -> int:
        return len(self.wires)

    def get_number_of_planes_x(self) -> int:
        return sum(1 for p in self.planes[X_LOW:X_HIGH + 1] if p is not None)

    def get_number_of_planes_y(self) -> int:
        return sum(1 for p in self.planes[Y_LOW:Y_HIGH + 1] if p is not None)

    def get_wire(self, i: int) -> Optional[Wire]:
        if i < 0 or i >= len(self.wires):
            print(f"[geometry] get_wire: Wire index {i} out of range.")
            return None
        return copy.copy(self.wires[i])

    def _get_plane(self, slots, i, axis) -> Optional[Plane]:
        present = [self.planes[s] for s in slots if self.planes[s] is not None]
        if i < 0 or i >= len(present):
            print(f"[geometry] get_plane_{axis}: Plane index {i} out of range.")
            return None
        return copy.deepcopy(present[i])

    def get_plane_x(self, i: int) -> Optional[Plane]:
        return self._get_plane((X_LOW, X_HIGH), i, "x")

    def get_plane_y(self, i: int) -> Optional[Plane]:
        return self._get_plane((Y_LOW, Y_HIGH), i, "y")

    def get_tube(self) -> Optional[Tube]:
        return copy.copy(self.tube)
