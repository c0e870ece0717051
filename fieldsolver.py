"""
Analytic field component of a wire-chamber cell.

AnalyticField wraps a CellGeometry registry. The wire charges and the
weighting-field data are derived state held by two caches; each is
invalidated by the registry when the geometry changes and rebuilt on the
next query that needs it.
"""

import threading
import time
from typing import List, Optional, Tuple

import capacitance_cache
from cell import CellState, CellType, Drop, check_cell, classify_cell, set_default_gaps
from charges import setup_charges
from fields import STATUS_NOT_PREPARED, evaluate_field, is_in_trap_radius, is_wire_crossed
from geometry import CellGeometry, Plane, Tube, Wire
from solver_config import get_solver_config
from weighting import SignalState, prepare_signals, weighting_field


def prepare_cell(geometry: CellGeometry, debug: bool = False) -> Tuple[Optional[CellState], List[Drop]]:
    #Check and classify a copy of the geometry; (None, drops) if the cell is unusable
    state, drops = check_cell(geometry, debug=debug)
    if state is None:
        print("[AnalyticField] Cell check failed.")
        return None, drops
    if not classify_cell(state):
        print("[AnalyticField] Type identification of the cell failed.")
        return None, drops
    if debug:
        print(f"[AnalyticField] Cell is of type {state.cell_type.value}.")
    return state, drops


class ChargeCache:
    """Solved wire charges of the current geometry"""

    def __init__(self, geometry: CellGeometry, cfg):
        self.geometry = geometry
        self.cfg = cfg
        self.state: Optional[CellState] = None
        self.drops: List[Drop] = []
        self.solve_count = 0
        self._dirty = True
        self._lock = threading.Lock()

    def invalidate(self):
        with self._lock:
            self._dirty = True

    def ensure_solved(self) -> Optional[CellState]:
        """
        Prepare the cell and solve the charges if the geometry changed since
        the last solve. Returns the prepared state, or None if preparation
        failed (a failed solve is not retried until the geometry changes).
        """
        with self._lock:
            if self._dirty:
                self.state, self.drops = self._solve()
                self._dirty = False
                self.solve_count += 1
            return self.state

    def _solve(self):
        debug = self.cfg["debug"]
        state, drops = prepare_cell(self.geometry, debug)
        if state is None:
            return None, drops
        if not setup_charges(state, debug=debug, check=self.cfg["check_charges"]):
            print("[AnalyticField] Calculation of the charges failed.")
            return None, drops
        print(f"[AnalyticField] Cell {state.cell_type.value} prepared: {state.n_wires} wires, "
              f"{len(drops)} dropped.")
        return state, drops


class SignalCache:
    """Weighting-field data of the current geometry and readout groups"""

    def __init__(self, geometry: CellGeometry, cfg):
        self.geometry = geometry
        self.cfg = cfg
        self.state: Optional[CellState] = None
        self.signals: Optional[SignalState] = None
        self.solve_count = 0
        self._dirty = True
        self._lock = threading.Lock()

    def invalidate(self):
        with self._lock:
            self._dirty = True

    def ensure_solved(self) -> Tuple[Optional[CellState], Optional[SignalState]]:
        with self._lock:
            if self._dirty:
                self.state, self.signals = self._solve()
                self._dirty = False
                self.solve_count += 1
            return self.state, self.signals

    def _solve(self):
        debug = self.cfg["debug"]
        state, _ = prepare_cell(self.geometry, debug)
        if state is None:
            return None, None
        if not set_default_gaps(state):
            print("[AnalyticField] Anode-cathode gaps could not be set.")
            return None, None
        signals = prepare_signals(state, self.geometry.readouts,
                                  n_fourier=self.cfg["n_fourier"],
                                  pixel_max_error=self.cfg["pixel_max_error"],
                                  debug=debug)
        if signals is None:
            print("[AnalyticField] Preparation of the weighting fields failed.")
            return None, None
        print(f"[AnalyticField] Weighting fields prepared for {len(signals.readouts)} readout "
              f"group{'s' if len(signals.readouts) != 1 else ''} ({len(signals.layers)} layers).")
        return state, signals


class AnalyticField:
    """
    Electric and weighting fields of a wire chamber cell, computed with
    closed-form potentials for the symmetry class of the cell.

    Usage:
        field = AnalyticField()
        field.add_wire(0.0, 0.0, 50e-4, 2000.0, "s")
        field.add_tube(1.0, 0.0)
        ex, ey, ez, v, status = field.electric_field(0.5, 0.0, 0.0, potential=True)
    """

    def __init__(self, geometry: Optional[CellGeometry] = None, config=None):
        """
        Args:
            geometry: registry to wrap; a new empty one if None
            config: overrides of solver_config.DEFAULT_CFG
        """
        self.cfg = get_solver_config(config)
        self.geometry = geometry if geometry is not None else CellGeometry()
        self.geometry.set_series_lengths(self.cfg["n_term_bessel"], self.cfg["n_term_poly"])
        self.charge_cache = ChargeCache(self.geometry, self.cfg)
        self.signal_cache = SignalCache(self.geometry, self.cfg)
        self.geometry.subscribe(self._geometry_changed)

        self._warned_not_prepared = False
        self._warned_labels = set()

        # Performance monitoring
        self.eval_count = 0
        self.total_time = 0.0

    def _geometry_changed(self, charges: bool):
        if charges:
            self.charge_cache.invalidate()
        self.signal_cache.invalidate()
        self._warned_not_prepared = False

    def _not_prepared(self):
        if not self._warned_not_prepared:
            print("[AnalyticField] Warning: the cell could not be prepared; "
                  f"field queries return status {STATUS_NOT_PREPARED}.")
            self._warned_not_prepared = True

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def add_wire(self, x: float, y: float, diameter: float, voltage: float, label: str = "",
                 length: float = 100.0, tension: float = 50.0, density: float = 19.3,
                 ntrap: int = 5) -> bool:
        return self.geometry.add_wire(x, y, diameter, voltage, label, length, tension,
                                      density, ntrap)

    def add_tube(self, radius: float, voltage: float, n_edges: int = 0, label: str = "") -> bool:
        return self.geometry.add_tube(radius, voltage, n_edges, label)

    def add_plane_x(self, x: float, voltage: float, label: str = "") -> bool:
        return self.geometry.add_plane_x(x, voltage, label)

    def add_plane_y(self, y: float, voltage: float, label: str = "") -> bool:
        return self.geometry.add_plane_y(y, voltage, label)

    def add_strip_on_plane_x(self, direction: str, x: float, smin: float, smax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self.geometry.add_strip_on_plane_x(direction, x, smin, smax, label, gap)

    def add_strip_on_plane_y(self, direction: str, y: float, smin: float, smax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self.geometry.add_strip_on_plane_y(direction, y, smin, smax, label, gap)

    def add_pixel_on_plane_x(self, x: float, ymin: float, ymax: float, zmin: float, zmax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self.geometry.add_pixel_on_plane_x(x, ymin, ymax, zmin, zmax, label, gap)

    def add_pixel_on_plane_y(self, y: float, xmin: float, xmax: float, zmin: float, zmax: float,
                             label: str = "", gap: float = -1.0) -> bool:
        return self.geometry.add_pixel_on_plane_y(y, xmin, xmax, zmin, zmax, label, gap)

    def set_periodicity_x(self, s: float) -> bool:
        return self.geometry.set_periodicity_x(s)

    def set_periodicity_y(self, s: float) -> bool:
        return self.geometry.set_periodicity_y(s)

    def get_periodicity_x(self) -> Tuple[bool, float]:
        return self.geometry.get_periodicity_x()

    def get_periodicity_y(self) -> Tuple[bool, float]:
        return self.geometry.get_periodicity_y()

    def add_charge(self, x: float, y: float, z: float, q: float) -> bool:
        return self.geometry.add_charge(x, y, z, q)

    def clear_charges(self):
        self.geometry.clear_charges()

    def print_charges(self):
        self.geometry.print_charges()

    def add_readout(self, label: str) -> bool:
        return self.geometry.add_readout(label)

    def get_number_of_wires(self) -> int:
        return self.geometry.get_number_of_wires()

    def get_number_of_planes_x(self) -> int:
        return self.geometry.get_number_of_planes_x()

    def get_number_of_planes_y(self) -> int:
        return self.geometry.get_number_of_planes_y()

    def get_wire(self, i: int) -> Optional[Wire]:
        return self.geometry.get_wire(i)

    def get_plane_x(self, i: int) -> Optional[Plane]:
        return self.geometry.get_plane_x(i)

    def get_plane_y(self, i: int) -> Optional[Plane]:
        return self.geometry.get_plane_y(i)

    def get_tube(self) -> Optional[Tube]:
        return self.geometry.get_tube()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_number_of_fourier_layers(self, n: int) -> bool:
        """Number of wire copies used for the weighting fields of periodic cells (0: natural type)."""
        if n < 0:
            print(f"[AnalyticField] Invalid number of Fourier layers ({n}).")
            return False
        self.cfg["n_fourier"] = int(n)
        self.signal_cache.invalidate()
        return True

    def set_pixel_max_error(self, max_error: float) -> bool:
        if max_error <= 0.0:
            print(f"[AnalyticField] Pixel series tolerance must be > 0 ({max_error}).")
            return False
        self.cfg["pixel_max_error"] = float(max_error)
        self.signal_cache.invalidate()
        return True

    def enable_debugging(self, on: bool = True):
        self.cfg["debug"] = bool(on)

    def enable_charge_check(self, on: bool = True):
        self.cfg["check_charges"] = bool(on)
        self.charge_cache.invalidate()

    # ------------------------------------------------------------------
    # Preparation and cell information
    # ------------------------------------------------------------------

    def prepare(self, signals: bool = False) -> bool:
        """
        Solve the charges now instead of on the first query.

        Args:
            signals: also prepare the weighting fields

        Returns:
            True if everything requested could be prepared.
        """
        ok = self.charge_cache.ensure_solved() is not None
        if signals:
            ok = self.signal_cache.ensure_solved()[1] is not None and ok
        return ok

    def get_cell_type(self) -> Optional[CellType]:
        state = self.charge_cache.ensure_solved()
        return state.cell_type if state is not None else None

    def get_dropped_wires(self) -> List[Drop]:
        #Wires removed by the cell check, with the reason
        self.charge_cache.ensure_solved()
        return list(self.charge_cache.drops)

    def get_voltage_range(self) -> Optional[Tuple[float, float]]:
        state = self.charge_cache.ensure_solved()
        if state is None:
            return None
        return state.vmin, state.vmax

    def get_bounding_box(self) -> Optional[Tuple[float, float, float, float, float, float]]:
        state = self.charge_cache.ensure_solved()
        if state is None:
            return None
        return state.xmin, state.ymin, state.zmin, state.xmax, state.ymax, state.zmax

    def get_wire_charges(self) -> Optional[List[float]]:
        #Solved charges of the wires kept by the cell check [V], in wire order
        state = self.charge_cache.ensure_solved()
        if state is None:
            return None
        return [wire.e for wire in state.wires]

    # ------------------------------------------------------------------
    # Field queries
    # ------------------------------------------------------------------

    def electric_field(self, x: float, y: float, z: float, potential: bool = False):
        """
        Electric field at (x, y, z).

        Returns:
            (ex, ey, ez, status), or (ex, ey, ez, v, status) if potential is
            True. status: 0 normal, i + 1 inside wire i, -4 outside the
            planes or the tube, -10 unknown cell type, -11 cell not prepared.
        """
        start_time = time.time()
        self.eval_count += 1
        state = self.charge_cache.ensure_solved()
        if state is None:
            self._not_prepared()
            result = (0.0, 0.0, 0.0, 0.0, STATUS_NOT_PREPARED)
        else:
            result = evaluate_field(state, x, y, z, potential, charges=self.geometry.charges)
        self.total_time += time.time() - start_time
        if potential:
            return result
        return result[0], result[1], result[2], result[4]

    def _weighting(self, x, y, z, label, opt):
        state, signals = self.signal_cache.ensure_solved()
        if state is None:
            self._not_prepared()
            return 0.0, 0.0, 0.0, 0.0
        if signals.readout_index(label) < 0 and label not in self._warned_labels:
            print(f"[AnalyticField] Warning: {label} is not a readout group; weighting field is 0.")
            self._warned_labels.add(label)
        return weighting_field(state, signals, x, y, z, label, opt)

    def weighting_field(self, x: float, y: float, z: float, label: str) -> Tuple[float, float, float]:
        ex, ey, ez, _ = self._weighting(x, y, z, label, False)
        return ex, ey, ez

    def weighting_potential(self, x: float, y: float, z: float, label: str) -> float:
        return self._weighting(x, y, z, label, True)[3]

    def is_wire_crossed(self, x0: float, y0: float, z0: float, x1: float, y1: float, z1: float):
        """
        Returns:
            (crossed, xc, yc, zc): entry point of the step into a wire
        """
        state = self.charge_cache.ensure_solved()
        if state is None:
            return False, x0, y0, z0
        return is_wire_crossed(state, x0, y0, z0, x1, y1, z1)

    def is_in_trap_radius(self, q: float, x: float, y: float, z: float):
        """
        Returns:
            (trapped, xw, yw, rw): position and radius of the trapping wire
        """
        state = self.charge_cache.ensure_solved()
        if state is None:
            return False, x, y, 0.0
        return is_in_trap_radius(state, q, x, y, z, debug=self.cfg["debug"])

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def clear_cache(self):
        #Drop all derived state, including the shared capacitance matrices
        self.charge_cache.invalidate()
        self.signal_cache.invalidate()
        capacitance_cache.clear_cache()

    def get_stats(self):
        return {
            "eval_count": self.eval_count,
            "total_time": self.total_time,
            "avg_time": self.total_time / max(self.eval_count, 1),
            "charge_solves": self.charge_cache.solve_count,
            "signal_solves": self.signal_cache.solve_count,
            "cached_matrices": capacitance_cache.get_cache_stats()["cached_matrices"],
        }
