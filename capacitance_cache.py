"""
Global cache of inverted capacitance matrices.

The inverse only depends on the cell geometry (wire positions and diameters,
planes, tube, periodicities and cell type), not on the potentials. A cell
that is re-prepared after a voltage change therefore reuses the inverse and
only repeats the back-substitution.
"""

import hashlib
import json
import numpy as np
from typing import Optional, Dict, Any, Tuple

# Global cache: {cache_key: (inverse, bordered)}
_CAPACITANCE_CACHE: Dict[str, Tuple[np.ndarray, bool]] = {}


def _create_cache_key(state) -> str:
    """
    Create a cache key from the matrix-affecting parameters of a prepared cell.

    Parameters that affect the matrix:
    - cell type and the periods (sx, sy) used by it
    - wire positions and diameters
    - plane coordinates (only presence and position)
    - tube radius, edge count and angular multiplicity

    Parameters that don't (and allow reuse):
    - wire, plane and tube potentials
    - labels, readout groups, strips, pixels
    - 3D point charges
    """
    planes = [None if p is None else float(p.coord) for p in state.planes]
    tube = None
    if state.tube is not None:
        tube = [float(state.tube.radius), int(state.ntube), int(state.mtube)]

    cache_dict = {
        "cell_type": state.cell_type.value if state.cell_type else None,
        "sx": float(state.sx),
        "sy": float(state.sy),
        "perx": bool(state.perx),
        "pery": bool(state.pery),
        "planes": planes,
        "tube": tube,
        "xw": [float(v) for v in state.xw],
        "yw": [float(v) for v in state.yw],
        "dw": [float(v) for v in state.dw],
    }

    # Create deterministic hash
    cache_str = json.dumps(cache_dict, sort_keys=True)
    return hashlib.sha256(cache_str.encode()).hexdigest()[:16]


def get_cached_inverse(state) -> Optional[Tuple[np.ndarray, bool]]:
    """
    Retrieve a cached inverse for the geometry of `state`.

    Returns:
        (inverse, bordered) if cached, None otherwise
    """
    cache_key = _create_cache_key(state)
    entry = _CAPACITANCE_CACHE.get(cache_key)
    if entry is not None:
        print("[CapacitanceCache] Reusing cached capacitance matrix")
        return entry[0].copy(), entry[1]
    return None


def cache_inverse(state, inverse: np.ndarray, bordered: bool) -> None:
    #Cache an inverted capacitance matrix for future reuse.
    cache_key = _create_cache_key(state)
    _CAPACITANCE_CACHE[cache_key] = (inverse.copy(), bool(bordered))
    print(f"[CapacitanceCache] Matrix cached ({len(_CAPACITANCE_CACHE)} total)")


def clear_cache() -> None:
    """
    Clear all cached matrices.
    """
    count = len(_CAPACITANCE_CACHE)
    _CAPACITANCE_CACHE.clear()
    print(f"[CapacitanceCache] Cleared {count} cached matri{'x' if count == 1 else 'ces'}")


def get_cache_stats() -> Dict[str, Any]:
    return {
        "cached_matrices": len(_CAPACITANCE_CACHE),
        "cache_keys": list(_CAPACITANCE_CACHE.keys()),
    }
