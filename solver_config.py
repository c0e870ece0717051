import os, json, pathlib
from typing import Any, Dict, List, Optional, Tuple


DEFAULT_CFG = {
    "n_term_bessel": 10,        # terms of the K0/K1 series for finite-gap point charges
    "n_term_poly": 100,         # terms of the mirror-charge series for finite-gap point charges
    "n_fourier": 1,             # Fourier layers of the signal matrices (power of two)
    "pixel_max_error": 1e-5,    # truncation tolerance of the pixel weighting series
    "debug": False,             # dump matrices and intermediate results
    "check_charges": False      # compare solved charges with the back-substituted ones
}

CONFIG_ENV = "ANALYTIC_FIELD_CONFIG"
CONFIG_NAME = "analytic_field.json"


def _load_solver_config() -> Tuple[Dict[str, Any], List[str]]:
    """
    Load solver overrides from JSON.

    Resolution order:
    1) ANALYTIC_FIELD_CONFIG env var (path to json)
    2) ./analytic_field.json
    """
    cfg = {}
    sources = []
    candidates = []
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        candidates.append(pathlib.Path(env_path).expanduser())
    candidates.append(pathlib.Path.cwd() / CONFIG_NAME)

    for path in candidates:
        if not path.exists():
            continue
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            print(f"[config] Warning: Failed to read solver config {path}: {exc}")
            continue
        if isinstance(data, dict):
            cfg.update(data)
            sources.append(str(path))
        else:
            print(f"[config] Warning: {path} did not contain a JSON object; ignoring.")

    return cfg, sources


def get_solver_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge DEFAULT_CFG, JSON overrides and explicit overrides (highest priority).

    Unknown keys are reported and dropped, values are cast to the type of
    the default.
    """
    cfg = dict(DEFAULT_CFG)
    loaded, sources = _load_solver_config()
    if sources:
        print(f"[config] Loaded solver overrides from: {', '.join(sources)}")
    merged = dict(loaded)
    if overrides:
        merged.update(overrides)

    for key, value in merged.items():
        if key not in DEFAULT_CFG:
            print(f"[config] Warning: unknown setting '{key}' ignored.")
            continue
        default = DEFAULT_CFG[key]
        try:
            if isinstance(default, bool):
                cfg[key] = bool(value)
            elif isinstance(default, int):
                cfg[key] = int(value)
            else:
                cfg[key] = float(value)
        except (TypeError, ValueError):
            print(f"[config] Warning: invalid value {value!r} for '{key}'; keeping {default!r}.")
    return cfg
