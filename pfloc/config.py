# pfloc/config.py
from __future__ import annotations
import json, math, os
from typing import Optional

# Window and view
WINDOW_WIDTH  = 900
WINDOW_HEIGHT = 700
PX_PER_UNIT   = 40.0

# Colors (RGB)
BG_COLOR       = (30, 30, 30)
MAP_COLOR      = (220, 220, 220)
PARTICLE_COLOR = (255, 165, 0)
ESTIMATE_COLOR = (252, 3, 248)
TRUTH_COLOR    = (50, 255, 50)
SCAN_COLOR     = (255, 60, 60)
PATH_COLOR     = (100, 180, 255)
TEXT_COLOR     = (255, 255, 255)
GREY           = (130, 130, 130)

CONFIG_FILENAME = "config.json"

DEFAULT_CONFIG = {
    "particle_filter": {
        "num_particles":     {"value": 50},
        "var_obs":           {"value": 1.0},
        "d_short":           {"value": 0.5},
        "d_long":            {"value": 0.5},
        "k1":                {"value": 0.50},
        "k2":                {"value": 0.25},
        "k3":                {"value": 0.50},
        "k4":                {"value": 0.75},
        "init_sigma_xy":     {"value": 0.25},
        "init_sigma_angle":  {"value": math.pi / 6.0},
        "laser_offset":      {"value": 0.2},
        "ray_downsample":    {"value": 10},
        "min_update_dist":   {"value": 0.1},
        "max_update_dist":   {"value": 1.0},
        "odom_jump_dist":    {"value": 1.0},
        "resample_interval": {"value": 6},
        "range_margin":      {"value": 0.05},
        "seed":              {"value": None},
    },
    "lidar": {
        "num_ranges": {"value": 1081},
        "range_min":  {"value": 0.02},
        "range_max":  {"value": 10.0},
        "angle_min":  {"value": -2.356194},
        "angle_max":  {"value": 2.356194},
    },
    "simulation": {
        "speed":          {"value": 1.0},
        "dt":             {"value": 0.05},
        "range_sigma":    {"value": 0.03},
        "odom_sigma_xy":  {"value": 0.005},
        "odom_sigma_ang": {"value": 0.002},
        "start_x":        {"value": 1.0},
        "start_y":        {"value": 1.0},
        "start_angle":    {"value": 0.0},
    },
    "planner": {
        "resolution":     {"value": 0.25},
        "cushion":        {"value": 0.2},
        "max_expansions": {"value": 20000},
    },
    "latency": {
        "actuation_delay":   {"value": 0.1},
        "observation_delay": {"value": 0.05},
        "delta_t":           {"value": 0.05},
    },
    "view": {
        "px_per_unit": {"value": PX_PER_UNIT},
        "origin_x":    {"value": 40.0},
        "origin_y":    {"value": WINDOW_HEIGHT - 40.0},
        "show_scan":   {"value": 1},
    },
    "map": {"value": "loop"},
    "maps_dir": {"value": "maps"},
}

def _flatten(section: dict) -> dict:
    """Extract 'value' from nested dict structure."""
    flat = {}
    for k, v in section.items():
        flat[k] = v.get("value", v) if isinstance(v, dict) and "value" in v else v
    return flat

def _section(cfg: Optional[dict], name: str) -> dict:
    """Flattened section with defaults filled in for missing keys."""
    merged = _flatten(DEFAULT_CONFIG.get(name, {}))
    if isinstance(cfg, dict) and isinstance(cfg.get(name), dict):
        merged.update(_flatten(cfg[name]))
    return merged

def _scalar(cfg: Optional[dict], name: str):
    """Top-level {"value": ...} entry, default when absent."""
    raw = cfg.get(name) if isinstance(cfg, dict) else None
    if raw is None:
        raw = DEFAULT_CONFIG[name]
    return raw.get("value") if isinstance(raw, dict) else raw

def _root_dir() -> str:
    return os.path.normpath(os.path.join(os.path.dirname(__file__), os.pardir))

def _load_json(path: str) -> Optional[dict]:
    """Load JSON file, return None on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None

def _save_json(path: str, data: dict) -> None:
    """Save JSON file, creating the parent directory."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)

def config_path(path: Optional[str] = None) -> str:
    return path or os.path.join(_root_dir(), CONFIG_FILENAME)

def load_config(path: Optional[str] = None) -> dict:
    """Load config from the project root, create default if missing."""
    target = config_path(path)
    data = _load_json(target)
    if data is None:
        data = json.loads(json.dumps(DEFAULT_CONFIG))
        if not os.path.exists(target):
            try:
                _save_json(target, data)
            except OSError as e:
                print(f"Warning: could not write default config to {target}: {e}")
    return data

def save_config(cfg: dict, path: Optional[str] = None) -> bool:
    """Save config dictionary, wrapping flat values as {"value": v}."""
    def wrap(v):
        return v if isinstance(v, dict) and "value" in v else {"value": v}
    raw = {}
    for name, section in cfg.items():
        if isinstance(section, dict) and "value" not in section:
            raw[name] = {k: wrap(v) for k, v in section.items()}
        else:
            raw[name] = wrap(section)
    target = config_path(path)
    try:
        _save_json(target, raw)
    except (OSError, TypeError) as e:
        print(f"Failed to save config: {e}")
        return False
    print(f"Config saved to {target}")
    return True

def filter_flat(cfg: Optional[dict]) -> dict:
    """Flatten particle_filter section."""
    return _section(cfg, "particle_filter")

def lidar_flat(cfg: Optional[dict]) -> dict:
    """Flatten lidar section."""
    return _section(cfg, "lidar")

def sim_flat(cfg: Optional[dict]) -> dict:
    """Flatten simulation section."""
    return _section(cfg, "simulation")

def planner_flat(cfg: Optional[dict]) -> dict:
    """Flatten planner section."""
    return _section(cfg, "planner")

def latency_flat(cfg: Optional[dict]) -> dict:
    """Flatten latency section."""
    return _section(cfg, "latency")

def view_flat(cfg: Optional[dict]) -> dict:
    """Flatten view section."""
    return _section(cfg, "view")

def maps_dir(cfg: Optional[dict]) -> str:
    """Resolve the maps directory, relative paths against the project root."""
    d = os.path.expanduser(str(_scalar(cfg, "maps_dir") or "maps"))
    if not os.path.isabs(d):
        d = os.path.join(_root_dir(), d)
    return d

def map_name(cfg: Optional[dict]) -> str:
    return str(_scalar(cfg, "map") or "loop")
