"""
Engine configuration — single source of truth for numeric defaults and
environment-driven switches.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os


# ── Scale ─────────────────────────────────────────────────────────────────────
# Used when neither a page override nor the global scale is a positive number.
# 1.0 means "report raw page pixels".
DEFAULT_SCALE: float = 1.0

# ── Roof pitch ────────────────────────────────────────────────────────────────
# Pitch is expressed as rise per 12 inches of run.
PITCH_RUN_INCHES: float = 12.0

# ── Geometry ──────────────────────────────────────────────────────────────────
# Signed areas below this are treated as degenerate when computing centroids.
AREA_EPSILON: float = 1e-9

# ── BOM ───────────────────────────────────────────────────────────────────────
DEFAULT_ITEM_SET_NAME: str = "Unknown Set"

# Variable type → measurement property used when a source omits one
NATURAL_PROPERTY: dict[str, str] = {
    "linear": "length",
    "area":   "area",
    "count":  "count",
}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── Environment ───────────────────────────────────────────────────────────────
# Raise CyclicAssemblyError instead of pruning the cyclic branch.
STRICT_CYCLES: bool = _env_flag("TAKEOFF_STRICT_CYCLES", False)

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")
