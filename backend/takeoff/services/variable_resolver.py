"""
variable_resolver.py — Turns an assembly instance's variable bindings into
numbers.

A binding (VariableSource) is one of:
  manual            a number, a PitchRatio, or a string ("24", "5/12")
  measurement       one measurement's length / area / count
  measurementGroup  the same property summed over every measurement whose
                    ``group`` matches exactly

Scaling:
  effective scale = page override for the measurement's page (if positive)
                    else the global scale (if positive)
                    else DEFAULT_SCALE
  length → pixels / scale,  area → pixels² / scale²,  count → number of points

Shapes report area (pitch-corrected for roofs) and closed perimeter; lines
report open length. Anything unresolvable is 0.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from takeoff import config
from takeoff.models.takeoff_schema import (
    AssemblyVariable,
    ManualSource,
    Measurement,
    MeasurementGroupSource,
    MeasurementSource,
    PitchRatio,
)
from takeoff.services import geometry_engine as geo

logger = logging.getLogger("takeoff-resolver")

_RATIO_RE = re.compile(r"^\s*([-+]?\d*\.?\d+)\s*/\s*([-+]?\d*\.?\d+)\s*$")
_LEADING_NUMBER_RE = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


def parse_manual_value(value) -> float:
    """
    Manual input → number.

    PitchRatio / "rise/run" with a non-zero run gives rise ÷ run; any other
    string is read up to its leading number ("12 ft" → 12); garbage → 0.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, PitchRatio):
        return value.rise / value.run if value.run else 0.0
    if not isinstance(value, str):
        return 0.0

    m = _RATIO_RE.match(value)
    if m:
        rise, run = float(m.group(1)), float(m.group(2))
        if run != 0:
            return rise / run

    m = _LEADING_NUMBER_RE.match(value)
    if m:
        return float(m.group(1))
    return 0.0


class VariableResolver:
    """
    Resolves VariableSources against one snapshot of measurements and scales.

    Holds only read-only indexes built in __init__; resolve() has no side effects.
    """

    def __init__(
        self,
        measurements: Iterable[Measurement],
        global_scale: Optional[float] = None,
        page_scales: Optional[Dict[int, float]] = None,
    ):
        self.measurements: List[Measurement] = list(measurements)
        self.global_scale = global_scale
        self.page_scales = dict(page_scales or {})
        self._by_id = {m.id: m for m in self.measurements}

    # ── scale ────────────────────────────────────────────────────────────────

    def effective_scale(self, measurement: Measurement) -> float:
        override = self.page_scales.get(measurement.page_index)
        if override is not None and override > 0:
            return float(override)
        if self.global_scale is not None and self.global_scale > 0:
            return float(self.global_scale)
        logger.warning(
            f"No usable scale for measurement {measurement.id} "
            f"(page {measurement.page_index}); using {config.DEFAULT_SCALE}"
        )
        return config.DEFAULT_SCALE

    # ── measurement properties ───────────────────────────────────────────────

    def measurement_value(self, measurement: Measurement, prop: Optional[str]) -> float:
        """Real-world length / area / count of one measurement."""
        if prop == "count":
            return float(len(measurement.points))

        scale = self.effective_scale(measurement)

        if prop == "area":
            if measurement.type != "shape":
                return 0.0
            raw = geo.polygon_area(measurement.points) / (scale * scale)
            return raw * geo.pitch_factor(measurement.pitch)

        if prop == "length":
            if measurement.type == "shape":
                return geo.path_length(geo.closed_ring(measurement.points)) / scale
            return geo.path_length(measurement.points) / scale

        return 0.0

    def group_members(self, group_id: str) -> List[Measurement]:
        return [m for m in self.measurements if m.group == group_id]

    # ── sources ──────────────────────────────────────────────────────────────

    def resolve(self, source, variable: Optional[AssemblyVariable] = None) -> float:
        """
        Numeric value of a binding. ``variable`` supplies the default
        property when a measurement source does not name one.
        """
        if source is None:
            return 0.0

        if isinstance(source, ManualSource):
            return parse_manual_value(source.value)

        fallback = variable.natural_property if variable is not None else None

        if isinstance(source, MeasurementSource):
            m = self._by_id.get(source.measurement_id)
            if m is None:
                logger.debug(f"Measurement {source.measurement_id} not found — resolving as 0")
                return 0.0
            return self.measurement_value(m, source.property or fallback)

        if isinstance(source, MeasurementGroupSource):
            prop = source.property or fallback
            return sum(self.measurement_value(m, prop) for m in self.group_members(source.group_id))

        raise TypeError(f"Unsupported variable source: {type(source).__name__}")


def resolve_value(
    source,
    measurements: Iterable[Measurement],
    global_scale: Optional[float],
    page_scales: Optional[Dict[int, float]] = None,
) -> float:
    """One-off resolve; build a VariableResolver when resolving many sources."""
    return VariableResolver(measurements, global_scale, page_scales).resolve(source)
