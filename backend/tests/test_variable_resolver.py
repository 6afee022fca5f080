"""
test_variable_resolver.py — Unit tests for VariableResolver.

Tests cover:
  - manual values: numbers, PitchRatio, "rise/run" strings, junk
  - single-measurement length / area / count with global and per-page scale
  - roof pitch slope correction
  - measurement-group aggregation
  - zero / missing scale guarding
"""

import math
import pytest

from takeoff.models.takeoff_schema import (
    AssemblyVariable,
    ManualSource,
    Measurement,
    MeasurementGroupSource,
    MeasurementSource,
    PitchRatio,
)
from takeoff.services.variable_resolver import VariableResolver, parse_manual_value, resolve_value


@pytest.fixture
def measurements(square_factory, points_factory):
    """
    line-1    open line, 30 px long, page 0
    line-p2   open line, 30 px long, page 2
    wall-a    100×100 px shape, group Walls, page 0
    wall-b    50×50 px shape, group Walls, page 1, pitch 6
    roof      100×100 px shape, pitch 12, page 0
    """
    return [
        Measurement(id="line-1", name="Fence", type="line", points=points_factory((0, 0), (30, 0)), page_index=0),
        Measurement(id="line-p2", name="Fence p2", type="line", points=points_factory((0, 0), (30, 0)), page_index=2),
        Measurement(id="wall-a", name="Wall A", type="shape", points=square_factory(100), group="Walls"),
        Measurement(id="wall-b", name="Wall B", type="shape", points=square_factory(50), group="Walls",
                    page_index=1, pitch=6),
        Measurement(id="roof", name="Roof", type="shape", points=square_factory(100), pitch=12),
    ]


# ===========================================================================
# Class 1: Manual values
# ===========================================================================

class TestManualValues:

    @pytest.mark.parametrize("value, expected", [
        (24, 24.0),
        (2.5, 2.5),
        ("24", 24.0),
        ("5/12", 5 / 12),
        (" 6 / 12 ", 0.5),
        ("12 ft", 12.0),
        ("5/0", 5.0),
        ("abc", 0.0),
        ("", 0.0),
    ])
    def test_parse_manual_value(self, value, expected):
        assert parse_manual_value(value) == pytest.approx(expected)

    def test_pitch_ratio_variant(self):
        assert parse_manual_value(PitchRatio(rise=4, run=12)) == pytest.approx(1 / 3)

    def test_pitch_ratio_zero_run_is_zero(self):
        assert parse_manual_value(PitchRatio(rise=4, run=0)) == 0.0

    def test_manual_source_through_resolver(self, measurements):
        resolver = VariableResolver(measurements, 10)
        assert resolver.resolve(ManualSource(value="7/12")) == pytest.approx(7 / 12)

    def test_unbound_source_is_zero(self, measurements):
        assert VariableResolver(measurements, 10).resolve(None) == 0.0


# ===========================================================================
# Class 2: Single measurement
# ===========================================================================

class TestMeasurementSource:

    def test_line_length_divided_by_scale(self, measurements):
        src = MeasurementSource(measurement_id="line-1", property="length")
        assert resolve_value(src, measurements, 10) == pytest.approx(3.0)

    def test_page_override_supersedes_global(self, measurements):
        """line-p2 sits on page 2 whose override is 5 px/unit → 30/5 = 6."""
        src = MeasurementSource(measurement_id="line-p2", property="length")
        assert resolve_value(src, measurements, 10, {2: 5}) == pytest.approx(6.0)
        # page 0 line is unaffected by the page-2 override
        src0 = MeasurementSource(measurement_id="line-1", property="length")
        assert resolve_value(src0, measurements, 10, {2: 5}) == pytest.approx(3.0)

    def test_shape_area_divided_by_scale_squared(self, measurements):
        src = MeasurementSource(measurement_id="wall-a", property="area")
        assert resolve_value(src, measurements, 10) == pytest.approx(100.0)

    def test_shape_length_is_closed_perimeter(self, measurements):
        src = MeasurementSource(measurement_id="wall-a", property="length")
        assert resolve_value(src, measurements, 10) == pytest.approx(40.0)

    def test_count_is_number_of_points(self, measurements):
        assert resolve_value(MeasurementSource(measurement_id="wall-a", property="count"), measurements, 10) == 4.0
        assert resolve_value(MeasurementSource(measurement_id="line-1", property="count"), measurements, 10) == 2.0

    def test_line_area_is_zero(self, measurements):
        src = MeasurementSource(measurement_id="line-1", property="area")
        assert resolve_value(src, measurements, 10) == 0.0

    def test_missing_measurement_is_zero(self, measurements):
        src = MeasurementSource(measurement_id="deleted", property="length")
        assert resolve_value(src, measurements, 10) == 0.0

    def test_pitch_correction(self, measurements):
        """Roof: raw 100 units² at 12/12 pitch → 100 × √2."""
        src = MeasurementSource(measurement_id="roof", property="area")
        assert resolve_value(src, measurements, 10) == pytest.approx(100 * math.sqrt(2))

    def test_property_defaults_from_variable_type(self, measurements):
        resolver = VariableResolver(measurements, 10)
        src = MeasurementSource(measurement_id="wall-a")
        assert resolver.resolve(src, AssemblyVariable(id="v", name="Area", type="area")) == pytest.approx(100.0)
        assert resolver.resolve(src, AssemblyVariable(id="v", name="Perim", type="linear")) == pytest.approx(40.0)
        assert resolver.resolve(src) == 0.0


# ===========================================================================
# Class 3: Groups
# ===========================================================================

class TestMeasurementGroupSource:

    def test_group_area_sums_members_with_own_scale_and_pitch(self, measurements):
        """
        wall-a: 10 000 px² / 10² = 100
        wall-b: 2 500 px² / 5² (page 1 override) = 100, × √(1 + 0.25) for 6/12 pitch
        """
        resolver = VariableResolver(measurements, 10, {1: 5})
        src = MeasurementGroupSource(group_id="Walls", property="area")
        a = resolver.resolve(MeasurementSource(measurement_id="wall-a", property="area"))
        b = resolver.resolve(MeasurementSource(measurement_id="wall-b", property="area"))
        assert b == pytest.approx(100 * math.sqrt(1.25))
        assert resolver.resolve(src) == pytest.approx(a + b)

    def test_group_length_and_count(self, measurements):
        resolver = VariableResolver(measurements, 10)
        assert resolver.resolve(MeasurementGroupSource(group_id="Walls", property="length")) == pytest.approx(40 + 20)
        assert resolver.resolve(MeasurementGroupSource(group_id="Walls", property="count")) == 8.0

    def test_group_match_is_exact(self, measurements):
        resolver = VariableResolver(measurements, 10)
        assert resolver.resolve(MeasurementGroupSource(group_id="walls", property="area")) == 0.0


# ===========================================================================
# Class 4: Scale guarding
# ===========================================================================

class TestScaleGuard:

    @pytest.mark.parametrize("scale", [0, -4, None])
    def test_unusable_global_scale_falls_back(self, measurements, scale):
        src = MeasurementSource(measurement_id="line-1", property="length")
        value = resolve_value(src, measurements, scale)
        assert math.isfinite(value)
        assert value == pytest.approx(30.0)

    def test_zero_page_override_uses_global(self, measurements):
        src = MeasurementSource(measurement_id="line-p2", property="length")
        assert resolve_value(src, measurements, 10, {2: 0}) == pytest.approx(3.0)
