"""
conftest.py — Shared pytest fixtures for the takeoff engine test suite.

All tests are pure unit tests over in-memory records; no files, network or
host application are involved.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``takeoff.*`` imports resolve correctly regardless of where pytest is
    invoked (installed or not).
"""

import sys
import os
import pytest

_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def make_points(*coords):
    """(x, y) tuples → Point list."""
    from takeoff.models.takeoff_schema import Point
    return [Point(x=x, y=y) for x, y in coords]


def square(size: float, origin=(0.0, 0.0)):
    """Axis-aligned square, counter-clockwise."""
    ox, oy = origin
    return make_points((ox, oy), (ox + size, oy), (ox + size, oy + size), (ox, oy + size))


@pytest.fixture
def points_factory():
    return make_points


@pytest.fixture
def square_factory():
    return square


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def evaluator():
    """FormulaEvaluator — stateless, safe to share."""
    from takeoff.services.formula_engine import FormulaEvaluator
    return FormulaEvaluator()


@pytest.fixture
def bom_engine():
    """BOMEngine with lenient cycle handling (the default)."""
    from takeoff.services.bom_engine import BOMEngine
    return BOMEngine(strict_cycles=False)


# ---------------------------------------------------------------------------
# Definition library
# ---------------------------------------------------------------------------

@pytest.fixture
def materials():
    """
    A small catalog:
      SID-01  siding panel (SQ)
      STD-24  2x4 stud (EA)
      NAIL-8  8d nails (BOX)
      SHG-A / SHG-B  two shingle colours, candidates of a dynamic node
      WIN-SO special-order window with variants, reporting as WIN-RPT
    """
    from takeoff.models.takeoff_schema import MaterialDef, MaterialVariant
    return [
        MaterialDef(id="m-siding", sku="SID-01", name="Siding Panel", uom="SQ", category="Siding"),
        MaterialDef(id="m-stud", sku="STD-24", name="2x4 Stud", uom="EA", category="Framing"),
        MaterialDef(id="m-nail", sku="NAIL-8", name="8d Nails", uom="BOX", category="Fasteners"),
        MaterialDef(id="m-shg-a", sku="SHG-A", name="Shingle Charcoal", uom="BDL", category="Roofing"),
        MaterialDef(id="m-shg-b", sku="SHG-B", name="Shingle Cedar", uom="BDL", category="Roofing"),
        MaterialDef(
            id="m-window",
            sku="WIN-SO",
            name="Custom Window",
            uom="EA",
            category="Windows",
            is_special_order=True,
            report_sku="WIN-RPT",
            variants=[
                MaterialVariant(id="v-small", name="36x48", properties={"width": 36, "height": 48}),
                MaterialVariant(id="v-large", name="48x60", properties={"width": 48, "height": 60}),
            ],
            default_variant_id="v-small",
        ),
    ]


@pytest.fixture
def siding_def():
    """AssemblyDef "Siding": Area (area) → SID-01 at Area/100, rounded up."""
    from takeoff.models.takeoff_schema import AssemblyDef, AssemblyVariable, MaterialNode
    return AssemblyDef(
        id="a-siding",
        name="Siding",
        category="Exterior",
        variables=[AssemblyVariable(id="v-area", name="Area", type="area")],
        children=[MaterialNode(id="n-siding", child_id="m-siding", formula="Area/100", round="up")],
    )
