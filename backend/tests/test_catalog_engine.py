"""
test_catalog_engine.py — Unit tests for DefinitionCatalog lookups and validate().
"""

import pytest

from takeoff.models.takeoff_schema import AssemblyDef, MaterialDef, MaterialNode, SubAssemblyNode
from takeoff.services.catalog_engine import DefinitionCatalog


def codes(report):
    return sorted(i["code"] for i in report["issues"])


class TestLookups:

    def test_material_by_id_and_sku(self, materials, siding_def):
        catalog = DefinitionCatalog([siding_def], materials)
        assert catalog.material("m-stud").sku == "STD-24"
        assert catalog.material_by_sku("  std-24 ").id == "m-stud"
        assert catalog.material("m-gone") is None
        assert catalog.assembly("a-siding") is siding_def
        assert catalog.assembly(None) is None

    def test_first_definition_wins_on_duplicate_id(self):
        first = AssemblyDef(id="a-1", name="First")
        second = AssemblyDef(id="a-1", name="Second")
        assert DefinitionCatalog([first, second], []).assembly("a-1").name == "First"


class TestFindCycles:

    def test_no_cycles(self, siding_def, materials):
        assert DefinitionCatalog([siding_def], materials).find_cycles() == []

    def test_two_node_cycle_reported_once(self):
        a = AssemblyDef(id="a", name="A", children=[SubAssemblyNode(id="n1", child_id="b")])
        b = AssemblyDef(id="b", name="B", children=[SubAssemblyNode(id="n2", child_id="a")])
        assert DefinitionCatalog([a, b], []).find_cycles() == [("a", "b", "a")]

    def test_dangling_reference_is_not_a_cycle(self):
        a = AssemblyDef(id="a", name="A", children=[SubAssemblyNode(id="n1", child_id="gone")])
        assert DefinitionCatalog([a], []).find_cycles() == []


class TestValidate:

    def test_clean_library_passes(self, siding_def, materials):
        report = DefinitionCatalog([siding_def], materials).validate()
        assert report == {"issue_count": 0, "issues": [], "validation_passed": True}

    def test_reports_every_problem(self, materials):
        """
        One definition carrying each kind of broken reference, plus a
        duplicate SKU (case-insensitive) and a bad special-order default.
        """
        library = materials + [
            MaterialDef(id="m-dup", sku="sid-01", name="Siding again"),
            MaterialDef(id="m-so", sku="SO-1", name="Door", is_special_order=True,
                        variants=[], default_variant_id="v-x"),
            MaterialDef(
                id="m-so2", sku="SO-2", name="Door 2", is_special_order=True,
                variants=[{"id": "v-a", "name": "A"}], default_variant_id="v-x",
            ),
        ]
        broken = AssemblyDef(
            id="a-broken",
            name="Broken",
            children=[
                MaterialNode(id="n-1", child_id="m-gone", formula="1"),
                MaterialNode(
                    id="n-2", child_id="m-shg-a", is_dynamic=True,
                    variant_ids=["m-shg-a", "m-shg-z"], default_variant_id="m-shg-b",
                ),
                SubAssemblyNode(id="n-3", child_id="a-gone"),
                SubAssemblyNode(id="n-4", child_id="a-broken"),
            ],
        )
        report = DefinitionCatalog([broken], library).validate()
        assert report["validation_passed"] is False
        assert report["issue_count"] == len(report["issues"])
        assert codes(report) == sorted([
            "DUPLICATE_SKU",
            "INVALID_DEFAULT_VARIANT",
            "MISSING_MATERIAL",
            "DYNAMIC_DEFAULT_NOT_IN_VARIANTS",
            "MISSING_MATERIAL",
            "MISSING_ASSEMBLY",
            "CYCLIC_ASSEMBLY",
        ])

    @pytest.mark.parametrize("default, expected", [("v-small", True), ("v-huge", False)])
    def test_special_order_default_variant(self, materials, default, expected):
        window = next(m for m in materials if m.id == "m-window")
        library = [m for m in materials if m.id != "m-window"] + [
            window.model_copy(update={"default_variant_id": default})
        ]
        assert DefinitionCatalog([], library).validate()["validation_passed"] is expected
