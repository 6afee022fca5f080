"""
BOM Explosion Engine — expands assembly instances into flat material lines.

For each assembly instance in each item set:
  1. every declared variable is resolved (manual value / measurement /
     measurement group) into a scope keyed by variable *name*
  2. the definition's nodes are walked in declaration order:
       material node     formula → rounding → BomLine; the quantity is then
                         added to the scope under the line's name, SKU and
                         alias so later siblings can reference it
       sub-assembly node recursion with a fresh scope built only from the
                         node's variable_mapping
  3. lines are tagged with the owning item set's name

Nothing here raises for bad data: missing references and broken formulas
produce no line (or a 0 quantity) and, when a diagnostics list is passed,
a BOMDiagnostic explaining why. The one exception is strict cycle mode.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from takeoff import config
from takeoff.exceptions import CyclicAssemblyError
from takeoff.models.takeoff_schema import (
    AssemblyDef,
    ItemSet,
    MaterialDef,
    MaterialNode,
    Measurement,
    ProjectAssembly,
    ProjectBundle,
    SubAssemblyNode,
)
from takeoff.services.catalog_engine import DefinitionCatalog
from takeoff.services.formula_engine import FormulaEvaluator, apply_rounding
from takeoff.services.variable_resolver import VariableResolver

logger = logging.getLogger("takeoff-bom")


@dataclass
class BomLine:
    sku: str
    name: str
    quantity: float
    uom: str
    source_item_set: str
    # Trace only; two lines with the same five fields above compare equal
    material_id: str = field(default="", compare=False)
    path: Tuple[str, ...] = field(default=(), compare=False)

    def to_dict(self) -> Dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "uom": self.uom,
            "sourceItemSet": self.source_item_set,
        }


@dataclass
class BOMDiagnostic:
    code: str               # MISSING_MATERIAL | MISSING_ASSEMBLY | MISSING_DEFINITION | FORMULA_ERROR | ZERO_QUANTITY | CYCLE | INSTANCE_FAILED
    item_set: str
    assembly_id: str
    node_id: str = ""
    detail: str = ""


_BOM_COLUMNS = ["sku", "name", "quantity", "uom", "source_item_set"]


class NodeExpander:
    """
    Recursive walk over one AssemblyDef's node list.

    Holds only the catalog and evaluator; every expand() call works on its
    own copy of the scope.
    """

    def __init__(
        self,
        catalog: DefinitionCatalog,
        evaluator: Optional[FormulaEvaluator] = None,
        strict_cycles: Optional[bool] = None,
    ):
        self.catalog = catalog
        self.evaluator = evaluator or FormulaEvaluator()
        self.strict_cycles = config.STRICT_CYCLES if strict_cycles is None else strict_cycles

    def expand(
        self,
        definition: AssemblyDef,
        scope: Mapping[str, float],
        item_set_name: str,
        selections: Optional[Mapping[str, str]] = None,
        diagnostics: Optional[List[BOMDiagnostic]] = None,
        _chain: Tuple[AssemblyDef, ...] = (),
    ) -> List[BomLine]:
        chain = _chain + (definition,)
        context: Dict[str, float] = dict(scope)
        selections = selections or {}
        lines: List[BomLine] = []

        for node in definition.children:
            if isinstance(node, MaterialNode):
                line = self._expand_material(node, context, item_set_name, selections, diagnostics, chain)
                if line is not None:
                    lines.append(line)
            elif isinstance(node, SubAssemblyNode):
                lines.extend(self._expand_sub_assembly(node, context, item_set_name, diagnostics, chain))
            else:
                raise TypeError(f"Unknown assembly node type: {type(node).__name__}")

        return lines

    @staticmethod
    def target_material_id(node: MaterialNode, selections: Mapping[str, str]) -> str:
        """Per-instance selection → node default variant → static child id."""
        if node.is_dynamic:
            return selections.get(node.id) or node.default_variant_id or node.child_id
        return node.child_id

    def _quantity(self, node, context, item_set_name, diagnostics, chain) -> float:
        raw, error = self.evaluator.try_evaluate(node.formula, context)
        if error is not None:
            _note(diagnostics, "FORMULA_ERROR", item_set_name, chain[-1].id, node.id,
                  f"{node.formula!r}: {error}")
        return apply_rounding(raw, node.round)

    def _expand_material(self, node, context, item_set_name, selections, diagnostics, chain) -> Optional[BomLine]:
        quantity = self._quantity(node, context, item_set_name, diagnostics, chain)
        if quantity <= 0:
            _note(diagnostics, "ZERO_QUANTITY", item_set_name, chain[-1].id, node.id,
                  f"{node.formula!r} evaluated to {quantity}")
            return None

        material_id = self.target_material_id(node, selections)
        material = self.catalog.material(material_id)
        if material is None:
            logger.debug(f"Material {material_id} not found for node {node.id} — skipped")
            _note(diagnostics, "MISSING_MATERIAL", item_set_name, chain[-1].id, node.id,
                  f"Material {material_id} not found")
            return None

        name = node.alias or material.name
        for key in dict.fromkeys((name, material.sku, node.alias)):
            if key:
                context[key] = context.get(key, 0.0) + quantity

        return BomLine(
            sku=material.sku,
            name=name,
            quantity=quantity,
            uom=material.uom,
            source_item_set=item_set_name,
            material_id=material.id,
            path=tuple(d.name for d in chain),
        )

    def _expand_sub_assembly(self, node, context, item_set_name, diagnostics, chain) -> List[BomLine]:
        # A formula on a sub-assembly reference is an inclusion gate only
        if node.formula.strip():
            if self._quantity(node, context, item_set_name, diagnostics, chain) <= 0:
                _note(diagnostics, "ZERO_QUANTITY", item_set_name, chain[-1].id, node.id,
                      f"Sub-assembly gate {node.formula!r} is not positive")
                return []

        child = self.catalog.assembly(node.child_id)
        if child is None:
            logger.debug(f"Sub-assembly {node.child_id} not found for node {node.id} — skipped")
            _note(diagnostics, "MISSING_ASSEMBLY", item_set_name, chain[-1].id, node.id,
                  f"Assembly {node.child_id} not found")
            return []

        active_ids = [d.id for d in chain]
        if child.id in active_ids:
            loop = active_ids[active_ids.index(child.id):] + [child.id]
            if self.strict_cycles:
                raise CyclicAssemblyError(loop)
            logger.warning(f"Cyclic assembly reference pruned: {' -> '.join(loop)}")
            _note(diagnostics, "CYCLE", item_set_name, chain[-1].id, node.id, " -> ".join(loop))
            return []

        child_scope = {
            child_var: context[parent_symbol]
            for child_var, parent_symbol in node.variable_mapping.items()
            if parent_symbol in context
        }
        # Dynamic selections belong to the owning instance and are not forwarded
        return self.expand(child, child_scope, item_set_name, {}, diagnostics, chain)


def _note(diagnostics, code, item_set, assembly_id, node_id="", detail=""):
    if diagnostics is not None:
        diagnostics.append(BOMDiagnostic(code, item_set, assembly_id, node_id, detail))


class BOMEngine:

    def __init__(self, evaluator: Optional[FormulaEvaluator] = None, strict_cycles: Optional[bool] = None):
        self.evaluator = evaluator or FormulaEvaluator()
        self.strict_cycles = strict_cycles

    # ── single instance ──────────────────────────────────────────────────────

    def build_scope(
        self,
        definition: AssemblyDef,
        instance: ProjectAssembly,
        resolver: VariableResolver,
    ) -> Dict[str, float]:
        """Resolve every declared variable into {variable name: value}; unbound → 0."""
        scope: Dict[str, float] = {}
        for variable in definition.variables:
            source = instance.variable_values.get(variable.id)
            scope[variable.name] = resolver.resolve(source, variable)
        return scope

    def _instance_lines(
        self,
        instance: ProjectAssembly,
        catalog: DefinitionCatalog,
        resolver: VariableResolver,
        item_set_name: str,
        diagnostics: Optional[List[BOMDiagnostic]],
    ) -> List[BomLine]:
        definition = catalog.assembly(instance.assembly_def_id)
        if definition is None:
            _note(diagnostics, "MISSING_DEFINITION", item_set_name, instance.assembly_def_id,
                  detail=f"Instance {instance.id} references a missing assembly definition")
            return []

        scope = self.build_scope(definition, instance, resolver)
        expander = NodeExpander(catalog, self.evaluator, self.strict_cycles)
        return expander.expand(definition, scope, item_set_name, instance.selections or {}, diagnostics)

    def generate_bom(
        self,
        instance: ProjectAssembly,
        all_defs: Iterable[AssemblyDef],
        measurements: Iterable[Measurement],
        materials: Iterable[MaterialDef],
        scale: float,
        item_set_name: str = config.DEFAULT_ITEM_SET_NAME,
        page_scales: Optional[Dict[int, float]] = None,
        diagnostics: Optional[List[BOMDiagnostic]] = None,
    ) -> List[BomLine]:
        """BOM lines for one assembly instance."""
        catalog = DefinitionCatalog(all_defs, materials)
        resolver = VariableResolver(measurements, scale, page_scales)
        return self._instance_lines(instance, catalog, resolver, item_set_name, diagnostics)

    # ── whole project ────────────────────────────────────────────────────────

    def generate_global_bom(
        self,
        item_sets: Iterable[ItemSet],
        all_defs: Iterable[AssemblyDef],
        measurements: Iterable[Measurement],
        materials: Iterable[MaterialDef],
        scale: float,
        page_scales: Optional[Dict[int, float]] = None,
        diagnostics: Optional[List[BOMDiagnostic]] = None,
        include_manual_items: bool = True,
    ) -> List[BomLine]:
        """
        BOM lines for every instance of every item set, in item set order,
        then instance order, then node order (depth-first). Manual items
        follow their set's assemblies.
        """
        start = time.perf_counter()
        catalog = DefinitionCatalog(all_defs, materials)
        resolver = VariableResolver(measurements, scale, page_scales)

        full_bom: List[BomLine] = []
        for item_set in item_sets:
            for instance in item_set.assemblies:
                try:
                    full_bom.extend(self._instance_lines(instance, catalog, resolver, item_set.name, diagnostics))
                except CyclicAssemblyError:
                    raise
                except Exception as e:
                    logger.error(f"BOM explosion failed for instance {instance.id}: {e}")
                    _note(diagnostics, "INSTANCE_FAILED", item_set.name, instance.assembly_def_id,
                          detail=str(e))

            if include_manual_items:
                for item in item_set.manual_items:
                    if item.quantity > 0:
                        full_bom.append(BomLine(
                            sku=item.sku,
                            name=item.description or item.sku,
                            quantity=item.quantity,
                            uom=item.uom,
                            source_item_set=item_set.name,
                        ))

        logger.debug(
            "global BOM generated",
            extra={
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "line_count": len(full_bom),
            },
        )
        return full_bom

    def generate_project_bom(
        self,
        bundle: ProjectBundle,
        diagnostics: Optional[List[BOMDiagnostic]] = None,
        include_manual_items: bool = True,
    ) -> List[BomLine]:
        return self.generate_global_bom(
            bundle.item_sets,
            bundle.assembly_defs,
            bundle.measurements,
            bundle.materials,
            bundle.scale,
            page_scales=bundle.page_scales,
            diagnostics=diagnostics,
            include_manual_items=include_manual_items,
        )

    # ── roll-ups ─────────────────────────────────────────────────────────────

    def to_frame(self, lines: Sequence[BomLine]) -> pd.DataFrame:
        return pd.DataFrame(
            [[line.sku, line.name, line.quantity, line.uom, line.source_item_set] for line in lines],
            columns=_BOM_COLUMNS,
        )

    def group_by_item_set(self, lines: Sequence[BomLine]) -> Dict[str, List[BomLine]]:
        """Lines sectioned by item set name, preserving first-seen set order."""
        sections: Dict[str, List[BomLine]] = {}
        for line in lines:
            sections.setdefault(line.source_item_set, []).append(line)
        return sections

    def aggregate_by_sku(
        self,
        lines: Sequence[BomLine],
        materials: Optional[Iterable[MaterialDef]] = None,
    ) -> List[Dict]:
        """
        Roll duplicate SKUs into single lines with summed quantities.

        With ``materials`` given, special-order materials report under their
        report_sku. Lines with the same SKU but different units stay apart.
        """
        df = self.to_frame(lines)
        if df.empty:
            return []

        catalog = DefinitionCatalog([], materials or [])

        def reporting_sku(sku: str) -> str:
            material = catalog.material_by_sku(sku)
            return material.reporting_sku if material is not None else sku

        df["report_sku"] = df["sku"].map(reporting_sku)
        rolled = (
            df.groupby(["report_sku", "uom"], sort=False, as_index=False)
            .agg(
                name=("name", "first"),
                quantity=("quantity", "sum"),
                item_sets=("source_item_set", lambda s: ", ".join(dict.fromkeys(s))),
            )
            .rename(columns={"report_sku": "sku"})
        )
        return [
            {
                "sku": row["sku"],
                "name": row["name"],
                "quantity": round(float(row["quantity"]), 4),
                "uom": row["uom"],
                "item_sets": row["item_sets"],
            }
            for row in rolled.to_dict("records")
        ]


_default_engine = BOMEngine()


def generate_bom(
    instance: ProjectAssembly,
    all_defs: Iterable[AssemblyDef],
    measurements: Iterable[Measurement],
    materials: Iterable[MaterialDef],
    scale: float,
    item_set_name: str = config.DEFAULT_ITEM_SET_NAME,
    page_scales: Optional[Dict[int, float]] = None,
) -> List[BomLine]:
    return _default_engine.generate_bom(
        instance, all_defs, measurements, materials, scale, item_set_name, page_scales
    )


def generate_global_bom(
    item_sets: Iterable[ItemSet],
    all_defs: Iterable[AssemblyDef],
    measurements: Iterable[Measurement],
    materials: Iterable[MaterialDef],
    scale: float,
    page_scales: Optional[Dict[int, float]] = None,
) -> List[BomLine]:
    return _default_engine.generate_global_bom(
        item_sets, all_defs, measurements, materials, scale, page_scales
    )


def generate_project_bom(bundle: ProjectBundle) -> List[BomLine]:
    return _default_engine.generate_project_bom(bundle)
