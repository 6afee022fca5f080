"""
catalog_engine.py — Lookup and validation over the definition store.

The BOM engine reads materials and assemblies through DefinitionCatalog so
every lookup is O(1) and SKU matching is case-insensitive. validate() is the
pre-flight check a host runs before trusting a definition library: it never
blocks BOM generation, it only reports.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from takeoff.models.takeoff_schema import (
    AssemblyDef,
    MaterialDef,
    SubAssemblyNode,
)

logger = logging.getLogger("takeoff-catalog")


class DefinitionCatalog:
    """Read-only index of AssemblyDefs and MaterialDefs."""

    def __init__(self, assembly_defs: Iterable[AssemblyDef], materials: Iterable[MaterialDef]):
        self.assembly_defs: List[AssemblyDef] = list(assembly_defs)
        self.materials: List[MaterialDef] = list(materials)

        # First definition wins on duplicate ids, matching a linear find()
        self._assemblies: Dict[str, AssemblyDef] = {}
        for a in self.assembly_defs:
            self._assemblies.setdefault(a.id, a)

        self._materials: Dict[str, MaterialDef] = {}
        self._by_sku: Dict[str, MaterialDef] = {}
        for m in self.materials:
            self._materials.setdefault(m.id, m)
            self._by_sku.setdefault(m.sku.strip().lower(), m)

    def assembly(self, assembly_id: Optional[str]) -> Optional[AssemblyDef]:
        return self._assemblies.get(assembly_id)

    def material(self, material_id: Optional[str]) -> Optional[MaterialDef]:
        return self._materials.get(material_id)

    def material_by_sku(self, sku: str) -> Optional[MaterialDef]:
        return self._by_sku.get((sku or "").strip().lower())

    # ── graph ────────────────────────────────────────────────────────────────

    def sub_assembly_ids(self, definition: AssemblyDef) -> List[str]:
        return [n.child_id for n in definition.children if isinstance(n, SubAssemblyNode)]

    def find_cycles(self) -> List[Tuple[str, ...]]:
        """
        Cycles reachable by depth-first search, each as the id path that
        closes it (first id repeated at the end). Dangling references are
        ignored.
        """
        cycles: List[Tuple[str, ...]] = []
        seen_cycles = set()
        done = set()

        def visit(def_id: str, stack: Tuple[str, ...]):
            if def_id in stack:
                loop = stack[stack.index(def_id):] + (def_id,)
                key = frozenset(loop)
                if key not in seen_cycles:
                    seen_cycles.add(key)
                    cycles.append(loop)
                return
            if def_id in done:
                return
            definition = self.assembly(def_id)
            if definition is None:
                return
            for child_id in self.sub_assembly_ids(definition):
                visit(child_id, stack + (def_id,))
            done.add(def_id)

        for a in self.assembly_defs:
            visit(a.id, ())
        return cycles

    # ── validation ───────────────────────────────────────────────────────────

    def validate(self) -> Dict[str, Any]:
        """
        Report definition problems the engine would otherwise absorb silently.

        Issue codes:
          DUPLICATE_SKU, INVALID_DEFAULT_VARIANT, MISSING_MATERIAL,
          MISSING_ASSEMBLY, DYNAMIC_DEFAULT_NOT_IN_VARIANTS, CYCLIC_ASSEMBLY
        """
        issues: List[Dict[str, Any]] = []

        seen_skus: Dict[str, str] = {}
        for m in self.materials:
            key = m.sku.strip().lower()
            if key in seen_skus and seen_skus[key] != m.id:
                issues.append({
                    "code": "DUPLICATE_SKU",
                    "material_id": m.id,
                    "detail": f"SKU {m.sku!r} already used by material {seen_skus[key]}",
                })
            else:
                seen_skus[key] = m.id

            if m.is_special_order and m.variants and m.default_variant() is None:
                issues.append({
                    "code": "INVALID_DEFAULT_VARIANT",
                    "material_id": m.id,
                    "detail": f"defaultVariantId {m.default_variant_id!r} is not one of its variants",
                })

        for a in self.assembly_defs:
            for node in a.children:
                if isinstance(node, SubAssemblyNode):
                    if self.assembly(node.child_id) is None:
                        issues.append({
                            "code": "MISSING_ASSEMBLY",
                            "assembly_id": a.id,
                            "node_id": node.id,
                            "detail": f"Sub-assembly {node.child_id} not found",
                        })
                    continue

                candidates = [node.child_id]
                if node.is_dynamic:
                    candidates = list(node.variant_ids) or candidates
                    if node.default_variant_id and node.variant_ids \
                            and node.default_variant_id not in node.variant_ids:
                        issues.append({
                            "code": "DYNAMIC_DEFAULT_NOT_IN_VARIANTS",
                            "assembly_id": a.id,
                            "node_id": node.id,
                            "detail": f"Default {node.default_variant_id} not in variantIds",
                        })
                for material_id in candidates:
                    if self.material(material_id) is None:
                        issues.append({
                            "code": "MISSING_MATERIAL",
                            "assembly_id": a.id,
                            "node_id": node.id,
                            "detail": f"Material {material_id} not found",
                        })

        for loop in self.find_cycles():
            issues.append({
                "code": "CYCLIC_ASSEMBLY",
                "assembly_id": loop[0],
                "detail": " -> ".join(loop),
            })

        if issues:
            logger.info(f"Definition catalog validation found {len(issues)} issue(s)")

        return {
            "issue_count": len(issues),
            "issues": issues,
            "validation_passed": len(issues) == 0,
        }
