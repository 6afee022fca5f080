"""
Takeoff data model — the records the engine consumes and the project bundle
that carries them.

The host application serializes these with camelCase keys (``connectsTo``,
``pageIndex``, ``childType`` ...). Every model accepts both those aliases and
the snake_case field names, so a saved project can be validated directly:

    bundle = ProjectBundle.model_validate(json.loads(raw))

All models are frozen; the engine treats them as immutable snapshots.
"""

from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from takeoff import config


RoundingKind = Literal["up", "down", "nearest", "none"]
MeasurementProperty = Literal["length", "area", "count"]
VariableType = Literal["linear", "area", "count", "number", "pitch", "boolean"]


class TakeoffModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ── Geometry ──────────────────────────────────────────────────────────────────

class ControlPoint(TakeoffModel):
    x: float
    y: float


class Point(TakeoffModel):
    """A vertex in page-pixel coordinates."""
    x: float
    y: float
    connects_to: Optional[List[int]] = Field(
        None, description="Outgoing graph edges (indices into the same point list)"
    )
    control_point: Optional[ControlPoint] = Field(
        None, description="Quadratic Bezier control point of the edge ending here"
    )


class Measurement(TakeoffModel):
    id: str
    name: str = ""
    type: Literal["line", "shape"]
    points: List[Point] = Field(default_factory=list)
    page_index: int = 0
    tags: List[str] = Field(default_factory=list)
    group: Optional[str] = Field(None, description="Free-form group name used for aggregation")
    pitch: Optional[float] = Field(None, description="Roof pitch, rise per 12 in (shapes only)")
    hidden: bool = False


# ── Materials ─────────────────────────────────────────────────────────────────

class MaterialVariant(TakeoffModel):
    id: str
    name: str
    properties: Dict[str, float] = Field(default_factory=dict)


class MaterialDef(TakeoffModel):
    id: str
    sku: str
    name: str
    uom: str = "EA"
    category: str = ""
    is_special_order: bool = False
    report_sku: Optional[str] = Field(None, description="SKU used on roll-up reports")
    variants: List[MaterialVariant] = Field(default_factory=list)
    default_variant_id: Optional[str] = None
    properties: Dict[str, float] = Field(default_factory=dict)

    @property
    def reporting_sku(self) -> str:
        if self.is_special_order and self.report_sku:
            return self.report_sku
        return self.sku

    def variant(self, variant_id: Optional[str]) -> Optional[MaterialVariant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def default_variant(self) -> Optional[MaterialVariant]:
        return self.variant(self.default_variant_id)


# ── Assemblies ────────────────────────────────────────────────────────────────

class AssemblyVariable(TakeoffModel):
    id: str
    name: str = Field(..., description="Symbol used in node formulas")
    type: VariableType = "number"

    @property
    def natural_property(self) -> Optional[str]:
        return config.NATURAL_PROPERTY.get(self.type)


class MaterialNode(TakeoffModel):
    """Emits a material; dynamic nodes pick one of several candidate materials."""
    id: str
    child_type: Literal["material"] = "material"
    child_id: str
    alias: Optional[str] = None
    formula: str = ""
    round: RoundingKind = "none"
    is_dynamic: bool = False
    variant_ids: List[str] = Field(default_factory=list)
    default_variant_id: Optional[str] = None


class SubAssemblyNode(TakeoffModel):
    """References another AssemblyDef; child variables are fed by variable_mapping."""
    id: str
    child_type: Literal["assembly"] = "assembly"
    child_id: str
    alias: Optional[str] = None
    formula: str = ""
    round: RoundingKind = "none"
    variable_mapping: Dict[str, str] = Field(
        default_factory=dict,
        description="child variable name -> parent scope symbol",
    )


AssemblyNode = Annotated[
    Union[MaterialNode, SubAssemblyNode],
    Field(discriminator="child_type"),
]


class AssemblyDef(TakeoffModel):
    id: str
    name: str
    category: str = ""
    variables: List[AssemblyVariable] = Field(default_factory=list)
    children: List[AssemblyNode] = Field(default_factory=list)


# ── Variable sources ──────────────────────────────────────────────────────────

class PitchRatio(TakeoffModel):
    """A manual "rise/run" value, e.g. 5/12."""
    rise: float
    run: float


class ManualSource(TakeoffModel):
    type: Literal["manual"] = "manual"
    value: Union[float, PitchRatio, str] = 0.0


class MeasurementSource(TakeoffModel):
    type: Literal["measurement"] = "measurement"
    measurement_id: str
    property: Optional[MeasurementProperty] = None


class MeasurementGroupSource(TakeoffModel):
    type: Literal["measurementGroup"] = "measurementGroup"
    group_id: str
    property: Optional[MeasurementProperty] = None


VariableSource = Annotated[
    Union[ManualSource, MeasurementSource, MeasurementGroupSource],
    Field(discriminator="type"),
]


# ── Instances ─────────────────────────────────────────────────────────────────

class ProjectAssembly(TakeoffModel):
    id: str
    assembly_def_id: str
    name: str = ""
    variable_values: Dict[str, VariableSource] = Field(
        default_factory=dict, description="AssemblyVariable id -> source"
    )
    selections: Dict[str, str] = Field(
        default_factory=dict, description="dynamic node id -> chosen material id"
    )


class ManualItem(TakeoffModel):
    id: str
    sku: str
    description: str = ""
    quantity: float = 0.0
    uom: str = "EA"


class ItemSet(TakeoffModel):
    id: str
    name: str
    assemblies: List[ProjectAssembly] = Field(default_factory=list)
    manual_items: List[ManualItem] = Field(default_factory=list)


class ProjectBundle(TakeoffModel):
    """Everything a BOM run needs, as saved by the host application."""
    scale: float = config.DEFAULT_SCALE
    page_scales: Dict[int, float] = Field(default_factory=dict)
    measurements: List[Measurement] = Field(default_factory=list)
    item_sets: List[ItemSet] = Field(default_factory=list)
    assembly_defs: List[AssemblyDef] = Field(default_factory=list)
    materials: List[MaterialDef] = Field(default_factory=list)
