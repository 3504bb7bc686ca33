"""Calculation result Pydantic models.

Tier 1 holds the labor-hours breakdown, Tier 2 the cost breakdown; the
volume-based excavation result has its own flat shape. Values
are kept unrounded so that the total identity holds exactly; rounding is a
presentation concern (``to_display_dict``).
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from master_pricing.models.selection import VariableSelection


class AdjustmentKind(str, Enum):
    """How a Tier 1 step changed the running hours."""

    PERCENTAGE = "percentage"
    FIXED_HOURS = "fixed_hours"


class LaborAdjustment(BaseModel):
    """One applied Tier 1 step."""

    path: str = Field(..., description="Variable path, e.g. siteAccess.accessDifficulty")
    option_key: str = Field(..., alias="optionKey")
    label: str
    kind: AdjustmentKind
    percent: Optional[float] = Field(default=None, description="Percentage of running hours")
    hours: float = Field(..., description="Incremental hours added by this step")
    running_hours: float = Field(..., alias="runningHours", description="Hours after this step")

    class Config:
        frozen = True
        populate_by_name = True
        use_enum_values = True


class Tier1Results(BaseModel):
    """Labor hours."""

    base_hours: float = Field(..., alias="baseHours")
    adjustments: List[LaborAdjustment] = Field(default_factory=list)
    breakdown: List[str] = Field(default_factory=list)
    total_man_hours: float = Field(..., alias="totalManHours")
    total_days: float = Field(..., alias="totalDays")

    class Config:
        frozen = True
        populate_by_name = True


class Tier2Results(BaseModel):
    """Costs."""

    labor_cost: float = Field(..., alias="laborCost")
    material_cost_base: float = Field(..., alias="materialCostBase")
    material_waste_cost: float = Field(..., alias="materialWasteCost")
    total_material_cost: float = Field(..., alias="totalMaterialCost")
    equipment_cost: float = Field(..., alias="equipmentCost")
    obstacle_cost: float = Field(..., alias="obstacleCost")
    subtotal: float
    profit_margin: float = Field(..., alias="profitMargin")
    profit: float
    complexity_multiplier: float = Field(..., alias="complexityMultiplier")
    total: float
    price_per_unit: float = Field(..., alias="pricePerUnit")

    class Config:
        frozen = True
        populate_by_name = True


class CalculationResult(BaseModel):
    """Output of one ``calculate`` call."""

    service_id: str = Field(..., alias="serviceId")
    quantity: float
    unit: str
    selection: VariableSelection
    tier1: Tier1Results = Field(..., alias="tier1Results")
    tier2: Tier2Results = Field(..., alias="tier2Results")

    class Config:
        frozen = True
        populate_by_name = True

    @property
    def total(self) -> float:
        return self.tier2.total

    def summary(self) -> str:
        """One-line human readable summary."""
        t2 = self.tier2
        return (
            f"Labor: ${t2.labor_cost:,.2f} | Materials: ${t2.total_material_cost:,.2f} | "
            f"Equipment: ${t2.equipment_cost:,.2f} | Total: ${t2.total:,.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Full-precision camelCase dict."""
        return self.model_dump(by_alias=True)

    def to_display_dict(self) -> Dict[str, Any]:
        """Rounded camelCase dict for API responses (cents, tenths of hours)."""
        t1 = self.tier1
        t2 = self.tier2
        return {
            "serviceId": self.service_id,
            "quantity": self.quantity,
            "unit": self.unit,
            "inputValues": self.selection.to_nested(),
            "tier1Results": {
                "baseHours": round(t1.base_hours, 1),
                "totalManHours": round(t1.total_man_hours, 1),
                "totalDays": round(t1.total_days, 1),
                "breakdown": list(t1.breakdown),
            },
            "tier2Results": {
                "laborCost": round(t2.labor_cost, 2),
                "materialCostBase": round(t2.material_cost_base, 2),
                "materialWasteCost": round(t2.material_waste_cost, 2),
                "totalMaterialCost": round(t2.total_material_cost, 2),
                "equipmentCost": round(t2.equipment_cost, 2),
                "obstacleCost": round(t2.obstacle_cost, 2),
                "subtotal": round(t2.subtotal, 2),
                "profit": round(t2.profit, 2),
                "complexityMultiplier": t2.complexity_multiplier,
                "total": round(t2.total, 2),
                "pricePerUnit": round(t2.price_per_unit, 2),
            },
            "breakdown": self.summary(),
        }


class ExcavationResult(BaseModel):
    """Output of one ``calculate_excavation`` call.

    Volumes are in cubic yards. ``cubic_yards_final`` is the rounded volume
    the price is based on.
    """

    service_id: str = Field(..., alias="serviceId")
    area_sqft: float = Field(..., alias="areaSqft")
    depth_inches: float = Field(..., alias="depthInches")
    waste_factor: float = Field(..., alias="wasteFactor", description="Percent")
    compaction_factor: float = Field(..., alias="compactionFactor", description="Percent")
    rounding_rule: str = Field(..., alias="roundingRule")
    cubic_yards_raw: float = Field(..., alias="cubicYardsRaw")
    cubic_yards_adjusted: float = Field(..., alias="cubicYardsAdjusted")
    cubic_yards_final: float = Field(..., alias="cubicYardsFinal")
    sqft_tiers: int = Field(..., alias="sqftTiers")
    base_hours: float = Field(..., alias="baseHours")
    project_days: float = Field(..., alias="projectDays")
    base_rate: float = Field(..., alias="baseRate", description="$ per cubic yard")
    base_cost: float = Field(..., alias="baseCost")
    profit_margin: float = Field(..., alias="profitMargin")
    profit: float
    total: float
    breakdown: List[str] = Field(default_factory=list)

    class Config:
        frozen = True
        populate_by_name = True

    @property
    def cost_per_cubic_yard(self) -> float:
        return self.total / self.cubic_yards_final

    @property
    def hours_per_cubic_yard(self) -> float:
        return self.base_hours / self.cubic_yards_final

    def summary(self) -> str:
        return (
            f"Volume: {self.cubic_yards_final:g} yd³ | Base: ${self.base_cost:,.2f} | "
            f"Profit: ${self.profit:,.2f} | Total: ${self.total:,.2f}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_display_dict(self) -> Dict[str, Any]:
        """Rounded camelCase dict for API responses."""
        return {
            "serviceId": self.service_id,
            "areaSqft": self.area_sqft,
            "depthInches": self.depth_inches,
            "wasteFactor": self.waste_factor,
            "compactionFactor": self.compaction_factor,
            "roundingRule": self.rounding_rule,
            "cubicYards": {
                "raw": round(self.cubic_yards_raw, 2),
                "adjusted": round(self.cubic_yards_adjusted, 2),
                "final": round(self.cubic_yards_final, 2),
            },
            "time": {
                "sqftTiers": self.sqft_tiers,
                "baseHours": round(self.base_hours, 1),
                "projectDays": round(self.project_days, 1),
                "hoursPerCubicYard": round(self.hours_per_cubic_yard, 1),
            },
            "costs": {
                "baseRate": self.base_rate,
                "baseCost": round(self.base_cost, 2),
                "profit": round(self.profit, 2),
                "total": round(self.total, 2),
                "costPerCubicYard": round(self.cost_per_cubic_yard, 2),
            },
            "breakdown": list(self.breakdown),
            "summary": self.summary(),
        }
