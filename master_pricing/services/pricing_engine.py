"""Two-tier calculation engine.

Tier 1 turns quantity into labor hours: base hours from productivity, then
percentage adjustments each applied to the running total in a fixed order,
then fixed-hour add-ons. Tier 2 turns hours and quantity into money.

The engine is pure and synchronous. It never reads storage and never falls
back to a default for an unknown option key; a selection either prices
cleanly or raises.

Volume-based services (excavation removal) are priced by
``calculate_excavation`` instead: cubic yards from area and depth, times
a per-yard rate.
"""

import math
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from master_pricing.config.errors import (
    InvalidQuantity,
    UnknownVariableOption,
    ValidationError,
)
from master_pricing.models.calculation_result import (
    AdjustmentKind,
    CalculationResult,
    ExcavationResult,
    LaborAdjustment,
    Tier1Results,
    Tier2Results,
)
from master_pricing.models.selection import COMPLEXITY_PATH, VariableSelection
from master_pricing.models.service_config import FormulaType, ServiceConfig, VariableOption

logger = structlog.get_logger(__name__)


# =============================================================================
# VARIABLE PATHS
# =============================================================================

TEAROUT_PATH = "excavation.tearoutComplexity"
ACCESS_PATH = "siteAccess.accessDifficulty"
TEAM_SIZE_PATH = "labor.teamSize"
CUTTING_PATH = "materials.cuttingComplexity"
PAVER_STYLE_PATH = "materials.paverStyle"
PATTERN_PATH = "materials.patternComplexity"
EQUIPMENT_PATH = "excavation.equipmentRequired"
OBSTACLE_PATH = "siteAccess.obstacleRemoval"

# Order matters: each percentage applies to the hours produced by the
# previous step.
TIER1_PERCENTAGE_ORDER: Tuple[str, ...] = (TEAROUT_PATH, ACCESS_PATH, TEAM_SIZE_PATH)
TIER1_FIXED_HOURS: Tuple[str, ...] = (CUTTING_PATH,)

HOURLY_RATE = "laborSettings.hourlyLaborRate"
TEAM_SIZE = "laborSettings.optimalTeamSize"
PRODUCTIVITY = "laborSettings.baseProductivity"
HOURS_PER_DAY = "laborSettings.hoursPerDay"
MATERIAL_COST = "materialSettings.baseMaterialCost"
PROFIT_MARGIN = "businessSettings.profitMarginTarget"

_POSITIVE_SETTINGS = (TEAM_SIZE, PRODUCTIVITY, HOURS_PER_DAY)


# =============================================================================
# HELPERS
# =============================================================================


def _validate_quantity(quantity) -> float:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise InvalidQuantity(quantity)
    if not math.isfinite(quantity) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return float(quantity)


def _validate_selection(config: ServiceConfig, selection: VariableSelection) -> None:
    """Every referenced path and option key must exist in the schema."""
    for path, key in selection.choices.items():
        definition = config.find_variable(path)
        if definition is None:
            raise UnknownVariableOption(path, key)
        definition.option(path, key)


def _selected(
    config: ServiceConfig,
    selection: VariableSelection,
    path: str
) -> Optional[Tuple[str, VariableOption]]:
    """Option chosen for ``path``, falling back to the documented default.

    Returns None when the service has no such variable.
    """
    definition = config.find_variable(path)
    if definition is None:
        return None
    key = selection.get(path)
    if key is None:
        if not isinstance(definition.default, str):
            return None
        key = definition.default
    return key, definition.option(path, key)


def _label(config: ServiceConfig, path: str) -> str:
    definition = config.find_variable(path)
    return definition.label if definition else path


def _fmt(number: float) -> str:
    return f"{number:g}"


def _complexity_multiplier(config: ServiceConfig, selection: VariableSelection) -> float:
    override = selection.complexity_override
    if override is not None:
        if isinstance(override, bool) or not math.isfinite(override) or override <= 0:
            raise ValidationError(
                message=f"Complexity override must be a positive number, got {override!r}",
                field=COMPLEXITY_PATH
            )
        definition = config.find_variable(COMPLEXITY_PATH)
        bounds = definition.validation if definition else None
        if bounds is not None and not bounds.contains(override):
            raise ValidationError(
                message=(
                    f"Complexity override {override} outside "
                    f"[{_fmt(bounds.min)}, {_fmt(bounds.max)}]"
                ),
                field=COMPLEXITY_PATH,
                details={"min": bounds.min, "max": bounds.max}
            )
        return float(override)

    selected = _selected(config, selection, COMPLEXITY_PATH)
    if selected is None:
        return 1.0
    _, option = selected
    if option.multiplier is not None:
        return option.multiplier
    return option.value if option.value is not None else 1.0


# =============================================================================
# ENGINE
# =============================================================================


def calculate(
    config: ServiceConfig,
    selection: VariableSelection,
    quantity: float
) -> CalculationResult:
    """Price ``quantity`` units of a service for one variable selection.

    Args:
        config: Fully resolved service configuration
        selection: Chosen option keys (missing variables use their default)
        quantity: Project size in the service's unit, must be positive

    Returns:
        Unrounded CalculationResult

    Raises:
        InvalidQuantity: If quantity is not a positive finite number
        UnknownVariableOption: If the selection names a path or key the
            schema does not define
        MissingBaseSetting: If a required numeric setting is absent
        ValidationError: If a setting or complexity override is out of range
    """
    qty = _validate_quantity(quantity)
    if config.formula_type == FormulaType.VOLUME_BASED:
        raise ValidationError(
            message=f"Service '{config.service_id}' is priced by volume",
            field="serviceId"
        )
    _validate_selection(config, selection)

    settings = config.base_settings
    service_id = config.service_id
    hourly_rate = settings.require(HOURLY_RATE, service_id)
    team_size = settings.require(TEAM_SIZE, service_id)
    productivity = settings.require(PRODUCTIVITY, service_id)
    hours_per_day = settings.require(HOURS_PER_DAY, service_id)
    base_material_cost = settings.require(MATERIAL_COST, service_id)
    profit_margin = settings.require(PROFIT_MARGIN, service_id)

    for path in _POSITIVE_SETTINGS:
        if settings.require(path, service_id) <= 0:
            raise ValidationError(message=f"Base setting '{path}' must be positive", field=path)

    # ----- Tier 1: labor hours -----
    base_hours = qty / productivity * team_size * hours_per_day
    running = base_hours
    adjustments: List[LaborAdjustment] = []
    breakdown = [
        f"Base Hours: {base_hours:.1f} ({_fmt(qty)} {config.unit} / "
        f"{_fmt(productivity)} per day x {_fmt(team_size)} people x {_fmt(hours_per_day)} hours)"
    ]

    for path in TIER1_PERCENTAGE_ORDER:
        selected = _selected(config, selection, path)
        if selected is None:
            continue
        key, option = selected
        percent = option.value or 0.0
        if percent == 0:
            continue
        increment = running * percent / 100
        running += increment
        label = _label(config, path)
        adjustments.append(LaborAdjustment(
            path=path,
            option_key=key,
            label=label,
            kind=AdjustmentKind.PERCENTAGE,
            percent=percent,
            hours=increment,
            running_hours=running
        ))
        breakdown.append(f"+{label} ({_fmt(percent)}%): +{increment:.1f} hours")

    for path in TIER1_FIXED_HOURS:
        selected = _selected(config, selection, path)
        if selected is None:
            continue
        key, option = selected
        extra_hours = option.fixed_labor_hours or 0.0
        if extra_hours == 0:
            continue
        running += extra_hours
        label = _label(config, path)
        adjustments.append(LaborAdjustment(
            path=path,
            option_key=key,
            label=label,
            kind=AdjustmentKind.FIXED_HOURS,
            hours=extra_hours,
            running_hours=running
        ))
        breakdown.append(f"+{label}: +{extra_hours:.1f} hours")

    total_man_hours = running
    project_days = total_man_hours / (team_size * hours_per_day)

    # ----- Tier 2: costs -----
    labor_cost = total_man_hours * hourly_rate

    style = _selected(config, selection, PAVER_STYLE_PATH)
    style_multiplier = 1.0
    if style is not None and style[1].multiplier is not None:
        style_multiplier = style[1].multiplier
    material_cost_base = qty * base_material_cost * style_multiplier

    waste_percent = 0.0
    cutting = _selected(config, selection, CUTTING_PATH)
    if cutting is not None:
        waste_percent += cutting[1].material_waste or 0.0
    pattern = _selected(config, selection, PATTERN_PATH)
    if pattern is not None:
        waste_percent += pattern[1].waste_percentage or 0.0
    material_waste_cost = material_cost_base * waste_percent / 100
    total_material_cost = material_cost_base + material_waste_cost

    equipment = _selected(config, selection, EQUIPMENT_PATH)
    daily_rate = (equipment[1].value or 0.0) if equipment is not None else 0.0
    equipment_cost = daily_rate * project_days

    obstacle = _selected(config, selection, OBSTACLE_PATH)
    obstacle_cost = (obstacle[1].value or 0.0) if obstacle is not None else 0.0

    subtotal = labor_cost + total_material_cost + equipment_cost + obstacle_cost
    profit = subtotal * profit_margin
    complexity_multiplier = _complexity_multiplier(config, selection)
    total = (subtotal + profit) * complexity_multiplier

    logger.debug(
        "price_calculated",
        service_id=service_id,
        quantity=qty,
        total_man_hours=total_man_hours,
        total=total
    )

    return CalculationResult(
        service_id=service_id,
        quantity=qty,
        unit=config.unit,
        selection=selection,
        tier1=Tier1Results(
            base_hours=base_hours,
            adjustments=adjustments,
            breakdown=breakdown,
            total_man_hours=total_man_hours,
            total_days=project_days
        ),
        tier2=Tier2Results(
            labor_cost=labor_cost,
            material_cost_base=material_cost_base,
            material_waste_cost=material_waste_cost,
            total_material_cost=total_material_cost,
            equipment_cost=equipment_cost,
            obstacle_cost=obstacle_cost,
            subtotal=subtotal,
            profit_margin=profit_margin,
            profit=profit,
            complexity_multiplier=complexity_multiplier,
            total=total,
            price_per_unit=total / qty
        )
    )


# =============================================================================
# VOLUME-BASED ENGINE
# =============================================================================

DEPTH_PATH = "calculationSettings.defaultDepth"
WASTE_PATH = "calculationSettings.wasteFactor"
COMPACTION_PATH = "calculationSettings.compactionFactor"
ROUNDING_PATH = "calculationSettings.roundingRule"

DEFAULT_DEPTH_INCHES = 11.0
DEFAULT_WASTE_PERCENT = 10.0
DEFAULT_COMPACTION_PERCENT = 0.0
DEFAULT_ROUNDING_RULE = "up_whole"

CUBIC_FEET_PER_YARD = 27
# Crew time is estimated per started block of area, not per yard.
SQFT_PER_TIER = 1000
HOURS_PER_TIER = 12
DAYS_PER_TIER = 1.5

ROUNDING_RULES: Dict[str, Callable[[float], float]] = {
    "up_whole": lambda yards: float(math.ceil(yards)),
    "up_half": lambda yards: math.ceil(yards * 2) / 2,
    "exact": lambda yards: yards,
}


def _slider_default(config: ServiceConfig, path: str, fallback: float) -> float:
    definition = config.find_variable(path)
    if definition is None or isinstance(definition.default, str):
        return fallback
    return float(definition.default)


def _excavation_depth(config: ServiceConfig, depth_inches) -> float:
    if depth_inches is None:
        return _slider_default(config, DEPTH_PATH, DEFAULT_DEPTH_INCHES)
    if (
        isinstance(depth_inches, bool)
        or not isinstance(depth_inches, (int, float))
        or not math.isfinite(depth_inches)
        or depth_inches <= 0
    ):
        raise ValidationError(
            message=f"Depth must be a positive number of inches, got {depth_inches!r}",
            field="depthInches"
        )
    definition = config.find_variable(DEPTH_PATH)
    bounds = definition.validation if definition else None
    if bounds is not None and not bounds.contains(depth_inches):
        raise ValidationError(
            message=f"Depth {_fmt(depth_inches)} in outside [{_fmt(bounds.min)}, {_fmt(bounds.max)}]",
            field="depthInches",
            details={"min": bounds.min, "max": bounds.max}
        )
    return float(depth_inches)


def _rounding_rule(config: ServiceConfig, requested: Optional[str]) -> Tuple[str, str]:
    """Rounding rule key and its display label."""
    definition = config.find_variable(ROUNDING_PATH)
    if definition is None:
        key = requested or DEFAULT_ROUNDING_RULE
        if key not in ROUNDING_RULES:
            raise UnknownVariableOption(ROUNDING_PATH, key)
        return key, key
    key = requested or str(definition.default)
    option = definition.option(ROUNDING_PATH, key)
    if key not in ROUNDING_RULES:
        raise UnknownVariableOption(ROUNDING_PATH, key)
    return key, option.label


def calculate_excavation(
    config: ServiceConfig,
    area_sqft: float,
    depth_inches: Optional[float] = None,
    rounding_rule: Optional[str] = None
) -> ExcavationResult:
    """Price removal of the soil under ``area_sqft`` square feet.

    Volume is area times depth, grown by the waste and compaction
    percentages, then rounded by the configured rule. The price is the
    rounded volume times the per-yard rate plus profit. Time comes from
    the number of started 1000 sqft blocks.

    Args:
        config: Resolved config of a volume-based service
        area_sqft: Excavated area, must be positive
        depth_inches: Dig depth; the config's default depth when omitted
        rounding_rule: Overrides the configured rounding rule

    Raises:
        InvalidQuantity: If the area is not a positive finite number
        ValidationError: If the service is not volume-based or the depth
            is invalid
        UnknownVariableOption: If the rounding rule is not defined
        MissingBaseSetting: If the rate or profit margin is absent
    """
    area = _validate_quantity(area_sqft)
    service_id = config.service_id
    if config.formula_type != FormulaType.VOLUME_BASED:
        raise ValidationError(
            message=f"Service '{service_id}' is not priced by volume",
            field="serviceId"
        )

    settings = config.base_settings
    base_rate = settings.require(HOURLY_RATE, service_id)
    profit_margin = settings.require(PROFIT_MARGIN, service_id)
    depth = _excavation_depth(config, depth_inches)
    waste = _slider_default(config, WASTE_PATH, DEFAULT_WASTE_PERCENT)
    compaction = _slider_default(config, COMPACTION_PATH, DEFAULT_COMPACTION_PERCENT)
    rule, rule_label = _rounding_rule(config, rounding_rule)

    cubic_yards_raw = area * (depth / 12) / CUBIC_FEET_PER_YARD
    cubic_yards_adjusted = cubic_yards_raw * (1 + waste / 100) * (1 + compaction / 100)
    cubic_yards_final = ROUNDING_RULES[rule](cubic_yards_adjusted)

    sqft_tiers = math.ceil(area / SQFT_PER_TIER)
    base_hours = sqft_tiers * HOURS_PER_TIER
    project_days = sqft_tiers * DAYS_PER_TIER

    base_cost = cubic_yards_final * base_rate
    profit = base_cost * profit_margin
    total = base_cost + profit

    breakdown = [
        f"Volume: {_fmt(area)} sqft x {_fmt(depth)} in = {cubic_yards_raw:.2f} yd³",
        f"+Waste ({_fmt(waste)}%) +Compaction ({_fmt(compaction)}%): {cubic_yards_adjusted:.2f} yd³",
        f"{rule_label}: {cubic_yards_final:g} yd³",
        f"Time: {sqft_tiers} x {SQFT_PER_TIER} sqft = {base_hours:g} hours, {project_days:g} days",
    ]

    logger.debug(
        "excavation_calculated",
        service_id=service_id,
        area_sqft=area,
        cubic_yards=cubic_yards_final,
        total=total
    )

    return ExcavationResult(
        service_id=service_id,
        area_sqft=area,
        depth_inches=depth,
        waste_factor=waste,
        compaction_factor=compaction,
        rounding_rule=rule,
        cubic_yards_raw=cubic_yards_raw,
        cubic_yards_adjusted=cubic_yards_adjusted,
        cubic_yards_final=cubic_yards_final,
        sqft_tiers=sqft_tiers,
        base_hours=base_hours,
        project_days=project_days,
        base_rate=base_rate,
        base_cost=base_cost,
        profit_margin=profit_margin,
        profit=profit,
        total=total,
        breakdown=breakdown
    )
