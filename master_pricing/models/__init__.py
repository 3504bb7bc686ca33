"""Pricing data models."""

from master_pricing.models.service_config import (
    BaseSetting,
    BaseSettings,
    EffectType,
    ServiceConfig,
    SettingValidation,
    VariableCategory,
    VariableDefinition,
    VariableOption,
    VariableType,
)
from master_pricing.models.selection import COMPLEXITY_PATH, VariableSelection
from master_pricing.models.calculation_result import (
    AdjustmentKind,
    CalculationResult,
    LaborAdjustment,
    Tier1Results,
    Tier2Results,
)

__all__ = [
    "BaseSetting",
    "BaseSettings",
    "EffectType",
    "ServiceConfig",
    "SettingValidation",
    "VariableCategory",
    "VariableDefinition",
    "VariableOption",
    "VariableType",
    "COMPLEXITY_PATH",
    "VariableSelection",
    "AdjustmentKind",
    "CalculationResult",
    "LaborAdjustment",
    "Tier1Results",
    "Tier2Results",
]
