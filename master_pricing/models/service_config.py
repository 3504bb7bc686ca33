"""Service configuration Pydantic models.

Typed description of a service: base settings (labor, material, business
groups of named numeric settings) and variable groups (categories of
adjustable variables, each holding named options with a numeric effect and
a human label).

Variables are addressed by dotted paths, ``<category>.<variable>``, e.g.
``excavation.tearoutComplexity``. Base settings are addressed the same way,
``<group>.<setting>``, e.g. ``laborSettings.hourlyLaborRate``.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from master_pricing.config.errors import MissingBaseSetting, UnknownVariableOption


# =============================================================================
# ENUMS
# =============================================================================


class EffectType(str, Enum):
    """How a variable feeds the calculation."""

    LABOR_TIME_PERCENTAGE = "labor_time_percentage"
    LABOR_AND_WASTE = "labor_and_waste"
    MATERIAL_COST_MULTIPLIER = "material_cost_multiplier"
    MATERIAL_WASTE_PERCENTAGE = "material_waste_percentage"
    DAILY_COST = "daily_cost"
    FLAT_COST = "flat_cost"
    TOTAL_MULTIPLIER = "total_multiplier"
    DEFAULT_DEPTH = "default_depth"
    VOLUME_PERCENTAGE = "volume_percentage"
    VOLUME_ROUNDING = "volume_rounding"


class FormulaType(str, Enum):
    """Which engine prices a service."""

    TWO_TIER = "two_tier"
    VOLUME_BASED = "volume_based"


class VariableType(str, Enum):
    """Input control type for a variable."""

    SELECT = "select"
    SLIDER = "slider"


SETTING_GROUPS: Tuple[str, ...] = ("laborSettings", "materialSettings", "businessSettings")


# =============================================================================
# BASE SETTINGS
# =============================================================================


class SettingValidation(BaseModel):
    """Admin-facing bounds for a numeric value."""

    min: float = Field(..., description="Lowest accepted value")
    max: float = Field(..., description="Highest accepted value")
    step: float = Field(default=1.0, gt=0, description="Input step")

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


class BaseSetting(BaseModel):
    """A single named numeric setting (e.g. hourly labor rate)."""

    value: float = Field(..., description="Numeric value")
    unit: str = Field(default="", description="Unit of measurement")
    label: str = Field(default="", description="Display label")
    description: str = Field(default="", description="What the setting controls")
    admin_editable: bool = Field(default=True, alias="adminEditable")
    validation: Optional[SettingValidation] = Field(default=None)

    class Config:
        populate_by_name = True


class BaseSettings(BaseModel):
    """Labor, material and business setting groups."""

    labor_settings: Dict[str, BaseSetting] = Field(default_factory=dict, alias="laborSettings")
    material_settings: Dict[str, BaseSetting] = Field(default_factory=dict, alias="materialSettings")
    business_settings: Dict[str, BaseSetting] = Field(default_factory=dict, alias="businessSettings")

    class Config:
        populate_by_name = True

    def group(self, name: str) -> Dict[str, BaseSetting]:
        """Return a setting group by its document name (e.g. ``laborSettings``)."""
        groups = {
            "laborSettings": self.labor_settings,
            "materialSettings": self.material_settings,
            "businessSettings": self.business_settings,
        }
        if name not in groups:
            raise KeyError(name)
        return groups[name]

    def get(self, path: str) -> Optional[BaseSetting]:
        """Look up a setting by dotted path; None when absent."""
        group_name, _, setting_name = path.partition(".")
        if group_name not in SETTING_GROUPS or not setting_name:
            return None
        return self.group(group_name).get(setting_name)

    def require(self, path: str, service_id: Optional[str] = None) -> float:
        """Return the numeric value at ``path`` or raise MissingBaseSetting."""
        setting = self.get(path)
        if setting is None:
            raise MissingBaseSetting(path, service_id=service_id)
        return setting.value

    def leaf_paths(self) -> List[str]:
        """All dotted setting paths, in group order."""
        return [
            f"{group_name}.{name}"
            for group_name in SETTING_GROUPS
            for name in self.group(group_name)
        ]


# =============================================================================
# VARIABLES
# =============================================================================


class VariableOption(BaseModel):
    """One selectable option of a variable.

    Which numeric field matters depends on the variable's effect type:
    ``value`` holds percentages, daily rates and flat costs, ``multiplier``
    holds material and complexity multipliers, ``fixedLaborHours`` and
    ``materialWaste`` belong to cutting complexity, ``wastePercentage`` to
    pattern complexity.
    """

    label: str = Field(..., description="Display label")
    value: Optional[float] = Field(default=None)
    multiplier: Optional[float] = Field(default=None)
    fixed_labor_hours: Optional[float] = Field(default=None, alias="fixedLaborHours")
    material_waste: Optional[float] = Field(default=None, alias="materialWaste")
    waste_percentage: Optional[float] = Field(default=None, alias="wastePercentage")
    description: Optional[str] = Field(default=None)

    class Config:
        populate_by_name = True


class VariableDefinition(BaseModel):
    """An adjustable variable with its options and documented default."""

    label: str = Field(..., description="Display label")
    description: str = Field(default="")
    type: VariableType = Field(default=VariableType.SELECT)
    default: Union[str, float] = Field(..., description="Default option key (or number for sliders)")
    calculation_tier: Union[int, str] = Field(default=1, alias="calculationTier")
    effect_type: EffectType = Field(..., alias="effectType")
    validation: Optional[SettingValidation] = Field(default=None)
    options: Dict[str, VariableOption] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
        use_enum_values = True

    def option(self, path: str, key: str) -> VariableOption:
        """Return the option for ``key`` or raise UnknownVariableOption."""
        option = self.options.get(key)
        if option is None:
            raise UnknownVariableOption(path, key)
        return option


class VariableCategory(BaseModel):
    """A named group of variables (excavation, siteAccess, materials, ...)."""

    label: str = Field(default="")
    description: str = Field(default="")
    variables: Dict[str, VariableDefinition] = Field(default_factory=dict)


# =============================================================================
# SERVICE CONFIG
# =============================================================================


class ServiceConfig(BaseModel):
    """Fully resolved configuration of one service for one company.

    Instances handed out by the cache are shared read-only snapshots; use
    ``model_copy(deep=True)`` before editing.
    """

    service_id: str = Field(..., alias="serviceId")
    display_name: str = Field(..., alias="displayName")
    category: str = Field(default="hardscaping")
    unit: str = Field(default="sqft", description="Unit the quantity is measured in")
    version: str = Field(default="2.0.0")
    formula_type: FormulaType = Field(default=FormulaType.TWO_TIER, alias="formulaType")
    last_modified: Optional[str] = Field(default=None, alias="lastModified")
    modified_by: Optional[str] = Field(default=None, alias="modifiedBy")
    base_settings: BaseSettings = Field(default_factory=BaseSettings, alias="baseSettings")
    variables: Dict[str, VariableCategory] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
        use_enum_values = True

    def find_variable(self, path: str) -> Optional[VariableDefinition]:
        """Look up a variable by dotted path; None when absent."""
        category_name, _, variable_name = path.partition(".")
        category = self.variables.get(category_name)
        if category is None or not variable_name:
            return None
        return category.variables.get(variable_name)

    def variable(self, path: str) -> VariableDefinition:
        """Look up a variable by dotted path or raise UnknownVariableOption."""
        definition = self.find_variable(path)
        if definition is None:
            raise UnknownVariableOption(path)
        return definition

    def variable_paths(self) -> List[str]:
        """All dotted variable paths, in category order."""
        return [
            f"{category_name}.{variable_name}"
            for category_name, category in self.variables.items()
            for variable_name in category.variables
        ]

    def default_choices(self) -> Dict[str, str]:
        """Documented default option key of every select variable."""
        defaults: Dict[str, str] = {}
        for path in self.variable_paths():
            definition = self.variable(path)
            if isinstance(definition.default, str):
                defaults[path] = definition.default
        return defaults
