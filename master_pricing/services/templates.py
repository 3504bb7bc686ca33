"""Built-in service configuration templates.

A template is what ``ConfigStore.get`` returns for a company that has never
saved its own configuration, and the base every stored document is merged
onto. Templates are kept as plain camelCase documents (the same shape a
company document is converted into) and validated into ``ServiceConfig``
on every access so callers never share a mutable instance.
"""

import copy
from typing import Any, Callable, Dict, List, Optional

from master_pricing.models.service_config import ServiceConfig


PAVER_PATIO_SERVICE_ID = "paver_patio_sqft"
EXCAVATION_REMOVAL_SERVICE_ID = "excavation_removal"


def _setting(value: float, unit: str, label: str, description: str,
             minimum: float, maximum: float, step: float = 1.0) -> Dict[str, Any]:
    return {
        "value": value,
        "unit": unit,
        "label": label,
        "description": description,
        "adminEditable": True,
        "validation": {"min": minimum, "max": maximum, "step": step},
    }


PAVER_PATIO_TEMPLATE: Dict[str, Any] = {
    "serviceId": PAVER_PATIO_SERVICE_ID,
    "displayName": "Paver Patio (SQFT)",
    "category": "hardscaping",
    "unit": "sqft",
    "version": "2.0.0",
    "baseSettings": {
        "laborSettings": {
            "hourlyLaborRate": _setting(
                25.0, "$/hour/person", "Hourly Labor Rate",
                "Rate paid per worker hour", 10, 100, 1
            ),
            "optimalTeamSize": _setting(
                3, "people", "Optimal Team Size",
                "Crew size the productivity figure assumes", 1, 10, 1
            ),
            "baseProductivity": _setting(
                50.0, "sqft/day", "Base Productivity",
                "Square feet one crew installs per day", 10, 500, 5
            ),
            "hoursPerDay": _setting(
                8, "hours", "Hours Per Day",
                "Working hours in one crew day", 4, 12, 1
            ),
        },
        "materialSettings": {
            "baseMaterialCost": _setting(
                5.84, "$/sqft", "Base Material Cost",
                "Paver, base and sand cost per square foot", 0, 100, 0.01
            ),
        },
        "businessSettings": {
            "profitMarginTarget": _setting(
                0.15, "fraction", "Profit Margin",
                "Markup applied to the subtotal", 0, 1, 0.01
            ),
        },
    },
    "variables": {
        "excavation": {
            "label": "Excavation & Equipment",
            "description": "Tear-out complexity and equipment requirements",
            "variables": {
                "tearoutComplexity": {
                    "label": "Tear-out Complexity",
                    "description": "What needs to be removed before installation",
                    "type": "select",
                    "default": "grass",
                    "calculationTier": 1,
                    "effectType": "labor_time_percentage",
                    "options": {
                        "grass": {"label": "Grass/Sod (Baseline)", "value": 0},
                        "concrete": {"label": "Concrete Removal", "value": 20},
                        "asphalt": {"label": "Asphalt Removal", "value": 30},
                    },
                },
                "equipmentRequired": {
                    "label": "Equipment Required",
                    "description": "Daily equipment rental cost, pro-rated over project days",
                    "type": "select",
                    "default": "handTools",
                    "calculationTier": 2,
                    "effectType": "daily_cost",
                    "options": {
                        "handTools": {"label": "Hand Tools Only (Baseline)", "value": 0},
                        "attachments": {"label": "Small Attachments", "value": 125},
                        "lightMachinery": {"label": "Light Machinery", "value": 250},
                        "heavyMachinery": {"label": "Heavy Machinery", "value": 350},
                    },
                },
            },
        },
        "siteAccess": {
            "label": "Site Access & Obstacles",
            "description": "Access difficulty and obstacle removal",
            "variables": {
                "accessDifficulty": {
                    "label": "Access Difficulty",
                    "description": "How hard it is to move material and crew on site",
                    "type": "select",
                    "default": "easy",
                    "calculationTier": 1,
                    "effectType": "labor_time_percentage",
                    "options": {
                        "easy": {"label": "Easy Access (Baseline)", "value": 0},
                        "moderate": {"label": "Moderate Access", "value": 50},
                        "difficult": {"label": "Difficult/Tight Access", "value": 100},
                    },
                },
                "obstacleRemoval": {
                    "label": "Obstacle Removal",
                    "description": "Flat fee for removing obstacles",
                    "type": "select",
                    "default": "none",
                    "calculationTier": 2,
                    "effectType": "flat_cost",
                    "options": {
                        "none": {"label": "No Obstacles (Baseline)", "value": 0},
                        "minor": {"label": "Minor Obstacles", "value": 500},
                        "major": {"label": "Major Obstacles", "value": 1500},
                    },
                },
            },
        },
        "materials": {
            "label": "Materials & Complexity",
            "description": "Paver style, cutting and pattern complexity",
            "variables": {
                "paverStyle": {
                    "label": "Paver Style",
                    "description": "Material grade",
                    "type": "select",
                    "default": "standard",
                    "calculationTier": 2,
                    "effectType": "material_cost_multiplier",
                    "options": {
                        "standard": {"label": "Standard Pavers", "multiplier": 1.0},
                        "premium": {"label": "Premium Pavers", "multiplier": 1.2},
                    },
                },
                "cuttingComplexity": {
                    "label": "Cutting Complexity",
                    "description": "Adds fixed labor hours (Tier 1) and material waste (Tier 2)",
                    "type": "select",
                    "default": "minimal",
                    "calculationTier": "both",
                    "effectType": "labor_and_waste",
                    "options": {
                        "minimal": {
                            "label": "Minimal Cutting (Baseline)",
                            "fixedLaborHours": 0,
                            "materialWaste": 0,
                        },
                        "moderate": {
                            "label": "Moderate Cutting",
                            "fixedLaborHours": 6,
                            "materialWaste": 15,
                        },
                        "complex": {
                            "label": "Complex Cutting",
                            "fixedLaborHours": 12,
                            "materialWaste": 25,
                        },
                    },
                },
                "patternComplexity": {
                    "label": "Pattern Complexity",
                    "description": "Extra material waste from the laying pattern",
                    "type": "select",
                    "default": "minimal",
                    "calculationTier": 2,
                    "effectType": "material_waste_percentage",
                    "options": {
                        "minimal": {"label": "Simple Pattern (Baseline)", "wastePercentage": 0},
                        "some": {"label": "Some Pattern Work", "wastePercentage": 10},
                        "extensive": {"label": "Extensive Pattern Work", "wastePercentage": 20},
                    },
                },
            },
        },
        "labor": {
            "label": "Labor & Team",
            "description": "Team size affects labor time",
            "variables": {
                "teamSize": {
                    "label": "Team Size",
                    "description": "Number of workers on the project",
                    "type": "select",
                    "default": "threePlus",
                    "calculationTier": 1,
                    "effectType": "labor_time_percentage",
                    "options": {
                        "threePlus": {"label": "3+ Person Team (Optimal)", "value": 0},
                        "twoPerson": {"label": "2 Person Team", "value": 40},
                    },
                },
            },
        },
        "complexity": {
            "label": "Overall Complexity",
            "description": "Multiplier applied to subtotal plus profit",
            "variables": {
                "overallComplexity": {
                    "label": "Overall Project Complexity",
                    "description": "Named tier or a numeric override",
                    "type": "select",
                    "default": "simple",
                    "calculationTier": 2,
                    "effectType": "total_multiplier",
                    "validation": {"min": 0.5, "max": 3.0, "step": 0.05},
                    "options": {
                        "simple": {"label": "Simple Project", "multiplier": 1.0},
                        "standard": {"label": "Standard Project", "multiplier": 1.1},
                        "complex": {"label": "Complex Project", "multiplier": 1.3},
                        "extreme": {"label": "Extreme Project", "multiplier": 1.5},
                    },
                },
            },
        },
    },
}


EXCAVATION_REMOVAL_TEMPLATE: Dict[str, Any] = {
    "serviceId": EXCAVATION_REMOVAL_SERVICE_ID,
    "displayName": "Excavation Removal",
    "category": "excavation",
    "unit": "sqft",
    "version": "1.0.0",
    "formulaType": "volume_based",
    "baseSettings": {
        "laborSettings": {
            "hourlyLaborRate": _setting(
                25.0, "$/cubic yard", "Base Rate per Cubic Yard",
                "Price charged per cubic yard removed", 1, 500, 1
            ),
            "optimalTeamSize": _setting(
                3, "people", "Crew Size",
                "Crew size the time estimate assumes", 1, 10, 1
            ),
        },
        "businessSettings": {
            "profitMarginTarget": _setting(
                0.05, "fraction", "Profit Margin",
                "Markup applied to the base cost", 0, 1, 0.01
            ),
        },
    },
    "variables": {
        "calculationSettings": {
            "label": "Calculation Settings",
            "description": "Depth, volume adjustments and rounding",
            "variables": {
                "defaultDepth": {
                    "label": "Default Depth",
                    "description": "Excavation depth used when a job does not give one (inches)",
                    "type": "slider",
                    "default": 11,
                    "calculationTier": 1,
                    "effectType": "default_depth",
                    "validation": {"min": 1, "max": 36, "step": 1},
                },
                "wasteFactor": {
                    "label": "Waste Factor",
                    "description": "Extra volume for spillage and over-dig (%)",
                    "type": "slider",
                    "default": 10,
                    "calculationTier": 1,
                    "effectType": "volume_percentage",
                    "validation": {"min": 0, "max": 50, "step": 1},
                },
                "compactionFactor": {
                    "label": "Compaction Factor",
                    "description": "Extra volume for soil expansion once dug (%)",
                    "type": "slider",
                    "default": 0,
                    "calculationTier": 1,
                    "effectType": "volume_percentage",
                    "validation": {"min": 0, "max": 30, "step": 1},
                },
                "roundingRule": {
                    "label": "Rounding Rule",
                    "description": "How the adjusted volume is rounded before pricing",
                    "type": "select",
                    "default": "up_whole",
                    "calculationTier": 1,
                    "effectType": "volume_rounding",
                    "options": {
                        "up_whole": {"label": "Round up to nearest whole yard"},
                        "up_half": {"label": "Round up to nearest 0.5 yard"},
                        "exact": {"label": "Use exact calculation"},
                    },
                },
            },
        },
    },
}


def paver_patio_template() -> ServiceConfig:
    """Fresh paver patio template config."""
    return ServiceConfig.model_validate(copy.deepcopy(PAVER_PATIO_TEMPLATE))


def excavation_removal_template() -> ServiceConfig:
    """Fresh excavation removal template config."""
    return ServiceConfig.model_validate(copy.deepcopy(EXCAVATION_REMOVAL_TEMPLATE))


TEMPLATES: Dict[str, Callable[[], ServiceConfig]] = {
    PAVER_PATIO_SERVICE_ID: paver_patio_template,
    EXCAVATION_REMOVAL_SERVICE_ID: excavation_removal_template,
}


def get_template(service_id: str) -> Optional[ServiceConfig]:
    """Return a fresh template for ``service_id``, or None if none is built in."""
    factory = TEMPLATES.get(service_id)
    return factory() if factory else None


def template_service_ids() -> List[str]:
    return sorted(TEMPLATES)
