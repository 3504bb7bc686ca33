"""Manual entry path.

``EstimateForm`` holds what an estimator has picked for one service: a
nested ``{category: {variable: option_key}}`` map seeded with the schema
defaults, plus the project quantity. Every edit is checked against the
schema immediately, so ``to_selection`` always yields a selection the
engine accepts.
"""

import math
from typing import Any, Dict, Optional

import structlog

from master_pricing.config.errors import (
    InvalidQuantity,
    UnknownVariableOption,
    ValidationError,
)
from master_pricing.models.calculation_result import CalculationResult
from master_pricing.models.selection import COMPLEXITY_PATH, VariableSelection
from master_pricing.models.service_config import ServiceConfig
from master_pricing.services.pricing_engine import calculate

logger = structlog.get_logger(__name__)

DEFAULT_QUANTITY = 100.0


class EstimateForm:
    """Form state for one service config."""

    def __init__(self, config: ServiceConfig, quantity: float = DEFAULT_QUANTITY):
        self.config = config
        self.values: Dict[str, Dict[str, Any]] = {}
        self.complexity_override: Optional[float] = None
        self.quantity = DEFAULT_QUANTITY
        self.set_quantity(quantity)
        self.reset_to_defaults()

    def update_value(self, category: str, variable: str, value: Any) -> None:
        """Set one variable.

        A number is only accepted for ``complexity.overallComplexity``,
        where it becomes a raw complexity multiplier.

        Raises:
            UnknownVariableOption: If the variable or option key is not in the schema.
            ValidationError: If a number is given where a key is expected.
        """
        path = f"{category}.{variable}"
        definition = self.config.find_variable(path)
        if definition is None:
            raise UnknownVariableOption(path, None if value is None else str(value))

        if isinstance(value, bool):
            raise ValidationError(message=f"Invalid value for '{path}'", field=path)
        if isinstance(value, (int, float)):
            if path != COMPLEXITY_PATH:
                raise ValidationError(
                    message=f"Variable '{path}' expects an option key, got a number",
                    field=path
                )
            if not math.isfinite(value) or value <= 0:
                raise ValidationError(message="Complexity multiplier must be positive", field=path)
            self.complexity_override = float(value)
            logger.debug("form_value_updated", path=path, value=value)
            return

        key = str(value)
        definition.option(path, key)
        self.values.setdefault(category, {})[variable] = key
        if path == COMPLEXITY_PATH:
            self.complexity_override = None
        logger.debug("form_value_updated", path=path, value=key)

    def set_quantity(self, quantity: float) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
            raise InvalidQuantity(quantity)
        if not math.isfinite(quantity) or quantity <= 0:
            raise InvalidQuantity(quantity)
        self.quantity = float(quantity)

    def reset_to_defaults(self) -> None:
        """Reset every variable to its documented default. Quantity is kept."""
        self.values = {}
        for path, key in self.config.default_choices().items():
            category, _, variable = path.partition(".")
            self.values.setdefault(category, {})[variable] = key
        self.complexity_override = None

    def reset_category(self, category: str) -> None:
        """Reset one category to its defaults."""
        group = self.config.variables.get(category)
        if group is None:
            raise UnknownVariableOption(category)
        self.values[category] = {
            name: definition.default
            for name, definition in group.variables.items()
            if isinstance(definition.default, str)
        }
        if category == COMPLEXITY_PATH.partition(".")[0]:
            self.complexity_override = None

    def apply_config(self, config: ServiceConfig) -> None:
        """Switch to a new config, keeping every choice it still accepts.

        Choices whose variable or option disappeared fall back to the new
        default.
        """
        previous = self.values
        override = self.complexity_override
        self.config = config
        self.reset_to_defaults()
        self.complexity_override = override
        dropped = []
        for category, variables in previous.items():
            for variable, key in variables.items():
                path = f"{category}.{variable}"
                definition = config.find_variable(path)
                if definition is not None and key in definition.options:
                    self.values.setdefault(category, {})[variable] = key
                else:
                    dropped.append(path)
        if dropped:
            logger.info("form_choices_reset", service_id=config.service_id, paths=dropped)

    def to_selection(self) -> VariableSelection:
        return VariableSelection.from_nested(self.values, complexity_override=self.complexity_override)

    def calculate(self) -> CalculationResult:
        """Price the current form state."""
        return calculate(self.config, self.to_selection(), self.quantity)
