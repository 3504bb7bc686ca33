"""Variable selection model.

The canonical input object of a calculation. Both the manual form and the
text extraction producer build one of these; the engine treats it as
immutable input.
"""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from master_pricing.config.errors import ValidationError

COMPLEXITY_PATH = "complexity.overallComplexity"


class VariableSelection(BaseModel):
    """Flat mapping of variable path to chosen option key.

    ``complexity_override`` is a raw numeric multiplier that replaces the
    named complexity tier when supplied.
    """

    choices: Dict[str, str] = Field(default_factory=dict)
    complexity_override: Optional[float] = Field(default=None, alias="complexityOverride")

    class Config:
        frozen = True
        populate_by_name = True
        extra = "forbid"

    @field_validator("choices")
    @classmethod
    def validate_paths(cls, value: Dict[str, str]) -> Dict[str, str]:
        """Ensure every key is a ``category.variable`` path."""
        for path in value:
            category, _, variable = path.partition(".")
            if not category or not variable:
                raise ValueError(f"Variable path must look like 'category.variable', got {path!r}")
        return dict(value)

    @classmethod
    def from_nested(
        cls,
        values: Mapping[str, Any],
        complexity_override: Optional[float] = None
    ) -> "VariableSelection":
        """Build a selection from ``{category: {variable: key}}``.

        A number given for ``complexity.overallComplexity`` becomes the
        complexity override unless one is passed explicitly.

        Raises:
            ValidationError: If the mapping has the wrong shape.
        """
        flat: Dict[str, Any] = {}
        for category, variables in values.items():
            if not isinstance(variables, Mapping):
                raise ValidationError(
                    message=f"Category '{category}' must map variable names to option keys",
                    field=str(category)
                )
            for variable, value in variables.items():
                flat[f"{category}.{variable}"] = value
        return cls.from_flat(flat, complexity_override=complexity_override)

    @classmethod
    def from_flat(
        cls,
        values: Mapping[str, Any],
        complexity_override: Optional[float] = None
    ) -> "VariableSelection":
        """Build a selection from ``{"category.variable": key}``."""
        choices: Dict[str, str] = {}
        override = complexity_override
        for path, value in values.items():
            if value is None:
                continue
            if isinstance(value, bool):
                raise ValidationError(message=f"Invalid value for '{path}'", field=path)
            if isinstance(value, (int, float)):
                if path != COMPLEXITY_PATH:
                    raise ValidationError(
                        message=f"Variable '{path}' expects an option key, got a number",
                        field=path
                    )
                if override is None:
                    override = float(value)
                continue
            choices[path] = str(value)
        try:
            return cls(choices=choices, complexity_override=override)
        except ValueError as e:
            raise ValidationError(message=str(e), field="variables")

    @classmethod
    def parse(
        cls,
        values: Optional[Mapping[str, Any]],
        complexity_override: Optional[float] = None
    ) -> "VariableSelection":
        """Accept either the nested or the flat form (request payloads)."""
        if not values:
            return cls(complexity_override=complexity_override)
        if all(isinstance(v, Mapping) for v in values.values()):
            return cls.from_nested(values, complexity_override=complexity_override)
        return cls.from_flat(values, complexity_override=complexity_override)

    def get(self, path: str) -> Optional[str]:
        return self.choices.get(path)

    def with_choice(self, path: str, key: str) -> "VariableSelection":
        """Return a new selection with one choice replaced."""
        return VariableSelection(
            choices={**self.choices, path: key},
            complexity_override=self.complexity_override
        )

    def with_complexity_override(self, value: Optional[float]) -> "VariableSelection":
        return VariableSelection(choices=dict(self.choices), complexity_override=value)

    def to_nested(self) -> Dict[str, Dict[str, Any]]:
        """Inverse of ``from_nested``."""
        nested: Dict[str, Dict[str, Any]] = {}
        for path, key in sorted(self.choices.items()):
            category, _, variable = path.partition(".")
            nested.setdefault(category, {})[variable] = key
        if self.complexity_override is not None:
            category, _, variable = COMPLEXITY_PATH.partition(".")
            nested.setdefault(category, {})[variable] = self.complexity_override
        return nested

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON transport."""
        return self.model_dump(by_alias=True)
