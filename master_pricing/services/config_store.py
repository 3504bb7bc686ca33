"""Config store.

Single read and write path for per-company service configs.

Reads return the company's persisted document merged onto the built-in
template, or the template itself when the company never saved one. The
merge is leaf-scoped: a numeric override only replaces the setting at the
same dotted path, and a variable definition only replaces the variable at
the same ``category.variable`` path. Nothing merges across groups.

Writes validate, persist the whole document, evict the cache entry, then
publish a change event, in that order. A failed write does neither.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import structlog
from pydantic import ValidationError as SchemaError

from master_pricing.config.errors import (
    ConfigLoadFailure,
    ConfigSaveFailure,
    ErrorCode,
    ValidationError,
)
from master_pricing.models.service_config import (
    SETTING_GROUPS,
    BaseSetting,
    FormulaType,
    ServiceConfig,
    VariableCategory,
    VariableDefinition,
    VariableType,
)
from master_pricing.services.broadcaster import ConfigChangeBroadcaster
from master_pricing.services.config_backend import ConfigBackend, ConfigDocument
from master_pricing.services.config_cache import ConfigCacheManager
from master_pricing.services.templates import get_template

logger = structlog.get_logger(__name__)

REQUIRED_SETTINGS: Dict[str, Tuple[str, ...]] = {
    FormulaType.TWO_TIER.value: (
        "laborSettings.hourlyLaborRate",
        "laborSettings.optimalTeamSize",
        "laborSettings.baseProductivity",
        "laborSettings.hoursPerDay",
        "materialSettings.baseMaterialCost",
        "businessSettings.profitMarginTarget",
    ),
    FormulaType.VOLUME_BASED.value: (
        "laborSettings.hourlyLaborRate",
        "laborSettings.optimalTeamSize",
        "businessSettings.profitMarginTarget",
    ),
}

POSITIVE_SETTINGS: Dict[str, Tuple[str, ...]] = {
    FormulaType.TWO_TIER.value: (
        "laborSettings.optimalTeamSize",
        "laborSettings.baseProductivity",
        "laborSettings.hoursPerDay",
    ),
    FormulaType.VOLUME_BASED.value: (
        "laborSettings.hourlyLaborRate",
        "laborSettings.optimalTeamSize",
    ),
}

_SCALAR_FIELDS = {
    "displayName": "display_name",
    "category": "category",
    "unit": "unit",
    "version": "version",
    "formulaType": "formula_type",
    "lastModified": "last_modified",
    "modifiedBy": "modified_by",
}
_KNOWN_FIELDS = set(_SCALAR_FIELDS) | {"serviceId", "baseSettings", "variables"}


# =============================================================================
# CONVERSION HELPERS
# =============================================================================


def parse_number(raw: Any) -> float:
    """Coerce a stored numeric leaf to float.

    Accepts numbers, numeric strings and ``{"value": ...}`` wrappers.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(raw, Mapping) and "value" in raw:
        raw = raw["value"]
    if isinstance(raw, bool):
        raise ValueError(f"Expected a number, got {raw!r}")
    if isinstance(raw, (int, float)):
        number = float(raw)
    elif isinstance(raw, str):
        number = float(raw.strip())
    else:
        raise ValueError(f"Expected a number, got {raw!r}")
    if not math.isfinite(number):
        raise ValueError(f"Expected a finite number, got {raw!r}")
    return number


def flatten_settings(raw: Mapping[str, Any]) -> Iterable[Tuple[str, Any]]:
    """Yield ``(dotted_path, raw_value)`` pairs.

    Accepts the dotted form (``{"laborSettings.hourlyLaborRate": 25}``) and
    the grouped form (``{"laborSettings": {"hourlyLaborRate": 25}}``).
    """
    for key, value in raw.items():
        if "." in key:
            yield key, value
        elif key in SETTING_GROUPS and isinstance(value, Mapping):
            for name, leaf in value.items():
                yield f"{key}.{name}", leaf
        else:
            yield key, value


def merge_variable(existing: Optional[VariableDefinition], raw: Mapping[str, Any]) -> VariableDefinition:
    """Replace one variable definition, keeping unspecified fields of ``existing``.

    ``options`` is replaced as a whole when given.

    Raises:
        pydantic.ValidationError: If the merged definition is invalid.
    """
    base = existing.model_dump(by_alias=True, exclude_none=True) if existing else {}
    return VariableDefinition.model_validate({**base, **raw})


def validate_config(config: ServiceConfig) -> None:
    """Check a config is safe to price with.

    Raises:
        ValidationError: On an unknown formula type, a missing required
            setting, a setting outside its bounds, a select variable whose
            default is not one of its options, or a slider default outside
            its bounds.
    """
    try:
        formula = FormulaType(config.formula_type).value
    except ValueError as e:
        raise ValidationError(
            message=f"Unknown formula type '{config.formula_type}'",
            field="formulaType"
        ) from e

    settings = config.base_settings
    for path in REQUIRED_SETTINGS[formula]:
        if settings.get(path) is None:
            raise ValidationError(message=f"Missing required base setting '{path}'", field=path)

    for path in settings.leaf_paths():
        setting = settings.get(path)
        if not math.isfinite(setting.value):
            raise ValidationError(message=f"Setting '{path}' must be a finite number", field=path)
        if setting.validation is not None and not setting.validation.contains(setting.value):
            raise ValidationError(
                message=(
                    f"Setting '{path}' = {setting.value} outside "
                    f"[{setting.validation.min}, {setting.validation.max}]"
                ),
                field=path,
                details={"min": setting.validation.min, "max": setting.validation.max}
            )

    for path in POSITIVE_SETTINGS[formula]:
        if settings.get(path).value <= 0:
            raise ValidationError(message=f"Setting '{path}' must be positive", field=path)

    for path in config.variable_paths():
        definition = config.variable(path)
        if definition.type == VariableType.SELECT.value:
            if not definition.options:
                raise ValidationError(message=f"Variable '{path}' has no options", field=path)
            if definition.default not in definition.options:
                raise ValidationError(
                    message=f"Default '{definition.default}' of '{path}' is not one of its options",
                    field=path
                )
        elif isinstance(definition.default, str):
            raise ValidationError(message=f"Slider '{path}' needs a numeric default", field=path)
        elif definition.validation is not None and not definition.validation.contains(definition.default):
            raise ValidationError(
                message=(
                    f"Default {definition.default} of '{path}' outside "
                    f"[{definition.validation.min}, {definition.validation.max}]"
                ),
                field=path,
                details={"min": definition.validation.min, "max": definition.validation.max}
            )


def to_document(config: ServiceConfig) -> ConfigDocument:
    """Serialize a config into the stored document shape."""
    settings = config.base_settings
    dumped = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    document: ConfigDocument = {
        "serviceId": config.service_id,
        "displayName": config.display_name,
        "category": config.category,
        "unit": config.unit,
        "version": config.version,
        "formulaType": FormulaType(config.formula_type).value,
        "lastModified": config.last_modified,
        "modifiedBy": config.modified_by,
        "baseSettings": {path: settings.get(path).value for path in settings.leaf_paths()},
        "variables": dumped["variables"],
    }
    return document


# =============================================================================
# CONFIG STORE
# =============================================================================


class ConfigStore:
    """Reads and writes service configs through a backend.

    Args:
        backend: Document storage (Firestore or in-memory)
        cache: Cache manager to evict on save. Usually bound after
            construction because the cache loads through ``get``.
        broadcaster: Change broadcaster to publish on save
    """

    def __init__(
        self,
        backend: ConfigBackend,
        cache: Optional[ConfigCacheManager] = None,
        broadcaster: Optional[ConfigChangeBroadcaster] = None
    ):
        self._backend = backend
        self._cache = cache
        self._broadcaster = broadcaster

    def bind_cache(self, cache: ConfigCacheManager) -> None:
        self._cache = cache
        if self._broadcaster is None:
            self._broadcaster = cache.broadcaster

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    async def get(self, service_id: str, company_id: str) -> ServiceConfig:
        """Return the company config, or the built-in template.

        Raises:
            ValidationError: If an identifier is empty.
            ConfigLoadFailure: If the backend fails, the stored document is
                invalid, or the service is unknown (code CONFIG_NOT_FOUND).
        """
        _require_ids(service_id, company_id)
        try:
            document = await self._backend.read(service_id, company_id)
        except ConfigLoadFailure:
            raise
        except Exception as e:
            logger.error("config_read_failed", service_id=service_id, company_id=company_id, error=str(e))
            raise ConfigLoadFailure(
                message=f"Failed to load config: {str(e)}",
                service_id=service_id,
                company_id=company_id
            ) from e

        if document is None:
            template = get_template(service_id)
            if template is None:
                raise ConfigLoadFailure(
                    message=f"No configuration or template for service '{service_id}'",
                    service_id=service_id,
                    company_id=company_id,
                    code=ErrorCode.CONFIG_NOT_FOUND
                )
            logger.info("config_template_used", service_id=service_id, company_id=company_id)
            return template

        config = self.from_document(service_id, company_id, document)
        logger.info(
            "config_loaded",
            service_id=service_id,
            company_id=company_id,
            last_modified=config.last_modified
        )
        return config

    def from_document(self, service_id: str, company_id: str, document: Mapping[str, Any]) -> ServiceConfig:
        """Merge a stored document onto the service template.

        Raises:
            ConfigLoadFailure: If a value cannot be parsed or the result
                fails validation.
        """
        def invalid(message: str, **details) -> ConfigLoadFailure:
            logger.error("config_document_invalid", service_id=service_id, company_id=company_id, reason=message)
            return ConfigLoadFailure(
                message=message,
                service_id=service_id,
                company_id=company_id,
                code=ErrorCode.INVALID_CONFIG_DOCUMENT,
                details=details
            )

        stored_id = document.get("serviceId")
        if stored_id is not None and stored_id != service_id:
            raise invalid(f"Document belongs to service '{stored_id}'", stored_service_id=stored_id)

        template = get_template(service_id)
        strict = template is not None
        config = template or ServiceConfig(
            service_id=service_id,
            display_name=str(document.get("displayName") or service_id)
        )

        for key in document:
            if key not in _KNOWN_FIELDS:
                logger.warning("config_field_ignored", service_id=service_id, company_id=company_id, field=key)

        for doc_key, attr in _SCALAR_FIELDS.items():
            value = document.get(doc_key)
            if value is not None:
                setattr(config, attr, str(value))

        for path, raw in flatten_settings(document.get("baseSettings") or {}):
            setting = config.base_settings.get(path)
            try:
                value = parse_number(raw)
            except ValueError as e:
                raise invalid(f"Setting '{path}': {e}", path=path) from e
            if setting is not None:
                setting.value = value
                continue
            group_name, _, name = path.partition(".")
            if strict or group_name not in SETTING_GROUPS or not name:
                logger.warning("config_setting_ignored", service_id=service_id, company_id=company_id, path=path)
                continue
            config.base_settings.group(group_name)[name] = BaseSetting(value=value)

        for category_name, raw_category in (document.get("variables") or {}).items():
            if not isinstance(raw_category, Mapping):
                raise invalid(f"Variable category '{category_name}' must be an object", category=category_name)
            category = config.variables.get(category_name)
            if category is None:
                if strict:
                    logger.warning(
                        "config_category_ignored",
                        service_id=service_id,
                        company_id=company_id,
                        category=category_name
                    )
                    continue
                category = VariableCategory()
                config.variables[category_name] = category
            for attr in ("label", "description"):
                if isinstance(raw_category.get(attr), str):
                    setattr(category, attr, raw_category[attr])

            for variable_name, raw_definition in (raw_category.get("variables") or {}).items():
                path = f"{category_name}.{variable_name}"
                existing = category.variables.get(variable_name)
                if existing is None and strict:
                    logger.warning("config_variable_ignored", service_id=service_id, company_id=company_id, path=path)
                    continue
                if not isinstance(raw_definition, Mapping):
                    raise invalid(f"Variable '{path}' must be an object", path=path)
                try:
                    category.variables[variable_name] = merge_variable(existing, raw_definition)
                except SchemaError as e:
                    raise invalid(f"Variable '{path}' is invalid: {e.error_count()} error(s)", path=path) from e

        try:
            validate_config(config)
        except ValidationError as e:
            raise invalid(e.message, field=e.field) from e
        return config

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    async def save(
        self,
        service_id: str,
        company_id: str,
        config: ServiceConfig,
        actor: str
    ) -> ServiceConfig:
        """Persist ``config``, evict the cache entry, then publish.

        Returns:
            The saved config, stamped with lastModified and modifiedBy.

        Raises:
            ValidationError: On bad identifiers or an invalid config.
            ConfigSaveFailure: If the backend write fails. Nothing is
                evicted or published in that case.
        """
        _require_ids(service_id, company_id)
        if not actor:
            raise ValidationError(message="actor is required", field="actor")
        if config.service_id != service_id:
            raise ValidationError(
                message=f"Config is for service '{config.service_id}', not '{service_id}'",
                field="serviceId"
            )
        validate_config(config)

        stamped = config.model_copy(
            deep=True,
            update={
                "last_modified": datetime.now(timezone.utc).isoformat(),
                "modified_by": actor,
            }
        )
        try:
            await self._backend.write(service_id, company_id, to_document(stamped))
        except ConfigSaveFailure:
            logger.error("config_save_failed", service_id=service_id, company_id=company_id)
            raise
        except Exception as e:
            logger.error("config_save_failed", service_id=service_id, company_id=company_id, error=str(e))
            raise ConfigSaveFailure(
                message=f"Failed to save config: {str(e)}",
                service_id=service_id,
                company_id=company_id
            ) from e

        if self._cache is not None:
            self._cache.invalidate(service_id, company_id)
        logger.info("config_saved", service_id=service_id, company_id=company_id, actor=actor)
        if self._broadcaster is not None:
            self._broadcaster.publish(service_id, company_id, stamped, actor=actor)
        return stamped

    async def update_settings(
        self,
        service_id: str,
        company_id: str,
        overrides: Mapping[str, Any],
        actor: str,
        variables: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> ServiceConfig:
        """Apply a partial admin edit and save it.

        Args:
            overrides: Dotted setting path (or grouped form) to new value
            variables: ``{category: {variable: partial definition}}``

        Raises:
            ValidationError: On unknown or read-only settings, unknown
                variables, or values that do not parse.
        """
        current = await self.get(service_id, company_id)
        updated = current.model_copy(deep=True)

        for path, raw in flatten_settings(overrides or {}):
            setting = updated.base_settings.get(path)
            if setting is None:
                raise ValidationError(message=f"Unknown base setting '{path}'", field=path)
            if not setting.admin_editable:
                raise ValidationError(message=f"Setting '{path}' is not editable", field=path)
            try:
                setting.value = parse_number(raw)
            except ValueError as e:
                raise ValidationError(message=f"Setting '{path}': {e}", field=path) from e

        for category_name, raw_variables in (variables or {}).items():
            category = updated.variables.get(category_name)
            if category is None or not isinstance(raw_variables, Mapping):
                raise ValidationError(message=f"Unknown variable category '{category_name}'", field=category_name)
            for variable_name, raw_definition in raw_variables.items():
                path = f"{category_name}.{variable_name}"
                existing = category.variables.get(variable_name)
                if existing is None or not isinstance(raw_definition, Mapping):
                    raise ValidationError(message=f"Unknown variable '{path}'", field=path)
                try:
                    category.variables[variable_name] = merge_variable(existing, raw_definition)
                except SchemaError as e:
                    raise ValidationError(
                        message=f"Variable '{path}' is invalid",
                        field=path,
                        details={"errors": e.error_count()}
                    ) from e

        return await self.save(service_id, company_id, updated, actor)

    async def reset_to_template(self, service_id: str, company_id: str, actor: str) -> ServiceConfig:
        """Overwrite the company config with the built-in template."""
        template = get_template(service_id)
        if template is None:
            raise ValidationError(message=f"No template for service '{service_id}'", field="serviceId")
        return await self.save(service_id, company_id, template, actor)


def _require_ids(service_id: str, company_id: str) -> None:
    if not service_id:
        raise ValidationError(message="serviceId is required", field="serviceId")
    if not company_id:
        raise ValidationError(message="companyId is required", field="companyId")
