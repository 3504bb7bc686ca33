"""Master pricing configuration.

This package contains:
- settings: Environment variables and configuration
- errors: Custom exceptions and error codes
"""

from master_pricing.config.settings import settings
from master_pricing.config.errors import (
    ErrorCode,
    PricingError,
    ValidationError,
    InvalidQuantity,
    UnknownVariableOption,
    MissingBaseSetting,
    ConfigLoadFailure,
    ConfigSaveFailure,
)

__all__ = [
    "settings",
    "ErrorCode",
    "PricingError",
    "ValidationError",
    "InvalidQuantity",
    "UnknownVariableOption",
    "MissingBaseSetting",
    "ConfigLoadFailure",
    "ConfigSaveFailure",
]
