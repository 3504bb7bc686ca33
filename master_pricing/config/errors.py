"""Master pricing error handling.

Custom exceptions and error codes for the pricing engine, config store
and cache.
"""

from typing import Optional, Dict, Any


# Error Codes
class ErrorCode:
    """Error code constants."""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"

    # Calculation Errors
    INVALID_QUANTITY = "INVALID_QUANTITY"
    UNKNOWN_VARIABLE_OPTION = "UNKNOWN_VARIABLE_OPTION"
    MISSING_BASE_SETTING = "MISSING_BASE_SETTING"

    # Config Store Errors
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_LOAD_FAILED = "CONFIG_LOAD_FAILED"
    CONFIG_SAVE_FAILED = "CONFIG_SAVE_FAILED"
    INVALID_CONFIG_DOCUMENT = "INVALID_CONFIG_DOCUMENT"

    # Entry point Errors
    REQUEST_FAILED = "REQUEST_FAILED"


class PricingError(Exception):
    """Base exception for pricing errors.

    Provides structured error information for API responses.

    Attributes:
        code: Error code from ErrorCode constants
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Initialize PricingError.

        Args:
            code: Error code from ErrorCode constants
            message: Human-readable error message
            details: Additional error context
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API response.

        Returns:
            Dictionary with code, message, and details.
        """
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(PricingError):
    """Validation-specific error."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details={**(details or {}), "field": field} if field else details
        )
        self.field = field


class InvalidQuantity(PricingError):
    """Raised when a calculation is requested for a non-positive quantity."""

    def __init__(self, quantity: Any):
        super().__init__(
            code=ErrorCode.INVALID_QUANTITY,
            message=f"Quantity must be a positive number, got {quantity!r}",
            details={"quantity": quantity}
        )
        self.quantity = quantity


class UnknownVariableOption(PricingError):
    """Raised when a selection references a variable or option the schema lacks.

    Attributes:
        category: Dotted variable path, e.g. ``excavation.tearoutComplexity``.
        key: The offending option key (None when the variable itself is unknown).
    """

    def __init__(self, category: str, key: Optional[str] = None):
        if key is None:
            message = f"Unknown variable '{category}'"
        else:
            message = f"Unknown option '{key}' for variable '{category}'"
        super().__init__(
            code=ErrorCode.UNKNOWN_VARIABLE_OPTION,
            message=message,
            details={"category": category, "key": key}
        )
        self.category = category
        self.key = key


class MissingBaseSetting(PricingError):
    """Raised when a config lacks a required numeric base setting."""

    def __init__(self, path: str, service_id: Optional[str] = None):
        super().__init__(
            code=ErrorCode.MISSING_BASE_SETTING,
            message=f"Missing required base setting '{path}'",
            details={"path": path, "service_id": service_id}
        )
        self.path = path


class ConfigLoadFailure(PricingError):
    """Config could not be read from the backend or resolved to a template."""

    def __init__(
        self,
        message: str,
        service_id: str,
        company_id: str,
        code: str = ErrorCode.CONFIG_LOAD_FAILED,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            details={**(details or {}), "service_id": service_id, "company_id": company_id}
        )
        self.service_id = service_id
        self.company_id = company_id


class ConfigSaveFailure(PricingError):
    """Config could not be persisted. The cache is left untouched."""

    def __init__(
        self,
        message: str,
        service_id: str,
        company_id: str,
        details: Optional[Dict] = None
    ):
        super().__init__(
            code=ErrorCode.CONFIG_SAVE_FAILED,
            message=message,
            details={**(details or {}), "service_id": service_id, "company_id": company_id}
        )
        self.service_id = service_id
        self.company_id = company_id
