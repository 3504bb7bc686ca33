"""Cloud Function entry points for the Master Pricing Engine.

Provides HTTP endpoints for:
- Calculating a price from structured variables
- Pricing an excavation removal job by volume
- Estimating a price from a free-text project description
- Reading a company's service pricing config
- Updating a company's service pricing config
"""

import asyncio
import json
import math
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from firebase_functions import https_fn, options

from master_pricing.config.errors import (
    ConfigLoadFailure,
    ErrorCode,
    InvalidQuantity,
    PricingError,
    UnknownVariableOption,
    ValidationError,
)
from master_pricing.config.settings import settings
from master_pricing.models.selection import VariableSelection
from master_pricing.services.config_store import to_document
from master_pricing.services.pricing_service import PricingService, build_pricing_service
from master_pricing.services.templates import EXCAVATION_REMOVAL_SERVICE_ID
from master_pricing.services.text_extraction import validate_extraction
from master_pricing.utils.logging_config import configure_logging

configure_logging()
logger = structlog.get_logger(__name__)

_service: Optional[PricingService] = None


def get_pricing_service() -> PricingService:
    """Build the pricing service on first use (Firestore backend)."""
    global _service
    if _service is None:
        _service = build_pricing_service()
    return _service


# ============================================================================
# Helper Functions
# ============================================================================


def success_response(data: Dict[str, Any]) -> Dict[str, Any]:
    """Build success response."""
    return {"success": True, "data": data}


def error_response(code: str, message: str, details: Dict[str, Any] = None) -> Dict[str, Any]:
    """Build error response."""
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {}
        }
    }


def get_request_json(req: https_fn.Request) -> Dict[str, Any]:
    """Extract JSON from request body.

    Raises:
        ValidationError: If JSON is invalid.
    """
    try:
        data = req.get_json(force=True) or {}
    except Exception as e:
        raise ValidationError(
            message=f"Invalid JSON in request body: {str(e)}"
        )
    if not isinstance(data, dict):
        raise ValidationError(message="Request body must be a JSON object")
    return data


def _require(data: Dict[str, Any], field: str) -> Any:
    value = data.get(field)
    if value in (None, ""):
        raise ValidationError(message=f"Missing {field} in request", field=field)
    return value


def _service_id(data: Dict[str, Any]) -> str:
    return data.get("serviceId") or settings.default_service_id


def _parse_quantity(raw: Any) -> float:
    if isinstance(raw, bool):
        raise InvalidQuantity(raw)
    try:
        quantity = float(raw)
    except (TypeError, ValueError):
        raise InvalidQuantity(raw)
    if not math.isfinite(quantity) or quantity <= 0:
        raise InvalidQuantity(raw)
    return quantity


def _parse_override(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError(message="complexityOverride must be a number", field="complexityOverride")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValidationError(message="complexityOverride must be a number", field="complexityOverride")


def _status_for(error: PricingError) -> int:
    if isinstance(error, (ValidationError, InvalidQuantity, UnknownVariableOption)):
        return 400
    if isinstance(error, ConfigLoadFailure) and error.code == ErrorCode.CONFIG_NOT_FOUND:
        return 404
    return 500


# ============================================================================
# Request handlers (async, testable without the Functions runtime)
# ============================================================================


async def calculate_price_async(service: PricingService, data: Dict[str, Any]) -> Dict[str, Any]:
    """Price a structured variable selection.

    Request body:
    {
        "companyId": "company-123",
        "serviceId": "paver_patio_sqft",   // Optional
        "quantity": 400,
        "variables": {"excavation": {"tearoutComplexity": "concrete"}, ...},
        "complexityOverride": 1.2          // Optional
    }
    """
    company_id = _require(data, "companyId")
    quantity = _parse_quantity(_require(data, "quantity"))
    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        raise ValidationError(message="variables must be an object", field="variables")
    selection = VariableSelection.parse(
        variables,
        complexity_override=_parse_override(data.get("complexityOverride"))
    )
    result = await service.quote(_service_id(data), company_id, selection, quantity)
    return result.to_display_dict()


async def calculate_excavation_async(service: PricingService, data: Dict[str, Any]) -> Dict[str, Any]:
    """Price an excavation removal job by volume.

    Request body:
    {
        "companyId": "company-123",
        "serviceId": "excavation_removal",   // Optional
        "areaSqft": 1200,
        "depthInches": 12,                   // Optional, config default otherwise
        "roundingRule": "up_half"            // Optional
    }
    """
    company_id = _require(data, "companyId")
    area = _parse_quantity(_require(data, "areaSqft"))
    depth = data.get("depthInches")
    if depth is not None:
        if isinstance(depth, bool):
            raise ValidationError(message="depthInches must be a number", field="depthInches")
        try:
            depth = float(depth)
        except (TypeError, ValueError) as e:
            raise ValidationError(message="depthInches must be a number", field="depthInches") from e
    rounding_rule = data.get("roundingRule")
    if rounding_rule is not None and not isinstance(rounding_rule, str):
        raise ValidationError(message="roundingRule must be a string", field="roundingRule")
    result = await service.quote_excavation(
        data.get("serviceId") or EXCAVATION_REMOVAL_SERVICE_ID,
        company_id,
        area,
        depth_inches=depth,
        rounding_rule=rounding_rule
    )
    return result.to_display_dict()


async def estimate_from_text_async(service: PricingService, data: Dict[str, Any]) -> Dict[str, Any]:
    """Extract variables from a message, then price them like a form submission.

    Request body:
    {
        "companyId": "company-123",
        "serviceId": "paver_patio_sqft",   // Optional
        "message": "20x20 patio, remove old concrete, tight side gate",
        "defaultQuantity": 100             // Optional
    }
    """
    company_id = _require(data, "companyId")
    message = _require(data, "message")
    default_quantity = _parse_quantity(data.get("defaultQuantity", 100))
    extraction, result = await service.quote_from_text(
        _service_id(data),
        company_id,
        str(message),
        default_quantity=default_quantity
    )
    validation = validate_extraction(extraction)
    return {
        **result.to_display_dict(),
        "extraction": {
            "quantity": extraction.quantity,
            "variables": extraction.selection.to_nested(),
            "confidence": round(extraction.confidence, 3),
            "extracted": extraction.extracted,
            "defaultsUsed": extraction.defaults_used,
            "complexityScore": round(extraction.complexity_score, 2),
            "isValid": validation.is_valid,
            "clarifyingQuestions": validation.clarifying_questions,
        },
    }


async def get_service_config_async(service: PricingService, data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the resolved config document for a company."""
    company_id = _require(data, "companyId")
    config = await service.get_config(_service_id(data), company_id)
    return to_document(config)


async def update_service_config_async(service: PricingService, data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply an admin edit to a company's config.

    Request body:
    {
        "companyId": "company-123",
        "serviceId": "paver_patio_sqft",   // Optional
        "userId": "user-123",
        "settings": {"laborSettings.hourlyLaborRate": 30},
        "variables": {"siteAccess": {"accessDifficulty": {"options": {...}}}}
    }
    """
    company_id = _require(data, "companyId")
    user_id = _require(data, "userId")
    overrides = data.get("settings") or {}
    variables = data.get("variables")
    if not isinstance(overrides, dict):
        raise ValidationError(message="settings must be an object", field="settings")
    if variables is not None and not isinstance(variables, dict):
        raise ValidationError(message="variables must be an object", field="variables")
    if not overrides and not variables:
        raise ValidationError(message="Nothing to update", field="settings")

    saved = await service.store.update_settings(
        _service_id(data),
        company_id,
        overrides,
        actor=user_id,
        variables=variables
    )
    await service.aclose()
    return to_document(saved)


def _handle(
    req: https_fn.Request,
    handler: Callable[[PricingService, Dict[str, Any]], Awaitable[Dict[str, Any]]],
    operation: str
) -> https_fn.Response:
    """Shared request flow: CORS preflight, JSON parse, run, map errors."""
    if req.method == "OPTIONS":
        return _cors_response()

    try:
        data = get_request_json(req)
        result = asyncio.run(handler(get_pricing_service(), data))
        return _json_response(success_response(result))

    except PricingError as e:
        status = _status_for(e)
        if status >= 500:
            logger.error(f"{operation}_error", error=e.message, code=e.code)
        else:
            logger.info(f"{operation}_rejected", error=e.message, code=e.code)
        return _json_response(
            error_response(e.code, e.message, e.details),
            status=status
        )
    except Exception as e:
        logger.exception(f"{operation}_exception", error=str(e))
        return _json_response(
            error_response(
                ErrorCode.REQUEST_FAILED,
                f"Failed to {operation.replace('_', ' ')}: {str(e)}"
            ),
            status=500
        )


# ============================================================================
# Pricing Entry Points
# ============================================================================


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def calculate_price(req: https_fn.Request) -> https_fn.Response:
    """Calculate a price from structured variables."""
    return _handle(req, calculate_price_async, "calculate_price")


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def calculate_excavation(req: https_fn.Request) -> https_fn.Response:
    """Price an excavation removal job by volume."""
    return _handle(req, calculate_excavation_async, "calculate_excavation")


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def estimate_from_text(req: https_fn.Request) -> https_fn.Response:
    """Calculate a price from a free-text project description."""
    return _handle(req, estimate_from_text_async, "estimate_from_text")


@https_fn.on_request(
    timeout_sec=30,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def get_service_config(req: https_fn.Request) -> https_fn.Response:
    """Return a company's service pricing config."""
    return _handle(req, get_service_config_async, "get_service_config")


@https_fn.on_request(
    timeout_sec=60,
    memory=options.MemoryOption.MB_256,
    region="us-central1"
)
def update_service_config(req: https_fn.Request) -> https_fn.Response:
    """Update a company's service pricing config."""
    return _handle(req, update_service_config_async, "update_service_config")


# ============================================================================
# CORS Helpers
# ============================================================================


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "3600"
}


def _cors_response() -> https_fn.Response:
    """Return CORS preflight response."""
    return https_fn.Response(
        "",
        status=204,
        headers=CORS_HEADERS
    )


def _json_response(data: dict, status: int = 200) -> https_fn.Response:
    """Return JSON response with CORS headers."""

    def _json_default(o: Any):
        # Firestore timestamps behave like datetimes but are not JSON serializable.
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return str(o)

    return https_fn.Response(
        json.dumps(data, default=_json_default),
        status=status,
        mimetype="application/json",
        headers=CORS_HEADERS
    )
