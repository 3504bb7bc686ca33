"""Pricing service wiring and sessions.

``build_pricing_service`` constructs one isolated set of collaborators
(backend, config store, cache manager, broadcaster) and returns the
``PricingService`` facade the entry points use. Instances that share a
backend stay coherent through the backend watch: a save through one
evicts (and, for live sessions, recomputes) in the others. Nothing here is a
process-wide singleton; tests build their own instance per case.
"""

import inspect
import os
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

import firebase_admin
import structlog

from master_pricing.config.errors import PricingError
from master_pricing.config.settings import settings
from master_pricing.models.calculation_result import CalculationResult, ExcavationResult
from master_pricing.models.selection import VariableSelection
from master_pricing.models.service_config import ServiceConfig
from master_pricing.services.broadcaster import ConfigChangeBroadcaster, ConfigChangeEvent
from master_pricing.services.config_backend import ConfigBackend, FirestoreConfigBackend
from master_pricing.services.config_cache import ConfigCacheManager
from master_pricing.services.config_store import ConfigStore
from master_pricing.services.form_store import DEFAULT_QUANTITY, EstimateForm
from master_pricing.services.pricing_engine import calculate, calculate_excavation
from master_pricing.services.text_extraction import ExtractionResult, extract_variables

logger = structlog.get_logger(__name__)

ResultCallback = Callable[[CalculationResult], Union[None, Awaitable[Any]]]


class PricingService:
    """Facade over the config cache and the calculation engine."""

    def __init__(
        self,
        store: ConfigStore,
        cache: ConfigCacheManager,
        broadcaster: ConfigChangeBroadcaster
    ):
        self.store = store
        self.cache = cache
        self.broadcaster = broadcaster

    async def get_config(self, service_id: str, company_id: str) -> ServiceConfig:
        return await self.cache.resolve(service_id, company_id)

    async def quote(
        self,
        service_id: str,
        company_id: str,
        selection: VariableSelection,
        quantity: float
    ) -> CalculationResult:
        """Resolve the current config and price one selection."""
        config = await self.cache.resolve(service_id, company_id)
        result = calculate(config, selection, quantity)
        logger.info(
            "quote_calculated",
            service_id=service_id,
            company_id=company_id,
            quantity=result.quantity,
            total=round(result.total, 2)
        )
        return result

    async def quote_excavation(
        self,
        service_id: str,
        company_id: str,
        area_sqft: float,
        depth_inches: Optional[float] = None,
        rounding_rule: Optional[str] = None
    ) -> ExcavationResult:
        """Resolve the current config and price a volume-based removal job."""
        config = await self.cache.resolve(service_id, company_id)
        result = calculate_excavation(config, area_sqft, depth_inches=depth_inches, rounding_rule=rounding_rule)
        logger.info(
            "excavation_quote_calculated",
            service_id=service_id,
            company_id=company_id,
            cubic_yards=result.cubic_yards_final,
            total=round(result.total, 2)
        )
        return result

    async def quote_from_text(
        self,
        service_id: str,
        company_id: str,
        message: str,
        default_quantity: float = DEFAULT_QUANTITY
    ) -> Tuple[ExtractionResult, CalculationResult]:
        """Extract a selection from free text and price it like any other."""
        config = await self.cache.resolve(service_id, company_id)
        extraction = extract_variables(message, default_quantity=default_quantity, config=config)
        result = calculate(config, extraction.selection, extraction.quantity)
        logger.info(
            "text_quote_calculated",
            service_id=service_id,
            company_id=company_id,
            confidence=round(extraction.confidence, 3),
            total=round(result.total, 2)
        )
        return extraction, result

    async def open_form(
        self,
        service_id: str,
        company_id: str,
        quantity: float = DEFAULT_QUANTITY
    ) -> EstimateForm:
        config = await self.cache.resolve(service_id, company_id)
        return EstimateForm(config, quantity=quantity)

    def open_session(
        self,
        service_id: str,
        company_id: str,
        on_result: Optional[ResultCallback] = None
    ) -> "PricingSession":
        return PricingSession(self, service_id, company_id, on_result=on_result)

    async def aclose(self) -> None:
        """Wait for in-flight change notifications."""
        await self.broadcaster.drain()

    def close(self) -> None:
        """Stop watching the backend for changes made elsewhere."""
        self.cache.close()


class PricingSession:
    """A live quote for one (service, company) pair.

    Remembers the last selection and quantity it priced and recomputes
    them whenever the config changes, handing the new result to
    ``on_result``.
    """

    def __init__(
        self,
        service: PricingService,
        service_id: str,
        company_id: str,
        on_result: Optional[ResultCallback] = None
    ):
        self.service = service
        self.service_id = service_id
        self.company_id = company_id
        self.on_result = on_result
        self.last_selection: Optional[VariableSelection] = None
        self.last_quantity: Optional[float] = None
        self.last_result: Optional[CalculationResult] = None
        self.last_error: Optional[PricingError] = None
        self.closed = False
        self._unsubscribe = service.cache.subscribe(service_id, company_id, self._on_config_change)

    async def calculate(self, selection: VariableSelection, quantity: float) -> CalculationResult:
        result = await self.service.quote(self.service_id, self.company_id, selection, quantity)
        self.last_selection = selection
        self.last_quantity = quantity
        self.last_result = result
        self.last_error = None
        return result

    async def _on_config_change(self, event: ConfigChangeEvent) -> None:
        if self.closed or self.last_selection is None:
            return
        logger.info(
            "session_recompute",
            service_id=self.service_id,
            company_id=self.company_id,
            actor=event.actor
        )
        try:
            result = await self.calculate(self.last_selection, self.last_quantity)
        except PricingError as e:
            # The new config rejects the old selection; keep the error for the caller.
            logger.warning(
                "session_recompute_failed",
                service_id=self.service_id,
                company_id=self.company_id,
                code=e.code,
                error=e.message
            )
            self.last_error = e
            return
        if self.on_result is not None:
            outcome = self.on_result(result)
            if inspect.isawaitable(outcome):
                await outcome

    def close(self) -> None:
        """Stop listening for config changes. Idempotent."""
        self.closed = True
        self._unsubscribe()

    async def __aenter__(self) -> "PricingSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


def _ensure_app() -> None:
    """Initialize the Firebase Admin SDK once per process."""
    if firebase_admin._apps:
        return
    if settings.is_emulator_mode:
        os.environ.setdefault("FIRESTORE_EMULATOR_HOST", settings.firestore_emulator_host)
    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
    firebase_admin.initialize_app(options=options)
    logger.info("firebase_initialized", emulator=settings.is_emulator_mode)


def build_pricing_service(backend: Optional[ConfigBackend] = None) -> PricingService:
    """Construct a PricingService with its own store, cache and broadcaster.

    Args:
        backend: Config document backend. Defaults to Firestore, which
            initializes the Firebase Admin SDK on first use.
    """
    if backend is None:
        _ensure_app()
        backend = FirestoreConfigBackend()
    broadcaster = ConfigChangeBroadcaster()
    store = ConfigStore(backend, broadcaster=broadcaster)
    cache = ConfigCacheManager(
        store.get,
        broadcaster=broadcaster,
        watcher=backend.watch,
        ttl_seconds=settings.config_cache_ttl_seconds
    )
    store.bind_cache(cache)
    return PricingService(store=store, cache=cache, broadcaster=broadcaster)
