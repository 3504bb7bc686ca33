"""Unit tests for PricingService wiring and live pricing sessions."""

import pytest
from unittest.mock import MagicMock, patch

from master_pricing.config.errors import UnknownVariableOption
from master_pricing.models.selection import VariableSelection
from master_pricing.services import pricing_service as pricing_service_module
from master_pricing.services.config_backend import FirestoreConfigBackend
from master_pricing.services.pricing_service import build_pricing_service
from tests.fixtures.mock_config_documents import COMPANY_ID, SERVICE_ID


class TestBuildPricingService:
    """Tests for build_pricing_service."""

    def test_collaborators_are_shared(self, memory_backend):
        service = build_pricing_service(backend=memory_backend)

        assert service.cache.broadcaster is service.broadcaster
        assert service.store._cache is service.cache
        assert service.store._broadcaster is service.broadcaster

    def test_instances_are_isolated(self, memory_backend):
        first = build_pricing_service(backend=memory_backend)
        second = build_pricing_service(backend=memory_backend)

        assert first.cache is not second.cache
        assert first.broadcaster is not second.broadcaster

    def test_default_backend_is_firestore(self):
        with patch.object(pricing_service_module.firebase_admin, "_apps", {}), \
                patch.object(pricing_service_module.firebase_admin, "initialize_app") as init:
            service = build_pricing_service()

        init.assert_called_once()
        assert isinstance(service.store._backend, FirestoreConfigBackend)

    def test_existing_app_reused(self):
        with patch.object(pricing_service_module.firebase_admin, "_apps", {"[DEFAULT]": MagicMock()}), \
                patch.object(pricing_service_module.firebase_admin, "initialize_app") as init:
            build_pricing_service()

        init.assert_not_called()


class TestPricingSession:
    """Sessions recompute when the config they price against changes."""

    @pytest.mark.asyncio
    async def test_recomputes_after_save(self, pricing_service, worked_example_selection):
        results = []
        session = pricing_service.open_session(SERVICE_ID, COMPANY_ID, on_result=results.append)

        first = await session.calculate(worked_example_selection, 100)
        await pricing_service.store.update_settings(
            SERVICE_ID, COMPANY_ID, {"laborSettings.hourlyLaborRate": 35}, actor="admin-1"
        )
        await pricing_service.aclose()

        assert first.tier2.labor_cost == pytest.approx(2160.0)
        assert len(results) == 1
        assert results[0].tier2.labor_cost == pytest.approx(3024.0)
        assert session.last_result is results[0]

    @pytest.mark.asyncio
    async def test_async_result_callback(self, pricing_service, worked_example_selection):
        results = []

        async def on_result(result):
            results.append(result)

        async with pricing_service.open_session(SERVICE_ID, COMPANY_ID, on_result=on_result) as session:
            await session.calculate(worked_example_selection, 100)
            await pricing_service.store.update_settings(
                SERVICE_ID, COMPANY_ID, {"businessSettings.profitMarginTarget": 0.2}, actor="admin-1"
            )
            await pricing_service.aclose()

        assert len(results) == 1
        assert results[0].tier2.profit_margin == 0.2

    @pytest.mark.asyncio
    async def test_nothing_to_recompute_before_first_quote(self, pricing_service):
        results = []
        pricing_service.open_session(SERVICE_ID, COMPANY_ID, on_result=results.append)

        await pricing_service.store.update_settings(
            SERVICE_ID, COMPANY_ID, {"laborSettings.hourlyLaborRate": 35}, actor="admin-1"
        )
        await pricing_service.aclose()

        assert results == []

    @pytest.mark.asyncio
    async def test_closed_session_stops_listening(self, pricing_service, worked_example_selection):
        results = []
        session = pricing_service.open_session(SERVICE_ID, COMPANY_ID, on_result=results.append)
        await session.calculate(worked_example_selection, 100)

        session.close()
        session.close()
        await pricing_service.store.update_settings(
            SERVICE_ID, COMPANY_ID, {"laborSettings.hourlyLaborRate": 35}, actor="admin-1"
        )
        await pricing_service.aclose()

        assert results == []
        assert pricing_service.broadcaster.subscriber_count(SERVICE_ID, COMPANY_ID) == 0

    @pytest.mark.asyncio
    async def test_selection_rejected_by_new_config(self, pricing_service):
        results = []
        session = pricing_service.open_session(SERVICE_ID, COMPANY_ID, on_result=results.append)
        await session.calculate(VariableSelection(choices={"siteAccess.accessDifficulty": "difficult"}), 100)

        await pricing_service.store.update_settings(
            SERVICE_ID,
            COMPANY_ID,
            {},
            actor="admin-1",
            variables={"siteAccess": {"accessDifficulty": {"options": {
                "easy": {"label": "Easy Access", "value": 0},
                "moderate": {"label": "Moderate Access", "value": 50},
            }}}}
        )
        await pricing_service.aclose()

        assert results == []
        assert isinstance(session.last_error, UnknownVariableOption)


class TestQuoteFromText:
    """Tests for PricingService.quote_from_text."""

    @pytest.mark.asyncio
    async def test_quote_from_text(self, pricing_service):
        extraction, result = await pricing_service.quote_from_text(
            SERVICE_ID, COMPANY_ID, "20x20 patio, remove old concrete"
        )

        assert extraction.quantity == 400
        assert result.quantity == 400
        assert result.selection == extraction.selection


class TestSharedBackend:
    """Two PricingService instances over one backend, as two function instances share Firestore."""

    @pytest.mark.asyncio
    async def test_save_through_one_instance_reaches_the_other(self, memory_backend, worked_example_selection):
        first = build_pricing_service(backend=memory_backend)
        second = build_pricing_service(backend=memory_backend)

        before = await first.quote(SERVICE_ID, COMPANY_ID, worked_example_selection, 100)
        await second.store.update_settings(
            SERVICE_ID, COMPANY_ID, {"laborSettings.hourlyLaborRate": 40}, actor="admin-2"
        )
        after = await first.quote(SERVICE_ID, COMPANY_ID, worked_example_selection, 100)

        assert before.tier2.labor_cost == pytest.approx(2160.0)
        assert after.tier2.labor_cost == pytest.approx(3456.0)
        assert memory_backend.reads == 3

    @pytest.mark.asyncio
    async def test_session_recomputes_after_remote_save(self, memory_backend, worked_example_selection):
        first = build_pricing_service(backend=memory_backend)
        second = build_pricing_service(backend=memory_backend)
        results = []
        session = first.open_session(SERVICE_ID, COMPANY_ID, on_result=results.append)
        await session.calculate(worked_example_selection, 100)

        await second.store.update_settings(
            SERVICE_ID, COMPANY_ID, {"laborSettings.hourlyLaborRate": 40}, actor="admin-2"
        )
        await first.get_config(SERVICE_ID, COMPANY_ID)
        await first.aclose()

        assert len(results) == 1
        assert results[0].tier2.labor_cost == pytest.approx(3456.0)

    @pytest.mark.asyncio
    async def test_closed_service_stops_watching(self, memory_backend):
        service = build_pricing_service(backend=memory_backend)
        await service.get_config(SERVICE_ID, COMPANY_ID)
        assert memory_backend.watcher_count(SERVICE_ID, COMPANY_ID) == 1

        service.close()

        assert memory_backend.watcher_count(SERVICE_ID, COMPANY_ID) == 0
