"""Unit tests for the HTTP entry points."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from master_pricing import main
from tests.fixtures.mock_config_documents import COMPANY_DOCUMENT, COMPANY_ID, SERVICE_ID


WORKED_EXAMPLE_REQUEST = {
    "companyId": COMPANY_ID,
    "quantity": 100,
    "variables": {
        "excavation": {"tearoutComplexity": "concrete"},
        "siteAccess": {"accessDifficulty": "moderate"},
        "complexity": {"overallComplexity": "standard"},
    },
}


def _request(body=None, method="POST"):
    req = MagicMock()
    req.method = method
    req.get_json.return_value = body
    return req


def _body(response):
    return json.loads(response.get_data(as_text=True))


class TestAsyncHandlers:
    """Handlers called directly with a test PricingService."""

    @pytest.mark.asyncio
    async def test_calculate_price(self, pricing_service):
        data = await main.calculate_price_async(pricing_service, WORKED_EXAMPLE_REQUEST)

        assert data["serviceId"] == SERVICE_ID
        assert data["tier2Results"]["total"] == 3471.16
        assert data["tier1Results"]["totalManHours"] == 86.4

    @pytest.mark.asyncio
    async def test_calculate_price_flat_variables_and_override(self, pricing_service):
        data = await main.calculate_price_async(pricing_service, {
            "companyId": COMPANY_ID,
            "quantity": "100",
            "variables": {"excavation.tearoutComplexity": "concrete", "siteAccess.accessDifficulty": "moderate"},
            "complexityOverride": 1.1,
        })

        assert data["tier2Results"]["total"] == 3471.16
        assert data["inputValues"]["complexity"] == {"overallComplexity": 1.1}

    @pytest.mark.asyncio
    async def test_estimate_from_text_matches_calculate(self, pricing_service):
        data = await main.estimate_from_text_async(pricing_service, {
            "companyId": COMPANY_ID,
            "message": "100 sqft patio, remove old concrete, backyard access, standard project",
        })
        structured = await main.calculate_price_async(pricing_service, WORKED_EXAMPLE_REQUEST)

        assert data["tier2Results"] == structured["tier2Results"]
        assert data["extraction"]["quantity"] == 100
        assert data["extraction"]["isValid"] is True
        assert data["extraction"]["variables"]["excavation"] == {"tearoutComplexity": "concrete"}

    @pytest.mark.asyncio
    async def test_calculate_excavation(self, pricing_service):
        data = await main.calculate_excavation_async(pricing_service, {
            "companyId": COMPANY_ID,
            "areaSqft": "1000",
            "depthInches": 12,
        })

        assert data["serviceId"] == "excavation_removal"
        assert data["cubicYards"]["final"] == 41
        assert data["costs"]["total"] == 1076.25
        assert data["time"]["baseHours"] == 12

    @pytest.mark.asyncio
    async def test_calculate_excavation_uses_config_defaults(self, pricing_service):
        data = await main.calculate_excavation_async(pricing_service, {
            "companyId": COMPANY_ID,
            "areaSqft": 500,
            "depthInches": "6",
            "roundingRule": "exact",
        })

        assert data["roundingRule"] == "exact"
        assert data["wasteFactor"] == 10
        assert data["cubicYards"]["final"] == 10.19

    @pytest.mark.asyncio
    async def test_get_service_config_returns_template(self, pricing_service):
        data = await main.get_service_config_async(pricing_service, {"companyId": COMPANY_ID})

        assert data["serviceId"] == SERVICE_ID
        assert data["baseSettings"]["laborSettings.hourlyLaborRate"] == 25
        assert data["modifiedBy"] is None

    @pytest.mark.asyncio
    async def test_get_service_config_returns_company_document(self, pricing_service, memory_backend):
        await memory_backend.write(SERVICE_ID, COMPANY_ID, COMPANY_DOCUMENT)

        data = await main.get_service_config_async(pricing_service, {"companyId": COMPANY_ID})

        assert data["baseSettings"]["laborSettings.hourlyLaborRate"] == 30
        assert data["baseSettings"]["materialSettings.baseMaterialCost"] == 6.5

    @pytest.mark.asyncio
    async def test_update_then_calculate_sees_new_rate(self, pricing_service, memory_backend):
        saved = await main.update_service_config_async(pricing_service, {
            "companyId": COMPANY_ID,
            "userId": "admin-1",
            "settings": {"laborSettings.hourlyLaborRate": 35},
        })
        data = await main.calculate_price_async(pricing_service, WORKED_EXAMPLE_REQUEST)

        assert saved["modifiedBy"] == "admin-1"
        assert saved["baseSettings"]["laborSettings.hourlyLaborRate"] == 35
        assert memory_backend.writes == 1
        assert data["tier2Results"]["laborCost"] == 3024.0

    @pytest.mark.asyncio
    async def test_update_requires_changes(self, pricing_service):
        with pytest.raises(main.ValidationError):
            await main.update_service_config_async(pricing_service, {
                "companyId": COMPANY_ID,
                "userId": "admin-1",
            })


class TestHandle:
    """Request flow through _handle: status codes and response envelope."""

    def _call(self, service, handler, body, method="POST"):
        with patch("master_pricing.main.get_pricing_service", return_value=service):
            return main._handle(_request(body, method), handler, "calculate_price")

    def test_success_envelope(self, pricing_service):
        response = self._call(pricing_service, main.calculate_price_async, WORKED_EXAMPLE_REQUEST)

        body = _body(response)
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["tier2Results"]["total"] == 3471.16
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_preflight(self, pricing_service):
        response = self._call(pricing_service, main.calculate_price_async, None, method="OPTIONS")

        assert response.status_code == 204

    @pytest.mark.parametrize("body,code", [
        ({"quantity": 100}, "VALIDATION_ERROR"),
        ({"companyId": COMPANY_ID, "quantity": 0}, "INVALID_QUANTITY"),
        ({"companyId": COMPANY_ID, "quantity": "lots"}, "INVALID_QUANTITY"),
        (
            {"companyId": COMPANY_ID, "quantity": 100, "variables": {"excavation": {"tearoutComplexity": "dirt"}}},
            "UNKNOWN_VARIABLE_OPTION",
        ),
        ({"companyId": COMPANY_ID, "quantity": 100, "complexityOverride": 9}, "VALIDATION_ERROR"),
        ([1, 2, 3], "VALIDATION_ERROR"),
    ])
    def test_client_errors(self, pricing_service, body, code):
        response = self._call(pricing_service, main.calculate_price_async, body)

        body = _body(response)
        assert response.status_code == 400
        assert body["success"] is False
        assert body["error"]["code"] == code

    @pytest.mark.parametrize("body,code", [
        ({"companyId": COMPANY_ID}, "VALIDATION_ERROR"),
        ({"companyId": COMPANY_ID, "areaSqft": -5}, "INVALID_QUANTITY"),
        ({"companyId": COMPANY_ID, "areaSqft": 500, "depthInches": 99}, "VALIDATION_ERROR"),
        ({"companyId": COMPANY_ID, "areaSqft": 500, "depthInches": "deep"}, "VALIDATION_ERROR"),
        ({"companyId": COMPANY_ID, "areaSqft": 500, "roundingRule": "nearest"}, "UNKNOWN_VARIABLE_OPTION"),
        ({"companyId": COMPANY_ID, "serviceId": SERVICE_ID, "areaSqft": 500}, "VALIDATION_ERROR"),
    ])
    def test_excavation_client_errors(self, pricing_service, body, code):
        response = self._call(pricing_service, main.calculate_excavation_async, body)

        assert response.status_code == 400
        assert _body(response)["error"]["code"] == code

    def test_unknown_service_is_404(self, pricing_service):
        response = self._call(pricing_service, main.calculate_price_async, {
            "companyId": COMPANY_ID,
            "serviceId": "retaining_wall_lnft",
            "quantity": 10,
        })

        assert response.status_code == 404
        assert _body(response)["error"]["code"] == "CONFIG_NOT_FOUND"

    def test_backend_failure_is_500(self, pricing_service, memory_backend):
        memory_backend.read = AsyncMock(side_effect=RuntimeError("backend down"))

        response = self._call(pricing_service, main.calculate_price_async, WORKED_EXAMPLE_REQUEST)

        assert response.status_code == 500
        assert _body(response)["error"]["code"] == "CONFIG_LOAD_FAILED"

    def test_unexpected_error_is_wrapped(self):
        req = _request(WORKED_EXAMPLE_REQUEST)

        with patch("master_pricing.main.get_pricing_service", side_effect=RuntimeError("boom")):
            response = main._handle(req, main.calculate_price_async, "calculate_price")

        body = _body(response)
        assert response.status_code == 500
        assert body["error"]["code"] == "REQUEST_FAILED"
        assert "boom" in body["error"]["message"]

    def test_invalid_json(self, pricing_service):
        req = _request()
        req.get_json.side_effect = ValueError("Expecting value")

        with patch("master_pricing.main.get_pricing_service", return_value=pricing_service):
            response = main._handle(req, main.calculate_price_async, "calculate_price")

        assert response.status_code == 400
        assert _body(response)["error"]["code"] == "VALIDATION_ERROR"
