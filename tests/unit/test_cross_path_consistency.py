"""Manual entry and text extraction must price the same inputs the same way."""

import pytest

from master_pricing.services.form_store import EstimateForm
from master_pricing.services.pricing_engine import calculate
from master_pricing.services.text_extraction import extract_variables
from master_pricing.models.selection import VariableSelection
from tests.fixtures.mock_config_documents import COMPANY_DOCUMENT, COMPANY_ID, SERVICE_ID


MESSAGE = "100 sqft patio, remove old concrete, backyard access, standard project"


def _fill_form(form, choices):
    for path, key in choices.items():
        category, _, variable = path.partition(".")
        form.update_value(category, variable, key)


class TestCrossPathConsistency:
    """Form and extraction produce identical results for identical choices."""

    def test_worked_example_both_paths(self, template_config):
        extraction = extract_variables(MESSAGE, config=template_config)
        form = EstimateForm(template_config, quantity=extraction.quantity)
        _fill_form(form, extraction.selection.choices)

        from_text = calculate(template_config, extraction.selection, extraction.quantity)
        from_form = form.calculate()

        assert from_text.total == from_form.total
        assert from_text.tier2 == from_form.tier2
        assert from_form.total == pytest.approx(3471.16)

    @pytest.mark.parametrize("message", [
        "12x20 patio, tight side gate, 2-person crew, premium pavers",
        "large patio, remove old asphalt, bobcat, curves, herringbone, trees, complex project",
        "small patio",
    ])
    def test_extracted_selection_round_trips_through_form(self, template_config, message):
        extraction = extract_variables(message, config=template_config)
        form = EstimateForm(template_config, quantity=extraction.quantity)
        _fill_form(form, extraction.selection.choices)

        assert form.calculate().total == calculate(
            template_config, extraction.selection, extraction.quantity
        ).total

    def test_untouched_form_equals_empty_extraction(self, template_config):
        extraction = extract_variables("patio", config=template_config)
        form = EstimateForm(template_config, quantity=extraction.quantity)

        assert extraction.selection == VariableSelection()
        assert form.calculate().total == calculate(template_config, extraction.selection, 100).total

    @pytest.mark.asyncio
    async def test_service_paths_agree_on_company_config(self, pricing_service, memory_backend):
        await memory_backend.write(SERVICE_ID, COMPANY_ID, COMPANY_DOCUMENT)

        extraction, from_text = await pricing_service.quote_from_text(SERVICE_ID, COMPANY_ID, MESSAGE)
        form = await pricing_service.open_form(SERVICE_ID, COMPANY_ID, quantity=extraction.quantity)
        _fill_form(form, extraction.selection.choices)
        from_form = form.calculate()
        quoted = await pricing_service.quote(SERVICE_ID, COMPANY_ID, form.to_selection(), form.quantity)

        assert from_text.total == from_form.total == quoted.total
        # rate 30, moderate access at 25%
        assert from_text.tier1.total_man_hours == pytest.approx(72.0)
        assert from_text.tier2.labor_cost == pytest.approx(2160.0)
