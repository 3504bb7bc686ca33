"""Unit tests for free-text variable extraction."""

import pytest

from master_pricing.services.text_extraction import (
    ExtractionResult,
    extract_variables,
    validate_extraction,
)
from master_pricing.models.selection import VariableSelection


class TestQuantity:
    """Square footage detection."""

    @pytest.mark.parametrize("message,expected", [
        ("Need a 320 sqft patio", 320),
        ("about 150.5 sq ft of pavers", 150.5),
        ("roughly 200 square feet", 200),
        ("new 1,200 sq ft patio", 1200),
        ("about 12,500.5 square feet of pavers", 12500.5),
        ("a 1,000 x 20 driveway apron", 20000),
        ("a 12 x 20 patio out back", 240),
        ("patio that is 10 by 15", 150),
        ("just a small patio", 150),
        ("a medium patio please", 250),
        ("we want a large patio", 400),
    ])
    def test_quantity_forms(self, message, expected):
        assert extract_variables(message).quantity == expected

    def test_thousands_separator_not_truncated(self):
        result = extract_variables("quote for 1,200 sqft, remove old concrete")

        assert result.quantity == 1200
        assert "Square footage: 1200 sqft (direct)" in result.extracted

    def test_default_quantity(self):
        result = extract_variables("new patio please", default_quantity=80)

        assert result.quantity == 80
        assert result.defaults_used[0] == "Square footage: 80 sqft (default)"


class TestVariables:
    """Variable rules and schema checks."""

    def test_worked_example_message(self):
        result = extract_variables(
            "100 sqft patio, remove old concrete, backyard access, standard project"
        )

        assert result.quantity == 100
        assert result.selection.choices == {
            "excavation.tearoutComplexity": "concrete",
            "siteAccess.accessDifficulty": "moderate",
            "complexity.overallComplexity": "standard",
        }
        assert result.extracted_count == 4
        assert result.confidence == pytest.approx(0.5)

    def test_unmentioned_variables_left_to_defaults(self):
        result = extract_variables("300 sqft patio")

        assert result.selection == VariableSelection()
        assert "labor.teamSize" in result.defaults_used
        assert "complexity.overallComplexity" in result.defaults_used

    @pytest.mark.parametrize("message", ["economy pavers", "budget paver", "basic pavers", "concrete pavers"])
    def test_low_end_pavers_are_standard(self, message):
        result = extract_variables(message)

        assert result.selection.get("materials.paverStyle") == "standard"

    def test_premium_materials(self):
        result = extract_variables("we love travertine")

        assert result.selection.get("materials.paverStyle") == "premium"

    def test_two_person_crew(self):
        result = extract_variables("a 2-person crew is fine")

        assert result.selection.get("labor.teamSize") == "twoPerson"

    def test_tight_access_and_heavy_equipment(self):
        result = extract_variables("tight side gate, needs a jackhammer")

        assert result.selection.get("siteAccess.accessDifficulty") == "difficult"
        assert result.selection.get("excavation.equipmentRequired") == "heavyMachinery"

    def test_complexity_needs_explicit_wording(self):
        result = extract_variables("complex patio with curves")

        assert result.selection.get("complexity.overallComplexity") is None
        assert result.selection.get("materials.cuttingComplexity") == "moderate"

    def test_complexity_tier_from_project_wording(self):
        result = extract_variables("this is an extremely complex job")

        assert result.selection.get("complexity.overallComplexity") == "extreme"

    def test_match_outside_schema_discarded(self, template_config):
        del template_config.variables["excavation"].variables["tearoutComplexity"].options["asphalt"]

        result = extract_variables("remove old asphalt", config=template_config)

        assert result.selection.get("excavation.tearoutComplexity") is None
        assert "excavation.tearoutComplexity" in result.defaults_used

    def test_complexity_score_is_capped(self):
        result = extract_variables("remove the old concrete, tight side gate, intricate cutting")

        assert result.complexity_factors == ["concrete removal", "difficult access", "complex cutting"]
        assert result.complexity_score == 1.5

    def test_confidence_ceiling(self):
        result = extract_variables(
            "400 sqft, remove old asphalt, tight access, 2-person crew, bobcat, "
            "premium pavers, curves, herringbone, trees, complex project"
        )

        assert result.confidence == 0.95


class TestValidateExtraction:
    """Tests for validate_extraction."""

    def test_detailed_message_is_valid(self):
        result = extract_variables("250 sqft, remove old concrete, backyard")

        validation = validate_extraction(result)

        assert validation.is_valid
        assert validation.clarifying_questions == []

    def test_vague_message_asks_for_details(self):
        validation = validate_extraction(extract_variables("patio"))

        assert not validation.is_valid
        assert len(validation.clarifying_questions) == 1

    def test_non_positive_quantity_is_missing_info(self):
        result = ExtractionResult(quantity=0, selection=VariableSelection(), confidence=0.9)

        validation = validate_extraction(result)

        assert not validation.is_valid
        assert validation.missing_info == ["Square footage"]
