"""Unit tests for the manual entry form."""

import pytest

from master_pricing.config.errors import InvalidQuantity, UnknownVariableOption, ValidationError
from master_pricing.services.form_store import DEFAULT_QUANTITY, EstimateForm


@pytest.fixture
def form(template_config):
    return EstimateForm(template_config)


class TestEstimateForm:
    """Tests for EstimateForm."""

    def test_starts_from_schema_defaults(self, form, template_config):
        assert form.quantity == DEFAULT_QUANTITY
        assert form.complexity_override is None
        assert form.to_selection().choices == template_config.default_choices()

    def test_update_value(self, form):
        form.update_value("excavation", "tearoutComplexity", "concrete")

        assert form.values["excavation"]["tearoutComplexity"] == "concrete"
        assert form.to_selection().get("excavation.tearoutComplexity") == "concrete"

    def test_unknown_option_rejected_and_state_kept(self, form):
        with pytest.raises(UnknownVariableOption) as exc:
            form.update_value("excavation", "tearoutComplexity", "dirt")

        assert exc.value.key == "dirt"
        assert form.values["excavation"]["tearoutComplexity"] == "grass"

    def test_unknown_variable_rejected(self, form):
        with pytest.raises(UnknownVariableOption):
            form.update_value("garden", "gnomes", "many")

    def test_number_only_allowed_for_complexity(self, form):
        with pytest.raises(ValidationError):
            form.update_value("labor", "teamSize", 2)

    def test_numeric_complexity_sets_override(self, form):
        form.update_value("complexity", "overallComplexity", 1.2)

        selection = form.to_selection()
        assert selection.complexity_override == 1.2
        assert form.calculate().tier2.complexity_multiplier == 1.2

    def test_named_complexity_clears_override(self, form):
        form.update_value("complexity", "overallComplexity", 1.2)
        form.update_value("complexity", "overallComplexity", "complex")

        assert form.complexity_override is None
        assert form.calculate().tier2.complexity_multiplier == 1.3

    @pytest.mark.parametrize("value", [0, -1, float("nan")])
    def test_bad_numeric_complexity(self, form, value):
        with pytest.raises(ValidationError):
            form.update_value("complexity", "overallComplexity", value)

    @pytest.mark.parametrize("quantity", [0, -5, float("inf"), None, "100"])
    def test_bad_quantity(self, form, quantity):
        with pytest.raises(InvalidQuantity):
            form.set_quantity(quantity)

        assert form.quantity == DEFAULT_QUANTITY

    def test_reset_to_defaults_keeps_quantity(self, form, template_config):
        form.set_quantity(320)
        form.update_value("materials", "paverStyle", "premium")
        form.update_value("complexity", "overallComplexity", 1.4)

        form.reset_to_defaults()

        assert form.quantity == 320
        assert form.complexity_override is None
        assert form.to_selection().choices == template_config.default_choices()

    def test_reset_category(self, form):
        form.update_value("materials", "paverStyle", "premium")
        form.update_value("labor", "teamSize", "twoPerson")

        form.reset_category("materials")

        assert form.values["materials"]["paverStyle"] == "standard"
        assert form.values["labor"]["teamSize"] == "twoPerson"

    def test_reset_unknown_category(self, form):
        with pytest.raises(UnknownVariableOption):
            form.reset_category("garden")

    def test_calculate_matches_worked_example(self, form):
        form.update_value("excavation", "tearoutComplexity", "concrete")
        form.update_value("siteAccess", "accessDifficulty", "moderate")
        form.update_value("complexity", "overallComplexity", "standard")

        assert form.calculate().total == pytest.approx(3471.16)

    def test_apply_config_keeps_valid_choices(self, form, template_config):
        form.update_value("excavation", "tearoutComplexity", "asphalt")
        form.update_value("siteAccess", "accessDifficulty", "difficult")
        form.update_value("complexity", "overallComplexity", 1.2)

        changed = template_config.model_copy(deep=True)
        del changed.variables["excavation"].variables["tearoutComplexity"].options["asphalt"]
        form.apply_config(changed)

        assert form.config is changed
        assert form.values["excavation"]["tearoutComplexity"] == "grass"
        assert form.values["siteAccess"]["accessDifficulty"] == "difficult"
        assert form.complexity_override == 1.2
