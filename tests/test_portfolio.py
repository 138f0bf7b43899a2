"""
tests/test_portfolio.py — Tests for PortfolioSelection and request models.

Requires: pytest, pydantic
"""

from __future__ import annotations

import json
import math

import pytest
from pydantic import ValidationError

from hrdd.constants import DEFAULT_VOLUME, DEFAULT_WEIGHTS, MAX_SELECTED_COUNTRIES
from hrdd.portfolio import (
    BaselineRequest,
    CalculateRiskRequest,
    PortfolioSelection,
    max_request_bytes,
)


# ---------------------------------------------------------------------------
# PortfolioSelection
# ---------------------------------------------------------------------------

class TestPortfolioSelection:
    def test_empty(self):
        sel = PortfolioSelection()
        assert len(sel) == 0
        assert sel.countries == ()
        assert list(sel) == []

    def test_add_preserves_order(self):
        sel = PortfolioSelection()
        for code in ("VNM", "DNK", "BGD"):
            sel.add(code)
        assert sel.countries == ("VNM", "DNK", "BGD")

    def test_re_add_keeps_position(self):
        sel = PortfolioSelection(["VNM", "DNK"])
        sel.add("VNM")
        assert sel.countries == ("VNM", "DNK")
        assert len(sel) == 2

    def test_add_empty_rejected(self):
        with pytest.raises(ValueError):
            PortfolioSelection().add("")

    def test_default_volume(self):
        sel = PortfolioSelection(["DNK"])
        assert sel.volume_for("DNK") == DEFAULT_VOLUME
        assert sel.volumes == {}

    def test_set_volume(self):
        sel = PortfolioSelection(["DNK"])
        sel.set_volume("DNK", 25)
        assert sel.volume_for("DNK") == 25.0
        assert sel.volumes == {"DNK": 25.0}

    def test_zero_volume_allowed(self):
        sel = PortfolioSelection(["DNK"])
        sel.set_volume("DNK", 0)
        assert sel.volume_for("DNK") == 0.0

    def test_set_volume_unselected(self):
        with pytest.raises(KeyError):
            PortfolioSelection(["DNK"]).set_volume("VNM", 5)

    @pytest.mark.parametrize("volume", [-1, math.nan, math.inf])
    def test_set_volume_invalid(self, volume: float):
        sel = PortfolioSelection(["DNK"])
        with pytest.raises(ValueError):
            sel.set_volume("DNK", volume)
        assert sel.volumes == {}

    def test_remove_drops_volume(self):
        sel = PortfolioSelection(["DNK", "VNM"], {"DNK": 5})
        sel.remove("DNK")
        assert sel.countries == ("VNM",)
        assert "DNK" not in sel
        assert sel.volumes == {}

    def test_remove_then_re_add_uses_default_volume(self):
        sel = PortfolioSelection(["DNK"], {"DNK": 5})
        sel.remove("DNK")
        sel.add("DNK")
        assert sel.volume_for("DNK") == DEFAULT_VOLUME

    def test_remove_unknown_is_noop(self):
        sel = PortfolioSelection(["DNK"])
        sel.remove("XXX")
        assert sel.countries == ("DNK",)

    def test_constructor_ignores_volumes_for_unselected(self):
        sel = PortfolioSelection(["DNK"], {"DNK": 3, "VNM": 7})
        assert sel.volumes == {"DNK": 3.0}

    def test_contains(self):
        sel = PortfolioSelection(["DNK"])
        assert "DNK" in sel
        assert "dnk" not in sel

    def test_copy_is_independent(self):
        sel = PortfolioSelection(["DNK"], {"DNK": 4})
        dup = sel.copy()
        assert dup == sel
        dup.set_volume("DNK", 9)
        dup.add("VNM")
        assert sel.volume_for("DNK") == 4.0
        assert "VNM" not in sel

    def test_equality_treats_default_volume_as_explicit(self):
        a = PortfolioSelection(["DNK"])
        b = PortfolioSelection(["DNK"], {"DNK": DEFAULT_VOLUME})
        assert a == b

    def test_equality_respects_order(self):
        assert PortfolioSelection(["A", "B"]) != PortfolioSelection(["B", "A"])

    def test_iteration_is_snapshot(self):
        sel = PortfolioSelection(["A", "B"])
        for code in sel:
            sel.remove(code)
        assert len(sel) == 0


# ---------------------------------------------------------------------------
# CalculateRiskRequest
# ---------------------------------------------------------------------------

class TestCalculateRiskRequest:
    def test_alias_and_normalisation(self):
        req = CalculateRiskRequest.model_validate({"countryIsoCode": "  dnk "})
        assert req.country_iso_code == "DNK"
        assert req.weights is None

    def test_field_name_accepted(self):
        req = CalculateRiskRequest.model_validate({"country_iso_code": "VNM"})
        assert req.country_iso_code == "VNM"

    def test_valid_weights(self):
        req = CalculateRiskRequest.model_validate(
            {"countryIsoCode": "DNK", "weights": [10, 20, 30, 40, 50]}
        )
        assert req.weights == [10.0, 20.0, 30.0, 40.0, 50.0]

    @pytest.mark.parametrize(
        "weights",
        [[10, 20, 30, 40], [10, 20, 30, 40, 50, 60], [-1, 0, 0, 0, 0], [101, 0, 0, 0, 0]],
    )
    def test_invalid_weights(self, weights):
        with pytest.raises(ValidationError):
            CalculateRiskRequest.model_validate({"countryIsoCode": "DNK", "weights": weights})

    def test_missing_code(self):
        with pytest.raises(ValidationError):
            CalculateRiskRequest.model_validate({})

    def test_blank_code(self):
        with pytest.raises(ValidationError):
            CalculateRiskRequest.model_validate({"countryIsoCode": "   "})

    def test_extra_fields_ignored(self):
        req = CalculateRiskRequest.model_validate({"countryIsoCode": "DNK", "foo": 1})
        assert not hasattr(req, "foo")


# ---------------------------------------------------------------------------
# BaselineRequest
# ---------------------------------------------------------------------------

class TestBaselineRequest:
    def test_defaults(self):
        req = BaselineRequest.model_validate({})
        assert req.selected_countries == []
        assert req.country_volumes == {}
        assert req.weights is None
        assert len(req.to_selection()) == 0

    def test_codes_normalised_and_deduplicated(self):
        req = BaselineRequest.model_validate(
            {"selectedCountries": ["dnk", " VNM", "DNK", "", "  "]}
        )
        assert req.selected_countries == ["DNK", "VNM"]

    def test_volumes_sanitised(self):
        req = BaselineRequest.model_validate({
            "selectedCountries": ["A", "B", "C", "D", "E"],
            "countryVolumes": {"a": 5, "B": -3, "C": "lots", "D": True, "E": "7.5"},
        })
        assert req.country_volumes == {
            "A": 5.0,
            "B": 0.0,
            "C": DEFAULT_VOLUME,
            "D": DEFAULT_VOLUME,
            "E": 7.5,
        }

    def test_non_finite_volumes_default(self):
        req = BaselineRequest(selectedCountries=["A", "B"], countryVolumes={"A": math.nan, "B": math.inf})
        assert req.country_volumes == {"A": DEFAULT_VOLUME, "B": DEFAULT_VOLUME}

    def test_volumes_for_unselected_dropped(self):
        req = BaselineRequest.model_validate({
            "selectedCountries": ["DNK"],
            "countryVolumes": {"DNK": 4, "VNM": 9},
        })
        assert req.country_volumes == {"DNK": 4.0}

    def test_to_selection(self):
        req = BaselineRequest.model_validate({
            "selectedCountries": ["DNK", "VNM"],
            "countryVolumes": {"VNM": 30},
        })
        sel = req.to_selection()
        assert sel.countries == ("DNK", "VNM")
        assert sel.volume_for("DNK") == DEFAULT_VOLUME
        assert sel.volume_for("VNM") == 30.0

    @pytest.mark.parametrize("weights", [[True, 20, 5, 10, 10], ["20", 20, 5, 10, 10], "20,20,5,10,10"])
    def test_uncoerced_weights_rejected(self, weights):
        with pytest.raises(ValidationError):
            CalculateRiskRequest.model_validate({"countryIsoCode": "DNK", "weights": weights})
        with pytest.raises(ValidationError):
            BaselineRequest.model_validate({"weights": weights})

    def test_invalid_weights(self):
        with pytest.raises(ValidationError):
            BaselineRequest.model_validate({"weights": [1, 2, 3]})

    def test_non_list_selection_rejected(self):
        with pytest.raises(ValidationError):
            BaselineRequest.model_validate({"selectedCountries": "DNK"})

    def test_selection_cap(self):
        codes = [f"C{i:03d}" for i in range(MAX_SELECTED_COUNTRIES)]
        assert len(BaselineRequest.model_validate({"selectedCountries": codes}).selected_countries) == MAX_SELECTED_COUNTRIES
        with pytest.raises(ValidationError):
            BaselineRequest.model_validate({"selectedCountries": codes + ["ZZZ"]})


# ---------------------------------------------------------------------------
# max_request_bytes
# ---------------------------------------------------------------------------

class TestMaxRequestBytes:
    def test_fits_largest_pretty_printed_request(self):
        codes = [f"C{i:03d}" for i in range(MAX_SELECTED_COUNTRIES)]
        body = {
            "selectedCountries": codes,
            "countryVolumes": {code: 1234567.25 for code in codes},
            "weights": list(DEFAULT_WEIGHTS),
        }
        assert len(json.dumps(body, indent=2).encode()) <= max_request_bytes()

    def test_scales_with_cap(self):
        assert max_request_bytes(10) < max_request_bytes(100) < max_request_bytes()
