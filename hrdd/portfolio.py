"""
hrdd.portfolio — Portfolio selection and tolerant request models.

PortfolioSelection is the caller-owned record of which countries are in
the sourcing portfolio and how much volume each carries. The engine only
reads it; all mutation goes through add(), remove() and set_volume().

The pydantic request models follow a tolerant, never-400-for-content
policy where a sensible default exists:
    - ISO codes are trimmed and upper-cased; blanks and repeats dropped
    - Volumes that are NaN/Inf or non-numeric fall back to DEFAULT_VOLUME
    - Negative volumes are clamped to 0
    - Volumes for unselected countries are ignored
    - Extra top-level fields are ignored

A selection longer than MAX_SELECTED_COUNTRIES is rejected outright;
max_request_bytes() sizes the API body limit from that cap.

Weights are the exception: a weight vector is either valid (see
hrdd.risk_engine.validate_weights) or the request is rejected, because
silently rewriting a user's weighting changes every score.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from hrdd.constants import DEFAULT_VOLUME, MAX_SELECTED_COUNTRIES, NUM_INDICATORS
from hrdd.risk_engine import validate_weights


def _normalize_iso(code: Any) -> str:
    return str(code).strip().upper()


def _require_valid_weights(weights: Any) -> Any:
    # Runs on the raw payload, before lax coercion turns true or "20" into floats.
    if weights is not None and not validate_weights(weights):
        raise ValueError(
            f"weights must be {NUM_INDICATORS} finite numbers, each in [0, 100]."
        )
    return weights


# Serialized size of one selected country: its code in selectedCountries
# plus a code/volume pair in countryVolumes. Doubled for pretty-printed JSON.
_ISO_ENTRY_BYTES = 12
_VOLUME_ENTRY_BYTES = 32
_ENVELOPE_BYTES = 1_024


def max_request_bytes(max_countries: int = MAX_SELECTED_COUNTRIES) -> int:
    """Upper bound on the body of a well-formed BaselineRequest."""
    per_country = _ISO_ENTRY_BYTES + _VOLUME_ENTRY_BYTES
    return 2 * (_ENVELOPE_BYTES + max_countries * per_country)


def _sanitize_volume(value: Any) -> float:
    """Coerce a volume to a finite, non-negative float."""
    if isinstance(value, bool):
        return DEFAULT_VOLUME
    try:
        fval = float(value)
    except (TypeError, ValueError):
        return DEFAULT_VOLUME
    if math.isnan(fval) or math.isinf(fval):
        return DEFAULT_VOLUME
    return max(0.0, fval)


# ---------------------------------------------------------------------------
# PortfolioSelection
# ---------------------------------------------------------------------------


class PortfolioSelection:
    """Ordered set of selected ISO codes plus their volumes.

    Insertion order is preserved for display. A selected country with no
    explicit volume is reported with DEFAULT_VOLUME.
    """

    def __init__(
        self,
        countries: Iterable[str] = (),
        volumes: Mapping[str, float] | None = None,
    ) -> None:
        self._countries: dict[str, None] = {}
        self._volumes: dict[str, float] = {}
        for code in countries:
            self.add(code)
        for code, volume in (volumes or {}).items():
            if code in self._countries:
                self.set_volume(code, volume)

    # -- mutation -----------------------------------------------------------

    def add(self, iso_code: str) -> None:
        """Select a country. Re-adding keeps its original position."""
        if not iso_code:
            raise ValueError("iso_code must be a non-empty string.")
        self._countries.setdefault(iso_code, None)

    def remove(self, iso_code: str) -> None:
        """Deselect a country and forget its volume. Unknown codes are a no-op."""
        self._countries.pop(iso_code, None)
        self._volumes.pop(iso_code, None)

    def set_volume(self, iso_code: str, volume: float) -> None:
        if iso_code not in self._countries:
            raise KeyError(f"Country '{iso_code}' is not selected.")
        fval = float(volume)
        if math.isnan(fval) or math.isinf(fval) or fval < 0:
            raise ValueError(f"Volume must be a finite, non-negative number, got {volume!r}.")
        self._volumes[iso_code] = fval

    # -- read access --------------------------------------------------------

    @property
    def countries(self) -> tuple[str, ...]:
        return tuple(self._countries)

    @property
    def volumes(self) -> dict[str, float]:
        """Explicitly set volumes only (copy)."""
        return dict(self._volumes)

    def volume_for(self, iso_code: str) -> float:
        return self._volumes.get(iso_code, DEFAULT_VOLUME)

    def copy(self) -> PortfolioSelection:
        return PortfolioSelection(self._countries, self._volumes)

    def __contains__(self, iso_code: object) -> bool:
        return iso_code in self._countries

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._countries))

    def __len__(self) -> int:
        return len(self._countries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PortfolioSelection):
            return NotImplemented
        return (
            self.countries == other.countries
            and {c: self.volume_for(c) for c in self}
            == {c: other.volume_for(c) for c in other}
        )

    def __repr__(self) -> str:
        return f"PortfolioSelection(countries={list(self._countries)!r}, volumes={self._volumes!r})"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CalculateRiskRequest(BaseModel):
    """Single-country weighted score request."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    country_iso_code: str = Field(..., alias="countryIsoCode", min_length=1)
    weights: Optional[List[float]] = None

    @field_validator("country_iso_code")
    @classmethod
    def _normalize_country(cls, v: str) -> str:
        v = _normalize_iso(v)
        if not v:
            raise ValueError("countryIsoCode must not be blank.")
        return v

    @field_validator("weights", mode="before")
    @classmethod
    def _check_weights(cls, v: Any) -> Any:
        return _require_valid_weights(v)


class BaselineRequest(BaseModel):
    """Portfolio baseline request: selection, volumes and optional weights."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    selected_countries: List[str] = Field(
        default_factory=list, alias="selectedCountries", max_length=MAX_SELECTED_COUNTRIES,
    )
    country_volumes: Dict[str, Any] = Field(default_factory=dict, alias="countryVolumes")
    weights: Optional[List[float]] = None

    @field_validator("weights", mode="before")
    @classmethod
    def _check_weights(cls, v: Any) -> Any:
        return _require_valid_weights(v)

    @model_validator(mode="after")
    def _normalize_selection(self) -> BaselineRequest:
        """Tolerant normalisation of codes and volumes."""
        seen: dict[str, None] = {}
        for code in self.selected_countries:
            code = _normalize_iso(code)
            if code:
                seen.setdefault(code, None)
        self.selected_countries = list(seen)

        volumes: Dict[str, Any] = {}
        for code, raw in (self.country_volumes or {}).items():
            code = _normalize_iso(code)
            if code in seen:
                volumes[code] = _sanitize_volume(raw)
        self.country_volumes = volumes
        return self

    def to_selection(self) -> PortfolioSelection:
        return PortfolioSelection(self.selected_countries, self.country_volumes)
