"""
hrdd.risk_engine — HRDD baseline risk engine.

Pure-computation module. Zero I/O. Zero global mutable state.
Every function is deterministic and never raises for numeric input;
where an input is missing or degenerate it falls back to a defined
default instead.

Weighted country score (indicators in INDICATOR_FIELDS order):

    score = Σ(v_i × w_i) / Σ(w_i)    over every i where v_i > 0

    An indicator equal to 0 means "no data" and is left out of both
    sums. A country with no positive indicator, or whose positive
    indicators carry zero total weight, scores 0.

Portfolio baseline risk (volume default 10, missing score default 0):

    baseline = Σ(volume_c × score_c) / Σ(volume_c)

Risk bands (closed intervals, tested in order, first match wins):

    Low           0    – 19.99
    Medium        20   – 39.99
    Medium High   40   – 59.99
    High          60   – 79.99
    Very High     80   – 100
    anything else → Unknown
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from hrdd.constants import (
    BAND_TABLE,
    DEFAULT_WEIGHTS,
    DISPLAY_PRECISION,
    INDICATOR_LABELS,
    MAX_WEIGHT,
    MIN_WEIGHT,
    NUM_INDICATORS,
    UNKNOWN_BAND_COLOR,
    UNKNOWN_BAND_NAME,
)

if TYPE_CHECKING:
    from hrdd.catalogue import CountryRecord
    from hrdd.portfolio import PortfolioSelection


# ---------------------------------------------------------------------------
# Band table
# ---------------------------------------------------------------------------


class RiskBand(enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    MEDIUM_HIGH = "Medium High"
    HIGH = "High"
    VERY_HIGH = "Very High"


@dataclass(frozen=True, slots=True)
class BandDefinition:
    band: RiskBand
    min: float
    max: float
    color: str

    def contains(self, score: float) -> bool:
        return self.min <= score <= self.max

    @property
    def range_label(self) -> str:
        """Legend text, e.g. "0-19" or "80-100"."""
        upper = "100" if self.max == 100 else str(math.floor(self.max))
        return f"{self.min:g}-{upper}"


@dataclass(frozen=True, slots=True)
class BandResult:
    """Outcome of a band lookup. band is None for Unknown."""

    name: str
    color: str
    band: RiskBand | None = None

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "color": self.color}


BANDS: tuple[BandDefinition, ...] = tuple(
    BandDefinition(RiskBand(name), lo, hi, color) for name, lo, hi, color in BAND_TABLE
)

UNKNOWN_BAND = BandResult(name=UNKNOWN_BAND_NAME, color=UNKNOWN_BAND_COLOR)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _number_or(value: Any, default: float) -> float:
    return float(value) if _is_real(value) else default


# ---------------------------------------------------------------------------
# Pure computation functions
# ---------------------------------------------------------------------------


def weighted_score(
    record: CountryRecord,
    weights: Sequence[float] = DEFAULT_WEIGHTS,
) -> float:
    """Weighted mean of the record's positive indicators.

    Does not check weights against validate_weights(); any numeric
    vector is accepted and aligned positionally.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    for value, weight in zip(record.indicators(), weights):
        if value > 0:
            weighted_sum += value * weight
            total_weight += weight

    return weighted_sum / total_weight if total_weight > 0 else 0.0


def band(score: float, bands: Sequence[BandDefinition] = BANDS) -> BandResult:
    """Classify a score into its risk band, or UNKNOWN_BAND."""
    for definition in bands:
        if definition.contains(score):
            return BandResult(
                name=definition.band.value,
                color=definition.color,
                band=definition.band,
            )
    return UNKNOWN_BAND


def band_color(score: float, bands: Sequence[BandDefinition] = BANDS) -> str:
    return band(score, bands).color


def band_definitions(bands: Sequence[BandDefinition] = BANDS) -> list[dict[str, str]]:
    """Legend entries: [{name, range, color}, ...] in table order."""
    return [
        {"name": d.band.value, "range": d.range_label, "color": d.color}
        for d in bands
    ]


def validate_weights(weights: Any) -> bool:
    """True iff weights is exactly 5 real numbers, each in [0, 100]."""
    if isinstance(weights, (str, bytes, Mapping)):
        return False
    try:
        values = list(weights)
    except TypeError:
        return False
    if len(values) != NUM_INDICATORS:
        return False
    return all(_is_real(w) and MIN_WEIGHT <= w <= MAX_WEIGHT for w in values)


@dataclass(frozen=True, slots=True)
class PortfolioMetrics:
    baseline_risk: float = 0.0
    total_volume: float = 0.0
    weighted_risk: float = 0.0
    weighted_risk_squares: float = 0.0
    risk_concentration: float = 1.0


def portfolio_metrics(
    selection: PortfolioSelection,
    scores: Mapping[str, float],
) -> PortfolioMetrics:
    """Volume-weighted portfolio statistics.

    risk_concentration compares the volume-weighted mean of squared
    scores with the squared baseline; it is 1 for a uniform portfolio
    and never below 1.
    """
    entries: list[tuple[float, float]] = []
    weighted_risk = 0.0
    total_volume = 0.0

    for iso_code in selection:
        volume = selection.volume_for(iso_code)
        risk = _number_or(scores.get(iso_code), 0.0)
        weighted_risk += volume * risk
        total_volume += volume
        entries.append((volume, risk))

    if not entries:
        return PortfolioMetrics()

    baseline = weighted_risk / total_volume if total_volume > 0 else 0.0

    weighted_risk_squares = 0.0
    if total_volume > 0:
        for volume, risk in entries:
            weighted_risk_squares += (volume / total_volume) * risk ** 2

    if baseline > 0 and weighted_risk_squares > 0:
        concentration = max(1.0, weighted_risk_squares / baseline ** 2)
    else:
        concentration = 1.0

    return PortfolioMetrics(
        baseline_risk=baseline,
        total_volume=total_volume,
        weighted_risk=weighted_risk,
        weighted_risk_squares=weighted_risk_squares,
        risk_concentration=concentration,
    )


def baseline_risk(selection: PortfolioSelection, scores: Mapping[str, float]) -> float:
    """Volume-weighted mean score of the selection. Empty selection → 0."""
    return portfolio_metrics(selection, scores).baseline_risk


def score_catalogue(
    countries: Iterable[CountryRecord],
    weights: Sequence[float] = DEFAULT_WEIGHTS,
) -> dict[str, float]:
    """{iso_code: weighted_score} for every record, in input order."""
    return {c.iso_code: weighted_score(c, weights) for c in countries}


def summarize_portfolio(
    selection: PortfolioSelection,
    countries: Iterable[CountryRecord],
    weights: Sequence[float] = DEFAULT_WEIGHTS,
    bands: Sequence[BandDefinition] = BANDS,
    scores: Mapping[str, float] | None = None,
) -> dict[str, Any]:
    """Baseline summary for reporting.

    Only selected countries are scored, unless a precomputed score table
    is passed in (e.g. from ScoreCache), in which case countries is not
    read. Selected codes without a score count as 0 and are listed under
    "unmatched".
    """
    selected = set(selection)
    if scores is None:
        scores = score_catalogue((c for c in countries if c.iso_code in selected), weights)
    else:
        scores = {code: scores[code] for code in selection if code in scores}
    metrics = portfolio_metrics(selection, scores)
    result = band(metrics.baseline_risk, bands)

    return {
        "baseline": {
            "score": round(metrics.baseline_risk, DISPLAY_PRECISION),
            "band": result.name,
            "color": result.color,
        },
        "portfolio": {
            "countriesSelected": len(selection),
            "selectedCountries": list(selection.countries),
            "countryVolumes": {c: selection.volume_for(c) for c in selection},
            "totalVolume": metrics.total_volume,
            "riskConcentration": round(metrics.risk_concentration, DISPLAY_PRECISION),
            "unmatched": [c for c in selection if c not in scores],
        },
        "countryScores": {
            code: round(score, DISPLAY_PRECISION) for code, score in scores.items()
        },
        "weights": [float(w) for w in weights],
        "weightLabels": list(INDICATOR_LABELS),
    }


# ---------------------------------------------------------------------------
# RiskEngine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskEngine:
    """Binds a default weight vector and band table to the pure functions.

    Holds no mutable state; one instance can be shared by reference.
    """

    default_weights: tuple[float, ...] = DEFAULT_WEIGHTS
    bands: tuple[BandDefinition, ...] = field(default=BANDS, repr=False)

    def _weights(self, weights: Sequence[float] | None) -> Sequence[float]:
        return self.default_weights if weights is None else weights

    def weighted_score(self, record: CountryRecord, weights: Sequence[float] | None = None) -> float:
        return weighted_score(record, self._weights(weights))

    def band(self, score: float) -> BandResult:
        return band(score, self.bands)

    def band_color(self, score: float) -> str:
        return band_color(score, self.bands)

    def band_definitions(self) -> list[dict[str, str]]:
        return band_definitions(self.bands)

    def baseline_risk(self, selection: PortfolioSelection, scores: Mapping[str, float]) -> float:
        return baseline_risk(selection, scores)

    def portfolio_metrics(self, selection: PortfolioSelection, scores: Mapping[str, float]) -> PortfolioMetrics:
        return portfolio_metrics(selection, scores)

    def validate_weights(self, weights: Any) -> bool:
        return validate_weights(weights)

    def score_catalogue(
        self,
        countries: Iterable[CountryRecord],
        weights: Sequence[float] | None = None,
    ) -> dict[str, float]:
        return score_catalogue(countries, self._weights(weights))

    def summarize_portfolio(
        self,
        selection: PortfolioSelection,
        countries: Iterable[CountryRecord],
        weights: Sequence[float] | None = None,
        scores: Mapping[str, float] | None = None,
    ) -> dict[str, Any]:
        return summarize_portfolio(selection, countries, self._weights(weights), self.bands, scores)
