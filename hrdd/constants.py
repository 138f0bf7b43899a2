"""
hrdd.constants — Single source of truth for HRDD risk constants.

Column layout of the catalogue source, indicator ordering, default
weights, default portfolio volume and the risk band table all live here.
Every module that needs these values imports them from this module.
"""

from __future__ import annotations

from pathlib import Path

# ---------------------------------------------------------------------------
# Precision
# ---------------------------------------------------------------------------

ROUND_PRECISION: int = 8
"""Floats that enter hashing (catalogue fingerprints, cache keys) are
rendered with exactly ROUND_PRECISION decimal places."""

DISPLAY_PRECISION: int = 2
"""Scores returned over HTTP are rounded to DISPLAY_PRECISION places."""

# ---------------------------------------------------------------------------
# Catalogue source layout
# ---------------------------------------------------------------------------

EXPECTED_COLUMN_COUNT: int = 8

CATALOGUE_COLUMNS: tuple[str, ...] = (
    "name",
    "isoCode",
    "itucRightsRating",
    "corruptionIndex",
    "migrantWorkerPrevalence",
    "wjpIndex",
    "walkfreeSlaveryIndex",
    "baseRiskScore",
)
"""Fixed column order of the catalogue source. Wire names (camelCase)."""

DEFAULT_CATALOGUE_PATH: Path = Path(__file__).resolve().parent / "data" / "countries.txt"

# ---------------------------------------------------------------------------
# Indicators and weights
# ---------------------------------------------------------------------------

NUM_INDICATORS: int = 5

INDICATOR_FIELDS: tuple[str, ...] = (
    "itucRightsRating",
    "corruptionIndex",
    "migrantWorkerPrevalence",
    "wjpIndex",
    "walkfreeSlaveryIndex",
)
"""The 5 scoring indicators, positionally aligned with every weight vector."""

INDICATOR_ATTRS: tuple[str, ...] = (
    "ituc_rights_rating",
    "corruption_index",
    "migrant_worker_prevalence",
    "wjp_index",
    "walkfree_slavery_index",
)
"""CountryRecord attribute names, same order as INDICATOR_FIELDS."""

INDICATOR_LABELS: tuple[str, ...] = (
    "ITUC Rights Rating",
    "Corruption Index",
    "Migrant Worker Prevalence",
    "WJP Index",
    "Walk Free Slavery Index",
)

DEFAULT_WEIGHTS: tuple[float, ...] = (20.0, 20.0, 5.0, 10.0, 10.0)
"""ITUC, Corruption, Migrant, WJP, Walk Free."""

MIN_WEIGHT: float = 0.0
MAX_WEIGHT: float = 100.0

# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------

DEFAULT_VOLUME: float = 10.0
"""Volume assumed for a selected country with no explicit volume."""

MAX_SELECTED_COUNTRIES: int = 300
"""Largest selection a baseline request may carry. Also sizes the API body limit."""

# ---------------------------------------------------------------------------
# Risk bands: ordered, inclusive on both ends, tested in sequence
# ---------------------------------------------------------------------------

BAND_TABLE: tuple[tuple[str, float, float, str], ...] = (
    ("Low", 0.0, 19.99, "#22c55e"),
    ("Medium", 20.0, 39.99, "#eab308"),
    ("Medium High", 40.0, 59.99, "#f97316"),
    ("High", 60.0, 79.99, "#ef4444"),
    ("Very High", 80.0, 100.0, "#991b1b"),
)
"""(name, min, max, color). Changing this changes every classification."""

UNKNOWN_BAND_NAME: str = "Unknown"
UNKNOWN_BAND_COLOR: str = "#64748b"
