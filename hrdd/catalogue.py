"""
hrdd.catalogue — Country reference-data loader.

Parses the fixed-column catalogue source into validated CountryRecord
values. Structural faults are fatal and raise a CatalogueError subclass;
no partial catalogue is ever returned. Malformed numeric cells coerce to
0.0 and duplicate ISO codes resolve last-write-wins; both are recovered
locally and only the duplicates are reported back.

Source format:
    name,isoCode,itucRightsRating,corruptionIndex,migrantWorkerPrevalence,wjpIndex,walkfreeSlaveryIndex,baseRiskScore
    "Denmark","DK","1","10","8.6","10","4","8.2"
    ...

Per raw line: trim, drop NUL characters, drop one leading and one
trailing double quote. Per field: the same quote stripping, then trim.
Lines end at LF or CRLF only; form feeds and Unicode line separators
stay inside their field. Blank lines are skipped wherever they occur.
Line numbers in errors are 1-based and count every line of the
original source.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any

from hrdd.constants import (
    DEFAULT_CATALOGUE_PATH,
    EXPECTED_COLUMN_COUNT,
    INDICATOR_ATTRS,
)
from hrdd.hashing import compute_catalogue_hash

logger = logging.getLogger("hrdd.catalogue")

_LINE_BREAK = re.compile(r"\r?\n")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CatalogueError(ValueError):
    """Base class for fatal catalogue load failures."""


class CatalogueFileNotFoundError(CatalogueError):
    """Raised when the catalogue file does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Country data file not found at {path}")


class EmptySourceError(CatalogueError):
    """Raised when the source has no non-blank lines."""

    def __init__(self) -> None:
        super().__init__("Country data source is empty")


class HeaderShapeMismatchError(CatalogueError):
    """Raised when the header does not have EXPECTED_COLUMN_COUNT columns."""

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            f"Unexpected number of columns in header. "
            f"Expected {expected}, received {received}"
        )


class RowShapeMismatchError(CatalogueError):
    """Raised when a data row does not have EXPECTED_COLUMN_COUNT columns."""

    def __init__(self, line_number: int, expected: int, received: int) -> None:
        self.line_number = line_number
        self.expected = expected
        self.received = received
        super().__init__(
            f"Unexpected number of columns on line {line_number}. "
            f"Expected {expected}, received {received}"
        )


class MissingIdentifierError(CatalogueError):
    """Raised when a data row has an empty ISO code."""

    def __init__(self, line_number: int) -> None:
        self.line_number = line_number
        super().__init__(f"Missing ISO code on line {line_number}")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CountryRecord:
    """One validated row of country reference data."""

    name: str
    iso_code: str
    ituc_rights_rating: float
    corruption_index: float
    migrant_worker_prevalence: float
    wjp_index: float
    walkfree_slavery_index: float
    base_risk_score: float

    def indicators(self) -> tuple[float, ...]:
        """The 5 scoring indicators in weight-vector order."""
        return tuple(getattr(self, attr) for attr in INDICATOR_ATTRS)

    def to_dict(self) -> dict[str, Any]:
        """Serialise with the catalogue's camelCase column names."""
        return {
            "name": self.name,
            "isoCode": self.iso_code,
            "itucRightsRating": self.ituc_rights_rating,
            "corruptionIndex": self.corruption_index,
            "migrantWorkerPrevalence": self.migrant_worker_prevalence,
            "wjpIndex": self.wjp_index,
            "walkfreeSlaveryIndex": self.walkfree_slavery_index,
            "baseRiskScore": self.base_risk_score,
        }


@dataclass(frozen=True, slots=True)
class DuplicateNotice:
    """A row that overwrote an earlier row with the same ISO code."""

    iso_code: str
    replaced_name: str
    with_name: str

    def to_dict(self) -> dict[str, str]:
        return {
            "isoCode": self.iso_code,
            "replacedName": self.replaced_name,
            "withName": self.with_name,
        }


@dataclass(frozen=True)
class Catalogue:
    """Result of a successful load. Immutable per load cycle."""

    countries: tuple[CountryRecord, ...] = ()
    duplicates: tuple[DuplicateNotice, ...] = ()
    _index: dict[str, CountryRecord] = field(
        default_factory=dict, init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        # Frozen dataclass: populate the lookup table in place.
        self._index.update({c.iso_code: c for c in self.countries})

    def __len__(self) -> int:
        return len(self.countries)

    def get(self, iso_code: str) -> CountryRecord | None:
        return self._index.get(iso_code)

    def by_iso(self) -> dict[str, CountryRecord]:
        """A fresh {iso_code: record} mapping."""
        return dict(self._index)

    @cached_property
    def fingerprint(self) -> str:
        """SHA-256 content hash, computed once per catalogue."""
        return compute_catalogue_hash(self.countries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "countries": [c.to_dict() for c in self.countries],
            "duplicates": [d.to_dict() for d in self.duplicates],
        }


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def strip_wrapping_quotes(value: str) -> str:
    """Drop NUL characters and one leading and one trailing double quote."""
    value = value.replace("\x00", "")
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value


def to_number(value: str) -> float:
    """Parse a numeric cell. Anything unparseable or non-finite is 0.0."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(parsed) or math.isinf(parsed):
        return 0.0
    return parsed


def _split_fields(line: str) -> list[str]:
    return [strip_wrapping_quotes(v).strip() for v in line.split(",")]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load(source: str) -> Catalogue:
    """Parse a catalogue source into a Catalogue.

    Raises:
        EmptySourceError: no non-blank lines.
        HeaderShapeMismatchError: header column count != 8.
        RowShapeMismatchError: a data row's column count != 8.
        MissingIdentifierError: a data row has an empty ISO code.
    """
    # (1-based original line number, trimmed line) for non-blank lines
    lines: list[tuple[int, str]] = []
    for line_number, raw in enumerate(_LINE_BREAK.split(source), 1):
        trimmed = raw.strip()
        if trimmed:
            lines.append((line_number, trimmed))

    if not lines:
        raise EmptySourceError()

    _, header_line = lines[0]
    headers = strip_wrapping_quotes(header_line).split(",")
    if len(headers) != EXPECTED_COLUMN_COUNT:
        raise HeaderShapeMismatchError(EXPECTED_COLUMN_COUNT, len(headers))

    countries_by_iso: dict[str, CountryRecord] = {}
    duplicates: list[DuplicateNotice] = []

    for line_number, line in lines[1:]:
        sanitized = strip_wrapping_quotes(line).strip()
        if not sanitized:
            continue

        values = _split_fields(sanitized)
        if len(values) != EXPECTED_COLUMN_COUNT:
            raise RowShapeMismatchError(line_number, EXPECTED_COLUMN_COUNT, len(values))

        name, iso_code, *numeric = values
        if not iso_code:
            raise MissingIdentifierError(line_number)

        (
            ituc_rights_rating,
            corruption_index,
            migrant_worker_prevalence,
            wjp_index,
            walkfree_slavery_index,
            base_risk_score,
        ) = (to_number(v) for v in numeric)

        previous = countries_by_iso.get(iso_code)
        if previous is not None:
            duplicates.append(DuplicateNotice(
                iso_code=iso_code,
                replaced_name=previous.name,
                with_name=name,
            ))

        countries_by_iso[iso_code] = CountryRecord(
            name=name,
            iso_code=iso_code,
            ituc_rights_rating=ituc_rights_rating,
            corruption_index=corruption_index,
            migrant_worker_prevalence=migrant_worker_prevalence,
            wjp_index=wjp_index,
            walkfree_slavery_index=walkfree_slavery_index,
            base_risk_score=base_risk_score,
        )

    if duplicates:
        logger.warning(json.dumps({
            "event": "catalogue_duplicates",
            "count": len(duplicates),
            "iso_codes": sorted({d.iso_code for d in duplicates}),
        }))

    return Catalogue(
        countries=tuple(countries_by_iso.values()),
        duplicates=tuple(duplicates),
    )


def load_file(path: Path | str = DEFAULT_CATALOGUE_PATH) -> Catalogue:
    """Read a UTF-8 catalogue file and parse it with load().

    Raises CatalogueFileNotFoundError if the file does not exist, plus
    everything load() raises.
    """
    path = Path(path)
    if not path.is_file():
        raise CatalogueFileNotFoundError(path)

    with open(path, encoding="utf-8-sig") as fh:
        source = fh.read()

    catalogue = load(source)
    logger.info(json.dumps({
        "event": "catalogue_loaded",
        "source": path.name,
        "countries": len(catalogue.countries),
        "duplicates": len(catalogue.duplicates),
    }))
    return catalogue
