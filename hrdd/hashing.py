"""
hrdd.hashing — Deterministic fingerprints for catalogues and weight vectors.

Fingerprints identify a loaded catalogue (so cached score tables can be
keyed on it) and a weight vector. Hash inputs are human-readable text,
one field per line, so a mismatch can be debugged by diffing the inputs.

Design contract:
    - canonical_float() is locale-independent and never uses exponents.
    - compute_record_hash() covers every field of a CountryRecord.
    - compute_catalogue_hash() depends on record content, not on order.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from hrdd.constants import CATALOGUE_COLUMNS, ROUND_PRECISION

if TYPE_CHECKING:
    from hrdd.catalogue import CountryRecord


def canonical_float(value: float) -> str:
    """Render a float in fixed-point notation with ROUND_PRECISION places.

    Examples (ROUND_PRECISION=8):
        canonical_float(20)     → "20.00000000"
        canonical_float(0.5)    → "0.50000000"
        canonical_float(-0.0)   → "0.00000000"

    Non-finite values render as "nan", "inf" or "-inf" so they remain
    distinguishable from every finite value.
    """
    value = float(value)
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    rounded = round(value, ROUND_PRECISION)
    if rounded == 0.0:
        rounded = 0.0  # fold -0.0
    return f"{rounded:.{ROUND_PRECISION}f}"


def compute_record_hash(record: CountryRecord) -> str:
    """SHA-256 of one country record, fields in catalogue column order."""
    wire = record.to_dict()
    parts = []
    for column in CATALOGUE_COLUMNS:
        value = wire[column]
        if isinstance(value, str):
            parts.append(f"{column}={value}")
        else:
            parts.append(f"{column}={canonical_float(value)}")

    hash_input = "\n".join(parts) + "\n"
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def compute_catalogue_hash(records: Iterable[CountryRecord]) -> str:
    """SHA-256 over all record hashes, in ISO-code order.

    An empty catalogue has a well-defined hash (of the empty input).
    """
    record_hashes = {r.iso_code: compute_record_hash(r) for r in records}
    parts = [f"{code}={record_hashes[code]}" for code in sorted(record_hashes)]
    hash_input = "\n".join(parts) + "\n"
    return hashlib.sha256(hash_input.encode("utf-8")).hexdigest()


def weights_key(weights: Sequence[float]) -> tuple[str, ...]:
    """Canonical, hashable form of a weight vector."""
    return tuple(canonical_float(w) for w in weights)
