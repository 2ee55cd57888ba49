"""
Unit classifier.

Maps the free-text unit description of an HbA1c observation to a reporting
scale. Matching is case-insensitive substring matching against fixed
vocabularies:

1) exclusion: strings naming a different analyte are discarded
2) inclusion: strings matching none of the known HbA1c unit spellings are discarded
3) category: an ordered (pattern, category) table, IFCC rules first and
   DCCT rules second, last match wins
"""

import logging
import typing

import pandas as pd

from .observation import UNIT_CATEGORY, UNIT_DESCRIPTION, UnitCategory

logger = logging.getLogger(__name__)

# Strings naming a different analyte
EXCLUDED_UNIT_PATTERNS = (
    "total haemoglobin",
    "total hemoglobin",
    "hba0",
    "unknown",
)

IFCC_UNIT_PATTERNS = (
    "ifcc",
    "mmol/mol",
    "mmol/mo",
    "mmo/mol",
    "mmol mol",
    "mmol/ mol",
    "mmol/mmol",
)

DCCT_UNIT_PATTERNS = (
    "%",
    "dcct",
    "per cent",
    "iu/l",
)

# Recognized as HbA1c, but the scale has to be inferred from the value
AMBIGUOUS_UNIT_PATTERNS = (
    "mmol/l",
    "hba1c",
)

INCLUDED_UNIT_PATTERNS = IFCC_UNIT_PATTERNS + DCCT_UNIT_PATTERNS + AMBIGUOUS_UNIT_PATTERNS

# Order matters: a string matching both vocabularies ends up DCCT.
UNIT_RULES: tuple[tuple[str, UnitCategory], ...] = tuple(
    [(pattern, UnitCategory.IFCC) for pattern in IFCC_UNIT_PATTERNS]
    + [(pattern, UnitCategory.DCCT) for pattern in DCCT_UNIT_PATTERNS]
)


def _normalize(unit: typing.Any) -> str:
    if unit is None or (not isinstance(unit, str) and pd.isna(unit)):
        return ""
    return str(unit).lower()


def is_excluded(unit: typing.Any) -> bool:
    s = _normalize(unit)
    return any(pattern in s for pattern in EXCLUDED_UNIT_PATTERNS)


def is_included(unit: typing.Any) -> bool:
    s = _normalize(unit)
    return any(pattern in s for pattern in INCLUDED_UNIT_PATTERNS)


def classify_unit(unit: typing.Any) -> typing.Optional[UnitCategory]:
    """
    Return the unit category of a unit description, or None if the record
    carrying it must be discarded (excluded analyte, or not an HbA1c unit).
    """
    if is_excluded(unit) or not is_included(unit):
        return None

    s = _normalize(unit)
    category = UnitCategory.UNKNOWN
    for pattern, rule_category in UNIT_RULES:
        if pattern in s:
            category = rule_category
    return category


def describe_unit(unit: typing.Any) -> str:
    """Audit label for a unit description."""
    if is_excluded(unit):
        return "excluded"
    if not is_included(unit):
        return "not-included"
    return classify_unit(unit).value


def classify_units(df: pd.DataFrame) -> pd.DataFrame:
    """
    Drop rows whose unit description is excluded or unrecognized and tag the
    rest with a `unit_category` column.
    """
    if UNIT_DESCRIPTION not in df.columns:
        raise ValueError(f"missing required column: {UNIT_DESCRIPTION!r}")

    # classify each distinct string once
    units = df[UNIT_DESCRIPTION].fillna("").astype(str)
    lookup = {unit: classify_unit(unit) for unit in units.unique()}
    categories = units.map(lookup)

    keep = categories.notna()
    logger.debug(
        "Unit classification: %d of %d rows kept, %d distinct unit strings",
        int(keep.sum()), len(df), len(lookup),
    )
    classified = df.loc[keep].copy()
    classified[UNIT_CATEGORY] = categories[keep]
    return classified
