"""
Range validator.

Enforces physiologic plausibility per unit category and resolves
Unknown-category values from their magnitude. The IFCC range [20, 200] and
the DCCT range [4, 20.4] only overlap on [20, 20.4), so the value alone
identifies the scale of an Unknown-unit record almost everywhere.
"""

import logging
import typing

import pandas as pd

from .conversion import iu_per_l_to_percent
from .faults import DataQualityError
from .observation import UNIT_CATEGORY, UNIT_DESCRIPTION, VALUE, UnitCategory

logger = logging.getLogger(__name__)

IFCC_RANGE = (20.0, 200.0)
DCCT_RANGE = (4.0, 20.4)
# Unknown values strictly inside this interval fit both scales
UNKNOWN_GAP = (20.0, 20.4)
# Unknown values in [4, 20) are read as percent
UNKNOWN_DCCT_RANGE = (4.0, 20.0)

IU_PER_L_UNIT = "iu/l"


def resolve_unknown_unit(value: float) -> typing.Optional[UnitCategory]:
    """
    Resolve the category of an Unknown-unit value:
      - IFCC when 20 <= value <= 200
      - DCCT when 4 <= value < 20
      - None (discard) for anything else
    Raises DataQualityError for 20 < value < 20.4, where both scales fit.
    """
    gap_low, gap_high = UNKNOWN_GAP
    if gap_low < value < gap_high:
        raise DataQualityError(
            step="range-validation",
            scale=UnitCategory.UNKNOWN.value,
            values=[value],
            message=f"value {value!r} falls in the ambiguous interval {UNKNOWN_GAP}",
        )
    if IFCC_RANGE[0] <= value <= IFCC_RANGE[1]:
        return UnitCategory.IFCC
    if UNKNOWN_DCCT_RANGE[0] <= value < UNKNOWN_DCCT_RANGE[1]:
        return UnitCategory.DCCT
    return None


def is_iu_per_l(units: pd.Series) -> pd.Series:
    return units.fillna("").astype(str).str.strip().str.lower() == IU_PER_L_UNIT


def _within(values: pd.Series, bounds: tuple[float, float]) -> pd.Series:
    return values.between(bounds[0], bounds[1], inclusive="both")


def validate_ranges(df: pd.DataFrame) -> pd.DataFrame:
    """
    Apply, in order:
      1) IFCC: keep 20 <= value <= 200
      2) DCCT: map raw 'iu/l' values to percent, then keep 4 <= value <= 20.4
      3) Unknown: fail on the ambiguous interval, re-tag by range, drop the rest
    Returns a new frame; `value` holds percent for every DCCT row afterwards.
    """
    validated = df.copy()
    validated[VALUE] = validated[VALUE].astype(float)
    categories = validated[UNIT_CATEGORY]

    is_ifcc = categories == UnitCategory.IFCC
    is_dcct = categories == UnitCategory.DCCT
    is_unknown = categories == UnitCategory.UNKNOWN

    # 1) IFCC
    keep_ifcc = is_ifcc & _within(validated[VALUE], IFCC_RANGE)

    # 2) DCCT, IU/L first
    iu_rows = is_dcct & is_iu_per_l(validated[UNIT_DESCRIPTION])
    validated.loc[iu_rows, VALUE] = iu_per_l_to_percent(validated.loc[iu_rows, VALUE])
    keep_dcct = is_dcct & _within(validated[VALUE], DCCT_RANGE)

    # 3) Unknown, each distinct value resolved once
    unknown_values = validated.loc[is_unknown, VALUE]
    resolved = {}
    ambiguous = []
    for value in unknown_values.unique():
        try:
            resolved[value] = resolve_unknown_unit(value)
        except DataQualityError:
            ambiguous.append(value)
    if ambiguous:
        offending = unknown_values[unknown_values.isin(ambiguous)]
        raise DataQualityError(
            step="range-validation",
            scale=UnitCategory.UNKNOWN.value,
            values=offending.tolist(),
            message=(
                f"{len(offending)} value(s) fall in the ambiguous interval "
                f"{UNKNOWN_GAP[0]} < value < {UNKNOWN_GAP[1]}: {sorted(ambiguous)[:10]}"
            ),
        )
    resolution = validated[VALUE].where(is_unknown).map(resolved)
    as_ifcc = is_unknown & resolution.map(lambda category: category is UnitCategory.IFCC).astype(bool)
    as_dcct = is_unknown & resolution.map(lambda category: category is UnitCategory.DCCT).astype(bool)
    validated.loc[as_ifcc, UNIT_CATEGORY] = UnitCategory.IFCC
    validated.loc[as_dcct, UNIT_CATEGORY] = UnitCategory.DCCT

    keep = keep_ifcc | keep_dcct | as_ifcc | as_dcct
    logger.debug(
        "Range validation: kept %d IFCC, %d DCCT (%d from IU/L), resolved %d Unknown; dropped %d",
        int(keep_ifcc.sum()), int(keep_dcct.sum()), int((iu_rows & keep_dcct).sum()),
        int((as_ifcc | as_dcct).sum()), int((~keep).sum()),
    )
    return validated.loc[keep]
