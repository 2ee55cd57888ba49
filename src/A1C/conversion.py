"""
Unit converter.

Expresses every surviving HbA1c value on the IFCC scale (mmol/mol):
- IFCC values pass through unchanged
- IU/L values are first mapped to percent: (2.59 + value) / 1.59
- DCCT percent values: floor(10.929 * (percent - 2.14)), then rounded
"""

import logging

import numpy as np
import pandas as pd

from .faults import DataQualityError
from .observation import HBA1C_MMOL_MOL, UNIT_CATEGORY, VALUE, UnitCategory

logger = logging.getLogger(__name__)

# IU/L -> percent
IU_PER_L_OFFSET = 2.59
IU_PER_L_DIVISOR = 1.59

# percent -> mmol/mol (IFCC-DCCT master equation)
DCCT_TO_IFCC_SLOPE = 10.929
DCCT_TO_IFCC_OFFSET = 2.14

IFCC_MIN = 20
IFCC_MAX = 200


def iu_per_l_to_percent(value):
    return (IU_PER_L_OFFSET + value) / IU_PER_L_DIVISOR


def percent_to_mmol_mol(percent):
    """
    Convert a DCCT percentage to mmol/mol.
    Works on scalars, numpy arrays and pandas Series alike.
    """
    converted = np.round(np.floor(DCCT_TO_IFCC_SLOPE * (percent - DCCT_TO_IFCC_OFFSET)))
    if isinstance(converted, np.floating):
        return float(converted)
    return converted


def check_ifcc_range(df: pd.DataFrame) -> None:
    """
    Every converted value must lie in [20, 200]. Anything else means the
    classification or conversion assumptions no longer hold for this input.
    """
    values = df[HBA1C_MMOL_MOL]
    bad = df.loc[(values < IFCC_MIN) | (values > IFCC_MAX)]
    if bad.empty:
        return
    # report the scale of the first offending row
    category = bad[UNIT_CATEGORY].iloc[0]
    rows = bad.loc[bad[UNIT_CATEGORY] == category]
    raise DataQualityError(
        step="conversion",
        scale=category.value,
        values=rows[HBA1C_MMOL_MOL].tolist(),
        message=(
            f"{len(rows)} converted value(s) outside [{IFCC_MIN}, {IFCC_MAX}] mmol/mol: "
            f"{sorted(rows[HBA1C_MMOL_MOL].unique().tolist())[:10]}"
        ),
    )


def convert_to_ifcc(df: pd.DataFrame) -> pd.DataFrame:
    """
    Add the `hba1c_mmol_mol` column.
    Expects range-validated input, where IU/L values already hold percent.
    """
    converted = df.copy()
    is_dcct = converted[UNIT_CATEGORY] == UnitCategory.DCCT

    converted[HBA1C_MMOL_MOL] = converted[VALUE].astype(float)
    converted.loc[is_dcct, HBA1C_MMOL_MOL] = percent_to_mmol_mol(
        converted.loc[is_dcct, VALUE].astype(float)
    )
    logger.debug("Converted %d DCCT value(s) to mmol/mol", int(is_dcct.sum()))

    check_ifcc_range(converted)
    return converted
