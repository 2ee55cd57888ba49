"""
Daily reconciler.

Collapses all converted HbA1c values of one patient on one day into a single
representative value. The steps run in this order, and the order matters:

1) group precedence: inside one (patient, date, parent group), an IFCC value
   replaces any co-submitted non-IFCC value
2) exact dedup: one row per (patient, date, converted value)
3) tolerance: if max - min <= 22 mmol/mol the day is represented by the mean,
   otherwise every value of that day is dropped
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from .observation import (
    HBA1C_MMOL_MOL,
    OBSERVATION_DATE,
    OUTPUT_COLUMNS,
    PARENT_GROUP_ID,
    PATIENT_ID,
    UNIT_CATEGORY,
    HbA1cMeasurement,
    UnitCategory,
)

logger = logging.getLogger(__name__)

SPREAD_TOLERANCE = 22.0

_RANK = "_category_rank"
DAY_KEY = [PATIENT_ID, OBSERVATION_DATE]


def round_half_up(value):
    """Round to the nearest whole number, halves upwards (values are positive)."""
    return np.floor(value + 0.5)


@dataclass(frozen=True)
class DailyAggregate:
    """
    All converted values of one patient-day.

    Attributes:
        patient_ID: Patient identifier.
        observation_date: Calendar date.
        values: Distinct converted values (mmol/mol) left after dedup.
        unit_category: IFCC if any value of the day was IFCC, else DCCT.
    """

    patient_ID: str
    observation_date: datetime.date
    values: tuple[float, ...]
    unit_category: UnitCategory

    @property
    def minimum(self) -> float:
        return min(self.values)

    @property
    def maximum(self) -> float:
        return max(self.values)

    @property
    def mean(self) -> float:
        return sum(self.values) / len(self.values)

    @property
    def spread(self) -> float:
        return self.maximum - self.minimum

    @property
    def within_tolerance(self) -> bool:
        return self.spread <= SPREAD_TOLERANCE

    @property
    def representative(self) -> Optional[float]:
        if not self.within_tolerance:
            return None
        return float(round_half_up(self.mean))

    def to_measurement(self) -> Optional[HbA1cMeasurement]:
        if self.representative is None:
            return None
        return HbA1cMeasurement(
            patient_ID=self.patient_ID,
            observation_date=self.observation_date,
            hba1c_mmol_mol=self.representative,
            unit_category=self.unit_category,
        )


def _with_rank(df: pd.DataFrame) -> pd.DataFrame:
    ranked = df.reset_index(drop=True)
    ranked[_RANK] = ranked[UNIT_CATEGORY].map(lambda category: category.rank)
    return ranked.sort_values(DAY_KEY + [_RANK], kind="stable")


def apply_group_precedence(df: pd.DataFrame) -> pd.DataFrame:
    """
    Within each (patient, date, parent group) holding an IFCC value, drop the
    non-IFCC values. Rows without a parent group id are singleton groups.
    """
    ranked = _with_rank(df)
    groups = ranked[PARENT_GROUP_ID]
    has_group = groups.notna() & (groups.astype(str).str.strip() != "")

    grouped = ranked.loc[has_group]
    if grouped.empty:
        return ranked.drop(columns=_RANK)

    is_ifcc = grouped[UNIT_CATEGORY] == UnitCategory.IFCC
    group_has_ifcc = is_ifcc.groupby(
        [grouped[PATIENT_ID], grouped[OBSERVATION_DATE], grouped[PARENT_GROUP_ID].astype(str)]
    ).transform("any")
    superseded = (group_has_ifcc & ~is_ifcc).astype(bool)

    logger.debug("Group precedence: %d non-IFCC value(s) superseded", int(superseded.sum()))
    return ranked.drop(index=superseded.index[superseded.to_numpy()]).drop(columns=_RANK)


def drop_exact_duplicates(df: pd.DataFrame) -> pd.DataFrame:
    """One row per (patient, date, converted value); IFCC rows win ties."""
    ranked = _with_rank(df)
    deduplicated = ranked.drop_duplicates(subset=DAY_KEY + [HBA1C_MMOL_MOL], keep="first")
    return deduplicated.drop(columns=_RANK)


def aggregate_daily(df: pd.DataFrame) -> pd.DataFrame:
    """
    Per (patient, date): n_values, min, max, mean, spread, unit_category and
    whether the spread is within tolerance.
    """
    ranked = _with_rank(df)
    aggregated = ranked.groupby(DAY_KEY, sort=True).agg(
        n_values=(HBA1C_MMOL_MOL, "size"),
        min=(HBA1C_MMOL_MOL, "min"),
        max=(HBA1C_MMOL_MOL, "max"),
        mean=(HBA1C_MMOL_MOL, "mean"),
        best_rank=(_RANK, "min"),
    ).reset_index()
    categories = list(UnitCategory)
    aggregated[UNIT_CATEGORY] = aggregated["best_rank"].map(lambda rank: categories[int(rank)])
    aggregated["spread"] = aggregated["max"] - aggregated["min"]
    aggregated["within_tolerance"] = aggregated["spread"] <= SPREAD_TOLERANCE
    return aggregated.drop(columns="best_rank")


def iter_daily_aggregates(df: pd.DataFrame) -> Iterator[DailyAggregate]:
    """Yield a DailyAggregate per patient-day of a deduplicated frame."""
    for (patient_id, day), rows in df.groupby(DAY_KEY, sort=True):
        best = min(rows[UNIT_CATEGORY], key=lambda category: category.rank)
        yield DailyAggregate(
            patient_ID=str(patient_id),
            observation_date=pd.Timestamp(day).date(),
            values=tuple(float(v) for v in rows[HBA1C_MMOL_MOL]),
            unit_category=best,
        )


def deduplicate_daily(df: pd.DataFrame) -> pd.DataFrame:
    """Group precedence followed by exact dedup."""
    return drop_exact_duplicates(apply_group_precedence(df))


def reconcile_daily(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reduce converted observations to one output row per patient-day.
    Patient-days whose values spread more than 22 mmol/mol emit nothing.
    """
    if df.empty:
        return pd.DataFrame(columns=OUTPUT_COLUMNS)

    aggregated = aggregate_daily(deduplicate_daily(df))
    accepted = aggregated.loc[aggregated["within_tolerance"]]
    logger.debug(
        "Reconciliation: %d patient-day(s), %d rejected for spread > %s",
        len(aggregated), int((~aggregated["within_tolerance"]).sum()), SPREAD_TOLERANCE,
    )

    output = pd.DataFrame(
        {
            PATIENT_ID: accepted[PATIENT_ID],
            OBSERVATION_DATE: accepted[OBSERVATION_DATE],
            HBA1C_MMOL_MOL: round_half_up(accepted["mean"]),
            UNIT_CATEGORY: accepted[UNIT_CATEGORY].map(lambda category: category.value),
        }
    )
    return output.reset_index(drop=True)[OUTPUT_COLUMNS]
