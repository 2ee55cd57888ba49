"""
Observation domain model.

Defines the unit categories, the raw ObservationRecord and the terminal
HbA1cMeasurement, plus the canonical column names shared by every stage
of the pipeline.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Canonical column names (after loader renaming)
PATIENT_ID = "patient_ID"
PARENT_GROUP_ID = "parent_group_ID"
OBSERVATION_DATE = "observation_date"
VALUE = "value"
UNIT_DESCRIPTION = "unit_description"
UNIT_CATEGORY = "unit_category"
HBA1C_MMOL_MOL = "hba1c_mmol_mol"

OBSERVATION_COLUMNS = [
    PATIENT_ID,
    PARENT_GROUP_ID,
    OBSERVATION_DATE,
    VALUE,
    UNIT_DESCRIPTION,
]

OUTPUT_COLUMNS = [PATIENT_ID, OBSERVATION_DATE, HBA1C_MMOL_MOL, UNIT_CATEGORY]


class UnitCategory(Enum):
    """
    Reporting scale of an HbA1c value.
    The declaration order is the sort order used by the daily reconciler:
    IFCC sorts before DCCT, which sorts before Unknown.
    """
    IFCC = "IFCC"
    DCCT = "DCCT"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return list(UnitCategory).index(self)

    @classmethod
    def from_label(cls, label: str) -> "UnitCategory":
        """
        Convert a category label ("IFCC", "dcct", "unknown") into the enum.
        """
        key = str(label).strip().lower()
        mapping = {
            "ifcc": cls.IFCC,
            "dcct": cls.DCCT,
            "unknown": cls.UNKNOWN,
        }
        try:
            return mapping[key]
        except KeyError:
            raise ValueError(f"Unknown unit category label: {label!r}")


@dataclass
class ObservationRecord:
    """
    A single raw observation for the analyte of interest.

    Attributes:
        patient_ID: Patient identifier.
        parent_group_ID: Identifier shared by co-submitted sub-records; None if absent.
        observation_date: Date of the observation; None if missing.
        value: Numeric value as reported; None if missing.
        unit_description: Free-text unit string from the unit lookup.
    """

    patient_ID: str
    parent_group_ID: Optional[str]
    observation_date: Optional[datetime.date]
    value: Optional[float]
    unit_description: str

    def as_row(self) -> dict:
        return {
            PATIENT_ID: self.patient_ID,
            PARENT_GROUP_ID: self.parent_group_ID,
            OBSERVATION_DATE: self.observation_date,
            VALUE: self.value,
            UNIT_DESCRIPTION: self.unit_description,
        }


@dataclass(frozen=True)
class HbA1cMeasurement:
    """
    One canonical HbA1c value per patient per day.

    Attributes:
        patient_ID: Patient identifier.
        observation_date: Calendar date of the measurement.
        hba1c_mmol_mol: Value on the IFCC scale (mmol/mol).
        unit_category: Scale the value was originally reported on (IFCC or DCCT).
    """

    patient_ID: str
    observation_date: datetime.date
    hba1c_mmol_mol: float
    unit_category: UnitCategory

    def __post_init__(self):
        if not str(self.patient_ID).strip():
            raise ValueError("patient_ID must not be empty")

        if self.unit_category not in (UnitCategory.IFCC, UnitCategory.DCCT):
            raise ValueError(
                f"unit_category must be IFCC or DCCT, got {self.unit_category!r}"
            )

        if not 20 <= self.hba1c_mmol_mol <= 200:
            raise ValueError(
                f"hba1c_mmol_mol out of range [20, 200]: {self.hba1c_mmol_mol!r}"
            )
