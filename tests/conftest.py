import pandas as pd
import pytest

from A1C.observation import (
    HBA1C_MMOL_MOL,
    OBSERVATION_DATE,
    PARENT_GROUP_ID,
    PATIENT_ID,
    UNIT_CATEGORY,
    UNIT_DESCRIPTION,
    VALUE,
)


@pytest.fixture
def make_observations():
    """
    Build a raw observation frame from (patient, group, date, value, unit) tuples.
    """

    def _make(rows):
        return pd.DataFrame(
            rows,
            columns=[PATIENT_ID, PARENT_GROUP_ID, OBSERVATION_DATE, VALUE, UNIT_DESCRIPTION],
        )

    return _make


@pytest.fixture
def make_converted():
    """
    Build a converted frame from (patient, group, date, category, mmol/mol) tuples,
    i.e. the shape the daily reconciler receives.
    """

    def _make(rows):
        df = pd.DataFrame(
            rows,
            columns=[PATIENT_ID, PARENT_GROUP_ID, OBSERVATION_DATE, UNIT_CATEGORY, HBA1C_MMOL_MOL],
        )
        df[OBSERVATION_DATE] = pd.to_datetime(df[OBSERVATION_DATE])
        df[HBA1C_MMOL_MOL] = df[HBA1C_MMOL_MOL].astype(float)
        return df

    return _make


@pytest.fixture
def extract_dir(tmp_path):
    """
    A tiny primary-care extract: two observation partitions, a unit lookup,
    an HbA1c code list and a patient list.
    """
    (tmp_path / "observation_001.txt").write_text(
        "patid\tparentobsid\tobsdate\tmedcodeid\tvalue\tnumunitid\n"
        "0001\t9001\t01/03/2020\t999\t55\t96\n"
        "0001\t9001\t01/03/2020\t999\t7.2\t1\n"
        "0002\t9002\t05/06/2020\t999\t40\t96\n"
        "0003\t\t07/07/2021\t999\t6.5\t1\n"
        "0004\t9004\t01/01/2021\t999\t50\t96\n"
        "0001\t9005\t01/03/2020\t123\t99\t96\n",
        encoding="utf-8",
    )
    (tmp_path / "observation_002.txt").write_text(
        "patid\tparentobsid\tobsdate\tmedcodeid\tvalue\tnumunitid\n"
        "0002\t9010\t05/06/2020\t999\t90\t96\n"
        "0003\t9011\t08/07/2021\t999\t\t96\n"
        "0003\t9012\t09/07/2021\t999\t48\t50\n",
        encoding="utf-8",
    )
    (tmp_path / "units.txt").write_text(
        "numunitid\tDescription\n"
        "1\t%\n"
        "96\tmmol/mol\n"
        "50\tTotal haemoglobin\n",
        encoding="utf-8",
    )
    (tmp_path / "codes.txt").write_text("medcodeid\tterm\n999\tHbA1c level\n", encoding="utf-8")
    (tmp_path / "patients.txt").write_text("patid\n0001\n0002\n0003\n", encoding="utf-8")
    return tmp_path
