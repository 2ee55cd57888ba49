import logging
import pathlib
import typing

import pandas as pd

from .observation import (
    OBSERVATION_DATE,
    PARENT_GROUP_ID,
    PATIENT_ID,
    UNIT_DESCRIPTION,
)

logger = logging.getLogger(__name__)

CODE_ID = "code_ID"
UNIT_ID = "unit_ID"

# Extract column names (after header normalization) → canonical names
RENAME_MAP = {
    # observation files
    "patid": PATIENT_ID,
    "patient_id": PATIENT_ID,
    "parentobsid": PARENT_GROUP_ID,
    "parent_group_id": PARENT_GROUP_ID,
    "obsdate": OBSERVATION_DATE,
    "medcodeid": CODE_ID,
    "code_id": CODE_ID,
    "numunitid": UNIT_ID,
    "unit_id": UNIT_ID,
    # unit lookup
    "description": UNIT_DESCRIPTION,
}

EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
TAB_SUFFIXES = {".tsv", ".txt", ".tab"}


def _normalize_headers(df: pd.DataFrame) -> pd.DataFrame:
    df.columns = (
        df.columns.astype(str)
        .str.strip()
        .str.replace(r"\s*\(.*?\)", "", regex=True)  # drop any "(…)"
        .str.replace(r"\s+", "_", regex=True)  # spaces → underscore
        .str.replace(":", "", regex=False)  # drop colons
        .str.lower()
    )
    return df.rename(
        columns={orig: target for orig, target in RENAME_MAP.items() if orig in df.columns}
    )


def load_table(path: typing.Union[str, pathlib.Path], sep: typing.Optional[str] = None) -> pd.DataFrame:
    """
    Read a CSV, tab-delimited or Excel table:
      - every cell as a string, so identifiers keep their leading zeros
      - headers normalized to snake_case lowercase
      - renames from RENAME_MAP applied
    """
    path = pathlib.Path(path)
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(path, sheet_name=0, header=0, dtype=str, engine="openpyxl")
    else:
        if sep is None:
            sep = "\t" if suffix in TAB_SUFFIXES else ","
        df = pd.read_csv(path, sep=sep, dtype=str)

    logger.debug("Loaded %d rows from %s", len(df), path)
    return _normalize_headers(df)


def _first_or_named_column(df: pd.DataFrame, column: str) -> pd.Series:
    if column in df.columns:
        return df[column]
    return df.iloc[:, 0]


def load_code_list(path: typing.Union[str, pathlib.Path]) -> set[str]:
    """Codes identifying the analyte (the `code_ID` column, else the first column)."""
    codes = _first_or_named_column(load_table(path), CODE_ID)
    return set(codes.dropna().astype(str).str.strip())


def load_patient_list(path: typing.Union[str, pathlib.Path]) -> set[str]:
    """Patients to keep (the `patient_ID` column, else the first column)."""
    patients = _first_or_named_column(load_table(path), PATIENT_ID)
    return set(patients.dropna().astype(str).str.strip())


def load_unit_lookup(path: typing.Union[str, pathlib.Path]) -> dict[str, str]:
    """Map unit ids to their free-text descriptions."""
    df = load_table(path)
    missing = {UNIT_ID, UNIT_DESCRIPTION} - set(df.columns)
    if missing:
        raise ValueError(f"Unit lookup {str(path)!r}: missing required columns: {sorted(missing)}")
    df = df.dropna(subset=[UNIT_ID])
    return dict(zip(df[UNIT_ID].astype(str).str.strip(), df[UNIT_DESCRIPTION]))


def select_analyte(observations: pd.DataFrame, codes: typing.Collection[str]) -> pd.DataFrame:
    """Keep the observations coded as the analyte of interest."""
    if CODE_ID not in observations.columns:
        raise ValueError(f"missing required column: {CODE_ID!r}")
    wanted = {str(code).strip() for code in codes}
    keep = observations[CODE_ID].astype(str).str.strip().isin(wanted)
    return observations.loc[keep].reset_index(drop=True)


def attach_unit_descriptions(observations: pd.DataFrame, unit_lookup: typing.Mapping[str, str]) -> pd.DataFrame:
    """
    Resolve `unit_ID` to `unit_description`. Ids missing from the lookup give
    a missing description, which the unit classifier discards.
    """
    if UNIT_ID not in observations.columns:
        if UNIT_DESCRIPTION in observations.columns:
            return observations
        raise ValueError(f"missing required column: {UNIT_ID!r} or {UNIT_DESCRIPTION!r}")
    annotated = observations.copy()
    annotated[UNIT_DESCRIPTION] = annotated[UNIT_ID].astype(str).str.strip().map(dict(unit_lookup))
    return annotated


def restrict_to_patients(observations: pd.DataFrame, patient_ids: typing.Collection[str]) -> pd.DataFrame:
    wanted = {str(patient).strip() for patient in patient_ids}
    keep = observations[PATIENT_ID].astype(str).str.strip().isin(wanted)
    return observations.loc[keep].reset_index(drop=True)


def write_output(output: pd.DataFrame, path: typing.Union[str, pathlib.Path]) -> pathlib.Path:
    """Write the reconciled series; dates as YYYY-MM-DD."""
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    table = output.copy()
    table[OBSERVATION_DATE] = pd.to_datetime(table[OBSERVATION_DATE]).dt.strftime("%Y-%m-%d")

    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        table.to_excel(path, index=False, engine="openpyxl")
    elif suffix in TAB_SUFFIXES:
        table.to_csv(path, sep="\t", index=False)
    else:
        table.to_csv(path, index=False)
    return path
