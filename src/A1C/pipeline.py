import abc
import logging
import typing

import pandas as pd

from collections import Counter, namedtuple

from .config import RunConfig
from .conversion import convert_to_ifcc
from .faults import DataQualityError
from .observation import (
    HBA1C_MMOL_MOL,
    OBSERVATION_COLUMNS,
    OBSERVATION_DATE,
    PARENT_GROUP_ID,
    PATIENT_ID,
    UNIT_CATEGORY,
    UNIT_DESCRIPTION,
    VALUE,
    HbA1cMeasurement,
    ObservationRecord,
    UnitCategory,
)
from .ranges import validate_ranges
from .reconcile import DailyAggregate, deduplicate_daily, iter_daily_aggregates, reconcile_daily
from .units import classify_units

logger = logging.getLogger(__name__)

AuditEntry = namedtuple("AuditEntry", ["step", "source", "message", "level"])

# Columns an observation table must carry (parent group id is optional)
REQUIRED_OBSERVATION_COLUMNS = {PATIENT_ID, OBSERVATION_DATE, VALUE, UNIT_DESCRIPTION}


def combine_partitions(partitions: typing.Iterable[pd.DataFrame]) -> pd.DataFrame:
    """
    Fold any number of partition frames into one record set.
    Reconciliation needs every record of a patient-day together, so this runs
    before the daily reconciler.
    """
    frames = [frame for frame in partitions if frame is not None and not frame.empty]
    if not frames:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def records_to_frame(records: typing.Iterable[typing.Any]) -> pd.DataFrame:
    """
    Build an observation frame from ObservationRecord objects or plain
    (patient, parent group, date, value, unit) tuples.
    """
    rows = [
        (record if isinstance(record, ObservationRecord) else ObservationRecord(*record)).as_row()
        for record in records
    ]
    return pd.DataFrame(rows, columns=OBSERVATION_COLUMNS)


def to_measurements(output: pd.DataFrame) -> list[HbA1cMeasurement]:
    """Turn an output frame into immutable HbA1cMeasurement records."""
    return [
        HbA1cMeasurement(
            patient_ID=str(row[PATIENT_ID]),
            observation_date=pd.Timestamp(row[OBSERVATION_DATE]).date(),
            hba1c_mmol_mol=float(row[HBA1C_MMOL_MOL]),
            unit_category=UnitCategory.from_label(row[UNIT_CATEGORY]),
        )
        for _, row in output.iterrows()
    ]


class ObservationPipeline(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def run(self, observations: pd.DataFrame) -> pd.DataFrame:
        # return the reconciled output frame, one row per patient-day
        raise NotImplementedError


class HbA1cPipeline(ObservationPipeline):
    def __init__(self, config: typing.Optional[RunConfig] = None):
        self.config = config or RunConfig()
        self.stats: Counter = Counter()
        self.audit: list[AuditEntry] = []
        self.rejected_days: list[DailyAggregate] = []

    def run(self, observations, source: str = "observations") -> pd.DataFrame:
        """
        Process:
        1) classify unit strings (drop excluded / unrecognized)
        2) drop records without patient, value or date
        3) validate ranges, resolve Unknown units
        4) convert to mmol/mol
        5) reconcile to one value per patient-day
        `observations` is a frame or an iterable of ObservationRecord.
        A DataQualityError from 3) or 4) aborts the run.
        """
        return self.reconcile(self.prepare(observations, source))

    def run_partitions(self, partitions: typing.Iterable[typing.Tuple[str, pd.DataFrame]]) -> pd.DataFrame:
        """
        Prepare each (source, frame) partition on its own, then fold them
        together and reconcile the combined set.
        """
        prepared = [self.prepare(frame, source) for source, frame in partitions]
        return self.reconcile(combine_partitions(prepared))

    def prepare(self, observations, source: str = "observations") -> pd.DataFrame:
        """Steps 1-4: everything that can run per partition."""
        working = self._standardize(observations, source)
        self.stats["input"] += len(working)

        try:
            classified = classify_units(working)
            self._record_step("classify-units", source, len(working), len(classified),
                              "excluded or unrecognized unit")
            self.stats["classified"] += len(classified)

            complete = self._drop_incomplete(classified, source)
            self._record_step("missing-values", source, len(classified), len(complete),
                              "missing patient, value or date")
            self.stats["complete"] += len(complete)

            validated = validate_ranges(complete)
            self._record_step("range-validation", source, len(complete), len(validated),
                              "out of range or unresolvable unit")
            self.stats["validated"] += len(validated)

            converted = convert_to_ifcc(validated)
            self.stats["converted"] += len(converted)
        except DataQualityError as fault:
            self.audit.append(AuditEntry(step=fault.step, source=source, message=str(fault), level="error"))
            logger.error("Aborting on data-quality fault in %r: %s", source, fault)
            raise

        return converted

    def reconcile(self, converted: pd.DataFrame) -> pd.DataFrame:
        """Step 5: one value per patient-day."""
        self.rejected_days = []
        output = reconcile_daily(converted)
        if converted.empty:
            self._record_reconciliation(0, output)
            return output

        patient_days = converted[[PATIENT_ID, OBSERVATION_DATE]].drop_duplicates().shape[0]
        if len(output) < patient_days:
            self.rejected_days = [
                aggregate
                for aggregate in iter_daily_aggregates(deduplicate_daily(converted))
                if not aggregate.within_tolerance
            ]
        self._record_reconciliation(patient_days, output)
        return output

    def _standardize(self, observations, source: str) -> pd.DataFrame:
        """
        Check the required columns and reduce the frame to the canonical ones.
        A missing parent group column means no record was co-submitted.
        """
        if not isinstance(observations, pd.DataFrame):
            observations = records_to_frame(observations)

        missing = REQUIRED_OBSERVATION_COLUMNS - set(observations.columns)
        if missing:
            raise ValueError(f"{source!r}: missing required columns: {sorted(missing)}")

        working = observations.copy()
        if PARENT_GROUP_ID not in working.columns:
            working[PARENT_GROUP_ID] = None
        working = working[OBSERVATION_COLUMNS].reset_index(drop=True)

        # blank or missing ids stay missing and go out with the incomplete rows
        ids = working[PATIENT_ID]
        stripped = ids.astype(str).str.strip()
        working[PATIENT_ID] = stripped.where(ids.notna() & (stripped != ""))
        return working

    def _drop_incomplete(self, df: pd.DataFrame, source: str = "observations") -> pd.DataFrame:
        working = df.copy()
        working[VALUE] = pd.to_numeric(working[VALUE], errors="coerce")

        raw_dates = working[OBSERVATION_DATE]
        # without a configured format every string is parsed on its own
        working[OBSERVATION_DATE] = pd.to_datetime(
            raw_dates,
            format=self.config.date_format or "mixed",
            dayfirst=self.config.dayfirst,
            errors="coerce",
        ).dt.normalize()

        has_text = raw_dates.notna() & (raw_dates.astype(str).str.strip() != "")
        unparsed = int((has_text & working[OBSERVATION_DATE].isna()).sum())
        if unparsed:
            logger.warning("%s: %d non-empty observation date(s) could not be parsed", source, unparsed)

        return working.dropna(subset=[PATIENT_ID, VALUE, OBSERVATION_DATE])

    def _record_step(self, step: str, source: str, before: int, after: int, reason: str) -> None:
        dropped = before - after
        message = f"kept {after} of {before} rows; dropped {dropped} ({reason})"
        logger.info("%s [%s]: %s", step, source, message)
        self.audit.append(AuditEntry(step=step, source=source, message=message, level="info"))

    def _record_reconciliation(self, patient_days: int, output: pd.DataFrame) -> None:
        rejected = patient_days - len(output)
        self.stats["patient_days"] += patient_days
        self.stats["rejected_days"] += rejected
        self.stats["output"] += len(output)

        message = f"{len(output)} of {patient_days} patient-days reconciled; {rejected} rejected for spread"
        logger.info("reconcile-daily: %s", message)
        self.audit.append(AuditEntry(
            step="reconcile-daily",
            source="combined",
            message=message,
            level="warn" if rejected else "info",
        ))
