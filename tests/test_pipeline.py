"""
End-to-end tests for HbA1cPipeline: classification through reconciliation,
stats and audit bookkeeping, partition folding and fail-fast faults.
"""

import datetime

import pandas as pd
import pytest

from A1C.config import RunConfig
from A1C.faults import DataQualityError
from A1C.observation import HBA1C_MMOL_MOL, OBSERVATION_COLUMNS, HbA1cMeasurement, UnitCategory
from A1C.pipeline import HbA1cPipeline, combine_partitions, to_measurements


def test_ifcc_and_dcct_in_one_group_yield_the_ifcc_value(make_observations):
    observations = make_observations(
        [
            (1, "G", "2020-03-01", 55, "mmol/mol"),
            (1, "G", "2020-03-01", 7.2, "%"),
        ]
    )
    output = HbA1cPipeline().run(observations)

    assert to_measurements(output) == [
        HbA1cMeasurement(
            patient_ID="1",
            observation_date=datetime.date(2020, 3, 1),
            hba1c_mmol_mol=55.0,
            unit_category=UnitCategory.IFCC,
        )
    ]


def test_disagreeing_values_from_different_groups_emit_nothing(make_observations):
    observations = make_observations(
        [
            (2, "G1", "2020-03-01", 40, "mmol/mol"),
            (2, "G2", "2020-03-01", 90, "mmol/mol"),
        ]
    )
    pipeline = HbA1cPipeline()
    output = pipeline.run(observations)

    assert output.empty
    assert pipeline.stats["rejected_days"] == 1
    assert [aggregate.spread for aggregate in pipeline.rejected_days] == [50.0]
    assert pipeline.audit[-1].level == "warn"


def test_dcct_values_are_reported_on_the_ifcc_scale(make_observations):
    observations = make_observations(
        [
            (3, None, "2021-07-07", "7.0", "HbA1c %"),
            (4, None, "2021-07-07", 4.0, "iu/l"),
            (5, None, "2021-07-07", 9.0, "HbA1c"),
        ]
    )
    output = HbA1cPipeline().run(observations)

    assert output[HBA1C_MMOL_MOL].tolist() == [53.0, 21.0, 74.0]
    assert output["unit_category"].tolist() == ["DCCT", "DCCT", "DCCT"]


def test_incomplete_and_unrecognized_records_are_discarded(make_observations):
    observations = make_observations(
        [
            (1, None, "2020-01-01", 50, "mmol/mol"),
            (1, None, None, 51, "mmol/mol"),
            (1, None, "2020-01-02", None, "mmol/mol"),
            (1, None, "2020-01-03", "", "mmol/mol"),
            (1, None, "not a date", 52, "mmol/mol"),
            (1, None, "2020-01-04", 140, "Total haemoglobin"),
            (1, None, "2020-01-05", 50, "g/L"),
            (1, None, "2020-01-06", 300, "mmol/mol"),
        ]
    )
    pipeline = HbA1cPipeline()
    output = pipeline.run(observations)

    assert len(output) == 1
    assert pipeline.stats["input"] == 8
    assert pipeline.stats["classified"] == 6
    assert pipeline.stats["complete"] == 2
    assert pipeline.stats["validated"] == 1
    assert pipeline.stats["output"] == 1
    assert [entry.step for entry in pipeline.audit] == [
        "classify-units",
        "missing-values",
        "range-validation",
        "reconcile-daily",
    ]


def test_observation_dates_are_reduced_to_the_calendar_day(make_observations):
    observations = make_observations(
        [
            (1, "A", "2020-03-01 08:15", 50, "mmol/mol"),
            (1, "B", "2020-03-01 17:40", 54, "mmol/mol"),
        ]
    )
    output = HbA1cPipeline().run(observations)
    assert output["observation_date"].tolist() == [pd.Timestamp("2020-03-01")]
    assert output[HBA1C_MMOL_MOL].tolist() == [52.0]


def test_date_format_from_config(make_observations):
    observations = make_observations([(1, None, "02/03/2020", 50, "mmol/mol")])
    output = HbA1cPipeline(RunConfig(date_format="%d/%m/%Y")).run(observations)
    assert output["observation_date"].tolist() == [pd.Timestamp("2020-03-02")]


def test_unknown_value_in_ambiguous_interval_aborts_the_run(make_observations):
    observations = make_observations(
        [
            (1, None, "2020-01-01", 50, "mmol/mol"),
            (2, None, "2020-01-01", 20.2, "HbA1c"),
        ]
    )
    pipeline = HbA1cPipeline()
    with pytest.raises(DataQualityError) as excinfo:
        pipeline.run(observations)

    assert excinfo.value.step == "range-validation"
    assert pipeline.audit[-1].level == "error"


def test_missing_columns_raise_value_error():
    with pytest.raises(ValueError, match="missing required columns"):
        HbA1cPipeline().run(pd.DataFrame({"patient_ID": ["1"], "value": [50]}))


def test_parent_group_column_is_optional(make_observations):
    observations = make_observations([(1, None, "2020-01-01", 50, "mmol/mol")])
    output = HbA1cPipeline().run(observations.drop(columns="parent_group_ID"))
    assert len(output) == 1


def test_partitions_are_folded_before_reconciliation(make_observations):
    first = make_observations(
        [
            (3, "A", "2020-05-01", 50, "mmol/mol"),
            (4, "C", "2020-05-01", 45, "mmol/mol"),
        ]
    )
    second = make_observations(
        [
            (3, "B", "2020-05-01", 54, "mmol/mol"),
            (4, "D", "2020-05-01", 90, "mmol/mol"),
        ]
    )
    pipeline = HbA1cPipeline()
    output = pipeline.run_partitions([("part-1", first), ("part-2", second)])

    assert output["patient_ID"].tolist() == ["3"]
    assert output[HBA1C_MMOL_MOL].tolist() == [52.0]
    assert pipeline.stats["input"] == 4
    assert {entry.source for entry in pipeline.audit} == {"part-1", "part-2", "combined"}


def test_run_partitions_with_nothing_left(make_observations):
    only_noise = make_observations([(1, None, "2020-01-01", 5, "g/L")])
    output = HbA1cPipeline().run_partitions([("part-1", only_noise)])
    assert output.empty


def test_combine_partitions_of_nothing_is_an_empty_frame():
    combined = combine_partitions([])
    assert combined.empty
    assert list(combined.columns) == OBSERVATION_COLUMNS


def test_combine_partitions_skips_empty_frames(make_observations):
    one = make_observations([(1, None, "2020-01-01", 50, "mmol/mol")])
    combined = combine_partitions([one, make_observations([]), None, one])
    assert len(combined) == 2
    assert combined.index.tolist() == [0, 1]


def test_half_way_daily_mean_rounds_upwards():
    day = datetime.date(2020, 3, 1)
    output = HbA1cPipeline().run(
        [
            (1, "A", day, 52, "mmol/mol"),
            (1, "B", day, 53, "mmol/mol"),
            (2, "C", day, 54, "mmol/mol"),
            (2, "D", day, 55, "mmol/mol"),
        ]
    )
    assert output[HBA1C_MMOL_MOL].tolist() == [53.0, 55.0]


def test_mixed_date_formats_are_all_parsed(make_observations, caplog):
    observations = make_observations(
        [
            (1, None, "2020-03-01", 50, "mmol/mol"),
            (2, None, "05/06/2020", 60, "mmol/mol"),
            (3, None, "not a date", 70, "mmol/mol"),
        ]
    )
    pipeline = HbA1cPipeline()
    with caplog.at_level("WARNING", logger="A1C.pipeline"):
        output = pipeline.run(observations)

    assert output["observation_date"].tolist() == [pd.Timestamp("2020-03-01"), pd.Timestamp("2020-05-06")]
    assert pipeline.stats["complete"] == 2
    assert "1 non-empty observation date(s) could not be parsed" in caplog.text


def test_rejected_days_are_reset_between_runs(make_observations):
    pipeline = HbA1cPipeline()
    pipeline.run(make_observations([(2, "G1", "2020-03-01", 40, "mmol/mol"), (2, "G2", "2020-03-01", 90, "mmol/mol")]))
    assert len(pipeline.rejected_days) == 1

    pipeline.run(make_observations([(3, None, "2020-03-01", 50, "mmol/mol")]))
    assert pipeline.rejected_days == []


def test_records_without_patient_id_are_discarded(make_observations):
    observations = make_observations(
        [
            (None, None, "2020-01-01", 50, "mmol/mol"),
            ("  ", None, "2020-01-01", 51, "mmol/mol"),
            (" 7 ", None, "2020-01-01", 52, "mmol/mol"),
        ]
    )
    pipeline = HbA1cPipeline()
    output = pipeline.run(observations)

    assert output["patient_ID"].tolist() == ["7"]
    assert "nan" not in output["patient_ID"].tolist()
    assert pipeline.stats["complete"] == 1
