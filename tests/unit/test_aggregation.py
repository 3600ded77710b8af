from statistics import mean

import pytest

from agri_insights_pipeline.aggregation import (
    PartialAggregate,
    aggregate,
    partial_aggregate,
    resolve_group_by,
    summarize,
    summary_table,
)
from agri_insights_pipeline.schema import AgriRecord, iter_records, records_to_frame


def _record(year, location, season, rainfall, crop="Rice", humidity=60.0, yields=1000.0) -> AgriRecord:
    return AgriRecord(
        year=year,
        location=location,
        area=50.0,
        rainfall=rainfall,
        temperature=25.0,
        soil_type="Black",
        irrigation="Canal",
        yields=yields,
        humidity=humidity,
        crop=crop,
        price=2000,
        season=season,
    )


def _make_frame():
    return records_to_frame(
        [
            _record(2018, "Bangalore", "Kharif", 100.0, crop="Rice", yields=1000.0),
            _record(2018, "Bangalore", "Kharif", 300.0, crop="Ragi", yields=2000.0),
            _record(2017, "Mysuru", "Rabi", 50.0, crop="Rice", yields=1500.0),
            _record(2017, "Mysuru", "Kharif", 80.0, crop="Maize", yields=1234.0),
            _record(2016, "Hassan", "Zaid", 10.0, crop="Rice", yields=999.0),
        ]
    )


def test_rainfall_by_year_and_season():
    records = [
        _record(2018, "Bangalore", "Kharif", 100.0),
        _record(2018, "Bangalore", "Kharif", 300.0),
        _record(2017, "Mysuru", "Rabi", 50.0),
    ]

    result = aggregate(records, ("year", "season"), "rainfall")

    assert result == {(2018, "Kharif"): 200.0, (2017, "Rabi"): 50.0}


def test_set_group_by_uses_column_order():
    result = aggregate(_make_frame(), {"season", "year"}, "rainfall")

    assert (2018, "Kharif") in result
    assert resolve_group_by({"season", "crop", "year"}) == ("year", "crop", "season")


def test_sequence_group_by_keeps_caller_order():
    result = aggregate(_make_frame(), ["season", "year"], "rainfall")

    assert result[("Kharif", 2018)] == 200.0


def test_average_matches_manual_mean():
    frame = _make_frame()
    records = list(iter_records(frame))

    result = aggregate(frame, ("crop",), "yields", precision=6)

    for (crop,), average in result.items():
        expected = mean(r.yields for r in records if r.crop == crop)
        assert average == pytest.approx(round(expected, 6))
    assert set(result) == {(r.crop,) for r in records}


def test_empty_groups_are_absent():
    result = aggregate(_make_frame(), ("location", "season"), "rainfall")

    assert ("Hassan", "Kharif") not in result
    assert len(result) == 4


def test_result_is_rounded():
    records = [
        _record(2018, "Bangalore", "Kharif", 1.0),
        _record(2018, "Bangalore", "Kharif", 2.0),
        _record(2018, "Bangalore", "Kharif", 2.0),
    ]

    assert aggregate(records, ("year",), "rainfall") == {(2018,): 1.67}
    assert aggregate(records, ("year",), "rainfall", precision=0) == {(2018,): 2.0}


def test_keys_are_sorted_and_native():
    result = aggregate(_make_frame(), ("year",), "humidity")

    assert list(result) == [(2016,), (2017,), (2018,)]
    assert all(type(key[0]) is int for key in result)


def test_aggregate_is_deterministic():
    frame = _make_frame()

    first = aggregate(frame, ("location", "crop"), "yields")
    second = aggregate(frame.copy(), ("location", "crop"), "yields")

    assert first == second
    assert list(first) == list(second)


def test_invalid_arguments_raise():
    frame = _make_frame()

    with pytest.raises(ValueError):
        aggregate(frame, ("area",), "rainfall")
    with pytest.raises(ValueError):
        aggregate(frame, ("year",), "season")
    with pytest.raises(ValueError):
        aggregate(frame, (), "rainfall")
    with pytest.raises(ValueError):
        aggregate(frame, ("year", "year"), "rainfall")


def test_partial_aggregates_merge_across_shards():
    frame = _make_frame()
    left = partial_aggregate(frame.iloc[:2], ("year",), "rainfall")
    right = partial_aggregate(frame.iloc[2:], ("year",), "rainfall")

    merged = right.merge(left)

    assert merged.finalize() == aggregate(frame, ("year",), "rainfall")
    assert merged.counts[(2018,)] == 2


def test_merging_different_aggregates_fails():
    frame = _make_frame()
    by_year = partial_aggregate(frame, ("year",), "rainfall")
    by_crop = PartialAggregate(("crop",), "rainfall")

    with pytest.raises(ValueError):
        by_year.merge(by_crop)


def test_summary_table_columns():
    table = summary_table(_make_frame(), ("season", "crop"), "yields")

    assert list(table.columns) == ["season", "crop", "metric", "average"]
    assert set(table["metric"]) == {"yields"}
    row = table[(table["season"] == "Kharif") & (table["crop"] == "Ragi")]
    assert row["average"].item() == 2000.0


def test_summary_table_on_empty_input():
    table = summary_table(records_to_frame([]), ("year",), "rainfall")

    assert table.empty
    assert list(table.columns) == ["year", "metric", "average"]


def test_summarize_builds_sixteen_tables():
    tables = summarize(_make_frame())

    assert len(tables) == 16
    assert set(metric for metric, _ in tables) == {"rainfall", "temperature", "humidity", "yields"}
    assert set(dimension for _, dimension in tables) == {"year", "season", "crop", "location"}

    by_location = tables[("rainfall", "location")]
    assert dict(zip(by_location["location"], by_location["average"])) == {
        "Bangalore": 200.0,
        "Hassan": 10.0,
        "Mysuru": 65.0,
    }
