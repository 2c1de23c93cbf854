"""Gazetteer index construction and lookup"""

import polars as pl
import pytest

from prescriber_geo.errors import InputDataError
from prescriber_geo.gazetteer import GazetteerIndex, build, load_place_names
from prescriber_geo.records import PlaceKey


def test_new_london_maps_to_its_county(gazetteer):
    assert gazetteer.lookup("09", "new london") == "09011"
    assert gazetteer.lookup("09", "New London ") == "09011"


def test_name_in_two_counties_is_excluded(gazetteer):
    assert gazetteer.lookup("09", "salem") is None
    assert PlaceKey("09", "salem") not in gazetteer


def test_no_ambiguous_pairs_survive(place_names, county_universe, gazetteer):
    long = pl.concat(
        [
            place_names.select(
                pl.col("STATE_NUMERIC").alias("state"),
                (pl.col("STATE_NUMERIC") + pl.col("COUNTY_NUMERIC")).alias("fips"),
                pl.col(c).str.to_lowercase().alias("name"),
            )
            for c in ("MAP_NAME", "FEATURE_NAME")
        ]
    ).filter(pl.col("fips").is_in(list(county_universe)))
    ambiguous = (
        long.group_by(["state", "name"])
        .agg(pl.col("fips").n_unique().alias("n"))
        .filter(pl.col("n") > 1)
    )
    assert ambiguous.height > 0
    for state, name, _ in ambiguous.iter_rows():
        assert PlaceKey(state, name) not in gazetteer


def test_both_name_fields_are_indexed(gazetteer):
    assert gazetteer.lookup("09", "uncasville") == "09011"
    assert gazetteer.lookup("09", "montville center") == "09011"
    assert gazetteer.lookup("47", "nashville-davidson") == "47037"


def test_counties_outside_universe_are_dropped(gazetteer):
    assert gazetteer.lookup("09", "putnam") is None


def test_universe_applies_before_ambiguity_check(place_names):
    # Without 09003 in scope, Salem only has one candidate county left
    index = build(place_names, {"09011"})
    assert index.lookup("09", "salem") == "09011"


def test_state_is_part_of_the_key(gazetteer):
    assert gazetteer.lookup("47", "new london") is None


def test_duplicate_rows_collapse(place_names, county_universe):
    doubled = pl.concat([place_names, place_names])
    assert len(GazetteerIndex.build(doubled, county_universe)) == len(
        GazetteerIndex.build(place_names, county_universe)
    )


def test_parquet_round_trip(gazetteer, tmp_path):
    path = tmp_path / "gaz" / "gazetteer.parquet"
    gazetteer.write_parquet(path)
    assert GazetteerIndex.read_parquet(path) == gazetteer


def test_missing_columns_raise(county_universe):
    bad = pl.DataFrame({"STATE_NUMERIC": ["09"], "MAP_NAME": ["New London"]})
    with pytest.raises(InputDataError):
        GazetteerIndex.build(bad, county_universe)


def test_load_place_names_reads_pipe_file(tmp_path):
    path = tmp_path / "NationalFile.txt"
    path.write_text(
        "FEATURE_ID|FEATURE_NAME|STATE_NUMERIC|COUNTY_NUMERIC|MAP_NAME\n"
        "1|New London|09|011|New London\n"
        "2|Hartford|09|003|Hartford North\n"
    )
    df = load_place_names(path)
    assert df.columns == ["STATE_NUMERIC", "COUNTY_NUMERIC", "MAP_NAME", "FEATURE_NAME"]
    assert df["COUNTY_NUMERIC"].to_list() == ["011", "003"]


def test_load_place_names_missing_file(tmp_path):
    with pytest.raises(InputDataError):
        load_place_names(tmp_path / "nope.txt")


@pytest.mark.filterwarnings("error::DeprecationWarning")
def test_build_from_any_iterable_without_warnings(place_names):
    index = GazetteerIndex.build(place_names, iter(["09011", "09003"]))
    assert index.lookup("09", "hartford") == "09003"
    assert index.lookup("09", "salem") is None
