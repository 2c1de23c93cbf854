"""End-to-end run over small on-disk reference files"""

import matplotlib

matplotlib.use("Agg")

import polars as pl
import pytest

from prescriber_geo.config import PipelineConfig
from prescriber_geo.errors import InputDataError
from prescriber_geo.normalize import RAW_COLUMNS
from prescriber_geo.pipeline import (
    DIAGNOSTIC_FILE,
    RESOLVED_FILE,
    SUMMARY_FILE,
    UNRESOLVED_FILE,
    GeocodingPipeline,
    load_prescribers,
)
from prescriber_geo.visualizations import plot_resolution_tiers
from tests.helpers import (
    FakeProvider,
    FISHERS_ISLAND,
    HARTFORD,
    NEW_LONDON,
    RIVERHEAD,
    county_frame,
    place_names_frame,
    raw_row,
)

FISHERS_ADDRESS = "1 Main St, Fishers Island, NY 06390"
CORDOVA_ADDRESS = "5 Dock Rd, Cordova, AK 99574"


@pytest.fixture
def config(tmp_path):
    county_frame().to_file(tmp_path / "counties.geojson", driver="GeoJSON")
    place_names_frame().write_csv(tmp_path / "places.txt", separator="|")
    (tmp_path / "zips.csv").write_text(
        "zip,latitude,longitude\n"
        f"06320,{NEW_LONDON.latitude},{NEW_LONDON.longitude}\n"
        f"06103,{HARTFORD.latitude},{HARTFORD.longitude}\n"
        f"06390,{FISHERS_ISLAND.latitude},{FISHERS_ISLAND.longitude}\n"
    )
    (tmp_path / "rucc.csv").write_text("FIPS,RUCC_2023\n09011,2\n09003,1\n36103,1\n02261,9\n")

    overrides = tmp_path / "Overrides"
    overrides.mkdir()
    (overrides / "state_corrections.csv").write_text("address,state\n\"365 Montauk Ave, New London, TN 06320\",CT\n")
    (overrides / "city_zip_corrections.csv").write_text("city,state,zip5,corrected_city,corrected_zip5\n")
    (overrides / "excluded_zips.csv").write_text("zip5\n09000\n")
    (overrides / "manual_fips.csv").write_text(f"address,fips,note\n\"{CORDOVA_ADDRESS}\",02063,harbor clinic\n")
    (overrides / "fips_remap.csv").write_text("fips,successor_fips\n02063,02261\n")

    return PipelineConfig(
        place_names_path=tmp_path / "places.txt",
        county_shapefile=tmp_path / "counties.geojson",
        zip_centroid_path=tmp_path / "zips.csv",
        urb_path=tmp_path / "rucc.csv",
        override_dir=overrides,
        gazetteer_path=tmp_path / "gazetteer.parquet",
        store_path=tmp_path / "results.sqlite",
        output_dir=tmp_path / "out",
    )


@pytest.fixture
def raw():
    return pl.DataFrame(
        [
            raw_row(npi="1", city="New London"),
            raw_row(npi="2", city="Waterford"),
            raw_row(npi="3", city="Fishers Island", state="NY", state_fips="36", zip5="06390"),
            raw_row(npi="4", street="365 Montauk Ave", state="TN", state_fips="47"),
            raw_row(npi="5", city="San Juan", state="PR", state_fips="72", zip5="00901"),
            raw_row(npi="6", street="5 Dock Rd", city="Cordova", state="AK", state_fips="02", zip5="99574"),
        ]
    )


def _by_npi(resolved: pl.DataFrame) -> dict[str, dict]:
    return {row["NPI"]: row for row in resolved.iter_rows(named=True)}


def test_full_run(config, raw):
    provider = FakeProvider("p1", 1, {FISHERS_ADDRESS: [RIVERHEAD]})
    resolved, summary = GeocodingPipeline(config, providers=[provider]).run(raw)
    rows = _by_npi(resolved)

    assert sorted(rows) == ["1", "2", "3", "4", "6"]
    assert (rows["1"]["fips"], rows["1"]["tier"]) == ("09011", "GAZETTEER")
    assert (rows["2"]["fips"], rows["2"]["tier"]) == ("09011", "ZIP_CENTROID")
    assert (rows["3"]["fips"], rows["3"]["tier"], rows["3"]["source"]) == ("36103", "EXTERNAL_GEOCODE", "p1")
    assert rows["3"]["state_mismatch"]
    assert (rows["4"]["state"], rows["4"]["tier"]) == ("CT", "GAZETTEER")
    assert (rows["6"]["fips"], rows["6"]["tier"], rows["6"]["urbanicity_class"]) == ("02063", "MANUAL", "9")
    assert rows["1"]["urbanicity_class"] == "2"

    # Only the records tier 1 could not place reach the provider
    assert sorted(provider.calls) == sorted([CORDOVA_ADDRESS, FISHERS_ADDRESS])
    assert summary["records"].sum() == 5
    for name in (RESOLVED_FILE, SUMMARY_FILE, DIAGNOSTIC_FILE, UNRESOLVED_FILE):
        assert (config.output_dir / name).exists()
    assert config.gazetteer_path.exists()
    assert pl.read_parquet(config.output_dir / RESOLVED_FILE).height == 5


def test_rerun_resumes_from_store(config, raw):
    first, _ = GeocodingPipeline(config, providers=[FakeProvider("p1", 1, {FISHERS_ADDRESS: [RIVERHEAD]})]).run(raw)

    again = FakeProvider("p1", 1, default=[HARTFORD])
    second, _ = GeocodingPipeline(config, providers=[again]).run(raw)
    assert again.calls == []
    assert second.sort("NPI").equals(first.sort("NPI"))


def test_run_without_escalation(config, raw):
    config.escalate = False
    resolved, _ = GeocodingPipeline(config, providers=[FakeProvider("p1", 1, default=[RIVERHEAD])]).run(raw)
    rows = _by_npi(resolved)
    assert rows["3"]["fips"] is None
    assert rows["3"]["urbanicity_class"] == "Unclassified"
    assert not config.store_path.exists()

    unresolved = pl.read_csv(config.output_dir / UNRESOLVED_FILE)
    assert unresolved["address"].to_list() == [FISHERS_ADDRESS]


def test_load_prescribers_dedupes_within_year(tmp_path):
    columns = list(RAW_COLUMNS.values())
    rows_2021 = [raw_row(npi="1"), raw_row(npi="1", street="2 Other St"), raw_row(npi="2")]
    rows_2022 = [raw_row(npi="1")]
    files = {}
    for year, rows in ((2021, rows_2021), (2022, rows_2022)):
        path = tmp_path / f"partd_{year}.csv"
        pl.DataFrame(rows).select(columns).with_columns(pl.lit("x").alias("Tot_Clms")).write_csv(path)
        files[year] = path

    df = load_prescribers(files)
    assert df.height == 3
    first_2021 = df.filter((pl.col("year") == 2021) & (pl.col(RAW_COLUMNS["npi"]) == "1"))
    assert first_2021[RAW_COLUMNS["street"]].to_list() == ["1 Main St"]
    # zips keep their leading zero
    assert df.filter(pl.col(RAW_COLUMNS["zip5"]) != "06320").is_empty()


def test_load_prescribers_missing_file(tmp_path):
    with pytest.raises(InputDataError):
        load_prescribers({2021: tmp_path / "missing.csv"})


def test_plot_resolution_tiers_saves_png(config, raw, tmp_path):
    config.escalate = False
    _, summary = GeocodingPipeline(config).run(raw)
    path = plot_resolution_tiers(summary, save_dir=tmp_path / "plots", dpi=50)
    assert path.exists()
    assert path.name == "Resolution_Tiers_by_State.png"
