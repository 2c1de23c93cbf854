from pathlib import Path
from argparse import ArgumentParser

from prescriber_geo.config import COUNTY_SHAPEFILES, gazetteer_path_for
from prescriber_geo.gazetteer import GazetteerIndex, load_place_names
from prescriber_geo.geography import CountyLocator
from prescriber_geo.reference import load_county_universe

RAW_DATA_PATH: Path = Path("data/Raw")


parser: ArgumentParser = ArgumentParser(
    prog="create_dataset", description="Script to build the place-name gazetteer for one county vintage"
)

parser.add_argument(
    "--vintage",
    type=int,
    default=2022,
    choices=list(COUNTY_SHAPEFILES),
    help="County vintage the gazetteer is restricted to. Default: %(default)s.",
)

parser.add_argument(
    "--place_names",
    type=Path,
    default=RAW_DATA_PATH / "GNIS/NationalFile.txt",
    help="Pipe-delimited national place-names file. Default: %(default)s.",
)

parser.add_argument(
    "--county_table",
    type=Path,
    default=None,
    help="Optional county attribute CSV (STATEFP, COUNTYFP). Defaults to the vintage shapefile's counties.",
)

parser.add_argument(
    "--save_path",
    type=Path,
    default=None,
    help="Where to write the gazetteer (parquet). Default: data/Processed/Gazetteer/gazetteer_<vintage>.parquet.",
)


def get_county_universe(vintage: int, county_table: Path | None) -> set[str]:
    if county_table is not None:
        return load_county_universe(county_table)
    return CountyLocator.from_file(COUNTY_SHAPEFILES[vintage]).universe


def main() -> None:
    args = parser.parse_args()
    save_path = args.save_path or gazetteer_path_for(args.vintage)

    universe = get_county_universe(args.vintage, args.county_table)
    gazetteer = GazetteerIndex.build(load_place_names(args.place_names), universe)
    gazetteer.write_parquet(save_path)

    print(f"✅ Saved gazetteer with {len(gazetteer)} entries to {save_path}")
    print(gazetteer.to_frame().head(5))


if __name__ == "__main__":
    main()
