### Place-name gazetteer. Maps (state FIPS, lower-cased place name) to a county FIPS, keeping only names that are unambiguous inside the county vintage.

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Self
import polars as pl
import structlog

from prescriber_geo.errors import InputDataError
from prescriber_geo.records import PlaceKey
from prescriber_geo.reference import require_columns

logger = structlog.get_logger()

# USGS GNIS national file column names
STATE_COL = "STATE_NUMERIC"
COUNTY_COL = "COUNTY_NUMERIC"
NAME_COLS: tuple[str, str] = ("MAP_NAME", "FEATURE_NAME")


def load_place_names(path: Path, separator: str = "|") -> pl.DataFrame:
    """
    Function that reads the national place-names file, keeping only the columns
    the gazetteer needs.

    Returns
    -------
    place_names : polars.DataFrame, Schema = {STATE_NUMERIC, COUNTY_NUMERIC, MAP_NAME, FEATURE_NAME}
    """
    path = Path(path)
    if not path.exists():
        raise InputDataError(f"{path} does not exists")
    data: pl.LazyFrame = pl.scan_csv(path, separator=separator, infer_schema=False, quote_char=None)
    columns = [STATE_COL, COUNTY_COL, *NAME_COLS]
    require_columns(data, columns, path)
    return data.select(columns).collect()


def _candidate_pairs(place_names: pl.DataFrame) -> pl.DataFrame:
    """Union of (state, county, name) over both name fields, normalized."""
    require_columns(place_names, [STATE_COL, COUNTY_COL, *NAME_COLS], "place-names table")
    return (
        pl.concat(
            [
                place_names.select(
                    pl.col(STATE_COL).alias("state_fips"),
                    pl.col(COUNTY_COL).alias("county_code"),
                    pl.col(name_col).alias("name"),
                )
                for name_col in NAME_COLS
            ]
        )
        .drop_nulls()
        .with_columns(
            pl.col("state_fips").cast(pl.Utf8).str.strip_chars().str.zfill(2),
            pl.col("county_code").cast(pl.Utf8).str.strip_chars().str.zfill(3),
            pl.col("name").cast(pl.Utf8).str.strip_chars().str.to_lowercase(),
        )
        .filter(pl.col("name") != "")
        .with_columns((pl.col("state_fips") + pl.col("county_code")).alias("county_fips"))
        .select(["state_fips", "county_fips", "name"])
    )


@dataclass(frozen=True)
class GazetteerIndex:
    """
    Read-only (state FIPS, place name) → county FIPS map.

    Names that fall in two or more counties of the same state are left out on
    purpose, so a miss means either "unknown" or "ambiguous" and callers fall
    through to the next tier either way.

    Examples
    --------
    >>> index = GazetteerIndex.build(place_names, county_universe)
    >>> index.lookup("09", "new london")
    '09011'
    """

    entries: dict[PlaceKey, str] = field(default_factory=dict)

    @classmethod
    def build(cls, place_names: pl.DataFrame, county_universe: Iterable[str]) -> Self:
        universe = sorted(set(county_universe))
        pairs = (
            _candidate_pairs(place_names)
            .filter(pl.col("county_fips").is_in(universe))
            .unique()
        )
        grouped = pairs.group_by(["state_fips", "name"]).agg(
            pl.col("county_fips").n_unique().alias("n_counties"),
            pl.col("county_fips").first(),
        )
        unambiguous = grouped.filter(pl.col("n_counties") == 1)

        logger.info(
            "gazetteer_built",
            entries=unambiguous.height,
            ambiguous=grouped.height - unambiguous.height,
        )
        return cls.from_frame(unambiguous)

    @classmethod
    def from_frame(cls, df: pl.DataFrame) -> Self:
        require_columns(df, ["state_fips", "name", "county_fips"], "gazetteer frame")
        return cls(
            {
                PlaceKey(state, name): fips
                for state, name, fips in df.select(["state_fips", "name", "county_fips"]).iter_rows()
            }
        )

    @classmethod
    def read_parquet(cls, path: Path) -> Self:
        if not Path(path).exists():
            raise InputDataError(f"{path} does not exists, run create_dataset.py first")
        return cls.from_frame(pl.read_parquet(path))

    def to_frame(self: Self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "state_fips": [k.state_fips for k in self.entries],
                "name": [k.name for k in self.entries],
                "county_fips": list(self.entries.values()),
            },
            schema={"state_fips": pl.Utf8, "name": pl.Utf8, "county_fips": pl.Utf8},
        )

    def write_parquet(self: Self, path: Path) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().write_parquet(path)

    def lookup(self: Self, state_fips: str, name: str) -> str | None:
        return self.entries.get(PlaceKey(state_fips, name.strip().lower()))

    def __contains__(self: Self, key: PlaceKey) -> bool:
        return key in self.entries

    def __len__(self: Self) -> int:
        return len(self.entries)


def build(place_names: pl.DataFrame, county_universe: Iterable[str]) -> GazetteerIndex:
    return GazetteerIndex.build(place_names, county_universe)
