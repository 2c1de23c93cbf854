### Reference tables read once per run: county universe, zip centroids, rural/urban codes, and the correction datasets under data/Overrides.

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Self
import polars as pl
import structlog

from prescriber_geo.errors import InputDataError
from prescriber_geo.records import Coordinate

logger = structlog.get_logger()

OVERRIDE_DIR: Path = Path("data/Overrides")
STATE_CORRECTIONS_FILE = "state_corrections.csv"
CITY_ZIP_CORRECTIONS_FILE = "city_zip_corrections.csv"
EXCLUDED_ZIPS_FILE = "excluded_zips.csv"
MANUAL_FIPS_FILE = "manual_fips.csv"
FIPS_REMAP_FILE = "fips_remap.csv"


def require_columns(df: pl.DataFrame | pl.LazyFrame, columns: Iterable[str], source: str | Path) -> None:
    """
    Helper function to fail fast when a source file is missing required columns
    """
    names = df.collect_schema().names() if isinstance(df, pl.LazyFrame) else df.columns
    missing = [c for c in columns if c not in names]
    if missing:
        raise InputDataError(f"{source} is missing required columns {(*missing,)}")


def read_csv(path: Path, columns: Iterable[str], **kwargs) -> pl.DataFrame:
    """Read a CSV with every required column as a string, raising InputDataError if unusable."""
    path = Path(path)
    columns = list(columns)
    if not path.exists():
        raise InputDataError(f"{path} does not exist")
    df = pl.read_csv(path, infer_schema=False, **kwargs)
    require_columns(df, columns, path)
    return df


def load_county_universe(
    path: Path,
    state_col: str = "STATEFP",
    county_col: str = "COUNTYFP",
) -> set[str]:
    """
    5-digit county FIPS codes present in one county vintage.

    Parameters
    ----------
    path : Path, county attribute table (e.g. the shapefile's dbf exported to CSV).
    state_col, county_col : str, 2-digit state and 3-digit county FIPS columns.
    """
    df = read_csv(path, [state_col, county_col])
    universe = set(
        df.select(
            (pl.col(state_col).str.zfill(2) + pl.col(county_col).str.zfill(3)).alias("fips")
        )["fips"].to_list()
    )
    logger.info("county_universe_loaded", path=str(path), counties=len(universe))
    return universe


@dataclass
class ZipCentroidTable:
    """Zip code → centroid coordinate lookup."""

    centroids: dict[str, Coordinate] = field(default_factory=dict)

    @classmethod
    def from_frame(cls, df: pl.DataFrame, zip_col: str = "zip", lat_col: str = "latitude", lon_col: str = "longitude") -> Self:
        require_columns(df, [zip_col, lat_col, lon_col], "zip centroid table")
        clean = (
            df.select(
                pl.col(zip_col).cast(pl.Utf8).str.zfill(5).alias("zip"),
                pl.col(lat_col).cast(pl.Float64, strict=False).alias("latitude"),
                pl.col(lon_col).cast(pl.Float64, strict=False).alias("longitude"),
            )
            .drop_nulls()
            .unique(subset="zip", keep="first")
        )
        return cls({z: Coordinate(lat, lon) for z, lat, lon in clean.iter_rows()})

    @classmethod
    def from_file(cls, path: Path, **kwargs) -> Self:
        table = cls.from_frame(read_csv(path, []), **kwargs)
        logger.info("zip_centroids_loaded", path=str(path), zips=len(table))
        return table

    def lookup(self: Self, zip5: str | None) -> Coordinate | None:
        if not zip5:
            return None
        return self.centroids.get(zip5)

    def __len__(self: Self) -> int:
        return len(self.centroids)


def load_rural_urban(
    path: Path,
    urb_code: str = "RUCC_2023",
    urb_mapping: dict | None = None,
    fips_col: str = "FIPS",
) -> pl.DataFrame:
    """
    Rural/urban classification keyed by 5-digit FIPS.

    Returns
    -------
    urb_df : polars.DataFrame, Schema = {FIPS: str, urbanicity_class: str}
    """
    urb_df = (
        read_csv(path, [fips_col, urb_code])
        .with_columns(
            pl.col(fips_col).str.zfill(5).alias("FIPS"),
            pl.col(urb_code).cast(pl.Utf8).alias("urbanicity_class"),
        )
        .select(["FIPS", "urbanicity_class"])
        .unique(subset="FIPS", keep="first")
    )

    if urb_mapping:
        mapping_df = pl.DataFrame(
            {
                "urbanicity_class": [str(k) for k in urb_mapping.keys()],
                "urbanicity_class_mapped": [str(v) for v in urb_mapping.values()],
            }
        )
        urb_df = (
            urb_df.join(mapping_df, on="urbanicity_class", how="left")
            .with_columns(
                pl.coalesce(["urbanicity_class_mapped", "urbanicity_class"]).alias("urbanicity_class")
            )
            .drop("urbanicity_class_mapped")
        )

    return urb_df


@dataclass(frozen=True)
class AddressCorrections:
    """
    Hand-maintained fixes for known data-entry errors in prescriber addresses.

    Attributes
    ----------
    state_by_address : dict[str, str], composed raw address → corrected state abbreviation.
    city_zip : dict[tuple[str, str, str], tuple[str, str]], (city, state, zip5) → (city, zip5).
    excluded_zips : frozenset[str], zip codes whose records are dropped outright.
    """

    state_by_address: dict[str, str] = field(default_factory=dict)
    city_zip: dict[tuple[str, str, str], tuple[str, str]] = field(default_factory=dict)
    excluded_zips: frozenset[str] = frozenset()

    @classmethod
    def load(cls, override_dir: Path = OVERRIDE_DIR) -> Self:
        override_dir = Path(override_dir)
        states = read_csv(override_dir / STATE_CORRECTIONS_FILE, ["address", "state"])
        city_zip = read_csv(
            override_dir / CITY_ZIP_CORRECTIONS_FILE,
            ["city", "state", "zip5", "corrected_city", "corrected_zip5"],
        )
        excluded = read_csv(override_dir / EXCLUDED_ZIPS_FILE, ["zip5"])
        return cls(
            state_by_address=dict(zip(states["address"], states["state"])),
            city_zip={
                (row["city"], row["state"], row["zip5"]): (row["corrected_city"], row["corrected_zip5"])
                for row in city_zip.iter_rows(named=True)
            },
            excluded_zips=frozenset(excluded["zip5"].str.zfill(5)),
        )


def load_manual_fips(override_dir: Path = OVERRIDE_DIR) -> dict[str, str]:
    """Human-reviewed address → county FIPS table."""
    df = read_csv(Path(override_dir) / MANUAL_FIPS_FILE, ["address", "fips"])
    return dict(zip(df["address"], df["fips"].str.zfill(5)))


def load_fips_remap(override_dir: Path = OVERRIDE_DIR) -> dict[str, str]:
    """Counties renamed or split after the rural/urban table's vintage → FIPS used by that table."""
    df = read_csv(Path(override_dir) / FIPS_REMAP_FILE, ["fips", "successor_fips"])
    return dict(zip(df["fips"].str.zfill(5), df["successor_fips"].str.zfill(5)))
