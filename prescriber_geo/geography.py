### County polygon lookups. Points are matched to counties with a geopandas spatial join, same as the map plotting code reads the county shapefile.

from pathlib import Path
from typing import Iterable, Self
import geopandas as gpd
import pandas as pd
import structlog
from shapely.geometry import Point

from prescriber_geo.errors import InputDataError
from prescriber_geo.records import Coordinate

logger = structlog.get_logger()

STATE_ABBR_BY_FIPS: dict[str, str] = {
    "01": "AL", "02": "AK", "04": "AZ", "05": "AR", "06": "CA", "08": "CO",
    "09": "CT", "10": "DE", "11": "DC", "12": "FL", "13": "GA", "15": "HI",
    "16": "ID", "17": "IL", "18": "IN", "19": "IA", "20": "KS", "21": "KY",
    "22": "LA", "23": "ME", "24": "MD", "25": "MA", "26": "MI", "27": "MN",
    "28": "MS", "29": "MO", "30": "MT", "31": "NE", "32": "NV", "33": "NH",
    "34": "NJ", "35": "NM", "36": "NY", "37": "NC", "38": "ND", "39": "OH",
    "40": "OK", "41": "OR", "42": "PA", "44": "RI", "45": "SC", "46": "SD",
    "47": "TN", "48": "TX", "49": "UT", "50": "VT", "51": "VA", "53": "WA",
    "54": "WV", "55": "WI", "56": "WY",
    "60": "AS", "66": "GU", "69": "MP", "72": "PR", "78": "VI",
}
STATE_FIPS_BY_ABBR: dict[str, str] = {abbr: fips for fips, abbr in STATE_ABBR_BY_FIPS.items()}

# Census county shapefiles ship in NAD83
COUNTY_CRS = "EPSG:4269"
POINT_CRS = "EPSG:4326"


def state_abbr_for_fips(fips: str | None) -> str | None:
    """State abbreviation implied by a 2-digit state or 5-digit county FIPS."""
    if not fips:
        return None
    return STATE_ABBR_BY_FIPS.get(fips[:2])


class CountyLocator:
    """
    Point-in-polygon lookup of county FIPS codes.

    Parameters
    ----------
    counties : gpd.GeoDataFrame, county polygons with a 5-digit ``GEOID`` column.
    """

    counties: gpd.GeoDataFrame

    def __init__(self: Self, counties: gpd.GeoDataFrame) -> None:
        if "GEOID" not in counties.columns:
            raise InputDataError("County polygons must carry a 'GEOID' column")
        counties = counties[["GEOID", "geometry"]].copy()
        counties["GEOID"] = counties["GEOID"].astype(str).str.zfill(5)
        if counties.crs is None:
            counties = counties.set_crs(COUNTY_CRS)
        self.counties = counties

    @classmethod
    def from_file(cls, path: Path) -> Self:
        if not Path(path).exists():
            raise InputDataError(f"County shapefile {path} does not exist")
        logger.info("loading_county_shapes", path=str(path))
        gdf = gpd.read_file(path)
        if "GEOID" not in gdf.columns and {"STATEFP", "COUNTYFP"} <= set(gdf.columns):
            gdf["GEOID"] = gdf["STATEFP"].astype(str).str.zfill(2) + gdf["COUNTYFP"].astype(str).str.zfill(3)
        return cls(gdf)

    @property
    def universe(self: Self) -> set[str]:
        return set(self.counties["GEOID"])

    def locate(self: Self, coordinate: Coordinate) -> str | None:
        return self.locate_many([coordinate])[0]

    def locate_many(self: Self, coordinates: Iterable[Coordinate | None]) -> list[str | None]:
        """
        County FIPS for each coordinate, in input order.

        A point that falls in no county polygon (offshore, outside the vintage,
        or a missing coordinate) comes back as None.
        """
        coordinates = list(coordinates)
        if not coordinates:
            return []

        present = [(i, c) for i, c in enumerate(coordinates) if c is not None]
        fips: list[str | None] = [None] * len(coordinates)
        if not present:
            return fips

        points = gpd.GeoDataFrame(
            {"idx": [i for i, _ in present]},
            geometry=[Point(c.longitude, c.latitude) for _, c in present],
            crs=POINT_CRS,
        ).to_crs(self.counties.crs)

        joined = gpd.sjoin(points, self.counties, how="left", predicate="within")
        # A point on a shared boundary matches two polygons; keep the first
        joined = joined.drop_duplicates(subset="idx", keep="first")

        for idx, geoid in zip(joined["idx"], joined["GEOID"]):
            fips[int(idx)] = None if pd.isna(geoid) else str(geoid)
        return fips
