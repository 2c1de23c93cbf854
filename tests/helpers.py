"""Shared builders for the geocoding tests"""

from typing import Any
import geopandas as gpd
import polars as pl
from shapely.geometry import box

from prescriber_geo.config import ProviderConfig
from prescriber_geo.errors import ProviderError
from prescriber_geo.normalize import RAW_COLUMNS, normalize
from prescriber_geo.providers.base import Provider
from prescriber_geo.ratelimit import RateLimiter
from prescriber_geo.records import Coordinate, GeocodeQuery, PrescriberRecord

# (GEOID, min lon, min lat, max lon, max lat)
COUNTY_BOXES = [
    ("09011", -72.3, 41.25, -71.8, 41.70),  # New London, CT
    ("09003", -73.0, 41.60, -72.4, 42.00),  # Hartford, CT
    ("47037", -87.0, 36.00, -86.5, 36.40),  # Davidson, TN
    ("36103", -73.5, 40.60, -72.0, 41.15),  # Suffolk, NY
    ("02063", -148.0, 60.0, -144.0, 62.0),  # Chugach, AK
]

NEW_LONDON = Coordinate(41.35, -72.10)
HARTFORD = Coordinate(41.76, -72.68)
NASHVILLE = Coordinate(36.16, -86.78)
RIVERHEAD = Coordinate(40.92, -72.66)
FISHERS_ISLAND = Coordinate(41.30, -72.00)  # NY zip, centroid falls inside the CT box
OCEAN = Coordinate(39.0, -70.0)


def county_frame() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"GEOID": [c[0] for c in COUNTY_BOXES]},
        geometry=[box(*c[1:]) for c in COUNTY_BOXES],
        crs="EPSG:4326",
    )


def place_names_frame() -> pl.DataFrame:
    rows = [
        ("09", "011", "New London", "New London"),
        ("09", "003", "Hartford", "Hartford"),
        ("09", "011", "Salem", "Salem"),
        ("09", "003", "Salem", "Salem"),
        ("09", "015", "Putnam", "Putnam"),
        ("09", "011", "Uncasville", "Montville Center"),
        ("47", "037", "Nashville", "Nashville-Davidson"),
        ("36", "103", "Riverhead", "Riverhead"),
    ]
    return pl.DataFrame(
        rows,
        schema=["STATE_NUMERIC", "COUNTY_NUMERIC", "MAP_NAME", "FEATURE_NAME"],
        orient="row",
    )


def raw_row(
    npi: str = "1000000001",
    street: str = "1 Main St",
    city: str = "New London",
    state: str = "CT",
    state_fips: str = "09",
    zip5: str = "06320",
    year: int = 2020,
) -> dict[str, Any]:
    return {
        RAW_COLUMNS["npi"]: npi,
        RAW_COLUMNS["street"]: street,
        RAW_COLUMNS["city"]: city,
        RAW_COLUMNS["state"]: state,
        RAW_COLUMNS["state_fips"]: state_fips,
        RAW_COLUMNS["zip5"]: zip5,
        "year": year,
    }


def make_record(**kwargs) -> PrescriberRecord:
    record = normalize(raw_row(**kwargs))
    assert record is not None
    return record


def provider_config(name: str, priority: int, **kwargs) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        kind="fake",
        priority=priority,
        field_map=kwargs.pop("field_map", {"q": "address"}),
        **kwargs,
    )


class FakeProvider(Provider):
    """
    Scripted provider. ``answers`` maps an address to a list of candidates or
    to an exception instance to raise for that address.
    """

    kind = "fake"

    def __init__(self, name: str, priority: int, answers: dict | None = None, default=None, **kwargs):
        config = provider_config(name, priority, **kwargs)
        super().__init__(config, session=object(), limiter=RateLimiter(name, None, config.daily_cap))
        self.answers = answers or {}
        self.default = default if default is not None else []
        self.calls: list[str] = []

    def _request(self, query: GeocodeQuery, limit: int) -> list[Coordinate]:
        address = query.fields["q"]
        self.calls.append(address)
        answer = self.answers.get(address, self.default)
        if isinstance(answer, Exception):
            raise answer
        return list(answer)[:limit]


class FlakyError(ProviderError):
    def __init__(self, name: str = "flaky"):
        super().__init__(name, "timed out")


class BatchFakeProvider(FakeProvider):
    """FakeProvider with a batch endpoint; ``batches`` records each batch size."""

    supports_batch = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches: list[int] = []

    def _request_batch(self, queries: list[GeocodeQuery]) -> list[list[Coordinate]]:
        self.batches.append(len(queries))
        return [self._request(q, 1) for q in queries]
