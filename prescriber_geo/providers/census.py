### U.S. Census Bureau geocoder. Free and unthrottled in practice, takes up to 10,000 addresses per batch upload.

import csv
import io
from typing import Self

from prescriber_geo.config import ProviderConfig
from prescriber_geo.errors import ConfigError, ProviderError
from prescriber_geo.providers.base import Provider
from prescriber_geo.records import Coordinate, GeocodeQuery

CENSUS_URL = "https://geocoding.geo.census.gov/geocoder"
STRUCTURED_FIELDS: tuple[str, ...] = ("street", "city", "state", "zip")
MAX_BATCH = 10_000


class CensusProvider(Provider):
    kind = "census"
    supports_batch = True

    @classmethod
    def check_config(cls, config: ProviderConfig) -> None:
        # The batch upload only carries the structured columns
        if config.batch_size > 1 and not set(config.field_map) <= set(STRUCTURED_FIELDS):
            raise ConfigError(
                f"Provider {config.name}: batch geocoding needs field_map keys within {STRUCTURED_FIELDS}, "
                f"got {sorted(config.field_map)}"
            )

    @property
    def base_url(self: Self) -> str:
        return (self.config.base_url or CENSUS_URL).rstrip("/")

    @property
    def benchmark(self: Self) -> str:
        return self.config.params.get("benchmark", "Public_AR_Current")

    def _request(self: Self, query: GeocodeQuery, limit: int) -> list[Coordinate]:
        if "address" in query.fields:
            url = f"{self.base_url}/locations/onelineaddress"
        else:
            url = f"{self.base_url}/locations/address"
        params = {**query.fields, "benchmark": self.benchmark, "format": "json"}
        data = self._get_json(url, params)

        matches = data.get("result", {}).get("addressMatches", [])
        return [
            Coordinate(float(m["coordinates"]["y"]), float(m["coordinates"]["x"]))
            for m in matches[:limit]
        ]

    def _request_batch(self: Self, queries: list[GeocodeQuery]) -> list[list[Coordinate]]:
        if len(queries) > MAX_BATCH:
            raise ProviderError(self.name, f"batch of {len(queries)} exceeds {MAX_BATCH}")

        upload = io.StringIO()
        writer = csv.writer(upload)
        for i, query in enumerate(queries):
            writer.writerow([i, *(query.fields.get(f, "") for f in STRUCTURED_FIELDS)])

        response = self.session.post(
            f"{self.base_url}/locations/addressbatch",
            files={"addressFile": ("addresses.csv", upload.getvalue(), "text/csv")},
            data={"benchmark": self.benchmark},
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        return parse_batch_response(response.text, len(queries))


def parse_batch_response(text: str, n_queries: int) -> list[list[Coordinate]]:
    """
    Parse the batch endpoint's CSV reply.

    Rows are ``id, input address, Match|No_Match|Tie, match type, matched
    address, "lon,lat", tiger line id, side``; unmatched rows stop after the
    third field. Rows come back in arbitrary order.
    """
    candidates: list[list[Coordinate]] = [[] for _ in range(n_queries)]
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 6 or row[2] != "Match" or not row[5]:
            continue
        lon, lat = (float(v) for v in row[5].split(","))
        idx = int(row[0])
        if 0 <= idx < n_queries:
            candidates[idx] = [Coordinate(lat, lon)]
    return candidates
