from typing import Self

from prescriber_geo.providers.base import Provider
from prescriber_geo.records import Coordinate, GeocodeQuery

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"


class NominatimProvider(Provider):
    """OpenStreetMap Nominatim. The public instance allows one request per second."""

    kind = "nominatim"

    def _request(self: Self, query: GeocodeQuery, limit: int) -> list[Coordinate]:
        params = {
            **{k: v for k, v in self.config.params.items() if v is not None},
            **query.fields,
            "format": "jsonv2",
            "limit": limit,
        }
        data = self._get_json(self.config.base_url or NOMINATIM_URL, params)
        # Nominatim already orders hits by importance
        return [Coordinate(float(hit["lat"]), float(hit["lon"])) for hit in data[:limit]]
