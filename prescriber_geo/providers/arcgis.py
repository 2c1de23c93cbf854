from typing import Self

from prescriber_geo.errors import ProviderAuthError, ProviderError
from prescriber_geo.providers.base import Provider
from prescriber_geo.records import Coordinate, GeocodeQuery

ARCGIS_URL = "https://geocode-api.arcgis.com/arcgis/rest/services/World/GeocodeServer/findAddressCandidates"

# ArcGIS reports token problems in the JSON body with HTTP 200
AUTH_ERROR_CODES: frozenset[int] = frozenset({401, 403, 498, 499})


class ArcGISProvider(Provider):
    """ArcGIS World geocoding service. Paid; needs an API key."""

    kind = "arcgis"

    def _request(self: Self, query: GeocodeQuery, limit: int) -> list[Coordinate]:
        params = {
            "f": "json",
            "sourceCountry": "USA",
            "maxLocations": limit,
            **self.config.params,
            **query.fields,
        }
        if self.api_key:
            params["token"] = self.api_key
        data = self._get_json(self.config.base_url or ARCGIS_URL, params)

        if "error" in data:
            code = data["error"].get("code")
            message = data["error"].get("message", "")
            if code in AUTH_ERROR_CODES:
                raise ProviderAuthError(self.name, f"{code} {message}")
            raise ProviderError(self.name, f"{code} {message}")

        ranked = sorted(data.get("candidates", []), key=lambda c: c.get("score", 0), reverse=True)
        return [
            Coordinate(float(c["location"]["y"]), float(c["location"]["x"]))
            for c in ranked[:limit]
        ]
