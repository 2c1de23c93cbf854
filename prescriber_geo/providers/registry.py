from typing import Sequence
import requests

from prescriber_geo.config import ProviderConfig
from prescriber_geo.providers.arcgis import ArcGISProvider
from prescriber_geo.providers.base import Provider, build_providers
from prescriber_geo.providers.census import CensusProvider
from prescriber_geo.providers.nominatim import NominatimProvider

PROVIDER_REGISTRY: dict[str, type[Provider]] = {
    "census": CensusProvider,
    "nominatim": NominatimProvider,
    "arcgis": ArcGISProvider,
}


def get_providers(configs: Sequence[ProviderConfig], session: requests.Session | None = None) -> list[Provider]:
    return build_providers(configs, PROVIDER_REGISTRY, session=session)
