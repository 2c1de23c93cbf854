"""
Test configuration and fixtures for the prescriber geocoding test suite.
"""

import pytest

from prescriber_geo.gazetteer import GazetteerIndex
from prescriber_geo.geography import CountyLocator
from prescriber_geo.reference import ZipCentroidTable
from prescriber_geo.store import ResultStore
from tests.helpers import (
    COUNTY_BOXES,
    FISHERS_ISLAND,
    HARTFORD,
    NASHVILLE,
    NEW_LONDON,
    OCEAN,
    RIVERHEAD,
    county_frame,
    place_names_frame,
)


@pytest.fixture(scope="session")
def locator():
    return CountyLocator(county_frame())


@pytest.fixture(scope="session")
def county_universe():
    # Chugach (02063) is newer than the vintage used to build the gazetteer
    return {c[0] for c in COUNTY_BOXES if c[0] != "02063"}


@pytest.fixture
def place_names():
    return place_names_frame()


@pytest.fixture
def gazetteer(place_names, county_universe):
    return GazetteerIndex.build(place_names, county_universe)


@pytest.fixture
def zip_centroids():
    return ZipCentroidTable(
        {
            "06320": NEW_LONDON,
            "06103": HARTFORD,
            "37203": NASHVILLE,
            "11901": RIVERHEAD,
            "06390": FISHERS_ISLAND,
            "02554": OCEAN,
        }
    )


@pytest.fixture
def store():
    s = ResultStore()
    yield s
    s.close()
