from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import NamedTuple, Self


class PlaceKey(NamedTuple):
    state_fips: str
    name: str


class RecordKey(NamedTuple):
    npi: str
    year: int
    address: str


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


class ResolutionTier(StrEnum):
    GAZETTEER = "GAZETTEER"
    ZIP_CENTROID = "ZIP_CENTROID"
    EXTERNAL_GEOCODE = "EXTERNAL_GEOCODE"
    MANUAL = "MANUAL"
    UNRESOLVED = "UNRESOLVED"


@dataclass(frozen=True)
class PrescriberRecord:
    """
    One prescriber practice address for one year, after normalization.

    Attributes
    ----------
    npi : str, National Provider Identifier.
    year : int, data year the address was reported for.
    street, city : str, corrected address fields.
    state : str, claimed two-letter state abbreviation (after typo fixes).
    state_fips : str, two-digit state FIPS matching ``state``.
    zip5 : str, five-digit zip code.
    address : str, composed ``"street, city, state zip"`` string.
    place_key : PlaceKey, (state_fips, lower-cased city) gazetteer probe.
    """

    npi: str
    year: int
    street: str
    city: str
    state: str
    state_fips: str
    zip5: str
    address: str
    place_key: PlaceKey

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.npi, self.year, self.address)


@dataclass(frozen=True)
class ResolutionResult:
    """
    Outcome of resolving one record to a county.

    ``attempted`` lists the external providers already consulted, in order, so
    an interrupted run can resume where it stopped. ``exhausted`` records that
    every provider of the chain used by the run that wrote it had been tried;
    a later run with a longer chain still consults the new providers.
    """

    key: RecordKey
    state: str
    fips: str | None = None
    tier: ResolutionTier = ResolutionTier.UNRESOLVED
    source: str | None = None
    state_mismatch: bool = False
    attempted: tuple[str, ...] = field(default_factory=tuple)
    exhausted: bool = False

    @classmethod
    def unresolved(cls, record: PrescriberRecord, state_mismatch: bool = False) -> Self:
        return cls(key=record.key, state=record.state, state_mismatch=state_mismatch)

    @property
    def resolved(self) -> bool:
        return self.fips is not None

    def accept(self, fips: str, tier: ResolutionTier, source: str) -> Self:
        return replace(self, fips=fips, tier=tier, source=source)


@dataclass(frozen=True)
class GeocodeQuery:
    """Address fields for one record, already mapped to a provider's parameter names."""

    provider: str
    key: RecordKey
    fields: dict[str, str]


@dataclass(frozen=True)
class GeocodeResponse:
    provider: str
    key: RecordKey
    candidates: list[Coordinate] = field(default_factory=list)
    error: str | None = None

    @property
    def top(self) -> Coordinate | None:
        return self.candidates[0] if self.candidates else None
