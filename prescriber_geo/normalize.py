from typing import Any, Iterable, Mapping
import polars as pl
import structlog

from prescriber_geo.geography import STATE_ABBR_BY_FIPS, STATE_FIPS_BY_ABBR
from prescriber_geo.records import PlaceKey, PrescriberRecord
from prescriber_geo.reference import AddressCorrections

logger = structlog.get_logger()

# Medicare Part D "by Provider" column names
RAW_COLUMNS: dict[str, str] = {
    "npi": "Prscrbr_NPI",
    "street": "Prscrbr_St1",
    "city": "Prscrbr_City",
    "state": "Prscrbr_State_Abrvtn",
    "state_fips": "Prscrbr_State_FIPS",
    "zip5": "Prscrbr_zip5",
}

TERRITORY_FIPS: frozenset[str] = frozenset({"60", "64", "66", "68", "69", "70", "72", "74", "78"})
# Armed forces Americas/Europe/Pacific, foreign, unknown
SPECIAL_STATE_ABBRS: frozenset[str] = frozenset({"AA", "AE", "AP", "XX", "ZZ"})


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def compose_address(street: str, city: str, state: str, zip5: str) -> str:
    return f"{street}, {city}, {state} {zip5}"


def normalize(
    raw: Mapping[str, Any],
    corrections: AddressCorrections | None = None,
    year: int | None = None,
) -> PrescriberRecord | None:
    """
    Canonicalize one raw prescriber row into a PrescriberRecord.

    Parameters
    ----------
    raw : Mapping, a row keyed by the Part D column names in RAW_COLUMNS, plus ``year``.
    corrections : AddressCorrections, known typo fixes. None applies no corrections.
    year : int, overrides ``raw["year"]`` when given.

    Returns
    -------
    PrescriberRecord, or None when the record is excluded (territory, military
    or special postal code, missing state, or a known bad zip).
    """
    corrections = corrections or AddressCorrections()

    state_fips = _clean(raw.get(RAW_COLUMNS["state_fips"]))
    if state_fips.isdigit():
        state_fips = state_fips.zfill(2)
    if not state_fips or state_fips in TERRITORY_FIPS or state_fips not in STATE_ABBR_BY_FIPS:
        return None

    state = _clean(raw.get(RAW_COLUMNS["state"])).upper()
    if state in SPECIAL_STATE_ABBRS:
        return None

    street = _clean(raw.get(RAW_COLUMNS["street"]))
    city = _clean(raw.get(RAW_COLUMNS["city"]))
    zip5 = _clean(raw.get(RAW_COLUMNS["zip5"]))[:5].zfill(5)

    corrected_state = corrections.state_by_address.get(compose_address(street, city, state, zip5))
    if corrected_state is not None and corrected_state in STATE_FIPS_BY_ABBR:
        state = corrected_state
        state_fips = STATE_FIPS_BY_ABBR[corrected_state]

    if zip5 in corrections.excluded_zips:
        return None

    city, zip5 = corrections.city_zip.get((city, state, zip5), (city, zip5))

    return PrescriberRecord(
        npi=_clean(raw.get(RAW_COLUMNS["npi"])),
        year=int(year if year is not None else raw["year"]),
        street=street,
        city=city,
        state=state,
        state_fips=state_fips,
        zip5=zip5,
        address=compose_address(street, city, state, zip5),
        place_key=PlaceKey(state_fips, city.lower()),
    )


def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    corrections: AddressCorrections | None = None,
) -> list[PrescriberRecord]:
    records: list[PrescriberRecord] = []
    excluded = 0
    for row in rows:
        record = normalize(row, corrections)
        if record is None:
            excluded += 1
        else:
            records.append(record)
    logger.info("records_normalized", kept=len(records), excluded=excluded)
    return records


def normalize_frame(df: pl.DataFrame, corrections: AddressCorrections | None = None) -> list[PrescriberRecord]:
    return normalize_rows(df.iter_rows(named=True), corrections)
