### Tier-1 resolution: gazetteer first, then the zip centroid checked against the claimed state. Anything left goes to the escalation controller.

from typing import Iterable
import structlog

from prescriber_geo.gazetteer import GazetteerIndex
from prescriber_geo.geography import CountyLocator, state_abbr_for_fips
from prescriber_geo.records import PrescriberRecord, RecordKey, ResolutionResult, ResolutionTier
from prescriber_geo.reference import ZipCentroidTable

logger = structlog.get_logger()

GAZETTEER_SOURCE = "gazetteer"
ZIP_CENTROID_SOURCE = "zip_centroid"


def resolve_tier1(
    record: PrescriberRecord,
    gazetteer: GazetteerIndex,
    zip_centroids: ZipCentroidTable,
    locator: CountyLocator,
    zip_fips_cache: dict[str, str | None] | None = None,
) -> ResolutionResult:
    """
    Resolve one record from local sources only.

    The zip centroid is never consulted for a record the gazetteer already
    matched. A centroid that lands in no county, or in a county of a different
    state than the record claims, leaves the record UNRESOLVED.

    Parameters
    ----------
    zip_fips_cache : dict, optional zip5 → county FIPS memo shared across calls.
    """
    fips = gazetteer.lookup(*record.place_key)
    if fips is not None:
        return ResolutionResult.unresolved(record).accept(fips, ResolutionTier.GAZETTEER, GAZETTEER_SOURCE)

    if zip_fips_cache is not None and record.zip5 in zip_fips_cache:
        candidate = zip_fips_cache[record.zip5]
    else:
        coordinate = zip_centroids.lookup(record.zip5)
        candidate = locator.locate(coordinate) if coordinate is not None else None
        if zip_fips_cache is not None:
            zip_fips_cache[record.zip5] = candidate

    if candidate is None:
        return ResolutionResult.unresolved(record)

    if state_abbr_for_fips(candidate) != record.state:
        return ResolutionResult.unresolved(record, state_mismatch=True)

    return ResolutionResult.unresolved(record).accept(candidate, ResolutionTier.ZIP_CENTROID, ZIP_CENTROID_SOURCE)


def resolve_all(
    records: Iterable[PrescriberRecord],
    gazetteer: GazetteerIndex,
    zip_centroids: ZipCentroidTable,
    locator: CountyLocator,
) -> dict[RecordKey, ResolutionResult]:
    """
    Tier-1 resolution for a batch of records.

    Zip centroids for every gazetteer miss are located in one spatial join up
    front, so the per-record pass only does dictionary lookups.
    """
    records = list(records)
    misses = sorted({r.zip5 for r in records if gazetteer.lookup(*r.place_key) is None})
    located = locator.locate_many([zip_centroids.lookup(z) for z in misses])
    zip_fips_cache: dict[str, str | None] = dict(zip(misses, located))

    results = {
        record.key: resolve_tier1(record, gazetteer, zip_centroids, locator, zip_fips_cache)
        for record in records
    }

    tiers: dict[str, int] = {}
    for result in results.values():
        tiers[result.tier] = tiers.get(result.tier, 0) + 1
    logger.info("tier1_resolved", records=len(results), **{str(t).lower(): n for t, n in tiers.items()})
    return results
