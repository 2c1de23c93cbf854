### Manual overrides, rural/urban classification, and the per-state diagnostic counts used to decide which addresses need hand review next.

from typing import Iterable, Mapping
import polars as pl
import structlog

from prescriber_geo.records import RecordKey, ResolutionResult, ResolutionTier
from prescriber_geo.store import results_to_frame

logger = structlog.get_logger()

MANUAL_SOURCE = "manual"
UNCLASSIFIED = "Unclassified"
TIER_ORDER: list[str] = [str(t) for t in ResolutionTier]


def apply_overrides(
    results: Mapping[RecordKey, ResolutionResult],
    overrides: Mapping[str, str],
) -> dict[RecordKey, ResolutionResult]:
    """
    Replace the FIPS of every record whose composed address is in ``overrides``.

    The override wins over any automatic tier, including GAZETTEER.
    """
    applied = 0
    out: dict[RecordKey, ResolutionResult] = {}
    for key, result in results.items():
        fips = overrides.get(key.address)
        if fips is not None:
            result = result.accept(fips, ResolutionTier.MANUAL, MANUAL_SOURCE)
            applied += 1
        out[key] = result
    logger.info("manual_overrides_applied", applied=applied, table_size=len(overrides))
    return out


def aggregate(results: Iterable[ResolutionResult] | pl.DataFrame) -> pl.DataFrame:
    """
    Counts per claimed state and resolution tier.

    Returns
    -------
    summary : polars.DataFrame, Schema = {state, tier, records, resolved, unresolved, state_mismatch}
    """
    df = results if isinstance(results, pl.DataFrame) else results_to_frame(results)
    return (
        df.group_by(["state", "tier"])
        .agg(
            pl.len().cast(pl.Int64).alias("records"),
            pl.col("fips").is_not_null().sum().cast(pl.Int64).alias("resolved"),
            pl.col("fips").is_null().sum().cast(pl.Int64).alias("unresolved"),
            pl.col("state_mismatch").sum().cast(pl.Int64).alias("state_mismatch"),
        )
        .sort(["state", "tier"])
    )


def diagnostic_report(summary: pl.DataFrame) -> pl.DataFrame:
    """
    One row per state, one column per tier, plus unresolved and state-mismatch
    totals. States with the most unresolved records come first.
    """
    if summary.is_empty():
        return pl.DataFrame(
            schema={"state": pl.Utf8, **{t: pl.Int64 for t in TIER_ORDER}, "state_mismatch": pl.Int64}
        )

    wide = summary.pivot(on="tier", index="state", values="records", aggregate_function="sum")
    missing = [t for t in TIER_ORDER if t not in wide.columns]
    wide = wide.with_columns([pl.lit(0, dtype=pl.Int64).alias(t) for t in missing]).with_columns(
        pl.col(TIER_ORDER).fill_null(0)
    )

    mismatches = summary.group_by("state").agg(pl.col("state_mismatch").sum())
    return (
        wide.join(mismatches, on="state", how="left")
        .select(["state", *TIER_ORDER, "state_mismatch"])
        .sort(["UNRESOLVED", "state"], descending=[True, False])
    )


def unresolved_addresses(results: Iterable[ResolutionResult]) -> pl.DataFrame:
    """Distinct unresolved addresses with their record counts, for manual review."""
    df = results_to_frame(r for r in results if not r.resolved)
    return (
        df.group_by(["address", "state"])
        .agg(pl.len().alias("records"))
        .sort(["records", "address"], descending=[True, False])
    )


def classify_rural_urban(
    resolved: pl.DataFrame,
    urb_df: pl.DataFrame,
    fips_remap: Mapping[str, str] | None = None,
) -> pl.DataFrame:
    """
    Attach the rural/urban class to each resolved record.

    Counties created after the classification table's vintage are first mapped
    to the county they were split from (e.g. 02063 → 02261).

    Parameters
    ----------
    resolved : polars.DataFrame, must contain a ``fips`` column.
    urb_df : polars.DataFrame, Schema = {FIPS: str, urbanicity_class: str}
    fips_remap : Mapping[str, str], successor FIPS by FIPS.
    """
    fips = pl.col("fips").replace(dict(fips_remap)) if fips_remap else pl.col("fips")
    return (
        resolved.with_columns(fips.alias("FIPS"))
        .join(urb_df, on="FIPS", how="left")
        .with_columns(pl.col("urbanicity_class").fill_null(UNCLASSIFIED))
        .drop("FIPS")
    )
