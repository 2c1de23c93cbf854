### Runs the whole address → county pipeline: references, normalization, tier-1, escalation, overrides, rural/urban join, diagnostics.

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Self, Sequence
import polars as pl
import structlog

from prescriber_geo.aggregate import (
    aggregate,
    apply_overrides,
    classify_rural_urban,
    diagnostic_report,
    unresolved_addresses,
)
from prescriber_geo.config import PipelineConfig, load_provider_configs
from prescriber_geo.errors import InputDataError
from prescriber_geo.escalation import EscalationController
from prescriber_geo.gazetteer import GazetteerIndex, load_place_names
from prescriber_geo.geography import CountyLocator
from prescriber_geo.normalize import RAW_COLUMNS, normalize_frame
from prescriber_geo.providers.base import Provider
from prescriber_geo.providers.registry import get_providers
from prescriber_geo.records import PrescriberRecord, RecordKey, ResolutionResult
from prescriber_geo.reference import (
    AddressCorrections,
    ZipCentroidTable,
    load_county_universe,
    load_fips_remap,
    load_manual_fips,
    load_rural_urban,
    require_columns,
)
from prescriber_geo.resolution import resolve_all
from prescriber_geo.store import ResultStore, results_to_frame

logger = structlog.get_logger()

RESOLVED_FILE = "resolved_prescribers.parquet"
SUMMARY_FILE = "resolution_summary.csv"
DIAGNOSTIC_FILE = "diagnostic_report.csv"
UNRESOLVED_FILE = "unresolved_addresses.csv"


def _read_prescriber_year(year: int, path: Path) -> pl.DataFrame:
    path = Path(path)
    if not path.exists():
        raise InputDataError(f"{path} does not exist")
    data = pl.scan_csv(path, infer_schema=False)
    require_columns(data, RAW_COLUMNS.values(), path)
    return (
        data.select(list(RAW_COLUMNS.values()))
        .with_columns(pl.lit(year, dtype=pl.Int64).alias("year"))
        .unique(subset=[RAW_COLUMNS["npi"], "year"], keep="first", maintain_order=True)
        .collect()
    )


def load_prescribers(files_by_year: Mapping[int, Path], max_workers: int = 4) -> pl.DataFrame:
    """
    Read one prescriber file per year in parallel and stack them.

    Each (NPI, year) appears once. Row order across years is not preserved.
    """
    if not files_by_year:
        raise InputDataError("No prescriber files configured")
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        frames = list(pool.map(lambda item: _read_prescriber_year(*item), files_by_year.items()))
    df = pl.concat(frames, how="vertical")
    logger.info("prescribers_loaded", years=sorted(files_by_year), rows=df.height)
    return df


@dataclass
class GeocodingPipeline:
    """
    Dataclass wiring the reference tables, resolution tiers and outputs for one run.

    Parameters
    ----------
    config : PipelineConfig, paths and settings.
    providers : Sequence[Provider] or None, external geocoders. Built from
        ``config.providers_path`` when None.

    Examples
    --------
    >>> pipeline = GeocodingPipeline(PipelineConfig())
    >>> resolved, summary = pipeline.run()
    """

    config: PipelineConfig = field(default_factory=PipelineConfig)
    providers: Sequence[Provider] | None = None

    def build_gazetteer(self: Self, locator: CountyLocator) -> GazetteerIndex:
        """Load the cached gazetteer for this vintage, building and caching it if missing."""
        path = self.config.gazetteer_path
        if path.exists():
            logger.info("gazetteer_cached", path=str(path))
            return GazetteerIndex.read_parquet(path)

        if self.config.county_universe_path is not None:
            universe = load_county_universe(self.config.county_universe_path)
        else:
            universe = locator.universe
        gazetteer = GazetteerIndex.build(load_place_names(self.config.place_names_path), universe)
        gazetteer.write_parquet(path)
        return gazetteer

    def resolve(
        self: Self,
        records: list[PrescriberRecord],
        locator: CountyLocator,
        gazetteer: GazetteerIndex,
        zip_centroids: ZipCentroidTable,
        store: ResultStore | None,
    ) -> dict[RecordKey, ResolutionResult]:
        results = resolve_all(records, gazetteer, zip_centroids, locator)
        if not self.config.escalate:
            return results

        providers = self.providers
        if providers is None:
            providers = get_providers(load_provider_configs(self.config.providers_path))
        controller = EscalationController(providers, locator, store)
        unresolved = [r for r in records if not results[r.key].resolved]
        results.update(controller.escalate(unresolved, results))
        return results

    def run(self: Self, raw: pl.DataFrame | None = None) -> tuple[pl.DataFrame, pl.DataFrame]:
        """
        Run every stage and write the outputs to ``config.output_dir``.

        Parameters
        ----------
        raw : polars.DataFrame or None, prescriber rows with the Part D columns
            and ``year``. Read from ``config.prescriber_files`` when None.

        Returns
        -------
        resolved : polars.DataFrame, one row per record with fips, tier, source and urbanicity_class.
        summary : polars.DataFrame, counts per state and tier.
        """
        cfg = self.config

        # 1. Reference tables
        locator = CountyLocator.from_file(cfg.county_shapefile)
        gazetteer = self.build_gazetteer(locator)
        zip_centroids = ZipCentroidTable.from_file(cfg.zip_centroid_path)
        urb_df = load_rural_urban(cfg.urb_path, urb_code=cfg.urb_code, urb_mapping=cfg.urb_mapping)
        corrections = AddressCorrections.load(cfg.override_dir)
        manual = load_manual_fips(cfg.override_dir)
        fips_remap = load_fips_remap(cfg.override_dir)

        # 2. Normalize
        if raw is None:
            raw = load_prescribers(cfg.prescriber_files)
        records = normalize_frame(raw, corrections)

        # 3. Tier 1 + escalation
        store = ResultStore(cfg.store_path) if cfg.escalate else None
        try:
            results = self.resolve(records, locator, gazetteer, zip_centroids, store)
        finally:
            if store is not None:
                store.close()

        # 4. Manual overrides, classification, diagnostics
        results = apply_overrides(results, manual)
        resolved = classify_rural_urban(results_to_frame(results.values()), urb_df, fips_remap)
        summary = aggregate(resolved)
        report = diagnostic_report(summary)
        unresolved = unresolved_addresses(results.values())

        cfg.output_dir.mkdir(parents=True, exist_ok=True)
        resolved.write_parquet(cfg.output_dir / RESOLVED_FILE)
        summary.write_csv(cfg.output_dir / SUMMARY_FILE)
        report.write_csv(cfg.output_dir / DIAGNOSTIC_FILE)
        unresolved.write_csv(cfg.output_dir / UNRESOLVED_FILE)
        logger.info(
            "pipeline_finished",
            records=resolved.height,
            unresolved=int(resolved["fips"].is_null().sum()),
            output_dir=str(cfg.output_dir),
        )
        return resolved, summary
