### Runs the prescriber geocoding pipeline and writes resolved records plus per-state diagnostics.

from pathlib import Path
import argparse

from prescriber_geo.config import PipelineConfig
from prescriber_geo.pipeline import GeocodingPipeline
from prescriber_geo.aggregate import diagnostic_report
from prescriber_geo.visualizations import plot_resolution_tiers


def get_args():
    parser = argparse.ArgumentParser(
        description="Resolve Part D prescriber addresses to county FIPS codes."
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML file overriding PipelineConfig defaults."
    )

    parser.add_argument(
        "--no-escalate",
        action="store_true",
        help="Stop after the gazetteer and zip centroid tiers (no external geocoders)."
    )

    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        choices=["tiers"],
        help="Which diagnostic plot to generate after the run."
    )

    parser.add_argument(
        "--save_dir",
        type=str,
        default=None,
        help="Optional directory to save plots (if not provided, plots are displayed interactively)."
    )

    return parser.parse_args()


def main():
    args = get_args()

    config = PipelineConfig.from_yaml(args.config) if args.config else PipelineConfig()
    if args.no_escalate:
        config.escalate = False

    resolved, summary = GeocodingPipeline(config).run()

    print(f"📍 Resolved {resolved['fips'].is_not_null().sum()} of {resolved.height} records")
    print(diagnostic_report(summary).head(10))

    PLOT_DISPATCH = {
        "tiers": lambda: plot_resolution_tiers(summary, save_dir=args.save_dir),
    }

    if args.plot is not None:
        PLOT_DISPATCH[args.plot]()


if __name__ == "__main__":
    main()
