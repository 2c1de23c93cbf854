### Pipeline configuration. Paths default to the data/ layout used by the rest of the repo; the provider chain is declared in config/providers.yml.

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Self
import yaml

from prescriber_geo.errors import ConfigError
from prescriber_geo.records import PrescriberRecord

PROVIDERS_PATH: Path = Path("config/providers.yml")
PROCESSED_DATA_PATH: Path = Path("data/Processed")
COUNTY_SHAPEFILES: dict[int, Path] = {
    2019: PROCESSED_DATA_PATH / "2019_County_Shapefile/cb_2019_us_county_500k.shp",
    2022: PROCESSED_DATA_PATH / "2022_County_Shapefile/2022_filtered_shapefile.shp",
}

# Record attributes a provider field_map may point at
RECORD_FIELDS: frozenset[str] = frozenset(f.name for f in fields(PrescriberRecord) if f.name != "place_key")


def gazetteer_path_for(vintage: int) -> Path:
    return PROCESSED_DATA_PATH / f"Gazetteer/gazetteer_{vintage}.parquet"


@dataclass(frozen=True)
class ProviderConfig:
    """
    Declarative description of one external geocoding provider.

    ``field_map`` maps the provider's request parameter names to
    PrescriberRecord attributes, e.g. ``{"street": "street", "zip": "zip5"}``
    for a structured service or ``{"q": "address"}`` for a single-line one.
    """

    name: str
    kind: str
    priority: int
    field_map: dict[str, str]
    requests_per_second: float | None = None
    daily_cap: int | None = None
    batch_size: int = 1
    workers: int = 1
    timeout: float = 30.0
    api_key_env: str | None = None
    base_url: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigError(f"Unknown provider settings {(*sorted(unknown),)} for {raw.get('name')}")
        missing = [k for k in ("name", "kind", "priority", "field_map") if k not in raw]
        if missing:
            raise ConfigError(f"Provider {raw.get('name')} is missing {(*missing,)}")
        config = cls(**raw)
        if not config.field_map:
            raise ConfigError(f"Provider {config.name} needs a non-empty field_map")
        unknown_fields = sorted(set(config.field_map.values()) - RECORD_FIELDS)
        if unknown_fields:
            raise ConfigError(
                f"Provider {config.name}: field_map refers to unknown record fields {(*unknown_fields,)}. "
                f"Available: {sorted(RECORD_FIELDS)}"
            )
        if config.batch_size < 1 or config.workers < 1:
            raise ConfigError(f"Provider {config.name}: batch_size and workers must be >= 1")
        return config


def load_provider_configs(path: Path = PROVIDERS_PATH) -> list[ProviderConfig]:
    """Enabled providers from a YAML file, in priority order."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"{path} does not exist")
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    configs = [ProviderConfig.from_dict(entry) for entry in raw.get("providers", [])]
    names = [c.name for c in configs]
    if len(names) != len(set(names)):
        raise ConfigError(f"Duplicate provider names in {path}: {names}")
    return sorted((c for c in configs if c.enabled), key=lambda c: c.priority)


@dataclass
class PipelineConfig:
    """
    Dataclass holding every input path and setting for one geocoding run.
    """

    # === Inputs ===
    prescriber_files: dict[int, Path] = field(default_factory=lambda: {
        year: Path(f"data/Raw/PartD/partd_prescribers_{year}.csv")
        for year in range(2013, 2023)
    })
    place_names_path: Path = Path("data/Raw/GNIS/NationalFile.txt")
    # Derived from vintage when unset
    county_shapefile: Path | None = None
    # Falls back to the shapefile's own GEOIDs when unset
    county_universe_path: Path | None = None
    zip_centroid_path: Path = Path("data/Raw/Zip/zip_centroids.csv")
    urb_path: Path = Path("data/Processed/Urbanicity/RUCC_urbrur_2013_2023.csv")
    override_dir: Path = Path("data/Overrides")
    providers_path: Path = PROVIDERS_PATH

    # === Derived artifacts ===
    # Derived from vintage when unset
    gazetteer_path: Path | None = None
    store_path: Path | None = Path("data/Processed/Geocoding/results.sqlite")
    output_dir: Path = Path("data/Processed/Geocoding")

    # === Settings ===
    vintage: int = 2022
    urb_code: str = "RUCC_2023"
    urb_mapping: dict | None = None
    escalate: bool = True

    def __post_init__(self: Self) -> None:
        if self.county_shapefile is None:
            if self.vintage not in COUNTY_SHAPEFILES:
                raise ConfigError(
                    f"No county shapefile known for vintage {self.vintage}. Available: {list(COUNTY_SHAPEFILES)}"
                )
            self.county_shapefile = COUNTY_SHAPEFILES[self.vintage]
        if self.gazetteer_path is None:
            self.gazetteer_path = gazetteer_path_for(self.vintage)

    @classmethod
    def from_yaml(cls, path: Path) -> Self:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known
        if unknown:
            raise ConfigError(f"Unknown pipeline settings {(*sorted(unknown),)} in {path}")
        paths = {k: Path(v) for k, v in raw.items() if k.endswith(("_path", "_dir", "_shapefile")) and v is not None}
        if "prescriber_files" in raw:
            paths["prescriber_files"] = {int(y): Path(p) for y, p in raw["prescriber_files"].items()}
        return cls(**{**raw, **paths})
