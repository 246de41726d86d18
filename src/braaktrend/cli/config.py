"""
Configuration file support for the braaktrend CLI.

Supports YAML and JSON config files with CLI argument override. Sections
mirror the pipeline stages:

    expression: data/GSE106241_series_matrix.tsv
    metadata: data/GSE106241_samples.csv
    output: results/
    annotation:
      source: table            # or "mygene"
      path: data/GPL24170.tsv
      control_prefixes: [AFFX]
    outliers:
      percentile: 99
    differential:
      alpha: 0.05
    trend:
      alpha: 0.01
      n_jobs: 4
    enrichment:
      provider: hypergeometric
      gene_sets: data/c2.cp.kegg.gmt

Unknown keys are rejected so that a misspelled threshold cannot silently
fall back to its default.
"""

import json
from argparse import Namespace
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from braaktrend.io.data_filters import DEFAULT_CONTROL_PREFIXES


@dataclass
class MetadataConfig:
    """Sample metadata canonicalization."""
    field_aliases: Optional[Dict[str, List[str]]] = None
    region_synonyms: Optional[Dict[str, str]] = None


@dataclass
class AnnotationConfig:
    """Probe annotation source and probe filters."""
    source: str = "table"
    path: Optional[Path] = None
    column_map: Optional[Dict[str, str]] = None
    species: str = "human"
    batch_size: int = 1000
    control_prefixes: List[str] = field(default_factory=lambda: list(DEFAULT_CONTROL_PREFIXES))
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class NormalizationConfig:
    """log2 + quantile normalization switches."""
    log_transform: bool = True
    quantile: bool = True


@dataclass
class OutlierConfig:
    """PC1 outlier screen."""
    enabled: bool = True
    percentile: float = 99.0


@dataclass
class DifferentialConfig:
    """Two-group moderated t-test."""
    alpha: float = 0.05
    top_n: int = 50


@dataclass
class TrendConfig:
    """Jonckheere–Terpstra trend test."""
    alpha: float = 0.01
    n_jobs: int = 1
    chunk_size: int = 500


@dataclass
class EnrichmentConfig:
    """Enrichment hand-off (disabled when provider is None)."""
    provider: Optional[str] = None
    gene_sets: Optional[Path] = None
    organism: str = "hsapiens"
    sources: List[str] = field(default_factory=lambda: ["GO:BP", "GO:CC", "GO:MF", "KEGG"])
    threshold: float = 0.05
    min_count: int = 1
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class PipelineConfig:
    """
    Complete configuration schema for ``braaktrend run``.

    Mirrors the CLI argument structure for consistency.
    """
    expression: Optional[Path] = None
    metadata: Optional[Path] = None
    output: Optional[Path] = None
    sample_metadata: MetadataConfig = field(default_factory=MetadataConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    outliers: OutlierConfig = field(default_factory=OutlierConfig)
    differential: DifferentialConfig = field(default_factory=DifferentialConfig)
    trend: TrendConfig = field(default_factory=TrendConfig)
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)


_PATH_FIELDS = {'expression', 'metadata', 'output', 'path', 'gene_sets'}
_VALID_SOURCES = ('table', 'mygene')
_VALID_PROVIDERS = ('hypergeometric', 'gprofiler')


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ValueError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ValueError("Config file must contain a dictionary/mapping at top level")

    return config


def _build(cls, values: Dict[str, Any], section: str):
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{section}' must be a mapping")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(values) - set(known))
    if unknown:
        raise ValueError(f"Unknown config key(s) in '{section}': {', '.join(unknown)}")

    defaults = cls()
    kwargs = {}
    for name, value in values.items():
        default = getattr(defaults, name)
        if is_dataclass(default):
            kwargs[name] = _build(type(default), value or {}, f"{section}.{name}".lstrip('.'))
        elif name in _PATH_FIELDS and value is not None:
            kwargs[name] = Path(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def config_from_dict(config: Dict[str, Any]) -> PipelineConfig:
    """
    Build a validated PipelineConfig from a loaded mapping.

    Raises:
        ValueError: Unknown keys or invalid values
    """
    result = _build(PipelineConfig, config, "")
    validate_config(result)
    return result


def validate_config(config: PipelineConfig) -> None:
    """
    Validate configuration values.

    Raises:
        ValueError: If configuration is invalid
    """
    if config.annotation.source not in _VALID_SOURCES:
        raise ValueError(
            f"Invalid annotation source '{config.annotation.source}'. "
            f"Choose from: {', '.join(_VALID_SOURCES)}"
        )

    provider = config.enrichment.provider
    if provider is not None and provider not in _VALID_PROVIDERS:
        raise ValueError(
            f"Invalid enrichment provider '{provider}'. "
            f"Choose from: {', '.join(_VALID_PROVIDERS)}"
        )
    if provider == 'hypergeometric' and config.enrichment.gene_sets is None:
        raise ValueError("Hypergeometric enrichment requires 'gene_sets' (GMT file)")

    for name, alpha in (("differential", config.differential.alpha), ("trend", config.trend.alpha)):
        if not isinstance(alpha, (int, float)) or not 0 < alpha <= 1:
            raise ValueError(f"{name}.alpha must be in (0, 1], got: {alpha}")

    percentile = config.outliers.percentile
    if not isinstance(percentile, (int, float)) or not 0 < percentile <= 100:
        raise ValueError(f"outliers.percentile must be in (0, 100], got: {percentile}")

    if config.differential.top_n < 1:
        raise ValueError(f"differential.top_n must be positive, got: {config.differential.top_n}")
    if config.trend.n_jobs == 0:
        raise ValueError("trend.n_jobs must be non-zero")


def _merge_value(cli_value: Any, config_value: Any, arg_name: str, was_explicitly_set: bool) -> Any:
    """
    Merge a single config value with CLI argument.

    Rules:
    - CLI args ALWAYS override config if explicitly set
    - If CLI arg not set, use config value
    - If neither set, keep CLI default
    """
    if was_explicitly_set:
        return cli_value

    if config_value is not None:
        return config_value

    return cli_value


def _explicit_args(cli_args: Optional[List[str]]) -> set:
    explicit = set()
    short_to_long = {'o': 'output', 'c': 'config', 'v': 'verbose'}
    for arg in cli_args or []:
        if arg.startswith('--'):
            explicit.add(arg[2:].split('=', 1)[0].replace('-', '_'))
        elif arg.startswith('-') and len(arg) == 2 and arg[1] in short_to_long:
            explicit.add(short_to_long[arg[1]])
    return explicit


def merge_config_with_args(
    config: PipelineConfig,
    args: Namespace,
    cli_args: Optional[List[str]] = None,
) -> PipelineConfig:
    """
    Merge config file values with CLI arguments.

    Priority (highest to lowest):
    1. Explicitly provided CLI arguments
    2. Config file values
    3. CLI argument defaults

    Parameters:
        config: Configuration from config_from_dict() (or defaults)
        args: Parsed CLI arguments (argparse.Namespace)
        cli_args: Raw CLI arguments list (for detecting explicit values)
                  If None, assumes all args are defaults

    Returns:
        New PipelineConfig with merged values
    """
    explicit = _explicit_args(cli_args)
    defaults = PipelineConfig()

    def pick(arg_name: str, current: Any, default: Any) -> Any:
        cli_value = getattr(args, arg_name, None)
        config_value = current if current != default else None
        if cli_value is None:
            return current
        return _merge_value(cli_value, config_value, arg_name, arg_name in explicit)

    merged = replace(
        config,
        expression=pick('expression', config.expression, defaults.expression),
        metadata=pick('metadata', config.metadata, defaults.metadata),
        output=pick('output', config.output, defaults.output),
    )

    annotation = config.annotation
    if getattr(args, 'annotation', None) is not None:
        annotation = replace(
            annotation,
            source='table',
            path=pick('annotation', annotation.path, defaults.annotation.path),
        )
    if getattr(args, 'mygene', False):
        annotation = replace(annotation, source='mygene')

    trend = replace(
        config.trend,
        n_jobs=pick('n_jobs', config.trend.n_jobs, defaults.trend.n_jobs),
    )
    differential = replace(
        config.differential,
        top_n=pick('top_n', config.differential.top_n, defaults.differential.top_n),
    )

    enrichment = config.enrichment
    if getattr(args, 'gene_sets', None) is not None:
        enrichment = replace(
            enrichment,
            provider='hypergeometric',
            gene_sets=pick('gene_sets', enrichment.gene_sets, defaults.enrichment.gene_sets),
        )
    if getattr(args, 'gprofiler', False):
        enrichment = replace(enrichment, provider='gprofiler')

    merged = replace(
        merged,
        annotation=annotation,
        trend=trend,
        differential=differential,
        enrichment=enrichment,
    )
    validate_config(merged)
    return merged
