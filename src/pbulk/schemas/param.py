"""ParamConfig: Expert defaults for the pbulk pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from pbulk.schemas.base import PbulkBaseModel


ReducerName = Literal["sum", "mean", "median", "max", "min"]
FailurePolicyName = Literal["fail_fast", "best_effort"]
EmptyPartitionsName = Literal["skip", "keep"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def normalize_choice(v):
    """Lower-case and strip a choice string; hyphens become underscores."""
    if isinstance(v, str):
        return v.lower().strip().replace("-", "_")
    return v


# =============================================================================
# Nested Configuration Models
# =============================================================================

class AggregatorConfig(PbulkBaseModel):
    """Pseudobulk aggregation configuration."""
    sample_key: str = Field("sample_id", min_length=1, description="Observation column identifying the sample")
    celltype_key: str = Field("cell_type", min_length=1, description="Observation column holding the cell type label")
    reducer: ReducerName = "sum"
    min_cells: int = Field(10, ge=1, description="Minimum cells per sample/cell type group")
    count_column: Optional[str] = "n_cells"
    value_fields: Optional[list[str]] = None  # None = every numeric column
    carry_fields: list[str] = Field(default_factory=list)

    @field_validator("reducer", mode="before")
    @classmethod
    def normalize_reducer(cls, v):
        """Normalize reducer names to lowercase."""
        return normalize_choice(v)


class RunnerConfig(PbulkBaseModel):
    """Per-group runner configuration."""
    split_key: Optional[str] = None  # None = aggregator.celltype_key
    failure_policy: FailurePolicyName = "fail_fast"
    max_workers: int = Field(1, ge=1, le=64)
    empty_partitions: EmptyPartitionsName = "skip"

    @field_validator("failure_policy", "empty_partitions", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Accept 'Fail-Fast', 'BEST_EFFORT', etc."""
        return normalize_choice(v)


class StagesConfig(PbulkBaseModel):
    """Default per-group stage list."""
    min_library_size: Optional[float] = Field(None, ge=0)
    min_feature_total: Optional[float] = Field(10.0, ge=0)
    normalize: bool = False
    cpm_scale: float = Field(1e6, gt=0)
    log_transform: bool = False
    pseudocount: float = Field(1.0, gt=0)
    log_base: float = Field(2.0, gt=1)


class VisualizationConfig(PbulkBaseModel):
    """Visualization settings."""
    enabled: bool = True
    dpi: int = Field(150, ge=50)
    figsize: tuple[float, float] = (12.0, 5.0)
    output_format: Literal["png", "pdf", "jpeg"] = "png"
    top_features: int = Field(20, ge=1)
    cmap: str = "viridis"


class OutputConfig(PbulkBaseModel):
    """Output file configuration."""
    format: Literal["csv", "parquet"] = "csv"


class LoggingConfig(PbulkBaseModel):
    """Logging configuration."""
    level: LogLevel = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(PbulkBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all pipeline parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    base_dir: Optional[str] = None
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)
    visualization: VisualizationConfig = Field(default_factory=VisualizationConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
