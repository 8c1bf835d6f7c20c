"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import ConfigDict, Field
from pbulk.schemas.base import PbulkBaseModel
from pbulk.schemas.param import EmptyPartitionsName, FailurePolicyName, LogLevel, ReducerName


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalAggregatorConfig(PbulkBaseModel):
    """Runtime aggregation configuration."""
    sample_key: str
    celltype_key: str
    reducer: ReducerName
    min_cells: int = Field(ge=1)
    count_column: Optional[str]
    value_fields: Optional[list[str]]
    carry_fields: list[str]


class InternalRunnerConfig(PbulkBaseModel):
    """Runtime runner configuration.

    Note: split_key is filled from aggregator.celltype_key in
    resolve_config() when not given.
    """
    split_key: str
    failure_policy: FailurePolicyName
    max_workers: int = Field(ge=1, le=64)
    empty_partitions: EmptyPartitionsName


class InternalStagesConfig(PbulkBaseModel):
    """Runtime stage list configuration."""
    min_library_size: Optional[float]
    min_feature_total: Optional[float]
    normalize: bool
    cpm_scale: float
    log_transform: bool
    pseudocount: float
    log_base: float


class InternalVisualizationConfig(PbulkBaseModel):
    """Runtime visualization settings."""
    enabled: bool
    dpi: int
    figsize: tuple[float, float]
    output_format: Literal["png", "pdf", "jpeg"]
    top_features: int
    cmap: str


class InternalOutputConfig(PbulkBaseModel):
    """Runtime output configuration."""
    format: Literal["csv", "parquet"]


class InternalLoggingConfig(PbulkBaseModel):
    """Runtime logging configuration."""
    level: LogLevel


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(PbulkBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that processing code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters.

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.sample_key = config.aggregator.sample_key  # NOT .get()
            self.policy = config.runner.failure_policy

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO type checking
    - NO validation

    All of that happens during config resolution, not in runtime code.
    """

    base_dir: Optional[str]
    aggregator: InternalAggregatorConfig
    runner: InternalRunnerConfig
    stages: InternalStagesConfig
    visualization: InternalVisualizationConfig
    output: InternalOutputConfig
    logging: InternalLoggingConfig

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
