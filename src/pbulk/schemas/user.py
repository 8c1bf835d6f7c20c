"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., SAMPLE_KEY → sample_key, REDUCER → reducer).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, etc.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from pbulk.schemas.base import PbulkBaseModel
from pbulk.schemas.param import normalize_choice


class UserAggregatorConfig(PbulkBaseModel):
    """User-facing aggregation config."""
    sample_key: Optional[str] = None
    celltype_key: Optional[str] = None
    reducer: Optional[str] = None
    min_cells: Optional[int] = None
    count_column: Optional[str] = None
    value_fields: Optional[list[str]] = None
    carry_fields: Optional[list[str]] = None

    @field_validator("reducer", mode="before")
    @classmethod
    def normalize_reducer(cls, v):
        return normalize_choice(v)


class UserRunnerConfig(PbulkBaseModel):
    """User-facing runner config."""
    split_key: Optional[str] = None
    failure_policy: Optional[str] = None
    max_workers: Optional[int] = None
    empty_partitions: Optional[str] = None

    @field_validator("failure_policy", "empty_partitions", mode="before")
    @classmethod
    def normalize_names(cls, v):
        return normalize_choice(v)


class UserStagesConfig(PbulkBaseModel):
    """User-facing stage list config."""
    min_library_size: Optional[float] = None
    min_feature_total: Optional[float] = None
    normalize: Optional[bool] = None
    cpm_scale: Optional[float] = None
    log_transform: Optional[bool] = None
    pseudocount: Optional[float] = None
    log_base: Optional[float] = None


class UserVisualizationConfig(PbulkBaseModel):
    """User-facing visualization config."""
    enabled: Optional[bool] = None
    dpi: Optional[int] = None
    figsize: Optional[tuple[float, float]] = None
    output_format: Optional[str] = None
    top_features: Optional[int] = None
    cmap: Optional[str] = None


class UserConfig(PbulkBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            SAMPLE_KEY="donor",
            REDUCER="Mean",
            MIN_CELLS=20,
            FAILURE_POLICY="best-effort",
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    base_dir: Optional[str] = Field(None, alias="BASE_DIR")

    # Aggregation settings (flat aliases)
    sample_key: Optional[str] = Field(None, alias="SAMPLE_KEY")
    celltype_key: Optional[str] = Field(None, alias="CELLTYPE_KEY")
    reducer: Optional[str] = Field(None, alias="REDUCER")
    min_cells: Optional[int] = Field(None, alias="MIN_CELLS")
    count_column: Optional[str] = Field(None, alias="COUNT_COLUMN")
    value_fields: Optional[list[str]] = Field(None, alias="VALUE_FIELDS")
    carry_fields: Optional[list[str]] = Field(None, alias="CARRY_FIELDS")

    # Runner settings (flat aliases)
    split_key: Optional[str] = Field(None, alias="SPLIT_KEY")
    failure_policy: Optional[str] = Field(None, alias="FAILURE_POLICY")
    max_workers: Optional[int] = Field(None, alias="MAX_WORKERS")
    empty_partitions: Optional[str] = Field(None, alias="EMPTY_PARTITIONS")

    # Stage settings (flat aliases)
    min_feature_total: Optional[float] = Field(None, alias="MIN_FEATURE_TOTAL")
    min_library_size: Optional[float] = Field(None, alias="MIN_LIBRARY_SIZE")
    normalize: Optional[bool] = Field(None, alias="NORMALIZE")
    log_transform: Optional[bool] = Field(None, alias="LOG_TRANSFORM")

    output_format: Optional[Literal["csv", "parquet"]] = Field(None, alias="OUTPUT_FORMAT")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")

    # Nested overrides (advanced users)
    aggregator: Optional[UserAggregatorConfig] = None
    runner: Optional[UserRunnerConfig] = None
    stages: Optional[UserStagesConfig] = None
    visualization: Optional[UserVisualizationConfig] = None

    model_config = PbulkBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("reducer", "failure_policy", "empty_partitions", mode="before")
    @classmethod
    def normalize_names(cls, v):
        """Normalize reducer and policy names to lowercase."""
        return normalize_choice(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    @staticmethod
    def _section(flat: dict, nested: Optional[PbulkBaseModel]) -> dict:
        section = {k: v for k, v in flat.items() if v is not None}
        if nested is not None:
            section.update(nested.model_dump(exclude_none=True))
        return section

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Nested sections win over the flat aliases they overlap with.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        aggregator = self._section({
            "sample_key": self.sample_key,
            "celltype_key": self.celltype_key,
            "reducer": self.reducer,
            "min_cells": self.min_cells,
            "count_column": self.count_column,
            "value_fields": self.value_fields,
            "carry_fields": self.carry_fields,
        }, self.aggregator)
        if aggregator:
            overrides["aggregator"] = aggregator

        runner = self._section({
            "split_key": self.split_key,
            "failure_policy": self.failure_policy,
            "max_workers": self.max_workers,
            "empty_partitions": self.empty_partitions,
        }, self.runner)
        if runner:
            overrides["runner"] = runner

        stages = self._section({
            "min_feature_total": self.min_feature_total,
            "min_library_size": self.min_library_size,
            "normalize": self.normalize,
            "log_transform": self.log_transform,
        }, self.stages)
        if stages:
            overrides["stages"] = stages

        visualization = self._section({}, self.visualization)
        if visualization:
            overrides["visualization"] = visualization

        if self.output_format is not None:
            overrides["output"] = {"format": self.output_format}

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
