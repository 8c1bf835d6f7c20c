"""Per-group pipeline: stages, runner and end-to-end orchestration."""

from pbulk.pipeline.stages import (
    Stage,
    as_stage,
    build_stages,
    filter_features,
    filter_rows,
    log_transform,
    normalize_cpm,
)
from pbulk.pipeline.runner import GroupedResult, GroupedRunner, run_grouped, split_partitions
from pbulk.pipeline.orchestrator import PseudobulkOrchestrator

__all__ = [
    'Stage',
    'as_stage',
    'build_stages',
    'filter_features',
    'filter_rows',
    'log_transform',
    'normalize_cpm',
    'GroupedResult',
    'GroupedRunner',
    'run_grouped',
    'split_partitions',
    'PseudobulkOrchestrator',
]
