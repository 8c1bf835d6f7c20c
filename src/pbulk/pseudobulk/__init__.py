"""Pseudobulk aggregation.

- aggregator: group per-cell observations into pseudobulk samples
"""

from pbulk.pseudobulk.aggregator import REDUCERS, PseudobulkAggregator, aggregate

__all__ = [
    "aggregate",
    "PseudobulkAggregator",
    "REDUCERS",
]
