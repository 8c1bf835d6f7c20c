"""Root-level pytest fixtures for the pbulk test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture, plus small deterministic observation tables.
All tests must use these fixtures instead of creating raw dict configs.
"""

import pytest
from pathlib import Path
import tempfile
import shutil

import pandas as pd

from pbulk.core.table import Table
from pbulk.schemas import ParamConfig, UserConfig, resolve_config
from pbulk.setup_directories import setup_output_directories


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Examples
    --------
    >>> def test_aggregator_init(internal_config):
    ...     agg = PseudobulkAggregator(internal_config)
    ...     assert agg.reducer == "sum"
    """
    return resolve_config(param_config, None, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs
    (field names or their uppercase aliases).

    Examples
    --------
    >>> def test_custom_reducer(make_config):
    ...     config = make_config(REDUCER="mean")
    ...     assert PseudobulkAggregator(config).reducer == "mean"
    """
    def _make(**user_overrides):
        if user_overrides:
            return resolve_config(param_config, UserConfig(**user_overrides), None)
        return resolve_config(param_config, None, None)

    return _make


@pytest.fixture
def small_config(make_config):
    """Config that keeps every group of the ``cells`` fixture and plots nothing."""
    return make_config(
        MIN_CELLS=1,
        MIN_FEATURE_TOTAL=0,
        carry_fields=["condition"],
        visualization={"enabled": False},
    )


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def output_dirs(temp_dir):
    """Standard pbulk output directory structure under ``temp_dir``."""
    return setup_output_directories(temp_dir)


# =============================================================================
# Observation Fixtures
# =============================================================================

@pytest.fixture
def cells():
    """Seven cells from three samples and two cell types.

    Summed by (sample_id, cell_type) this gives::

        s1 B  CD3E=0 MS4A1=4  GNLY=0  n=1
        s1 T  CD3E=8 MS4A1=0  GNLY=3  n=2
        s2 B  CD3E=1 MS4A1=10 GNLY=1  n=2
        s2 T  CD3E=6 MS4A1=1  GNLY=0  n=1
        s3 T  CD3E=2 MS4A1=0  GNLY=5  n=1
    """
    return pd.DataFrame({
        "sample_id": ["s1", "s1", "s1", "s2", "s2", "s2", "s3"],
        "cell_type": ["T", "T", "B", "T", "B", "B", "T"],
        "condition": ["ctrl", "ctrl", "ctrl", "stim", "stim", "stim", "ctrl"],
        "CD3E": [5, 3, 0, 6, 1, 0, 2],
        "MS4A1": [0, 0, 4, 1, 7, 3, 0],
        "GNLY": [1, 2, 0, 0, 1, 0, 5],
    })


@pytest.fixture
def cells_table(cells):
    """``cells`` as a Table keyed by sample and cell type."""
    return Table.from_frame(cells, keys=["sample_id", "cell_type"])


@pytest.fixture
def pseudobulk():
    """Already aggregated table: three cell types over two samples."""
    frame = pd.DataFrame({
        "sample_id": ["s1", "s2", "s1", "s2", "s1", "s2"],
        "cell_type": ["B", "B", "NK", "NK", "T", "T"],
        "CD3E": [0.0, 1.0, 2.0, 0.0, 8.0, 6.0],
        "MS4A1": [4.0, 10.0, 0.0, 1.0, 0.0, 1.0],
        "GNLY": [0.0, 1.0, 9.0, 7.0, 3.0, 0.0],
    })
    return Table.from_frame(frame, keys=["sample_id", "cell_type"])
