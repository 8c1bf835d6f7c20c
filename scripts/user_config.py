"""pbulk User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Advanced settings are in src/pbulk/schemas/param.py

Usage:
    python scripts/run_pseudobulk.py cells.csv --config scripts/user_config.py
    python scripts/run_pseudobulk.py cells.csv --config scripts/user_config.py --split-key sample_id
    pbulk cells.parquet --config scripts/user_config.py --failure-policy best_effort
"""

CONFIG = {
    # ========================================================================
    # OUTPUT
    # ========================================================================
    "BASE_DIR": "./pbulk_output",    # All outputs go here
    "OUTPUT_FORMAT": "csv",          # "csv" or "parquet"

    # ========================================================================
    # AGGREGATION
    # ========================================================================
    "SAMPLE_KEY": "sample_id",       # Column identifying the biological sample
    "CELLTYPE_KEY": "cell_type",     # Column holding the cell type label
    "REDUCER": "sum",                # "sum", "mean" or "median"
    "MIN_CELLS": 10,                 # Drop (sample, cell type) groups with fewer cells
    "COUNT_COLUMN": "n_cells",       # "" disables the per-group cell count
    "VALUE_FIELDS": None,            # None = every numeric column
    "CARRY_FIELDS": ["condition"],   # Per-sample metadata constant within each group

    # ========================================================================
    # PER-GROUP PROCESSING
    # ========================================================================
    "SPLIT_KEY": None,               # None = CELLTYPE_KEY
    "FAILURE_POLICY": "fail_fast",   # "fail_fast" or "best_effort"
    "MAX_WORKERS": 1,                # Groups processed in parallel

    # ========================================================================
    # STAGES
    # ========================================================================
    "MIN_LIBRARY_SIZE": None,        # Drop pseudobulk samples below this total
    "MIN_FEATURE_TOTAL": 10,         # Drop features below this total per group
    "NORMALIZE": False,              # Counts per million
    "LOG_TRANSFORM": False,          # log2(x + 1)
    # Note: CPM scale, pseudocount, log base and plot styling
    # are configured in src/pbulk/schemas/param.py
}
