"""Core pseudobulk pipeline execution logic.

This module contains the actual pipeline runner, separated from argument parsing.
The ``pbulk`` console script is a thin wrapper around run_pseudobulk_pipeline().
"""

import argparse
import json
import logging
import importlib.util
import shutil
import sys
from pathlib import Path
from typing import Optional, Dict, Any

from pbulk.pipeline.orchestrator import PseudobulkOrchestrator
from pbulk.pipeline.runner import GroupedResult
from pbulk.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig
from pbulk.setup_directories import setup_output_directories


logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str
        Path to user config Python file containing CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("config_module", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Could not load config module from {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def run_pseudobulk_pipeline(
    observations_path: str,
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    rerun: bool = False,
    verbose: bool = False,
) -> GroupedResult:
    """Execute the pseudobulk pipeline on one observation file.

    This is the core pipeline execution function. It:
    1. Loads and resolves configuration (Param < User < CLI)
    2. Optionally cleans the output directory if rerun=True
    3. Sets up output directories
    4. Runs the orchestrator and returns its result

    Parameters
    ----------
    observations_path : str
        Per-cell observation table (CSV, TSV or parquet).
    user_config_path : str, optional
        Path to user config file (Python file with CONFIG dict).
    cli_args : dict, optional
        CLI argument overrides. Keys: base_dir, split_key, failure_policy,
        max_workers, log_level. All optional.
    rerun : bool, optional
        If True, delete the output directory before running.
    verbose : bool, optional
        If True, enable DEBUG logging and print full resolved config.

    Returns
    -------
    GroupedResult
        Per-group tables, plus failures for best-effort runs.

    Raises
    ------
    FileNotFoundError
        If a config or observation file does not exist.
    ValueError
        If configuration validation fails.
    StageError
        Under the fail-fast policy, when any group fails.

    Examples
    --------
    Run with defaults::

        run_pseudobulk_pipeline("cells.csv")

    Run with a user config and CLI overrides::

        run_pseudobulk_pipeline(
            "cells.parquet",
            "config/my_config.py",
            cli_args={"failure_policy": "best_effort", "max_workers": 4},
        )
    """
    param_cfg = ParamConfig()

    user_cfg = None
    if user_config_path is not None:
        user_cfg = UserConfig.model_validate(load_user_config_dict(user_config_path))

    cli_args = dict(cli_args or {})
    if verbose and "log_level" not in cli_args:
        cli_args["log_level"] = "DEBUG"

    cli_dict = {k: v for k, v in cli_args.items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()

    config = resolve_config(param_cfg, user_cfg, cli_cfg)

    if rerun and config.base_dir is not None:
        base_dir_path = Path(config.base_dir)
        if base_dir_path.exists():
            print(f"Cleaning output directory: {base_dir_path}")
            shutil.rmtree(base_dir_path)
            print("Output directory cleaned")

    output_dirs = setup_output_directories(config.base_dir)

    print(f"\n{'='*60}")
    print("pbulk Pseudobulk Pipeline")
    print('='*60)
    print(f"Input:   {observations_path}")
    print(f"Config:  {user_config_path or '(defaults)'}")
    print(f"Groups:  {config.aggregator.sample_key} x {config.aggregator.celltype_key}")
    print(f"Split:   {config.runner.split_key} ({config.runner.failure_policy})")
    print(f"Output:  {output_dirs['base']}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(), indent=2))
        print('='*60)

    orchestrator = PseudobulkOrchestrator(config, output_dirs)
    return orchestrator.run(observations_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pbulk",
        description="Aggregate single-cell observations into pseudobulk samples and process each cell type",
    )
    parser.add_argument("observations", help="Per-cell table (CSV, TSV or parquet)")
    parser.add_argument("--config", help="Path to user config file (Python file with CONFIG dict)")
    parser.add_argument("--base-dir", help="Output directory")
    parser.add_argument("--split-key", help="Column to split the aggregated table on")
    parser.add_argument("--failure-policy", choices=["fail_fast", "best_effort"],
                        help="Abort on the first failing group, or record failures and continue")
    parser.add_argument("--max-workers", type=int, help="Groups processed in parallel")
    parser.add_argument("--rerun", action="store_true", help="Delete output directory before running")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    """Console entry point. Returns 1 when any group failed, else 0."""
    args = build_parser().parse_args(argv)

    result = run_pseudobulk_pipeline(
        args.observations,
        user_config_path=args.config,
        cli_args={
            "base_dir": args.base_dir,
            "split_key": args.split_key,
            "failure_policy": args.failure_policy,
            "max_workers": args.max_workers,
        },
        rerun=args.rerun,
        verbose=args.verbose,
    )
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
