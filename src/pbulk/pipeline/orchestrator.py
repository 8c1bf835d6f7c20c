"""Pseudobulk pipeline orchestration.

Reads a per-cell observation table, aggregates it into pseudobulk samples,
runs the per-group stage list and persists tables, plots and a failure
report under the run's output directories.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from pbulk.contracts import FailurePolicy
from pbulk.core.table import Table
from pbulk.pipeline.runner import GroupedResult, GroupedRunner
from pbulk.pipeline.stages import build_stages
from pbulk.pseudobulk.aggregator import PseudobulkAggregator
from pbulk.schemas import InternalConfig
from pbulk.setup_directories import get_log_path, get_table_path, group_file_names
from pbulk.visualization.plotter import GroupPlotter

__all__ = ['PseudobulkOrchestrator', 'read_observations', 'write_table']

logger = logging.getLogger(__name__)

READERS = {
    ".csv": pd.read_csv,
    ".tsv": lambda path: pd.read_csv(path, sep="\t"),
    ".parquet": pd.read_parquet,
}


def read_observations(path: Union[str, Path]) -> pd.DataFrame:
    """Read a per-cell observation table from CSV, TSV or parquet.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    ValueError
        If the file extension is not supported.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Observations not found: {path}")
    reader = READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(
            f"Unsupported observation file '{path.name}'. Supported: {sorted(READERS)}"
        )
    return reader(path)


def write_table(frame: pd.DataFrame, path: Path, file_format: str) -> Path:
    """Write ``frame`` as CSV or parquet."""
    if file_format == "parquet":
        frame.to_parquet(path, index=False)
    else:
        frame.to_csv(path, index=False)
    return path


class PseudobulkOrchestrator:
    """Runs the pseudobulk pipeline end to end for one observation table.

    **Steps:**

    1. Aggregate per-cell rows into one row per (sample, cell type) with
       :class:`PseudobulkAggregator`.
    2. Build the default stage list from ``config.stages`` and append any
       extra stages passed to :meth:`run`.
    3. Split by ``config.runner.split_key`` and run the stages on every
       group with :class:`GroupedRunner`.
    4. Persist the aggregated table, one table per group, a failure report
       (best-effort runs only) and the resolved configuration.
    5. Plot every successful group when visualization is enabled.

    **Logging:**

    All output goes to both console and ``logs/pbulk_<run_id>.log``. Log
    level comes from ``config.logging.level``.

    Example usage::

        config = resolve_config(ParamConfig(), user_cfg, cli_cfg)
        output_dirs = setup_output_directories(config.base_dir)
        result = PseudobulkOrchestrator(config, output_dirs).run("cells.csv")
    """

    def __init__(self, config: InternalConfig, output_dirs: Dict[str, Path],
                 run_id: Optional[str] = None):
        self.config = config
        self.output_dirs = {k: Path(v) for k, v in output_dirs.items()}
        self.run_id = run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self.file_format = config.output.format

        self.aggregator = PseudobulkAggregator(config)
        self.runner = GroupedRunner(config)
        self.plotter = GroupPlotter(config) if config.visualization.enabled else None

        self._handlers: List[logging.Handler] = []
        self.outputs: Dict[str, Any] = {}

    def _setup_logging(self):
        """Attach file and console handlers to the root logger.

        Handlers from a previous run of this orchestrator are replaced;
        handlers installed by anyone else are left alone.
        """
        log_level = getattr(logging, self.config.logging.level)
        log_path = get_log_path(self.output_dirs, self.run_id)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        self._teardown_logging()
        root = logging.getLogger()
        root.setLevel(log_level)

        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)

        for handler in (fh, ch):
            root.addHandler(handler)
            self._handlers.append(handler)

        self.outputs["log"] = log_path
        logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    def _teardown_logging(self):
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers = []

    def _persist_runtime_config(self) -> Path:
        """Save the resolved configuration next to the outputs."""
        config_file = self.output_dirs["base"] / f"runtime_config_{self.run_id}.json"
        config_dict = self.config.model_dump()
        config_dict["run_id"] = self.run_id
        config_dict["created_at"] = datetime.now(timezone.utc).isoformat()
        with open(config_file, 'w') as f:
            json.dump(config_dict, f, indent=2, default=str)
        logger.info("Runtime config saved: %s", config_file)
        return config_file

    def _load(self, observations) -> Union[Table, pd.DataFrame]:
        if isinstance(observations, (Table, pd.DataFrame)):
            return observations
        logger.info("Reading observations: %s", observations)
        return read_observations(observations)

    def _write_results(self, pseudobulk: Table, result: GroupedResult) -> None:
        base = self.output_dirs["base"]
        pb_path = base / f"pseudobulk.{self.file_format}"
        self.outputs["pseudobulk"] = write_table(pseudobulk.frame, pb_path, self.file_format)
        logger.info("Aggregated table saved: %s", pb_path)

        names = group_file_names(result)
        tables = {}
        for group, table in result.tables.items():
            path = get_table_path(self.output_dirs, names[group], self.file_format)
            tables[group] = write_table(table.frame, path, self.file_format)
        self.outputs["tables"] = tables
        logger.info("Saved %d group table(s) to %s", len(tables), self.output_dirs["tables"])

        if result.failures:
            rows = [
                {
                    "group": group,
                    "stage_index": err.stage_index,
                    "stage_name": err.stage_name,
                    "error_type": type(err.cause).__name__,
                    "error": str(err.cause),
                }
                for group, err in result.failures.items()
            ]
            report = base / "failures.csv"
            pd.DataFrame(rows).to_csv(report, index=False)
            self.outputs["failures"] = report
            logger.warning("%d group(s) failed, report: %s", len(rows), report)

    def run(self, observations, extra_stages: Sequence[Any] = (),
            default: Optional[Table] = None) -> GroupedResult:
        """Run the pipeline on one observation table.

        Parameters
        ----------
        observations : str, Path, pd.DataFrame or Table
            Per-cell table, or a CSV/TSV/parquet file holding one.
        extra_stages : sequence of Stage or callable
            Appended after the stages built from ``config.stages``.
        default : Table, optional
            Aggregation result to use when the observation table is empty.

        Returns
        -------
        GroupedResult

        Raises
        ------
        StageError
            Under the fail-fast policy, when any group fails. Nothing is
            written for the groups in that case.
        """
        self._setup_logging()
        start = time.time()

        logger.info("=" * 60)
        logger.info("Starting pseudobulk pipeline (run %s)", self.run_id)
        logger.info("=" * 60)

        try:
            self.outputs["config"] = self._persist_runtime_config()

            pseudobulk = self.aggregator.aggregate(self._load(observations), default=default)
            stages = [*build_stages(self.config), *extra_stages]
            result = self.runner.run(pseudobulk, stages)

            self._write_results(pseudobulk, result)

            if self.plotter is not None:
                self.outputs["plots"] = self.plotter.plot_grouped(result, self.output_dirs)

            if self.runner.policy == FailurePolicy.BEST_EFFORT and not result.ok:
                logger.warning("Finished with failures: %s", sorted(map(str, result.failures)))

            logger.info("=" * 60)
            logger.info("Pipeline finished in %.1f seconds: %d group(s) ok, %d failed",
                        time.time() - start, len(result.tables), len(result.failures))
            logger.info("=" * 60)
            return result
        finally:
            self._teardown_logging()
