import json
import logging

import pytest
import pandas as pd

from pbulk.contracts import EmptyInputError, StageError
from pbulk.pipeline.orchestrator import PseudobulkOrchestrator, read_observations
from pbulk.pipeline.stages import Stage

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


def explode_on_b(table):
    if (table.frame["cell_type"] == "B").any():
        raise ValueError("B cells are not supported")
    return table


def test_orchestrator_initialization(small_config, output_dirs):
    """Orchestrator wires aggregator, runner and plotter from config."""
    orch = PseudobulkOrchestrator(small_config, output_dirs, run_id="test")

    assert orch.aggregator.group_keys == ("sample_id", "cell_type")
    assert orch.runner.split_key == "cell_type"
    assert orch.plotter is None
    assert orch.file_format == "csv"


def test_run_writes_tables(small_config, output_dirs, cells):
    """Aggregated table and one table per group are written."""
    orch = PseudobulkOrchestrator(small_config, output_dirs, run_id="test")
    result = orch.run(cells)

    assert list(result) == ["B", "T"]
    assert result.ok

    pb = pd.read_csv(output_dirs["base"] / "pseudobulk.csv")
    assert len(pb) == 5
    assert pb["n_cells"].sum() == len(cells)

    b = pd.read_csv(output_dirs["tables"] / "B.csv")
    t = pd.read_csv(output_dirs["tables"] / "T.csv")
    assert b["sample_id"].tolist() == ["s1", "s2"]
    assert t["CD3E"].tolist() == [8, 6, 2]
    assert t["condition"].tolist() == ["ctrl", "stim", "ctrl"]
    assert not (output_dirs["base"] / "failures.csv").exists()


def test_run_persists_runtime_config(small_config, output_dirs, cells):
    orch = PseudobulkOrchestrator(small_config, output_dirs, run_id="abc")
    orch.run(cells)

    saved = json.loads((output_dirs["base"] / "runtime_config_abc.json").read_text())
    assert saved["run_id"] == "abc"
    assert saved["aggregator"]["min_cells"] == 1
    assert saved["runner"]["split_key"] == "cell_type"


def test_run_writes_log_file(small_config, output_dirs, cells):
    orch = PseudobulkOrchestrator(small_config, output_dirs, run_id="logtest")
    orch.run(cells)

    log_file = output_dirs["logs"] / "pbulk_logtest.log"
    assert log_file.exists()
    assert "Grouped run complete" in log_file.read_text()


def test_run_removes_its_handlers(small_config, output_dirs, cells):
    root = logging.getLogger()
    before = list(root.handlers)

    PseudobulkOrchestrator(small_config, output_dirs, run_id="h").run(cells)

    assert root.handlers == before


def test_run_reads_csv_file(small_config, output_dirs, cells, temp_dir):
    path = temp_dir / "cells.csv"
    cells.to_csv(path, index=False)

    result = PseudobulkOrchestrator(small_config, output_dirs).run(path)
    assert list(result.tables) == ["B", "T"]


def test_extra_stages_run_after_configured_ones(small_config, output_dirs, cells):
    seen = []

    def spy(table):
        seen.append(table.values)
        return table

    PseudobulkOrchestrator(small_config, output_dirs).run(cells, extra_stages=[spy])

    assert seen == [("CD3E", "MS4A1", "GNLY")] * 2


def test_fail_fast_raises_and_writes_no_group_tables(make_config, output_dirs, cells):
    config = make_config(MIN_CELLS=1, visualization={"enabled": False})
    orch = PseudobulkOrchestrator(config, output_dirs)

    with pytest.raises(StageError, match="partition 'B'"):
        orch.run(cells, extra_stages=[Stage("explode_on_b", explode_on_b)])

    assert list(output_dirs["tables"].iterdir()) == []


def test_best_effort_writes_failure_report(make_config, output_dirs, cells):
    config = make_config(MIN_CELLS=1, FAILURE_POLICY="best_effort",
                         visualization={"enabled": False})
    orch = PseudobulkOrchestrator(config, output_dirs)

    result = orch.run(cells, extra_stages=[Stage("explode_on_b", explode_on_b)])

    assert list(result.failures) == ["B"]
    assert (output_dirs["tables"] / "T.csv").exists()
    assert not (output_dirs["tables"] / "B.csv").exists()

    report = pd.read_csv(output_dirs["base"] / "failures.csv")
    assert report["group"].tolist() == ["B"]
    assert report["stage_name"].tolist() == ["explode_on_b"]
    assert report["error_type"].tolist() == ["ValueError"]
    assert orch.outputs["failures"] == output_dirs["base"] / "failures.csv"


def test_clashing_group_names_get_distinct_files(small_config, output_dirs, cells):
    cells["cell_type"] = cells["cell_type"].map({"T": "CD4 T", "B": "CD4/T"})
    orch = PseudobulkOrchestrator(small_config, output_dirs)
    orch.run(cells)

    paths = orch.outputs["tables"]
    assert list(paths) == ["CD4 T", "CD4/T"]
    assert [p.name for p in paths.values()] == ["CD4_T.csv", "CD4_T_2.csv"]
    assert pd.read_csv(paths["CD4 T"])["cell_type"].unique().tolist() == ["CD4 T"]
    assert pd.read_csv(paths["CD4/T"])["cell_type"].unique().tolist() == ["CD4/T"]


def test_header_only_file_is_empty_input(make_config, output_dirs, temp_dir):
    path = temp_dir / "cells.csv"
    path.write_text("sample_id,cell_type,CD3E\n")
    config = make_config(VALUE_FIELDS=["CD3E"], visualization={"enabled": False})

    with pytest.raises(EmptyInputError):
        PseudobulkOrchestrator(config, output_dirs).run(path)


def test_run_with_plots(make_config, output_dirs, cells):
    config = make_config(MIN_CELLS=1, MIN_FEATURE_TOTAL=0)
    orch = PseudobulkOrchestrator(config, output_dirs)
    orch.run(cells)

    assert sorted(p.name for p in orch.outputs["plots"]) == ["B.png", "T.png"]
    assert (output_dirs["plots"] / "B.png").exists()


def test_parquet_output(make_config, output_dirs, cells):
    pytest.importorskip("pyarrow")
    config = make_config(MIN_CELLS=1, OUTPUT_FORMAT="parquet", visualization={"enabled": False})

    PseudobulkOrchestrator(config, output_dirs).run(cells)

    t = pd.read_parquet(output_dirs["tables"] / "T.parquet")
    assert t["cell_type"].unique().tolist() == ["T"]


def test_read_observations_missing_file(temp_dir):
    with pytest.raises(FileNotFoundError):
        read_observations(temp_dir / "missing.csv")


def test_read_observations_unsupported_format(temp_dir):
    path = temp_dir / "cells.xlsx"
    path.write_text("")
    with pytest.raises(ValueError, match="Unsupported observation file"):
        read_observations(path)


def test_read_observations_tsv(temp_dir, cells):
    path = temp_dir / "cells.tsv"
    cells.to_csv(path, sep="\t", index=False)
    pd.testing.assert_frame_equal(read_observations(path), cells)
