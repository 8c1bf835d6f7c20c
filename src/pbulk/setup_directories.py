"""
Directory setup for pseudobulk runs.

Flat layout under one base directory:
- tables/  aggregated table and one file per group
- plots/   one figure per group
- logs/    one log file per run

Group values become file names, so they are sanitized first.
"""

import logging
import re
from pathlib import Path
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._+-]+")


def setup_output_directories(base_output_dir=None):
    """
    Set up organized output directory structure.

    Parameters
    ----------
    base_output_dir : str or Path, optional
        Base output directory. If None, uses ``./pbulk_output``.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'tables', 'plots', 'logs'
    """
    if base_output_dir is None:
        base_output_dir = Path.cwd() / "pbulk_output"

    base_output_dir = Path(base_output_dir).expanduser().resolve()

    directories = {
        "base": base_output_dir,
        "tables": base_output_dir / "tables",
        "plots": base_output_dir / "plots",
        "logs": base_output_dir / "logs",
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    logger.debug("Output directories: %s", {k: str(v) for k, v in directories.items()})
    return directories


def safe_name(value) -> str:
    """Turn a group value into a file-name fragment.

    Example
    -------
    >>> safe_name("CD4+ T cells")
    'CD4+_T_cells'
    """
    name = _UNSAFE.sub("_", str(value)).strip("._")
    return name or "group"


def group_file_names(groups):
    """Map group values to distinct file-name stems.

    Values that sanitize to the same stem get ``_2``, ``_3``, ... suffixes
    in the order given, so no group's output overwrites another's.

    Example
    -------
    >>> group_file_names(["CD4 T", "CD4/T", "B"])
    {'CD4 T': 'CD4_T', 'CD4/T': 'CD4_T_2', 'B': 'B'}
    """
    names = {}
    used = set()
    for group in groups:
        stem = safe_name(group)
        name, n = stem, 1
        while name.lower() in used:
            n += 1
            name = f"{stem}_{n}"
        if name != stem:
            logger.warning("Group %r clashes with another group's file name, writing as '%s'",
                           group, name)
        used.add(name.lower())
        names[group] = name
    return names


def get_table_path(output_dirs, name, file_format="csv"):
    """
    Get table file path.

    Parameters
    ----------
    output_dirs : dict
        Output directories from setup_output_directories()
    name : str
        Table name, e.g. 'pseudobulk' or a group value
    file_format : str
        'csv' or 'parquet'

    Returns
    -------
    Path
        Full path: tables/<name>.<format>
    """
    table_dir = Path(output_dirs["tables"])
    table_dir.mkdir(parents=True, exist_ok=True)
    return table_dir / f"{safe_name(name)}.{file_format.lstrip('.')}"


def get_plot_path(output_dirs, group, output_format="png"):
    """
    Get plot file path for one group.

    Returns
    -------
    Path
        Full path: plots/<group>.<format>

    Example
    -------
    >>> get_plot_path(dirs, 'B cells')
    Path('output/plots/B_cells.png')
    """
    plot_dir = Path(output_dirs["plots"])
    plot_dir.mkdir(parents=True, exist_ok=True)
    return plot_dir / f"{safe_name(group)}.{output_format.lstrip('.')}"


def get_log_path(output_dirs, run_id=None):
    """
    Get log file path.

    Parameters
    ----------
    output_dirs : dict
        Output directories from setup_output_directories()
    run_id : str, optional
        Run identifier. Defaults to the current UTC time.

    Returns
    -------
    Path
        Full path: logs/pbulk_<run_id>.log
    """
    log_dir = Path(output_dirs["logs"])
    log_dir.mkdir(parents=True, exist_ok=True)

    if run_id is None:
        run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    return log_dir / f"pbulk_{run_id}.log"
