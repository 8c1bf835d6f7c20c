#!/usr/bin/env python3
"""``pbulk`` pseudobulk pipeline runner.

Usage:
    python scripts/run_pseudobulk.py cells.csv --config scripts/user_config.py
    python scripts/run_pseudobulk.py cells.parquet --config scripts/user_config.py --split-key sample_id
    python scripts/run_pseudobulk.py cells.tsv --failure-policy best_effort --max-workers 4

Note: User config in scripts/user_config.py, expert defaults in src/pbulk/schemas/param.py
"""

import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "src"))

from pbulk.cli import main


if __name__ == "__main__":
    sys.exit(main())
