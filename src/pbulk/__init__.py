"""`pbulk` - Pseudobulk aggregation and per-group processing of single-cell tables.

Subpackages:
- core: Table data model
- pseudobulk: Aggregation by sample and cell type
- pipeline: Stages, grouped runner, orchestrator
- visualization: Plotting
"""

__version__ = "0.1.0"
