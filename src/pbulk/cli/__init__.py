"""Command-line interface modules for pbulk pipeline execution.

This package contains core execution logic; the ``pbulk`` console script
only parses arguments.
"""

from pbulk.cli.run_pseudobulk import run_pseudobulk_pipeline, load_user_config_dict, main

__all__ = ['run_pseudobulk_pipeline', 'load_user_config_dict', 'main']
