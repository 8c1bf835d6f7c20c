"""Pydantic configuration schemas for the pbulk pipeline.

This module provides strictly typed configuration models for pseudobulk
aggregation and per-group processing. All configuration validation,
coercion, and normalization happens at schema validation time via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
"""

from pbulk.schemas.resolve import resolve_config, deep_merge
from pbulk.schemas.internal import InternalConfig
from pbulk.schemas.param import ParamConfig
from pbulk.schemas.user import UserConfig
from pbulk.schemas.cli import CLIConfig

__all__ = [
    'resolve_config',
    'deep_merge',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
]
