"""Configuration resolution and merging logic.

This module provides the single entrypoint for configuration resolution:
resolve_config(). It merges ParamConfig, UserConfig, and CLIConfig in
the correct precedence order and returns a validated InternalConfig.

Precedence (highest to lowest):
1. CLIConfig (command-line overrides)
2. UserConfig (user file)
3. ParamConfig (expert defaults)
"""

from typing import Union, Optional
from pbulk.schemas.param import ParamConfig
from pbulk.schemas.user import UserConfig
from pbulk.schemas.cli import CLIConfig
from pbulk.schemas.internal import InternalConfig


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Deep merge multiple dictionaries.

    Later dictionaries override earlier ones. Nested dictionaries are
    merged recursively; other values are replaced.

    Parameters
    ----------
    base : dict
        Base dictionary (lowest priority)
    *overrides : dict
        Override dictionaries (higher priority, left to right)

    Returns
    -------
    dict
        Merged dictionary

    Examples
    --------
    >>> base = {"a": 1, "b": {"c": 2, "d": 3}}
    >>> override = {"b": {"d": 4, "e": 5}, "f": 6}
    >>> deep_merge(base, override)
    {'a': 1, 'b': {'c': 2, 'd': 4, 'e': 5}, 'f': 6}
    """
    result = base.copy()

    for override in overrides:
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _coerce(cfg, model):
    if cfg is None or (isinstance(cfg, dict) and not cfg):
        return model()
    if isinstance(cfg, model):
        return cfg
    return model.model_validate(cfg)


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve final runtime configuration from param, user, and CLI configs.

    This is the SINGLE ENTRYPOINT for configuration resolution. It validates
    and merges configs in the correct precedence order, then returns an
    immutable InternalConfig for runtime use.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert configuration with complete defaults. Required.
    user_cfg : dict or UserConfig, optional
        User configuration with overrides. If None or empty, uses only param defaults.
    cli_cfg : dict or CLIConfig, optional
        Command-line overrides. If None or empty, no CLI overrides applied.

    Returns
    -------
    InternalConfig
        Fully validated, immutable runtime configuration

    Raises
    ------
    ValidationError
        If any config fails Pydantic validation
    ValueError
        If the grouping keys coincide, or the split key is neither a
        grouping key nor a carried field (it would not survive aggregation).

    Examples
    --------
    >>> from pbulk.schemas import resolve_config, ParamConfig, UserConfig
    >>>
    >>> user = UserConfig(REDUCER="Mean", SAMPLE_KEY="donor")
    >>> config = resolve_config(ParamConfig(), user)
    >>> config.aggregator.reducer
    'mean'
    >>> config.runner.split_key
    'cell_type'
    """
    param = _coerce(param_cfg, ParamConfig)
    user = _coerce(user_cfg, UserConfig)
    cli = _coerce(cli_cfg, CLIConfig)

    merged = deep_merge(
        param.model_dump(),
        user.to_internal_overrides(),
        cli.to_internal_overrides(),
    )

    aggregator = merged["aggregator"]
    runner = merged["runner"]
    if aggregator["sample_key"] == aggregator["celltype_key"]:
        raise ValueError(
            f"sample_key and celltype_key must differ, both are '{aggregator['sample_key']}'"
        )

    # COUNT_COLUMN="" switches the per-group cell count off
    if aggregator.get("count_column") == "":
        aggregator["count_column"] = None

    # Split on cell type unless told otherwise
    if runner.get("split_key") is None:
        runner["split_key"] = aggregator["celltype_key"]

    surviving = [aggregator["sample_key"], aggregator["celltype_key"], *aggregator["carry_fields"]]
    if runner["split_key"] not in surviving:
        raise ValueError(
            f"split_key '{runner['split_key']}' is not a column of the aggregated table; "
            f"expected one of {surviving}"
        )

    return InternalConfig.model_validate(merged)
