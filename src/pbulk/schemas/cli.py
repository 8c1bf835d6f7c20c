"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: output path, split key, failure policy, parallelism, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from pbulk.schemas.base import PbulkBaseModel
from pbulk.schemas.param import FailurePolicyName, normalize_choice


class CLIConfig(PbulkBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Usage
    -----
        cli_cfg = CLIConfig(
            base_dir="/scratch/pbulk_output",
            failure_policy="best_effort",
            max_workers=4,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    base_dir: Optional[str] = None
    split_key: Optional[str] = None
    failure_policy: Optional[FailurePolicyName] = None
    max_workers: Optional[int] = Field(None, ge=1, le=64)
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    @field_validator("failure_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v):
        return normalize_choice(v)

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        runner_overrides = {}
        if self.split_key is not None:
            runner_overrides["split_key"] = self.split_key
        if self.failure_policy is not None:
            runner_overrides["failure_policy"] = self.failure_policy
        if self.max_workers is not None:
            runner_overrides["max_workers"] = self.max_workers

        if runner_overrides:
            overrides["runner"] = runner_overrides

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
