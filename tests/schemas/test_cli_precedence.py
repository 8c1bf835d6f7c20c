from pbulk.schemas.user import UserConfig
from pbulk.schemas.cli import CLIConfig
from pbulk.schemas.param import ParamConfig
from pbulk.schemas.resolve import resolve_config


def test_cli_overrides_do_not_mutate_user():
    user = UserConfig.model_validate({"FAILURE_POLICY": "fail_fast", "BASE_DIR": "/tmp"})
    cli = CLIConfig.model_validate({"failure_policy": "best_effort"})

    internal = resolve_config(ParamConfig(), user, cli)

    # CLI should take precedence
    assert internal.runner.failure_policy == "best_effort"

    # But the original user model should remain unchanged
    assert user.failure_policy == "fail_fast"


def test_cli_split_key_beats_user():
    user = UserConfig(SPLIT_KEY="sample_id", BASE_DIR="/tmp")
    cli = CLIConfig(split_key="cell_type")

    config = resolve_config(ParamConfig(), user, cli)

    assert config.runner.split_key == "cell_type"  # CLI wins
    assert config.base_dir == "/tmp"  # User value preserved


def test_cli_workers_beat_nested_user_section():
    user = UserConfig(runner={"max_workers": 2, "empty_partitions": "keep"})
    cli = CLIConfig(max_workers=8)

    config = resolve_config(ParamConfig(), user, cli)

    assert config.runner.max_workers == 8
    assert config.runner.empty_partitions == "keep"


def test_cli_precedence_no_user_config():
    config = resolve_config(ParamConfig(), None, CLIConfig(log_level="WARNING"))

    assert config.logging.level == "WARNING"
    assert config.aggregator.reducer == "sum"


def test_cli_dict_input():
    config = resolve_config(ParamConfig(), {}, {"base_dir": "/data/out"})
    assert config.base_dir == "/data/out"
