"""Tests for configuration loading and validation."""

import pytest

from rlcore.config import DEFAULT_CONFIG_FILE, PPOConfig, load_config
from rlcore.errors import ConfigurationError
from rlcore.utils import tools


class TestLoadConfig:
    """Named YAML blocks merged over 'defaults'."""

    def test_defaults_cover_every_option(self):
        config_dict = load_config(DEFAULT_CONFIG_FILE)
        config = PPOConfig.from_dict(config_dict).validate()
        assert set(config_dict) == set(config.to_dict())

    @pytest.mark.parametrize("name", ["debug", "continuous"])
    def test_named_blocks_validate(self, name):
        config = PPOConfig.from_dict(load_config(DEFAULT_CONFIG_FILE, ['defaults', name]))
        config.validate()

    def test_later_blocks_win(self):
        config_dict = load_config(DEFAULT_CONFIG_FILE, ['debug'])
        assert config_dict['num_envs'] == 2
        assert config_dict['clip_ratio'] == 0.2

    def test_missing_block(self):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(DEFAULT_CONFIG_FILE, ['does_not_exist'])

    def test_missing_defaults(self, tmp_path):
        path = tmp_path / 'configs.yaml'
        path.write_text("debug:\n  num_envs: 2\n")
        with pytest.raises(ConfigurationError, match="defaults"):
            load_config(path)


class TestPPOConfig:
    """Validation of individual options."""

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError, match="clip_coef"):
            PPOConfig.from_dict({'clip_coef': 0.2})

    def test_batch_size(self):
        assert PPOConfig(num_envs=4, rollout_steps=32).batch_size == 128

    @pytest.mark.parametrize("overrides", [
        dict(mini_batch_size=0),
        dict(num_envs=2, rollout_steps=4, mini_batch_size=9),
        dict(ppo_epochs=0),
        dict(clip_ratio=0.0),
        dict(clip_ratio=1.5),
        dict(value_clip_ratio=-0.1),
        dict(value_clip_ratio=1.1),
        dict(gamma=1.5),
        dict(learning_rate=0.0),
        dict(lr_schedule='custom'),
        dict(use_kl_penalty=True, target_kl=0.0),
        dict(total_updates=0),
    ])
    def test_invalid_options(self, overrides):
        with pytest.raises(ConfigurationError):
            PPOConfig(**overrides).validate()

    def test_boundary_values_accepted(self):
        PPOConfig(
            num_envs=2, rollout_steps=4, mini_batch_size=8,
            clip_ratio=1.0, value_clip_ratio=0.0, ppo_epochs=1
        ).validate()


class TestTools:
    """Helpers used to build configs from the command line."""

    def test_args_type(self):
        assert tools.args_type(True)("False") is False
        assert tools.args_type(3)("5") == 5
        assert tools.args_type(3)("1e-3") == pytest.approx(1e-3)
        assert tools.args_type(0.5)("0.25") == 0.25
        assert tools.args_type([1, 2])("3,4") == (3, 4)
        assert tools.args_type(None)("./checkpoints") == "./checkpoints"

    def test_deep_merge(self):
        merged = tools.deep_merge({'a': {'b': 1, 'c': 2}, 'd': 3}, {'a': {'c': 4}})
        assert merged == {'a': {'b': 1, 'c': 4}, 'd': 3}

    def test_save_config(self, tmp_path):
        path = tools.save_config(PPOConfig().to_dict(), tmp_path / 'run', verbose=False)
        assert path.exists()
        assert 'clip_ratio: 0.2' in path.read_text()
