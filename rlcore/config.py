"""
PPO configuration

Hyperparameters live in named blocks of configs/ppo_configs.yaml. The
'defaults' block is always loaded first and any requested blocks are merged
on top (later blocks win). train_ppo.py then exposes every key as a
command-line flag.

Usage:
    config_dict = load_config(CONFIG_FILE, ['defaults', 'debug'])
    config = PPOConfig.from_dict(config_dict)
    config.validate()
"""

import pathlib
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Sequence

from ruamel.yaml import YAML

from rlcore.errors import ConfigurationError
from rlcore.lr_scheduler import SCHEDULE_TYPES
from rlcore.utils import tools

DEFAULT_CONFIG_FILE = pathlib.Path(__file__).resolve().parent.parent / 'configs' / 'ppo_configs.yaml'


@dataclass
class PPOConfig:
    # PPO objective
    clip_ratio: float = 0.2
    value_clip_ratio: float = 0.2  # 0 disables value clipping
    entropy_coef: float = 0.01
    value_coef: float = 0.5
    max_grad_norm: float = 0.5

    # Optimization
    ppo_epochs: int = 4
    mini_batch_size: int = 64
    learning_rate: float = 3e-4
    use_lr_schedule: bool = True
    lr_schedule: str = 'linear'
    final_lr_fraction: float = 0.1

    # KL penalty and early stop
    use_kl_penalty: bool = False
    target_kl: float = 0.01
    kl_coef: float = 0.2
    adaptive_kl: bool = True

    # Advantages
    normalize_advantages: bool = True
    gamma: float = 0.99
    gae_lambda: float = 0.95

    # Rollout
    num_envs: int = 8
    rollout_steps: int = 128

    # Schedule of the outer loop
    total_updates: int = 1000
    eval_frequency: int = 10
    eval_episodes: int = 5
    max_eval_steps: int = 10000
    log_frequency: int = 10
    save_frequency: int = 50

    # Runtime
    device: str = 'cpu'
    seed: int = 0
    verbose: bool = True
    logdir: str = './logdir/ppo'
    checkpoint_dir: Optional[str] = None
    max_checkpoints: int = 5

    # Environment and model
    env: str = 'corridor'
    hidden_dim: int = 64
    subproc: bool = False

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "PPOConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def batch_size(self) -> int:
        """Samples per rollout (T · N)"""
        return self.rollout_steps * self.num_envs

    def validate(self) -> "PPOConfig":
        """
        Check every option that would otherwise fail deep inside a cycle

        Raises:
            ConfigurationError: On the first invalid option
        """
        def check(condition: bool, message: str):
            if not condition:
                raise ConfigurationError(message)

        check(self.num_envs >= 1, f"num_envs must be >= 1, got {self.num_envs}")
        check(self.rollout_steps >= 1, f"rollout_steps must be >= 1, got {self.rollout_steps}")
        check(self.ppo_epochs >= 1, f"ppo_epochs must be >= 1, got {self.ppo_epochs}")
        check(
            1 <= self.mini_batch_size <= self.batch_size,
            f"mini_batch_size must be in [1, rollout_steps * num_envs = {self.batch_size}], "
            f"got {self.mini_batch_size}"
        )
        check(0 < self.clip_ratio <= 1, f"clip_ratio must be in (0, 1], got {self.clip_ratio}")
        check(
            0 <= self.value_clip_ratio <= 1,
            f"value_clip_ratio must be in [0, 1], got {self.value_clip_ratio}"
        )
        check(0 <= self.gamma <= 1, f"gamma must be in [0, 1], got {self.gamma}")
        check(0 <= self.gae_lambda <= 1, f"gae_lambda must be in [0, 1], got {self.gae_lambda}")
        check(self.learning_rate > 0, f"learning_rate must be > 0, got {self.learning_rate}")
        check(
            0 <= self.final_lr_fraction <= 1,
            f"final_lr_fraction must be in [0, 1], got {self.final_lr_fraction}"
        )
        check(
            self.lr_schedule in SCHEDULE_TYPES and self.lr_schedule != 'custom',
            f"lr_schedule must be one of {[s for s in SCHEDULE_TYPES if s != 'custom']}, "
            f"got '{self.lr_schedule}'"
        )
        check(self.max_grad_norm >= 0, f"max_grad_norm must be >= 0, got {self.max_grad_norm}")
        check(self.entropy_coef >= 0, f"entropy_coef must be >= 0, got {self.entropy_coef}")
        check(self.value_coef >= 0, f"value_coef must be >= 0, got {self.value_coef}")
        check(self.kl_coef >= 0, f"kl_coef must be >= 0, got {self.kl_coef}")
        check(
            not self.use_kl_penalty or self.target_kl > 0,
            f"target_kl must be > 0 when use_kl_penalty is set, got {self.target_kl}"
        )
        check(self.total_updates >= 1, f"total_updates must be >= 1, got {self.total_updates}")
        for name in ('eval_frequency', 'save_frequency', 'log_frequency', 'eval_episodes'):
            check(getattr(self, name) >= 0, f"{name} must be >= 0, got {getattr(self, name)}")
        return self


def load_config(
    config_file: pathlib.Path = DEFAULT_CONFIG_FILE,
    names: Sequence[str] = ('defaults',)
) -> Dict[str, Any]:
    """
    Load and merge named config blocks from a YAML file

    Args:
        config_file: YAML file with a mapping of block name -> options
        names: Blocks to apply on top of 'defaults', in order

    Returns:
        Merged option dictionary

    Raises:
        ConfigurationError: If 'defaults' or a requested block is missing
    """
    yaml = YAML(typ='safe', pure=True)
    configs = yaml.load(pathlib.Path(config_file))

    if not configs or 'defaults' not in configs:
        raise ConfigurationError(f"'defaults' config not found in {config_file}")

    config_dict = dict(configs['defaults'])
    for name in names:
        if name == 'defaults':
            continue  # Already loaded
        if name not in configs:
            raise ConfigurationError(f"Config '{name}' not found in {config_file}")
        config_dict = tools.deep_merge(config_dict, configs[name])

    return config_dict
