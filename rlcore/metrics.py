"""
Training and evaluation statistics

- TrainingStats: scalars describing the latest update cycle (overwritten
  every cycle, never accumulated)
- EpisodeStats / AggregatedStats: per-episode totals and their summary
- MetricRegistry: named custom metrics over a list of episodes. The registry
  is an ordinary object handed to whoever computes statistics; there is no
  process-wide registry.
"""

from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
import torch


@dataclass
class TrainingStats:
    policy_loss: float = 0.0
    value_loss: float = 0.0
    entropy: float = 0.0
    total_loss: float = 0.0
    clip_fraction: float = 0.0
    kl_divergence: float = 0.0
    approx_kl: float = 0.0
    explained_variance: float = 0.0
    mean_reward: float = 0.0
    mean_episode_reward: float = 0.0
    mean_episode_length: float = 0.0
    episodes_completed: int = 0
    learning_rate: float = 0.0
    kl_coef: float = 0.0
    epochs_completed: int = 0
    early_stopped: bool = False

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class EpisodeStats:
    total_reward: float = 0.0
    total_steps: int = 0
    success: bool = False
    custom_metrics: Dict[str, float] = field(default_factory=dict)


@dataclass
class AggregatedStats:
    mean_reward: float = 0.0
    std_reward: float = 0.0
    min_reward: float = 0.0
    max_reward: float = 0.0
    mean_episode_length: float = 0.0
    success_rate: float = 0.0
    num_episodes: int = 0
    custom_metrics: Dict[str, float] = field(default_factory=dict)


MetricFn = Callable[[List[EpisodeStats]], float]


class MetricRegistry:
    """
    Named custom metrics computed over completed episodes

    Example:
        >>> registry = MetricRegistry()
        >>> registry.register('long_episodes', lambda eps: sum(e.total_steps > 100 for e in eps))
        >>> compute_episode_stats(episodes, registry).custom_metrics['long_episodes']
    """

    def __init__(self):
        self._metrics: Dict[str, MetricFn] = {}

    def register(self, name: str, fn: MetricFn):
        if name in self._metrics:
            raise ValueError(f"Metric '{name}' is already registered")
        self._metrics[name] = fn

    def unregister(self, name: str):
        del self._metrics[name]

    def compute(self, episodes: List[EpisodeStats]) -> Dict[str, float]:
        return {name: float(fn(episodes)) for name, fn in self._metrics.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)


def compute_episode_stats(
    episodes: List[EpisodeStats],
    registry: Optional[MetricRegistry] = None
) -> AggregatedStats:
    """Aggregate a list of finished episodes; empty input gives all zeros"""
    if not episodes:
        return AggregatedStats()

    rewards = np.array([e.total_reward for e in episodes], dtype=np.float64)
    lengths = np.array([e.total_steps for e in episodes], dtype=np.float64)
    successes = np.array([float(e.success) for e in episodes])

    return AggregatedStats(
        mean_reward=float(rewards.mean()),
        std_reward=float(rewards.std()),
        min_reward=float(rewards.min()),
        max_reward=float(rewards.max()),
        mean_episode_length=float(lengths.mean()),
        success_rate=float(successes.mean()),
        num_episodes=len(episodes),
        custom_metrics=registry.compute(episodes) if registry is not None else {}
    )


@torch.no_grad()
def explained_variance(values: torch.Tensor, returns: torch.Tensor) -> float:
    """
    Fraction of return variance explained by the value function

        1 - Var[R - V] / Var[R]

    1 is a perfect critic, 0 is no better than a constant, negative is worse.
    Returns nan when the returns have zero variance.
    """
    values = values.reshape(-1).float()
    returns = returns.reshape(-1).float()
    var_returns = returns.var(unbiased=False)
    if var_returns.item() == 0:
        return float('nan')
    return float(1.0 - (returns - values).var(unbiased=False) / var_returns)
