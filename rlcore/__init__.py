"""
rlcore: PPO (Proximal Policy Optimization) training core

This package implements the PPO algorithm from the paper:
"Proximal Policy Optimization Algorithms" (Schulman et al., 2017)
https://arxiv.org/abs/1707.06347

with advantages from Generalized Advantage Estimation (Schulman et al., 2016).

Key Components:
- advantage.py: GAE and companion advantage / return estimators
- rollout_buffer.py: On-policy experience storage with GAE computation
- ppo_trainer.py: Collection, clipped-objective updates, evaluation
- networks.py: Actor (policy) and Critic (value) networks behind one policy model
- lr_scheduler.py: Learning-rate annealing schedules
- config.py / metrics.py / checkpoint.py / logger.py: training plumbing
"""

from rlcore.checkpoint import CheckpointManager
from rlcore.config import PPOConfig, load_config
from rlcore.errors import (
    BufferFinalizedError,
    BufferFullError,
    BufferNotFilledError,
    BufferNotFinalizedError,
    ConfigurationError,
    RolloutBufferError,
)
from rlcore.logger import TrainingLogger
from rlcore.lr_scheduler import LearningRateScheduler
from rlcore.metrics import AggregatedStats, EpisodeStats, MetricRegistry, TrainingStats
from rlcore.networks import ActorCriticPolicy
from rlcore.ppo_trainer import PPOTrainer
from rlcore.rollout_buffer import BufferState, Minibatch, RolloutBuffer

__all__ = [
    'ActorCriticPolicy', 'AggregatedStats', 'BufferFinalizedError', 'BufferFullError',
    'BufferNotFilledError', 'BufferNotFinalizedError', 'BufferState', 'CheckpointManager',
    'ConfigurationError', 'EpisodeStats', 'LearningRateScheduler', 'MetricRegistry',
    'Minibatch', 'PPOConfig', 'PPOTrainer', 'RolloutBuffer', 'RolloutBufferError',
    'TrainingLogger', 'TrainingStats', 'load_config',
]
