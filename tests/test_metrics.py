"""Tests for episode statistics, custom metrics and explained variance."""

import math

import pytest
import torch

from rlcore.metrics import (
    AggregatedStats,
    EpisodeStats,
    MetricRegistry,
    TrainingStats,
    compute_episode_stats,
    explained_variance,
)


class TestEpisodeStats:
    def test_aggregation(self):
        episodes = [
            EpisodeStats(total_reward=1.0, total_steps=10, success=True),
            EpisodeStats(total_reward=3.0, total_steps=20, success=False),
        ]
        stats = compute_episode_stats(episodes)
        assert stats.mean_reward == pytest.approx(2.0)
        assert stats.std_reward == pytest.approx(1.0)
        assert stats.min_reward == 1.0
        assert stats.max_reward == 3.0
        assert stats.mean_episode_length == pytest.approx(15.0)
        assert stats.success_rate == pytest.approx(0.5)
        assert stats.num_episodes == 2

    def test_empty(self):
        assert compute_episode_stats([]) == AggregatedStats()


class TestMetricRegistry:
    """Registries are plain objects; nothing is shared between instances."""

    def test_custom_metrics_are_computed(self):
        registry = MetricRegistry()
        registry.register('long', lambda eps: sum(e.total_steps > 15 for e in eps))
        stats = compute_episode_stats(
            [EpisodeStats(total_steps=10), EpisodeStats(total_steps=20)], registry
        )
        assert stats.custom_metrics == {'long': 1.0}

    def test_duplicate_name_rejected(self):
        registry = MetricRegistry()
        registry.register('x', lambda eps: 0.0)
        with pytest.raises(ValueError):
            registry.register('x', lambda eps: 1.0)

    def test_unregister_and_isolation(self):
        first = MetricRegistry()
        second = MetricRegistry()
        first.register('x', lambda eps: 0.0)
        assert 'x' in first
        assert 'x' not in second
        first.unregister('x')
        assert len(first) == 0


class TestExplainedVariance:
    def test_perfect_critic(self):
        returns = torch.tensor([1.0, 2.0, 3.0])
        assert explained_variance(returns, returns) == pytest.approx(1.0)

    def test_constant_critic(self):
        returns = torch.tensor([1.0, 2.0, 3.0])
        assert explained_variance(torch.full((3,), 2.0), returns) == pytest.approx(0.0)

    def test_constant_returns_are_undefined(self):
        assert math.isnan(explained_variance(torch.zeros(3), torch.ones(3)))


class TestTrainingStats:
    def test_to_dict(self):
        stats = TrainingStats(policy_loss=0.5, early_stopped=True)
        values = stats.to_dict()
        assert values['policy_loss'] == 0.5
        assert values['early_stopped'] is True
        assert 'explained_variance' in values
