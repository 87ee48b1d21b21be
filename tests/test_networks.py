"""Tests for the actor-critic policy model."""

import gym
import numpy as np
import pytest
import torch
from torch.distributions import Categorical, Independent

from rlcore.networks import Actor, ActorCriticPolicy, CNNFeatureExtractor, MLPFeatureExtractor


class TestActorCriticPolicy:
    """Inference, differentiable evaluation and optimization."""

    def test_discrete_infer_shapes(self):
        policy = ActorCriticPolicy((8,), num_actions=3)
        actions, values, log_probs = policy.infer(np.zeros((4, 8), dtype=np.float32))
        assert actions.shape == (4,)
        assert values.shape == (4,)
        assert log_probs.shape == (4,)
        assert not log_probs.requires_grad
        assert ((actions >= 0) & (actions < 3)).all()

    def test_continuous_infer_shapes(self):
        policy = ActorCriticPolicy((2,), action_dim=2)
        actions, values, log_probs = policy.infer(torch.zeros(5, 2))
        assert actions.shape == (5, 2)
        assert values.shape == (5,)
        assert log_probs.shape == (5,)

    def test_forward_returns_per_sample_distribution(self):
        policy = ActorCriticPolicy((2,), action_dim=2)
        dist, values = policy.forward(torch.zeros(5, 2))
        assert isinstance(dist, Independent)
        assert dist.log_prob(torch.zeros(5, 2)).shape == (5,)
        assert dist.entropy().shape == (5,)
        assert values.requires_grad

    def test_deterministic_discrete_is_argmax(self):
        policy = ActorCriticPolicy((4,), num_actions=3)
        obs = torch.randn(6, 4)
        actions, _, _ = policy.infer(obs, deterministic=True)
        dist, _ = policy.forward(obs)
        assert torch.equal(actions, dist.probs.argmax(dim=-1))

    def test_infer_log_probs_match_forward(self):
        policy = ActorCriticPolicy((4,), num_actions=3)
        obs = torch.randn(6, 4)
        actions, values, log_probs = policy.infer(obs)
        dist, forward_values = policy.forward(obs)
        torch.testing.assert_close(log_probs, dist.log_prob(actions).detach())
        torch.testing.assert_close(values, forward_values.detach())

    def test_optimize_updates_parameters(self):
        policy = ActorCriticPolicy((4,), num_actions=2, learning_rate=1e-2)
        before = [p.detach().clone() for p in policy.parameters()]
        dist, values = policy.forward(torch.randn(8, 4))
        loss = (values ** 2).mean() - dist.entropy().mean()

        grad_norm = policy.optimize(loss)

        assert isinstance(grad_norm, float)
        assert grad_norm >= 0.0
        assert any(not torch.equal(b, a) for b, a in zip(before, policy.parameters()))

    def test_learning_rate_roundtrip(self):
        policy = ActorCriticPolicy((4,), num_actions=2, learning_rate=3e-4)
        assert policy.get_learning_rate() == pytest.approx(3e-4)
        policy.set_learning_rate(1e-5)
        assert policy.get_learning_rate() == pytest.approx(1e-5)

    def test_save_and_load(self, tmp_path):
        source = ActorCriticPolicy((4,), num_actions=2)
        target = ActorCriticPolicy((4,), num_actions=2)
        path = tmp_path / 'policy.pt'

        source.save(str(path))
        target.load(str(path))

        for a, b in zip(source.state_dict().values(), target.state_dict().values()):
            assert torch.equal(a, b)


class TestFromSpaces:
    def test_discrete_space(self):
        policy = ActorCriticPolicy.from_spaces(
            gym.spaces.Box(0.0, 1.0, (6,), dtype=np.float32), gym.spaces.Discrete(4)
        )
        assert policy.actor.discrete
        assert policy.actor.num_actions == 4

    def test_box_space(self):
        policy = ActorCriticPolicy.from_spaces(
            gym.spaces.Box(-1.0, 1.0, (3,), dtype=np.float32),
            gym.spaces.Box(-1.0, 1.0, (2,), dtype=np.float32),
        )
        assert not policy.actor.discrete
        assert policy.actor.action_dim == 2

    def test_unsupported_space(self):
        with pytest.raises(ValueError):
            ActorCriticPolicy.from_spaces(
                gym.spaces.Box(-1.0, 1.0, (3,), dtype=np.float32), gym.spaces.MultiBinary(3)
            )


class TestNetworkParts:
    def test_actor_requires_exactly_one_head(self):
        with pytest.raises(ValueError):
            Actor((4,))
        with pytest.raises(ValueError):
            Actor((4,), num_actions=2, action_dim=2)

    def test_discrete_actor_distribution(self):
        actor = Actor((4,), num_actions=2)
        assert isinstance(actor(torch.zeros(3, 4)), Categorical)

    def test_mlp_feature_extractor(self):
        extractor = MLPFeatureExtractor((5,), hidden_dim=16)
        assert extractor(torch.zeros(2, 5)).shape == (2, 16)

    def test_cnn_feature_extractor_accepts_uint8(self):
        extractor = CNNFeatureExtractor((1, 64, 64), feature_dim=32)
        frames = torch.randint(0, 256, (2, 1, 64, 64), dtype=torch.uint8)
        assert extractor(frames).shape == (2, 32)

    def test_image_policy(self):
        policy = ActorCriticPolicy((1, 64, 64), num_actions=3, hidden_dim=32)
        actions, values, _ = policy.infer(np.zeros((2, 1, 64, 64), dtype=np.uint8))
        assert actions.shape == (2,)
        assert values.shape == (2,)
