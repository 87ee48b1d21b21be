"""Shared fixtures and collaborator stubs for the training-core tests."""

import math

import numpy as np
import pytest
import torch
from torch.distributions import Categorical

from envs.vec_env import EpisodeTotals
from rlcore.config import PPOConfig


class ScriptedVecEnv:
    """Environment batch where every episode lasts exactly episode_length steps.

    The observation is the number of steps since the last reset and the
    reward of a step is the new step count, so a test can read the episode
    structure straight out of the rollout buffer.
    """

    def __init__(self, num_envs: int = 1, episode_length=3):
        self.num_envs = num_envs
        # One length for every environment, or a sequence of per-environment lengths
        self.episode_length = np.broadcast_to(np.asarray(episode_length), (num_envs,))
        self.counts = np.zeros(num_envs, dtype=np.int64)
        self.returns = np.zeros(num_envs, dtype=np.float64)
        self.reset_calls = 0
        self.reset_at_calls = []

    def _obs(self, i):
        return np.array([float(self.counts[i])], dtype=np.float32)

    def reset(self):
        self.reset_calls += 1
        self.counts[:] = 0
        self.returns[:] = 0.0
        return np.stack([self._obs(i) for i in range(self.num_envs)])

    def reset_at(self, index):
        self.reset_at_calls.append(index)
        self.counts[index] = 0
        self.returns[index] = 0.0
        return self._obs(index)

    def step(self, actions):
        assert len(actions) == self.num_envs
        self.counts += 1
        rewards = self.counts.astype(np.float32)
        self.returns += rewards
        dones = self.counts >= self.episode_length

        totals = {
            int(i): EpisodeTotals(float(self.returns[i]), int(self.counts[i]), success=True)
            for i in np.flatnonzero(dones)
        }
        obs = np.stack([self._obs(i) for i in range(self.num_envs)])
        return obs, rewards, dones, totals

    def close(self):
        pass

    def __len__(self):
        return self.num_envs


class UniformPolicy:
    """Policy model stub with a fixed uniform distribution over two actions.

    infer() reports log π_old(a|s) = log(0.5) + log_prob_offset while
    forward() evaluates log π(a|s) = log(0.5), so every minibatch sees
    KL estimate mean(old - new) == log_prob_offset.
    """

    def __init__(self, log_prob_offset: float = 0.0, learning_rate: float = 3e-4):
        self.log_prob_offset = log_prob_offset
        self.logits = torch.zeros(2, requires_grad=True)
        self.learning_rate = learning_rate
        self.optimize_calls = 0
        self.losses = []

    def infer(self, obs, deterministic=False):
        n = len(obs)
        actions = torch.zeros(n, dtype=torch.long)
        values = torch.zeros(n)
        log_probs = torch.full((n,), math.log(0.5) + self.log_prob_offset)
        return actions, values, log_probs

    def forward(self, obs):
        n = len(obs)
        dist = Categorical(logits=self.logits.expand(n, 2))
        values = torch.zeros(n) + 0.0 * self.logits.sum()
        return dist, values

    def optimize(self, loss):
        self.optimize_calls += 1
        self.losses.append(loss.item())
        return 0.0

    def set_learning_rate(self, lr):
        self.learning_rate = lr

    def get_learning_rate(self):
        return self.learning_rate

    def save(self, path):
        torch.save({'logits': self.logits.detach()}, path)

    def load(self, path):
        self.logits.data.copy_(torch.load(path)['logits'])


class DriftingPolicy(UniformPolicy):
    """UniformPolicy whose optimize() raises the logit of action 0 by step.

    After k optimize calls forward() gives log π(0|s) = -log(1 + e^{-step·k}),
    so each minibatch's KL estimate reveals which parameters it was
    evaluated against.
    """

    def __init__(self, step: float = 0.1, **kwargs):
        super().__init__(**kwargs)
        self.step = step
        self.forward_calls = 0

    def forward(self, obs):
        self.forward_calls += 1
        return super().forward(obs)

    def optimize(self, loss):
        result = super().optimize(loss)
        with torch.no_grad():
            self.logits[0] += self.step
        return result


@pytest.fixture
def small_config():
    """Tiny, quiet configuration: 2 envs x 8 steps, minibatches of 4."""
    return PPOConfig(
        num_envs=2,
        rollout_steps=8,
        mini_batch_size=4,
        ppo_epochs=2,
        total_updates=10,
        eval_episodes=2,
        verbose=False,
    )


@pytest.fixture
def scripted_env():
    return ScriptedVecEnv(num_envs=2, episode_length=3)
