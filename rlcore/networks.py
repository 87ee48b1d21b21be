"""
Actor-Critic Policy Model for PPO

This module implements the policy (π_θ) and value function (V_ϕ) networks
and wraps them into ActorCriticPolicy, the model object the PPO trainer
drives through four operations:

    infer(obs)            -> actions, values, log_probs   (no gradients)
    forward(obs)          -> action distribution, values  (differentiable)
    optimize(loss)        -> one clipped-gradient Adam step
    set_learning_rate(lr) -> update the optimizer

Paper Reference: Schulman et al. (2017), Section 3
"Proximal Policy Optimization Algorithms"

Network Architecture:
- Feature extractor chosen from the observation shape:
  (C, H, W) images use the Nature-DQN CNN, flat vectors use a 2-layer MLP
- Actor outputs an action distribution π_θ(a|s):
  Categorical for discrete actions, diagonal Gaussian for continuous actions
- Critic outputs a state value estimate V_ϕ(s)

Naming Conventions (from paper):
- θ: Actor network parameters
- ϕ: Critic network parameters
- π_θ(a|s): Policy (action distribution given state)
- V_ϕ(s): Value function (expected return from state)
"""

from typing import Optional, Sequence, Tuple

import gym
import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.optim as optim
from torch.distributions import Categorical, Distribution, Independent, Normal


def init_orthogonal(layer: nn.Module, gain: float = np.sqrt(2)):
    """
    Orthogonal initialization for neural network layers

    This initialization scheme is commonly used in PPO implementations
    as it helps with gradient flow and training stability.

    Paper Reference: Saxe et al. (2013) "Exact solutions to the nonlinear
    dynamics of learning in deep linear neural networks"

    Args:
        layer: Neural network layer (Linear or Conv2d)
        gain: Scaling factor for the weights (default: sqrt(2))
              sqrt(2) is recommended for ReLU/Tanh activations
    """
    if isinstance(layer, (nn.Linear, nn.Conv2d)):
        nn.init.orthogonal_(layer.weight, gain=gain)
        if layer.bias is not None:
            nn.init.constant_(layer.bias, 0)


class CNNFeatureExtractor(nn.Module):
    """
    Convolutional Neural Network for extracting features from visual observations

    Architecture from the Nature DQN paper, commonly used in PPO
    implementations for Atari-style games.

    Paper Reference: Mnih et al. (2015) "Human-level control through deep
    reinforcement learning"

    Network Structure:
        Conv1: 32 filters, 8x8 kernel, stride 4
        Conv2: 64 filters, 4x4 kernel, stride 2
        Conv3: 64 filters, 3x3 kernel, stride 1
        Flatten + Linear: feature_dim features
    """

    def __init__(self, obs_shape: Sequence[int], feature_dim: int = 512):
        """
        Args:
            obs_shape: Image shape (channels, height, width)
            feature_dim: Dimension of output feature vector (default: 512)
        """
        super().__init__()

        self.conv1 = nn.Conv2d(obs_shape[0], 32, kernel_size=8, stride=4)
        self.conv2 = nn.Conv2d(32, 64, kernel_size=4, stride=2)
        self.conv3 = nn.Conv2d(64, 64, kernel_size=3, stride=1)

        # Flattened size depends on the input resolution
        with torch.no_grad():
            dummy = torch.zeros((1,) + tuple(obs_shape))
            self.feature_size = self._conv_forward(dummy).shape[1]

        self.fc = nn.Linear(self.feature_size, feature_dim)
        self.output_dim = feature_dim

        for layer in (self.conv1, self.conv2, self.conv3, self.fc):
            init_orthogonal(layer)

    def _conv_forward(self, x: torch.Tensor) -> torch.Tensor:
        x = F.relu(self.conv1(x))
        x = F.relu(self.conv2(x))
        x = F.relu(self.conv3(x))
        return x.reshape(x.size(0), -1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Args:
            x: Image tensor, shape (batch_size, C, H, W), range [0, 255] or [0, 1]

        Returns:
            Feature vector, shape (batch_size, feature_dim)
        """
        # Normalize to [0, 1] if needed
        if x.dtype == torch.uint8:
            x = x.float() / 255.0
        return F.relu(self.fc(self._conv_forward(x.float())))


class MLPFeatureExtractor(nn.Module):
    """Two hidden Tanh layers over a flattened vector observation"""

    def __init__(self, obs_shape: Sequence[int], hidden_dim: int = 64):
        super().__init__()
        input_dim = int(np.prod(obs_shape))
        self.fc1 = nn.Linear(input_dim, hidden_dim)
        self.fc2 = nn.Linear(hidden_dim, hidden_dim)
        self.output_dim = hidden_dim
        init_orthogonal(self.fc1)
        init_orthogonal(self.fc2)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = x.float().reshape(x.size(0), -1)
        x = torch.tanh(self.fc1(x))
        return torch.tanh(self.fc2(x))


def make_feature_extractor(obs_shape: Sequence[int], hidden_dim: int) -> nn.Module:
    """Pick the CNN for (C, H, W) observations, the MLP otherwise"""
    if len(obs_shape) == 3:
        return CNNFeatureExtractor(obs_shape, feature_dim=hidden_dim)
    return MLPFeatureExtractor(obs_shape, hidden_dim=hidden_dim)


class Actor(nn.Module):
    """
    Policy Network π_θ(a|s)

    The Actor network outputs a probability distribution over actions given
    the current state. In PPO, this is used to:
    1. Sample actions during rollout collection
    2. Compute log probabilities for the policy gradient
    3. Compute policy entropy for the entropy bonus

    Paper Reference: Schulman et al. (2017), Section 3
    The policy is updated using the clipped surrogate objective:
        L^{CLIP}(θ) = E[min(r_t(θ)Â_t, clip(r_t(θ), 1-ε, 1+ε)Â_t)]
    where r_t(θ) = π_θ(a_t|s_t) / π_{θ_old}(a_t|s_t)

    Exactly one of num_actions (discrete) or action_dim (continuous) is set.
    The continuous head is a diagonal Gaussian with a state-independent,
    learned log standard deviation; log_prob and entropy are summed over
    action dimensions so both heads return one value per sample.
    """

    def __init__(
        self,
        obs_shape: Sequence[int],
        num_actions: Optional[int] = None,
        action_dim: Optional[int] = None,
        hidden_dim: int = 64,
        init_log_std: float = 0.0
    ):
        super().__init__()
        if (num_actions is None) == (action_dim is None):
            raise ValueError("Specify exactly one of num_actions or action_dim")

        self.num_actions = num_actions
        self.action_dim = action_dim
        self.discrete = num_actions is not None

        self.feature_extractor = make_feature_extractor(obs_shape, hidden_dim)
        out_dim = num_actions if self.discrete else action_dim

        self.policy_head = nn.Linear(self.feature_extractor.output_dim, out_dim)
        init_orthogonal(self.policy_head, gain=0.01)  # Small init for policy

        if not self.discrete:
            self.log_std = nn.Parameter(torch.full((action_dim,), float(init_log_std)))

    def forward(self, obs: torch.Tensor) -> Distribution:
        """
        Forward pass through policy network

        Args:
            obs: Observation tensor, shape (batch_size, *obs_shape)

        Returns:
            action_dist: Distribution over actions supporting
                        sample(), log_prob(action) and entropy()
        """
        features = self.feature_extractor(obs)
        head = self.policy_head(features)
        if self.discrete:
            return Categorical(logits=head)
        return Independent(Normal(head, self.log_std.exp().expand_as(head)), 1)

    def get_action(
        self,
        obs: torch.Tensor,
        deterministic: bool = False
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Select actions from the policy

        Args:
            obs: Observation tensor, shape (batch_size, *obs_shape)
            deterministic: If True, take the mode (argmax / Gaussian mean)
                          If False, sample from distribution (default)

        Returns:
            Tuple of (actions, log_probs):
            - actions: shape (batch_size,) or (batch_size, action_dim)
            - log_probs: log π_θ(a|s), shape (batch_size,)
        """
        action_dist = self.forward(obs)

        if not deterministic:
            actions = action_dist.sample()
        elif self.discrete:
            actions = action_dist.probs.argmax(dim=-1)
        else:
            actions = action_dist.mean

        log_probs = action_dist.log_prob(actions)

        return actions, log_probs


class Critic(nn.Module):
    """
    Value Network V_ϕ(s)

    The Critic network estimates the expected return (value) from a given state.
    In PPO, this is used to:
    1. Compute advantage estimates with GAE
    2. Provide a baseline to reduce variance in policy gradient
    3. Bootstrap returns past the end of a rollout

    Paper Reference: Schulman et al. (2017), Section 3
    The value function is updated by minimizing:
        L^{VF}(ϕ) = E[(V_ϕ(s_t) - V_t^{targ})^2]
    """

    def __init__(self, obs_shape: Sequence[int], hidden_dim: int = 64):
        super().__init__()
        self.feature_extractor = make_feature_extractor(obs_shape, hidden_dim)
        self.value_head = nn.Linear(self.feature_extractor.output_dim, 1)
        init_orthogonal(self.value_head, gain=1.0)

    def forward(self, obs: torch.Tensor) -> torch.Tensor:
        """
        Returns:
            values: State value estimates V_ϕ(s), shape (batch_size,)
        """
        features = self.feature_extractor(obs)
        return self.value_head(features).squeeze(-1)


class ActorCriticPolicy(nn.Module):
    """
    Policy model consumed by PPOTrainer

    Holds the Actor and Critic and a single Adam optimizer over both, so one
    scalar PPO loss (policy + value + entropy terms) updates everything in a
    single optimize() call. Gradient-norm clipping happens inside optimize().
    """

    def __init__(
        self,
        obs_shape: Sequence[int],
        num_actions: Optional[int] = None,
        action_dim: Optional[int] = None,
        hidden_dim: int = 64,
        learning_rate: float = 3e-4,
        max_grad_norm: float = 0.5,
        device: torch.device = torch.device('cpu')
    ):
        """
        Initialize policy model

        Args:
            obs_shape: Observation shape, (obs_dim,) or (C, H, W)
            num_actions: Number of discrete actions (discrete action spaces)
            action_dim: Action vector size (continuous action spaces)
            hidden_dim: Width of the feature extractor output
            learning_rate: Initial Adam learning rate
            max_grad_norm: Global gradient-norm clip threshold (<= 0 disables)
            device: Device for computation ('cpu' or 'cuda')
        """
        super().__init__()
        self.obs_shape = tuple(obs_shape)
        self.device = torch.device(device)
        self.max_grad_norm = max_grad_norm

        self.actor = Actor(self.obs_shape, num_actions, action_dim, hidden_dim)
        self.critic = Critic(self.obs_shape, hidden_dim)
        self.to(self.device)

        # eps=1e-5 as in the reference PPO implementations
        self.optimizer = optim.Adam(self.parameters(), lr=learning_rate, eps=1e-5)

    @classmethod
    def from_spaces(
        cls,
        observation_space: gym.spaces.Box,
        action_space: gym.spaces.Space,
        **kwargs
    ) -> "ActorCriticPolicy":
        """Build a policy matching an environment's gym spaces"""
        if isinstance(action_space, gym.spaces.Discrete):
            return cls(observation_space.shape, num_actions=int(action_space.n), **kwargs)
        if isinstance(action_space, gym.spaces.Box):
            return cls(observation_space.shape, action_dim=int(np.prod(action_space.shape)), **kwargs)
        raise ValueError(f"Unsupported action space: {action_space}")

    def _to_tensor(self, obs) -> torch.Tensor:
        if isinstance(obs, np.ndarray):
            obs = torch.from_numpy(obs)
        return torch.as_tensor(obs, device=self.device)

    def forward(self, obs) -> Tuple[Distribution, torch.Tensor]:
        """
        Differentiable evaluation used during the update phase

        Returns:
            Tuple of (action_dist, values):
            - action_dist: π_θ(·|s) for every observation in the batch
            - values: V_ϕ(s), shape (batch_size,)
        """
        obs = self._to_tensor(obs)
        return self.actor(obs), self.critic(obs)

    @torch.no_grad()
    def infer(
        self,
        obs,
        deterministic: bool = False
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Non-differentiable action selection used during collection and evaluation

        Args:
            obs: Batch of observations, shape (num_envs, *obs_shape)
            deterministic: Greedy actions instead of sampling

        Returns:
            Tuple of (actions, values, log_probs)
        """
        obs = self._to_tensor(obs)
        actions, log_probs = self.actor.get_action(obs, deterministic=deterministic)
        values = self.critic(obs)
        return actions, values, log_probs

    def optimize(self, loss: torch.Tensor) -> float:
        """
        One optimizer step on a scalar loss

        zero_grad -> backward -> clip global gradient norm -> Adam step

        Returns:
            Total gradient norm before clipping
        """
        self.optimizer.zero_grad()
        loss.backward()
        if self.max_grad_norm and self.max_grad_norm > 0:
            grad_norm = nn.utils.clip_grad_norm_(self.parameters(), self.max_grad_norm)
        else:
            grads = [p.grad.norm() for p in self.parameters() if p.grad is not None]
            grad_norm = torch.norm(torch.stack(grads)) if grads else torch.tensor(0.0)
        self.optimizer.step()
        return float(grad_norm)

    def set_learning_rate(self, lr: float):
        for param_group in self.optimizer.param_groups:
            param_group['lr'] = lr

    def get_learning_rate(self) -> float:
        return self.optimizer.param_groups[0]['lr']

    def save(self, path: str):
        """
        Save model and optimizer state to disk

        Args:
            path: Path to save checkpoint
        """
        checkpoint = {
            'actor_state_dict': self.actor.state_dict(),
            'critic_state_dict': self.critic.state_dict(),
            'optimizer_state_dict': self.optimizer.state_dict(),
        }
        torch.save(checkpoint, path)

    def load(self, path: str):
        """
        Load model and optimizer state from disk

        Args:
            path: Path to checkpoint file
        """
        checkpoint = torch.load(path, map_location=self.device)
        self.actor.load_state_dict(checkpoint['actor_state_dict'])
        self.critic.load_state_dict(checkpoint['critic_state_dict'])
        self.optimizer.load_state_dict(checkpoint['optimizer_state_dict'])
