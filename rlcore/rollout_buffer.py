"""
Rollout Buffer for PPO with GAE (Generalized Advantage Estimation)

This module implements on-policy experience storage and advantage computation
for Proximal Policy Optimization.

Properties:
1. On-policy: Data is used for one update cycle then discarded (no replay)
2. Fixed size: Stores exactly one rollout of num_steps × num_envs transitions
3. Late shape binding: Storage is allocated on the first add(), because
   observation and action shapes depend on the environment
4. Explicit lifecycle: EMPTY → FILLING → FINALIZED → EMPTY (via reset)

Paper References:
- GAE: Schulman et al. (2016) "High-Dimensional Continuous Control Using
  Generalized Advantage Estimation"
- PPO: Schulman et al. (2017) "Proximal Policy Optimization Algorithms"

Naming Conventions (from papers):
- γ (gamma): Discount factor for returns
- λ (lambda): GAE parameter for bias-variance tradeoff
- A^{GAE(γ,λ)}_t: Generalized advantage estimate
- δ_t: TD residual = r_t + γV(s_{t+1}) - V(s_t)
"""

import enum
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import torch

from rlcore.advantage import compute_gae, normalize_advantages
from rlcore.errors import (
    BufferFinalizedError,
    BufferFullError,
    BufferNotFilledError,
    BufferNotFinalizedError,
)


class BufferState(enum.Enum):
    EMPTY = "empty"
    FILLING = "filling"
    FINALIZED = "finalized"


@dataclass
class Minibatch:
    """
    One shuffled slice of the flattened rollout

    All tensors share the leading dimension B (the minibatch size).
    ``indices`` are the flat, time-major sample indices (t * num_envs + env)
    the minibatch was gathered from.
    """
    observations: torch.Tensor
    actions: torch.Tensor
    old_log_probs: torch.Tensor
    old_values: torch.Tensor
    returns: torch.Tensor
    advantages: torch.Tensor
    indices: torch.Tensor

    def __len__(self) -> int:
        return self.indices.shape[0]


@dataclass
class BufferStats:
    mean_reward: float = 0.0
    mean_value: float = 0.0
    mean_advantage: float = 0.0
    std_advantage: float = 0.0
    num_episodes: int = 0


def _to_tensor(x, device: torch.device, dtype: Optional[torch.dtype] = None) -> torch.Tensor:
    if isinstance(x, np.ndarray):
        x = torch.from_numpy(x)
    return torch.as_tensor(x, dtype=dtype, device=device)


class RolloutBuffer:
    """
    Storage for on-policy rollouts with GAE computation

    The buffer stores trajectories from parallel environments and computes
    advantage estimates using Generalized Advantage Estimation (GAE).

    Paper Reference: Schulman et al. (2016), Equation 16
    GAE formula:
        Â_t = δ_t + (γλ)δ_{t+1} + (γλ)^2δ_{t+2} + ...
        where δ_t = r_t + γV(s_{t+1}) - V(s_t)

    Buffer Organization:
        - Fixed capacity: num_steps × num_envs
        - Filled sequentially during rollout (single writer)
        - Finalized once with bootstrap values
        - Read many times as shuffled minibatches
        - Reset before the next rollout

    Attributes:
        num_steps (int): Number of steps per rollout (T)
        num_envs (int): Number of parallel environments (N)
        gamma (float): Discount factor
        gae_lambda (float): GAE parameter
        normalize_advantages (bool): Standardize advantages after finalization
        device (torch.device): Device for tensor storage
    """

    def __init__(
        self,
        num_steps: int,
        num_envs: int,
        gamma: float = 0.99,
        gae_lambda: float = 0.95,
        normalize_advantages: bool = True,
        device: torch.device = torch.device('cpu')
    ):
        """
        Initialize rollout buffer

        Args:
            num_steps: Number of steps per rollout (typically 128-2048)
                      Trade-off: larger = more data but less on-policy
            num_envs: Number of parallel environments
            gamma: Discount factor γ used by finish_rollout()
            gae_lambda: GAE parameter λ used by finish_rollout()
            normalize_advantages: Whether to standardize advantages over
                                  the whole rollout after finalization
            device: Device for storing tensors ('cpu' or 'cuda')

        Note:
            Storage is not allocated here. Observation and action shapes are
            only known once the first batch arrives in add().
        """
        if num_steps < 1 or num_envs < 1:
            raise ValueError(
                f"num_steps and num_envs must be positive, got {num_steps} and {num_envs}"
            )

        self.num_steps = num_steps
        self.num_envs = num_envs
        self.gamma = gamma
        self.gae_lambda = gae_lambda
        self.normalize_advantages = normalize_advantages
        self.device = torch.device(device)

        self.step = 0
        self.state = BufferState.EMPTY

        # Allocated lazily, shape (num_steps, num_envs, ...)
        self.observations: Optional[torch.Tensor] = None
        self.actions: Optional[torch.Tensor] = None
        self.log_probs: Optional[torch.Tensor] = None
        self.values: Optional[torch.Tensor] = None
        self.rewards: Optional[torch.Tensor] = None
        self.dones: Optional[torch.Tensor] = None

        # Computed by finish_rollout()
        self.advantages: Optional[torch.Tensor] = None
        self.returns: Optional[torch.Tensor] = None

    def _allocate(self, observations: torch.Tensor, actions: torch.Tensor):
        """Allocate storage from the shapes and dtypes of the first batch"""
        grid = (self.num_steps, self.num_envs)
        self.observations = torch.zeros(
            grid + tuple(observations.shape[1:]),
            dtype=observations.dtype,
            device=self.device
        )
        self.actions = torch.zeros(
            grid + tuple(actions.shape[1:]),
            dtype=actions.dtype,
            device=self.device
        )
        self.log_probs = torch.zeros(grid, dtype=torch.float32, device=self.device)
        self.values = torch.zeros(grid, dtype=torch.float32, device=self.device)
        self.rewards = torch.zeros(grid, dtype=torch.float32, device=self.device)
        self.dones = torch.zeros(grid, dtype=torch.float32, device=self.device)

    def add(
        self,
        observations,
        actions,
        log_probs,
        values,
        rewards,
        dones
    ):
        """
        Add one step of experience from all parallel environments

        This method is called at each timestep during rollout collection.
        Every argument carries a leading num_envs dimension and accepts
        either a torch.Tensor or a np.ndarray.

        Args:
            observations: Observations s_t the actions were chosen from
                          Shape: (num_envs, *obs_shape)
            actions: Actions taken in all environments
                     Shape: (num_envs,) for discrete, (num_envs, action_dim) for continuous
            log_probs: Log probabilities log π_θ(a_t|s_t) at collection time
                       Shape: (num_envs,)
            values: Value estimates V_ϕ(s_t) from critic
                    Shape: (num_envs,)
            rewards: Rewards received in all environments
                     Shape: (num_envs,)
            dones: Episode termination flags produced by this step
                   Shape: (num_envs,), values {0, 1}

        Raises:
            BufferFinalizedError: If the buffer was finalized and not reset
            BufferFullError: If num_steps transitions are already stored
            ValueError: If the leading dimension is not num_envs
        """
        if self.state is BufferState.FINALIZED:
            raise BufferFinalizedError("Buffer is finalized; call reset() before adding data")
        if self.step >= self.num_steps:
            raise BufferFullError(f"Buffer is full (capacity: {self.num_steps})")

        observations = _to_tensor(observations, self.device)
        actions = _to_tensor(actions, self.device)
        log_probs = _to_tensor(log_probs, self.device, torch.float32).reshape(-1)
        values = _to_tensor(values, self.device, torch.float32).reshape(-1)
        rewards = _to_tensor(rewards, self.device, torch.float32).reshape(-1)
        dones = _to_tensor(dones, self.device, torch.float32).reshape(-1)

        for name, tensor in (
            ('observations', observations), ('actions', actions),
            ('log_probs', log_probs), ('values', values),
            ('rewards', rewards), ('dones', dones)
        ):
            if tensor.dim() == 0 or tensor.shape[0] != self.num_envs:
                raise ValueError(
                    f"Expected {name} with leading dimension {self.num_envs}, "
                    f"got shape {tuple(tensor.shape)}"
                )

        if self.observations is None:
            self._allocate(observations, actions)

        # Store transition
        self.observations[self.step] = observations
        self.actions[self.step] = actions
        self.log_probs[self.step] = log_probs
        self.values[self.step] = values
        self.rewards[self.step] = rewards
        self.dones[self.step] = dones

        self.step += 1
        self.state = BufferState.FILLING

    def finish_rollout(self, bootstrap_values):
        """
        Compute returns and advantages using GAE

        This method is called exactly once after collecting a full rollout,
        before starting PPO training updates.

        Paper Reference: Schulman et al. (2016), Equation 16
            Â_t = Σ_{l=0}^{∞} (γλ)^l δ_{t+l}
            where δ_t = r_t + γV(s_{t+1})(1-done_t) - V(s_t)

        Each environment column is estimated independently, with its
        bootstrap value standing in for V(s_T).

        Args:
            bootstrap_values: Value estimates V_ϕ(s_T) for the observations
                              following the last stored step
                              Shape: (num_envs,)

        Effects:
            - Sets self.advantages: Advantage estimates Â_t (optionally normalized)
            - Sets self.returns: Target returns V_t^{targ} = Â_t + V(s_t)
            - Moves the buffer to FINALIZED

        Raises:
            BufferFinalizedError: If called twice without reset()
            BufferNotFilledError: If fewer than num_steps steps were added
        """
        if self.state is BufferState.FINALIZED:
            raise BufferFinalizedError("Rollout already finalized; call reset() first")
        if self.step != self.num_steps:
            raise BufferNotFilledError(
                f"Buffer not full: {self.step}/{self.num_steps} steps filled"
            )

        bootstrap_values = _to_tensor(bootstrap_values, self.device, torch.float32).reshape(-1)
        if bootstrap_values.shape[0] != self.num_envs:
            raise ValueError(
                f"Expected {self.num_envs} bootstrap values, got {bootstrap_values.shape[0]}"
            )

        self.advantages = compute_gae(
            self.rewards,
            self.values,
            self.dones,
            gamma=self.gamma,
            gae_lambda=self.gae_lambda,
            last_value=bootstrap_values
        )

        # Returns use the raw advantages; normalization only affects the
        # policy gradient signal
        self.returns = self.advantages + self.values

        if self.normalize_advantages:
            self.advantages = normalize_advantages(self.advantages)

        self.state = BufferState.FINALIZED

    def get_minibatches(
        self,
        batch_size: int,
        shuffle: bool = True,
        generator: Optional[torch.Generator] = None
    ) -> List[Minibatch]:
        """
        Split the finalized rollout into minibatches for one training epoch

        Paper Reference: Schulman et al. (2017), Algorithm 1
        PPO performs multiple epochs of mini-batch SGD on the rollout data;
        call this once per epoch to get a fresh shuffle.

        Steps:
        1. Flatten (num_steps, num_envs) -> (num_steps * num_envs), time-major
           so sample t * num_envs + env matches collection order
        2. Optionally permute the sample indices uniformly at random
        3. Cut contiguous chunks of batch_size; the last chunk may be smaller

        Args:
            batch_size: Size of mini-batches (typically 64-2048)
            shuffle: Whether to permute samples (False keeps collection order)
            generator: Optional torch.Generator for reproducible shuffles

        Returns:
            List of Minibatch; together they cover every sample exactly once

        Raises:
            BufferNotFinalizedError: If finish_rollout() has not been called
            ValueError: If batch_size < 1
        """
        if self.state is not BufferState.FINALIZED:
            raise BufferNotFinalizedError(
                "Buffer must be finalized with finish_rollout() before sampling minibatches"
            )
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        num_samples = self.num_steps * self.num_envs

        obs_flat = self.observations.reshape(num_samples, *self.observations.shape[2:])
        actions_flat = self.actions.reshape(num_samples, *self.actions.shape[2:])
        log_probs_flat = self.log_probs.reshape(num_samples)
        values_flat = self.values.reshape(num_samples)
        returns_flat = self.returns.reshape(num_samples)
        advantages_flat = self.advantages.reshape(num_samples)

        if shuffle:
            indices = torch.randperm(num_samples, generator=generator).to(self.device)
        else:
            indices = torch.arange(num_samples, device=self.device)

        minibatches = []
        for start_idx in range(0, num_samples, batch_size):
            batch_indices = indices[start_idx:start_idx + batch_size]
            minibatches.append(Minibatch(
                observations=obs_flat[batch_indices],
                actions=actions_flat[batch_indices],
                old_log_probs=log_probs_flat[batch_indices],
                old_values=values_flat[batch_indices],
                returns=returns_flat[batch_indices],
                advantages=advantages_flat[batch_indices],
                indices=batch_indices
            ))

        return minibatches

    def get_stats(self) -> BufferStats:
        """Summary statistics of the stored rollout"""
        stats = BufferStats()
        if self.step == 0:
            return stats

        with torch.no_grad():
            stats.mean_reward = self.rewards[:self.step].mean().item()
            stats.mean_value = self.values[:self.step].mean().item()
            stats.num_episodes = int(self.dones[:self.step].sum().item())
            if self.state is BufferState.FINALIZED:
                stats.mean_advantage = self.advantages.mean().item()
                stats.std_advantage = self.advantages.std(unbiased=False).item()

        return stats

    def reset(self):
        """
        Reset buffer for next rollout

        Clears the fill pointer and the finalized advantages/returns.
        Legal from any state.
        """
        self.step = 0
        self.state = BufferState.EMPTY
        self.advantages = None
        self.returns = None
        # Note: Storage is kept and overwritten by the next rollout

    @property
    def is_full(self) -> bool:
        return self.step == self.num_steps

    def __len__(self) -> int:
        """Return current number of transitions stored"""
        return self.step * self.num_envs
