"""
Advantage Estimation for On-Policy Actor-Critic Training

This module collects the advantage and return estimators used by the PPO
trainer. The workhorse is Generalized Advantage Estimation (GAE); the other
estimators are the special cases and classic alternatives it interpolates
between, kept for comparison and for unit testing.

Paper References:
- GAE: Schulman et al. (2016) "High-Dimensional Continuous Control Using
  Generalized Advantage Estimation"
- TD(λ): Sutton & Barto (2018) "Reinforcement Learning: An Introduction", Ch. 12

Naming Conventions (from papers):
- γ (gamma): Discount factor for returns
- λ (gae_lambda): GAE parameter for bias-variance tradeoff
- δ_t: TD residual = r_t + γV(s_{t+1})(1-done_t) - V(s_t)
- Â_t: Advantage estimate

Input Conventions:
    Every estimator accepts time-major sequences, either
    - 1-D (T,): a single environment's chronological sequence, or
    - 2-D (T, N): one column per environment.
    Columns never interact, so a 2-D call is the column-by-column
    computation done in one pass. ``last_value`` is V(s_T), the bootstrap
    value of the state just past the end of the sequence (scalar or (N,)).
    Inputs are never modified in place.
"""

from typing import Sequence, Union

import torch

ArrayLike = Union[torch.Tensor, Sequence[float], float]


def _as_float_tensor(x: ArrayLike, device: torch.device = None) -> torch.Tensor:
    return torch.as_tensor(x, dtype=torch.float32, device=device)


def _prepare(rewards, values, dones, last_value):
    rewards = _as_float_tensor(rewards)
    device = rewards.device
    values = _as_float_tensor(values, device=device)
    dones = _as_float_tensor(dones, device=device)

    if rewards.dim() not in (1, 2):
        raise ValueError(
            f"Expected (T,) or (T, N) sequences, got rewards of shape {tuple(rewards.shape)}"
        )
    if values.shape != rewards.shape or dones.shape != rewards.shape:
        raise ValueError(
            f"Shape mismatch: rewards {tuple(rewards.shape)}, "
            f"values {tuple(values.shape)}, dones {tuple(dones.shape)}"
        )

    last_value = _as_float_tensor(last_value, device=device).expand(rewards.shape[1:])
    return rewards, values, dones, last_value


@torch.no_grad()
def compute_gae(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99,
    gae_lambda: float = 0.95,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """
    Compute advantages using Generalized Advantage Estimation

    Paper Reference: Schulman et al. (2016), Equation 16
    GAE computes advantages as an exponentially-weighted sum of TD residuals:
        Â_t = Σ_{l=0}^{∞} (γλ)^l δ_{t+l}
        where δ_t = r_t + γV(s_{t+1})(1-done_t) - V(s_t)

    Implemented as the O(T) backward recursion:
        next_value = last_value if t == T-1 else values[t+1]
        δ_t = r_t + γ · next_value · (1 - done_t) - V(s_t)
        Â_t = δ_t + γλ · (1 - done_t) · Â_{t+1}        (Â_T = 0)

    The (1 - done_t) factor is the terminal mask: at an episode boundary it
    zeroes both the bootstrap and the eligibility trace, so value estimates
    of a freshly reset episode never leak into the one that just ended.

    Args:
        rewards: Rewards r_t, shape (T,) or (T, N)
        values: Value estimates V(s_t), same shape as rewards
        dones: Episode termination flags {0, 1}, same shape as rewards
        gamma: Discount factor γ (default: 0.99)
        gae_lambda: GAE parameter λ (default: 0.95)
                    λ=0 recovers the 1-step TD advantage
                    λ=1 recovers the Monte Carlo advantage
        last_value: Bootstrap value V(s_T), scalar or shape (N,)
                    Defaults to 0, i.e. no bootstrap past the sequence

    Returns:
        advantages: Â_t, same shape as rewards

    Example:
        >>> compute_gae([1.0], [0.5], [0.0], gamma=0.9, last_value=2.0)
        tensor([2.3000])   # 1 + 0.9 * 2 - 0.5
    """
    rewards, values, dones, last_value = _prepare(rewards, values, dones, last_value)
    num_steps = rewards.shape[0]
    advantages = torch.zeros_like(rewards)
    if num_steps == 0:
        return advantages

    not_dones = 1.0 - dones
    gae = torch.zeros_like(rewards[0])
    next_value = last_value

    # Backward pass through time
    for t in reversed(range(num_steps)):
        delta = rewards[t] + gamma * next_value * not_dones[t] - values[t]
        gae = delta + gamma * gae_lambda * not_dones[t] * gae
        advantages[t] = gae
        next_value = values[t]

    return advantages


@torch.no_grad()
def compute_value_targets(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99,
    gae_lambda: float = 0.95,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """
    Value function targets V_t^{targ} = Â_t + V(s_t)

    These are the λ-returns the critic regresses onto.
    """
    values_tensor = _as_float_tensor(values)
    advantages = compute_gae(rewards, values_tensor, dones, gamma, gae_lambda, last_value)
    return advantages + values_tensor.to(advantages.device)


@torch.no_grad()
def compute_td_advantage(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """
    One-step TD advantage: Â_t = r_t + γV(s_{t+1})(1-done_t) - V(s_t)

    Equal to compute_gae(..., gae_lambda=0).
    """
    rewards, values, dones, last_value = _prepare(rewards, values, dones, last_value)
    if rewards.shape[0] == 0:
        return torch.zeros_like(rewards)
    next_values = torch.cat([values[1:], last_value.unsqueeze(0)], dim=0)
    return rewards + gamma * next_values * (1.0 - dones) - values


@torch.no_grad()
def compute_n_step_advantage(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    n_steps: int = 5,
    gamma: float = 0.99,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """
    n-step advantage estimate

        Â_t = Σ_{k=0}^{n-1} γ^k r_{t+k} + γ^n V(s_{t+n}) - V(s_t)

    The sum stops at the first terminal transition (no bootstrap after it).
    Near the end of the sequence the horizon shrinks and ``last_value``
    bootstraps in place of V(s_T).
    """
    if n_steps < 1:
        raise ValueError(f"n_steps must be >= 1, got {n_steps}")

    rewards, values, dones, last_value = _prepare(rewards, values, dones, last_value)
    num_steps = rewards.shape[0]
    not_dones = 1.0 - dones
    advantages = torch.zeros_like(rewards)

    for t in range(num_steps):
        n_step_return = torch.zeros_like(rewards[0])
        alive = torch.ones_like(rewards[0])
        discount = 1.0
        for k in range(min(n_steps, num_steps - t)):
            n_step_return = n_step_return + alive * discount * rewards[t + k]
            discount *= gamma
            alive = alive * not_dones[t + k]

        bootstrap = values[t + n_steps] if t + n_steps < num_steps else last_value
        n_step_return = n_step_return + alive * discount * bootstrap
        advantages[t] = n_step_return - values[t]

    return advantages


@torch.no_grad()
def compute_td_lambda_returns(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99,
    gae_lambda: float = 0.95,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """
    TD(λ) returns via the recursive λ-return definition

        G_t^λ = r_t + γ(1-done_t) [(1-λ) V(s_{t+1}) + λ G_{t+1}^λ]

    with G_T^λ = V(s_T) = last_value. Mathematically identical to
    compute_value_targets; kept as an independent derivation.
    """
    rewards, values, dones, last_value = _prepare(rewards, values, dones, last_value)
    returns = torch.zeros_like(rewards)
    not_dones = 1.0 - dones

    next_return = last_value
    next_value = last_value
    for t in reversed(range(rewards.shape[0])):
        returns[t] = rewards[t] + gamma * not_dones[t] * (
            (1.0 - gae_lambda) * next_value + gae_lambda * next_return
        )
        next_return = returns[t]
        next_value = values[t]

    return returns


@torch.no_grad()
def compute_td_lambda(
    rewards: ArrayLike,
    values: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99,
    gae_lambda: float = 0.95,
    last_value: ArrayLike = 0.0
) -> torch.Tensor:
    """TD(λ) advantage: G_t^λ - V(s_t)"""
    returns = compute_td_lambda_returns(rewards, values, dones, gamma, gae_lambda, last_value)
    return returns - _as_float_tensor(values, device=returns.device)


@torch.no_grad()
def discounted_cumsum(x: ArrayLike, dones: ArrayLike, gamma: float = 0.99) -> torch.Tensor:
    """
    Discounted cumulative sum that restarts after every terminal step

        y_t = x_t + γ(1-done_t) y_{t+1}
    """
    x = _as_float_tensor(x)
    dones = _as_float_tensor(dones, device=x.device)
    if dones.shape != x.shape:
        raise ValueError(f"Shape mismatch: x {tuple(x.shape)}, dones {tuple(dones.shape)}")

    result = torch.zeros_like(x)
    if x.shape[0] == 0:
        return result

    running = torch.zeros_like(x[0])
    for t in reversed(range(x.shape[0])):
        running = x[t] + gamma * running * (1.0 - dones[t])
        result[t] = running
    return result


def compute_monte_carlo_returns(
    rewards: ArrayLike,
    dones: ArrayLike,
    gamma: float = 0.99
) -> torch.Tensor:
    """Monte Carlo returns G_t = Σ_k γ^k r_{t+k}, truncated at episode ends"""
    return discounted_cumsum(rewards, dones, gamma)


@torch.no_grad()
def normalize_advantages(advantages: torch.Tensor, epsilon: float = 1e-8) -> torch.Tensor:
    """
    Standardize advantages with simple batch statistics

        Â = (Â - mean(Â)) / (std(Â) + ε)

    Uses the population standard deviation so a single-sample batch maps
    to zero instead of NaN.
    """
    if advantages.numel() == 0:
        return advantages
    return (advantages - advantages.mean()) / (advantages.std(unbiased=False) + epsilon)


def clip_advantages(advantages: torch.Tensor, clip_value: float = 10.0) -> torch.Tensor:
    """Clamp advantages into [-clip_value, clip_value]"""
    return torch.clamp(advantages, -clip_value, clip_value)
