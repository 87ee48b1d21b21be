"""
PPO Trainer - Core Algorithm Implementation

This module implements the Proximal Policy Optimization training loop from:
Schulman et al. (2017) "Proximal Policy Optimization Algorithms"

Components:
1. Experience collection: step a batch of environments with the current policy
2. Advantage estimation: GAE over the collected rollout (RolloutBuffer)
3. Policy optimization: clipped surrogate objective, several minibatch epochs
4. Bookkeeping: learning-rate schedule, statistics, evaluation, checkpoints

The trainer owns no networks. The policy model and the environment batch are
collaborators handed in by the caller (see rlcore.networks.ActorCriticPolicy
and envs.vec_env), which keeps the algorithm testable with stubs.

Paper References:
- PPO: Schulman et al. (2017) "Proximal Policy Optimization Algorithms"
- GAE: Schulman et al. (2016) "High-Dimensional Continuous Control Using
  Generalized Advantage Estimation"
- Implementation details: Huang et al. (2022) "The 37 Implementation
  Details of Proximal Policy Optimization"

Naming Conventions (from papers):
- π_θ: Policy (actor) with parameters θ
- V_ϕ: Value function (critic) with parameters ϕ
- r_t(θ): Probability ratio π_θ(a_t|s_t) / π_{θ_old}(a_t|s_t)
- ε (epsilon): Clipping parameter (clip_ratio)
- Â_t: Advantage estimate
"""

import time
from typing import Dict, List, Optional

import numpy as np
import torch

from rlcore.checkpoint import CheckpointManager
from rlcore.config import PPOConfig
from rlcore.errors import ConfigurationError
from rlcore.logger import TrainingLogger
from rlcore.lr_scheduler import LearningRateScheduler
from rlcore.metrics import (
    AggregatedStats,
    EpisodeStats,
    MetricRegistry,
    TrainingStats,
    compute_episode_stats,
    explained_variance,
)
from rlcore.rollout_buffer import RolloutBuffer
from rlcore.utils import tools


def compute_policy_loss(
    ratio: torch.Tensor,
    advantages: torch.Tensor,
    clip_ratio: float
) -> torch.Tensor:
    """
    Clipped surrogate policy loss

    Paper Reference: Schulman et al. (2017), Equation 7
        L^{CLIP}(θ) = E[min(r_t(θ)Â_t, clip(r_t(θ), 1-ε, 1+ε)Â_t)]

    The minimum makes the objective a pessimistic bound: once the ratio
    leaves [1-ε, 1+ε] in the direction the advantage favors, the gradient
    through that sample vanishes.

    Returns:
        -L^{CLIP}, a scalar to minimize
    """
    surrogate_unclipped = ratio * advantages
    surrogate_clipped = torch.clamp(ratio, 1.0 - clip_ratio, 1.0 + clip_ratio) * advantages
    return -torch.min(surrogate_unclipped, surrogate_clipped).mean()


def compute_value_loss(
    values: torch.Tensor,
    old_values: torch.Tensor,
    returns: torch.Tensor,
    value_clip_ratio: float
) -> torch.Tensor:
    """
    Value function loss, optionally clipped around the collection-time values

    Clipped (value_clip_ratio > 0):
        V_clip = V_old + clip(V - V_old, -ε_v, ε_v)
        L^{VF} = ½ E[max((V - R)², (V_clip - R)²)]
    Unclipped (value_clip_ratio == 0):
        L^{VF} = E[(V - R)²]
    """
    if value_clip_ratio <= 0:
        return ((values - returns) ** 2).mean()

    values_clipped = old_values + torch.clamp(values - old_values, -value_clip_ratio, value_clip_ratio)
    loss_unclipped = (values - returns) ** 2
    loss_clipped = (values_clipped - returns) ** 2
    return 0.5 * torch.max(loss_unclipped, loss_clipped).mean()


class PPOTrainer:
    """
    Proximal Policy Optimization trainer

    One training cycle:
        collect_experience() -> update_policy() -> update_learning_rate()
    train() repeats cycles and interleaves logging, evaluation and
    checkpointing.

    Args:
        policy: Policy model with infer(), forward(), optimize(),
                set_learning_rate(), get_learning_rate(), save(), load()
        env: Environment batch with reset(), reset_at(i), step(actions), len()
        config: PPOConfig with every hyperparameter
        eval_env: Optional separate environment batch for evaluate()
        logger: Optional TrainingLogger for TensorBoard scalars
        checkpoint_manager: Optional CheckpointManager used by train()
        metric_registry: Optional MetricRegistry of custom episode metrics

    Raises:
        ConfigurationError: Invalid config, or len(env) != config.num_envs
    """

    def __init__(
        self,
        policy,
        env,
        config: PPOConfig,
        eval_env=None,
        logger: Optional[TrainingLogger] = None,
        checkpoint_manager: Optional[CheckpointManager] = None,
        metric_registry: Optional[MetricRegistry] = None
    ):
        config.validate()
        if len(env) != config.num_envs:
            raise ConfigurationError(
                f"Environment batch has {len(env)} environments but num_envs is {config.num_envs}"
            )

        self.policy = policy
        self.env = env
        self.config = config
        self.eval_env = eval_env
        self.logger = logger
        self.checkpoint_manager = checkpoint_manager
        self.metric_registry = metric_registry

        self.device = torch.device(config.device)
        self.buffer = RolloutBuffer(
            num_steps=config.rollout_steps,
            num_envs=config.num_envs,
            gamma=config.gamma,
            gae_lambda=config.gae_lambda,
            normalize_advantages=config.normalize_advantages,
            device=self.device
        )

        final_lr = config.learning_rate * config.final_lr_fraction
        self.lr_scheduler = LearningRateScheduler(
            initial_lr=config.learning_rate,
            total_steps=config.total_updates,
            schedule=config.lr_schedule,
            end_lr=final_lr,
            min_lr=final_lr
        )

        # Shuffling is reproducible from the config seed
        self.generator = torch.Generator().manual_seed(config.seed)

        self.kl_coef = config.kl_coef
        self.update_count = 0
        self.total_env_steps = 0
        self.last_stats = TrainingStats(learning_rate=config.learning_rate, kl_coef=self.kl_coef)
        self.completed_episodes: List[EpisodeStats] = []

        self._obs: Optional[np.ndarray] = None
        self._stop_requested = False

    def collect_experience(self) -> List[EpisodeStats]:
        """
        Collect one rollout of rollout_steps × num_envs transitions

        This implements the data collection phase of PPO (Algorithm 1, lines 2-4).

        Algorithm:
        1. For t = 0, ..., T-1:
            2. Query π_θ for actions, values and log probabilities of s_t
            3. Step every environment
            4. Reset environments whose episode ended; the reset observation
               replaces their next observation
            5. Store (s_t, a_t, log π(a_t|s_t), V(s_t), r_t, done_t)
        6. Bootstrap V(s_T) for the observations after the last step
        7. Compute advantages and returns with GAE

        Stored transitions keep the reward and done flag of the step that
        produced them, while the observation carried into the next step is
        the post-reset one, so GAE never bootstraps across an episode end.

        Returns:
            Episodes that finished during this rollout
        """
        self.buffer.reset()
        self.completed_episodes = []

        if self._obs is None:
            self._obs = self.env.reset()

        for _ in range(self.config.rollout_steps):
            actions, values, log_probs = self.policy.infer(self._obs)

            next_obs, rewards, dones, episode_totals = self.env.step(tools.to_np(actions))

            for i in np.flatnonzero(dones):
                i = int(i)
                totals = episode_totals.get(i)
                if totals is not None:
                    self.completed_episodes.append(EpisodeStats(
                        total_reward=totals.total_reward,
                        total_steps=totals.total_steps,
                        success=totals.success
                    ))
                next_obs[i] = self.env.reset_at(i)

            self.buffer.add(self._obs, actions, log_probs, values, rewards, dones)

            self._obs = next_obs
            self.total_env_steps += self.config.num_envs

        _, bootstrap_values, _ = self.policy.infer(self._obs)
        self.buffer.finish_rollout(bootstrap_values)

        return self.completed_episodes

    def update_policy(self) -> float:
        """
        Perform PPO update using the collected rollout

        This implements the optimization phase of PPO (Algorithm 1, lines 6-9).

        Algorithm:
        1. For K epochs (ppo_epochs):
            2. Shuffle the rollout into minibatches
            3. For each minibatch:
                a. Re-evaluate log π_θ(a_t|s_t), H and V_ϕ(s_t) with the current policy
                b. Policy loss L^{CLIP}, value loss L^{VF}, entropy bonus
                c. Optional KL penalty β·KL[π_old || π_θ]
                d. One optimizer step on the total loss
            4. With the KL penalty enabled, stop early when the epoch's mean
               KL exceeds 1.5 × target_kl

        Total loss:
            L = L^{CLIP} + c_1 L^{VF} - c_2 H [+ β KL]
            where c_1 = value_coef, c_2 = entropy_coef, β = kl_coef

        Returns:
            Mean total loss over all processed minibatches
        """
        cfg = self.config

        policy_losses = []
        value_losses = []
        entropies = []
        total_losses = []
        kls = []
        approx_kls = []
        clipfracs = []

        epochs_completed = 0
        early_stopped = False

        for epoch in range(cfg.ppo_epochs):
            epoch_kls = []

            for batch in self.buffer.get_minibatches(cfg.mini_batch_size, generator=self.generator):
                action_dist, new_values = self.policy.forward(batch.observations)
                new_log_probs = action_dist.log_prob(batch.actions)
                entropy = action_dist.entropy().mean()

                # r_t(θ) computed in log space for numerical stability
                log_ratio = new_log_probs - batch.old_log_probs
                ratio = torch.exp(log_ratio)

                policy_loss = compute_policy_loss(ratio, batch.advantages, cfg.clip_ratio)
                value_loss = compute_value_loss(
                    new_values, batch.old_values, batch.returns, cfg.value_clip_ratio
                )

                # Sample estimate of KL[π_old || π_θ] over the minibatch
                kl = (batch.old_log_probs - new_log_probs).mean()

                total_loss = (
                    policy_loss
                    + cfg.value_coef * value_loss
                    - cfg.entropy_coef * entropy
                )
                if cfg.use_kl_penalty:
                    total_loss = total_loss + self.kl_coef * kl

                self.policy.optimize(total_loss)

                with torch.no_grad():
                    # Approximate KL divergence: KL ≈ (r - 1) - log r
                    approx_kl = ((ratio - 1) - log_ratio).mean()
                    # Fraction of samples outside the clip range
                    clipfrac = ((ratio - 1.0).abs() > cfg.clip_ratio).float().mean()

                policy_losses.append(policy_loss.item())
                value_losses.append(value_loss.item())
                entropies.append(entropy.item())
                total_losses.append(total_loss.item())
                kls.append(kl.item())
                epoch_kls.append(kl.item())
                approx_kls.append(approx_kl.item())
                clipfracs.append(clipfrac.item())

            epochs_completed += 1

            epoch_kl = float(np.mean(epoch_kls))
            if cfg.use_kl_penalty and epoch_kl > 1.5 * cfg.target_kl:
                early_stopped = True
                if cfg.verbose:
                    print(
                        f"  Early stopping at epoch {epoch + 1}/{cfg.ppo_epochs}: "
                        f"KL {epoch_kl:.4f} > {1.5 * cfg.target_kl:.4f}"
                    )
                break

        mean_kl = float(np.mean(kls))
        if cfg.use_kl_penalty and cfg.adaptive_kl:
            if mean_kl > 1.5 * cfg.target_kl:
                self.kl_coef *= 2.0
            elif mean_kl < cfg.target_kl / 1.5:
                self.kl_coef /= 2.0

        buffer_stats = self.buffer.get_stats()
        episode_stats = compute_episode_stats(self.completed_episodes)

        self.update_count += 1
        self.last_stats = TrainingStats(
            policy_loss=float(np.mean(policy_losses)),
            value_loss=float(np.mean(value_losses)),
            entropy=float(np.mean(entropies)),
            total_loss=float(np.mean(total_losses)),
            clip_fraction=float(np.mean(clipfracs)),
            kl_divergence=mean_kl,
            approx_kl=float(np.mean(approx_kls)),
            explained_variance=explained_variance(self.buffer.values, self.buffer.returns),
            mean_reward=buffer_stats.mean_reward,
            mean_episode_reward=episode_stats.mean_reward,
            mean_episode_length=episode_stats.mean_episode_length,
            episodes_completed=episode_stats.num_episodes,
            learning_rate=self.policy.get_learning_rate(),
            kl_coef=self.kl_coef,
            epochs_completed=epochs_completed,
            early_stopped=early_stopped
        )

        return self.last_stats.total_loss

    def update_learning_rate(self) -> float:
        """
        Anneal the learning rate according to the number of completed updates

        The new rate applies to the next cycle; last_stats keeps the rate the
        finished cycle trained with.

        Returns:
            The learning rate now used by the policy optimizer
        """
        if not self.config.use_lr_schedule:
            return self.policy.get_learning_rate()

        lr = self.lr_scheduler.step(self.update_count)
        self.policy.set_learning_rate(lr)
        return lr

    def train(self, total_updates: Optional[int] = None) -> List[TrainingStats]:
        """
        Run training cycles until total_updates is reached or stop() is called

        The stop flag is only checked between cycles; a cycle that has
        started always runs to completion.

        Args:
            total_updates: Number of cycles to run (defaults to the cycles left
                before config.total_updates)

        Returns:
            TrainingStats of every completed cycle
        """
        cfg = self.config
        if total_updates is None:
            total_updates = max(0, cfg.total_updates - self.update_count)

        history = []
        start_time = time.time()

        for _ in range(total_updates):
            if self._stop_requested:
                if cfg.verbose:
                    print(f"\nStop requested, ending training after update {self.update_count}")
                break

            rollout_start = time.time()
            self.collect_experience()
            rollout_time = time.time() - rollout_start

            update_start = time.time()
            self.update_policy()
            update_time = time.time() - update_start

            self.update_learning_rate()
            stats = self.last_stats
            history.append(stats)

            if cfg.log_frequency and self.update_count % cfg.log_frequency == 0:
                self._log_training(stats, start_time, rollout_time, update_time)

            eval_stats = None
            if (
                self.eval_env is not None
                and cfg.eval_frequency
                and self.update_count % cfg.eval_frequency == 0
            ):
                eval_stats = self.evaluate(cfg.eval_episodes)
                self._log_evaluation(eval_stats)

            if (
                self.checkpoint_manager is not None
                and cfg.save_frequency
                and self.update_count % cfg.save_frequency == 0
            ):
                self._save_checkpoint(stats, eval_stats)

        self._stop_requested = False
        if self.logger is not None:
            self.logger.flush()

        return history

    def restore(self, entry: Dict) -> int:
        """
        Resume the training position recorded in a checkpoint registry entry

        Restores the update count, environment step count and KL coefficient,
        then re-applies the learning rate the schedule gives at that point.
        Weights are loaded separately by the checkpoint manager.

        Args:
            entry: Registry entry returned by CheckpointManager.load_latest()

        Returns:
            The restored update count
        """
        extra = entry.get('extra') or {}
        self.update_count = int(entry.get('step', 0))
        self.total_env_steps = int(extra.get('env_steps', 0))
        self.kl_coef = float(extra.get('kl_coef', self.kl_coef))
        self.update_learning_rate()
        self.last_stats = TrainingStats(
            learning_rate=self.policy.get_learning_rate(), kl_coef=self.kl_coef
        )
        return self.update_count

    def stop(self):
        """Ask train() to return after the current cycle"""
        self._stop_requested = True

    def evaluate(
        self,
        num_episodes: Optional[int] = None,
        deterministic: bool = True
    ) -> AggregatedStats:
        """
        Evaluate the policy on eval_env

        Runs until num_episodes episodes have finished, or until
        max_eval_steps batched steps have been taken, whichever is first.

        Args:
            num_episodes: Episodes to collect (defaults to config.eval_episodes)
            deterministic: Greedy actions instead of sampling

        Returns:
            AggregatedStats over the finished episodes, including any
            metrics registered in metric_registry
        """
        if self.eval_env is None:
            raise RuntimeError("evaluate() requires an eval_env")
        if num_episodes is None:
            num_episodes = self.config.eval_episodes

        episodes: List[EpisodeStats] = []
        obs = self.eval_env.reset()
        steps = 0

        while len(episodes) < num_episodes and steps < self.config.max_eval_steps:
            actions, _, _ = self.policy.infer(obs, deterministic=deterministic)
            obs, _, dones, episode_totals = self.eval_env.step(tools.to_np(actions))
            steps += 1

            for i in np.flatnonzero(dones):
                i = int(i)
                totals = episode_totals.get(i)
                if totals is not None and len(episodes) < num_episodes:
                    episodes.append(EpisodeStats(
                        total_reward=totals.total_reward,
                        total_steps=totals.total_steps,
                        success=totals.success
                    ))
                obs[i] = self.eval_env.reset_at(i)

        if len(episodes) < num_episodes and self.config.verbose:
            print(
                f"Warning: evaluation hit max_eval_steps={self.config.max_eval_steps} "
                f"after {len(episodes)}/{num_episodes} episodes"
            )

        return compute_episode_stats(episodes, self.metric_registry)

    def _log_training(
        self,
        stats: TrainingStats,
        start_time: float,
        rollout_time: float,
        update_time: float
    ):
        elapsed = time.time() - start_time
        fps = self.total_env_steps / elapsed if elapsed > 0 else 0.0

        if self.logger is not None:
            self.logger.log_scalars('train', stats.to_dict(), self.update_count)
            self.logger.log_scalar('train/fps', fps, self.update_count)
            self.logger.log_scalar('train/env_steps', self.total_env_steps, self.update_count)

        if self.config.verbose:
            print(f"\n[Update {self.update_count}/{self.config.total_updates}]")
            print(f"  Env Steps: {self.total_env_steps:,}")
            print(f"  FPS: {fps:.0f}")
            print(f"  Policy Loss: {stats.policy_loss:.4f}")
            print(f"  Value Loss: {stats.value_loss:.4f}")
            print(f"  Entropy: {stats.entropy:.4f}")
            print(f"  KL: {stats.kl_divergence:.4f} (approx {stats.approx_kl:.4f})")
            print(f"  Clip Fraction: {stats.clip_fraction:.3f}")
            print(f"  Explained Variance: {stats.explained_variance:.3f}")
            print(f"  Episodes: {stats.episodes_completed} (mean return {stats.mean_episode_reward:.2f})")
            print(f"  Learning Rate: {stats.learning_rate:.2e}")
            print(f"  Rollout Time: {rollout_time:.2f}s")
            print(f"  Update Time: {update_time:.2f}s")

    def _log_evaluation(self, eval_stats: AggregatedStats):
        if self.logger is not None:
            self.logger.log_scalar('eval/mean_return', eval_stats.mean_reward, self.update_count)
            self.logger.log_scalar('eval/std_return', eval_stats.std_reward, self.update_count)
            self.logger.log_scalar('eval/mean_length', eval_stats.mean_episode_length, self.update_count)
            self.logger.log_scalar('eval/success_rate', eval_stats.success_rate, self.update_count)
            for name, value in eval_stats.custom_metrics.items():
                self.logger.log_scalar(f'eval/{name}', value, self.update_count)

        if self.config.verbose:
            print("\n" + "=" * 80)
            print("EVALUATION")
            print("=" * 80)
            print(f"Episodes: {eval_stats.num_episodes}")
            print(f"Mean Return: {eval_stats.mean_reward:.2f} ± {eval_stats.std_reward:.2f}")
            print(f"Mean Length: {eval_stats.mean_episode_length:.1f}")
            print(f"Success Rate: {eval_stats.success_rate:.2%}")
            for name, value in eval_stats.custom_metrics.items():
                print(f"{name}: {value:.4f}")
            print("=" * 80)

    def _save_checkpoint(self, stats: TrainingStats, eval_stats: Optional[AggregatedStats]):
        # Rank by evaluation return when available, else by training episodes
        if eval_stats is not None and eval_stats.num_episodes > 0:
            metric = eval_stats.mean_reward
        elif stats.episodes_completed > 0:
            metric = stats.mean_episode_reward
        else:
            metric = None

        path = self.checkpoint_manager.save(
            self.policy,
            self.update_count,
            metric,
            extra={
                'env_steps': self.total_env_steps,
                'kl_coef': self.kl_coef,
                'total_loss': stats.total_loss
            }
        )
        if path is not None and self.config.verbose:
            print(f"✓ Checkpoint saved to {path}")
