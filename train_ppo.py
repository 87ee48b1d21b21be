"""
Training Script for PPO on the toy environments

The training process follows Algorithm 1 from the PPO paper:

1. Collect rollout using current policy π_{θ_old}
2. Compute advantages using GAE
3. Update policy and value function for K epochs
4. Repeat for total_updates cycles

Usage:
    # Train with default config (discrete corridor)
    python train_ppo.py

    # Train with debug mode (faster, for testing)
    python train_ppo.py --configs debug

    # Continuous control with the KL penalty
    python train_ppo.py --configs continuous

    # Resume from the latest checkpoint
    python train_ppo.py --resume --logdir ./logdir/ppo

Ctrl+C asks the trainer to stop after the current update; a second Ctrl+C
aborts immediately.

Paper Reference: "Proximal Policy Optimization Algorithms" (Schulman et al., 2017)
https://arxiv.org/abs/1707.06347
"""

import argparse
import pathlib
import signal

import torch

from envs.vec_env import make_vec_env
from rlcore.checkpoint import CheckpointManager
from rlcore.config import DEFAULT_CONFIG_FILE, PPOConfig, load_config
from rlcore.logger import TrainingLogger
from rlcore.metrics import MetricRegistry
from rlcore.networks import ActorCriticPolicy
from rlcore.ppo_trainer import PPOTrainer
from rlcore.utils import tools


def main(config: PPOConfig, resume: bool = False):
    """
    Main training loop

    Args:
        config: Validated configuration
        resume: Load the latest checkpoint before training
    """
    tools.set_seed_everywhere(config.seed)

    logdir = pathlib.Path(config.logdir).expanduser()
    logdir.mkdir(parents=True, exist_ok=True)
    checkpoint_dir = pathlib.Path(config.checkpoint_dir or logdir / 'checkpoints').expanduser()

    print("=" * 80)
    print(f"PPO Training: {config.env}")
    print("=" * 80)
    print(f"Logdir: {logdir}")
    print(f"Device: {config.device}")
    print(f"Parallel Envs: {config.num_envs}")
    print(f"Updates: {config.total_updates} x {config.batch_size:,} samples")
    print("=" * 80)

    if config.device.startswith('cuda') and not torch.cuda.is_available():
        print("CUDA not available, falling back to CPU")
        config.device = 'cpu'
    if config.device.startswith('cuda'):
        print(f"Using GPU: {torch.cuda.get_device_name(0)}")
    else:
        print("Using CPU")

    print("\nCreating vectorized environments...")
    vec_env = make_vec_env(config.env, config.num_envs, seed=config.seed, subproc=config.subproc)
    # Evaluation gets its own environment and seed range
    eval_env = make_vec_env(config.env, 1, seed=config.seed + 10000)
    print(f"✓ Created {config.num_envs} parallel environments")
    print(f"Observation space: {vec_env.observation_space}")
    print(f"Action space: {vec_env.action_space}")

    tools.save_config(config.to_dict(), logdir)

    print("\nInitializing PPO policy...")
    policy = ActorCriticPolicy.from_spaces(
        vec_env.observation_space,
        vec_env.action_space,
        hidden_dim=config.hidden_dim,
        learning_rate=config.learning_rate,
        max_grad_norm=config.max_grad_norm,
        device=torch.device(config.device)
    )
    print("✓ Policy initialized")

    checkpoint_manager = CheckpointManager(checkpoint_dir, max_to_keep=config.max_checkpoints)
    entry = checkpoint_manager.load_latest(policy) if resume else None
    if resume and entry is None:
        print("\nNo checkpoint to resume from, starting fresh")

    metric_registry = MetricRegistry()
    metric_registry.register(
        'timeout_rate',
        lambda episodes: sum(not e.success for e in episodes) / len(episodes)
    )

    logger = TrainingLogger(logdir)
    trainer = PPOTrainer(
        policy,
        vec_env,
        config,
        eval_env=eval_env,
        logger=logger,
        checkpoint_manager=checkpoint_manager,
        metric_registry=metric_registry
    )
    if entry is not None:
        trainer.restore(entry)
        print(f"\n✓ Resumed from {entry['path']} at update {trainer.update_count}")

    def handle_interrupt(signum, frame):
        print("\nInterrupt received, stopping after the current update...")
        trainer.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handle_interrupt)

    print("\nStarting training...")
    try:
        # Only the updates left in the budget after a resume
        trainer.train()

        print("\n" + "=" * 80)
        print("FINAL EVALUATION")
        print("=" * 80)
        final_stats = trainer.evaluate(config.eval_episodes * 2)
        print(f"Episodes: {final_stats.num_episodes}")
        print(f"Mean Return: {final_stats.mean_reward:.2f} ± {final_stats.std_reward:.2f}")
        print(f"Mean Length: {final_stats.mean_episode_length:.1f}")
        print(f"Success Rate: {final_stats.success_rate:.2%}")
        print("=" * 80)

        final_path = checkpoint_manager.save(
            policy, trainer.update_count, final_stats.mean_reward,
            extra={'env_steps': trainer.total_env_steps}
        )
        print("\n✓ Training complete!")
        print(f"  Latest checkpoint: {final_path}")
        print(f"  Best checkpoint: {checkpoint_manager.best_path()}")
    finally:
        vec_env.close()
        eval_env.close()
        logger.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Train PPO on a toy environment")
    parser.add_argument("--configs", nargs="+", default=["defaults"])
    parser.add_argument("--resume", action="store_true", help="Resume from checkpoint")
    args, remaining = parser.parse_known_args()

    config_dict = load_config(DEFAULT_CONFIG_FILE, args.configs)

    # Override with command-line arguments
    parser = argparse.ArgumentParser()
    for key, value in sorted(config_dict.items(), key=lambda x: x[0]):
        arg_type = tools.args_type(value)
        parser.add_argument(f"--{key}", type=arg_type, default=arg_type(value))

    config = PPOConfig.from_dict(vars(parser.parse_args(remaining))).validate()

    main(config, resume=args.resume)
