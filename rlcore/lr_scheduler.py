"""
Learning Rate Schedules for PPO

Annealing the learning rate over training is one of the standard PPO
stability heuristics (Schulman et al. 2017, Table 3 anneals α linearly to 0).
The scheduler is a pure function of the update index; PPOTrainer pushes the
result into the policy model with set_learning_rate().

Schedules:
    constant     α_t = α_0
    linear       α_0 → end_lr, linearly over total_steps
    exponential  α_0 · decay_rate^t
    cosine       min_lr + (α_0 - min_lr) · ½(1 + cos(π t / total_steps))
    step         α_0 · decay_rate^⌊t / step_size⌋
    polynomial   (α_0 - end_lr) · (1 - t / total_steps)^power + end_lr
    custom       fn(t, total_steps, α_0)
"""

import math
from typing import Callable, Optional

SCHEDULE_TYPES = ('constant', 'linear', 'exponential', 'cosine', 'step', 'polynomial', 'custom')


class LearningRateScheduler:
    """
    Learning rate as a function of the training step

    Example:
        >>> scheduler = LearningRateScheduler(3e-4, total_steps=100, schedule='linear', end_lr=3e-5)
        >>> scheduler.step(50)  # halfway: 1.65e-4
    """

    def __init__(
        self,
        initial_lr: float,
        total_steps: int,
        schedule: str = 'linear',
        end_lr: float = 0.0,
        min_lr: float = 0.0,
        decay_rate: float = 0.95,
        step_size: int = 1000,
        power: float = 1.0,
        custom_fn: Optional[Callable[[int, int, float], float]] = None
    ):
        if schedule not in SCHEDULE_TYPES:
            raise ValueError(f"Unknown schedule '{schedule}', expected one of {SCHEDULE_TYPES}")
        if schedule == 'custom' and custom_fn is None:
            raise ValueError("custom schedule requires custom_fn")
        if total_steps < 1:
            raise ValueError(f"total_steps must be >= 1, got {total_steps}")
        if step_size < 1:
            raise ValueError(f"step_size must be >= 1, got {step_size}")

        self.initial_lr = initial_lr
        self.total_steps = total_steps
        self.schedule = schedule
        self.end_lr = end_lr
        self.min_lr = min_lr
        self.decay_rate = decay_rate
        self.step_size = step_size
        self.power = power
        self.custom_fn = custom_fn

        self.current_step = 0
        self.current_lr = initial_lr

    def set_custom_schedule(self, fn: Callable[[int, int, float], float]):
        self.custom_fn = fn
        self.schedule = 'custom'

    def lr_at(self, step: int) -> float:
        """Learning rate for a given step, without changing scheduler state"""
        progress = min(step / self.total_steps, 1.0)

        if self.schedule == 'constant':
            return self.initial_lr
        if self.schedule == 'linear':
            return self.initial_lr + (self.end_lr - self.initial_lr) * progress
        if self.schedule == 'exponential':
            return self.initial_lr * self.decay_rate ** step
        if self.schedule == 'cosine':
            cosine_factor = 0.5 * (1.0 + math.cos(math.pi * progress))
            return self.min_lr + (self.initial_lr - self.min_lr) * cosine_factor
        if self.schedule == 'step':
            return self.initial_lr * self.decay_rate ** (step // self.step_size)
        if self.schedule == 'polynomial':
            return (self.initial_lr - self.end_lr) * (1.0 - progress) ** self.power + self.end_lr
        return self.custom_fn(step, self.total_steps, self.initial_lr)

    def step(self, current_step: int) -> float:
        """Advance to current_step and return the new learning rate"""
        self.current_step = current_step
        self.current_lr = self.lr_at(current_step)
        return self.current_lr

    def get_lr(self) -> float:
        return self.current_lr

    def reset(self):
        self.current_step = 0
        self.current_lr = self.initial_lr
