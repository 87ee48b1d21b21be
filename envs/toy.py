"""
Toy Environments for PPO

Two small, fast environments with the classic gym step API
(reset() -> obs, step(action) -> obs, reward, done, info):

- CorridorEnv: discrete actions, walk right along a 1-D corridor to the goal
- PointEnv: continuous actions, steer a 2-D point mass to the origin

Both report info['success'] on the terminal step, and both end episodes
after max_steps. They exist to exercise the trainer end to end and are
solved by PPO within a few dozen updates.
"""

from typing import Dict, Optional, Tuple

import gym
import numpy as np


class CorridorEnv:
    """
    1-D corridor with the goal at the right end

    Observation: one-hot position, shape (length,), float32
    Actions: 0 = left, 1 = right
    Reward: +1 on reaching the goal, step_penalty on every other step
    Termination: goal reached, or max_steps elapsed
    """

    metadata = {}

    def __init__(
        self,
        length: int = 8,
        max_steps: int = 50,
        step_penalty: float = -0.01,
        seed: Optional[int] = None
    ):
        assert length >= 2, "Corridor needs at least a start and a goal cell"

        self._length = length
        self._max_steps = max_steps
        self._step_penalty = step_penalty
        self._random = np.random.RandomState(seed)

        self.observation_space = gym.spaces.Box(0.0, 1.0, (length,), dtype=np.float32)
        self.action_space = gym.spaces.Discrete(2)

        self._position = 0
        self._steps = 0

    def _obs(self) -> np.ndarray:
        obs = np.zeros(self._length, dtype=np.float32)
        obs[self._position] = 1.0
        return obs

    def reset(self) -> np.ndarray:
        # Start anywhere in the left half
        self._position = int(self._random.randint(0, max(1, self._length // 2)))
        self._steps = 0
        return self._obs()

    def step(self, action) -> Tuple[np.ndarray, float, bool, Dict]:
        move = 1 if int(action) == 1 else -1
        self._position = int(np.clip(self._position + move, 0, self._length - 1))
        self._steps += 1

        success = self._position == self._length - 1
        reward = 1.0 if success else self._step_penalty
        done = success or self._steps >= self._max_steps
        return self._obs(), reward, done, {'success': success}

    def close(self):
        pass


class PointEnv:
    """
    2-D point mass steered toward the origin

    Observation: position (x, y), float32 in [-1, 1]
    Actions: velocity command in [-1, 1]^2, scaled by max_speed
    Reward: -distance to the origin each step, +1 bonus on arrival
    Termination: within goal_radius of the origin, or max_steps elapsed
    """

    metadata = {}

    def __init__(
        self,
        max_steps: int = 100,
        max_speed: float = 0.1,
        goal_radius: float = 0.1,
        seed: Optional[int] = None
    ):
        self._max_steps = max_steps
        self._max_speed = max_speed
        self._goal_radius = goal_radius
        self._random = np.random.RandomState(seed)

        self.observation_space = gym.spaces.Box(-1.0, 1.0, (2,), dtype=np.float32)
        self.action_space = gym.spaces.Box(-1.0, 1.0, (2,), dtype=np.float32)

        self._position = np.zeros(2, dtype=np.float32)
        self._steps = 0

    def reset(self) -> np.ndarray:
        self._position = self._random.uniform(-1.0, 1.0, size=2).astype(np.float32)
        self._steps = 0
        return self._position.copy()

    def step(self, action) -> Tuple[np.ndarray, float, bool, Dict]:
        action = np.clip(np.asarray(action, dtype=np.float32).reshape(2), -1.0, 1.0)
        self._position = np.clip(self._position + self._max_speed * action, -1.0, 1.0)
        self._steps += 1

        distance = float(np.linalg.norm(self._position))
        success = distance < self._goal_radius
        reward = -distance + (1.0 if success else 0.0)
        done = success or self._steps >= self._max_steps
        return self._position.copy(), reward, done, {'success': success}

    def close(self):
        pass


TOY_ENVS = {
    'corridor': CorridorEnv,
    'point': PointEnv,
}
