"""
Vectorized Environments for PPO

This module implements the environment batch PPOTrainer steps in lockstep:
N environments advance together on every step() call.

- DummyVecEnv: all environments in the calling process, stepped in order
- SubprocVecEnv: one worker process per environment, connected by pipes
  (based on OpenAI Baselines SubprocVecEnv)

Differences from the Baselines API:
1. No auto-reset. A done environment stays done until reset_at(i) is
   called, so the trainer decides where the reset observation goes.
2. Episode bookkeeping. The batch tracks each environment's running
   episode reward and length and reports the completed totals exactly
   once, on the step that ends the episode.

Interface (both classes):
    reset()          -> observations (num_envs, *obs_shape)
    reset_at(i)      -> observation (*obs_shape) of environment i
    step(actions)    -> observations, rewards (num_envs,), dones (num_envs,),
                        {env_index: EpisodeTotals} for environments that finished
    len(vec_env)     -> num_envs
"""

import functools
import multiprocessing as mp
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from envs.toy import TOY_ENVS


class EpisodeTotals(NamedTuple):
    total_reward: float
    total_steps: int
    success: bool = False


StepResult = Tuple[np.ndarray, np.ndarray, np.ndarray, Dict[int, EpisodeTotals]]


class VecEnv:
    """
    Episode bookkeeping shared by the vectorized environments

    Subclasses implement _reset_all, _reset_one and _step; this class keeps
    the per-environment running totals consistent with them.
    """

    def __init__(self, num_envs: int, observation_space, action_space):
        self.num_envs = num_envs
        self.observation_space = observation_space
        self.action_space = action_space
        self.closed = False

        self.episode_rewards = np.zeros(num_envs, dtype=np.float64)
        self.episode_lengths = np.zeros(num_envs, dtype=np.int64)

    def reset(self) -> np.ndarray:
        """
        Reset all environments

        Returns:
            Batched initial observations, shape (num_envs, *obs_shape)
        """
        obs = self._reset_all()
        self.episode_rewards[:] = 0.0
        self.episode_lengths[:] = 0
        return np.stack(obs, axis=0)

    def reset_at(self, index: int) -> np.ndarray:
        """
        Reset a single environment

        Args:
            index: Environment index in [0, num_envs)

        Returns:
            Initial observation of the new episode, shape (*obs_shape)
        """
        if not 0 <= index < self.num_envs:
            raise IndexError(f"Environment index {index} out of range [0, {self.num_envs})")
        obs = self._reset_one(index)
        self.episode_rewards[index] = 0.0
        self.episode_lengths[index] = 0
        return obs

    def step(self, actions) -> StepResult:
        """
        Step all environments with given actions

        Args:
            actions: Array of actions, one per environment
                     Shape: (num_envs,) for discrete, (num_envs, action_dim) for continuous

        Returns:
            Tuple of (observations, rewards, dones, episode_totals):
            - observations: shape (num_envs, *obs_shape)
            - rewards: float32 array, shape (num_envs,)
            - dones: bool array, shape (num_envs,)
            - episode_totals: {env_index: EpisodeTotals} for every
              environment whose episode ended on this step

        Note:
            Done environments are NOT reset here. Call reset_at(i) before
            stepping environment i again.
        """
        actions = np.asarray(actions)
        if actions.shape[0] != self.num_envs:
            raise ValueError(f"Expected {self.num_envs} actions, got {actions.shape[0]}")

        obs_list, rewards, dones, infos = self._step(actions)
        rewards = np.asarray(rewards, dtype=np.float32)
        dones = np.asarray(dones, dtype=bool)

        self.episode_rewards += rewards
        self.episode_lengths += 1

        episode_totals = {}
        for i in np.flatnonzero(dones):
            i = int(i)
            episode_totals[i] = EpisodeTotals(
                total_reward=float(self.episode_rewards[i]),
                total_steps=int(self.episode_lengths[i]),
                success=bool(infos[i].get('success', False))
            )
            self.episode_rewards[i] = 0.0
            self.episode_lengths[i] = 0

        return np.stack(obs_list, axis=0), rewards, dones, episode_totals

    def _reset_all(self) -> List[np.ndarray]:
        raise NotImplementedError

    def _reset_one(self, index: int) -> np.ndarray:
        raise NotImplementedError

    def _step(self, actions: np.ndarray) -> Tuple[List[np.ndarray], List[float], List[bool], List[Dict]]:
        raise NotImplementedError

    def close(self):
        self.closed = True

    def __len__(self):
        """Return number of environments"""
        return self.num_envs


class DummyVecEnv(VecEnv):
    """
    Vectorized environment that steps every environment in this process

    Cheapest option for small, fast environments and for tests, where the
    cost of inter-process communication would dominate.
    """

    def __init__(self, env_fns: List[Callable]):
        self.envs = [env_fn() for env_fn in env_fns]
        env = self.envs[0]
        super().__init__(len(self.envs), env.observation_space, env.action_space)

    def _reset_all(self):
        return [env.reset() for env in self.envs]

    def _reset_one(self, index):
        return self.envs[index].reset()

    def _step(self, actions):
        results = [env.step(action) for env, action in zip(self.envs, actions)]
        obs_list, rewards, dones, infos = zip(*results)
        return list(obs_list), list(rewards), list(dones), list(infos)

    def close(self):
        if self.closed:
            return
        for env in self.envs:
            env.close()
        super().close()


def worker(remote, parent_remote, env_fn):
    """
    Worker process function for SubprocVecEnv

    Each worker runs in a separate process and manages one environment.
    It receives commands from the main process via a pipe and sends back results.

    Args:
        remote: Child end of the pipe (used by worker)
        parent_remote: Parent end of the pipe (closed in worker)
        env_fn: Callable that creates an environment instance
    """
    parent_remote.close()
    env = env_fn()

    while True:
        try:
            cmd, data = remote.recv()

            if cmd == 'step':
                remote.send(env.step(data))

            elif cmd == 'reset':
                remote.send(env.reset())

            elif cmd == 'close':
                env.close()
                remote.close()
                break

            elif cmd == 'get_spaces':
                remote.send((env.observation_space, env.action_space))

            else:
                raise NotImplementedError(f"Command {cmd} not implemented")

        except EOFError:
            break


class SubprocVecEnv(VecEnv):
    """
    Vectorized Environment that runs multiple environments in parallel subprocesses.

    Each environment runs in its own process, allowing true parallel
    execution; every call still blocks until all workers have answered, so
    the batch advances in lockstep.

    Attributes:
        num_envs (int): Number of parallel environments
        observation_space: Observation space of a single environment
        action_space: Action space of a single environment
    """

    def __init__(self, env_fns: List[Callable], start_method: Optional[str] = None):
        """
        Initialize vectorized environment

        Args:
            env_fns: List of callables that create environment instances.
                     Must be picklable unless the start method is 'fork'
                     (functools.partial over an environment class works)
            start_method: multiprocessing start method, None for the platform default

        Example:
            >>> env_fns = [functools.partial(CorridorEnv, seed=i) for i in range(8)]
            >>> vec_env = SubprocVecEnv(env_fns)
        """
        self.waiting = False
        ctx = mp.get_context(start_method)

        # Create pipe for each environment
        self.remotes, self.work_remotes = zip(*[ctx.Pipe() for _ in range(len(env_fns))])

        # Start worker processes
        self.processes = []
        for work_remote, remote, env_fn in zip(self.work_remotes, self.remotes, env_fns):
            process = ctx.Process(target=worker, args=(work_remote, remote, env_fn), daemon=True)
            process.start()
            self.processes.append(process)
            work_remote.close()

        # Get spaces from first environment
        self.remotes[0].send(('get_spaces', None))
        observation_space, action_space = self.remotes[0].recv()
        super().__init__(len(env_fns), observation_space, action_space)

    def _reset_all(self):
        for remote in self.remotes:
            remote.send(('reset', None))
        return [remote.recv() for remote in self.remotes]

    def _reset_one(self, index):
        self.remotes[index].send(('reset', None))
        return self.remotes[index].recv()

    def _step(self, actions):
        for remote, action in zip(self.remotes, actions):
            remote.send(('step', action))
        self.waiting = True
        results = [remote.recv() for remote in self.remotes]
        self.waiting = False

        obs_list, rewards, dones, infos = zip(*results)
        return list(obs_list), list(rewards), list(dones), list(infos)

    def close(self):
        """
        Close all worker processes and clean up resources
        """
        if self.closed:
            return

        if self.waiting:
            # Wait for pending operations
            for remote in self.remotes:
                remote.recv()

        for remote in self.remotes:
            remote.send(('close', None))

        for process in self.processes:
            process.join()

        super().close()


def make_vec_env(
    env_name: str,
    num_envs: int,
    seed: int = 0,
    subproc: bool = False,
    **env_kwargs: Any
) -> VecEnv:
    """
    Create a vectorized toy environment

    Each environment gets seed + env_index so the batch is reproducible
    while its members still diverge.

    Args:
        env_name: Key of TOY_ENVS ('corridor' or 'point')
        num_envs: Number of parallel environments
        seed: Base seed
        subproc: Use worker processes instead of stepping in-process
        **env_kwargs: Forwarded to the environment constructor

    Returns:
        DummyVecEnv or SubprocVecEnv with num_envs environments
    """
    if env_name not in TOY_ENVS:
        raise ValueError(f"Unknown environment '{env_name}', expected one of {sorted(TOY_ENVS)}")

    env_cls = TOY_ENVS[env_name]
    env_fns = [functools.partial(env_cls, seed=seed + rank, **env_kwargs) for rank in range(num_envs)]

    if subproc:
        return SubprocVecEnv(env_fns)
    return DummyVecEnv(env_fns)
