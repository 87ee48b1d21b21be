from envs.toy import TOY_ENVS, CorridorEnv, PointEnv
from envs.vec_env import DummyVecEnv, EpisodeTotals, SubprocVecEnv, make_vec_env

__all__ = [
    'TOY_ENVS', 'CorridorEnv', 'PointEnv',
    'DummyVecEnv', 'EpisodeTotals', 'SubprocVecEnv', 'make_vec_env',
]
