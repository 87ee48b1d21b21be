"""
Utility Functions

Small helpers shared by the trainer and the training script:
- Tensor conversion
- Dictionary merging for layered configs
- Command-line argument typing from default values
- Reproducibility
- Config persistence
"""

import pathlib
import random
from typing import Any, Callable

import numpy as np
import torch


def to_np(x: torch.Tensor) -> np.ndarray:
    """
    Convert PyTorch tensor to NumPy array

    Args:
        x: PyTorch tensor

    Returns:
        NumPy array on CPU
    """
    return x.detach().cpu().numpy()


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries, recursively merging nested dicts

    Args:
        base: Base dictionary
        override: Override dictionary

    Returns:
        Merged dictionary (new dict, does not modify inputs)

    Example:
        >>> base = {"a": {"b": 1, "c": 2}, "d": 3}
        >>> override = {"a": {"c": 3, "e": 4}}
        >>> deep_merge(base, override)
        {'a': {'b': 1, 'c': 3, 'e': 4}, 'd': 3}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def args_type(default: Any) -> Callable:
    """
    Create argument parser based on default value type

    Booleans are spelled True/False on the command line, lists and tuples
    as comma-separated values, and a None default accepts the raw string.

    Args:
        default: Default value (determines type)

    Returns:
        Parsing function
    """
    def parse_string(x: str):
        if default is None:
            return x
        if isinstance(default, bool):
            return bool(["False", "True"].index(x))
        if isinstance(default, int):
            return float(x) if ("e" in x or "." in x) else int(x)
        if isinstance(default, (list, tuple)):
            return tuple(args_type(default[0])(y) for y in x.split(","))
        return type(default)(x)

    def parse_object(x):
        if isinstance(default, (list, tuple)):
            return tuple(x)
        return x

    return lambda x: parse_string(x) if isinstance(x, str) else parse_object(x)


def set_seed_everywhere(seed: int):
    """
    Set random seed for reproducibility

    Sets seeds for:
    - PyTorch (CPU and CUDA)
    - NumPy
    - Python random

    Args:
        seed: Random seed
    """
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
    np.random.seed(seed)
    random.seed(seed)


def save_config(config: dict, logdir: pathlib.Path, verbose: bool = True) -> pathlib.Path:
    """
    Save configuration to YAML file in log directory

    Used to keep the exact training configuration next to its checkpoints.

    Args:
        config: Configuration dictionary
        logdir: Log directory path
        verbose: Whether to print save confirmation

    Returns:
        Path to saved config file
    """
    from ruamel.yaml import YAML

    logdir = pathlib.Path(logdir)
    logdir.mkdir(parents=True, exist_ok=True)
    config_save_path = logdir / "config.yaml"

    # Convert tuples to lists for YAML compatibility
    def convert_tuples(obj):
        if isinstance(obj, tuple):
            return list(obj)
        elif isinstance(obj, dict):
            return {k: convert_tuples(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [convert_tuples(item) for item in obj]
        else:
            return obj

    yaml = YAML()
    yaml.default_flow_style = False
    with open(config_save_path, 'w') as f:
        yaml.dump(convert_tuples(dict(config)), f)

    if verbose:
        print(f"Saved config to {config_save_path}")

    return config_save_path
