"""
Checkpoint management for PPO training

CheckpointManager decides where checkpoints go, remembers which ones exist
(a JSON registry next to them) and prunes old ones. The policy itself
serializes its weights through policy.save(path) / policy.load(path).

Saving and loading never raise into the training loop: IO failures print a
warning and return None.
"""

import json
import pathlib
import time
from typing import Dict, List, Optional

REGISTRY_FILE = 'checkpoints.json'


class CheckpointManager:
    """
    Keeps the most recent checkpoints plus the best one by a metric

    Layout:
        checkpoint_dir/
            ppo_update_<step>.pt
            checkpoints.json      # [{path, step, metric, timestamp, extra}, ...]

    Args:
        checkpoint_dir: Directory for checkpoint files
        max_to_keep: Number of checkpoints retained; the best and the newest
            are never pruned, so both survive even when max_to_keep is 1
        metric_name: Name of the metric used to rank checkpoints
        higher_is_better: True for rewards, False for losses
    """

    def __init__(
        self,
        checkpoint_dir: str,
        max_to_keep: int = 5,
        metric_name: str = 'reward',
        higher_is_better: bool = True
    ):
        if max_to_keep < 1:
            raise ValueError(f"max_to_keep must be >= 1, got {max_to_keep}")

        self.checkpoint_dir = pathlib.Path(checkpoint_dir).expanduser()
        self.max_to_keep = max_to_keep
        self.metric_name = metric_name
        self.higher_is_better = higher_is_better
        self.checkpoints: List[Dict] = self._load_registry()

    @property
    def registry_path(self) -> pathlib.Path:
        return self.checkpoint_dir / REGISTRY_FILE

    def _load_registry(self) -> List[Dict]:
        if not self.registry_path.exists():
            return []
        try:
            with open(self.registry_path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            print(f"Warning: ignoring unreadable checkpoint registry {self.registry_path}: {e}")
            return []

    def _save_registry(self):
        with open(self.registry_path, 'w') as f:
            json.dump(self.checkpoints, f, indent=2)

    def _is_better(self, metric: float, best: float) -> bool:
        return metric > best if self.higher_is_better else metric < best

    def _best_entry(self) -> Optional[Dict]:
        best = None
        for entry in self.checkpoints:
            if entry['metric'] is None:
                continue
            if best is None or self._is_better(entry['metric'], best['metric']):
                best = entry
        return best

    def save(
        self,
        policy,
        step: int,
        metric_value: Optional[float] = None,
        extra: Optional[Dict[str, float]] = None
    ) -> Optional[str]:
        """
        Save a checkpoint of policy at a training step

        Args:
            policy: Object with save(path)
            step: Update index, used in the file name
            metric_value: Value of metric_name at this step (None if unknown)
            extra: Additional scalars stored in the registry entry

        Returns:
            Checkpoint path, or None if saving failed
        """
        path = self.checkpoint_dir / f"ppo_update_{step}.pt"
        try:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
            policy.save(str(path))
            self.checkpoints = [c for c in self.checkpoints if c['path'] != str(path)]
            self.checkpoints.append({
                'path': str(path),
                'step': step,
                'metric': None if metric_value is None else float(metric_value),
                'timestamp': time.time(),
                'extra': dict(extra or {}),
            })
            self.cleanup()
            self._save_registry()
        except Exception as e:
            print(f"Warning: failed to save checkpoint {path}: {e}")
            return None
        return str(path)

    def cleanup(self):
        """Delete the oldest checkpoints beyond max_to_keep, sparing the best and the newest"""
        by_step = sorted(self.checkpoints, key=lambda c: c['step'])
        protected = [self._best_entry()] + by_step[-1:]
        candidates = [c for c in by_step if not any(c is p for p in protected)]
        # With max_to_keep=1 and an older best, both protected entries survive
        while len(by_step) > self.max_to_keep and candidates:
            victim = candidates.pop(0)
            by_step.remove(victim)
            pathlib.Path(victim['path']).unlink(missing_ok=True)
        self.checkpoints = by_step

    def list_checkpoints(self) -> List[str]:
        return [c['path'] for c in sorted(self.checkpoints, key=lambda c: c['step'])]

    def latest_path(self) -> Optional[str]:
        if not self.checkpoints:
            return None
        return max(self.checkpoints, key=lambda c: c['step'])['path']

    def best_path(self) -> Optional[str]:
        best = self._best_entry()
        return best['path'] if best is not None else None

    def load(self, policy, path: Optional[str]) -> Optional[Dict]:
        """
        Load a checkpoint into policy

        Returns:
            The registry entry for path (or a minimal one for unregistered
            files), or None if loading failed
        """
        if path is None:
            return None
        try:
            policy.load(str(path))
        except Exception as e:
            print(f"Warning: failed to load checkpoint {path}: {e}")
            return None
        for entry in self.checkpoints:
            if entry['path'] == str(path):
                return entry
        return {'path': str(path), 'step': None, 'metric': None}

    def load_latest(self, policy) -> Optional[Dict]:
        return self.load(policy, self.latest_path())

    def load_best(self, policy) -> Optional[Dict]:
        return self.load(policy, self.best_path())

    def has_checkpoints(self) -> bool:
        return bool(self.checkpoints)
