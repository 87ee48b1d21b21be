"""
TensorBoard scalar logging

TrainingLogger wraps torch's SummaryWriter. Logging is fire-and-forget:
a failing write prints a warning and training carries on.
"""

import pathlib
from typing import Dict, Optional

from torch.utils.tensorboard import SummaryWriter


class TrainingLogger:
    """
    Scalar logger backed by TensorBoard

    Tags follow the 'group/name' convention, e.g. 'train/policy_loss'.
    """

    def __init__(self, log_dir: str, writer: Optional[SummaryWriter] = None):
        self.log_dir = pathlib.Path(log_dir).expanduser()
        self.writer = writer
        if self.writer is None:
            try:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                self.writer = SummaryWriter(log_dir=str(self.log_dir))
            except OSError as e:
                print(f"Warning: TensorBoard logging disabled, could not open {self.log_dir}: {e}")

    def log_scalar(self, name: str, value: float, step: int):
        if self.writer is None:
            return
        try:
            self.writer.add_scalar(name, float(value), step)
        except Exception as e:
            print(f"Warning: failed to log scalar '{name}' at step {step}: {e}")

    def log_scalars(self, prefix: str, values: Dict[str, float], step: int):
        """Log every entry of values as '<prefix>/<key>'"""
        for key, value in values.items():
            self.log_scalar(f"{prefix}/{key}", value, step)

    def flush(self):
        if self.writer is not None:
            self.writer.flush()

    def close(self):
        if self.writer is not None:
            self.writer.close()
            self.writer = None
