"""
Exception types raised by the training core

Two families:
- ConfigurationError: invalid hyperparameters or a trainer wired to the
  wrong number of environments. Raised before any environment is stepped.
- RolloutBufferError: the rollout buffer was driven out of order
  (add after full, finalize before full, minibatches before finalize).
  These are programming errors and are never recovered from inside a cycle.
"""


class ConfigurationError(ValueError):
    """Invalid or inconsistent training configuration"""


class RolloutBufferError(RuntimeError):
    """Base class for rollout buffer protocol violations"""


class BufferFullError(RolloutBufferError):
    """add() called after num_steps transitions were already stored"""


class BufferNotFilledError(RolloutBufferError):
    """finish_rollout() called before the buffer holds num_steps transitions"""


class BufferNotFinalizedError(RolloutBufferError):
    """Minibatches requested before finish_rollout()"""


class BufferFinalizedError(RolloutBufferError):
    """Buffer already finalized; reset() is required before reuse"""
