"""Tests for the rollout buffer lifecycle, GAE finalization and minibatching."""

import numpy as np
import pytest
import torch

from rlcore.advantage import compute_gae
from rlcore.errors import (
    BufferFinalizedError,
    BufferFullError,
    BufferNotFilledError,
    BufferNotFinalizedError,
    RolloutBufferError,
)
from rlcore.rollout_buffer import BufferState, RolloutBuffer


def fill(buffer, obs_dim=3, discrete=True, seed=0):
    """Add num_steps random transitions to buffer."""
    rng = np.random.RandomState(seed)
    n = buffer.num_envs
    for _ in range(buffer.num_steps):
        obs = rng.randn(n, obs_dim).astype(np.float32)
        if discrete:
            actions = rng.randint(0, 4, size=n)
        else:
            actions = rng.randn(n, 2).astype(np.float32)
        buffer.add(
            obs,
            actions,
            rng.randn(n).astype(np.float32),
            rng.randn(n).astype(np.float32),
            rng.randn(n).astype(np.float32),
            (rng.rand(n) > 0.8).astype(np.float32),
        )


class TestBufferLifecycle:
    """EMPTY -> FILLING -> FINALIZED -> EMPTY state machine."""

    def test_states(self):
        buffer = RolloutBuffer(num_steps=4, num_envs=2)
        assert buffer.state is BufferState.EMPTY
        assert len(buffer) == 0

        fill(buffer)
        assert buffer.state is BufferState.FILLING
        assert buffer.is_full
        assert len(buffer) == 8

        buffer.finish_rollout(np.zeros(2, dtype=np.float32))
        assert buffer.state is BufferState.FINALIZED

        buffer.reset()
        assert buffer.state is BufferState.EMPTY
        assert len(buffer) == 0
        assert buffer.advantages is None

    def test_lazy_allocation(self):
        """Storage shapes come from the first add()."""
        buffer = RolloutBuffer(num_steps=3, num_envs=2)
        assert buffer.observations is None

        fill(buffer, obs_dim=5, discrete=False)
        assert buffer.observations.shape == (3, 2, 5)
        assert buffer.actions.shape == (3, 2, 2)
        assert buffer.rewards.shape == (3, 2)

    def test_discrete_actions_keep_integer_dtype(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=2)
        fill(buffer)
        assert not buffer.actions.is_floating_point()

    def test_add_after_full_raises(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=1)
        fill(buffer)
        with pytest.raises(BufferFullError):
            buffer.add(np.zeros((1, 3)), np.zeros(1), [0.0], [0.0], [0.0], [0.0])

    def test_add_after_finalize_raises(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=1)
        fill(buffer)
        buffer.finish_rollout([0.0])
        with pytest.raises(BufferFinalizedError):
            buffer.add(np.zeros((1, 3)), np.zeros(1), [0.0], [0.0], [0.0], [0.0])

    def test_finish_before_full_raises(self):
        buffer = RolloutBuffer(num_steps=4, num_envs=1)
        buffer.add(np.zeros((1, 3)), np.zeros(1), [0.0], [0.0], [0.0], [0.0])
        with pytest.raises(BufferNotFilledError):
            buffer.finish_rollout([0.0])

    def test_finish_twice_raises(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=1)
        fill(buffer)
        buffer.finish_rollout([0.0])
        with pytest.raises(BufferFinalizedError):
            buffer.finish_rollout([0.0])

    def test_minibatches_before_finalize_raise(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=1)
        fill(buffer)
        with pytest.raises(BufferNotFinalizedError):
            buffer.get_minibatches(1)

    def test_protocol_errors_share_a_base_class(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=1)
        with pytest.raises(RolloutBufferError):
            buffer.get_minibatches(1)

    def test_wrong_env_count_raises(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=2)
        with pytest.raises(ValueError, match="leading dimension"):
            buffer.add(np.zeros((3, 3)), np.zeros(3), np.zeros(3), np.zeros(3), np.zeros(3), np.zeros(3))

    def test_reuse_after_reset(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=2)
        fill(buffer, seed=0)
        buffer.finish_rollout([0.0, 0.0])
        buffer.reset()
        fill(buffer, seed=1)
        buffer.finish_rollout([0.0, 0.0])
        assert buffer.state is BufferState.FINALIZED


class TestFinishRollout:
    """Advantage and return computation over the (T, N) grid."""

    def test_matches_column_gae(self):
        buffer = RolloutBuffer(num_steps=5, num_envs=3, gamma=0.97, gae_lambda=0.9, normalize_advantages=False)
        fill(buffer)
        bootstrap = np.array([0.5, -1.0, 2.0], dtype=np.float32)
        buffer.finish_rollout(bootstrap)

        for n in range(3):
            expected = compute_gae(
                buffer.rewards[:, n], buffer.values[:, n], buffer.dones[:, n],
                gamma=0.97, gae_lambda=0.9, last_value=float(bootstrap[n])
            )
            torch.testing.assert_close(buffer.advantages[:, n], expected)

    def test_returns_use_raw_advantages(self):
        """Normalization changes the advantages but not the value targets."""
        raw = RolloutBuffer(num_steps=4, num_envs=2, normalize_advantages=False)
        normalized = RolloutBuffer(num_steps=4, num_envs=2, normalize_advantages=True)
        fill(raw, seed=3)
        fill(normalized, seed=3)
        raw.finish_rollout([0.1, 0.2])
        normalized.finish_rollout([0.1, 0.2])

        torch.testing.assert_close(normalized.returns, raw.returns)
        torch.testing.assert_close(raw.returns, raw.advantages + raw.values)
        assert normalized.advantages.mean().item() == pytest.approx(0.0, abs=1e-5)

    def test_bootstrap_size_checked(self):
        buffer = RolloutBuffer(num_steps=2, num_envs=2)
        fill(buffer)
        with pytest.raises(ValueError):
            buffer.finish_rollout([0.0, 0.0, 0.0])


class TestMinibatches:
    """Flattening, shuffling and partitioning of a finalized rollout."""

    def setup_method(self):
        self.buffer = RolloutBuffer(num_steps=6, num_envs=4)
        fill(self.buffer)
        self.buffer.finish_rollout(np.zeros(4, dtype=np.float32))

    @pytest.mark.parametrize("batch_size", [1, 5, 8, 24, 100])
    def test_sizes_partition_all_samples(self, batch_size):
        minibatches = self.buffer.get_minibatches(batch_size)
        sizes = [len(mb) for mb in minibatches]
        assert sum(sizes) == 24
        assert all(size <= batch_size for size in sizes)
        assert all(size == batch_size for size in sizes[:-1])

    def test_indices_form_a_permutation(self):
        minibatches = self.buffer.get_minibatches(7)
        indices = torch.cat([mb.indices for mb in minibatches])
        assert sorted(indices.tolist()) == list(range(24))

    def test_time_major_flattening(self):
        """Sample t * num_envs + n is environment n at step t."""
        minibatches = self.buffer.get_minibatches(24, shuffle=False)
        (batch,) = minibatches
        t, n = 3, 2
        flat = t * 4 + n
        torch.testing.assert_close(batch.observations[flat], self.buffer.observations[t, n])
        assert batch.returns[flat].item() == pytest.approx(self.buffer.returns[t, n].item())
        assert batch.advantages[flat].item() == pytest.approx(self.buffer.advantages[t, n].item())

    def test_minibatch_fields_follow_indices(self):
        generator = torch.Generator().manual_seed(0)
        for batch in self.buffer.get_minibatches(5, generator=generator):
            for row, flat in enumerate(batch.indices.tolist()):
                t, n = divmod(flat, 4)
                assert batch.old_log_probs[row].item() == pytest.approx(self.buffer.log_probs[t, n].item())
                assert batch.old_values[row].item() == pytest.approx(self.buffer.values[t, n].item())
                assert batch.actions[row].item() == self.buffer.actions[t, n].item()

    def test_seeded_shuffles_repeat(self):
        first = self.buffer.get_minibatches(6, generator=torch.Generator().manual_seed(7))
        second = self.buffer.get_minibatches(6, generator=torch.Generator().manual_seed(7))
        for a, b in zip(first, second):
            assert torch.equal(a.indices, b.indices)

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            self.buffer.get_minibatches(0)


class TestBufferStats:
    def test_stats(self):
        buffer = RolloutBuffer(num_steps=3, num_envs=2)
        assert buffer.get_stats().mean_reward == 0.0

        fill(buffer)
        stats = buffer.get_stats()
        assert stats.mean_reward == pytest.approx(buffer.rewards.mean().item())
        assert stats.num_episodes == int(buffer.dones.sum().item())
