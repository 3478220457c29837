"""Tests for the batch formation policy."""

from collections import deque

import pytest
from dynabatch.batching.policy import BatchPolicy, plan_batches
from dynabatch.config import SchedulerConfig
from dynabatch.types import BatchTrigger, InferenceRequest


@pytest.fixture
def policy():
    return BatchPolicy(max_batch_size=4, preferred_batch_size=4, max_queue_delay_s=0.05)


class TestBatchPolicy:
    def test_invalid_max(self):
        with pytest.raises(ValueError):
            BatchPolicy(0, 1, 0.0)

    def test_invalid_preferred(self):
        with pytest.raises(ValueError):
            BatchPolicy(4, 5, 0.0)

    def test_invalid_delay(self):
        with pytest.raises(ValueError):
            BatchPolicy(4, 4, -0.1)

    def test_from_config(self):
        p = BatchPolicy.from_config(
            SchedulerConfig(max_batch_size=8, preferred_batch_size=2, max_queue_delay_ms=10)
        )
        assert p.max_batch_size == 8
        assert p.preferred_batch_size == 2
        assert p.max_queue_delay_s == pytest.approx(0.01)

    def test_empty_queue_never_triggers(self, policy):
        assert policy.trigger(0, None, 100.0) is None

    def test_preferred_size_trigger(self, policy):
        assert policy.trigger(4, 0.0, 0.0) is BatchTrigger.PREFERRED_SIZE

    def test_waits_below_preferred(self, policy):
        assert policy.trigger(2, 0.0, 0.01) is None

    def test_delay_trigger(self, policy):
        assert policy.trigger(1, 0.0, 0.05) is BatchTrigger.MAX_QUEUE_DELAY

    def test_size_wins_over_delay(self, policy):
        assert policy.trigger(5, 0.0, 1.0) is BatchTrigger.PREFERRED_SIZE

    def test_zero_delay_dispatches_immediately(self):
        p = BatchPolicy(8, 8, 0.0)
        assert p.trigger(1, 3.0, 3.0) is BatchTrigger.MAX_QUEUE_DELAY

    def test_take_respects_max_and_order(self, policy):
        pending = deque(InferenceRequest(payload=i) for i in range(6))
        taken = policy.take(pending)
        assert [r.payload for r in taken] == [0, 1, 2, 3]
        assert [r.payload for r in pending] == [4, 5]

    def test_take_smaller_queue(self, policy):
        pending = deque([InferenceRequest(payload="only")])
        assert len(policy.take(pending)) == 1
        assert not pending


class TestPlanBatches:
    def test_burst_of_ten(self, policy):
        assert plan_batches(policy, [0.0] * 10) == [4, 4, 2]

    def test_single_request(self, policy):
        assert plan_batches(policy, [0.0]) == [1]

    def test_no_arrivals(self, policy):
        assert plan_batches(policy, []) == []

    def test_sparse_arrivals_batch_alone(self, policy):
        assert plan_batches(policy, [0.0, 0.1, 0.2]) == [1, 1, 1]

    def test_arrivals_within_delay_share_batch(self, policy):
        assert plan_batches(policy, [0.0, 0.01, 0.02, 0.2]) == [3, 1]

    def test_preferred_below_max(self):
        p = BatchPolicy(max_batch_size=8, preferred_batch_size=2, max_queue_delay_s=0.05)
        assert plan_batches(p, [0.0] * 5) == [2, 2, 1]

    def test_never_exceeds_max(self, policy):
        sizes = plan_batches(policy, [i * 0.001 for i in range(37)])
        assert sum(sizes) == 37
        assert max(sizes) <= policy.max_batch_size
