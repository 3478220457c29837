"""Tests for request, batch and result types."""

import pytest
from dynabatch.errors import BackendError, InvalidStateTransitionError
from dynabatch.types import (
    Batch,
    BatchTrigger,
    InferenceRequest,
    InferenceResult,
    RequestState,
)


def _batched(n=3, batch_id="batch-000001"):
    requests = [InferenceRequest(payload=i, request_id=f"r{i}") for i in range(n)]
    batch = Batch(batch_id=batch_id, requests=requests, trigger=BatchTrigger.PREFERRED_SIZE)
    batch.mark_batched()
    return batch


class TestRequestState:
    def test_terminal_states(self):
        assert RequestState.COMPLETED.is_terminal
        assert RequestState.FAILED.is_terminal
        assert not RequestState.QUEUED.is_terminal
        assert not RequestState.DISPATCHED.is_terminal


class TestInferenceRequest:
    def test_defaults(self):
        req = InferenceRequest(payload="x")
        assert req.state is RequestState.QUEUED
        assert req.request_id
        assert req.batch_id is None
        assert not req.is_done

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError, match="request_id cannot be empty"):
            InferenceRequest(payload="x", request_id="")

    def test_future_cannot_be_cancelled(self):
        req = InferenceRequest(payload="x")
        assert req.future.cancel() is False
        assert req.future.running()

    def test_legal_lifecycle(self):
        req = InferenceRequest(payload="x")
        req.advance(RequestState.BATCHED)
        req.advance(RequestState.DISPATCHED)
        assert req.batched_at is not None
        assert req.dispatched_at >= req.batched_at

    def test_illegal_transition(self):
        req = InferenceRequest(payload="x")
        with pytest.raises(InvalidStateTransitionError):
            req.advance(RequestState.COMPLETED)

    def test_no_transition_out_of_terminal(self):
        req = InferenceRequest(payload="x")
        req.fail(BackendError("boom"))
        with pytest.raises(InvalidStateTransitionError):
            req.advance(RequestState.QUEUED)

    def test_complete_delivers_result(self):
        req = InferenceRequest(payload="x", request_id="r1")
        req.batch_id = "batch-000007"
        req.advance(RequestState.BATCHED)
        req.advance(RequestState.DISPATCHED)

        assert req.complete("y", batch_size=2) is True
        result = req.future.result(timeout=1)
        assert isinstance(result, InferenceResult)
        assert result.output == "y"
        assert result.request_id == "r1"
        assert result.batch_id == "batch-000007"
        assert result.batch_size == 2
        assert result.latency_ms >= result.queue_time_ms >= 0

    def test_exactly_one_outcome(self):
        req = InferenceRequest(payload="x")
        req.advance(RequestState.BATCHED)
        req.advance(RequestState.DISPATCHED)
        assert req.complete("y", batch_size=1) is True
        assert req.fail(BackendError("late")) is False
        assert req.complete("z", batch_size=1) is False
        assert req.future.result(timeout=1).output == "y"

    def test_fail_from_queued(self):
        req = InferenceRequest(payload="x")
        error = BackendError("boom")
        assert req.fail(error) is True
        assert req.state is RequestState.FAILED
        assert req.future.exception(timeout=1) is error


class TestBatch:
    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError, match="at least one request"):
            Batch(batch_id="b", requests=[], trigger=BatchTrigger.DRAIN)

    def test_mark_batched(self):
        batch = _batched(3)
        assert batch.size == 3
        assert batch.inputs == [0, 1, 2]
        assert batch.request_ids == ["r0", "r1", "r2"]
        assert all(r.state is RequestState.BATCHED for r in batch.requests)
        assert all(r.batch_id == "batch-000001" for r in batch.requests)

    def test_complete_is_positional(self):
        batch = _batched(3)
        batch.mark_dispatched()
        assert batch.complete(["a", "b", "c"]) == 3
        outputs = [r.future.result(timeout=1).output for r in batch.requests]
        assert outputs == ["a", "b", "c"]

    def test_fail_is_uniform(self):
        batch = _batched(4)
        batch.mark_dispatched()
        error = BackendError("crash", batch_id=batch.batch_id)
        assert batch.fail(error) == 4
        for req in batch.requests:
            assert req.future.exception(timeout=1) is error

    def test_wait_ms(self):
        batch = _batched(2)
        assert batch.wait_ms >= 0
        assert batch.oldest_arrival == batch.requests[0].arrival_time

    def test_result_to_dict(self):
        result = InferenceResult("r", "out", "b", 1, 1.0, 2.0)
        assert result.to_dict()["batch_id"] == "b"
