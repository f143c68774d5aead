"""
Tests for queue models and the job state machine.
"""

import pytest
from datetime import datetime, timedelta, timezone

from core.exceptions import InvalidConfigError, InvalidJobTransitionError
from job_queue import BackoffType, JobState, JobStateMachine, QueueConfig, QueueJob, RetryPolicy


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_job(state: JobState = JobState.WAITING, attempt: int = 0) -> QueueJob:
    return QueueJob(
        id="job-1",
        queue_name="tx-queue",
        kind="Withdraw",
        payload={"amount": "1"},
        state=state,
        attempt=attempt,
        created_at=NOW,
        available_at=NOW,
    )


# =============================================================
# TEST: RetryPolicy
# =============================================================

class TestRetryPolicy:
    """Test attempt budget and backoff."""

    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.attempts == 5
        assert policy.backoff == BackoffType.EXPONENTIAL
        assert policy.base_delay_ms == 1000

    def test_exponential_delays(self):
        policy = RetryPolicy()

        assert [policy.delay_ms(n) for n in range(1, 5)] == [1000, 2000, 4000, 8000]

    def test_fixed_delays(self):
        policy = RetryPolicy(backoff=BackoffType.FIXED, base_delay_ms=250)

        assert [policy.delay_ms(n) for n in range(1, 4)] == [250, 250, 250]

    def test_can_retry(self):
        policy = RetryPolicy(attempts=5)

        assert policy.can_retry(4)
        assert not policy.can_retry(5)

    def test_validate_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0).validate()

    def test_dict_round_trip(self):
        policy = RetryPolicy(attempts=3, backoff=BackoffType.FIXED, base_delay_ms=10)

        assert RetryPolicy.from_dict(policy.to_dict()) == policy


# =============================================================
# TEST: QueueJob
# =============================================================

class TestQueueJob:
    """Test job serialization."""

    def test_dict_round_trip(self):
        job = make_job(JobState.DELAYED, attempt=2)
        job.errors.append("boom")
        job.last_error = "boom"

        restored = QueueJob.from_dict(job.to_dict())

        assert restored.state == JobState.DELAYED
        assert restored.attempt == 2
        assert restored.errors == ["boom"]
        assert restored.available_at == NOW
        assert restored.attempts_remaining == 3


# =============================================================
# TEST: JobStateMachine
# =============================================================

class TestJobStateMachine:
    """Test guarded transitions."""

    def test_delivery_increments_attempt(self):
        job = make_job()

        JobStateMachine().transition(job, JobState.ACTIVE, NOW)

        assert job.state == JobState.ACTIVE
        assert job.attempt == 1
        assert job.processed_at == NOW

    def test_delay_sets_available_at(self):
        job = make_job(JobState.ACTIVE, attempt=1)
        later = NOW + timedelta(seconds=1)

        JobStateMachine().transition(job, JobState.DELAYED, NOW, error="boom", available_at=later)

        assert job.available_at == later
        assert job.last_error == "boom"
        assert job.attempt == 1

    def test_completed_is_final(self):
        job = make_job(JobState.COMPLETED, attempt=1)

        with pytest.raises(InvalidJobTransitionError):
            JobStateMachine().transition(job, JobState.ACTIVE, NOW)

    def test_waiting_cannot_complete(self):
        with pytest.raises(InvalidJobTransitionError):
            JobStateMachine().transition(make_job(), JobState.COMPLETED, NOW)

    def test_requeue_resets_attempts(self):
        job = make_job(JobState.FAILED, attempt=5)
        job.finished_at = NOW

        JobStateMachine().transition(job, JobState.WAITING, NOW)

        assert job.attempt == 0
        assert job.finished_at is None


# =============================================================
# TEST: QueueConfig
# =============================================================

class TestQueueConfig:
    """Test environment loading."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("QUEUE_BACKEND", "sql")
        monkeypatch.setenv("QUEUE_ATTEMPTS", "3")
        monkeypatch.setenv("REDIS_PASSWORD", "supersecret")

        config = QueueConfig.from_env()

        assert config.backend == "sql"
        assert config.retry_policy.attempts == 3
        assert "supersecret" not in str(config.to_safe_dict())

    def test_invalid_backend(self, monkeypatch):
        monkeypatch.setenv("QUEUE_BACKEND", "kafka")

        with pytest.raises(InvalidConfigError):
            QueueConfig.from_env()

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("REDIS_PORT", "six")

        with pytest.raises(InvalidConfigError):
            QueueConfig.from_env()
