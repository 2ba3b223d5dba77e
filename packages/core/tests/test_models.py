"""Domain Models 单元测试

测试内容：
1. 枚举取值与封闭集合
2. TaskRecord 落盘格式与过期判定
3. Subscription 游标与匹配
4. 事件 payload 字段透传
"""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError
from taskrelay.core.models import (
    EVENT_TYPES,
    ClaimTaskResult,
    ErrorCode,
    Event,
    EventType,
    Subscription,
    TaskCompletedPayload,
    TaskCreatedPayload,
    TaskRecord,
    TaskStatus,
    TaskType,
    is_known_event_type,
)

NOW = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)


def _record(**overrides) -> TaskRecord:
    fields = {
        "name": "research-acme-ai.json",
        "type": TaskType.RESEARCH,
        "subject_key": "acme-ai",
        "created_at": NOW,
        "payload": {"company": "Acme AI", "job_id": 42},
    }
    fields.update(overrides)
    return TaskRecord(**fields)


class TestEnums:
    """枚举测试"""

    def test_task_status_values(self):
        assert TaskStatus.PENDING == "pending"
        assert TaskStatus.IN_PROGRESS == "in_progress"
        assert len(TaskStatus) == 2

    def test_event_types_closed_set(self):
        assert "task.created" in EVENT_TYPES
        assert "task.released" in EVENT_TYPES
        assert "materials.saved" in EVENT_TYPES
        assert len(EVENT_TYPES) == len(EventType)

    def test_is_known_event_type(self):
        assert is_known_event_type("job.updated")
        assert not is_known_event_type("job.archived")
        assert not is_known_event_type("")


class TestTaskRecord:
    """TaskRecord 测试"""

    def test_defaults_to_pending(self):
        record = _record()
        assert record.status == TaskStatus.PENDING
        assert record.claimed_at is None
        assert record.claimed_by is None
        assert record.is_stale is False

    def test_storage_excludes_view_flag(self):
        data = _record(is_stale=True).to_storage()
        assert "is_stale" not in data
        assert data["status"] == "pending"
        assert data["type"] == "research"
        assert data["payload"] == {"company": "Acme AI", "job_id": 42}

    def test_storage_roundtrip_preserves_timestamps(self):
        record = _record(
            status=TaskStatus.IN_PROGRESS,
            claimed_at=NOW + timedelta(minutes=5),
            claimed_by="worker-A",
        )
        restored = TaskRecord.model_validate(record.to_storage())
        assert restored == record

    def test_invalid_type_rejected(self):
        with pytest.raises(ValidationError):
            _record(type="cleanup")

    def test_pending_never_stale(self):
        assert not _record().is_lock_stale(NOW + timedelta(days=1))

    def test_lock_stale_boundary(self):
        record = _record(status=TaskStatus.IN_PROGRESS, claimed_at=NOW)
        assert not record.is_lock_stale(NOW - timedelta(seconds=1))
        # 恰好等于阈值时仍视为有效持有
        assert not record.is_lock_stale(NOW)
        assert record.is_lock_stale(NOW + timedelta(microseconds=1))
        assert record.is_lock_stale(NOW + timedelta(seconds=1))

    def test_in_progress_without_claimed_at_is_stale(self):
        record = _record(status=TaskStatus.IN_PROGRESS)
        assert record.is_lock_stale(NOW - timedelta(days=1))

    def test_lock_age_seconds(self):
        record = _record(status=TaskStatus.IN_PROGRESS, claimed_at=NOW)
        assert record.lock_age_seconds(NOW + timedelta(minutes=2)) == 120
        assert _record().lock_age_seconds(NOW) is None


class TestSubscription:
    """Subscription 测试"""

    def _event(self, seq: int, event_type: str = "task.created") -> Event:
        return Event(id=f"evt-{seq}", seq=seq, type=event_type, timestamp=NOW)

    def test_mode(self):
        poll_sub = Subscription(id="s1", event_types=[EventType.TASK_CREATED], created_at=NOW)
        hook_sub = Subscription(
            id="s2",
            event_types=[EventType.TASK_CREATED],
            webhook_url="http://hooks.local/in",
            created_at=NOW,
        )
        assert poll_sub.mode == "poll"
        assert hook_sub.mode == "webhook"

    def test_matches_by_type(self):
        sub = Subscription(id="s1", event_types=[EventType.TASK_CREATED], created_at=NOW)
        assert sub.matches(self._event(1, "task.created"))
        assert not sub.matches(self._event(2, "job.created"))

    def test_advance_is_forward_only(self):
        sub = Subscription(id="s1", event_types=[EventType.TASK_CREATED], created_at=NOW)
        sub.advance(self._event(5))
        sub.advance(self._event(3))
        assert sub.last_seq == 5
        assert sub.last_event_id == "evt-5"

    def test_event_is_frozen(self):
        event = self._event(1)
        with pytest.raises(ValidationError):
            event.type = "job.created"


class TestPayloads:
    """事件 payload 测试"""

    def test_created_payload_carries_subject_fields(self):
        payload = TaskCreatedPayload.from_task(_record())
        assert payload.name == "research-acme-ai.json"
        assert payload.type == "research"
        assert payload.subject_key == "acme-ai"
        assert payload.job_id == 42
        assert payload.company == "Acme AI"

    def test_job_id_camel_case_fallback(self):
        payload = TaskCreatedPayload.from_task(_record(payload={"jobId": "j-7"}))
        assert payload.job_id == "j-7"
        assert payload.company is None

    def test_completed_payload_tokens(self):
        tokens = {"input": 1200, "output": 300, "model": "sonnet"}
        payload = TaskCompletedPayload.from_task(_record(), tokens=tokens)
        assert payload.model_dump()["tokens"] == tokens


class TestResults:
    """结构化结果测试"""

    def test_failure_constructor(self):
        result = ClaimTaskResult.failure(
            ErrorCode.ALREADY_CLAIMED,
            "held",
            name="research-acme-ai.json",
            claimed_by="worker-A",
        )
        assert result.success is False
        assert result.error == ErrorCode.ALREADY_CLAIMED
        assert result.claimed_by == "worker-A"
        assert result.task is None
