"""Domain Models 单元测试

测试内容：
1. 枚举值与状态机流转
2. Event 校验与排序键
3. Operation 判别联合解析
4. TaskFilter 过滤
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from taskfabric.core.models import (
    CATEGORY_SEVERITY,
    CompleteOperation,
    CreateOperation,
    DiagnosticCategory,
    DiagnosticSeverity,
    Event,
    LinkRelation,
    Priority,
    Resolution,
    TaskFilter,
    TaskIndexEntry,
    TaskStatus,
    UpdateFieldOperation,
    parse_operation,
    validate_transition,
)
from taskfabric.core.models.diagnostic import Diagnostic


class TestEnums:
    """枚举值测试"""

    def test_task_status_values(self):
        assert TaskStatus.OPEN == "open"
        assert TaskStatus.COMPLETE == "complete"

    def test_priority_from_string(self):
        assert Priority("p0") == Priority.P0
        assert Priority("p3") == Priority.P3

    def test_every_category_has_severity(self):
        """每个诊断分类都有严重程度"""
        assert set(CATEGORY_SEVERITY) == set(DiagnosticCategory)
        assert CATEGORY_SEVERITY[DiagnosticCategory.ORPHAN] == DiagnosticSeverity.WARNING
        assert CATEGORY_SEVERITY[DiagnosticCategory.CONFLICT] == DiagnosticSeverity.CONFLICT


class TestStateMachine:
    """状态流转测试"""

    def test_open_to_complete(self):
        assert validate_transition(TaskStatus.OPEN, TaskStatus.COMPLETE)

    def test_complete_to_open(self):
        assert validate_transition(TaskStatus.COMPLETE, TaskStatus.OPEN)

    def test_self_transition_invalid(self):
        assert not validate_transition(TaskStatus.COMPLETE, TaskStatus.COMPLETE)
        assert not validate_transition(TaskStatus.OPEN, TaskStatus.OPEN)


class TestEvent:
    """Event 模型测试"""

    def _event(self, **overrides) -> Event:
        data = {
            "event_id": "E1",
            "task_id": "E1",
            "seq": 1,
            "timestamp": "2026-01-05T09:00:00Z",
            "author": "alice",
            "operation": {"type": "create", "title": "Write docs"},
        }
        data.update(overrides)
        return Event.model_validate(data)

    def test_defaults(self):
        """v 与 branch 有默认值"""
        event = self._event()
        assert event.v == 1
        assert event.branch == ""
        assert event.is_create

    def test_naive_timestamp_is_utc(self):
        event = self._event(timestamp="2026-01-05T09:00:00")
        assert event.timestamp.tzinfo is not None
        assert event.timestamp == datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def test_offset_timestamp_normalized(self):
        tz = timezone(timedelta(hours=8))
        event = self._event(timestamp=datetime(2026, 1, 5, 17, 0, tzinfo=tz))
        assert event.timestamp == datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
        assert event.timestamp.utcoffset() == timedelta(0)

    def test_seq_must_be_positive(self):
        with pytest.raises(ValidationError):
            self._event(seq=0)

    def test_operation_requires_type(self):
        with pytest.raises(ValidationError):
            self._event(operation={"title": "x"})

    def test_order_key(self):
        """排序键为 (seq, timestamp, event_id)"""
        a = self._event(event_id="B", seq=2)
        b = self._event(event_id="A", seq=2)
        c = self._event(event_id="C", seq=1, timestamp="2026-02-01T00:00:00Z")
        ordered = sorted([a, b, c], key=lambda e: e.order_key)
        assert [e.event_id for e in ordered] == ["C", "A", "B"]

    def test_to_line_roundtrip(self):
        event = self._event()
        line = event.to_line()
        assert "\n" not in line
        assert Event.model_validate_json(line) == event


class TestOperations:
    """Operation 解析测试"""

    def test_parse_create_defaults(self):
        op = parse_operation({"type": "create", "title": "T"})
        assert isinstance(op, CreateOperation)
        assert op.priority == Priority.P2
        assert op.tags == []

    def test_unknown_type_returns_none(self):
        assert parse_operation({"type": "estimate", "points": 3}) is None

    def test_extra_fields_ignored(self):
        op = parse_operation({"type": "complete", "resolution": "wontfix", "future": 1})
        assert isinstance(op, CompleteOperation)
        assert op.resolution == Resolution.WONTFIX

    def test_invalid_known_operation_raises(self):
        with pytest.raises(ValidationError):
            parse_operation({"type": "link", "rel": "sibling", "target": "T2"})
        with pytest.raises(ValidationError):
            parse_operation({"type": "create", "title": ""})

    def test_update_priority_coerced(self):
        op = parse_operation({"type": "update_field", "field": "priority", "value": "p1"})
        assert isinstance(op, UpdateFieldOperation)
        assert op.value == Priority.P1

    def test_update_field_value_checked(self):
        with pytest.raises(ValidationError):
            parse_operation({"type": "update_field", "field": "tags", "value": "not-a-list"})
        with pytest.raises(ValidationError):
            parse_operation({"type": "update_field", "field": "priority", "value": "urgent"})

    def test_unknown_field_kept(self):
        """未知字段名不校验，交给回放作为不透明操作"""
        op = parse_operation({"type": "update_field", "field": "estimate", "value": 5})
        assert isinstance(op, UpdateFieldOperation)
        assert not op.is_known_field

    def test_link_relation(self):
        op = parse_operation({"type": "link", "rel": "blocked_by", "target": "T2"})
        assert op.rel == LinkRelation.BLOCKED_BY


class TestTaskFilter:
    """TaskFilter 过滤测试"""

    def _entry(self, **overrides) -> TaskIndexEntry:
        now = datetime(2026, 1, 5, tzinfo=UTC)
        data = {
            "id": "T1",
            "title": "t",
            "status": TaskStatus.OPEN,
            "priority": Priority.P2,
            "created_at": now,
            "updated_at": now,
        }
        data.update(overrides)
        return TaskIndexEntry(**data)

    def test_default_excludes_archived(self):
        assert TaskFilter().matches(self._entry())
        assert not TaskFilter().matches(self._entry(archived="2026-01"))
        assert TaskFilter(include_archived=True).matches(self._entry(archived="2026-01"))

    def test_field_filters(self):
        entry = self._entry(assignee="bob", tags=["docs"], stream="web")
        assert TaskFilter(assignee="bob", tag="docs", stream="web").matches(entry)
        assert not TaskFilter(assignee="alice").matches(entry)
        assert not TaskFilter(tag="ops").matches(entry)
        assert not TaskFilter(status=TaskStatus.COMPLETE).matches(entry)
        assert not TaskFilter(priority=Priority.P0).matches(entry)


class TestDiagnostic:
    """Diagnostic 模型测试"""

    def test_of_sets_severity(self):
        diag = Diagnostic.of(DiagnosticCategory.PARSE_ERROR, "bad", file="events/a.jsonl", line=3)
        assert diag.severity == DiagnosticSeverity.ERROR
        assert diag.location == "events/a.jsonl:3"

    def test_location_without_file(self):
        assert Diagnostic.of(DiagnosticCategory.DANGLING_LINK, "x").location == ""
