"""FileEventStore 单元测试

测试内容：
1. 单行解析与诊断分类
2. 追加写入（按日期分文件、截断行修复）
3. seq 分配（跨活跃与归档）
4. 内容指纹
"""

import shutil
from datetime import UTC, datetime

import pytest

from taskfabric.core.exceptions import EventParseError
from taskfabric.core.models.enums import DiagnosticCategory
from taskfabric.core.store import create_store_group
from taskfabric.core.store.event_log import parse_event_line, split_lines


class TestParseLine:
    """单行解析测试"""

    def test_valid_line(self):
        event = parse_event_line(
            '{"event_id":"E1","task_id":"E1","seq":1,"timestamp":"2026-01-05T09:00:00Z",'
            '"author":"a","operation":{"type":"create","title":"x"}}'
        )
        assert event.event_id == "E1"

    def test_invalid_json(self):
        with pytest.raises(EventParseError) as exc_info:
            parse_event_line('{"event_id": "E1"')
        assert exc_info.value.category == DiagnosticCategory.PARSE_ERROR

    def test_not_an_object(self):
        with pytest.raises(EventParseError) as exc_info:
            parse_event_line("[1, 2]")
        assert exc_info.value.category == DiagnosticCategory.PARSE_ERROR

    def test_missing_field(self):
        with pytest.raises(EventParseError) as exc_info:
            parse_event_line('{"event_id":"E1","task_id":"E1","seq":1,"author":"a","operation":{}}')
        assert exc_info.value.category == DiagnosticCategory.MISSING_FIELD
        assert "timestamp" in str(exc_info.value)

    def test_missing_operation_type(self):
        with pytest.raises(EventParseError) as exc_info:
            parse_event_line(
                '{"event_id":"E1","task_id":"E1","seq":1,"timestamp":"2026-01-05T09:00:00Z",'
                '"author":"a","operation":{"title":"x"}}'
            )
        assert exc_info.value.category == DiagnosticCategory.MISSING_FIELD

    def test_bad_type(self):
        with pytest.raises(EventParseError) as exc_info:
            parse_event_line(
                '{"event_id":"E1","task_id":"E1","seq":"three","timestamp":"2026-01-05T09:00:00Z",'
                '"author":"a","operation":{"type":"create","title":"x"}}'
            )
        assert exc_info.value.category == DiagnosticCategory.PARSE_ERROR

    def test_split_lines(self):
        assert split_lines(b"") == []
        assert split_lines(b"a\nb\n") == [b"a", b"b"]
        assert split_lines(b"a\r\nb") == [b"a", b"b"]
        assert split_lines(b"a\n\nb\n") == [b"a", b"", b"b"]


class TestReadRecords:
    """全量读取测试"""

    def test_bad_lines_become_diagnostics(self, store_group, make_event, write_log):
        """坏行只产生诊断，其余行照常读取"""
        path = store_group.paths.event_file_for("2026-01-05")
        write_log(
            path,
            [make_event("T1", 1, {"type": "create", "title": "a"})],
            extra_lines=["{not json", "", '{"event_id": "E9"}'],
        )
        result = store_group.event_store.read_records()
        assert [r.event.event_id for r in result.records] == ["T1"]
        assert [(d.category, d.line) for d in result.diagnostics] == [
            (DiagnosticCategory.PARSE_ERROR, 2),
            (DiagnosticCategory.MISSING_FIELD, 4),
        ]
        assert result.diagnostics[0].file == "events/2026-01-05.jsonl"
        assert result.file_count == 1

    def test_archive_records_flagged(self, store_group, make_event, write_log):
        write_log(
            store_group.paths.archive_file_for("2025-12"),
            [make_event("T1", 1, {"type": "create", "title": "a"})],
        )
        write_log(
            store_group.paths.event_file_for("2026-01-05"),
            [make_event("T2", 1, {"type": "create", "title": "b"})],
        )
        result = store_group.event_store.read_records(include_archive=True)
        archived = {r.event.task_id: r.archived for r in result.records}
        assert archived == {"T1": True, "T2": False}

        active_only = store_group.event_store.read_records(include_archive=False)
        assert [r.event.task_id for r in active_only.records] == ["T2"]

    def test_ignores_non_jsonl_files(self, store_group, make_event, write_log):
        write_log(
            store_group.paths.event_file_for("2026-01-05"),
            [make_event("T1", 1, {"type": "create", "title": "a"})],
        )
        (store_group.paths.events_dir / "notes.txt").write_text("hello\n")
        assert store_group.event_store.read_records().file_count == 1


class TestAppend:
    """追加写入测试"""

    def test_file_by_event_date(self, store_group, make_event):
        event = make_event("T1", 1, {"type": "create", "title": "a"})
        path = store_group.event_store.append_event(event)
        assert path.name == "2026-01-05.jsonl"
        assert path.read_text(encoding="utf-8") == event.to_line() + "\n"

    def test_appends_without_rewriting(self, store_group, make_event):
        first = make_event("T1", 1, {"type": "create", "title": "a"})
        second = make_event("T1", 2, {"type": "assign", "assignee": "bob"})
        store_group.event_store.append_event(first)
        path = store_group.event_store.append_event(second)
        assert path.read_text(encoding="utf-8").splitlines() == [first.to_line(), second.to_line()]

    def test_truncated_last_line_isolated(self, store_group, make_event):
        """崩溃留下的半行不会与新事件粘连"""
        path = store_group.paths.event_file_for("2026-01-05")
        path.write_bytes(b'{"event_id": "half')
        event = make_event("T1", 1, {"type": "create", "title": "a"})
        store_group.event_store.append_event(event)

        result = store_group.event_store.read_records()
        assert [r.event.event_id for r in result.records] == ["T1"]
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].line == 1

    def test_missing_root(self, make_event, fabric_root):
        group = create_store_group(fabric_root)
        shutil.rmtree(fabric_root)
        with pytest.raises(FileNotFoundError):
            group.event_store.append_event(make_event("T1", 1, {"type": "create", "title": "a"}))

    def test_create_store_group_missing_root(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            create_store_group(tmp_path / "nope")


class TestSeqAndFingerprint:
    """seq 分配与指纹测试"""

    def test_next_seq_spans_archive(self, store_group, make_event, write_log):
        write_log(
            store_group.paths.archive_file_for("2025-12"),
            [
                make_event("T1", 1, {"type": "create", "title": "a"}),
                make_event("T1", 7, {"type": "complete"}),
            ],
        )
        write_log(
            store_group.paths.event_file_for("2026-01-05"),
            [make_event("T1", 3, {"type": "reopen"})],
        )
        assert store_group.event_store.get_next_seq("T1") == 8
        assert store_group.event_store.get_next_seq("unknown") == 1

    def test_fingerprint_tracks_content(self, store_group, make_event):
        empty = store_group.event_store.fingerprint()
        store_group.event_store.append_event(make_event("T1", 1, {"type": "create", "title": "a"}))
        one = store_group.event_store.fingerprint()
        assert one != empty
        assert store_group.event_store.fingerprint() == one
        assert store_group.event_store.read_records().fingerprint == one

    def test_fingerprint_includes_path(self, store_group, make_event, write_log):
        """同样内容换一个文件名，指纹也不同"""
        events = [make_event("T1", 1, {"type": "create", "title": "a"})]
        path = write_log(store_group.paths.event_file_for("2026-01-05"), events)
        before = store_group.event_store.fingerprint()
        path.rename(store_group.paths.event_file_for("2026-01-06"))
        assert store_group.event_store.fingerprint() != before

    def test_timestamp_date_in_utc(self, store_group, make_event):
        event = make_event("T1", 1, {"type": "create", "title": "a"})
        event = event.model_copy(update={"timestamp": datetime(2026, 3, 1, 23, 59, tzinfo=UTC)})
        assert store_group.event_store.append_event(event).name == "2026-03-01.jsonl"
