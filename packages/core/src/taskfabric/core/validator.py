"""日志完整性校验

直接读取原始日志文件（活跃 + 归档），从不信任缓存。
每类检查产生独立的诊断分类，并带文件/行号定位：
- 解析错误、缺字段、非法操作、重复 event_id、重复/非单调 seq（结构性错误）
- orphan、非对称关联、悬空关联、未知 schema 版本（警告）
- 并发冲突（仅提示，回放的确定性决胜已给出可用结果）
"""

from collections import defaultdict
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from .models.diagnostic import Diagnostic
from .models.enums import (
    INVERSE_RELATIONS,
    DiagnosticCategory,
    DiagnosticSeverity,
    LinkRelation,
    Resolution,
    TaskStatus,
)
from .models.event import SCHEMA_VERSION
from .models.payloads import (
    AssignOperation,
    CompleteOperation,
    CreateOperation,
    LinkOperation,
    ReopenOperation,
    SetStreamOperation,
    UnassignOperation,
    UpdateFieldOperation,
)
from .models.task import Task
from .projection import replay
from .store.event_log import FileEventStore, LogRecord

log = structlog.get_logger()


class ValidationReport(BaseModel):
    """校验结果"""

    diagnostics: list[Diagnostic] = Field(default_factory=list)
    files_checked: int = 0
    events_checked: int = 0

    def _of(self, severity: DiagnosticSeverity) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == severity]

    @property
    def errors(self) -> list[Diagnostic]:
        return self._of(DiagnosticSeverity.ERROR)

    @property
    def warnings(self) -> list[Diagnostic]:
        return self._of(DiagnosticSeverity.WARNING)

    @property
    def conflicts(self) -> list[Diagnostic]:
        return self._of(DiagnosticSeverity.CONFLICT)

    def ok(self, strict: bool = False) -> bool:
        """结构性错误即失败；strict 模式下警告也失败；冲突从不构成失败"""
        if self.errors:
            return False
        if strict and self.warnings:
            return False
        return True

    def exit_code(self, strict: bool = False) -> int:
        return 0 if self.ok(strict) else 1


def _field_change(op: Any) -> tuple[str, Any] | None:
    """返回操作设置的 (字段, 值)，用于同 seq 并发编辑比较"""
    if isinstance(op, UpdateFieldOperation) and op.is_known_field:
        value = sorted(set(op.value)) if op.field == "tags" else op.value
        return op.field, value
    if isinstance(op, AssignOperation):
        return "assignee", op.assignee
    if isinstance(op, UnassignOperation):
        return "assignee", None
    if isinstance(op, SetStreamOperation):
        return "stream", op.stream
    return None


class Validator:
    """日志校验器"""

    def __init__(self, event_store: FileEventStore) -> None:
        self._event_store = event_store

    def run(self) -> ValidationReport:
        """执行全部检查

        Raises:
            OSError: 日志文件无法读取
        """
        read = self._event_store.read_records(include_archive=True)
        # 回放复用同一套分组/排序，产生解析、重复、orphan、非法操作诊断
        result = replay(read.records, read.diagnostics)
        diagnostics = list(result.diagnostics)

        diagnostics.extend(self._check_schema_versions(read.records))
        diagnostics.extend(self._check_create_ids(result.groups))
        diagnostics.extend(self._check_seq(read.records))
        diagnostics.extend(self._check_links(result.tasks, result.groups))
        diagnostics.extend(self._check_conflicts(result.groups))

        diagnostics.sort(key=Diagnostic.sort_key)
        report = ValidationReport(
            diagnostics=diagnostics,
            files_checked=read.file_count,
            events_checked=len(read.records),
        )
        log.info(
            "validation_completed",
            files=report.files_checked,
            events=report.events_checked,
            errors=len(report.errors),
            warnings=len(report.warnings),
            conflicts=len(report.conflicts),
        )
        return report

    @staticmethod
    def _check_schema_versions(records: list[LogRecord]) -> list[Diagnostic]:
        return [
            Diagnostic.of(
                DiagnosticCategory.UNKNOWN_SCHEMA_VERSION,
                f"Unknown schema version {r.event.v}",
                file=r.file,
                line=r.line,
                task_id=r.event.task_id,
                event_id=r.event.event_id,
            )
            for r in records
            if r.event.v != SCHEMA_VERSION
        ]

    @staticmethod
    def _check_create_ids(groups: dict[str, list[LogRecord]]) -> list[Diagnostic]:
        """create 事件的 task_id 必须等于自身 event_id"""
        found = []
        for records in groups.values():
            for r in records:
                if r.event.is_create and r.event.task_id != r.event.event_id:
                    found.append(
                        Diagnostic.of(
                            DiagnosticCategory.TASK_ID_MISMATCH,
                            f"create event {r.event.event_id} targets task {r.event.task_id}",
                            file=r.file,
                            line=r.line,
                            task_id=r.event.task_id,
                            event_id=r.event.event_id,
                        )
                    )
        return found

    @staticmethod
    def _check_seq(records: list[LogRecord]) -> list[Diagnostic]:
        """seq 检查

        - 同一任务、同一分支出现相同 seq（不同事件）为重复
        - 同一文件内、同一任务同一分支，后出现的行 seq 更小为非单调
        - 不同分支的相同 seq 是分叉的正常结果，由排序键决胜
        - 允许出现空洞（归档会把任务历史拆到不同文件）

        重复判定只看分支名：两个克隆在同名分支（例如都在默认的 main）上
        并发编辑同一任务后合并，会得到 duplicate_seq 错误，而不只是冲突提示。
        避免方式是各克隆使用不同的分支名（TASKFABRIC_BRANCH 或由 git 传入）。
        """
        found = []
        seen: dict[tuple[str, str, int], LogRecord] = {}
        last_in_file: dict[tuple[str, str, str], LogRecord] = {}

        for r in sorted(records, key=lambda rec: (rec.file, rec.line)):
            event = r.event
            seq_key = (event.task_id, event.branch, event.seq)
            first = seen.get(seq_key)
            if first is None:
                seen[seq_key] = r
            elif first.event.event_id != event.event_id:
                found.append(
                    Diagnostic.of(
                        DiagnosticCategory.DUPLICATE_SEQ,
                        f"seq {event.seq} for task {event.task_id} already used by "
                        f"{first.event.event_id} at {first.file}:{first.line}",
                        file=r.file,
                        line=r.line,
                        task_id=event.task_id,
                        event_id=event.event_id,
                    )
                )

            file_key = (r.file, event.task_id, event.branch)
            previous = last_in_file.get(file_key)
            if previous is not None and event.seq < previous.event.seq:
                found.append(
                    Diagnostic.of(
                        DiagnosticCategory.NON_MONOTONIC_SEQ,
                        f"seq {event.seq} for task {event.task_id} follows seq "
                        f"{previous.event.seq} at line {previous.line}",
                        file=r.file,
                        line=r.line,
                        task_id=event.task_id,
                        event_id=event.event_id,
                    )
                )
            if previous is None or event.seq > previous.event.seq:
                last_in_file[file_key] = r
        return found

    @staticmethod
    def _link_origins(groups: dict[str, list[LogRecord]]) -> dict[tuple[str, str, str], LogRecord]:
        """(task_id, 关系, 目标) -> 最后加入该关联的 create/link 事件，用于诊断定位"""
        origins: dict[tuple[str, str, str], LogRecord] = {}
        for task_id, records in groups.items():
            for r in records:
                try:
                    op = r.event.typed_operation()
                except ValidationError:
                    continue
                if isinstance(op, CreateOperation):
                    added = [
                        *((LinkRelation.BLOCKS, t) for t in op.blocks),
                        *((LinkRelation.BLOCKED_BY, t) for t in op.blocked_by),
                    ]
                    if op.parent:
                        added.append((LinkRelation.PARENT, op.parent))
                    for rel, target in added:
                        origins[(task_id, rel.value, target)] = r
                elif isinstance(op, LinkOperation):
                    origins[(task_id, op.rel.value, op.target)] = r
        return origins

    @classmethod
    def _check_links(
        cls,
        tasks: dict[str, Task],
        groups: dict[str, list[LogRecord]],
    ) -> list[Diagnostic]:
        """blocks/blocked_by 必须对称；所有关联目标必须存在

        诊断定位到最后加入该关联的事件。
        """
        origins = cls._link_origins(groups)
        found = []
        for task_id in sorted(tasks):
            task = tasks[task_id]
            for rel in LinkRelation:
                for target in getattr(task.links, rel.value):
                    origin = origins.get((task_id, rel.value, target))
                    location = {
                        "file": origin.file if origin else None,
                        "line": origin.line if origin else None,
                        "task_id": task_id,
                        "event_id": origin.event.event_id if origin else None,
                    }
                    other = tasks.get(target)
                    if other is None:
                        found.append(
                            Diagnostic.of(
                                DiagnosticCategory.DANGLING_LINK,
                                f"Task {task_id} references non-existent {rel.value}: {target}",
                                **location,
                            )
                        )
                        continue
                    inverse = INVERSE_RELATIONS.get(rel)
                    if inverse is not None and task_id not in getattr(other.links, inverse.value):
                        found.append(
                            Diagnostic.of(
                                DiagnosticCategory.ASYMMETRIC_LINK,
                                f"Task {task_id} {rel.value} {target} but {target} "
                                f"does not record {inverse.value} {task_id}",
                                **location,
                            )
                        )
        return found

    @staticmethod
    def _check_conflicts(groups: dict[str, list[LogRecord]]) -> list[Diagnostic]:
        """在合并后的时间线上检测并发冲突

        - 已完成的任务（中间无 reopen）再次以不同 resolution 完成
        - 不同分支以相同 seq 把同一字段设为不同值
        """
        found = []
        for task_id in sorted(groups):
            status = TaskStatus.OPEN
            resolution: Resolution | None = None
            completed_by: LogRecord | None = None
            by_seq: dict[int, list[tuple[LogRecord, tuple[str, Any]]]] = defaultdict(list)

            for r in groups[task_id]:
                try:
                    op = r.event.typed_operation()
                except ValidationError:
                    continue

                if isinstance(op, CompleteOperation):
                    if status == TaskStatus.COMPLETE and op.resolution != resolution:
                        found.append(
                            Diagnostic.of(
                                DiagnosticCategory.CONFLICT,
                                f"Task {task_id} completed as {op.resolution} after "
                                f"{completed_by.event.event_id} completed it as {resolution}; "
                                f"resolution {op.resolution} wins by ordering key",
                                file=r.file,
                                line=r.line,
                                task_id=task_id,
                                event_id=r.event.event_id,
                            )
                        )
                    status, resolution, completed_by = TaskStatus.COMPLETE, op.resolution, r
                elif isinstance(op, ReopenOperation):
                    status, resolution, completed_by = TaskStatus.OPEN, None, None

                change = _field_change(op)
                if change is not None:
                    by_seq[r.event.seq].append((r, change))

            for seq in sorted(by_seq):
                entries = by_seq[seq]
                for i, (later, (field_name, value)) in enumerate(entries):
                    for earlier, (other_field, other_value) in entries[:i]:
                        if (
                            field_name == other_field
                            and value != other_value
                            and later.event.branch != earlier.event.branch
                        ):
                            found.append(
                                Diagnostic.of(
                                    DiagnosticCategory.CONFLICT,
                                    f"Concurrent edits of {field_name} on task {task_id} at seq {seq} "
                                    f"({earlier.event.event_id} vs {later.event.event_id}); "
                                    f"{later.event.event_id} wins by ordering key",
                                    file=later.file,
                                    line=later.line,
                                    task_id=task_id,
                                    event_id=later.event.event_id,
                                )
                            )
                            break
        return found
