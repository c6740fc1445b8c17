"""TaskService -- 任务查询/变更接口

前端（CLI、shell、TUI）只调用这里的方法，从不直接读写日志文件。
查询走缓存（指纹过期时透明重建），变更只追加事件。

写入流程：
1. 校验 operation 结构
2. 解析/生成 task_id，检查目标任务与状态流转
3. 分配 seq（活跃 + 归档中的 MAX + 1）
4. 追加到当日日志文件
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError
from ulid import ULID

from .archiver import Archiver, ArchiveResult, cutoff_from_days
from .config import FabricConfig, FabricPaths, load_config
from .exceptions import InvalidOperationError, InvalidTransitionError, TaskNotFoundError
from .models.diagnostic import Diagnostic
from .models.enums import (
    INVERSE_RELATIONS,
    LinkRelation,
    Resolution,
    TaskStatus,
    validate_transition,
)
from .models.event import Event
from .models.payloads import (
    CompleteOperation,
    CreateOperation,
    LinkOperation,
    Operation,
    ReopenOperation,
    UpdateFieldOperation,
    dump_operation,
    parse_operation,
)
from .models.task import StateSnapshot, Task, TaskFilter, TaskIndexEntry
from .projection import group_events, materialize, rebuild_all
from .store import StoreGroup, init_root
from .validator import ValidationReport, Validator

log = structlog.get_logger()


class TaskService:
    """任务业务服务"""

    def __init__(self, store_group: StoreGroup, config: FabricConfig | None = None) -> None:
        self._stores = store_group
        self._config = config or load_config()

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskIndexEntry]:
        """查询任务摘要列表，按 (created_at, id) 排序"""
        task_filter = task_filter or TaskFilter()
        _, index = materialize(self._stores)
        entries = [e for e in index.tasks.values() if task_filter.matches(e)]
        entries.sort(key=lambda e: (e.created_at, e.id))
        return entries

    def get_task(self, task_id: str) -> Task:
        """查询任务详情

        Raises:
            TaskNotFoundError: 任务不存在
        """
        state, _ = materialize(self._stores)
        task = state.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def history(self, task_id: str) -> list[Event]:
        """任务完整事件历史（活跃 + 归档），按规范排序键有序

        Raises:
            TaskNotFoundError: 没有任何事件
        """
        read = self._stores.event_store.read_records(include_archive=True)
        groups = group_events(
            (r for r in read.records if r.event.task_id == task_id),
            diagnostics=[],
        )
        records = groups.get(task_id)
        if not records:
            raise TaskNotFoundError(task_id)
        return [r.event for r in records]

    # ------------------------------------------------------------------
    # 变更
    # ------------------------------------------------------------------

    def apply(
        self,
        operation: Operation | dict[str, Any],
        task_id: str | None = None,
        *,
        author: str | None = None,
        branch: str | None = None,
        timestamp: datetime | None = None,
    ) -> Event:
        """追加一条操作事件

        Args:
            operation: Operation 模型或原始字典
            task_id: 目标任务；create 时必须为 None
            author: 作者（默认取配置）
            branch: 分支（默认取配置）
            timestamp: 事件时间（默认当前 UTC 时间）

        Returns:
            已写入的 Event（create 携带 blocks/blocked_by 时，
            对方的反向 link 事件随后追加，不在返回值中）

        Raises:
            InvalidOperationError: operation 不合法
            InvalidTransitionError: 非法状态流转
            TaskNotFoundError: 目标任务（或关联目标）不存在
            OSError: 写入失败
        """
        op = self._coerce_operation(operation)
        event_id = str(ULID())

        if isinstance(op, CreateOperation):
            if task_id is not None:
                raise InvalidOperationError("create must not target an existing task_id")
            self._check_create_links(op)
            task_id = event_id
            seq = 1
        else:
            if task_id is None:
                raise InvalidOperationError(f"{op.type} requires a task_id")
            self._check_preconditions(task_id, op)
            seq = self._stores.event_store.get_next_seq(task_id)

        event = Event(
            event_id=event_id,
            task_id=task_id,
            seq=seq,
            timestamp=timestamp or datetime.now(UTC),
            author=author or self._config.author,
            branch=branch if branch is not None else self._config.branch,
            operation=dump_operation(op),
        )
        self._stores.event_store.append_event(event)
        log.info(
            "event_applied",
            task_id=task_id,
            event_id=event_id,
            seq=seq,
            op=op.type,
        )
        if isinstance(op, CreateOperation):
            self._link_inverses(event, op)
        return event

    def create_task(self, title: str, **fields: Any) -> Event:
        """创建任务，返回 create 事件（task_id == event_id）"""
        meta = {k: fields.pop(k) for k in ("author", "branch", "timestamp") if k in fields}
        return self.apply({"type": "create", "title": title, **fields}, **meta)

    def update_field(self, task_id: str, field: str, value: Any, **meta: Any) -> Event:
        return self.apply({"type": "update_field", "field": field, "value": value}, task_id, **meta)

    def assign(self, task_id: str, assignee: str, **meta: Any) -> Event:
        return self.apply({"type": "assign", "assignee": assignee}, task_id, **meta)

    def unassign(self, task_id: str, **meta: Any) -> Event:
        return self.apply({"type": "unassign"}, task_id, **meta)

    def comment(self, task_id: str, body: str, ref: str | None = None, **meta: Any) -> Event:
        return self.apply({"type": "comment", "body": body, "ref": ref}, task_id, **meta)

    def set_stream(self, task_id: str, stream: str | None, **meta: Any) -> Event:
        return self.apply({"type": "set_stream", "stream": stream}, task_id, **meta)

    def complete(
        self,
        task_id: str,
        resolution: Resolution | str = Resolution.DONE,
        **meta: Any,
    ) -> Event:
        return self.apply({"type": "complete", "resolution": resolution}, task_id, **meta)

    def reopen(self, task_id: str, reason: str = "", **meta: Any) -> Event:
        return self.apply({"type": "reopen", "reason": reason}, task_id, **meta)

    def link(self, task_id: str, rel: LinkRelation | str, target: str, **meta: Any) -> list[Event]:
        """建立关联；blocks/blocked_by 同时写入对方的反向关系"""
        return self._link_both("link", task_id, rel, target, meta)

    def unlink(self, task_id: str, rel: LinkRelation | str, target: str, **meta: Any) -> list[Event]:
        """解除关联；blocks/blocked_by 同时解除对方的反向关系"""
        return self._link_both("unlink", task_id, rel, target, meta)

    @staticmethod
    def init_root(root: str | Path) -> FabricPaths:
        """初始化 .fabric 目录结构"""
        return init_root(root)

    # ------------------------------------------------------------------
    # 维护
    # ------------------------------------------------------------------

    def rebuild(self) -> StateSnapshot:
        """无条件重建缓存"""
        state, _ = rebuild_all(self._stores)
        return state

    def archive_tasks(self, cutoff: datetime | None = None, dry_run: bool = False) -> ArchiveResult:
        """归档；cutoff 缺省为配置的 archive_days 天前"""
        if cutoff is None:
            cutoff = cutoff_from_days(self._config.archive_days)
        return Archiver(self._stores).run(cutoff, dry_run=dry_run)

    def archive(self, cutoff: datetime | None = None, dry_run: bool = False) -> int:
        """归档并返回迁移的任务数"""
        return self.archive_tasks(cutoff, dry_run=dry_run).count

    def validation_report(self) -> ValidationReport:
        return Validator(self._stores.event_store).run()

    def validate(self) -> list[Diagnostic]:
        """校验原始日志，返回全部诊断"""
        return self.validation_report().diagnostics

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce_operation(operation: Operation | dict[str, Any]) -> Operation:
        if not isinstance(operation, dict):
            return operation
        try:
            op = parse_operation(operation)
        except ValidationError as e:
            raise InvalidOperationError(f"Invalid operation: {e.errors()[0]['msg']}") from e
        if op is None:
            raise InvalidOperationError(f"Unknown operation type: {operation.get('type')!r}")
        return op

    def _link_both(
        self,
        op_type: str,
        task_id: str,
        rel: LinkRelation | str,
        target: str,
        meta: dict[str, Any],
    ) -> list[Event]:
        events = [self.apply({"type": op_type, "rel": rel, "target": target}, task_id, **meta)]
        inverse = INVERSE_RELATIONS.get(LinkRelation(rel))
        if inverse is None:
            return events
        if op_type == "unlink":
            state, _ = materialize(self._stores)
            if target not in state.tasks:
                # 悬空关联只解除本侧
                return events
        events.append(
            self.apply({"type": op_type, "rel": inverse, "target": task_id}, target, **meta)
        )
        return events

    def _check_create_links(self, op: CreateOperation) -> None:
        """create 携带的关联目标必须已存在"""
        targets = {*op.blocks, *op.blocked_by}
        if op.parent:
            targets.add(op.parent)
        if not targets:
            return
        state, _ = materialize(self._stores)
        for target in sorted(targets):
            if target not in state.tasks:
                raise TaskNotFoundError(target)

    def _link_inverses(self, event: Event, op: CreateOperation) -> None:
        """为 create 中的 blocks/blocked_by 写入对方的反向关系"""
        sides = ((LinkRelation.BLOCKS, op.blocks), (LinkRelation.BLOCKED_BY, op.blocked_by))
        for rel, targets in sides:
            for target in sorted(set(targets)):
                self.apply(
                    {"type": "link", "rel": INVERSE_RELATIONS[rel], "target": event.task_id},
                    target,
                    author=event.author,
                    branch=event.branch,
                    timestamp=event.timestamp,
                )

    def _check_preconditions(self, task_id: str, op: Operation) -> None:
        """写入前检查：目标存在、状态流转合法、关联目标存在"""
        state, _ = materialize(self._stores)
        task = state.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if isinstance(op, CompleteOperation | ReopenOperation):
            to_status = TaskStatus.COMPLETE if isinstance(op, CompleteOperation) else TaskStatus.OPEN
            if not validate_transition(task.status, to_status):
                raise InvalidTransitionError(task_id, task.status, to_status)
        if isinstance(op, UpdateFieldOperation) and not op.is_known_field:
            raise InvalidOperationError(f"Unknown field: {op.field}")
        if isinstance(op, LinkOperation):
            if op.target == task_id:
                raise InvalidOperationError("A task cannot link to itself")
            if op.target not in state.tasks:
                raise TaskNotFoundError(op.target)
