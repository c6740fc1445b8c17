"""Projection 回放模块

从事件日志重建 Task 状态（物化视图）与索引，确保事件溯源的一致性。

日志文件经 git merge 后物理行序不可控，因此回放完全不依赖文件/行位置：
1. 逐行独立解析，坏行记为诊断并跳过
2. 按 event_id 去重（merge 可能产生重复行）
3. 按 task_id 分组，组内按 (seq, timestamp, event_id) 排序
4. 用纯函数 apply_event 折叠；create 之前的事件记为 orphan
5. 未知操作类型作为不透明操作保留
"""

import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import structlog
from pydantic import ValidationError

from .config import CACHE_FORMAT_VERSION
from .models.diagnostic import Diagnostic
from .models.enums import DiagnosticCategory, LinkRelation, TaskStatus, UpdatableField
from .models.event import Event
from .models.payloads import (
    AssignOperation,
    CommentOperation,
    CompleteOperation,
    CreateOperation,
    LinkOperation,
    ReopenOperation,
    SetStreamOperation,
    UnassignOperation,
    UnlinkOperation,
    UpdateFieldOperation,
)
from .models.task import (
    Comment,
    IndexSnapshot,
    StateSnapshot,
    Task,
    TaskIndexEntry,
    TaskLinks,
)
from .store import StoreGroup
from .store.event_log import LogRecord

log = structlog.get_logger()


@dataclass
class ReplayResult:
    """一次回放的输出"""

    tasks: dict[str, Task] = field(default_factory=dict)
    groups: dict[str, list[LogRecord]] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    event_count: int = 0


def _sorted_unique(values: Iterable[str]) -> list[str]:
    return sorted(set(values))


def group_events(
    records: Iterable[LogRecord],
    diagnostics: list[Diagnostic],
) -> dict[str, list[LogRecord]]:
    """按 event_id 去重并按 task_id 分组，组内按规范排序键有序

    重复 event_id 保留 (排序键, 文件, 行号) 最小的一份，其余记为诊断。
    """
    kept: dict[str, LogRecord] = {}
    ordered = sorted(records, key=lambda r: (r.event.order_key, r.file, r.line))
    for record in ordered:
        event = record.event
        first = kept.get(event.event_id)
        if first is not None:
            diagnostics.append(
                Diagnostic.of(
                    DiagnosticCategory.DUPLICATE_EVENT_ID,
                    f"Duplicate event_id {event.event_id} (first seen at {first.file}:{first.line})",
                    file=record.file,
                    line=record.line,
                    task_id=event.task_id,
                    event_id=event.event_id,
                )
            )
            continue
        kept[event.event_id] = record

    groups: dict[str, list[LogRecord]] = defaultdict(list)
    # kept 按插入顺序（已排序）遍历，组内自然有序
    for record in kept.values():
        groups[record.event.task_id].append(record)
    return dict(groups)


def _apply_link(links: TaskLinks, rel: LinkRelation, target: str, add: bool) -> TaskLinks:
    current = set(getattr(links, rel.value))
    if add:
        current.add(target)
    else:
        current.discard(target)
    return links.model_copy(update={rel.value: sorted(current)})


def apply_event(
    tasks: dict[str, Task],
    event: Event,
    diagnostics: list[Diagnostic] | None = None,
    *,
    file: str | None = None,
    line: int | None = None,
) -> None:
    """将单个事件应用到 Task 状态（内存中操作）

    调用方负责按规范排序键传入同一任务的事件。

    Args:
        tasks: task_id -> Task 的映射表（会被就地修改）
        event: 要应用的事件
        diagnostics: 诊断收集列表
        file: 事件来源文件（用于诊断定位）
        line: 事件来源行号
    """
    diags = diagnostics if diagnostics is not None else []
    task_id = event.task_id

    def report(category: DiagnosticCategory, message: str) -> None:
        diags.append(
            Diagnostic.of(
                category,
                message,
                file=file,
                line=line,
                task_id=task_id,
                event_id=event.event_id,
            )
        )

    try:
        op = event.typed_operation()
    except ValidationError as e:
        report(
            DiagnosticCategory.INVALID_OPERATION,
            f"Invalid {event.operation_type} operation: {e.errors()[0]['msg']}",
        )
        return

    if isinstance(op, CreateOperation):
        if task_id in tasks:
            report(
                DiagnosticCategory.DUPLICATE_CREATE,
                f"Duplicate create for task {task_id} ignored",
            )
            return
        tasks[task_id] = Task(
            id=task_id,
            title=op.title,
            description=op.description,
            priority=op.priority,
            tags=_sorted_unique(op.tags),
            assignee=op.assignee,
            stream=op.stream,
            links=TaskLinks(
                blocks=_sorted_unique(op.blocks),
                blocked_by=_sorted_unique(op.blocked_by),
                parent=[op.parent] if op.parent else [],
            ),
            created_at=event.timestamp,
            created_by=event.author,
            created_branch=event.branch,
            updated_at=event.timestamp,
            last_seq=event.seq,
            last_event_id=event.event_id,
        )
        return

    task = tasks.get(task_id)
    if task is None:
        report(
            DiagnosticCategory.ORPHAN,
            f"{event.operation_type} for task {task_id} has no prior create",
        )
        return

    update: dict = {
        "updated_at": event.timestamp,
        "last_seq": event.seq,
        "last_event_id": event.event_id,
    }

    if op is None or (isinstance(op, UpdateFieldOperation) and not op.is_known_field):
        # 未知操作或未知字段：保留为不透明操作，不影响已知字段
        update["opaque_operations"] = [*task.opaque_operations, event.event_id]
    elif isinstance(op, UpdateFieldOperation):
        if op.field == UpdatableField.TAGS:
            update["tags"] = _sorted_unique(op.value)
        else:
            update[op.field] = op.value
    elif isinstance(op, AssignOperation):
        update["assignee"] = op.assignee
    elif isinstance(op, UnassignOperation):
        update["assignee"] = None
    elif isinstance(op, CommentOperation):
        comment = Comment(
            event_id=event.event_id,
            timestamp=event.timestamp,
            author=event.author,
            body=op.body,
            ref=op.ref,
        )
        update["comments"] = [*task.comments, comment]
    elif isinstance(op, LinkOperation):
        update["links"] = _apply_link(task.links, op.rel, op.target, add=True)
    elif isinstance(op, UnlinkOperation):
        update["links"] = _apply_link(task.links, op.rel, op.target, add=False)
    elif isinstance(op, SetStreamOperation):
        update["stream"] = op.stream
    elif isinstance(op, CompleteOperation):
        # 已完成任务再次 complete 时后者覆盖（确定性决胜），冲突由 Validator 报告
        update["status"] = TaskStatus.COMPLETE
        update["resolution"] = op.resolution
        update["completed_at"] = event.timestamp
    elif isinstance(op, ReopenOperation):
        update["status"] = TaskStatus.OPEN
        update["resolution"] = None
        update["completed_at"] = None

    tasks[task_id] = task.model_copy(update=update)


def _archive_month(records: list[LogRecord]) -> str | None:
    """任务全部事件都在归档文件中时，返回最新的归档月份"""
    if not records or not all(r.archived for r in records):
        return None
    return max(PurePosixPath(r.file).stem for r in records)


def replay(
    records: Iterable[LogRecord],
    parse_diagnostics: Iterable[Diagnostic] = (),
) -> ReplayResult:
    """折叠全部事件为 Task 状态

    单条坏记录只产生诊断，永不中断整个回放。
    """
    result = ReplayResult(diagnostics=list(parse_diagnostics))
    result.groups = group_events(records, result.diagnostics)

    for task_id in sorted(result.groups):
        group = result.groups[task_id]
        result.event_count += len(group)
        for record in group:
            apply_event(
                result.tasks,
                record.event,
                result.diagnostics,
                file=record.file,
                line=record.line,
            )
        task = result.tasks.get(task_id)
        if task is not None:
            archived = _archive_month(group)
            if archived is not None:
                result.tasks[task_id] = task.model_copy(update={"archived": archived})

    result.diagnostics.sort(key=Diagnostic.sort_key)
    log.debug(
        "replay_completed",
        event_count=result.event_count,
        task_count=len(result.tasks),
        diagnostic_count=len(result.diagnostics),
    )
    return result


def build_index(
    tasks: dict[str, Task],
    groups: dict[str, list[LogRecord]],
) -> dict[str, TaskIndexEntry]:
    """从回放结果构建轻量索引"""
    index: dict[str, TaskIndexEntry] = {}
    for task_id in sorted(tasks):
        task = tasks[task_id]
        index[task_id] = TaskIndexEntry(
            id=task.id,
            title=task.title,
            status=task.status,
            priority=task.priority,
            assignee=task.assignee,
            stream=task.stream,
            tags=task.tags,
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
            archived=task.archived,
            files=_sorted_unique(r.file for r in groups.get(task_id, [])),
        )
    return index


def rebuild_all(store_group: StoreGroup) -> tuple[StateSnapshot, IndexSnapshot]:
    """从日志重建状态与索引缓存（忽略现有缓存）

    流程：
    1. 读取活跃 + 归档日志，同时计算输入指纹
    2. 在内存中回放所有事件
    3. 构建索引
    4. 原子替换写入 .state.json / .index.json

    Returns:
        (StateSnapshot, IndexSnapshot)
    """
    start_time = time.monotonic()

    read = store_group.event_store.read_records(include_archive=True)
    log.info(
        "projection_rebuild_started",
        file_count=read.file_count,
        record_count=len(read.records),
    )

    result = replay(read.records, read.diagnostics)
    state = StateSnapshot(
        version=CACHE_FORMAT_VERSION,
        fingerprint=read.fingerprint,
        tasks=dict(sorted(result.tasks.items())),
        diagnostics=result.diagnostics,
    )
    index = IndexSnapshot(
        version=CACHE_FORMAT_VERSION,
        fingerprint=read.fingerprint,
        tasks=build_index(result.tasks, result.groups),
    )
    store_group.cache_store.save(state, index)

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    log.info(
        "projection_rebuild_completed",
        event_count=result.event_count,
        task_count=len(result.tasks),
        diagnostic_count=len(result.diagnostics),
        elapsed_ms=elapsed_ms,
    )
    return state, index


def materialize(store_group: StoreGroup) -> tuple[StateSnapshot, IndexSnapshot]:
    """读取缓存；指纹不一致、缺失或损坏时透明重建"""
    fingerprint = store_group.event_store.fingerprint(include_archive=True)
    state = store_group.cache_store.load_state(fingerprint)
    index = store_group.cache_store.load_index(fingerprint)
    if state is not None and index is not None:
        return state, index
    log.info("projection_cache_miss", reason="stale_or_missing")
    return rebuild_all(store_group)
