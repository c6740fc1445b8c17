"""归档模块

把完成时间早于截止点的任务的完整事件历史，从活跃日志迁移到月度归档文件
（archive/<YYYY-MM>.jsonl），并压缩活跃日志。

整个过程对外部观察者原子：新归档文件与改写后的活跃文件先写到临时位置，
再统一替换；任一步失败则恢复全部原文件，不会丢失或重复事件。
"""

from collections import defaultdict
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from .exceptions import ArchiveError
from .models.enums import TaskStatus
from .models.task import Task
from .projection import replay
from .store import StoreGroup
from .store.event_log import LogLine
from .store.transaction import FileTransaction

log = structlog.get_logger()


def start_of_month(now: datetime | None = None) -> datetime:
    """当月第一天 00:00 UTC，作为“早于本月”的截止点"""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def cutoff_from_days(days: int, now: datetime | None = None) -> datetime:
    """完成超过 days 天的任务的截止点"""
    now = (now or datetime.now(UTC)).astimezone(UTC)
    return now - timedelta(days=days)


class ArchiveResult(BaseModel):
    """归档结果"""

    task_ids: list[str] = Field(default_factory=list, description="迁移的任务")
    months: dict[str, list[str]] = Field(
        default_factory=dict,
        description="归档月份 -> 任务 ID",
    )
    moved_events: int = Field(default=0, description="迁移的事件行数")
    dry_run: bool = False

    @property
    def count(self) -> int:
        return len(self.task_ids)


class Archiver:
    """归档器 -- 直接操作日志文件，绕过缓存，完成后使缓存失效"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    def select_tasks(self, cutoff: datetime) -> list[Task]:
        """已完成、完成时间早于 cutoff 且仍有事件在活跃日志中的任务"""
        read = self._stores.event_store.read_records(include_archive=True)
        result = replay(read.records, read.diagnostics)
        active_ids = {
            task_id
            for task_id, records in result.groups.items()
            if any(not r.archived for r in records)
        }
        candidates = [
            task
            for task in result.tasks.values()
            if task.status == TaskStatus.COMPLETE
            and task.completed_at is not None
            and task.completed_at < cutoff
            and task.id in active_ids
        ]
        candidates.sort(key=lambda t: (t.completed_at, t.id))
        return candidates

    def run(self, cutoff: datetime, dry_run: bool = False) -> ArchiveResult:
        """执行归档

        Args:
            cutoff: 完成时间早于此时刻的任务被归档
            dry_run: 仅返回计划，不修改文件

        Returns:
            ArchiveResult

        Raises:
            ArchiveError: 文件替换失败（原文件已恢复）
            OSError: 读取日志失败
        """
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=UTC)
        tasks = self.select_tasks(cutoff)
        month_of = {t.id: t.completed_at.strftime("%Y-%m") for t in tasks}

        months: dict[str, list[str]] = defaultdict(list)
        for task in tasks:
            months[month_of[task.id]].append(task.id)
        result = ArchiveResult(
            task_ids=[t.id for t in tasks],
            months=dict(sorted(months.items())),
            dry_run=dry_run,
        )
        if not tasks:
            log.info("archive_nothing_to_do", cutoff=cutoff.isoformat())
            return result

        txn, moved = self._plan(month_of)
        result.moved_events = moved
        if dry_run:
            log.info("archive_dry_run", task_count=result.count, moved_events=moved)
            return result

        try:
            txn.commit()
        except OSError as e:
            log.error("archive_failed", error_type=type(e).__name__)
            raise ArchiveError(f"Archive failed, original files restored: {e}", e) from e

        self._stores.cache_store.invalidate()
        log.info(
            "archive_completed",
            task_count=result.count,
            moved_events=moved,
            months=list(result.months),
        )
        return result

    def _plan(self, month_of: dict[str, str]) -> tuple[FileTransaction, int]:
        """构建文件事务：先追加归档文件，再改写活跃文件

        替换顺序保证进程中途被杀时最多出现重复事件（回放按 event_id 去重），
        而不会丢失事件。
        """
        event_store = self._stores.event_store
        paths = self._stores.paths
        txn = FileTransaction()

        # month -> 待迁移行；活跃文件 -> 保留行（None 表示删除）
        moving: dict[str, list[LogLine]] = defaultdict(list)
        rewrites: list[tuple[Path, bytes | None]] = []
        moved = 0
        for path in event_store.event_files():
            kept: list[bytes] = []
            changed = False
            for line in event_store.read_lines(path):
                task_id = line.event.task_id if line.event is not None else None
                if task_id in month_of:
                    moving[month_of[task_id]].append(line)
                    changed = True
                    moved += 1
                else:
                    # 坏行、空行与其他任务的事件按原顺序原样保留
                    kept.append(line.raw)
            if changed:
                has_content = any(raw.strip() for raw in kept)
                rewrites.append((path, _join(kept) if has_content else None))

        for month, lines in sorted(moving.items()):
            target = paths.archive_file_for(month)
            existing = target.read_bytes() if target.exists() else b""
            # 崩溃后重跑时，已在归档中的事件不再重复写入
            present = {
                ln.event.event_id
                for ln in (event_store.read_lines(target) if existing else [])
                if ln.event is not None
            }
            ordered = sorted(
                lines,
                key=lambda ln: (ln.event.task_id, ln.event.order_key),
            )
            appended: list[bytes] = []
            for ln in ordered:
                if ln.event.event_id not in present:
                    present.add(ln.event.event_id)
                    appended.append(ln.raw)
            txn.stage_write(target, _append(existing, appended))

        for path, data in rewrites:
            if data is None:
                txn.stage_delete(path)
            else:
                txn.stage_write(path, data)

        return txn, moved


def _join(lines: list[bytes]) -> bytes:
    return b"".join(raw + b"\n" for raw in lines)


def _append(existing: bytes, lines: list[bytes]) -> bytes:
    if existing and not existing.endswith(b"\n"):
        existing += b"\n"
    return existing + _join(lines)
