"""全局 pytest 配置 -- 临时 .fabric 目录与事件构造 fixture"""

import os
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from taskfabric.core.config import FabricConfig
from taskfabric.core.models.event import Event
from taskfabric.core.service import TaskService
from taskfabric.core.store import StoreGroup, create_store_group, init_root

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    """测试之间不泄漏 TASKFABRIC_* 环境变量"""
    for key in list(os.environ):
        if key.startswith("TASKFABRIC_"):
            monkeypatch.delenv(key)


@pytest.fixture
def fabric_root(tmp_path: Path) -> Path:
    """已初始化的临时 .fabric 目录"""
    root = tmp_path / ".fabric"
    init_root(root)
    return root


@pytest.fixture
def store_group(fabric_root: Path) -> StoreGroup:
    return create_store_group(fabric_root)


@pytest.fixture
def config(fabric_root: Path) -> FabricConfig:
    return FabricConfig(root=fabric_root, author="alice", branch="main", archive_days=30)


@pytest.fixture
def service(store_group: StoreGroup, config: FabricConfig) -> TaskService:
    return TaskService(store_group, config)


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """事件构造工厂：make_event("T1", 2, {"type": "assign", ...})"""

    def _make(
        task_id: str,
        seq: int,
        operation: dict,
        *,
        event_id: str | None = None,
        minutes: int | None = None,
        author: str = "alice",
        branch: str = "main",
    ) -> Event:
        return Event(
            event_id=event_id or (task_id if operation["type"] == "create" else f"{task_id}-E{seq}"),
            task_id=task_id,
            seq=seq,
            timestamp=BASE_TIME + timedelta(minutes=seq if minutes is None else minutes),
            author=author,
            branch=branch,
            operation=operation,
        )

    return _make


@pytest.fixture
def write_log() -> Callable[..., Path]:
    """把事件（及任意原始行）写成一个 JSONL 文件"""

    def _write(path: Path, events: list[Event], extra_lines: list[str] = ()) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [e.to_line() for e in events] + list(extra_lines)
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write
