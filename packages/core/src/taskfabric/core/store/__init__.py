"""taskfabric Core Store -- JSONL 日志与派生缓存

提供工厂函数创建共享同一 .fabric 目录的 Store 实例组。
"""

from pathlib import Path

import structlog

from ..config import GITIGNORE_CONTENT, FabricPaths
from .cache_store import CacheStore, dump_snapshot
from .event_log import FileEventStore, LogLine, LogReadResult, LogRecord, parse_event_line
from .transaction import FileTransaction, atomic_write_bytes

log = structlog.get_logger()


class StoreGroup:
    """Store 实例组 -- 共享同一个 .fabric 目录"""

    def __init__(self, paths: FabricPaths) -> None:
        self.paths = paths
        self.event_store = FileEventStore(paths)
        self.cache_store = CacheStore(paths)


def create_store_group(root: str | Path) -> StoreGroup:
    """创建 Store 实例组

    Args:
        root: .fabric 目录路径

    Returns:
        StoreGroup 实例

    Raises:
        FileNotFoundError: 目录不存在
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise FileNotFoundError(f"Fabric root does not exist: {root_path}")
    return StoreGroup(FabricPaths(root=root_path))


def init_root(root: str | Path) -> FabricPaths:
    """初始化 .fabric 目录结构（events/、archive/、.gitignore）

    Raises:
        FileExistsError: 目录已存在
    """
    paths = FabricPaths(root=Path(root))
    if paths.root.exists():
        raise FileExistsError(f"{paths.root} already exists")

    paths.events_dir.mkdir(parents=True)
    paths.archive_dir.mkdir()
    paths.gitignore_path.write_text(GITIGNORE_CONTENT, encoding="utf-8")

    log.info("fabric_initialized", root=str(paths.root))
    return paths


__all__ = [
    "StoreGroup",
    "create_store_group",
    "init_root",
    "FileEventStore",
    "CacheStore",
    "FileTransaction",
    "LogLine",
    "LogRecord",
    "LogReadResult",
    "atomic_write_bytes",
    "dump_snapshot",
    "parse_event_line",
]
