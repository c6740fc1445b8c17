"""taskfabric Core -- 基于 git 友好 JSONL 事件日志的任务追踪核心"""

from .config import FabricConfig, FabricPaths, discover_root, load_config, resolve_paths
from .exceptions import (
    ArchiveError,
    EventParseError,
    FabricError,
    FabricRootNotFoundError,
    InvalidOperationError,
    InvalidTransitionError,
    TaskNotFoundError,
)
from .service import TaskService
from .store import StoreGroup, create_store_group, init_root
from .validator import ValidationReport, Validator

__all__ = [
    "FabricConfig",
    "FabricPaths",
    "load_config",
    "discover_root",
    "resolve_paths",
    "FabricError",
    "FabricRootNotFoundError",
    "TaskNotFoundError",
    "InvalidOperationError",
    "InvalidTransitionError",
    "ArchiveError",
    "EventParseError",
    "StoreGroup",
    "create_store_group",
    "init_root",
    "TaskService",
    "Validator",
    "ValidationReport",
]
