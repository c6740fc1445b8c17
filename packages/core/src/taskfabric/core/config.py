"""配置模块 -- 可通过环境变量覆盖

包含 .fabric 目录布局、根目录发现、作者/分支默认值与归档天数等配置。
作者与分支由外部（git）解析后传入，这里只提供兜底默认值。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from .exceptions import FabricRootNotFoundError

log = structlog.get_logger()

# .fabric 目录名（位于宿主仓库内）
FABRIC_DIR_NAME = ".fabric"

EVENTS_DIR_NAME = "events"
ARCHIVE_DIR_NAME = "archive"
INDEX_FILE_NAME = ".index.json"
STATE_FILE_NAME = ".state.json"
LOG_SUFFIX = ".jsonl"

# 缓存格式版本，升级后旧缓存视为过期
CACHE_FORMAT_VERSION = 1

# 派生文件不进入版本控制
GITIGNORE_CONTENT = """# Derived files - rebuilt from events on checkout/merge
# These are caches for fast queries, not source of truth
.index.json
.state.json

# Temporary files from atomic writes and archival
*.tmp
*.bak
"""


class FabricPaths(BaseModel):
    """.fabric 目录布局"""

    root: Path

    @property
    def events_dir(self) -> Path:
        return self.root / EVENTS_DIR_NAME

    @property
    def archive_dir(self) -> Path:
        return self.root / ARCHIVE_DIR_NAME

    @property
    def index_path(self) -> Path:
        return self.root / INDEX_FILE_NAME

    @property
    def state_path(self) -> Path:
        return self.root / STATE_FILE_NAME

    @property
    def gitignore_path(self) -> Path:
        return self.root / ".gitignore"

    def event_file_for(self, date_str: str) -> Path:
        """活跃日志文件：events/<YYYY-MM-DD>.jsonl"""
        return self.events_dir / f"{date_str}{LOG_SUFFIX}"

    def archive_file_for(self, month_str: str) -> Path:
        """归档文件：archive/<YYYY-MM>.jsonl"""
        return self.archive_dir / f"{month_str}{LOG_SUFFIX}"

    def relative(self, path: Path) -> str:
        """诊断与索引中使用的相对路径（POSIX 形式）"""
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()


class FabricConfig(BaseModel):
    """taskfabric 运行配置 -- 从环境变量加载

    环境变量:
        TASKFABRIC_ROOT: 显式指定 .fabric 目录
        TASKFABRIC_AUTHOR: 默认作者
        TASKFABRIC_BRANCH: 默认分支
        TASKFABRIC_ARCHIVE_DAYS: 完成多少天后归档（默认 30）
    """

    root: Path | None = Field(default=None, description="显式 .fabric 目录")
    author: str = Field(default="unknown", description="默认作者")
    branch: str = Field(default="main", description="默认分支")
    archive_days: int = Field(default=30, ge=0, description="完成后归档天数")


def load_config() -> FabricConfig:
    """从环境变量加载配置

    环境变量映射:
        TASKFABRIC_ROOT -> root
        TASKFABRIC_AUTHOR -> author (默认 "unknown")
        TASKFABRIC_BRANCH -> branch (默认 "main")
        TASKFABRIC_ARCHIVE_DAYS -> archive_days (默认 30)

    Returns:
        FabricConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKFABRIC_ROOT"):
        kwargs["root"] = Path(val)

    if val := os.environ.get("TASKFABRIC_AUTHOR"):
        kwargs["author"] = val

    if val := os.environ.get("TASKFABRIC_BRANCH"):
        kwargs["branch"] = val

    if val := os.environ.get("TASKFABRIC_ARCHIVE_DAYS"):
        try:
            kwargs["archive_days"] = int(val)
        except ValueError:
            log.warning(
                "invalid_archive_days_config",
                env_var="TASKFABRIC_ARCHIVE_DAYS",
                value=val,
                fallback=30,
            )
            # 使用默认值，不阻塞启动

    return FabricConfig(**kwargs)


def discover_root(start: Path | None = None) -> Path:
    """从 start（默认当前目录）向上查找 .fabric 目录

    Raises:
        FabricRootNotFoundError: 一直到文件系统根都没有找到
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        fabric_dir = candidate / FABRIC_DIR_NAME
        if fabric_dir.is_dir():
            return fabric_dir
    raise FabricRootNotFoundError(str(current))


def resolve_paths(config: FabricConfig | None = None, start: Path | None = None) -> FabricPaths:
    """显式配置优先，否则向上发现"""
    config = config or load_config()
    if config.root is not None:
        return FabricPaths(root=config.root)
    return FabricPaths(root=discover_root(start))
