"""Task Domain Model

Task 是事件日志的物化视图（projection），从不直接持久化，
所有状态更新必须通过写入事件触发。
集合类字段（tags、links）保持排序去重，保证缓存序列化结果确定。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .diagnostic import Diagnostic
from .enums import Priority, Resolution, TaskStatus


class Comment(BaseModel):
    """任务评论"""

    event_id: str = Field(description="产生该评论的事件 ID")
    timestamp: datetime
    author: str
    body: str
    ref: str | None = None


class TaskLinks(BaseModel):
    """任务关联，每种关系为排序去重的 task_id 列表"""

    blocks: list[str] = Field(default_factory=list)
    blocked_by: list[str] = Field(default_factory=list)
    parent: list[str] = Field(default_factory=list)


class Task(BaseModel):
    """Task 数据模型（派生，回放时由事件折叠得到）"""

    id: str = Field(description="唯一标识，等于 create 事件的 event_id")
    title: str
    description: str | None = None
    priority: Priority = Priority.P2
    status: TaskStatus = TaskStatus.OPEN
    resolution: Resolution | None = Field(default=None, description="仅 complete 时有值")
    assignee: str | None = None
    tags: list[str] = Field(default_factory=list)
    stream: str | None = Field(default=None, description="分组标签")
    links: TaskLinks = Field(default_factory=TaskLinks)
    comments: list[Comment] = Field(default_factory=list)
    created_at: datetime
    created_by: str = ""
    created_branch: str = ""
    updated_at: datetime
    completed_at: datetime | None = None
    archived: str | None = Field(default=None, description="全部事件已归档时为归档月份")
    last_seq: int = Field(default=0, description="最后应用的 seq")
    last_event_id: str | None = None
    opaque_operations: list[str] = Field(
        default_factory=list,
        description="未识别操作的事件 ID（向前兼容保留）",
    )


class TaskIndexEntry(BaseModel):
    """轻量索引条目，供快速列表查询"""

    id: str
    title: str
    status: TaskStatus
    priority: Priority
    assignee: str | None = None
    stream: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    archived: str | None = None
    files: list[str] = Field(default_factory=list, description="包含该任务事件的日志文件")


class StateSnapshot(BaseModel):
    """完整状态缓存（.state.json）

    不含任何挂钟时间字段，两次重建结果逐字节一致。
    """

    version: int = Field(default=1, description="缓存格式版本")
    fingerprint: str = Field(description="生成该缓存的日志指纹")
    tasks: dict[str, Task] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class IndexSnapshot(BaseModel):
    """索引缓存（.index.json）"""

    version: int = Field(default=1, description="缓存格式版本")
    fingerprint: str
    tasks: dict[str, TaskIndexEntry] = Field(default_factory=dict)


class TaskFilter(BaseModel):
    """list_tasks 过滤条件，None 表示不过滤"""

    status: TaskStatus | None = None
    assignee: str | None = None
    tag: str | None = None
    priority: Priority | None = None
    stream: str | None = None
    include_archived: bool = False

    def matches(self, entry: TaskIndexEntry) -> bool:
        if self.status is not None and entry.status != self.status:
            return False
        if self.assignee is not None and entry.assignee != self.assignee:
            return False
        if self.tag is not None and self.tag not in entry.tags:
            return False
        if self.priority is not None and entry.priority != self.priority:
            return False
        if self.stream is not None and entry.stream != self.stream:
            return False
        if not self.include_archived and entry.archived is not None:
            return False
        return True
