"""taskfabric 异常体系

单条日志记录的问题只产生 Diagnostic，不抛异常；
此处的异常用于调用方需要立即感知的失败。
磁盘 I/O 失败直接以 OSError 向上传播。
"""

from .models.enums import DiagnosticCategory, TaskStatus


class FabricError(Exception):
    """taskfabric 基础异常"""

    def __init__(self, message: str, recoverable: bool = False) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 调用方修正输入后是否可重试
        """
        super().__init__(message)
        self.recoverable = recoverable


class FabricRootNotFoundError(FabricError):
    """找不到 .fabric 目录"""

    def __init__(self, start: str) -> None:
        super().__init__(
            f"Not in a fabric directory (searched upward from {start}). "
            "Run 'python -m taskfabric.core init' to create one."
        )
        self.start = start


class TaskNotFoundError(FabricError):
    """任务不存在"""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", recoverable=True)
        self.task_id = task_id


class InvalidOperationError(FabricError):
    """写入时 operation 不合法（字段校验失败、目标缺失等）"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=True)


class InvalidTransitionError(InvalidOperationError):
    """非法状态流转，如对已完成任务再次 complete"""

    def __init__(self, task_id: str, from_status: TaskStatus, to_status: TaskStatus) -> None:
        super().__init__(
            f"Cannot transition task {task_id} from {from_status} to {to_status}"
        )
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status


class ArchiveError(FabricError):
    """归档失败，原文件已恢复"""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class EventParseError(FabricError):
    """单行事件解析失败，category 区分 JSON 错误与字段缺失"""

    def __init__(self, category: DiagnosticCategory, message: str) -> None:
        super().__init__(message)
        self.category = category
