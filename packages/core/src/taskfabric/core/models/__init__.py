"""taskfabric Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .diagnostic import Diagnostic
from .enums import (
    CATEGORY_SEVERITY,
    INVERSE_RELATIONS,
    VALID_TRANSITIONS,
    DiagnosticCategory,
    DiagnosticSeverity,
    LinkRelation,
    OperationType,
    Priority,
    Resolution,
    TaskStatus,
    UpdatableField,
    validate_transition,
)
from .event import REQUIRED_FIELDS, SCHEMA_VERSION, Event, OrderKey
from .payloads import (
    AssignOperation,
    CommentOperation,
    CompleteOperation,
    CreateOperation,
    LinkOperation,
    Operation,
    ReopenOperation,
    SetStreamOperation,
    UnassignOperation,
    UnlinkOperation,
    UpdateFieldOperation,
    dump_operation,
    parse_operation,
)
from .task import (
    Comment,
    IndexSnapshot,
    StateSnapshot,
    Task,
    TaskFilter,
    TaskIndexEntry,
    TaskLinks,
)

__all__ = [
    # 枚举
    "TaskStatus",
    "OperationType",
    "Priority",
    "Resolution",
    "LinkRelation",
    "UpdatableField",
    "DiagnosticCategory",
    "DiagnosticSeverity",
    "CATEGORY_SEVERITY",
    "INVERSE_RELATIONS",
    # 状态机
    "VALID_TRANSITIONS",
    "validate_transition",
    # Event
    "Event",
    "OrderKey",
    "REQUIRED_FIELDS",
    "SCHEMA_VERSION",
    # Operations
    "Operation",
    "CreateOperation",
    "UpdateFieldOperation",
    "AssignOperation",
    "UnassignOperation",
    "CommentOperation",
    "LinkOperation",
    "UnlinkOperation",
    "SetStreamOperation",
    "CompleteOperation",
    "ReopenOperation",
    "parse_operation",
    "dump_operation",
    # Task
    "Task",
    "TaskLinks",
    "Comment",
    "TaskIndexEntry",
    "TaskFilter",
    "StateSnapshot",
    "IndexSnapshot",
    # Diagnostic
    "Diagnostic",
]
