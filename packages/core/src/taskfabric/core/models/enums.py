"""枚举定义

包含 TaskStatus 状态机、OperationType、Priority、Resolution、LinkRelation，
以及诊断分类 DiagnosticCategory / DiagnosticSeverity。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态 -- 仅 complete / reopen 事件可改变"""

    OPEN = "open"
    COMPLETE = "complete"


# 合法状态流转：complete 只能由 reopen 撤销
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.OPEN: {TaskStatus.COMPLETE},
    TaskStatus.COMPLETE: {TaskStatus.OPEN},
}


class OperationType(StrEnum):
    """事件操作类型（operation.type 标签）"""

    CREATE = "create"
    UPDATE_FIELD = "update_field"
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    COMMENT = "comment"
    LINK = "link"
    UNLINK = "unlink"
    SET_STREAM = "set_stream"
    COMPLETE = "complete"
    REOPEN = "reopen"


class Priority(StrEnum):
    """优先级，p0 最高"""

    P0 = "p0"
    P1 = "p1"
    P2 = "p2"
    P3 = "p3"


class Resolution(StrEnum):
    """完成原因，仅在 complete 状态下有值"""

    DONE = "done"
    WONTFIX = "wontfix"
    DUPLICATE = "duplicate"
    OBSOLETE = "obsolete"


class LinkRelation(StrEnum):
    """任务关联关系"""

    BLOCKS = "blocks"
    BLOCKED_BY = "blocked_by"
    PARENT = "parent"


# blocks <-> blocked_by 必须对称；parent 无反向关系
INVERSE_RELATIONS: dict[LinkRelation, LinkRelation] = {
    LinkRelation.BLOCKS: LinkRelation.BLOCKED_BY,
    LinkRelation.BLOCKED_BY: LinkRelation.BLOCKS,
}


class UpdatableField(StrEnum):
    """update_field 可修改的字段"""

    TITLE = "title"
    DESCRIPTION = "description"
    PRIORITY = "priority"
    TAGS = "tags"


class DiagnosticSeverity(StrEnum):
    """诊断严重程度

    error 为结构性错误（validate 失败），warning 为引用类问题，
    conflict 为并发编辑冲突（仅提示，不构成失败）。
    """

    ERROR = "error"
    WARNING = "warning"
    CONFLICT = "conflict"


class DiagnosticCategory(StrEnum):
    """诊断分类，每类对应一种检查"""

    # 结构性错误
    PARSE_ERROR = "parse_error"
    MISSING_FIELD = "missing_field"
    INVALID_OPERATION = "invalid_operation"
    DUPLICATE_EVENT_ID = "duplicate_event_id"
    DUPLICATE_SEQ = "duplicate_seq"
    NON_MONOTONIC_SEQ = "non_monotonic_seq"
    DUPLICATE_CREATE = "duplicate_create"
    TASK_ID_MISMATCH = "task_id_mismatch"

    # 引用类问题
    ORPHAN = "orphan"
    ASYMMETRIC_LINK = "asymmetric_link"
    DANGLING_LINK = "dangling_link"
    UNKNOWN_SCHEMA_VERSION = "unknown_schema_version"

    # 并发冲突
    CONFLICT = "conflict"


CATEGORY_SEVERITY: dict[DiagnosticCategory, DiagnosticSeverity] = {
    DiagnosticCategory.PARSE_ERROR: DiagnosticSeverity.ERROR,
    DiagnosticCategory.MISSING_FIELD: DiagnosticSeverity.ERROR,
    DiagnosticCategory.INVALID_OPERATION: DiagnosticSeverity.ERROR,
    DiagnosticCategory.DUPLICATE_EVENT_ID: DiagnosticSeverity.ERROR,
    DiagnosticCategory.DUPLICATE_SEQ: DiagnosticSeverity.ERROR,
    DiagnosticCategory.NON_MONOTONIC_SEQ: DiagnosticSeverity.ERROR,
    DiagnosticCategory.DUPLICATE_CREATE: DiagnosticSeverity.ERROR,
    DiagnosticCategory.TASK_ID_MISMATCH: DiagnosticSeverity.ERROR,
    DiagnosticCategory.ORPHAN: DiagnosticSeverity.WARNING,
    DiagnosticCategory.ASYMMETRIC_LINK: DiagnosticSeverity.WARNING,
    DiagnosticCategory.DANGLING_LINK: DiagnosticSeverity.WARNING,
    DiagnosticCategory.UNKNOWN_SCHEMA_VERSION: DiagnosticSeverity.WARNING,
    DiagnosticCategory.CONFLICT: DiagnosticSeverity.CONFLICT,
}


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
