"""Operation 子类型 -- 事件 operation 字段的结构化定义

每个 operation 只携带它要修改的字段，以 type 标签区分。
未知 type 不在此定义，回放时作为不透明操作保留（向前兼容）。
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .enums import LinkRelation, OperationType, Priority, Resolution, UpdatableField


_UPDATABLE_FIELDS: frozenset[str] = frozenset(f.value for f in UpdatableField)


class _OperationBase(BaseModel):
    # 新版本可能增加字段，旧代码读取时忽略
    model_config = ConfigDict(extra="ignore")


class CreateOperation(_OperationBase):
    """create 操作 -- 唯一能引入新 Task 的操作"""

    type: Literal["create"] = "create"
    title: str = Field(min_length=1, description="任务标题")
    description: str | None = Field(default=None, description="任务描述")
    priority: Priority = Field(default=Priority.P2, description="优先级")
    tags: list[str] = Field(default_factory=list, description="标签")
    assignee: str | None = Field(default=None, description="负责人")
    stream: str | None = Field(default=None, description="分组标签")
    parent: str | None = Field(default=None, description="父任务 ID")
    blocks: list[str] = Field(default_factory=list, description="被本任务阻塞的任务")
    blocked_by: list[str] = Field(default_factory=list, description="阻塞本任务的任务")


class UpdateFieldOperation(_OperationBase):
    """update_field 操作 -- 修改单个字段"""

    type: Literal["update_field"] = "update_field"
    field: str = Field(description="字段名")
    value: Any = Field(default=None, description="新值")

    @model_validator(mode="after")
    def _check_value(self) -> "UpdateFieldOperation":
        # 未知字段名不校验，回放时按不透明操作处理
        if self.field == UpdatableField.TITLE:
            if not isinstance(self.value, str) or not self.value:
                raise ValueError("title must be a non-empty string")
        elif self.field == UpdatableField.DESCRIPTION:
            if self.value is not None and not isinstance(self.value, str):
                raise ValueError("description must be a string or null")
        elif self.field == UpdatableField.PRIORITY:
            self.value = Priority(self.value)
        elif self.field == UpdatableField.TAGS:
            if not isinstance(self.value, list) or not all(
                isinstance(tag, str) for tag in self.value
            ):
                raise ValueError("tags must be a list of strings")
        return self

    @property
    def is_known_field(self) -> bool:
        return self.field in _UPDATABLE_FIELDS


class AssignOperation(_OperationBase):
    """assign 操作"""

    type: Literal["assign"] = "assign"
    assignee: str = Field(min_length=1)


class UnassignOperation(_OperationBase):
    """unassign 操作"""

    type: Literal["unassign"] = "unassign"


class CommentOperation(_OperationBase):
    """comment 操作"""

    type: Literal["comment"] = "comment"
    body: str
    ref: str | None = Field(default=None, description="引用（commit、URL 等）")


class LinkOperation(_OperationBase):
    """link 操作 -- 对称性由 Validator 检查，回放按原样反映"""

    type: Literal["link"] = "link"
    rel: LinkRelation
    target: str = Field(min_length=1)


class UnlinkOperation(_OperationBase):
    """unlink 操作"""

    type: Literal["unlink"] = "unlink"
    rel: LinkRelation
    target: str = Field(min_length=1)


class SetStreamOperation(_OperationBase):
    """set_stream 操作，stream 为 None 表示清除"""

    type: Literal["set_stream"] = "set_stream"
    stream: str | None = None


class CompleteOperation(_OperationBase):
    """complete 操作"""

    type: Literal["complete"] = "complete"
    resolution: Resolution = Resolution.DONE


class ReopenOperation(_OperationBase):
    """reopen 操作 -- 撤销 complete 的唯一方式"""

    type: Literal["reopen"] = "reopen"
    reason: str = ""


Operation = Annotated[
    CreateOperation
    | UpdateFieldOperation
    | AssignOperation
    | UnassignOperation
    | CommentOperation
    | LinkOperation
    | UnlinkOperation
    | SetStreamOperation
    | CompleteOperation
    | ReopenOperation,
    Field(discriminator="type"),
]

_operation_adapter: TypeAdapter[Operation] = TypeAdapter(Operation)

KNOWN_OPERATION_TYPES: frozenset[str] = frozenset(op.value for op in OperationType)


def parse_operation(data: dict[str, Any]) -> Operation | None:
    """将原始 operation 字典解析为结构化模型

    Returns:
        对应的 Operation 模型；未知 type 返回 None（不透明操作）

    Raises:
        pydantic.ValidationError: 已知 type 但字段不合法
    """
    if data.get("type") not in KNOWN_OPERATION_TYPES:
        return None
    return _operation_adapter.validate_python(data)


def dump_operation(operation: Operation) -> dict[str, Any]:
    """将 Operation 模型转换为写入日志的字典"""
    return operation.model_dump(mode="json")
