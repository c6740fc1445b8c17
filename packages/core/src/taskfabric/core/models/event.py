"""Event Domain Model

事件日志 append-only，不允许更新或删除。
event_id 使用 ULID 格式，时间有序。
seq 同一 task 内严格单调递增，是同一任务事件排序的主键。
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .enums import OperationType
from .payloads import Operation, parse_operation

SCHEMA_VERSION = 1

# 一行事件 JSON 必须包含的字段
REQUIRED_FIELDS: tuple[str, ...] = (
    "event_id",
    "task_id",
    "seq",
    "timestamp",
    "author",
    "operation",
)

OrderKey = tuple[int, datetime, str]


class Event(BaseModel):
    """Event 数据模型

    一行 JSONL 对应一个 Event。物理行序不可信（git merge 决定），
    同一任务内的逻辑顺序只由 (seq, timestamp, event_id) 决定。
    """

    v: int = Field(default=SCHEMA_VERSION, description="Schema 版本号")
    event_id: str = Field(min_length=1, description="唯一标识，ULID 格式")
    task_id: str = Field(min_length=1, description="目标 Task ID（等于 create 事件的 event_id）")
    seq: int = Field(ge=1, description="任务内序号，写入时分配")
    timestamp: datetime = Field(description="事件时间戳（UTC）")
    author: str = Field(description="作者")
    branch: str = Field(default="", description="写入时所在分支")
    operation: dict[str, Any] = Field(description="带 type 标签的操作")

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        # 无时区的时间戳按 UTC 处理
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("operation")
    @classmethod
    def _require_type(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(value.get("type"), str) or not value["type"]:
            raise ValueError("operation.type is required")
        return value

    @property
    def operation_type(self) -> str:
        return self.operation["type"]

    @property
    def is_create(self) -> bool:
        return self.operation_type == OperationType.CREATE

    @property
    def order_key(self) -> OrderKey:
        """同一任务内的规范排序键"""
        return (self.seq, self.timestamp, self.event_id)

    def typed_operation(self) -> Operation | None:
        """解析为结构化 Operation；未知类型返回 None

        Raises:
            pydantic.ValidationError: 已知类型但字段不合法
        """
        return parse_operation(self.operation)

    def to_line(self) -> str:
        """序列化为一行 JSON（不含换行符）"""
        return self.model_dump_json()
