"""Diagnostic 模型 -- 回放与校验过程中发现的问题

单条坏记录只产生诊断，不会中断回放。
"""

from pydantic import BaseModel, Field

from .enums import CATEGORY_SEVERITY, DiagnosticCategory, DiagnosticSeverity


class Diagnostic(BaseModel):
    """一条诊断，带文件/行号定位"""

    category: DiagnosticCategory
    severity: DiagnosticSeverity
    message: str
    file: str | None = Field(default=None, description="相对于根目录的日志文件路径")
    line: int | None = Field(default=None, description="行号（从 1 开始）")
    task_id: str | None = None
    event_id: str | None = None

    @classmethod
    def of(
        cls,
        category: DiagnosticCategory,
        message: str,
        *,
        file: str | None = None,
        line: int | None = None,
        task_id: str | None = None,
        event_id: str | None = None,
    ) -> "Diagnostic":
        """按分类自动确定严重程度"""
        return cls(
            category=category,
            severity=CATEGORY_SEVERITY[category],
            message=message,
            file=file,
            line=line,
            task_id=task_id,
            event_id=event_id,
        )

    @property
    def location(self) -> str:
        if self.file is None:
            return ""
        if self.line is None:
            return self.file
        return f"{self.file}:{self.line}"

    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.file or "", self.line or 0, self.category.value, self.event_id or "")
