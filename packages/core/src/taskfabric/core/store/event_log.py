"""EventStore JSONL 文件实现

事件日志 append-only：只追加，不改写已有行。
活跃日志按日期分文件（events/<YYYY-MM-DD>.jsonl），
归档日志按月分文件（archive/<YYYY-MM>.jsonl）。
读取时逐行独立解析，坏行只产生诊断，不影响其他行。
"""

import hashlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import ValidationError

from ..config import LOG_SUFFIX, FabricPaths
from ..exceptions import EventParseError
from ..models.diagnostic import Diagnostic
from ..models.enums import DiagnosticCategory
from ..models.event import REQUIRED_FIELDS, Event

log = structlog.get_logger()


@dataclass(frozen=True)
class LogLine:
    """日志文件中的一个物理行（保留原始字节，供归档改写使用）"""

    line_no: int
    raw: bytes
    event: Event | None = None
    error: EventParseError | None = None


@dataclass(frozen=True)
class LogRecord:
    """成功解析的事件及其来源"""

    event: Event
    file: str
    line: int
    archived: bool = False


@dataclass
class LogReadResult:
    """一次全量读取的结果"""

    records: list[LogRecord] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    fingerprint: str = ""
    file_count: int = 0


def parse_event_line(text: str) -> Event:
    """解析一行 JSON 为 Event

    Raises:
        EventParseError: JSON 非法（parse_error）或缺少必填字段（missing_field）
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EventParseError(DiagnosticCategory.PARSE_ERROR, f"Invalid JSON: {e.msg}") from e

    if not isinstance(data, dict):
        raise EventParseError(DiagnosticCategory.PARSE_ERROR, "Event line is not a JSON object")

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise EventParseError(
            DiagnosticCategory.MISSING_FIELD,
            "Missing required field(s): " + ", ".join(missing),
        )
    operation = data["operation"]
    if not isinstance(operation, dict) or "type" not in operation:
        raise EventParseError(DiagnosticCategory.MISSING_FIELD, "Missing required field: operation.type")

    try:
        return Event.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise EventParseError(DiagnosticCategory.PARSE_ERROR, f"Invalid field: {problems}") from e


def parse_raw_line(line_no: int, raw: bytes) -> LogLine:
    """解析一个物理行，错误保存在 LogLine.error 中"""
    if not raw.strip():
        return LogLine(line_no=line_no, raw=raw)
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        return LogLine(
            line_no=line_no,
            raw=raw,
            error=EventParseError(DiagnosticCategory.PARSE_ERROR, "Line is not valid UTF-8"),
        )
    try:
        return LogLine(line_no=line_no, raw=raw, event=parse_event_line(text))
    except EventParseError as e:
        return LogLine(line_no=line_no, raw=raw, error=e)


def split_lines(content: bytes) -> list[bytes]:
    """按 \\n 切分，去掉行尾 \\r；末尾换行不产生空行"""
    if not content:
        return []
    parts = content.split(b"\n")
    if parts[-1] == b"":
        parts.pop()
    return [p[:-1] if p.endswith(b"\r") else p for p in parts]


class FileEventStore:
    """EventStore 的 JSONL 文件实现

    并发写入方（同一工作区的两个终端）不做协调，
    写入交错由回放时的排序键消解。
    """

    def __init__(self, paths: FabricPaths) -> None:
        self._paths = paths

    @property
    def paths(self) -> FabricPaths:
        return self._paths

    # ------------------------------------------------------------------
    # 文件枚举
    # ------------------------------------------------------------------

    @staticmethod
    def _list_logs(directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(
            p for p in directory.iterdir() if p.is_file() and p.suffix == LOG_SUFFIX
        )

    def event_files(self) -> list[Path]:
        """活跃日志文件，按文件名（日期）排序"""
        return self._list_logs(self._paths.events_dir)

    def archive_files(self) -> list[Path]:
        """归档日志文件，按文件名（月份）排序"""
        return self._list_logs(self._paths.archive_dir)

    def all_files(self, include_archive: bool = True) -> list[Path]:
        files = self.event_files()
        if include_archive:
            files = files + self.archive_files()
        return files

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    def read_lines(self, path: Path) -> list[LogLine]:
        """读取一个日志文件的全部物理行

        Raises:
            OSError: 文件无法读取
        """
        content = path.read_bytes()
        return [parse_raw_line(i, raw) for i, raw in enumerate(split_lines(content), start=1)]

    def read_records(self, include_archive: bool = True) -> LogReadResult:
        """读取全部日志，返回事件记录、解析诊断与输入指纹"""
        result = LogReadResult()
        hasher = hashlib.sha256()
        archive_dir = self._paths.archive_dir

        for path in self.all_files(include_archive):
            content = path.read_bytes()
            rel = self._paths.relative(path)
            _update_fingerprint(hasher, rel, content)
            archived = path.parent == archive_dir
            result.file_count += 1

            for line_no, raw in enumerate(split_lines(content), start=1):
                line = parse_raw_line(line_no, raw)
                if line.event is not None:
                    result.records.append(
                        LogRecord(event=line.event, file=rel, line=line_no, archived=archived)
                    )
                elif line.error is not None:
                    result.diagnostics.append(
                        Diagnostic.of(
                            line.error.category,
                            str(line.error),
                            file=rel,
                            line=line_no,
                        )
                    )

        result.fingerprint = hasher.hexdigest()
        return result

    def fingerprint(self, include_archive: bool = True) -> str:
        """日志内容指纹：相对路径 + 内容摘要，不依赖 mtime"""
        hasher = hashlib.sha256()
        for path in self.all_files(include_archive):
            _update_fingerprint(hasher, self._paths.relative(path), path.read_bytes())
        return hasher.hexdigest()

    def get_next_seq(self, task_id: str) -> int:
        """获取指定任务的下一个 seq（活跃 + 归档中的 MAX + 1）"""
        result = self.read_records(include_archive=True)
        current = max(
            (r.event.seq for r in result.records if r.event.task_id == task_id),
            default=0,
        )
        return current + 1

    # ------------------------------------------------------------------
    # 写入
    # ------------------------------------------------------------------

    def append_event(self, event: Event) -> Path:
        """追加事件（append-only），按事件时间戳的 UTC 日期选择文件

        open-append → write → flush → fsync。若文件末尾是崩溃留下的
        半行（无换行符），先补一个换行，使坏行保持独立。

        Raises:
            FileNotFoundError: .fabric 根目录不存在
            OSError: 写入失败（权限、磁盘满等）
        """
        if not self._paths.root.is_dir():
            raise FileNotFoundError(f"Fabric root does not exist: {self._paths.root}")
        self._paths.events_dir.mkdir(exist_ok=True)

        path = self._paths.event_file_for(event.timestamp.strftime("%Y-%m-%d"))
        data = event.to_line().encode("utf-8") + b"\n"
        if _needs_leading_newline(path):
            log.warning("truncated_line_detected", file=self._paths.relative(path))
            data = b"\n" + data

        with open(path, "ab") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())

        log.debug(
            "event_appended",
            event_id=event.event_id,
            task_id=event.task_id,
            seq=event.seq,
            op=event.operation_type,
            file=self._paths.relative(path),
        )
        return path


def _update_fingerprint(hasher, rel: str, content: bytes) -> None:
    hasher.update(rel.encode("utf-8"))
    hasher.update(b"\0")
    hasher.update(hashlib.sha256(content).digest())


def _needs_leading_newline(path: Path) -> bool:
    if not path.exists() or path.stat().st_size == 0:
        return False
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) != b"\n"
