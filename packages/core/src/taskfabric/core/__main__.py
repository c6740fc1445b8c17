"""CLI 入口模块 -- python -m taskfabric.core <command>

支持的命令：
  init                          在当前目录创建 .fabric/
  rebuild                       从事件日志重建缓存
  validate [--strict]           校验事件日志
  archive [--days N] [--dry-run]  归档完成超过 N 天的任务
"""

import sys
from pathlib import Path

from .config import FABRIC_DIR_NAME, load_config, resolve_paths
from .exceptions import ArchiveError, FabricError
from .logging_config import setup_logging

USAGE = """用法: python -m taskfabric.core <command>
命令:
  init                            在当前目录创建 .fabric/
  rebuild                         从事件日志重建缓存
  validate [--strict]             校验事件日志（--strict: 警告也视为失败）
  archive [--days N] [--dry-run]  归档完成超过 N 天的任务"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口，返回退出码"""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(USAGE)
        return 1

    setup_logging()
    command, options = args[0], args[1:]
    handlers = {
        "init": cmd_init,
        "rebuild": cmd_rebuild,
        "validate": cmd_validate,
        "archive": cmd_archive,
    }
    handler = handlers.get(command)
    if handler is None:
        print(f"未知命令: {command}")
        print("可用命令: " + ", ".join(handlers))
        return 1

    try:
        return handler(options)
    except (FabricError, FileNotFoundError) as e:
        print(f"错误: {e}")
        return 1


def _service():
    from .service import TaskService
    from .store import create_store_group

    config = load_config()
    paths = resolve_paths(config)
    return TaskService(create_store_group(paths.root), config)


def cmd_init(options: list[str]) -> int:
    """创建 .fabric 目录"""
    from .store import init_root

    config = load_config()
    root = config.root or Path.cwd() / FABRIC_DIR_NAME
    try:
        paths = init_root(root)
    except FileExistsError:
        print(f"已存在: {root}")
        return 1
    print(f"已初始化: {paths.root}")
    return 0


def cmd_rebuild(options: list[str]) -> int:
    """执行缓存重建"""
    service = _service()
    print("开始重建缓存...")
    state = service.rebuild()
    print(f"重建完成，共 {len(state.tasks)} 个任务，{len(state.diagnostics)} 条诊断")
    return 0


def cmd_validate(options: list[str]) -> int:
    """校验日志，按 --strict 决定警告是否算失败"""
    unknown = [o for o in options if o != "--strict"]
    if unknown:
        print(f"未知参数: {' '.join(unknown)}")
        return 1
    strict = "--strict" in options

    report = _service().validation_report()
    for diag in report.diagnostics:
        location = f"{diag.location}: " if diag.location else ""
        print(f"[{diag.severity}] {location}{diag.category}: {diag.message}")
    print(
        f"检查 {report.files_checked} 个文件、{report.events_checked} 条事件: "
        f"{len(report.errors)} 错误, {len(report.warnings)} 警告, "
        f"{len(report.conflicts)} 冲突"
    )
    return report.exit_code(strict)


def cmd_archive(options: list[str]) -> int:
    """归档已完成任务"""
    from .archiver import cutoff_from_days

    dry_run = False
    days: int | None = None
    rest = iter(options)
    for opt in rest:
        if opt == "--dry-run":
            dry_run = True
        elif opt == "--days":
            value = next(rest, None)
            if value is None or not value.isdigit():
                print("--days 需要一个非负整数")
                return 1
            days = int(value)
        else:
            print(f"未知参数: {opt}")
            return 1

    service = _service()
    cutoff = cutoff_from_days(days) if days is not None else None
    try:
        result = service.archive_tasks(cutoff, dry_run=dry_run)
    except ArchiveError as e:
        print(f"归档失败: {e}")
        return 1

    if not result.task_ids:
        print("没有需要归档的任务")
        return 0
    prefix = "将归档" if dry_run else "已归档"
    for month, task_ids in result.months.items():
        for task_id in task_ids:
            print(f"  {task_id} -> archive/{month}.jsonl")
    print(f"{prefix} {result.count} 个任务（{result.moved_events} 条事件）")
    return 0


if __name__ == "__main__":
    sys.exit(main())
