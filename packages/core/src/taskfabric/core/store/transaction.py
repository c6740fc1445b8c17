"""文件级原子写入与多文件事务

单文件：写临时文件 → fsync → os.replace，读者只会看到完整的旧文件或新文件。
多文件：先全部暂存为临时文件，再逐个替换；任一步失败则恢复全部原文件。
替换过程中目标路径始终存在（旧内容或新内容），进程中途被杀也不会丢失日志。
"""

import os
import shutil
import uuid
from pathlib import Path

import structlog

log = structlog.get_logger()


def _fsync_dir(directory: Path) -> None:
    # Windows 不支持对目录 fsync
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _write_temp(target: Path, data: bytes, suffix: str) -> Path:
    tmp_path = target.with_name(f"{target.name}.{suffix}.tmp")
    with open(tmp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    return tmp_path


def _backup(target: Path, backup: Path) -> None:
    """备份原文件，目标本身保持不动

    优先硬链接（不复制数据）；文件系统不支持时退回复制。
    """
    try:
        os.link(target, backup)
    except OSError:
        shutil.copy2(target, backup)


def atomic_write_bytes(target: Path, data: bytes) -> None:
    """原子替换写入单个文件

    Raises:
        OSError: 写入或替换失败（临时文件会被清理）
    """
    tmp_path = _write_temp(target, data, uuid.uuid4().hex[:8])
    try:
        os.replace(tmp_path, target)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    _fsync_dir(target.parent)


class FileTransaction:
    """多文件全有或全无替换

    用法：
        txn = FileTransaction()
        txn.stage_write(path_a, data_a)
        txn.stage_delete(path_b)
        txn.commit()

    commit 失败（包括 KeyboardInterrupt 等非 OSError 中断）时，
    已替换的文件全部回滚，并重新抛出原异常。
    """

    def __init__(self) -> None:
        self._txid = uuid.uuid4().hex[:8]
        # target -> 新内容；None 表示删除
        self._staged: dict[Path, bytes | None] = {}

    @property
    def targets(self) -> list[Path]:
        return list(self._staged)

    def stage_write(self, target: Path, data: bytes) -> None:
        self._staged[target] = data

    def stage_delete(self, target: Path) -> None:
        self._staged[target] = None

    def commit(self) -> None:
        """执行事务

        1. 所有新内容写入临时文件（失败时原文件未动）
        2. 每个原文件以硬链接备份为 .bak，再用临时文件直接覆盖目标
        3. 全部成功后删除 .bak；任一步失败则按逆序恢复
        """
        temps: dict[Path, Path] = {}
        backups: dict[Path, Path] = {}
        done: list[Path] = []

        try:
            for target, data in self._staged.items():
                if data is not None:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    temps[target] = _write_temp(target, data, self._txid)
        except BaseException:
            for tmp in temps.values():
                tmp.unlink(missing_ok=True)
            raise

        try:
            for target in self._staged:
                if target.exists():
                    backup = target.with_name(f"{target.name}.{self._txid}.bak")
                    _backup(target, backup)
                    backups[target] = backup
                if target in temps:
                    os.replace(temps[target], target)
                    del temps[target]
                else:
                    target.unlink(missing_ok=True)
                done.append(target)
        except BaseException:
            self._rollback(done, backups, temps)
            raise

        for backup in backups.values():
            backup.unlink(missing_ok=True)
        for directory in {t.parent for t in self._staged}:
            if directory.exists():
                _fsync_dir(directory)

    def _rollback(
        self,
        done: list[Path],
        backups: dict[Path, Path],
        temps: dict[Path, Path],
    ) -> None:
        log.error("file_transaction_rollback", txid=self._txid, replaced=len(done))
        for tmp in temps.values():
            tmp.unlink(missing_ok=True)
        for target, backup in reversed(list(backups.items())):
            os.replace(backup, target)
        for target in done:
            # 原本不存在、事务中新建的文件
            if target not in backups:
                target.unlink(missing_ok=True)
