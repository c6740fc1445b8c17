"""派生缓存存储 -- .state.json / .index.json

缓存是纯优化：删除只损失重算成本，不损失信息。
每份缓存记录生成它的日志指纹，读取时指纹不一致即视为过期。
"""

import json
from pathlib import Path
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from ..config import CACHE_FORMAT_VERSION, FabricPaths
from ..models.task import IndexSnapshot, StateSnapshot
from .transaction import atomic_write_bytes

log = structlog.get_logger()

SnapshotT = TypeVar("SnapshotT", StateSnapshot, IndexSnapshot)


def dump_snapshot(snapshot: BaseModel) -> bytes:
    """确定性序列化：键排序 + 固定缩进，无挂钟时间"""
    data: dict[str, Any] = snapshot.model_dump(mode="json")
    text = json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


class CacheStore:
    """状态与索引缓存的读写"""

    def __init__(self, paths: FabricPaths) -> None:
        self._paths = paths

    def load_state(self, fingerprint: str) -> StateSnapshot | None:
        """读取状态缓存；缺失、损坏或指纹不符时返回 None"""
        return self._load(self._paths.state_path, StateSnapshot, fingerprint)

    def load_index(self, fingerprint: str) -> IndexSnapshot | None:
        """读取索引缓存；缺失、损坏或指纹不符时返回 None"""
        return self._load(self._paths.index_path, IndexSnapshot, fingerprint)

    def save(self, state: StateSnapshot, index: IndexSnapshot) -> None:
        """原子写入两份缓存

        Raises:
            OSError: 写入失败
        """
        atomic_write_bytes(self._paths.state_path, dump_snapshot(state))
        atomic_write_bytes(self._paths.index_path, dump_snapshot(index))
        log.debug(
            "cache_saved",
            fingerprint=state.fingerprint[:12],
            task_count=len(state.tasks),
        )

    def invalidate(self) -> None:
        """删除缓存，下次读取时强制回放"""
        for path in (self._paths.state_path, self._paths.index_path):
            path.unlink(missing_ok=True)
        log.debug("cache_invalidated")

    def _load(
        self,
        path: Path,
        model: type[SnapshotT],
        fingerprint: str,
    ) -> SnapshotT | None:
        if not path.exists():
            return None
        try:
            snapshot = model.model_validate_json(path.read_bytes())
        except ValidationError as e:
            # 损坏的缓存不是错误，按过期处理
            log.warning(
                "cache_corrupt",
                file=self._paths.relative(path),
                error_count=e.error_count(),
            )
            return None
        if snapshot.version != CACHE_FORMAT_VERSION:
            log.info("cache_version_mismatch", file=self._paths.relative(path))
            return None
        if snapshot.fingerprint != fingerprint:
            log.debug("cache_stale", file=self._paths.relative(path))
            return None
        return snapshot
